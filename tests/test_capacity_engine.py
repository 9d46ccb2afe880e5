"""Tests for the cluster/host capacity calculations."""

import json

import pytest

from capacity_engine import (
    ClusterSnapshot,
    DegenerateCapacity,
    EmptyHostSet,
    EmptyVmSet,
    InsufficientHostsForFailover,
    VmSample,
    compute_cluster_report,
    compute_host_reports,
    most_common_model,
    round_half_away,
)
from conftest import make_host, make_vms


class TestRoundHalfAway:
    @pytest.mark.parametrize(
        "value, digits, expected",
        [
            (2.5, 0, 3),
            (3.5, 0, 4),
            (-2.5, 0, -3),
            (2.4999, 0, 2),
            (0.25, 1, 0.3),
            (1.05, 1, 1.1),
            (-0.05, 1, -0.1),
            (7, 0, 7),
        ],
    )
    def test_rounds_half_away_from_zero(self, value, digits, expected):
        assert round_half_away(value, digits) == expected

    def test_zero_digits_returns_int(self):
        assert isinstance(round_half_away(10.4), int)
        assert isinstance(round_half_away(10.4, 1), float)


class TestClusterReport:
    def test_two_host_scenario(self, two_host_snapshot):
        report = compute_cluster_report(two_host_snapshot, failover_counts=(1,))

        assert report.cluster_name == "lab"
        assert report.host_count == 2
        assert report.vm_count == 10
        assert report.vms_per_host == 5.0
        assert report.total_vcpu == 40
        assert report.total_alloc_ram_gb == 60
        assert report.avg_ram_per_vm == 6.0
        assert report.total_sockets == 4
        assert report.total_cores == 20
        assert report.total_threads == 40
        assert report.vcpu_per_core == 2.0
        assert report.total_ram_gb == 200
        assert report.used_ram_gb == 100
        assert report.usage_percent == 50
        assert report.free_ram_gb == 100
        assert report.reserved_ram_gb == 30
        assert report.available_ram_gb == 70
        assert report.est_new_vms_baseline == 12

    def test_two_host_single_failover(self, two_host_snapshot):
        report = compute_cluster_report(two_host_snapshot, failover_counts=(1,))
        headroom = report.headroom_for(1)

        assert headroom.lost_ram_gb == 100
        assert headroom.lost_cores == 10
        assert headroom.ram_after_failover_gb == 100
        assert headroom.cores_after_failover == 10
        assert headroom.vcpu_per_core_after_failover == 4
        # Losing a host costs more than the available headroom
        assert headroom.ram_available_after_failover_gb == -30
        assert headroom.est_new_vms_after_failover == -5

    def test_memory_figures_for_three_hosts(self, three_host_snapshot):
        report = compute_cluster_report(three_host_snapshot)

        assert report.host_count == 3
        assert report.total_ram_gb == 300
        assert report.used_ram_gb == 150
        assert report.usage_percent == 50
        assert report.free_ram_gb == 150
        assert report.reserved_ram_gb == 45
        assert report.available_ram_gb == 105
        assert report.avg_ram_per_vm == 8.0
        assert report.est_new_vms_baseline == 13

    def test_default_failover_projects_one_and_two_hosts(self, three_host_snapshot):
        report = compute_cluster_report(three_host_snapshot)

        assert [h.hosts_lost for h in report.failover] == [1, 2]

        one = report.headroom_for(1)
        assert one.ram_after_failover_gb == 200
        assert one.cores_after_failover == 32
        assert one.vcpu_per_core_after_failover == 1
        assert one.ram_available_after_failover_gb == 5
        assert one.est_new_vms_after_failover == 1

        two = report.headroom_for(2)
        assert two.ram_after_failover_gb == 100
        assert two.cores_after_failover == 16
        assert two.vcpu_per_core_after_failover == 2
        assert two.ram_available_after_failover_gb == -95
        assert two.est_new_vms_after_failover == -12

    def test_failover_takes_first_hosts_in_inventory_order(self):
        hosts = [
            make_host("small", cores=8, ram_total_gb=64, ram_used_gb=10),
            make_host("big", cores=64, ram_total_gb=1024, ram_used_gb=10),
            make_host("medium", cores=16, ram_total_gb=256, ram_used_gb=10),
        ]
        snapshot = ClusterSnapshot("c1", hosts, make_vms(4, 2, 4, host="big"))

        headroom = compute_cluster_report(snapshot, failover_counts=(1,)).headroom_for(1)

        assert headroom.lost_ram_gb == 64
        assert headroom.lost_cores == 8

    def test_failover_counts_are_deduplicated_and_sorted(self, three_host_snapshot):
        report = compute_cluster_report(three_host_snapshot, failover_counts=(2, 1, 2))
        assert [h.hosts_lost for h in report.failover] == [1, 2]

    def test_no_failover_requested(self, two_host_snapshot):
        report = compute_cluster_report(two_host_snapshot, failover_counts=())
        assert report.failover == ()
        with pytest.raises(KeyError):
            report.headroom_for(1)

    def test_unaffiliated_vms_are_counted(self):
        hosts = [make_host("A"), make_host("B")]
        vms = make_vms(3, 2, 4, host="A") + [VmSample("orphan", 4, 12, host="gone")]
        snapshot = ClusterSnapshot("c1", hosts, vms)

        report = compute_cluster_report(snapshot, failover_counts=(1,))

        assert [vm.name for vm in snapshot.unaffiliated_vms()] == ["orphan"]
        assert report.vm_count == 4
        assert report.total_vcpu == 10
        assert report.avg_ram_per_vm == 6.0

    def test_identical_snapshots_give_identical_output(self, three_host_snapshot):
        first = compute_cluster_report(three_host_snapshot)
        second = compute_cluster_report(three_host_snapshot)

        assert first == second
        assert json.dumps(first.to_dict()) == json.dumps(second.to_dict())

    def test_more_used_ram_never_improves_headroom(self):
        previous = None
        for step in range(0, 41):
            used = step * 7.5
            hosts = [
                make_host("A", ram_total_gb=100, ram_used_gb=used / 3),
                make_host("B", ram_total_gb=100, ram_used_gb=used / 3),
                make_host("C", ram_total_gb=100, ram_used_gb=used / 3),
            ]
            report = compute_cluster_report(
                ClusterSnapshot("c1", hosts, make_vms(3, 1, 4)), failover_counts=(1,)
            )
            if previous is not None:
                assert report.usage_percent >= previous.usage_percent
                assert report.available_ram_gb <= previous.available_ram_gb
            previous = report

    def test_usage_percent_exact_half_rounds_up(self):
        # 57 of 200 GB is exactly 28.5%
        snapshot = ClusterSnapshot("c1", [make_host("A", ram_total_gb=200, ram_used_gb=57)], make_vms(1, 1, 4))
        report = compute_cluster_report(snapshot, failover_counts=())
        assert report.usage_percent == 29

    def test_to_dict_lists_failover_projections(self, three_host_snapshot):
        data = compute_cluster_report(three_host_snapshot).to_dict()

        assert data["cluster_name"] == "prod"
        assert data["available_ram_gb"] == 105
        assert [item["hosts_lost"] for item in data["failover"]] == [1, 2]
        assert list(data)[0] == "cluster_name"


class TestClusterReportErrors:
    def test_no_hosts(self):
        snapshot = ClusterSnapshot("empty", (), make_vms(2, 1, 1))
        with pytest.raises(EmptyHostSet) as excinfo:
            compute_cluster_report(snapshot)
        assert "empty" in str(excinfo.value)

    def test_no_vms(self, three_host_snapshot):
        snapshot = ClusterSnapshot("novms", three_host_snapshot.hosts, ())
        with pytest.raises(EmptyVmSet):
            compute_cluster_report(snapshot)

    def test_failover_beyond_host_count(self, two_host_snapshot):
        with pytest.raises(InsufficientHostsForFailover) as excinfo:
            compute_cluster_report(two_host_snapshot, failover_counts=(1, 3))
        assert excinfo.value.requested == 3
        assert excinfo.value.available == 2
        assert excinfo.value.exit_code == 3

    def test_failover_of_every_host(self, two_host_snapshot):
        with pytest.raises(InsufficientHostsForFailover):
            compute_cluster_report(two_host_snapshot, failover_counts=(2,))

    def test_failover_count_must_be_positive(self, two_host_snapshot):
        with pytest.raises(ValueError):
            compute_cluster_report(two_host_snapshot, failover_counts=(0,))

    def test_zero_cores(self):
        hosts = [make_host("A", cores=0), make_host("B", cores=0)]
        with pytest.raises(DegenerateCapacity):
            compute_cluster_report(ClusterSnapshot("c1", hosts, make_vms(2, 1, 4)), failover_counts=())

    def test_zero_cores_left_after_failover(self):
        hosts = [make_host("A", cores=10), make_host("B", cores=0)]
        with pytest.raises(DegenerateCapacity):
            compute_cluster_report(ClusterSnapshot("c1", hosts, make_vms(2, 1, 4)), failover_counts=(1,))

    def test_vms_without_ram(self, two_host_snapshot):
        snapshot = ClusterSnapshot("c1", two_host_snapshot.hosts, make_vms(3, 1, 0))
        with pytest.raises(DegenerateCapacity):
            compute_cluster_report(snapshot, failover_counts=(1,))


class TestHostReports:
    def test_sorted_by_name(self):
        hosts = [make_host("esx-c"), make_host("esx-a"), make_host("esx-b")]
        reports = compute_host_reports(ClusterSnapshot("c1", hosts))
        assert [r.name for r in reports] == ["esx-a", "esx-b", "esx-c"]

    def test_host_figures(self):
        host = make_host("A", cores=16, ram_total_gb=256, ram_used_gb=100.4, vm_count=12, vcpu_count=40)
        report = compute_host_reports(ClusterSnapshot("c1", [host]))[0]

        assert report.ram_free_gb == 156
        assert report.usage_percent == 39
        assert report.reserved_gb == 38
        assert report.available_gb == 118
        assert report.vcpu_per_core == 2.5
        assert report.vm_count == 12
        assert report.vcpu_count == 40
        assert report.ram_total_gb == 256

    def test_usage_percent_exact_half_rounds_up(self):
        host = make_host("A", ram_total_gb=200, ram_used_gb=57)
        report = compute_host_reports(ClusterSnapshot("c1", [host]))[0]
        assert report.usage_percent == 29

    def test_vcpu_per_core_is_not_rounded(self):
        host = make_host("A", cores=3, vcpu_count=10)
        report = compute_host_reports(ClusterSnapshot("c1", [host]))[0]
        assert report.vcpu_per_core == pytest.approx(10 / 3)

    def test_model_is_cluster_wide_mode(self):
        hosts = [
            make_host("a", cpu_model="Gold 6338"),
            make_host("b", cpu_model="Gold 5318Y"),
            make_host("c", cpu_model="Gold 5318Y"),
        ]
        reports = compute_host_reports(ClusterSnapshot("c1", hosts))
        assert {r.model for r in reports} == {"Gold 5318Y"}

    def test_works_without_vms(self, three_host_snapshot):
        snapshot = ClusterSnapshot("c1", three_host_snapshot.hosts, ())
        assert len(compute_host_reports(snapshot)) == 3

    def test_no_hosts(self):
        with pytest.raises(EmptyHostSet):
            compute_host_reports(ClusterSnapshot("c1"))

    def test_host_without_ram(self):
        with pytest.raises(DegenerateCapacity) as excinfo:
            compute_host_reports(ClusterSnapshot("c1", [make_host("bad", ram_total_gb=0)]))
        assert "bad" in str(excinfo.value)


class TestMostCommonModel:
    def test_tie_goes_to_first_seen(self):
        hosts = [
            make_host("a", cpu_model="X"),
            make_host("b", cpu_model="Y"),
            make_host("c", cpu_model="Y"),
            make_host("d", cpu_model="X"),
        ]
        assert most_common_model(hosts) == "X"

    def test_empty(self):
        assert most_common_model([]) == ""
