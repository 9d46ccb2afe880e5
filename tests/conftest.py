"""Shared fixtures for capacity report tests."""

from pathlib import Path

import pytest

from capacity_engine import ClusterSnapshot, HostSample, VmSample

PROJECT_DIR = Path(__file__).resolve().parents[1]
SAMPLE_SNAPSHOT = PROJECT_DIR / "config" / "sample-snapshot.yaml"


def make_host(name, cores=10, ram_total_gb=100, ram_used_gb=50, sockets=2,
              threads=None, cpu_model="Intel Xeon Gold 6338", vm_count=0, vcpu_count=0):
    return HostSample(
        name=name,
        sockets=sockets,
        cores=cores,
        threads=threads if threads is not None else cores * 2,
        ram_total_gb=ram_total_gb,
        ram_used_gb=ram_used_gb,
        cpu_model=cpu_model,
        vm_count=vm_count,
        vcpu_count=vcpu_count,
    )


def make_vms(count, vcpu, ram_gb, host="A", prefix="vm"):
    return [VmSample(name=f"{prefix}{i:02d}", vcpu=vcpu, ram_gb=ram_gb, host=host) for i in range(count)]


@pytest.fixture()
def two_host_snapshot():
    """Hosts A and B (10 cores, 100/50 GB each) with 10 VMs: 40 vCPU, 60 GB."""
    hosts = [
        make_host("A", vm_count=5, vcpu_count=20),
        make_host("B", vm_count=5, vcpu_count=20),
    ]
    vms = make_vms(5, 4, 6, host="A", prefix="a") + make_vms(5, 4, 6, host="B", prefix="b")
    return ClusterSnapshot(name="lab", hosts=tuple(hosts), vms=tuple(vms))


@pytest.fixture()
def three_host_snapshot():
    hosts = [
        make_host("esx03", cores=16, ram_total_gb=100, ram_used_gb=50),
        make_host("esx01", cores=16, ram_total_gb=100, ram_used_gb=50),
        make_host("esx02", cores=16, ram_total_gb=100, ram_used_gb=50),
    ]
    vms = make_vms(12, 2, 8, host="esx01")
    return ClusterSnapshot(name="prod", hosts=tuple(hosts), vms=tuple(vms))


@pytest.fixture()
def sample_snapshot_path():
    return SAMPLE_SNAPSHOT
