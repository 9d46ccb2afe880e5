#!/usr/bin/env python3
"""
ABOUTME: Cluster capacity and failover headroom calculations.
ABOUTME: Pure arithmetic over an already-collected cluster snapshot, no vCenter access.

The engine turns a ClusterSnapshot (hosts + VMs) into:
    - a ClusterReport: totals, ratios, RAM headroom and "after N host
      failures" projections
    - one HostReport per host, sorted by host name

All GB/percent figures are rounded half away from zero to whole numbers,
ratios and averages to one decimal. Any zero divisor is raised as a
CapacityReportError subclass instead of producing NaN/inf.
"""

from collections import Counter
from dataclasses import dataclass, field, fields
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

# Fixed safety margin held back from every cluster and host
RESERVED_RAM_FRACTION = 0.15

DEFAULT_FAILOVER_COUNTS = (1, 2)


class CapacityReportError(Exception):
    """Base exception for capacity report failures"""

    exit_code = 1


class ClusterNotFound(CapacityReportError):
    """Cluster name could not be resolved by the inventory source"""

    exit_code = 2

    def __init__(self, cluster: str):
        self.cluster = cluster
        super().__init__(f"Cluster not found: {cluster}")


class EmptyHostSet(CapacityReportError):
    """Snapshot contains no hosts"""

    def __init__(self, cluster: str):
        self.cluster = cluster
        super().__init__(f"Cluster '{cluster}' has no hosts; nothing to report")


class EmptyVmSet(CapacityReportError):
    """Average VM size requested for a cluster without VMs"""

    def __init__(self, cluster: str):
        self.cluster = cluster
        super().__init__(
            f"Cluster '{cluster}' has no VMs; average RAM per VM is undefined"
        )


class InsufficientHostsForFailover(CapacityReportError):
    """Failover projection would leave no surviving host"""

    exit_code = 3

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot project loss of {requested} host(s): cluster has only "
            f"{available} host(s), at least {requested + 1} required"
        )


class DegenerateCapacity(CapacityReportError):
    """A capacity divisor (cores, RAM, VM size) is zero"""


def round_half_away(value: float, digits: int = 0) -> Union[int, float]:
    """Round half away from zero; digits=0 returns an int."""
    exponent = Decimal(1).scaleb(-digits)
    rounded = Decimal(repr(value)).quantize(exponent, rounding=ROUND_HALF_UP)
    if digits == 0:
        return int(rounded)
    return float(rounded)


@dataclass(frozen=True)
class HostSample:
    """Capacity and usage of one physical host"""

    name: str
    sockets: int
    cores: int
    threads: int
    ram_total_gb: float
    ram_used_gb: float
    cpu_model: str
    vm_count: int
    vcpu_count: int


@dataclass(frozen=True)
class VmSample:
    """Allocation of one virtual machine"""

    name: str
    vcpu: int
    ram_gb: float
    host: Optional[str] = None


@dataclass(frozen=True)
class ClusterSnapshot:
    """Hosts (in inventory order) and VMs of one cluster"""

    name: str
    hosts: Tuple[HostSample, ...] = ()
    vms: Tuple[VmSample, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "hosts", tuple(self.hosts))
        object.__setattr__(self, "vms", tuple(self.vms))

    def host_names(self) -> List[str]:
        return [host.name for host in self.hosts]

    def unaffiliated_vms(self) -> List[VmSample]:
        """VMs whose host is missing from the snapshot"""
        known = set(self.host_names())
        return [vm for vm in self.vms if vm.host not in known]


@dataclass(frozen=True)
class FailoverHeadroom:
    """Cluster capacity left after losing the first N hosts"""

    hosts_lost: int
    lost_ram_gb: float
    lost_cores: int
    ram_after_failover_gb: float
    cores_after_failover: int
    vcpu_per_core_after_failover: int
    ram_available_after_failover_gb: int
    est_new_vms_after_failover: int

    def to_dict(self) -> Dict[str, Any]:
        return _as_dict(self)


@dataclass(frozen=True)
class ClusterReport:
    """Cluster-wide capacity summary"""

    cluster_name: str
    host_count: int
    vm_count: int
    vms_per_host: float
    total_vcpu: int
    total_alloc_ram_gb: float
    avg_ram_per_vm: float
    total_sockets: int
    total_cores: int
    total_threads: int
    vcpu_per_core: float
    total_ram_gb: float
    used_ram_gb: float
    usage_percent: int
    free_ram_gb: int
    reserved_ram_gb: int
    available_ram_gb: int
    est_new_vms_baseline: int
    failover: Tuple[FailoverHeadroom, ...] = field(default_factory=tuple)

    def headroom_for(self, hosts_lost: int) -> FailoverHeadroom:
        for headroom in self.failover:
            if headroom.hosts_lost == hosts_lost:
                return headroom
        raise KeyError(f"No failover projection for {hosts_lost} host(s)")

    def to_dict(self) -> Dict[str, Any]:
        data = _as_dict(self)
        data["failover"] = [headroom.to_dict() for headroom in self.failover]
        return data


@dataclass(frozen=True)
class HostReport:
    """Capacity summary for one host"""

    name: str
    model: str
    sockets: int
    cores: int
    threads: int
    vm_count: int
    vcpu_count: int
    vcpu_per_core: float
    ram_total_gb: float
    ram_used_gb: float
    ram_free_gb: int
    usage_percent: int
    reserved_gb: int
    available_gb: int

    def to_dict(self) -> Dict[str, Any]:
        return _as_dict(self)


def _as_dict(record) -> Dict[str, Any]:
    # shallow, in field order
    return {f.name: getattr(record, f.name) for f in fields(record)}


def most_common_model(hosts: Iterable[HostSample]) -> str:
    """Most frequent CPU model across hosts; ties go to the first one seen."""
    counts = Counter(host.cpu_model for host in hosts)
    if not counts:
        return ""
    # Counter preserves insertion order, max() keeps the first maximum
    return max(counts, key=lambda model: counts[model])


def _check_failover_counts(counts: Sequence[int], host_count: int) -> List[int]:
    ordered = sorted(set(counts))
    for hosts_lost in ordered:
        if hosts_lost < 1:
            raise ValueError(f"Failover host count must be >= 1, got {hosts_lost}")
        if hosts_lost >= host_count:
            raise InsufficientHostsForFailover(hosts_lost, host_count)
    return ordered


def _project_failover(
    hosts_lost: int,
    hosts: Sequence[HostSample],
    total_vcpu: int,
    total_cores: int,
    total_ram_gb: float,
    available_ram_gb: int,
    avg_ram_per_vm: float,
) -> FailoverHeadroom:
    # First N hosts in inventory order, not the largest N
    lost = hosts[:hosts_lost]
    lost_ram_gb = sum(host.ram_total_gb for host in lost)
    lost_cores = sum(host.cores for host in lost)

    cores_after = total_cores - lost_cores
    if cores_after <= 0:
        raise DegenerateCapacity(
            f"No CPU cores left after losing {hosts_lost} host(s)"
        )
    ram_available_after = round_half_away(available_ram_gb - lost_ram_gb)

    return FailoverHeadroom(
        hosts_lost=hosts_lost,
        lost_ram_gb=lost_ram_gb,
        lost_cores=lost_cores,
        ram_after_failover_gb=total_ram_gb - lost_ram_gb,
        cores_after_failover=cores_after,
        vcpu_per_core_after_failover=round_half_away(total_vcpu / cores_after),
        ram_available_after_failover_gb=ram_available_after,
        est_new_vms_after_failover=round_half_away(
            ram_available_after / avg_ram_per_vm
        ),
    )


def compute_cluster_report(
    snapshot: ClusterSnapshot,
    failover_counts: Sequence[int] = DEFAULT_FAILOVER_COUNTS,
) -> ClusterReport:
    """
    Build the cluster-level capacity report.

    Args:
        snapshot: Hosts and VMs of the cluster
        failover_counts: Host-loss scenarios to project (e.g. 1 and 2)

    Raises:
        EmptyHostSet: snapshot has no hosts
        EmptyVmSet: snapshot has no VMs
        InsufficientHostsForFailover: a scenario would lose every host
        DegenerateCapacity: zero cores, zero RAM or zero average VM RAM
    """
    hosts = snapshot.hosts
    vms = snapshot.vms

    host_count = len(hosts)
    if host_count == 0:
        raise EmptyHostSet(snapshot.name)
    vm_count = len(vms)
    if vm_count == 0:
        raise EmptyVmSet(snapshot.name)
    scenarios = _check_failover_counts(failover_counts, host_count)

    total_vcpu = sum(vm.vcpu for vm in vms)
    total_alloc_ram_gb = sum(vm.ram_gb for vm in vms)
    avg_ram_per_vm = round_half_away(total_alloc_ram_gb / vm_count, 1)

    total_sockets = sum(host.sockets for host in hosts)
    total_cores = sum(host.cores for host in hosts)
    total_threads = sum(host.threads for host in hosts)
    total_ram_gb = sum(host.ram_total_gb for host in hosts)
    used_ram_gb = sum(host.ram_used_gb for host in hosts)

    if total_cores <= 0:
        raise DegenerateCapacity(f"Cluster '{snapshot.name}' reports no CPU cores")
    if total_ram_gb <= 0:
        raise DegenerateCapacity(f"Cluster '{snapshot.name}' reports no RAM")
    if avg_ram_per_vm <= 0:
        raise DegenerateCapacity(
            f"Cluster '{snapshot.name}' VMs average no allocated RAM"
        )

    free_ram_gb = round_half_away(total_ram_gb - used_ram_gb)
    reserved_ram_gb = round_half_away(total_ram_gb * RESERVED_RAM_FRACTION)
    available_ram_gb = round_half_away(free_ram_gb - reserved_ram_gb)

    failover = tuple(
        _project_failover(
            hosts_lost,
            hosts,
            total_vcpu,
            total_cores,
            total_ram_gb,
            available_ram_gb,
            avg_ram_per_vm,
        )
        for hosts_lost in scenarios
    )

    return ClusterReport(
        cluster_name=snapshot.name,
        host_count=host_count,
        vm_count=vm_count,
        vms_per_host=round_half_away(vm_count / host_count, 1),
        total_vcpu=total_vcpu,
        total_alloc_ram_gb=total_alloc_ram_gb,
        avg_ram_per_vm=avg_ram_per_vm,
        total_sockets=total_sockets,
        total_cores=total_cores,
        total_threads=total_threads,
        vcpu_per_core=round_half_away(total_vcpu / total_cores, 1),
        total_ram_gb=total_ram_gb,
        used_ram_gb=used_ram_gb,
        usage_percent=round_half_away(used_ram_gb * 100 / total_ram_gb),
        free_ram_gb=free_ram_gb,
        reserved_ram_gb=reserved_ram_gb,
        available_ram_gb=available_ram_gb,
        est_new_vms_baseline=round_half_away(available_ram_gb / avg_ram_per_vm),
        failover=failover,
    )


def compute_host_reports(snapshot: ClusterSnapshot) -> List[HostReport]:
    """Per-host capacity rows, sorted by host name."""
    if not snapshot.hosts:
        raise EmptyHostSet(snapshot.name)

    # Cluster-wide model shown on every row
    model = most_common_model(snapshot.hosts)

    reports = []
    for host in sorted(snapshot.hosts, key=lambda h: h.name):
        if host.cores <= 0:
            raise DegenerateCapacity(f"Host '{host.name}' reports no CPU cores")
        if host.ram_total_gb <= 0:
            raise DegenerateCapacity(f"Host '{host.name}' reports no RAM")

        ram_free_gb = round_half_away(host.ram_total_gb - host.ram_used_gb)
        reserved_gb = round_half_away(host.ram_total_gb * RESERVED_RAM_FRACTION)

        reports.append(
            HostReport(
                name=host.name,
                model=model,
                sockets=host.sockets,
                cores=host.cores,
                threads=host.threads,
                vm_count=host.vm_count,
                vcpu_count=host.vcpu_count,
                vcpu_per_core=host.vcpu_count / host.cores,
                ram_total_gb=host.ram_total_gb,
                ram_used_gb=host.ram_used_gb,
                ram_free_gb=ram_free_gb,
                usage_percent=round_half_away(
                    host.ram_used_gb * 100 / host.ram_total_gb
                ),
                reserved_gb=reserved_gb,
                available_gb=round_half_away(ram_free_gb - reserved_gb),
            )
        )

    return reports
