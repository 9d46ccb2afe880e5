#!/usr/bin/env python3
"""
ABOUTME: Inventory source for capacity reports.
ABOUTME: Builds ClusterSnapshots from a live vCenter session or from a YAML snapshot file.

The vCenter session is always passed in explicitly:

    si = connect_vcenter(config["vcenter"], password)
    try:
        snapshot = VSphereInventory(si).get_snapshot("prod-cluster-01")
    finally:
        disconnect_vcenter(si)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from capacity_console import Colors, log, print_message
from capacity_engine import (
    CapacityReportError,
    ClusterNotFound,
    ClusterSnapshot,
    HostSample,
    VmSample,
)

BYTES_PER_GB = 1024 ** 3
MB_PER_GB = 1024


class InventoryError(CapacityReportError):
    """Inventory could not be collected or loaded"""


class HostUnreachable(InventoryError):
    """Cluster host is disconnected or not responding"""

    def __init__(self, host: str, state: Optional[str] = None):
        self.host = host
        self.state = state
        detail = f" (connection state: {state})" if state else ""
        super().__init__(f"Host unreachable: {host}{detail}")


def connect_vcenter(vcenter_config: Dict[str, Any], password: str, status_stream=None) -> vim.ServiceInstance:
    """Connect to vCenter Server and return the service instance"""
    hostname = vcenter_config["hostname"]
    print_message(Colors.YELLOW, f"Connecting to vCenter: {hostname}", status_stream)

    try:
        si = SmartConnect(
            host=hostname,
            user=vcenter_config.get("username", "administrator@vsphere.local"),
            pwd=password,
            port=int(vcenter_config.get("port", 443)),
            disableSslCertValidation=not vcenter_config.get("verify_ssl", False),
        )
    except (vim.fault.VimFault, IOError, OSError) as e:
        raise InventoryError(f"Failed to connect to vCenter {hostname}: {e}") from e

    print_message(Colors.GREEN, "✓ Connected to vCenter successfully", status_stream)
    return si


def disconnect_vcenter(si: Optional[vim.ServiceInstance]) -> None:
    """Disconnect from vCenter Server"""
    if si:
        Disconnect(si)
        log("Disconnected from vCenter")


class VSphereInventory:
    """Collect cluster capacity figures through an explicit vCenter session"""

    def __init__(self, si: vim.ServiceInstance, powered_on_only: bool = False):
        self.si = si
        self.powered_on_only = powered_on_only

    def _get_objects(self, view_type: list) -> list:
        content = self.si.RetrieveContent()
        container_view = content.viewManager.CreateContainerView(
            content.rootFolder, view_type, True
        )
        try:
            return list(container_view.view)
        finally:
            container_view.Destroy()

    def list_clusters(self) -> List[str]:
        return sorted(cluster.name for cluster in self._get_objects([vim.ClusterComputeResource]))

    def find_cluster(self, cluster_name: str) -> vim.ClusterComputeResource:
        for cluster in self._get_objects([vim.ClusterComputeResource]):
            if cluster.name == cluster_name:
                return cluster
        raise ClusterNotFound(cluster_name)

    def get_snapshot(self, cluster_name: str) -> ClusterSnapshot:
        """Resolve a cluster name to a snapshot of its hosts and VMs"""
        cluster = self.find_cluster(cluster_name)

        hosts = []
        vms = []
        # Host order is whatever the API returns; failover projections depend on it
        for host in cluster.host:
            host_sample, host_vms = self._collect_host(host)
            hosts.append(host_sample)
            vms.extend(host_vms)
            log(
                f"Collected host {host_sample.name}: {host_sample.vm_count} VMs, "
                f"{host_sample.ram_used_gb:.1f}/{host_sample.ram_total_gb:.1f} GB RAM"
            )

        log(f"Cluster {cluster_name}: {len(hosts)} hosts, {len(vms)} VMs")
        return ClusterSnapshot(name=cluster_name, hosts=tuple(hosts), vms=tuple(vms))

    def _collect_host(self, host: vim.HostSystem) -> Tuple[HostSample, List[VmSample]]:
        host_name = host.name
        try:
            state = str(host.summary.runtime.connectionState)
            if state != "connected":
                raise HostUnreachable(host_name, state)

            hardware = host.summary.hardware
            quick_stats = host.summary.quickStats
            vm_samples = [
                self._vm_sample(vm, host_name) for vm in host.vm if self._include_vm(vm)
            ]
        except vmodl.fault.HostCommunication as e:
            raise HostUnreachable(host_name) from e

        memory_used_mb = quick_stats.overallMemoryUsage or 0
        host_sample = HostSample(
            name=host_name,
            sockets=hardware.numCpuPkgs,
            cores=hardware.numCpuCores,
            threads=hardware.numCpuThreads,
            ram_total_gb=round(hardware.memorySize / BYTES_PER_GB, 2),
            ram_used_gb=round(memory_used_mb / MB_PER_GB, 2),
            cpu_model=hardware.cpuModel or "",
            vm_count=len(vm_samples),
            vcpu_count=sum(vm.vcpu for vm in vm_samples),
        )
        return host_sample, vm_samples

    def _include_vm(self, vm: vim.VirtualMachine) -> bool:
        # Orphaned/inaccessible VMs have no config
        if vm.config is None or vm.config.template:
            return False
        if self.powered_on_only and str(vm.runtime.powerState) != "poweredOn":
            return False
        return True

    @staticmethod
    def _vm_sample(vm: vim.VirtualMachine, host_name: str) -> VmSample:
        config = vm.summary.config
        return VmSample(
            name=vm.name,
            vcpu=config.numCpu or 0,
            ram_gb=round((config.memorySizeMB or 0) / MB_PER_GB, 2),
            host=host_name,
        )


def _require(entry: Dict[str, Any], key: str, where: str) -> Any:
    if entry.get(key) is None:
        raise InventoryError(f"Snapshot {where} is missing '{key}'")
    return entry[key]


def snapshot_from_dict(data: Dict[str, Any]) -> ClusterSnapshot:
    """Build a ClusterSnapshot from its YAML/dict form"""
    if not isinstance(data, dict):
        raise InventoryError("Snapshot must be a mapping with 'cluster', 'hosts' and 'vms'")

    cluster_name = str(_require(data, "cluster", "file"))

    vms = []
    for entry in data.get("vms") or []:
        name = str(_require(entry, "name", "VM entry"))
        vms.append(
            VmSample(
                name=name,
                vcpu=int(_require(entry, "vcpu", f"VM '{name}'")),
                ram_gb=float(_require(entry, "ram_gb", f"VM '{name}'")),
                host=entry.get("host"),
            )
        )

    hosts = []
    for entry in data.get("hosts") or []:
        name = str(_require(entry, "name", "host entry"))
        where = f"host '{name}'"
        cores = int(_require(entry, "cores", where))
        affiliated = [vm for vm in vms if vm.host == name]
        vm_count = entry.get("vm_count")
        vcpu_count = entry.get("vcpu_count")
        hosts.append(
            HostSample(
                name=name,
                sockets=int(entry.get("sockets", 1)),
                cores=cores,
                threads=int(entry.get("threads", cores)),
                ram_total_gb=float(_require(entry, "ram_total_gb", where)),
                ram_used_gb=float(_require(entry, "ram_used_gb", where)),
                cpu_model=str(entry.get("cpu_model", "")),
                vm_count=len(affiliated) if vm_count is None else int(vm_count),
                vcpu_count=sum(vm.vcpu for vm in affiliated) if vcpu_count is None else int(vcpu_count),
            )
        )

    return ClusterSnapshot(name=cluster_name, hosts=tuple(hosts), vms=tuple(vms))


def snapshot_to_dict(snapshot: ClusterSnapshot) -> Dict[str, Any]:
    return {
        "cluster": snapshot.name,
        "hosts": [
            {
                "name": host.name,
                "sockets": host.sockets,
                "cores": host.cores,
                "threads": host.threads,
                "ram_total_gb": host.ram_total_gb,
                "ram_used_gb": host.ram_used_gb,
                "cpu_model": host.cpu_model,
                "vm_count": host.vm_count,
                "vcpu_count": host.vcpu_count,
            }
            for host in snapshot.hosts
        ],
        "vms": [
            {"name": vm.name, "vcpu": vm.vcpu, "ram_gb": vm.ram_gb, "host": vm.host}
            for vm in snapshot.vms
        ],
    }


def load_snapshot_file(path: Path) -> ClusterSnapshot:
    """Load a cluster snapshot saved as YAML"""
    if not path.exists():
        raise InventoryError(f"Snapshot file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise InventoryError(f"Failed to load snapshot {path}: {e}") from e

    try:
        return snapshot_from_dict(data)
    except (AttributeError, TypeError, ValueError) as e:
        raise InventoryError(f"Invalid snapshot {path}: {e}") from e


def save_snapshot_file(snapshot: ClusterSnapshot, path: Path) -> None:
    """Write a cluster snapshot as YAML"""
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(snapshot_to_dict(snapshot), f, sort_keys=False)
    log(f"Snapshot saved to {path}")
