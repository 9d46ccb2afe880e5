#!/usr/bin/env python3
"""
ABOUTME: Cluster capacity and failover headroom report for vSphere clusters.
ABOUTME: Collects host/VM figures from vCenter (or a saved snapshot) and renders the report.

Usage:
    capacity_report.py --cluster prod-01                    # Table report from vCenter
    capacity_report.py --cluster prod-01 --failover 1,2,3   # Project loss of 1, 2 and 3 hosts
    capacity_report.py --cluster prod-01 --format json      # Machine-readable output
    capacity_report.py --snapshot config/sample-snapshot.yaml
    capacity_report.py --list-clusters

Examples:
    # Save the collected inventory and re-run the report offline later
    capacity_report.py --cluster prod-01 --save-snapshot prod-01.yaml
    capacity_report.py --snapshot prod-01.yaml --format html --output prod-01.html

    # Export per-host rows for a spreadsheet
    capacity_report.py --cluster prod-01 --export-csv hosts.csv

Exit codes:
    0  success
    1  configuration, inventory or capacity error
    2  cluster not found
    3  not enough hosts for the requested failover projection
    130 cancelled
"""

import argparse
import csv
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader

from capacity_console import Colors, close_log, log, open_log, print_message
from capacity_engine import (
    RESERVED_RAM_FRACTION,
    CapacityReportError,
    ClusterNotFound,
    ClusterReport,
    ClusterSnapshot,
    HostReport,
    compute_cluster_report,
    compute_host_reports,
    round_half_away,
)
from capacity_inventory import (
    VSphereInventory,
    connect_vcenter,
    disconnect_vcenter,
    load_snapshot_file,
    save_snapshot_file,
)
from capacity_secrets import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_REPORT_SETTINGS,
    PROJECT_DIR,
    REPORT_FORMATS,
    load_config,
    load_config_with_secrets,
    parse_failover_counts,
)

TEMPLATE_DIR = PROJECT_DIR / "config"
HTML_TEMPLATE = "capacity-report.html.j2"

FORMATS = REPORT_FORMATS

CSV_FIELDS = [
    ("Host", "name"),
    ("Model", "model"),
    ("Sockets", "sockets"),
    ("Cores", "cores"),
    ("Threads", "threads"),
    ("VMs", "vm_count"),
    ("vCPUs", "vcpu_count"),
    ("vCPU per Core", "vcpu_per_core"),
    ("RAM Total GB", "ram_total_gb"),
    ("RAM Used GB", "ram_used_gb"),
    ("RAM Free GB", "ram_free_gb"),
    ("RAM Usage %", "usage_percent"),
    ("RAM Reserved GB", "reserved_gb"),
    ("RAM Available GB", "available_gb"),
]


def capacity_status(usage_percent: int) -> str:
    """Traffic-light status for a RAM usage percentage"""
    if usage_percent >= 85:
        return "CRITICAL"
    if usage_percent >= 70:
        return "WARNING"
    return "HEALTHY"


def _gb(value: float) -> int:
    return round_half_away(value)


def render_table(
    cluster: ClusterReport,
    hosts: Sequence[HostReport],
    generated: Optional[datetime] = None,
) -> str:
    """Fixed-width text rendering of the cluster and host reports"""
    generated = generated or datetime.now()
    reserved_pct = round_half_away(RESERVED_RAM_FRACTION * 100)
    lines = []

    lines.append("=" * 80)
    lines.append(f"Cluster Capacity Report: {cluster.cluster_name}")
    lines.append(f"Generated: {generated.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append("=" * 80)

    lines.append("")
    lines.append(f"  Hosts:              {cluster.host_count:>8}")
    lines.append(f"  VMs:                {cluster.vm_count:>8}   ({cluster.vms_per_host:.1f} per host)")
    lines.append(f"  Sockets / Cores:    {cluster.total_sockets:>8} / {cluster.total_cores} ({cluster.total_threads} threads)")
    lines.append(f"  vCPUs:              {cluster.total_vcpu:>8}   ({cluster.vcpu_per_core:.1f} per core)")

    lines.append("")
    lines.append("Memory:")
    lines.append("─" * 80)
    lines.append(f"  Physical RAM:       {_gb(cluster.total_ram_gb):>8} GB")
    lines.append(f"  Used:               {_gb(cluster.used_ram_gb):>8} GB   ({cluster.usage_percent}%)")
    lines.append(f"  Free:               {cluster.free_ram_gb:>8} GB")
    lines.append(f"  Reserved ({reserved_pct}%):     {cluster.reserved_ram_gb:>8} GB")
    lines.append(f"  Available:          {cluster.available_ram_gb:>8} GB")
    lines.append(f"  Allocated to VMs:   {_gb(cluster.total_alloc_ram_gb):>8} GB   ({cluster.avg_ram_per_vm:.1f} GB per VM)")
    lines.append(f"  Est. new VMs:       {cluster.est_new_vms_baseline:>8}")

    if cluster.failover:
        lines.append("")
        lines.append("Failover Headroom:")
        lines.append("─" * 80)
        lines.append(
            f"  {'Hosts Lost':>10} {'Cores Left':>11} {'vCPU/Core':>10} "
            f"{'RAM Left GB':>12} {'Avail GB':>10} {'Est. New VMs':>13}"
        )
        for headroom in cluster.failover:
            lines.append(
                f"  {headroom.hosts_lost:>10} {headroom.cores_after_failover:>11} "
                f"{headroom.vcpu_per_core_after_failover:>10} "
                f"{_gb(headroom.ram_after_failover_gb):>12} "
                f"{headroom.ram_available_after_failover_gb:>10} "
                f"{headroom.est_new_vms_after_failover:>13}"
            )

    lines.append("")
    status = capacity_status(cluster.usage_percent)
    if status == "CRITICAL":
        lines.append("Capacity Status: 🚨 CRITICAL - Low headroom available")
    elif status == "WARNING":
        lines.append("Capacity Status: ⚠ WARNING - Moderate headroom")
    else:
        lines.append("Capacity Status: ✓ HEALTHY - Sufficient headroom available")

    lines.append("")
    lines.append("Hosts:")
    lines.append("─" * 80)
    lines.append(
        f"  {'Host':<24} {'Sock':>4} {'Cores':>5} {'Thr':>4} {'VMs':>4} {'vCPU':>5} "
        f"{'vCPU/C':>6} {'RAM GB':>7} {'Used':>6} {'Free':>6} {'Use%':>5} {'Rsv':>5} {'Avail':>6}"
    )
    for host in hosts:
        lines.append(
            f"  {host.name:<24} {host.sockets:>4} {host.cores:>5} {host.threads:>4} "
            f"{host.vm_count:>4} {host.vcpu_count:>5} {host.vcpu_per_core:>6.2f} "
            f"{_gb(host.ram_total_gb):>7} {_gb(host.ram_used_gb):>6} {host.ram_free_gb:>6} "
            f"{host.usage_percent:>5} {host.reserved_gb:>5} {host.available_gb:>6}"
        )
    if hosts:
        lines.append(f"  Model: {hosts[0].model}")

    return "\n".join(lines)


def report_to_dict(cluster: ClusterReport, hosts: Sequence[HostReport]) -> Dict[str, Any]:
    return {
        "cluster": cluster.to_dict(),
        "hosts": [host.to_dict() for host in hosts],
    }


def render_json(cluster: ClusterReport, hosts: Sequence[HostReport]) -> str:
    return json.dumps(report_to_dict(cluster, hosts), indent=2)


def render_html(
    cluster: ClusterReport,
    hosts: Sequence[HostReport],
    generated: Optional[datetime] = None,
    template_dir: Path = TEMPLATE_DIR,
) -> str:
    """Render the report with the Jinja2 HTML template"""
    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template(HTML_TEMPLATE)
    return template.render(
        cluster=cluster,
        hosts=hosts,
        status=capacity_status(cluster.usage_percent),
        reserved_pct=round_half_away(RESERVED_RAM_FRACTION * 100),
        generated=(generated or datetime.now()).strftime("%Y-%m-%d %H:%M:%S"),
    )


def render_report(fmt: str, cluster: ClusterReport, hosts: Sequence[HostReport]) -> str:
    if fmt == "json":
        return render_json(cluster, hosts)
    if fmt == "html":
        return render_html(cluster, hosts)
    if fmt == "table":
        return render_table(cluster, hosts)
    raise ValueError(f"Unknown report format: {fmt}")


def export_to_csv(hosts: Sequence[HostReport], output_path: str) -> None:
    """Export per-host report rows to CSV file"""
    with open(output_path, "w", newline="", encoding="utf-8") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=[title for title, _ in CSV_FIELDS])
        writer.writeheader()
        for host in hosts:
            writer.writerow({title: getattr(host, attr) for title, attr in CSV_FIELDS})


def parse_failover(value: str) -> List[int]:
    """Parse a comma-separated list of host-loss counts, e.g. '1,2'"""
    try:
        return parse_failover_counts(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Cluster capacity and failover headroom report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--cluster", help="Cluster name in vCenter")
    parser.add_argument(
        "--failover",
        type=parse_failover,
        help="Comma-separated host-loss counts to project (default from config: 1,2)",
    )
    parser.add_argument(
        "--format",
        choices=FORMATS,
        help="Report format (default from config: table)",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_FILE),
        help="Path to configuration file",
    )
    parser.add_argument(
        "--snapshot",
        metavar="FILE",
        help="Report from a saved YAML snapshot instead of vCenter",
    )
    parser.add_argument(
        "--save-snapshot",
        metavar="FILE",
        help="Save the collected snapshot as YAML",
    )
    parser.add_argument("--output", metavar="FILE", help="Write the report to a file")
    parser.add_argument(
        "--export-csv",
        metavar="FILE",
        help="Export per-host rows to CSV file",
    )
    parser.add_argument(
        "--list-clusters",
        action="store_true",
        help="List clusters in vCenter and exit",
    )
    parser.add_argument("--log", type=str, help="Write detailed log to file")

    args = parser.parse_args(argv)
    if not (args.cluster or args.snapshot or args.list_clusters):
        parser.error("one of --cluster, --snapshot or --list-clusters is required")
    return args


def _load_settings(args: argparse.Namespace, live: bool) -> Dict[str, Any]:
    config_path = Path(args.config)
    if live:
        return load_config_with_secrets(config_path)
    # Offline reports only need the report defaults
    if config_path.exists():
        return load_config(config_path)
    return {"report": dict(DEFAULT_REPORT_SETTINGS)}


def _collect_snapshot(args: argparse.Namespace, inventory: Optional[VSphereInventory]) -> ClusterSnapshot:
    if inventory is None:
        snapshot = load_snapshot_file(Path(args.snapshot))
        if args.cluster and args.cluster != snapshot.name:
            raise ClusterNotFound(args.cluster)
        return snapshot
    return inventory.get_snapshot(args.cluster)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the capacity report CLI"""
    args = parse_args(argv)
    open_log(args.log)

    live = args.snapshot is None
    si = None
    try:
        config = _load_settings(args, live)
        report_settings = config["report"]
        fmt = args.format or report_settings["format"]
        failover = args.failover if args.failover is not None else report_settings["failover"]

        # Keep stdout clean when it carries machine-readable output
        status_stream = sys.stderr if (fmt != "table" and not args.output) else sys.stdout

        inventory = None
        if live:
            si = connect_vcenter(config["vcenter"], config["vcenter"]["password"], status_stream)
            inventory = VSphereInventory(si, powered_on_only=report_settings["powered_on_only"])

            if args.list_clusters:
                for name in inventory.list_clusters():
                    print(name)
                return 0

        snapshot = _collect_snapshot(args, inventory)
        if args.list_clusters:
            print(snapshot.name)
            return 0
        log(f"Snapshot {snapshot.name}: {len(snapshot.hosts)} hosts, {len(snapshot.vms)} VMs")

        if args.save_snapshot:
            save_snapshot_file(snapshot, Path(args.save_snapshot))
            print_message(Colors.GREEN, f"✓ Snapshot saved to: {args.save_snapshot}", status_stream)

        orphans = snapshot.unaffiliated_vms()
        if orphans:
            print_message(
                Colors.YELLOW,
                f"⚠ {len(orphans)} VM(s) reference hosts outside the cluster: "
                + ", ".join(vm.name for vm in orphans),
                status_stream,
            )

        cluster_report = compute_cluster_report(snapshot, failover)
        host_reports = compute_host_reports(snapshot)
        rendered = render_report(fmt, cluster_report, host_reports)

        if args.output:
            Path(args.output).write_text(rendered + "\n", encoding="utf-8")
            print_message(Colors.GREEN, f"✓ Report written to: {args.output}", status_stream)
        else:
            print(rendered)

        if args.export_csv:
            export_to_csv(host_reports, args.export_csv)
            print_message(Colors.GREEN, f"✓ Host rows exported to: {args.export_csv}", status_stream)

        return 0

    except CapacityReportError as e:
        print_message(Colors.RED, f"ERROR: {e}", sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user", file=sys.stderr)
        return 130
    except Exception as e:  # pylint: disable=broad-except
        print_message(Colors.RED, f"Error: {e}", sys.stderr)
        return 1
    finally:
        disconnect_vcenter(si)
        close_log()


if __name__ == "__main__":
    sys.exit(main())
