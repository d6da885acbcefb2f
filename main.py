#!/usr/bin/env python3
"""vps-ops-kit: Idempotent firewall, SSH, fail2ban and backup configuration for a VPS."""

import argparse
import sys
from datetime import datetime

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from opskit.audit import AuditLog
from opskit.config import OpsKitConfig, load_config, validate_config
from opskit.directives import DirectiveSet, load_directives
from opskit.errors import MalformedDirective, OpsKitError
from opskit.gate import ConfirmationGate
from opskit.presets import PRESETS, get_preset
from opskit.reconcile import preview, reconcile, rollback
from opskit.report import generate_report
from opskit.resources import ResourceRegistry
from opskit.snapshots import SnapshotStore
from opskit.ssh import SSHConnection

console = Console()


def print_banner():
    """Print the vps-ops-kit banner."""
    console.print(Panel.fit(
        "[bold cyan]vps-ops-kit[/bold cyan]\n"
        "[dim]Idempotent server configuration[/dim]",
        border_style="blue",
    ))


def load_and_check_config(config_path: str | None) -> OpsKitConfig:
    """Load the config file, print warnings, exit on errors."""
    source = config_path or "built-in defaults"
    console.print(f"[cyan]Loading config from {source}...[/cyan]")
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValidationError, ValueError) as e:
        console.print(f"[red]✗ Config error: {e}[/red]")
        sys.exit(1)
    console.print("[green]✓ Config loaded and validated[/green]")

    for warning in validate_config(config):
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    return config


def connect(config: OpsKitConfig) -> SSHConnection:
    """Open the connection to the target host, exiting if it is unreachable."""
    ssh = SSHConnection(config)
    if ssh.is_local:
        console.print("[dim]Operating on the local machine[/dim]")
        return ssh

    console.print(f"[cyan]Connecting to {config.server.host}...[/cyan]")
    if not ssh.test_connection():
        console.print("[red]✗ Could not connect to server[/red]")
        sys.exit(1)
    console.print("[green]✓ SSH connection established[/green]")
    os_info = ssh.get_os_info()
    console.print(f"[dim]Target: {os_info.get('PRETTY_NAME', 'unknown OS')}, kernel {os_info.get('kernel', '?')}[/dim]")
    return ssh


def gather_directives(args) -> DirectiveSet:
    """Combine the requested presets and directive files, in command-line order."""
    options = {
        "disable_password_auth": getattr(args, "disable_password_auth", False),
        "backup_schedule": getattr(args, "backup_schedule", "daily"),
    }
    sets = []
    try:
        for name in args.preset or []:
            sets.append(get_preset(name, **options))
        for path in args.file or []:
            sets.append(load_directives(path))
    except (KeyError, FileNotFoundError, MalformedDirective) as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    if not sets:
        console.print("[red]✗ Nothing to do: pass at least one --preset or --file[/red]")
        sys.exit(1)

    combined = sets[0]
    for extra in sets[1:]:
        combined = combined.extend(extra)
    return combined


def cmd_plan(args) -> int:
    config = load_and_check_config(args.config)
    ssh = connect(config)
    try:
        registry = ResourceRegistry.from_config(config, ssh)
        preview(gather_directives(args), registry)
    except MalformedDirective as e:
        console.print(f"[red]✗ Malformed directive set: {e}[/red]")
        return 1
    finally:
        ssh.close()
    return 0


def cmd_apply(args) -> int:
    config = load_and_check_config(args.config)
    directive_set = gather_directives(args)
    ssh = connect(config)

    if args.yes:
        mode = "approve"
    elif args.decline_risky or not sys.stdin.isatty():
        mode = "decline"
    else:
        mode = "prompt"

    start_time = datetime.now()
    try:
        registry = ResourceRegistry.from_config(config, ssh)
        result = reconcile(
            directive_set,
            registry,
            ConfirmationGate(mode=mode),
            SnapshotStore(config.paths.snapshot_dir),
            AuditLog(config.paths.audit_dir),
        )
    except MalformedDirective as e:
        console.print(f"[red]✗ Malformed directive set: {e}[/red]")
        return 1
    finally:
        ssh.close()

    report_line = ""
    if args.report:
        report_path = generate_report(config, result, args.output_dir)
        report_line = f"Report: {report_path}\n"

    elapsed = datetime.now() - start_time
    style = "red" if result.failed else "green"
    headline = "Run finished with failures" if result.failed else "Run complete"
    console.print(Panel.fit(
        f"[bold {style}]{headline}[/bold {style}]\n\n"
        f"Run id: {result.run_id}\n"
        f"Time elapsed: {elapsed.total_seconds():.0f} seconds\n"
        f"{report_line}"
        f"Audit log: {config.paths.audit_dir}\n\n"
        "[yellow]Test SSH access in a NEW terminal before closing this one![/yellow]",
        border_style=style,
    ))
    return 2 if result.failed else 0


def cmd_rollback(args) -> int:
    config = load_and_check_config(args.config)
    ssh = connect(config)
    try:
        registry = ResourceRegistry.from_config(config, ssh)
        rollback(
            args.snapshot_id,
            registry,
            SnapshotStore(config.paths.snapshot_dir),
            AuditLog(config.paths.audit_dir),
        )
    except (FileNotFoundError, KeyError, OpsKitError) as e:
        console.print(f"[red]✗ Rollback failed: {e}[/red]")
        return 1
    finally:
        ssh.close()
    return 0


def cmd_snapshots(args) -> int:
    config = load_and_check_config(args.config)
    store = SnapshotStore(config.paths.snapshot_dir)
    snapshots = store.list(args.resource)
    if not snapshots:
        console.print("[dim]No snapshots stored[/dim]")
        return 0

    table = Table(title=f"Snapshots in {store.base_dir}")
    table.add_column("Id")
    table.add_column("Resource")
    table.add_column("Captured")
    table.add_column("Size", justify="right")
    for snapshot in snapshots:
        size = "absent" if snapshot.raw_content is None else f"{len(snapshot.raw_content)} B"
        table.add_row(
            snapshot.id,
            snapshot.resource,
            snapshot.captured_at.strftime("%Y-%m-%d %H:%M:%S"),
            size,
        )
    console.print(table)
    return 0


def cmd_audit(args) -> int:
    config = load_and_check_config(args.config)
    audit = AuditLog(config.paths.audit_dir)
    run_id = args.run or audit.last_run_id()
    if run_id is None:
        console.print("[dim]Audit log is empty[/dim]")
        return 0

    entries = audit.read_entries(run_id)
    table = Table(title=f"Run {run_id}")
    table.add_column("Time", style="dim")
    table.add_column("Directive")
    table.add_column("Action")
    table.add_column("Outcome")
    table.add_column("Detail", style="dim")
    table.add_column("Snapshot", style="dim")
    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%H:%M:%S"),
            entry.label,
            entry.action.kind.value if entry.action else "restore",
            entry.outcome.value,
            entry.detail,
            entry.snapshot_ref or "",
        )
    console.print(table)
    return 0


def cmd_presets(args) -> int:
    table = Table(title="Presets")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Directives", justify="right")
    for name, (description, factory) in PRESETS.items():
        table.add_row(name, description, str(len(factory())))
    console.print(table)
    return 0


def add_directive_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("config", nargs="?", help="Path to the YAML configuration file")
    parser.add_argument(
        "--preset", "-p",
        action="append",
        choices=list(PRESETS),
        help="Built-in directive set (repeatable)",
    )
    parser.add_argument(
        "--file", "-f",
        action="append",
        help="YAML directive file (repeatable)",
    )
    parser.add_argument(
        "--disable-password-auth",
        action="store_true",
        help="ssh presets: also turn off PasswordAuthentication",
    )
    parser.add_argument(
        "--backup-schedule",
        default="daily",
        help="backup-schedule preset: daily, weekly or a cron expression (default: daily)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Idempotent firewall, SSH, fail2ban and backup configuration for a VPS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="Show what would change without changing anything")
    add_directive_args(plan_parser)
    plan_parser.set_defaults(func=cmd_plan)

    apply_parser = subparsers.add_parser("apply", help="Plan and apply directives")
    add_directive_args(apply_parser)
    gate = apply_parser.add_mutually_exclusive_group()
    gate.add_argument("--yes", "-y", action="store_true", help="Approve risky changes without asking")
    gate.add_argument(
        "--decline-risky",
        action="store_true",
        help="Skip risky changes without asking (default when stdin is not a terminal)",
    )
    apply_parser.add_argument("--report", action="store_true", help="Write a Markdown run report")
    apply_parser.add_argument("--output-dir", "-o", help="Directory for the run report")
    apply_parser.set_defaults(func=cmd_apply)

    rollback_parser = subparsers.add_parser("rollback", help="Restore a resource from a snapshot")
    rollback_parser.add_argument("config", nargs="?", help="Path to the YAML configuration file")
    rollback_parser.add_argument("snapshot_id", help="Snapshot id (see 'snapshots')")
    rollback_parser.set_defaults(func=cmd_rollback)

    snapshots_parser = subparsers.add_parser("snapshots", help="List stored snapshots")
    snapshots_parser.add_argument("config", nargs="?", help="Path to the YAML configuration file")
    snapshots_parser.add_argument("--resource", help="Only show snapshots of this resource")
    snapshots_parser.set_defaults(func=cmd_snapshots)

    audit_parser = subparsers.add_parser("audit", help="Show the audit log for a run")
    audit_parser.add_argument("config", nargs="?", help="Path to the YAML configuration file")
    audit_parser.add_argument("--run", help="Run id (default: the most recent run)")
    audit_parser.set_defaults(func=cmd_audit)

    presets_parser = subparsers.add_parser("presets", help="List built-in directive sets")
    presets_parser.set_defaults(func=cmd_presets)

    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    print_banner()

    try:
        code = args.func(args)
    except OpsKitError as e:
        console.print(f"\n[bold red]Error: {e}[/bold red]")
        code = 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Re-run 'plan' to see what still needs converging.[/yellow]")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
