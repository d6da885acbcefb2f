"""Run report generation for vps-ops-kit."""

from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader
from rich.console import Console

from opskit.audit import FAILURE_OUTCOMES, Outcome
from opskit.config import OpsKitConfig
from opskit.reconcile import RunResult

console = Console()

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


def generate_report(
    config: OpsKitConfig,
    result: RunResult,
    output_dir: str | Path | None = None,
) -> Path:
    """Write a Markdown report of one reconciliation run.

    Args:
        config: The vps-ops-kit configuration
        result: The finished run
        output_dir: Directory to write the report (defaults to the state dir)

    Returns:
        Path to the generated report
    """
    console.print("[cyan]Generating run report...[/cyan]")

    env = Environment(loader=FileSystemLoader(TEMPLATE_DIR))
    template = env.get_template("run-report.md.j2")

    unconverged = [
        entry for entry in result.entries
        if entry.outcome in FAILURE_OUTCOMES
        or entry.outcome in (Outcome.ABORTED, Outcome.DECLINED, Outcome.CONVERGENCE_MISMATCH)
    ]
    context = {
        "date": datetime.now().strftime("%Y-%m-%d %H:%M"),
        "host": config.server.host,
        "run_id": result.run_id,
        "plan_name": result.plan.name,
        "entries": result.entries,
        "unconverged": unconverged,
        "snapshots": [entry.snapshot_ref for entry in result.entries if entry.snapshot_ref],
        "counts": {outcome.value: result.count(outcome) for outcome in Outcome},
        "snapshot_dir": config.paths.snapshot_dir,
        "audit_dir": config.paths.audit_dir,
    }

    content = template.render(**context)

    output_dir = Path(output_dir) if output_dir else config.paths.report_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"run-{result.run_id}.md"
    output_path.write_text(content)

    console.print(f"[green]✓ Run report saved to: {output_path}[/green]")
    return output_path
