"""Reconciliation runs for vps-ops-kit: plan, confirm, execute."""

from dataclasses import dataclass, field

from rich.console import Console
from rich.table import Table

from opskit.audit import FAILURE_OUTCOMES, AuditEntry, AuditLog, Outcome, new_run_id
from opskit.directives import DirectiveSet
from opskit.errors import ApplyRejected, ResourceUnavailable, ValidationFailed
from opskit.executor import execute
from opskit.gate import ConfirmationGate
from opskit.planner import ActionKind, Plan, plan
from opskit.snapshots import SnapshotStore

console = Console()

ACTION_STYLES = {
    ActionKind.SKIP: "dim",
    ActionKind.ADD: "green",
    ActionKind.REPLACE: "yellow",
    ActionKind.REMOVE: "red",
    ActionKind.ABORT: "bold red",
}


@dataclass
class RunResult:
    """Everything one reconciliation run produced."""

    run_id: str
    plan: Plan
    entries: list[AuditEntry] = field(default_factory=list)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for entry in self.entries if entry.outcome == outcome)

    @property
    def failed(self) -> bool:
        return any(entry.outcome in FAILURE_OUTCOMES for entry in self.entries)


def show_plan(plan: Plan) -> None:
    """Print a plan as a table."""
    table = Table(title=f"Plan: {plan.name}", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Resource")
    table.add_column("Key")
    table.add_column("Desired")
    table.add_column("Current")
    table.add_column("Action")
    table.add_column("Why", style="dim")

    for index, action in enumerate(plan.actions, start=1):
        directive = action.directive
        desired = "(absent)" if directive.removes else (directive.value or "(present)")
        style = ACTION_STYLES[action.kind]
        table.add_row(
            str(index),
            directive.resource,
            directive.key,
            desired,
            action.current if action.current is not None else "-",
            f"[{style}]{action.kind.value}[/{style}]",
            action.rationale,
        )
    console.print(table)

    for index, action in enumerate(plan.actions, start=1):
        if action.note:
            console.print(f"[yellow]⚠ #{index}: {action.note}[/yellow]")

    counts = ", ".join(f"{count} {kind}" for kind, count in plan.counts().items())
    console.print(f"[dim]{counts or 'no directives'}[/dim]")


def preview(directive_set: DirectiveSet, registry) -> Plan:
    """Plan a directive set and show what would change. Writes nothing."""
    console.print(f"\n[bold blue]Planning: {directive_set.name}[/bold blue]\n")
    result = plan(directive_set, registry)
    show_plan(result)
    if result.converged:
        console.print("[green]✓ Already converged - nothing to change[/green]")
    return result


def reconcile(
    directive_set: DirectiveSet,
    registry,
    gate: ConfirmationGate,
    store: SnapshotStore,
    audit: AuditLog,
    run_id: str | None = None,
) -> RunResult:
    """One full plan-then-execute cycle."""
    run_id = run_id or new_run_id()
    planned = preview(directive_set, registry)

    console.print(f"\n[bold blue]Applying: {directive_set.name}[/bold blue] [dim](run {run_id})[/dim]\n")
    approved, _ = gate.review(planned, registry)
    entries = execute(approved, registry, store, audit, run_id)
    result = RunResult(run_id=run_id, plan=planned, entries=entries)

    console.print(
        f"\n[bold]{result.count(Outcome.APPLIED)} applied, "
        f"{result.count(Outcome.SKIPPED)} unchanged, "
        f"{result.count(Outcome.DECLINED)} declined, "
        f"{result.count(Outcome.ABORTED)} aborted, "
        f"{sum(result.count(o) for o in FAILURE_OUTCOMES)} failed, "
        f"{result.count(Outcome.CONVERGENCE_MISMATCH)} mismatched[/bold]"
    )
    return result


def rollback(snapshot_id: str, registry, store: SnapshotStore, audit: AuditLog | None = None) -> str:
    """Restore a resource from a stored snapshot.

    The current content is snapshotted first, so a rollback can itself be
    undone. If the restored content fails validation the pre-rollback
    content is put back and ValidationFailed is raised. Either way the
    attempt is audited under its own run id. Returns the id of the safety
    snapshot.
    """
    snapshot = store.load(snapshot_id)
    adapter = registry.get(snapshot.resource)
    if not adapter.file_like:
        raise ApplyRejected(f"{adapter.name}: resource does not support snapshots")

    console.print(f"[cyan]Restoring {adapter.name} from snapshot {snapshot_id}...[/cyan]")
    current = adapter.probe()
    safety = store.save(adapter.name, adapter.kind, current.content)
    console.print(f"[dim]  Current content saved as {safety.id}[/dim]")

    def record(outcome: Outcome, detail: str) -> None:
        if audit is None:
            return
        audit.append(AuditEntry(
            run_id=new_run_id(),
            outcome=outcome,
            detail=detail,
            snapshot_ref=safety.id,
            resource=adapter.name,
            restored_from=snapshot_id,
        ))

    adapter.restore(snapshot)
    if adapter.supports_validation:
        try:
            adapter.validate()
        except (ValidationFailed, ResourceUnavailable) as e:
            adapter.restore(safety)
            record(Outcome.ROLLED_BACK, f"{e}; previous content put back")
            console.print("[red]✗ Restored content failed validation - previous content put back[/red]")
            raise

    adapter.reload()
    record(Outcome.RESTORED, f"restored {snapshot_id}; previous content saved as {safety.id}")
    console.print(f"[green]✓ {adapter.name} restored from {snapshot_id}[/green]")
    return safety.id
