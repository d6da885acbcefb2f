"""Plan execution for vps-ops-kit."""

from rich.console import Console

from opskit.audit import AuditEntry, AuditLog, Outcome, new_run_id
from opskit.errors import ApplyRejected, ResourceUnavailable, ValidationFailed
from opskit.planner import Action, ActionKind, Plan, is_converged, plan_action
from opskit.prober import probe
from opskit.snapshots import SnapshotStore

console = Console()


def _execute_action(action: Action, registry, store: SnapshotStore) -> tuple[Outcome, str, str | None]:
    """Run one action. Returns (outcome, detail, snapshot id)."""
    if action.kind == ActionKind.SKIP:
        return (Outcome.DECLINED if action.declined else Outcome.SKIPPED), action.rationale, None
    if action.kind == ActionKind.ABORT:
        return (Outcome.UNAVAILABLE if action.unavailable else Outcome.ABORTED), action.rationale, None

    directive = action.directive
    adapter = registry.adapter_for(directive)

    # Re-plan against live state so an earlier action (or a duplicate
    # directive) that already converged this key is not applied twice
    try:
        before = probe(adapter)
    except ResourceUnavailable as e:
        return Outcome.UNAVAILABLE, str(e), None
    try:
        fresh = plan_action(directive, adapter, before.values)
    except ResourceUnavailable as e:
        return Outcome.UNAVAILABLE, str(e), None
    if fresh.kind == ActionKind.SKIP:
        return Outcome.SKIPPED, f"already converged ({fresh.rationale})", None
    if fresh.kind == ActionKind.ABORT:
        return Outcome.ABORTED, fresh.rationale, None
    if fresh.kind != action.kind:
        return Outcome.FAILED, f"resource changed since planning (now {fresh.kind.value}); re-run plan", None

    snapshot = None
    if adapter.file_like:
        snapshot = store.save(adapter.name, adapter.kind, before.raw.content)
    snapshot_ref = snapshot.id if snapshot else None

    try:
        adapter.apply(fresh, before.values)
    except ApplyRejected as e:
        return Outcome.FAILED, str(e), snapshot_ref
    except ResourceUnavailable as e:
        return Outcome.UNAVAILABLE, str(e), snapshot_ref

    if adapter.supports_validation:
        try:
            adapter.validate()
        except (ValidationFailed, ResourceUnavailable) as e:
            if snapshot is None:
                return Outcome.FAILED, f"{e}; no snapshot to roll back to", snapshot_ref
            try:
                adapter.restore(snapshot)
            except (ApplyRejected, ResourceUnavailable) as restore_error:
                return Outcome.FAILED, f"{e}; rollback failed: {restore_error}", snapshot_ref
            return Outcome.ROLLED_BACK, str(e), snapshot_ref

    try:
        after = probe(adapter)
    except ResourceUnavailable as e:
        return Outcome.CONVERGENCE_MISMATCH, f"re-probe failed: {e}", snapshot_ref
    if not is_converged(directive, adapter, after.values):
        current = after.values.get(adapter.canonical_key(directive.key))
        return Outcome.CONVERGENCE_MISMATCH, f"re-probe found {current!r}", snapshot_ref

    detail = fresh.rationale
    if action.note:
        detail = f"{detail}; {action.note}"
    return Outcome.APPLIED, detail, snapshot_ref


def _report(entry: AuditEntry) -> None:
    label = entry.label
    outcome = entry.outcome
    if outcome == Outcome.APPLIED:
        console.print(f"[green]✓ {entry.action.kind.value}: {label}[/green]")
        if entry.action.note:
            console.print(f"[yellow]  ⚠ {entry.action.note}[/yellow]")
    elif outcome == Outcome.SKIPPED:
        console.print(f"[dim]  {label} ({entry.detail})[/dim]")
    elif outcome == Outcome.DECLINED:
        console.print(f"[yellow]⚠ {label}: operator declined[/yellow]")
    elif outcome == Outcome.CONVERGENCE_MISMATCH:
        console.print(f"[yellow]⚠ {label}: convergence mismatch - {entry.detail}[/yellow]")
    elif outcome == Outcome.ROLLED_BACK:
        console.print(f"[red]✗ {label}: rolled back - {entry.detail}[/red]")
    else:
        console.print(f"[red]✗ {label}: {outcome.value} - {entry.detail}[/red]")
    if entry.snapshot_ref and outcome != Outcome.SKIPPED:
        console.print(f"[dim]  snapshot: {entry.snapshot_ref}[/dim]")


def _reload(adapters: list) -> None:
    for adapter in adapters:
        if not adapter.reload_command:
            continue
        console.print(f"[cyan]Reloading {adapter.name} ({adapter.reload_command})...[/cyan]")
        try:
            adapter.reload()
        except (ApplyRejected, ResourceUnavailable) as e:
            console.print(f"[red]✗ Reload failed: {e}[/red]")
        else:
            console.print(f"[green]✓ {adapter.name} reloaded[/green]")


def execute(
    plan: Plan,
    registry,
    store: SnapshotStore,
    audit: AuditLog,
    run_id: str | None = None,
    reload: bool = True,
) -> list[AuditEntry]:
    """Apply a plan's actions in order and audit every one of them.

    One action's failure never stops the rest. Resources that changed are
    reloaded once at the end, after all of their writes have validated.
    """
    run_id = run_id or new_run_id()
    entries = []
    changed = {}
    for action in plan.actions:
        outcome, detail, snapshot_ref = _execute_action(action, registry, store)
        entry = AuditEntry(
            run_id=run_id,
            action=action,
            outcome=outcome,
            detail=detail,
            snapshot_ref=snapshot_ref,
        )
        audit.append(entry)
        entries.append(entry)
        _report(entry)

        if outcome == Outcome.APPLIED:
            adapter = registry.adapter_for(action.directive)
            changed[adapter.name] = adapter

    if reload:
        _reload(list(changed.values()))

    return entries
