"""Confirmation gate for risky actions."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Literal

from rich.console import Console
from rich.prompt import Confirm

from opskit.planner import OPERATOR_DECLINED, Action, ActionKind, Plan

console = Console()

GateMode = Literal["prompt", "approve", "decline"]


class GateState(str, Enum):
    PLANNED = "planned"
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


TRANSITIONS = {
    GateState.PLANNED: (GateState.PENDING, GateState.APPROVED),
    GateState.PENDING: (GateState.APPROVED, GateState.DECLINED),
    GateState.APPROVED: (),
    GateState.DECLINED: (),
}


@dataclass
class GateDecision:
    """Where one planned action ended up."""

    action: Action
    risky: bool = False
    state: GateState = GateState.PLANNED

    def move(self, new_state: GateState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise ValueError(f"Cannot move a gate decision from {self.state.value} to {new_state.value}")
        self.state = new_state


def _ask(question: str) -> bool:
    return Confirm.ask(question, default=False)


class ConfirmationGate:
    """Holds risky actions until the operator approves them.

    ``mode`` decides pending actions: ``prompt`` asks on the console,
    ``approve`` accepts them all, ``decline`` refuses them all.
    """

    def __init__(self, mode: GateMode = "prompt", ask: Callable[[str], bool] | None = None):
        self.mode = mode
        self.ask = ask or _ask

    def _resolve(self, decision: GateDecision, resource: str) -> None:
        if self.mode == "approve":
            decision.move(GateState.APPROVED)
            return
        if self.mode == "decline":
            decision.move(GateState.DECLINED)
            return

        action = decision.action
        console.print(
            f"\n[yellow]⚠ Risky change to access-critical resource '{resource}'[/yellow]\n"
            f"  [bold]{action.kind.value}[/bold] {action.directive.label}"
            f"  [dim]({action.rationale}"
            + (f", currently {action.current!r}" if action.current is not None else "")
            + ")[/dim]"
        )
        if action.note:
            console.print(f"  [yellow]{action.note}[/yellow]")
        if self.ask("Apply this change?"):
            decision.move(GateState.APPROVED)
        else:
            decision.move(GateState.DECLINED)

    def review(self, plan: Plan, registry) -> tuple[Plan, list[GateDecision]]:
        """Return the plan with declined actions turned into skips."""
        decisions = []
        actions = []
        for action in plan.actions:
            decision = GateDecision(action=action)
            decisions.append(decision)

            adapter = registry.adapter_for(action.directive) if action.mutates else None
            if adapter is None or not adapter.is_risky(action):
                decision.move(GateState.APPROVED)
                actions.append(action)
                continue

            decision.risky = True
            decision.move(GateState.PENDING)
            self._resolve(decision, adapter.name)

            if decision.state == GateState.DECLINED:
                console.print(f"[yellow]  Declined: {action.directive.label}[/yellow]")
                actions.append(action.model_copy(update={
                    "kind": ActionKind.SKIP,
                    "rationale": OPERATOR_DECLINED,
                }))
            else:
                actions.append(action)

        return Plan(name=plan.name, actions=tuple(actions)), decisions
