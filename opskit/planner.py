"""Plan construction for vps-ops-kit.

The planner is pure: it probes live state through the adapters' read-only
calls and never writes anything, so ``plan()`` doubles as a preview.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from opskit.directives import Directive, DirectiveSet, MatchMode
from opskit.errors import ResourceUnavailable
from opskit.prober import ProbedState, probe

OPERATOR_DECLINED = "operator declined"
UNAVAILABLE_PREFIX = "resource unavailable"


class ActionKind(str, Enum):
    SKIP = "skip"
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"
    ABORT = "abort"


class Action(BaseModel):
    """What the planner decided to do about one directive, and why."""

    model_config = ConfigDict(frozen=True)

    directive: Directive
    kind: ActionKind
    rationale: str
    current: str | None = None
    # Something the operator should know before approving, e.g. a shadowing Include
    note: str | None = None

    @property
    def mutates(self) -> bool:
        return self.kind in (ActionKind.ADD, ActionKind.REPLACE, ActionKind.REMOVE)

    @property
    def declined(self) -> bool:
        return self.kind == ActionKind.SKIP and self.rationale == OPERATOR_DECLINED

    @property
    def unavailable(self) -> bool:
        return self.kind == ActionKind.ABORT and self.rationale.startswith(UNAVAILABLE_PREFIX)


class Plan(BaseModel):
    """Ordered actions, one per directive, in directive set order."""

    model_config = ConfigDict(frozen=True)

    name: str
    actions: tuple[Action, ...] = ()

    def __len__(self) -> int:
        return len(self.actions)

    def __iter__(self):
        return iter(self.actions)

    @property
    def kinds(self) -> list[ActionKind]:
        return [action.kind for action in self.actions]

    @property
    def converged(self) -> bool:
        return all(action.kind == ActionKind.SKIP for action in self.actions)

    def counts(self) -> dict[str, int]:
        counts = {}
        for action in self.actions:
            counts[action.kind.value] = counts.get(action.kind.value, 0) + 1
        return counts


def is_converged(directive: Directive, adapter, values: dict[str, str]) -> bool:
    """Whether the canonical state already satisfies the directive."""
    current = values.get(adapter.canonical_key(directive.key))
    if directive.removes:
        return current is None
    if current is None:
        return False
    if directive.match == MatchMode.PRESENCE:
        return True
    return current == adapter.canonical_value(directive.value)


def plan_action(directive: Directive, adapter, values: dict[str, str]) -> Action:
    """Decide the action for one directive against a canonical state map."""
    current = values.get(adapter.canonical_key(directive.key))

    reason = adapter.precondition(directive, values)
    if reason:
        return Action(directive=directive, kind=ActionKind.ABORT, rationale=reason, current=current)

    if directive.removes:
        if current is None:
            return Action(directive=directive, kind=ActionKind.SKIP, rationale="already absent")
        return Action(directive=directive, kind=ActionKind.REMOVE, rationale="key present", current=current)

    if current is None:
        return Action(directive=directive, kind=ActionKind.ADD, rationale="key absent")

    if directive.match == MatchMode.PRESENCE:
        return Action(directive=directive, kind=ActionKind.SKIP, rationale="key present", current=current)

    if is_converged(directive, adapter, values):
        return Action(directive=directive, kind=ActionKind.SKIP, rationale="value matches", current=current)

    return Action(directive=directive, kind=ActionKind.REPLACE, rationale="value differs", current=current)


def _unavailable(directive: Directive, error: ResourceUnavailable) -> Action:
    return Action(directive=directive, kind=ActionKind.ABORT, rationale=f"{UNAVAILABLE_PREFIX}: {error}")


def plan(directive_set: DirectiveSet, registry) -> Plan:
    """Diff a directive set against live state.

    Each resource is probed once. A resource that cannot be probed, or whose
    checks cannot run, turns only its own directives into aborts. Raises
    MalformedDirective before probing anything if the set does not fit the
    registry.
    """
    registry.check(directive_set)

    states: dict[str, ProbedState | ResourceUnavailable] = {}
    actions = []
    for directive in directive_set:
        adapter = registry.adapter_for(directive)
        if adapter.name not in states:
            try:
                states[adapter.name] = probe(adapter)
            except ResourceUnavailable as e:
                states[adapter.name] = e

        state = states[adapter.name]
        if isinstance(state, ResourceUnavailable):
            actions.append(_unavailable(directive, state))
            continue
        try:
            action = plan_action(directive, adapter, state.values)
        except ResourceUnavailable as e:
            actions.append(_unavailable(directive, e))
            continue
        if action.mutates:
            note = adapter.note(directive, state.raw.content)
            if note:
                action = action.model_copy(update={"note": note})
        actions.append(action)

    return Plan(name=directive_set.name, actions=tuple(actions))
