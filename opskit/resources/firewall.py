"""ufw adapters: the user rule table and the default policies."""

import shlex

from opskit.directives import Directive, MatchMode, ResourceKind
from opskit.errors import ApplyRejected, ResourceUnavailable
from opskit.planner import Action, ActionKind
from opskit.prober import POLICY_DIRECTIONS, UFW_ACTIONS, RawState, parse_ufw_line, rule_key
from opskit.resources.base import LAST_ACCESS_PATH, ResourceAdapter, _output
from opskit.ssh import TRANSPORT_ERRORS

ALLOWING = ("allow", "limit")
POLICY_VALUES = ("allow", "deny", "reject")
STATUS_VALUES = ("active", "inactive")


def rule_tokens(key: str) -> tuple[list[str], list[str]]:
    """Split a rule key into (command prefix, target tokens)."""
    tokens = key.split()
    if tokens and tokens[0] == "route":
        return ["route"], tokens[1:]
    return [], tokens


class UfwAdapter(ResourceAdapter):
    """Shared ufw command handling."""

    def _ufw_output(self, args: str) -> str:
        self._require_command("ufw")
        result = self._check(f"ufw {args}")
        if not result.ok:
            raise ResourceUnavailable(f"{self.name}: ufw {args} failed: {_output(result)}")
        return result.stdout

    def _ufw(self, args: list[str]) -> None:
        command = "ufw " + " ".join(shlex.quote(arg) for arg in args)
        result = self._check(command)
        if not result.ok:
            raise ApplyRejected(f"{self.name}: '{command}' failed: {_output(result)}")


class FirewallAdapter(UfwAdapter):
    """Rules in ufw's user table, keyed by target (`22/tcp`, `from 10.0.0.0/8`)."""

    kind = ResourceKind.RULE

    def probe(self) -> RawState:
        # `ufw show added` lists rules even while the firewall is inactive
        return RawState(self._ufw_output("show added"))

    def _add(self, key: str, action: str, comment: str | None = None) -> None:
        prefix, target = rule_tokens(key)
        args = prefix + [action] + target
        if comment:
            args += ["comment", comment]
        self._ufw(args)

    def _delete(self, key: str, action: str) -> None:
        prefix, target = rule_tokens(key)
        self._ufw(["--force"] + prefix + ["delete", action] + target)

    def _comment(self, key: str) -> str | None:
        for line in self.probe().content.splitlines():
            parsed = parse_ufw_line(line)
            if parsed and parsed[0] == key:
                return parsed[2]
        return None

    def _replace(self, directive: Directive, key: str, old: str) -> None:
        """Swap a rule's action, putting the old rule back if the new one is refused."""
        comment = self._comment(key)
        self._delete(key, old)
        try:
            self._add(key, self.canonical_value(directive.value), directive.comment or comment)
        except ApplyRejected as e:
            try:
                self._add(key, old, comment)
            except ApplyRejected as restore_error:
                raise ApplyRejected(f"{e}; restoring '{old} {key}' also failed: {restore_error}") from e
            raise ApplyRejected(f"{e}; kept the existing '{old} {key}' rule") from e

    def apply(self, action: Action, values: dict[str, str]) -> str:
        directive = action.directive
        key = self.canonical_key(directive.key)
        kind = action.kind

        if kind == ActionKind.ADD:
            self._add(key, self.canonical_value(directive.value) or "allow", directive.comment)
        elif kind == ActionKind.REPLACE:
            self._replace(directive, key, values.get(key) or action.current)
        elif kind == ActionKind.REMOVE:
            self._delete(key, values.get(key) or action.current)
        else:
            raise ApplyRejected(f"{self.name}: cannot apply a '{kind.value}' action")
        return f"{kind.value} ufw rule {key}"

    def precondition(self, directive: Directive, values: dict[str, str]) -> str | None:
        if not self.access_critical:
            return None
        key = self.canonical_key(directive.key)
        access = [rule_key(rule) for rule in self.settings.access_rules]
        if key not in access or key not in values:
            return None

        closes = directive.removes or (
            directive.match == MatchMode.EXACT
            and self.canonical_value(directive.value) not in ALLOWING
        )
        if not closes:
            return None

        remaining = [rule for rule in access if rule != key and values.get(rule) in ALLOWING]
        if remaining:
            return None
        return LAST_ACCESS_PATH

    def is_risky(self, action: Action) -> bool:
        if super().is_risky(action):
            return True
        return (
            self.access_critical
            and action.kind == ActionKind.ADD
            and self.canonical_value(action.directive.value) in ("deny", "reject")
        )

    def check_directive(self, directive: Directive) -> str | None:
        if directive.value is not None and self.canonical_value(directive.value) not in UFW_ACTIONS:
            return f"ufw action must be one of {', '.join(UFW_ACTIONS)}, got '{directive.value}'"
        prefix, target = rule_tokens(directive.key)
        if not target:
            return "rule key has no target"
        return None


class FirewallPolicyAdapter(UfwAdapter):
    """Default policies (`incoming`, `outgoing`, `routed`) and `status`."""

    kind = ResourceKind.POLICY

    def probe(self) -> RawState:
        content = self._ufw_output("status verbose")
        if "Default:" not in content:
            # An inactive ufw prints only its status line
            try:
                defaults = self.ssh.read_file(self.settings.defaults_path)
            except TRANSPORT_ERRORS as e:
                raise ResourceUnavailable(f"{self.name}: {e}") from e
            if defaults:
                content = content.rstrip("\n") + "\n" + defaults
        return RawState(content)

    def apply(self, action: Action, values: dict[str, str]) -> str:
        if action.kind not in (ActionKind.ADD, ActionKind.REPLACE):
            raise ApplyRejected(f"{self.name}: cannot apply a '{action.kind.value}' action")
        key = self.canonical_key(action.directive.key)
        value = self.canonical_value(action.directive.value)
        if key == "status":
            self._ufw(["--force", "enable"] if value == "active" else ["disable"])
        else:
            self._ufw(["default", value, key])
        return f"set ufw {key} to {value}"

    def is_risky(self, action: Action) -> bool:
        if not (self.access_critical and action.mutates):
            return False
        key = self.canonical_key(action.directive.key)
        value = self.canonical_value(action.directive.value)
        return (key == "status" and value == "active") or (key == "incoming" and value != "allow")

    def check_directive(self, directive: Directive) -> str | None:
        key = self.canonical_key(directive.key)
        if key not in POLICY_DIRECTIONS + ("status",):
            return f"firewall policy key must be status or one of {', '.join(POLICY_DIRECTIONS)}, got '{directive.key}'"
        if directive.removes:
            return f"firewall policy '{key}' cannot be removed, only set"
        allowed = STATUS_VALUES if key == "status" else POLICY_VALUES
        if self.canonical_value(directive.value) not in allowed:
            return f"'{key}' must be one of {', '.join(allowed)}, got '{directive.value}'"
        return None
