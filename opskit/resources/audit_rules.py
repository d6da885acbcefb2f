"""auditd watch rules."""

from opskit.directives import Directive, ResourceKind
from opskit.planner import Action, ActionKind
from opskit.prober import collapse, watch_entries
from opskit.resources.base import TextFileAdapter, join_lines, split_lines

WATCH_OPTIONS = ("-p", "-k")


class AuditRulesAdapter(TextFileAdapter):
    """`-w path -p perms -k key` lines keyed by watched path."""

    kind = ResourceKind.WATCH

    def render(self, action: Action, content: str | None) -> str:
        directive = action.directive
        lines = split_lines(content)
        key = self.canonical_key(directive.key)
        matches = [index for index, path, _ in watch_entries(lines) if path == key]
        new_line = f"-w {key} {collapse(directive.value or '')}".rstrip()

        if action.kind == ActionKind.ADD:
            lines.append(new_line)
            return join_lines(lines)

        drop = set(matches)
        if action.kind == ActionKind.REPLACE:
            lines[matches[0]] = new_line
            drop.discard(matches[0])
        return join_lines([line for index, line in enumerate(lines) if index not in drop])

    def check_directive(self, directive: Directive) -> str | None:
        key = directive.key.strip()
        if not key.startswith("/") or len(key.split()) != 1:
            return f"watch path must be a single absolute path, got '{directive.key}'"
        if directive.removes or directive.value is None:
            return None
        fields = directive.value.split()
        if len(fields) % 2 or any(option not in WATCH_OPTIONS for option in fields[::2]):
            return f"watch options must be '-p perms' and/or '-k key', got '{directive.value}'"
        return None
