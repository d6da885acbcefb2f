"""INI-style configuration files (fail2ban jail.local)."""

from opskit.directives import Directive, ResourceKind
from opskit.planner import Action, ActionKind
from opskit.prober import ini_entries, ini_sections
from opskit.resources.base import TextFileAdapter, join_lines, split_lines


def split_ini_key(key: str) -> tuple[str, str]:
    """`sshd.maxretry` -> ("sshd", "maxretry")."""
    section, _, option = key.strip().rpartition(".")
    return section.strip(), option.strip()


class IniFileAdapter(TextFileAdapter):
    """Options addressed as `section.option`."""

    kind = ResourceKind.INI

    def render(self, action: Action, content: str | None) -> str:
        directive = action.directive
        lines = split_lines(content)
        section, option = split_ini_key(directive.key)
        new_line = f"{option} = {directive.value}"
        matches = [
            entry for entry in ini_entries(lines)
            if entry.section == section and entry.option == option.lower()
        ]

        if action.kind == ActionKind.ADD:
            sections = ini_sections(lines)
            if section in sections:
                _, end = sections[section]
                lines.insert(end, new_line)
            else:
                if lines and lines[-1].strip():
                    lines.append("")
                lines.extend([f"[{section}]", new_line])
            return join_lines(lines)

        drop = set()
        for entry in matches:
            drop.update(range(entry.start, entry.end))
        if action.kind == ActionKind.REPLACE:
            # The last definition is the one fail2ban reads
            effective = matches[-1]
            lines[effective.start] = new_line
            drop.discard(effective.start)
        return join_lines([line for index, line in enumerate(lines) if index not in drop])

    def check_directive(self, directive: Directive) -> str | None:
        section, option = split_ini_key(directive.key)
        if not section or not option:
            return f"'{directive.key}' must be written as section.option"
        if not directive.removes and directive.value is None:
            return f"value required to set '{directive.key}' in {self.path}"
        return None
