"""User crontab adapter."""

import io
import shlex

from opskit.directives import Directive, ResourceKind
from opskit.errors import ApplyRejected, ResourceUnavailable
from opskit.planner import Action, ActionKind
from opskit.prober import RawState, collapse, cron_entries
from opskit.resources.base import ResourceAdapter, _output, join_lines, split_lines

CRON_MACROS = ("@reboot", "@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly")


class CrontabAdapter(ResourceAdapter):
    """Jobs keyed by command, valued by schedule.

    The table is read and installed as a whole, so it is snapshotted like a file.
    """

    kind = ResourceKind.CRON
    file_like = True

    @property
    def user(self) -> str:
        return shlex.quote(self.settings.user)

    def probe(self) -> RawState:
        self._require_command("crontab")
        result = self._check(f"crontab -l -u {self.user}")
        if result.ok:
            return RawState(result.stdout)
        if "no crontab" in result.stderr.lower():
            return RawState(None)
        raise ResourceUnavailable(f"{self.name}: crontab -l failed: {_output(result)}")

    def install(self, content: str | None) -> None:
        if not content:
            result = self._check(f"crontab -r -u {self.user}")
            if not result.ok and "no crontab" not in result.stderr.lower():
                raise ApplyRejected(f"{self.name}: crontab -r failed: {_output(result)}")
            return
        result = self._check(f"crontab -u {self.user} -", in_stream=io.StringIO(content))
        if not result.ok:
            raise ApplyRejected(f"{self.name}: crontab rejected the table: {_output(result)}")

    def format_line(self, directive: Directive) -> str:
        # The command is written as given; the collapsed key is only for matching
        return f"{collapse(directive.value)} {directive.key.strip()}"

    def render(self, action: Action, content: str | None) -> str:
        directive = action.directive
        lines = split_lines(content)
        key = self.canonical_key(directive.key)
        matches = [index for index, command, _ in cron_entries(lines) if command == key]

        if action.kind == ActionKind.ADD:
            lines.append(self.format_line(directive))
            return join_lines(lines)

        drop = set(matches)
        if action.kind == ActionKind.REPLACE:
            lines[matches[0]] = self.format_line(directive)
            drop.discard(matches[0])
        return join_lines([line for index, line in enumerate(lines) if index not in drop])

    def apply(self, action: Action, values: dict[str, str]) -> str:
        self.install(self.render(action, self.probe().content))
        return f"{action.kind.value} cron job {action.directive.key}"

    def restore(self, snapshot) -> None:
        self.install(snapshot.raw_content)

    def check_directive(self, directive: Directive) -> str | None:
        if directive.removes:
            return None
        if directive.value is None:
            return f"schedule required for cron job '{directive.key}'"
        fields = directive.value.split()
        if not fields:
            return f"schedule required for cron job '{directive.key}'"
        if fields[0].startswith("@"):
            if len(fields) != 1 or fields[0] not in CRON_MACROS:
                return f"unknown cron schedule '{directive.value}'"
        elif len(fields) != 5:
            return f"cron schedule needs five fields, got '{directive.value}'"
        return None
