"""Resource adapter contract for vps-ops-kit."""

import shlex

from invoke import Result

from opskit.directives import Directive, ResourceKind
from opskit.errors import ApplyRejected, ResourceUnavailable, ValidationFailed
from opskit.planner import Action, ActionKind
from opskit.prober import RawState, canonical_key, canonical_value
from opskit.ssh import TRANSPORT_ERRORS

LAST_ACCESS_PATH = "would remove last access path"


class ResourceAdapter:
    """Read/write primitives for one resource instance.

    ``probe`` and ``validate`` never change the live resource; ``apply`` and
    ``restore`` are the only mutating calls.
    """

    kind: ResourceKind
    file_like = False

    def __init__(self, name: str, settings, ssh):
        self.name = name
        self.settings = settings
        self.ssh = ssh

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    @property
    def access_critical(self) -> bool:
        return self.settings.access_critical

    @property
    def supports_validation(self) -> bool:
        return False

    @property
    def reload_command(self) -> str | None:
        return getattr(self.settings, "reload_command", None)

    def canonical_key(self, key: str) -> str:
        return canonical_key(self.kind, self.settings, key)

    def canonical_value(self, value: str | None) -> str | None:
        return canonical_value(self.kind, value)

    def _check(self, command: str, **kwargs) -> Result:
        """Run a command, turning transport failures into ResourceUnavailable."""
        try:
            return self.ssh.check(command, **kwargs)
        except TRANSPORT_ERRORS as e:
            raise ResourceUnavailable(f"{self.name}: {e}") from e

    def _require_command(self, name: str) -> None:
        try:
            present = self.ssh.command_exists(name)
        except TRANSPORT_ERRORS as e:
            raise ResourceUnavailable(f"{self.name}: {e}") from e
        if not present:
            raise ResourceUnavailable(f"{self.name}: {name} is not installed")

    def probe(self) -> RawState:
        raise NotImplementedError

    def apply(self, action: Action, values: dict[str, str]) -> str:
        """Apply one planned action. Returns a short description of the change."""
        raise NotImplementedError

    def validate(self) -> bool:
        return True

    def restore(self, snapshot) -> None:
        raise ApplyRejected(f"{self.name}: restoring snapshots is not supported")

    def reload(self) -> None:
        """Tell the owning daemon to pick up the new configuration."""
        if not self.reload_command:
            return
        result = self._check(self.reload_command)
        if not result.ok:
            raise ApplyRejected(f"{self.name}: '{self.reload_command}' failed: {_output(result)}")

    def precondition(self, directive: Directive, values: dict[str, str]) -> str | None:
        """Return a reason if applying the directive would leave the host unrecoverable."""
        return None

    def note(self, directive: Directive, content: str | None) -> str | None:
        """Return a warning to show alongside a planned change, if any."""
        return None

    def is_risky(self, action: Action) -> bool:
        return self.access_critical and action.kind in (ActionKind.REPLACE, ActionKind.REMOVE)

    def check_directive(self, directive: Directive) -> str | None:
        """Return a problem description if the directive cannot target this resource."""
        return None


class TextFileAdapter(ResourceAdapter):
    """Shared behaviour for adapters backed by a single text file."""

    file_like = True

    @property
    def path(self) -> str:
        return self.settings.path

    @property
    def supports_validation(self) -> bool:
        return bool(self.settings.validate_command)

    def probe(self) -> RawState:
        try:
            content = self.ssh.read_file(self.path)
        except TRANSPORT_ERRORS as e:
            raise ResourceUnavailable(f"{self.name}: {e}") from e
        return RawState(content)

    def render(self, action: Action, content: str | None) -> str:
        raise NotImplementedError

    def write(self, content: str | None) -> None:
        try:
            if content is None:
                self.ssh.remove_file(self.path)
            else:
                self.ssh.write_file(self.path, content)
        except TRANSPORT_ERRORS as e:
            raise ApplyRejected(f"{self.name}: {e}") from e

    def apply(self, action: Action, values: dict[str, str]) -> str:
        content = self.probe().content
        self.write(self.render(action, content))
        return f"{action.kind.value} {action.directive.key} in {self.path}"

    def validate(self) -> bool:
        if not self.settings.validate_command:
            return True
        command = self.settings.validate_command.format(path=shlex.quote(self.path))
        result = self._check(command)
        if not result.ok:
            raise ValidationFailed(f"{self.name}: '{command}' failed: {_output(result)}")
        return True

    def restore(self, snapshot) -> None:
        self.write(snapshot.raw_content)


def split_lines(content: str | None) -> list[str]:
    return content.splitlines() if content else []


def join_lines(lines: list[str]) -> str:
    return "\n".join(lines) + "\n" if lines else ""


def _output(result: Result) -> str:
    return (result.stderr or result.stdout or f"exit code {result.exited}").strip()
