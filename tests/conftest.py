"""Shared fixtures: an in-memory host that behaves like ufw, crontab and a filesystem."""

import re
import shlex

import pytest

from opskit.audit import AuditLog
from opskit.config import OpsKitConfig
from opskit.gate import ConfirmationGate
from opskit.executor import execute
from opskit.planner import plan
from opskit.resources import ResourceRegistry
from opskit.snapshots import SnapshotStore

SSHD_CONFIG = """\
# This is the sshd server system-wide configuration file.
Include /etc/ssh/sshd_config.d/*.conf

#PermitRootLogin prohibit-password
PubkeyAuthentication yes
PasswordAuthentication yes
#MaxAuthTries 6
X11Forwarding yes

Match User anoncvs
\tX11Forwarding no
"""

CRON_FIELD = re.compile(r"^[\d*/,\-]+$")

UFW_DEFAULTS = "/etc/default/ufw"
IPTABLES = {"allow": "ACCEPT", "deny": "DROP", "reject": "REJECT", "disabled": "DROP"}


class FakeResult:
    def __init__(self, stdout: str = "", stderr: str = "", exited: int = 0):
        self.stdout = stdout
        self.stderr = stderr
        self.exited = exited

    @property
    def ok(self) -> bool:
        return self.exited == 0


class FakeHost:
    """Stands in for SSHConnection.

    ufw does not de-duplicate here: keeping duplicates out is the planner's job.
    """

    def __init__(self):
        self.files: dict[str, str] = {}
        self.ufw_rules: list[tuple[str, str, str | None]] = []
        self.crontabs: dict[str, str] = {}
        self.installed = {"ufw", "crontab"}
        self.failing: dict[str, str] = {}
        self.ignore_ufw_adds = False
        self.ufw_status = "inactive"
        self.ufw_defaults = {"incoming": "deny", "outgoing": "allow", "routed": "disabled"}
        # Command prefixes whose transport drops mid-run
        self.broken: set[str] = set()
        self.commands: list[str] = []
        self.is_local = True
        self.closed = False

    # --- SSHConnection interface ---

    def command_exists(self, name: str) -> bool:
        return name in self.installed

    def close(self) -> None:
        self.closed = True

    def read_file(self, path: str) -> str | None:
        if path == UFW_DEFAULTS and path not in self.files:
            return "".join(
                f'DEFAULT_{chain}_POLICY="{IPTABLES[self.ufw_defaults[direction]]}"\n'
                for chain, direction in (("INPUT", "incoming"), ("OUTPUT", "outgoing"), ("FORWARD", "routed"))
            )
        return self.files.get(path)

    def write_file(self, path: str, content: str, mode: str | None = None) -> None:
        self.commands.append(f"write {path}")
        self.files[path] = content

    def remove_file(self, path: str) -> None:
        self.commands.append(f"rm {path}")
        self.files.pop(path, None)

    def check(self, command: str, sudo: bool = True, **kwargs) -> FakeResult:
        self.commands.append(command)
        if command.startswith(tuple(self.broken)):
            raise OSError("Socket is closed")
        if command in self.failing:
            return FakeResult(stderr=self.failing[command], exited=1)
        args = shlex.split(command)
        if args[0] == "ufw":
            return self._ufw(args[1:])
        if args[0] == "crontab":
            return self._crontab(args[1:], kwargs.get("in_stream"))
        if args[:2] == ["test", "-s"]:
            return FakeResult(exited=0 if self.files.get(args[2]) else 1)
        return FakeResult()

    # --- helpers ---

    @property
    def mutating_commands(self) -> list[str]:
        readonly = ("ufw show added", "ufw status", "crontab -l", "test -s")
        return [c for c in self.commands if not c.startswith(readonly)]

    def rule_targets(self) -> list[str]:
        return [target for _, target, _ in self.ufw_rules]

    def _ufw(self, args: list[str]) -> FakeResult:
        if args == ["status", "verbose"]:
            lines = [f"Status: {self.ufw_status}"]
            if self.ufw_status == "active":
                defaults = ", ".join(f"{policy} ({direction})" for direction, policy in self.ufw_defaults.items())
                lines += ["Logging: on (low)", f"Default: {defaults}", "New profiles: skip"]
            return FakeResult("\n".join(lines) + "\n")
        if args == ["show", "added"]:
            lines = ["Added user rules (see 'ufw status' for running firewall):"]
            for action, target, comment in self.ufw_rules:
                line = f"ufw {action} {target}"
                if comment:
                    line += f" comment '{comment}'"
                lines.append(line)
            if not self.ufw_rules:
                lines.append("(None)")
            return FakeResult("\n".join(lines) + "\n")

        args = [arg for arg in args if arg != "--force"]
        if args == ["enable"]:
            self.ufw_status = "active"
            return FakeResult("Firewall is active and enabled on system startup\n")
        if args == ["disable"]:
            self.ufw_status = "inactive"
            return FakeResult("Firewall stopped and disabled on system startup\n")
        if args[0] == "default":
            self.ufw_defaults[args[2]] = args[1]
            return FakeResult(f"Default {args[2]} policy changed to '{args[1]}'\n")
        if args[0] == "delete":
            rule = (args[1], " ".join(args[2:]))
            for existing in self.ufw_rules:
                if existing[:2] == rule:
                    self.ufw_rules.remove(existing)
                    return FakeResult("Rule deleted\n")
            return FakeResult(stderr="Could not delete non-existent rule\n", exited=1)

        action, rest = args[0], args[1:]
        if action not in ("allow", "deny", "reject", "limit"):
            return FakeResult(stderr="ERROR: Invalid syntax\n", exited=1)
        comment = None
        if "comment" in rest:
            pos = rest.index("comment")
            comment = " ".join(rest[pos + 1:])
            rest = rest[:pos]
        target = " ".join(rest)
        port = target.split("/")[0]
        if port.isdigit() and int(port) > 65535:
            return FakeResult(stderr="ERROR: Bad port\n", exited=1)
        if not self.ignore_ufw_adds:
            self.ufw_rules.append((action, target, comment))
        return FakeResult("Rule added\n")

    def _crontab(self, args: list[str], in_stream) -> FakeResult:
        user = args[args.index("-u") + 1]
        if "-l" in args:
            if user not in self.crontabs:
                return FakeResult(stderr=f"no crontab for {user}\n", exited=1)
            return FakeResult(self.crontabs[user])
        if "-r" in args:
            if self.crontabs.pop(user, None) is None:
                return FakeResult(stderr=f"no crontab for {user}\n", exited=1)
            return FakeResult()
        content = in_stream.read()
        for number, line in enumerate(content.splitlines(), start=1):
            fields = line.split()
            if not fields or fields[0].startswith("#") or "=" in fields[0] or fields[0].startswith("@"):
                continue
            if len(fields) < 6 or not all(CRON_FIELD.match(f) for f in fields[:5]):
                return FakeResult(stderr=f'"-":{number}: bad minute\nerrors in crontab file, can\'t install.\n', exited=1)
        self.crontabs[user] = content
        return FakeResult()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def config(tmp_path):
    return OpsKitConfig(paths={"state_dir": str(tmp_path / "state")})


@pytest.fixture
def registry(config, host):
    return ResourceRegistry.from_config(config, host)


@pytest.fixture
def store(config):
    return SnapshotStore(config.paths.snapshot_dir)


@pytest.fixture
def audit(config):
    return AuditLog(config.paths.audit_dir)


@pytest.fixture
def run(registry, store, audit):
    """Plan, gate and execute a directive set. Returns (plan, entries)."""

    def _run(directive_set, mode="approve", run_id="test-run"):
        planned = plan(directive_set, registry)
        approved, _ = ConfirmationGate(mode=mode).review(planned, registry)
        return planned, execute(approved, registry, store, audit, run_id)

    return _run
