"""Configuration parsing and validation for vps-ops-kit."""

from pathlib import Path
from typing import Annotated, Literal, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class ServerConfig(BaseModel):
    """Target host access configuration."""

    host: str = "localhost"
    auth_method: Literal["password", "ssh_key", "local"] = "local"
    ssh_user: str = "root"
    ssh_password: str | None = None
    ssh_key_path: str | None = None
    ssh_port: int = 22

    @model_validator(mode="after")
    def validate_auth(self):
        if self.auth_method == "password" and not self.ssh_password:
            raise ValueError("ssh_password required when auth_method is 'password'")
        if self.auth_method == "ssh_key" and not self.ssh_key_path:
            raise ValueError("ssh_key_path required when auth_method is 'ssh_key'")
        return self

    @property
    def is_local(self) -> bool:
        return self.auth_method == "local"


class PathsConfig(BaseModel):
    """Where run state (audit log, snapshots, reports) is kept."""

    state_dir: str = "~/.vps-ops-kit"

    @property
    def root(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def audit_dir(self) -> Path:
        return self.root / "audit"

    @property
    def snapshot_dir(self) -> Path:
        return self.root / "snapshots"

    @property
    def report_dir(self) -> Path:
        return self.root / "reports"


class FirewallResource(BaseModel):
    """A ufw rule table."""

    kind: Literal["rule"] = "rule"
    access_critical: bool = True
    # Rules that keep administrative (SSH) access open
    access_rules: list[str] = Field(default_factory=lambda: ["22/tcp", "22", "OpenSSH"])


class KeywordFileResource(BaseModel):
    """A `Keyword value` / `key = value` configuration file."""

    kind: Literal["file_block"] = "file_block"
    path: str
    separator: Literal["space", "equals"] = "space"
    first_wins: bool = True
    case_insensitive: bool = False
    stop_at: str | None = None
    validate_command: str | None = None
    reload_command: str | None = None
    access_critical: bool = False
    lockout_guard: bool = False
    admin_user: str | None = None


class IniFileResource(BaseModel):
    """An INI-style file with `[section]` headers (fail2ban jails)."""

    kind: Literal["ini"] = "ini"
    path: str
    validate_command: str | None = None
    reload_command: str | None = None
    access_critical: bool = False


class CrontabResource(BaseModel):
    """A user's crontab."""

    kind: Literal["cron"] = "cron"
    user: str = "root"
    access_critical: bool = False


class FirewallPolicyResource(BaseModel):
    """ufw default policies and whether the firewall is enabled."""

    kind: Literal["policy"] = "policy"
    access_critical: bool = True
    # ufw only reports defaults while active; otherwise they are read from here
    defaults_path: str = "/etc/default/ufw"


class AuditRulesResource(BaseModel):
    """auditd watch rules (`-w path -p perms -k key`)."""

    kind: Literal["watch"] = "watch"
    path: str = "/etc/audit/rules.d/audit.rules"
    validate_command: str | None = None
    reload_command: str | None = "augenrules --load"
    access_critical: bool = False


ResourceConfig = Annotated[
    Union[
        FirewallResource,
        FirewallPolicyResource,
        KeywordFileResource,
        IniFileResource,
        CrontabResource,
        AuditRulesResource,
    ],
    Field(discriminator="kind"),
]


def default_resources() -> dict[str, dict]:
    """Built-in resource definitions for a stock Ubuntu VPS."""
    return {
        "firewall": FirewallResource().model_dump(),
        "firewall-policy": FirewallPolicyResource().model_dump(),
        "sshd": KeywordFileResource(
            path="/etc/ssh/sshd_config",
            case_insensitive=True,
            stop_at="Match",
            validate_command="sshd -t -f {path}",
            reload_command="systemctl reload ssh",
            access_critical=True,
            lockout_guard=True,
        ).model_dump(),
        "sysctl": KeywordFileResource(
            path="/etc/sysctl.d/99-vps-ops-kit.conf",
            separator="equals",
            first_wins=False,
            reload_command="sysctl --system",
        ).model_dump(),
        "fail2ban": IniFileResource(
            path="/etc/fail2ban/jail.local",
            validate_command="fail2ban-client -t",
            reload_command="systemctl restart fail2ban",
        ).model_dump(),
        "auto-upgrades": KeywordFileResource(
            path="/etc/apt/apt.conf.d/20auto-upgrades",
            first_wins=False,
        ).model_dump(),
        "crontab": CrontabResource().model_dump(),
        "auditd": AuditRulesResource().model_dump(),
    }


class OpsKitConfig(BaseModel):
    """Main configuration for vps-ops-kit."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    resources: dict[str, ResourceConfig] = Field(default_factory=default_resources, validate_default=True)

    @field_validator("resources", mode="before")
    @classmethod
    def merge_default_resources(cls, v):
        """Overlay user resources on the built-in ones.

        An entry without `kind` that names a built-in resource is merged
        field by field, so `sshd: {admin_user: deploy}` is enough.
        """
        merged = default_resources()
        for name, entry in (v or {}).items():
            if isinstance(entry, BaseModel):
                entry = entry.model_dump()
            if name in merged and "kind" not in entry:
                merged[name] = {**merged[name], **entry}
            else:
                merged[name] = entry
        return merged


def load_config(path: str | Path | None = None) -> OpsKitConfig:
    """Load and validate configuration from a YAML file.

    With no path, the built-in defaults are used (local host, stock resources).
    """
    if path is None:
        return OpsKitConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return OpsKitConfig(**raw)


def validate_config(config: OpsKitConfig) -> list[str]:
    """Perform additional validation checks on the config.

    Returns a list of warnings (empty if all good).
    """
    warnings = []

    for name, resource in config.resources.items():
        if isinstance(resource, (KeywordFileResource, IniFileResource)):
            if resource.reload_command and not resource.validate_command:
                warnings.append(
                    f"Resource '{name}' reloads a daemon but has no validate_command - "
                    "a bad write will not be rolled back"
                )
        if isinstance(resource, KeywordFileResource) and resource.admin_user and not resource.lockout_guard:
            warnings.append(f"Resource '{name}' sets admin_user but lockout_guard is off")
        if isinstance(resource, FirewallResource) and resource.access_critical and not resource.access_rules:
            warnings.append(f"Resource '{name}' is access-critical but lists no access_rules")

    if not config.server.is_local and config.server.ssh_user != "root":
        warnings.append(
            f"Connecting as '{config.server.ssh_user}' - every probe and write will go through sudo"
        )

    return warnings
