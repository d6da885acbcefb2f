"""Desired-state directives for vps-ops-kit."""

from enum import Enum
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from opskit.errors import MalformedDirective


class ResourceKind(str, Enum):
    """Categories of configuration target."""

    RULE = "rule"
    FILE_BLOCK = "file_block"
    INI = "ini"
    CRON = "cron"
    POLICY = "policy"
    WATCH = "watch"


class MatchMode(str, Enum):
    EXACT = "exact"
    PRESENCE = "presence"


# Resource used when a directive does not name one
DEFAULT_RESOURCE = {
    ResourceKind.RULE: "firewall",
    ResourceKind.FILE_BLOCK: "sshd",
    ResourceKind.INI: "fail2ban",
    ResourceKind.CRON: "crontab",
    ResourceKind.POLICY: "firewall-policy",
    ResourceKind.WATCH: "auditd",
}

DEFAULT_MATCH = {
    ResourceKind.RULE: MatchMode.PRESENCE,
}


def _scalar_to_str(value):
    """YAML turns `no` into False and `3600` into an int; directives want text."""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (int, float)):
        return str(value)
    return value


class Directive(BaseModel):
    """One desired-state assertion about a resource key."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    key: str
    value: str | None = None
    match: MatchMode = MatchMode.EXACT
    ensure: Literal["present", "absent"] = "present"
    resource: str = ""
    comment: str | None = None

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        try:
            kind = ResourceKind(data.get("kind"))
        except ValueError:
            return data
        if data.get("match") is None:
            data["match"] = DEFAULT_MATCH.get(kind, MatchMode.EXACT)
        if not data.get("resource"):
            data["resource"] = DEFAULT_RESOURCE[kind]
        return data

    @field_validator("key", "value", "comment", mode="before")
    @classmethod
    def coerce_scalars(cls, v):
        return _scalar_to_str(v)

    @field_validator("key")
    @classmethod
    def key_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("key must not be empty")
        return v

    @model_validator(mode="after")
    def value_required(self):
        if self.ensure == "present" and self.match == MatchMode.EXACT and self.value is None:
            raise ValueError(f"value required for exact-match directive on '{self.key}'")
        return self

    @property
    def removes(self) -> bool:
        return self.ensure == "absent"

    @property
    def label(self) -> str:
        if self.removes:
            return f"{self.resource}: -{self.key}"
        if self.value is None:
            return f"{self.resource}: {self.key}"
        return f"{self.resource}: {self.key} = {self.value}"


class DirectiveSet(BaseModel):
    """An ordered collection of directives."""

    model_config = ConfigDict(frozen=True)

    name: str = "directives"
    directives: tuple[Directive, ...] = Field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.directives)

    def __iter__(self):
        return iter(self.directives)

    def extend(self, other: "DirectiveSet", name: str | None = None) -> "DirectiveSet":
        """Return a new set with other's directives appended."""
        return DirectiveSet(
            name=name or f"{self.name}+{other.name}",
            directives=self.directives + other.directives,
        )


def build_directive_set(name: str, entries: list) -> DirectiveSet:
    """Build a directive set from raw mappings.

    Raises MalformedDirective pointing at the first bad entry.
    """
    directives = []
    for index, entry in enumerate(entries):
        if isinstance(entry, Directive):
            directives.append(entry)
            continue
        if not isinstance(entry, dict):
            raise MalformedDirective(f"expected a mapping, got {type(entry).__name__}", index)
        try:
            directives.append(Directive(**entry))
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'directive'}: {err['msg']}"
                for err in e.errors()
            )
            raise MalformedDirective(problems, index) from e
    return DirectiveSet(name=name, directives=tuple(directives))


def load_directives(path: str | Path) -> DirectiveSet:
    """Load a directive set from a YAML file.

    The file holds either a list of directives or a mapping with
    ``name`` and ``directives`` keys.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Directive file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or []

    if isinstance(raw, list):
        return build_directive_set(path.stem, raw)
    if isinstance(raw, dict) and isinstance(raw.get("directives"), list):
        return build_directive_set(raw.get("name", path.stem), raw["directives"])
    raise MalformedDirective(f"{path}: expected a list of directives or a 'directives' key")
