"""Canonical state probing for vps-ops-kit.

Each resource kind has a normaliser that turns an adapter's raw read into a
``lookup_key -> normalized_value`` map, so the planner compares structure
rather than text. The line helpers here are shared with the adapters, which
use them to locate the lines they edit.
"""

import re
import shlex
from dataclasses import dataclass, field
from datetime import datetime

from opskit.directives import ResourceKind


@dataclass(frozen=True)
class RawState:
    """Unparsed resource content as returned by an adapter."""

    content: str | None
    captured_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ProbedState:
    """A resource's canonical state."""

    resource: str
    kind: ResourceKind
    raw: RawState
    values: dict[str, str]


def collapse(text: str) -> str:
    """Collapse runs of whitespace to single spaces."""
    return " ".join(text.split())


# --- Rule table (ufw show added) ---

UFW_ACTIONS = ("allow", "deny", "reject", "limit")


def parse_ufw_line(line: str) -> tuple[str, str, str | None] | None:
    """Parse one `ufw show added` line into (target, action, comment)."""
    line = line.strip()
    if not line.startswith("ufw "):
        return None
    try:
        tokens = shlex.split(line)
    except ValueError:
        tokens = line.split()

    idx = 1
    prefix = ""
    if len(tokens) > 2 and tokens[1] == "route":
        prefix = "route "
        idx = 2
    if len(tokens) <= idx + 1:
        return None

    action = tokens[idx].lower()
    rest = tokens[idx + 1:]
    comment = None
    if "comment" in rest:
        pos = rest.index("comment")
        comment = " ".join(rest[pos + 1:]) or None
        rest = rest[:pos]
    if not rest:
        return None
    return prefix + " ".join(rest), action, comment


def rule_key(key: str, settings=None) -> str:
    return collapse(key)


def normalize_rules(content: str | None, settings=None) -> dict[str, str]:
    values = {}
    for line in (content or "").splitlines():
        parsed = parse_ufw_line(line)
        if parsed is None:
            continue
        target, action, _ = parsed
        values.setdefault(target, action)
    return values


# --- Keyword files (sshd_config, sysctl.d) ---


def split_keyword(line: str, separator: str) -> tuple[str, str] | None:
    """Split an active line into (key, value). Comments and blanks give None."""
    stripped = line.strip()
    if not stripped or stripped.startswith(("#", ";", "//")):
        return None
    if separator == "equals":
        key, sep, value = stripped.partition("=")
        if not sep:
            return None
        return key.strip(), collapse(value)
    parts = stripped.split(None, 1)
    return parts[0], collapse(parts[1]) if len(parts) > 1 else ""


def keyword_key(key: str, settings) -> str:
    key = key.strip()
    return key.lower() if settings.case_insensitive else key


def keyword_stop_index(lines: list[str], settings) -> int:
    """Index of the first line outside the global section (e.g. `Match`)."""
    if settings.stop_at:
        stop = keyword_key(settings.stop_at, settings)
        for index, line in enumerate(lines):
            parsed = split_keyword(line, settings.separator)
            if parsed and keyword_key(parsed[0], settings) == stop:
                return index
    return len(lines)


def keyword_entries(lines: list[str], settings) -> list[tuple[int, str, str]]:
    """Active (index, canonical key, value) entries of the global section."""
    entries = []
    for index in range(keyword_stop_index(lines, settings)):
        parsed = split_keyword(lines[index], settings.separator)
        if parsed is None:
            continue
        entries.append((index, keyword_key(parsed[0], settings), parsed[1]))
    return entries


def normalize_keyword_file(content: str | None, settings) -> dict[str, str]:
    values = {}
    for _, key, value in keyword_entries((content or "").splitlines(), settings):
        if settings.first_wins and key in values:
            continue
        values[key] = value
    return values


# --- INI files (fail2ban jail.local) ---

SECTION_RE = re.compile(r"^\s*\[([^\]]+)\]\s*$")


@dataclass(frozen=True)
class IniEntry:
    """An option line plus its continuation lines, ``end`` exclusive."""

    start: int
    end: int
    section: str
    option: str
    value: str


def ini_key(key: str, settings=None) -> str:
    section, _, option = key.strip().rpartition(".")
    return f"{section.strip()}.{option.strip().lower()}"


def ini_sections(lines: list[str]) -> dict[str, tuple[int, int]]:
    """Map section name to (header index, index after its last non-blank line)."""
    sections = {}
    current = None
    for index, line in enumerate(lines):
        match = SECTION_RE.match(line)
        if match:
            current = match.group(1).strip()
            sections[current] = (index, index + 1)
        elif current is not None and line.strip():
            header, _ = sections[current]
            sections[current] = (header, index + 1)
    return sections


def ini_entries(lines: list[str]) -> list[IniEntry]:
    entries = []
    section = None
    index = 0
    while index < len(lines):
        line = lines[index]
        match = SECTION_RE.match(line)
        if match:
            section = match.group(1).strip()
            index += 1
            continue
        stripped = line.strip()
        if (
            section is None
            or not stripped
            or stripped[0] in "#;"
            or line[0].isspace()
        ):
            index += 1
            continue
        seps = [pos for pos in (line.find("="), line.find(":")) if pos > 0]
        if not seps:
            index += 1
            continue
        pos = min(seps)
        option = line[:pos].strip().lower()
        parts = [line[pos + 1:].strip()]
        end = index + 1
        while end < len(lines) and lines[end].strip() and lines[end][0].isspace():
            parts.append(lines[end].strip())
            end += 1
        entries.append(IniEntry(index, end, section, option, collapse(" ".join(parts))))
        index = end
    return entries


def normalize_ini(content: str | None, settings=None) -> dict[str, str]:
    values = {}
    for entry in ini_entries((content or "").splitlines()):
        values[f"{entry.section}.{entry.option}"] = entry.value
    return values


# --- Crontab ---

ENV_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*\s*=")


def split_cron_line(line: str) -> tuple[str, str] | None:
    """Split a job line into (schedule, command)."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or ENV_RE.match(stripped):
        return None
    fields = stripped.split()
    if fields[0].startswith("@"):
        if len(fields) < 2:
            return None
        return fields[0], " ".join(fields[1:])
    if len(fields) < 6:
        return None
    return " ".join(fields[:5]), " ".join(fields[5:])


def cron_key(key: str, settings=None) -> str:
    return collapse(key)


def cron_entries(lines: list[str]) -> list[tuple[int, str, str]]:
    entries = []
    for index, line in enumerate(lines):
        parsed = split_cron_line(line)
        if parsed is not None:
            schedule, command = parsed
            entries.append((index, command, schedule))
    return entries


def normalize_crontab(content: str | None, settings=None) -> dict[str, str]:
    values = {}
    for _, command, schedule in cron_entries((content or "").splitlines()):
        values.setdefault(command, schedule)
    return values


# --- Firewall policy (ufw status verbose, /etc/default/ufw) ---

POLICY_DIRECTIONS = ("incoming", "outgoing", "routed")
DEFAULT_RE = re.compile(r"(\w+)\s*\((incoming|outgoing|routed)\)")
DEFAULTS_FILE_RE = re.compile(r'^DEFAULT_(INPUT|OUTPUT|FORWARD)_POLICY\s*=\s*"?(\w+)"?')
DEFAULTS_FILE_KEYS = {"INPUT": "incoming", "OUTPUT": "outgoing", "FORWARD": "routed"}
IPTABLES_POLICIES = {"DROP": "deny", "ACCEPT": "allow", "REJECT": "reject"}


def policy_key(key: str, settings=None) -> str:
    return key.strip().lower()


def normalize_policy(content: str | None, settings=None) -> dict[str, str]:
    """Parse `Status:`/`Default:` lines, falling back to DEFAULT_*_POLICY settings."""
    values = {}
    for line in (content or "").splitlines():
        line = line.strip()
        if line.startswith("Status:"):
            values.setdefault("status", line.partition(":")[2].strip().lower())
        elif line.startswith("Default:"):
            for policy, direction in DEFAULT_RE.findall(line):
                values.setdefault(direction, policy.lower())
        else:
            match = DEFAULTS_FILE_RE.match(line)
            if match:
                direction = DEFAULTS_FILE_KEYS[match.group(1)]
                values.setdefault(direction, IPTABLES_POLICIES.get(match.group(2).upper(), match.group(2).lower()))
    return values


# --- auditd watch rules ---


def split_watch_line(line: str) -> tuple[str, str] | None:
    """`-w /etc/passwd -p wa -k identity` -> ("/etc/passwd", "-p wa -k identity")."""
    fields = line.split()
    if len(fields) < 2 or fields[0] != "-w":
        return None
    return fields[1], " ".join(fields[2:])


def watch_key(key: str, settings=None) -> str:
    return key.strip()


def watch_entries(lines: list[str]) -> list[tuple[int, str, str]]:
    entries = []
    for index, line in enumerate(lines):
        parsed = split_watch_line(line)
        if parsed is not None:
            entries.append((index, parsed[0], parsed[1]))
    return entries


def normalize_audit_rules(content: str | None, settings=None) -> dict[str, str]:
    values = {}
    for _, path, rule in watch_entries((content or "").splitlines()):
        values.setdefault(path, rule)
    return values


NORMALIZERS = {
    ResourceKind.RULE: normalize_rules,
    ResourceKind.FILE_BLOCK: normalize_keyword_file,
    ResourceKind.INI: normalize_ini,
    ResourceKind.CRON: normalize_crontab,
    ResourceKind.POLICY: normalize_policy,
    ResourceKind.WATCH: normalize_audit_rules,
}

KEY_NORMALIZERS = {
    ResourceKind.RULE: rule_key,
    ResourceKind.FILE_BLOCK: keyword_key,
    ResourceKind.INI: ini_key,
    ResourceKind.CRON: cron_key,
    ResourceKind.POLICY: policy_key,
    ResourceKind.WATCH: watch_key,
}


def canonical_key(kind: ResourceKind, settings, key: str) -> str:
    return KEY_NORMALIZERS[kind](key, settings)


def canonical_value(kind: ResourceKind, value: str | None) -> str | None:
    if value is None:
        return None
    value = collapse(value)
    if kind in (ResourceKind.RULE, ResourceKind.POLICY):
        value = value.lower()
    return value


def normalize(kind: ResourceKind, content: str | None, settings) -> dict[str, str]:
    return NORMALIZERS[kind](content, settings)


def probe(adapter) -> ProbedState:
    """Read a resource through its adapter and canonicalise it.

    Raises ResourceUnavailable if the adapter cannot read the resource.
    """
    raw = adapter.probe()
    return ProbedState(
        resource=adapter.name,
        kind=adapter.kind,
        raw=raw,
        values=normalize(adapter.kind, raw.content, adapter.settings),
    )
