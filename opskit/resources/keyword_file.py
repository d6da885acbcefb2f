"""Keyword-per-line configuration files (sshd_config, sysctl.d)."""

import shlex

from opskit.directives import Directive, ResourceKind
from opskit.planner import Action, ActionKind
from opskit.prober import keyword_entries, keyword_key, keyword_stop_index, split_keyword
from opskit.resources.base import LAST_ACCESS_PATH, TextFileAdapter, join_lines, split_lines

PASSWORD_AUTH = "PasswordAuthentication"
PUBKEY_AUTH = "PubkeyAuthentication"
INCLUDE = "Include"


class KeywordFileAdapter(TextFileAdapter):
    """Edits individual `Keyword value` lines and leaves everything else alone."""

    kind = ResourceKind.FILE_BLOCK

    def format_line(self, key: str, value: str) -> str:
        if self.settings.separator == "equals":
            return f"{key} = {value}"
        return f"{key} {value}"

    def _commented_index(self, lines: list[str], key: str) -> int | None:
        """Find a commented-out template line such as `#PasswordAuthentication yes`."""
        for index in range(keyword_stop_index(lines, self.settings)):
            stripped = lines[index].strip()
            if not stripped.startswith("#"):
                continue
            parsed = split_keyword(stripped.lstrip("#"), self.settings.separator)
            if parsed and keyword_key(parsed[0], self.settings) == key:
                return index
        return None

    def render(self, action: Action, content: str | None) -> str:
        directive = action.directive
        lines = split_lines(content)
        key = self.canonical_key(directive.key)
        matches = [index for index, entry_key, _ in keyword_entries(lines, self.settings) if entry_key == key]

        if action.kind == ActionKind.ADD:
            new_line = self.format_line(directive.key, directive.value)
            commented = self._commented_index(lines, key)
            if commented is not None:
                lines[commented] = new_line
            else:
                # New keywords must land before any Match block
                lines.insert(keyword_stop_index(lines, self.settings), new_line)
            return join_lines(lines)

        if action.kind == ActionKind.REPLACE:
            effective = matches[0] if self.settings.first_wins else matches[-1]
            lines[effective] = self.format_line(directive.key, directive.value)
            drop = set(matches) - {effective}
        else:
            drop = set(matches)
        return join_lines([line for index, line in enumerate(lines) if index not in drop])

    def _admin_has_key(self) -> bool:
        user = self.settings.admin_user
        home = "/root" if user == "root" else f"/home/{user}"
        result = self._check(f"test -s {shlex.quote(home + '/.ssh/authorized_keys')}")
        return result.ok

    def precondition(self, directive: Directive, values: dict[str, str]) -> str | None:
        """Refuse changes that would leave sshd with no usable login method."""
        if not self.settings.lockout_guard:
            return None

        password_key = self.canonical_key(PASSWORD_AUTH)
        pubkey_key = self.canonical_key(PUBKEY_AUTH)
        key = self.canonical_key(directive.key)
        if key not in (password_key, pubkey_key):
            return None

        after = dict(values)
        if directive.removes:
            after.pop(key, None)
        elif directive.value is not None:
            after[key] = self.canonical_value(directive.value)

        # sshd defaults both methods to yes
        password = after.get(password_key, "yes").lower()
        pubkey = after.get(pubkey_key, "yes").lower()
        if password == "no" and pubkey == "no":
            return LAST_ACCESS_PATH

        disabling_password = key == password_key and password == "no" and values.get(key, "yes").lower() != "no"
        if disabling_password and self.settings.admin_user and not self._admin_has_key():
            return f"{LAST_ACCESS_PATH} ({self.settings.admin_user} has no authorized_keys)"
        return None

    def note(self, directive: Directive, content: str | None) -> str | None:
        """Warn when an `Include` read before the key can override it."""
        if not self.settings.first_wins:
            return None
        include = keyword_key(INCLUDE, self.settings)
        key = self.canonical_key(directive.key)
        for _, entry_key, value in keyword_entries(split_lines(content), self.settings):
            if entry_key == key:
                return None
            if entry_key == include and value:
                return f"{value} is read before {directive.key} in {self.path}; a drop-in there overrides this file"
        return None

    def is_risky(self, action: Action) -> bool:
        # A new keyword overrides the daemon default, so adds count as well
        return self.access_critical and action.mutates

    def check_directive(self, directive: Directive) -> str | None:
        key = directive.key
        if len(key.split()) != 1 or (self.settings.separator == "equals" and "=" in key):
            return f"'{key}' is not a valid keyword for {self.path}"
        if not directive.removes and directive.value is None:
            return f"value required to set '{key}' in {self.path}"
        return None
