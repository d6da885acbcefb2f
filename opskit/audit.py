"""Append-only audit log for vps-ops-kit.

Entries are stored as newline-delimited JSON in daily files under
``<state_dir>/audit/``. Each line is flushed and synced before the executor
moves on, so the log survives an interrupted run.
"""

import os
import secrets
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from opskit.planner import Action


class Outcome(str, Enum):
    SKIPPED = "skipped"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CONVERGENCE_MISMATCH = "convergence_mismatch"
    ABORTED = "aborted"
    DECLINED = "declined"
    UNAVAILABLE = "unavailable"
    RESTORED = "restored"


# Outcomes that leave the resource short of the directive because something broke
FAILURE_OUTCOMES = (Outcome.FAILED, Outcome.ROLLED_BACK, Outcome.UNAVAILABLE)


def new_run_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(3)}"


class AuditEntry(BaseModel):
    """A single audit log entry."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    # None for entries that restore a snapshot rather than carry out a directive
    action: Action | None = None
    outcome: Outcome
    detail: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    snapshot_ref: str | None = None
    resource: str | None = None
    restored_from: str | None = None

    @property
    def label(self) -> str:
        if self.action is not None:
            return self.action.directive.label
        return f"{self.resource}: restore {self.restored_from}"


class AuditLog:
    """JSONL audit log. Entries are only ever appended."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self.base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def append(self, entry: AuditEntry) -> None:
        path = self._log_file_for_date(entry.timestamp)
        with open(path, "a", encoding="utf-8") as f:
            f.write(entry.model_dump_json() + "\n")
            f.flush()
            os.fsync(f.fileno())

    def read_entries(self, run_id: str | None = None) -> list[AuditEntry]:
        """Read entries from every log file, oldest first.

        Lines that no longer parse are skipped.
        """
        entries = []
        for path in sorted(self.base_dir.glob("*.jsonl")):
            for line in path.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    entry = AuditEntry.model_validate_json(line)
                except ValidationError:
                    continue
                if run_id is None or entry.run_id == run_id:
                    entries.append(entry)
        return entries

    def run_ids(self) -> list[str]:
        """Run ids in the order they first appear."""
        seen = []
        for entry in self.read_entries():
            if entry.run_id not in seen:
                seen.append(entry.run_id)
        return seen

    def last_run_id(self) -> str | None:
        ids = self.run_ids()
        return ids[-1] if ids else None
