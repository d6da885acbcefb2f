"""Snapshot store for vps-ops-kit.

A snapshot is the exact content of a file-like resource captured right before
the executor writes to it. Snapshots are kept as JSON documents under
``<state_dir>/snapshots/`` and are never deleted by the tool; removing old
ones is left to the operator.
"""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from opskit.directives import ResourceKind


class ResourceSnapshot(BaseModel):
    """Pre-write content of one resource. ``raw_content`` is None if it did not exist."""

    model_config = ConfigDict(frozen=True)

    id: str
    resource: str
    kind: ResourceKind
    raw_content: str | None
    captured_at: datetime


class SnapshotStore:
    """File-based store keyed by capture timestamp."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, snapshot_id: str) -> Path:
        return self.base_dir / f"{snapshot_id}.json"

    def save(self, resource: str, kind: ResourceKind, raw_content: str | None) -> ResourceSnapshot:
        """Persist a snapshot and return it."""
        captured_at = datetime.now()
        base_id = f"{captured_at.strftime('%Y%m%d-%H%M%S-%f')}-{resource}"
        snapshot_id = base_id
        counter = 1
        while self._path(snapshot_id).exists():
            snapshot_id = f"{base_id}-{counter}"
            counter += 1

        snapshot = ResourceSnapshot(
            id=snapshot_id,
            resource=resource,
            kind=kind,
            raw_content=raw_content,
            captured_at=captured_at,
        )
        self._path(snapshot_id).write_text(snapshot.model_dump_json(indent=2))
        return snapshot

    def load(self, snapshot_id: str) -> ResourceSnapshot:
        path = self._path(snapshot_id)
        if not path.exists():
            raise FileNotFoundError(f"Snapshot not found: {snapshot_id}")
        return ResourceSnapshot.model_validate_json(path.read_text())

    def list(self, resource: str | None = None) -> list[ResourceSnapshot]:
        """All snapshots, oldest first, optionally for one resource."""
        snapshots = [
            ResourceSnapshot.model_validate_json(path.read_text())
            for path in self.base_dir.glob("*.json")
        ]
        if resource is not None:
            snapshots = [s for s in snapshots if s.resource == resource]
        return sorted(snapshots, key=lambda s: (s.captured_at, s.id))
