"""vps-ops-kit library modules."""

from opskit.audit import AuditEntry, AuditLog, Outcome
from opskit.config import load_config, validate_config, OpsKitConfig
from opskit.directives import Directive, DirectiveSet, MatchMode, ResourceKind, load_directives
from opskit.errors import (
    ApplyRejected,
    MalformedDirective,
    OpsKitError,
    ResourceUnavailable,
    ValidationFailed,
)
from opskit.executor import execute
from opskit.gate import ConfirmationGate
from opskit.planner import Action, ActionKind, Plan, plan
from opskit.reconcile import RunResult, reconcile, rollback
from opskit.resources import ResourceRegistry
from opskit.snapshots import ResourceSnapshot, SnapshotStore
from opskit.ssh import SSHConnection

__all__ = [
    "load_config",
    "validate_config",
    "OpsKitConfig",
    "SSHConnection",
    "Directive",
    "DirectiveSet",
    "MatchMode",
    "ResourceKind",
    "load_directives",
    "ResourceRegistry",
    "Action",
    "ActionKind",
    "Plan",
    "plan",
    "ConfirmationGate",
    "execute",
    "AuditEntry",
    "AuditLog",
    "Outcome",
    "ResourceSnapshot",
    "SnapshotStore",
    "RunResult",
    "reconcile",
    "rollback",
    "OpsKitError",
    "ResourceUnavailable",
    "ApplyRejected",
    "ValidationFailed",
    "MalformedDirective",
]
