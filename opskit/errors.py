"""Error types for vps-ops-kit."""


class OpsKitError(Exception):
    """Base class for all vps-ops-kit errors."""


class ResourceUnavailable(OpsKitError):
    """The backend tool for a resource is missing or the host is unreachable."""


class ApplyRejected(OpsKitError):
    """The backend tool refused a write."""


class ValidationFailed(OpsKitError):
    """A post-write check command reported an invalid configuration."""


class MalformedDirective(OpsKitError):
    """A directive set is structurally invalid. Fatal for the whole run."""

    def __init__(self, message: str, index: int | None = None):
        self.index = index
        if index is not None:
            message = f"directive #{index + 1}: {message}"
        super().__init__(message)
