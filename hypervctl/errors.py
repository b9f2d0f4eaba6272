"""Project-specific exception types."""

from __future__ import annotations


class HyperVError(RuntimeError):
    """Base error for domain-level hypervctl failures."""


class ResourceNotFoundError(HyperVError):
    """Raised when a named machine, switch, NAT, drive, or interface is missing."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f'{kind.capitalize()} [{name}] does not exist.')


class ResourceConflictError(HyperVError):
    """Raised when an operation would violate a uniqueness or state rule."""


class CapabilityMissingError(HyperVError):
    """Raised when a guest capability needed for a graceful action is disabled."""

    def __init__(self, machine_name: str, capability: str):
        self.machine_name = machine_name
        self.capability = capability
        super().__init__(
            f'Cannot perform graceful action on [{machine_name}] because the '
            f'[{capability}] guest service is not enabled.'
        )


class StabilizationTimeoutError(HyperVError, TimeoutError):
    """Raised when the host never reaches the expected post-condition."""

    def __init__(
        self, operation: str, resource: str | None, timeout: float | None
    ):
        self.operation = operation
        self.resource = resource
        self.timeout = timeout
        target = f' on [{resource}]' if resource else ''
        super().__init__(
            f'Timed out after {timeout}s waiting for {operation}{target} to stabilize.'
        )


class PoolExhaustedError(HyperVError):
    """Raised when no execution context became available in time."""


class PoolClosedError(HyperVError):
    """Raised when borrowing from a pool that has been closed."""


class DriverClosedError(HyperVError):
    """Raised when a driver is used after close()."""


class SessionError(HyperVError):
    """Raised when a PowerShell session dies or breaks response framing."""


class SnapshotError(HyperVError, ValueError):
    """Raised when a host record does not have the expected shape."""


class HostCommandError(HyperVError):
    """Raised when the host reports a failed management command."""

    def __init__(
        self, operation: str, message: str, resource: str | None = None
    ):
        self.operation = operation
        self.message = message
        self.resource = resource
        target = f' [{resource}]' if resource else ''
        super().__init__(f'{operation}{target} failed: {message}'.strip())
