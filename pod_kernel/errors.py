"""
Pod Kernel error types.

The kernel is fail-closed around persistence: a state file it cannot trust
is surfaced to the caller, never silently reinitialized.
"""

from typing import Optional


class PodKernelError(Exception):
    """Base class for pod kernel errors."""


class StateStoreError(PodKernelError):
    """Raised when the persisted pod state cannot be read or written."""


class StateIOError(StateStoreError):
    """Reading or writing the state file failed at the OS level."""


class StateSerializationError(StateStoreError):
    """The state file is not valid JSON or does not match the state schema."""


class StateValidationError(StateStoreError):
    """The state violates an invariant (format version, empty pod name)."""


class ReadinessError(PodKernelError):
    """Base class for readiness polling failures."""

    def __init__(self, pod_id: str, message: str):
        self.pod_id = pod_id
        super().__init__(message)


class PodNotFoundError(ReadinessError):
    def __init__(self, pod_id: str):
        super().__init__(pod_id, f"pod not found: {pod_id}")


class ReadinessTimeoutError(ReadinessError):
    def __init__(self, pod_id: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(
            pod_id, f"timeout waiting for pod {pod_id} readiness after {timeout_s}s"
        )


class ConfigError(PodKernelError):
    """Raised when an environment value is missing or invalid."""

    def __init__(self, key: str, value: Optional[str], reason: str):
        self.key = key
        self.value = value
        super().__init__(f"invalid env var {key}={value!r}: {reason}")


class ExecutionError(PodKernelError):
    """Raised by executors when a planned action fails remotely."""
