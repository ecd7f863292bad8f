"""
Error taxonomy for the memory system.

Backend errors carry the identity of the failing backend and operation so
callers can tell which dependency broke without unpacking the cause chain.
"""


class SupermemoryError(Exception):
    """Base class for all errors raised by this package."""


class BackendError(SupermemoryError):
    """An error attributed to a specific backend operation."""

    def __init__(self, backend: str, operation: str, message: str = ""):
        self.backend = backend
        self.operation = operation
        detail = f": {message}" if message else ""
        super().__init__(f"{backend} {operation} failed{detail}")


class TransientBackendError(BackendError):
    """Network, timeout or rate-limit failure that is worth retrying."""


class BackendUnavailableError(BackendError):
    """A backend operation failed for good (retries exhausted or fatal error)."""


class EmbeddingError(BackendUnavailableError):
    """The embedding backend could not produce a usable vector."""


class GenerationError(BackendUnavailableError):
    """The text-generation backend failed to produce a reply."""


class ProvisioningTimeoutError(BackendUnavailableError):
    """A hosted index/collection did not become ready in time."""


class MalformedResponseError(SupermemoryError):
    """A backend returned output that could not be parsed into the expected shape."""


class ValidationError(SupermemoryError, ValueError):
    """Input or stored data violates an invariant (dimension, importance range, ...)."""


class NotFoundError(SupermemoryError, KeyError):
    """A record requested by id does not exist."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Memory not found: {record_id}")

    def __str__(self) -> str:
        return self.args[0]
