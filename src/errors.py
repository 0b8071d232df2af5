"""
Provider errors.

Every failure surfaced to a caller derives from ProviderError so the CLI
can present it uniformly.
"""

from typing import Optional


class ProviderError(Exception):
    """Base class for all provider errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RequestError(ProviderError):
    """Raised when the control plane rejects or fails a request."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.status = status
        self.code = code
        super().__init__(message)

    @property
    def was_not_found(self) -> bool:
        return self.status == 404

    def with_context(self, context: str) -> "RequestError":
        """Return a copy of this error with a context prefix on the message."""
        return RequestError(
            f"{context}: {self.message}", status=self.status, code=self.code
        )


class OperationTimeoutError(ProviderError, TimeoutError):
    """A bounded wait did not reach a terminal state before its deadline."""


class OperationFailedError(ProviderError):
    """A long-running operation finished as Failed or Canceled."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class ResourceIdError(ProviderError, ValueError):
    """A resource ID string could not be parsed."""


class ResourceExistsError(ProviderError):
    """A resource being created already exists and must be imported."""

    def __init__(self, type_name: str, resource_id: str):
        self.type_name = type_name
        self.resource_id = resource_id
        super().__init__(
            f"A resource with the ID {resource_id!r} already exists - to be "
            f"managed it needs to be imported into {type_name!r}"
        )


class ConfigurationError(ProviderError):
    """The desired configuration is invalid."""
