"""
Error taxonomy for the cloud controller.

Every failure the reconcilers can report is a CloudProviderError subclass.
None of them are retried here; the host framework re-runs reconciliation
on its own cadence.
"""

from typing import Optional


class CloudProviderError(Exception):
    """Base class for all cloud provider errors."""


class NotFoundError(CloudProviderError):
    """An expected remote resource does not exist."""


class TransportError(CloudProviderError, LookupError):
    """
    The remote API could not be reached or rejected the request.

    Also a LookupError, which hosts catch for failed status lookups.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code


class GatewayResolutionError(CloudProviderError):
    """No usable gateway IP could be derived for a route."""


class ActionFailedError(CloudProviderError):
    """A provider action reached a terminal failure state."""

    def __init__(
        self,
        message: str,
        action_id: Optional[int] = None,
        code: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.action_id = action_id
        self.code = code
        self.reason = reason


class ActionCanceledError(CloudProviderError):
    """Waiting for a provider action was canceled or hit its deadline."""

    def __init__(self, message: str, action_id: Optional[int] = None):
        super().__init__(message)
        self.action_id = action_id


class MalformedIdentifierError(CloudProviderError, ValueError):
    """A stamped provider identifier does not parse."""
