"""Centxo — Error Taxonomy.

Every error surfaced to a caller carries an ErrorCategory so the HTTP layer
can tell "fix your input" apart from "try again later" and "contact support".
"""

from enum import Enum
from typing import List, Optional


class ErrorCategory(str, Enum):
    """What the caller should do about a failure."""

    FIX_INPUT = "fix_input"
    TRY_AGAIN_LATER = "try_again_later"
    RECONNECT = "reconnect"
    CONTACT_SUPPORT = "contact_support"


class CentxoError(Exception):
    """Base class for all surfaced errors."""

    category: ErrorCategory = ErrorCategory.CONTACT_SUPPORT

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthenticationError(CentxoError):
    """No credential in the pool can act on the requested account."""

    category = ErrorCategory.RECONNECT


class InvalidRequestError(CentxoError):
    """Malformed counts, budget, targeting or media. Rejected before any remote call."""

    category = ErrorCategory.FIX_INPUT

    def __init__(self, message: str, details: Optional[List[str]] = None):
        self.details = details or []
        super().__init__(message)


class RemoteError(CentxoError):
    """A remote platform call failed after the retry policy gave up."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: int = 0,
        error_subcode: int = 0,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.error_subcode = error_subcode
        super().__init__(message)


class RemoteTransientError(RemoteError):
    """5xx / rate-limit failures that outlived the bounded retry."""

    category = ErrorCategory.TRY_AGAIN_LATER


class RemoteFatalError(RemoteError):
    """Policy, permission or payload rejection. Never retried."""

    category = ErrorCategory.FIX_INPUT


class AppNotLiveError(RemoteFatalError):
    """The Meta app is still in development mode and cannot create ads."""

    category = ErrorCategory.CONTACT_SUPPORT


class ProvisioningFailure(CentxoError):
    """A run aborted part-way. Resources in `created` remain live remotely."""

    def __init__(
        self,
        stage: str,
        detail: str,
        created: Optional[List[dict]] = None,
        cause: Optional[CentxoError] = None,
    ):
        self.stage = stage
        self.detail = detail
        self.created = created or []
        self.cause = cause
        if cause is not None:
            self.category = cause.category
        super().__init__(f"{stage} failed: {detail}")

    @property
    def created_ids(self) -> List[str]:
        return [r["remote_id"] for r in self.created]
