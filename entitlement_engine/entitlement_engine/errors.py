"""Error taxonomy for entitlement reconciliation and pause control.

Every error carries a stable machine-readable ``code`` and the HTTP status
the API boundary should answer with.  Callers recover all of them at the
edge of a reconciliation or pause call and render them as typed results.
"""

from __future__ import annotations


class EntitlementError(Exception):
    """Base class for all recoverable entitlement errors."""

    code: str = "entitlement_error"
    status_code: int = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthenticated(EntitlementError):
    """Raised when a request carries no usable identity."""

    code = "unauthenticated"
    status_code = 401


class InvalidRequest(EntitlementError):
    """Raised for malformed input such as an unknown role or tier."""

    code = "invalid_request"
    status_code = 400


class AlreadyUsed(EntitlementError):
    """Raised when an identity attempts to start a second trial."""

    code = "already_used"
    status_code = 409


class NotEligible(EntitlementError):
    """Raised when the owning tier is below the pause threshold."""

    code = "not_eligible"
    status_code = 403


class QuotaExhausted(EntitlementError):
    """Raised when every pause credit for the period has been consumed."""

    code = "quota_exhausted"
    status_code = 409


class NotPaused(EntitlementError):
    """Raised when resuming a profile that is not paused."""

    code = "not_paused"
    status_code = 409


class ProviderUnavailable(EntitlementError):
    """Raised when the payment provider fails or times out.

    No persisted state is modified when this is raised.
    """

    code = "provider_unavailable"
    status_code = 503


class PersistenceFailure(EntitlementError):
    """Raised when the state store rejects a read or write."""

    code = "persistence_failure"
    status_code = 503
