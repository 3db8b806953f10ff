from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for failures raised by the reconciliation engine."""


class AuthorizationMismatch(ReconciliationError):
    def __init__(self, email: str) -> None:
        super().__init__(f"{email} is not linked to the requesting member")
        self.email = email


class EntitlementQueryFailed(ReconciliationError):
    """Stripe could not be queried. Never means "not entitled"."""


class SignatureVerificationFailed(ReconciliationError):
    pass


class PersistenceFailure(ReconciliationError):
    def __init__(self, email: str, cause: BaseException) -> None:
        super().__init__(f"Durable store write failed for {email}: {cause}")
        self.email = email
        self.cause = cause


class CommunityUnavailable(ReconciliationError):
    pass
