"""Exceptions for the fax request subsystem."""
from typing import Optional

GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."


class FaxWorkflowError(Exception):
    """Base error for the fax request subsystem."""
    pass


class DocumentScopeError(FaxWorkflowError):
    """Opportunities handed to the composer span patients or prescribers."""
    pass


class InvalidStatusTransition(FaxWorkflowError):
    """Requested status change violates forward-only progression."""
    pass


class InvalidFlowTransition(FaxWorkflowError):
    """Send flow asked to move between states that are not connected."""
    pass


class OpportunityStoreError(FaxWorkflowError):
    """Opportunity store answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, server_reason: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.server_reason = server_reason


class StoreNetworkError(OpportunityStoreError):
    """Opportunity store could not be reached (transient)."""
    pass


class TransmissionFailure(OpportunityStoreError):
    """Fax transmission was not confirmed by the store."""
    pass


class PreflightRejected(FaxWorkflowError):
    """Preflight says sending is not permitted."""

    def __init__(self, warnings):
        self.warnings = list(warnings)
        super().__init__("; ".join(self.warnings) or "Sending is not permitted")


class SafetyGateBlocked(FaxWorkflowError):
    """Prescriber volume reached the block threshold."""
    pass


def user_message(exc: BaseException, fallback: str = GENERIC_FAILURE_MESSAGE) -> str:
    """Human-readable message for an error, preferring the server's reason."""
    reason = getattr(exc, "server_reason", None)
    if reason:
        return reason
    if isinstance(exc, (PreflightRejected, SafetyGateBlocked, DocumentScopeError, InvalidStatusTransition)):
        return str(exc)
    return fallback
