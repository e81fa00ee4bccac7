"""Enumerations shared across the fax request subsystem."""
from enum import Enum


class OpportunityStatus(str, Enum):
    """Lifecycle status of an opportunity (wire values match the store)."""
    NOT_SUBMITTED = "Not Submitted"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    COMPLETED = "Completed"
    DENIED = "Denied"
    DIDNT_WORK = "Didn't Work"
    FLAGGED = "Flagged"


class DocumentMode(str, Enum):
    """Single opportunity per document, or several for one patient/prescriber."""
    SINGLE = "single"
    BATCH = "batch"


class GroupingContext(str, Enum):
    """Dimension the opportunity list is grouped by in the dashboard."""
    PATIENT = "patient"
    BIN = "bin"
    GROUP = "group"
    CONTRACT = "contract"
    CATEGORY = "category"
    PRESCRIBER = "prescriber"


class ChangeKind(str, Enum):
    """Kind of therapy change, used to pre-check the response checkboxes."""
    GENERIC_SUBSTITUTION = "generic_substitution"
    THERAPEUTIC_ALTERNATIVE = "therapeutic_alternative"
    FORMULARY_CHANGE = "formulary_change"
    UNCLASSIFIED = "unclassified"


class FlowState(str, Enum):
    """States of a single preflight/send flow."""
    IDLE = "idle"
    PREFLIGHT_PENDING = "preflight_pending"
    PREFLIGHT_READY = "preflight_ready"
    PREFLIGHT_BLOCKED = "preflight_blocked"
    SENDING = "sending"
    SENT = "sent"
    SEND_FAILED = "send_failed"


class SendOutcomeStatus(str, Enum):
    """Result of invoking the Send action."""
    SENT = "sent"
    FAILED = "failed"
    DISABLED = "disabled"
    BLOCKED = "blocked"
    NEEDS_ACKNOWLEDGEMENT = "needs_acknowledgement"


class GateVerdict(str, Enum):
    """Prescriber volume evaluation result."""
    CLEAR = "clear"
    WARNED = "warned"
    BLOCKED = "blocked"


class GateDecisionStatus(str, Enum):
    """What the safety gate did with a requested status change."""
    APPLIED = "applied"
    WARNED = "warned"
    BLOCKED = "blocked"
    REJECTED = "rejected"
    FAILED = "failed"


class FaxHistoryStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
