"""Domain errors raised by the scan and removal pipeline."""

from enum import Enum


class EngineError(Exception):
    """Base class for all pipeline errors surfaced to callers."""


class ConflictReason(str, Enum):
    SCAN_IN_PROGRESS = "scan_in_progress"
    ACTIVE_REQUEST_EXISTS = "active_request_exists"
    EXPOSURE_IN_REMEDIATION = "exposure_in_remediation"
    INVALID_TRANSITION = "invalid_transition"


class ConflictError(EngineError):
    """An operation was rejected because it would break an exclusivity rule."""

    def __init__(self, reason: ConflictReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class PlanLimitError(EngineError):
    """The user's plan does not allow the requested operation."""


class ProfileMissingError(EngineError):
    """The user has no identity profile to scan with."""


class NotFoundError(EngineError):
    """A referenced record does not exist for this user."""


class ScanFailedError(EngineError):
    """The whole scan pipeline failed. The message is safe to show to users."""

    def __init__(self, scan_id=None):
        self.scan_id = scan_id
        super().__init__("Scan failed. Please try again.")
