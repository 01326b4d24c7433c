"""Database models."""

from engine.models.user import PlanTier, User, UserProfile
from engine.models.scan import ScanType, ScanStatus, ScanRun, ScannerOutcomeLog
from engine.models.exposure import Exposure, ExposureStatus, REMEDIATION_STATUSES
from engine.models.request import (
    RemovalRequest,
    RemovalStatus,
    RemovalMethod,
    ACTIVE_REMOVAL_STATUSES,
)
from engine.models.alert import Alert

__all__ = [
    "PlanTier",
    "User",
    "UserProfile",
    "ScanType",
    "ScanStatus",
    "ScanRun",
    "ScannerOutcomeLog",
    "Exposure",
    "ExposureStatus",
    "REMEDIATION_STATUSES",
    "RemovalRequest",
    "RemovalStatus",
    "RemovalMethod",
    "ACTIVE_REMOVAL_STATUSES",
    "Alert",
]
