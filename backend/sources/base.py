"""Base class for source scanner implementations."""

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import httpx

from engine.config import settings

logger = logging.getLogger(__name__)


class ScannerType(str, Enum):
    STATIC_BROKER = "STATIC_BROKER"
    DYNAMIC_BROKER = "DYNAMIC_BROKER"
    BREACH_DB = "BREACH_DB"
    DARK_WEB = "DARK_WEB"
    MANUAL_CHECK = "MANUAL_CHECK"


class OutcomeStatus(str, Enum):
    SUCCESS = "SUCCESS"
    EMPTY = "EMPTY"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Address:
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = "US"


@dataclass(frozen=True)
class IdentityProfile:
    """Decrypted, read-only snapshot of the identity being scanned for."""
    full_name: Optional[str] = None
    aliases: tuple[str, ...] = ()
    emails: tuple[str, ...] = ()
    phones: tuple[str, ...] = ()
    addresses: tuple[Address, ...] = ()
    date_of_birth: Optional[str] = None
    usernames: tuple[str, ...] = ()

    @property
    def first_name(self) -> str:
        parts = (self.full_name or "").split()
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        parts = (self.full_name or "").split()
        return parts[-1] if len(parts) > 1 else ""

    @property
    def city(self) -> str:
        return self.addresses[0].city if self.addresses else ""

    @property
    def state(self) -> str:
        return self.addresses[0].state if self.addresses else ""

    def is_empty(self) -> bool:
        return not (self.full_name or self.emails or self.phones or self.addresses or self.usernames)


@dataclass(frozen=True)
class RawHit:
    """Candidate exposure returned by one scanner."""
    source: str
    source_name: str
    data_type: str
    source_url: Optional[str] = None
    data_preview: Optional[str] = None
    severity: str = "MEDIUM"
    manual_check_required: bool = False
    # Fields extracted from the listing: name, city, state, street, emails, phones
    listing: Optional[dict] = None


@dataclass(frozen=True)
class ScannerOutcome:
    """Result record of one scanner invocation."""
    scanner_name: str
    scanner_type: ScannerType
    status: OutcomeStatus
    response_time_ms: int
    result_count: int = 0
    http_status: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class CheckResult:
    """What a scanner's check observed, before timing is attached."""
    status: OutcomeStatus
    hits: list[RawHit] = field(default_factory=list)
    http_status: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None


# Page markers shared by the HTTP and browser scanners
NO_RESULT_INDICATORS = [
    "no results",
    "no records found",
    "we couldn't find",
    "no matches",
    "0 results",
    "no people found",
    "we found 0",
    "couldn't find anyone",
    "did not find",
]

BLOCK_INDICATORS = [
    "captcha",
    "cf-browser-verification",
    "checking your browser",
    "access denied",
    "attention required",
    "are you a robot",
]


class SourceScanner(ABC):
    """Base class for source scanners.

    Subclasses implement ``check``; ``search`` wraps it so ordinary
    failures (transport errors, timeouts, unparseable responses) come back
    as outcome statuses.
    """

    name: str
    source: str
    scanner_type: ScannerType

    @property
    def timeout_budget(self) -> float:
        """Seconds this scanner may run before the orchestrator gives up on it."""
        return float(settings.scanner_timeouts.get(self.scanner_type.value, 30))

    @abstractmethod
    async def check(self, identity: IdentityProfile) -> CheckResult:
        """Query the source and classify what came back."""
        pass

    async def search(self, identity: IdentityProfile) -> tuple[list[RawHit], ScannerOutcome]:
        started = time.monotonic()
        try:
            result = await self.check(identity)
        except httpx.TimeoutException as e:
            result = CheckResult(OutcomeStatus.ERROR, error_type="TIMEOUT", error_message=str(e) or "Request timeout")
        except httpx.HTTPError as e:
            result = CheckResult(OutcomeStatus.ERROR, error_type="NETWORK", error_message=str(e))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Malformed response body; JSONDecodeError is a ValueError
            result = CheckResult(OutcomeStatus.ERROR, error_type="PARSE", error_message=f"{type(e).__name__}: {e}")

        if result.status == OutcomeStatus.SUCCESS and not result.hits:
            result.status = OutcomeStatus.EMPTY

        outcome = ScannerOutcome(
            scanner_name=self.name,
            scanner_type=self.scanner_type,
            status=result.status,
            response_time_ms=int((time.monotonic() - started) * 1000),
            result_count=len(result.hits),
            http_status=result.http_status,
            error_type=result.error_type,
            error_message=result.error_message[:500] if result.error_message else None,
        )
        if outcome.status in (OutcomeStatus.BLOCKED, OutcomeStatus.ERROR):
            logger.info("%s returned %s (%s)", self.name, outcome.status.value, outcome.error_type)
        return result.hits, outcome


def classify_status_code(status_code: int) -> Optional[CheckResult]:
    """Map a non-200 HTTP status to a check result; None for 200."""
    if status_code == 200:
        return None
    if status_code in (403, 429, 503):
        return CheckResult(OutcomeStatus.BLOCKED, http_status=status_code, error_type=f"HTTP_{status_code}")
    if status_code == 404:
        return CheckResult(OutcomeStatus.EMPTY, http_status=status_code)
    return CheckResult(
        OutcomeStatus.ERROR,
        http_status=status_code,
        error_type=f"HTTP_{status_code}",
        error_message=f"HTTP {status_code}",
    )


def looks_blocked(content: str) -> bool:
    content_lower = content.lower()
    return any(marker in content_lower for marker in BLOCK_INDICATORS)


def looks_empty(content: str) -> bool:
    content_lower = content.lower()
    return any(marker in content_lower for marker in NO_RESULT_INDICATORS)


SEVERITY_RULES = [
    ("CRITICAL", {"SSN", "FINANCIAL"}),
    ("HIGH", {"COMBINED_PROFILE", "DOB", "ADDRESS"}),
    ("MEDIUM", {"PHONE", "EMAIL"}),
]


def calculate_severity(data_types) -> str:
    """Severity of an exposure from the kinds of data it reveals."""
    found = set(data_types)
    for severity, kinds in SEVERITY_RULES:
        if found & kinds:
            return severity
    return "LOW"


def mask_data(data: str, data_type: str) -> str:
    """Mask a value for display in an exposure preview."""
    if data_type == "EMAIL":
        local, _, domain = data.partition("@")
        if not domain:
            return "****"
        if len(local) <= 2:
            return "*" * len(local) + "@" + domain
        return local[0] + "*" * (len(local) - 2) + local[-1] + "@" + domain

    if data_type == "PHONE":
        digits = re.sub(r"\D", "", data)
        return "*" * max(0, len(digits) - 4) + digits[-4:]

    if data_type == "SSN":
        return "***-**-" + data[-4:]

    if data_type == "NAME":
        return " ".join("*" if len(p) <= 1 else p[0] + "*" * (len(p) - 1) for p in data.split(" "))

    if data_type == "ADDRESS":
        parts = data.split(" ")
        if len(parts) <= 2:
            return "*" * len(data)
        masked = []
        for i, part in enumerate(parts):
            if i == 0:
                masked.append("*" * len(part))
            elif i >= len(parts) - 2:
                masked.append(part)
            else:
                masked.append(part[:1] + "*" * max(0, len(part) - 1))
        return " ".join(masked)

    if len(data) <= 4:
        return "*" * len(data)
    return data[:2] + "*" * (len(data) - 4) + data[-2:]
