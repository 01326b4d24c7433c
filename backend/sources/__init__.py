"""Source scanner definitions."""

from typing import Callable, Iterable, Optional

from engine.models.scan import ScanType
from engine.models.user import PlanTier
from sources.base import (
    IdentityProfile,
    OutcomeStatus,
    RawHit,
    ScannerOutcome,
    ScannerType,
    SourceScanner,
)
from sources.breach import BreachScanner, DarkWebScanner
from sources.manual_check import MANUAL_CHECK_SITES, ManualCheckScanner
from sources.people_search import (
    DYNAMIC_BROKERS,
    STATIC_BROKERS,
    BrokerSearch,
    BrowserBrokerScanner,
    StaticBrokerScanner,
)


def _static(search: BrokerSearch) -> Callable[[], SourceScanner]:
    return lambda: StaticBrokerScanner(search)


def _dynamic(search: BrokerSearch) -> Callable[[], SourceScanner]:
    return lambda: BrowserBrokerScanner(search)


def _manual(site) -> Callable[[], SourceScanner]:
    return lambda: ManualCheckScanner(site)


# Ordered catalog of every scanner: (type, source, factory)
SCANNER_CATALOG: list[tuple[ScannerType, str, Callable[[], SourceScanner]]] = [
    *[(ScannerType.STATIC_BROKER, s.source, _static(s)) for s in STATIC_BROKERS],
    *[(ScannerType.DYNAMIC_BROKER, s.source, _dynamic(s)) for s in DYNAMIC_BROKERS],
    (ScannerType.BREACH_DB, BreachScanner.source, BreachScanner),
    (ScannerType.DARK_WEB, DarkWebScanner.source, DarkWebScanner),
    *[(ScannerType.MANUAL_CHECK, s.source, _manual(s)) for s in MANUAL_CHECK_SITES],
]

# Scanner types each plan may run
PLAN_SCANNER_TYPES = {
    PlanTier.FREE: {ScannerType.STATIC_BROKER, ScannerType.BREACH_DB, ScannerType.MANUAL_CHECK},
    PlanTier.PRO: set(ScannerType),
    PlanTier.ENTERPRISE: set(ScannerType),
}

# Slow or interactive scanner types left out of quick scans
QUICK_EXCLUDED_TYPES = {ScannerType.DYNAMIC_BROKER, ScannerType.MANUAL_CHECK}


def build_scanner_set(
    scan_type: ScanType,
    plan_tier: PlanTier,
    matched_sources: Optional[Iterable[str]] = None,
) -> tuple[SourceScanner, ...]:
    """Fresh scanner instances for one run of ``scan_type`` on ``plan_tier``.

    Monitoring scans only revisit sources where the user was found before.
    """
    allowed = PLAN_SCANNER_TYPES[PlanTier(plan_tier)]
    scan_type = ScanType(scan_type)
    matched = {s.upper() for s in matched_sources or ()}

    scanners = []
    for scanner_type, source, factory in SCANNER_CATALOG:
        if scanner_type not in allowed:
            continue
        if scan_type == ScanType.QUICK and scanner_type in QUICK_EXCLUDED_TYPES:
            continue
        if scan_type == ScanType.MONITORING and source not in matched:
            continue
        scanners.append(factory())
    return tuple(scanners)


__all__ = [
    "IdentityProfile",
    "OutcomeStatus",
    "RawHit",
    "ScannerOutcome",
    "ScannerType",
    "SourceScanner",
    "StaticBrokerScanner",
    "BrowserBrokerScanner",
    "BreachScanner",
    "DarkWebScanner",
    "ManualCheckScanner",
    "SCANNER_CATALOG",
    "build_scanner_set",
]
