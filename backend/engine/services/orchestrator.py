"""Scan orchestrator - fans an identity out to every selected scanner.

Each scanner runs as its own task with its own timeout. A scanner that
raises, hangs, or returns garbage is recorded as an ERROR outcome and the
rest of the run carries on.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from engine.config import settings
from engine.models.scan import ScanType
from engine.models.user import PlanTier
from sources import build_scanner_set
from sources.base import (
    IdentityProfile,
    OutcomeStatus,
    RawHit,
    ScannerOutcome,
    SourceScanner,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrchestratorConfig:
    """Everything one run needs. Nothing is read from shared mutable state."""
    scan_type: ScanType = ScanType.FULL
    plan_tier: PlanTier = PlanTier.FREE
    matched_sources: frozenset[str] = frozenset()
    max_concurrency: int = field(default_factory=lambda: settings.scan_max_concurrency)
    # Per scanner type overrides of the scanner's own timeout budget, in seconds
    timeouts: dict = field(default_factory=dict)
    # Explicit scanner set; bypasses the registry when given
    scanners: Optional[tuple[SourceScanner, ...]] = None


class ScanOrchestrator:
    """Runs one scan's scanners concurrently and keeps their outcomes."""

    def __init__(self, config: OrchestratorConfig, scanners: tuple[SourceScanner, ...]):
        self.config = config
        self._scanners = scanners
        self._outcomes: list[ScannerOutcome] = []

    @classmethod
    def create(cls, config: OrchestratorConfig) -> "ScanOrchestrator":
        if config.scanners is not None:
            scanners = tuple(config.scanners)
        else:
            scanners = build_scanner_set(config.scan_type, config.plan_tier, config.matched_sources)
        logger.info(
            "Built %d scanners for %s scan on %s plan",
            len(scanners), ScanType(config.scan_type).value, PlanTier(config.plan_tier).value,
        )
        return cls(config, scanners)

    def _timeout_for(self, scanner: SourceScanner) -> float:
        override = self.config.timeouts.get(scanner.scanner_type.value)
        return float(override) if override is not None else scanner.timeout_budget

    async def _run_one(
        self, scanner: SourceScanner, identity: IdentityProfile, semaphore: asyncio.Semaphore
    ) -> tuple[list[RawHit], ScannerOutcome]:
        async with semaphore:
            started = time.monotonic()
            timeout = self._timeout_for(scanner)

            def failed(error_type: str, message: str) -> ScannerOutcome:
                return ScannerOutcome(
                    scanner_name=scanner.name,
                    scanner_type=scanner.scanner_type,
                    status=OutcomeStatus.ERROR,
                    response_time_ms=int((time.monotonic() - started) * 1000),
                    error_type=error_type,
                    error_message=message[:500],
                )

            try:
                hits, outcome = await asyncio.wait_for(scanner.search(identity), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("%s timed out after %.1fs", scanner.name, timeout)
                return [], failed("TIMEOUT", f"No response within {timeout:.1f}s")
            except Exception as e:
                logger.exception("%s raised unexpectedly", scanner.name)
                return [], failed("UNEXPECTED", f"{type(e).__name__}: {e}")

            if not isinstance(outcome, ScannerOutcome) or not isinstance(hits, list):
                return [], failed("INVALID_RESULT", "Scanner returned an invalid result")
            return hits, outcome

    async def run_scan(self, identity: IdentityProfile) -> list[RawHit]:
        """Run every scanner and return all hits. Each scanner's hits keep their order."""
        self._outcomes = []
        if not self._scanners:
            return []

        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        started = time.monotonic()
        results = await asyncio.gather(
            *(self._run_one(scanner, identity, semaphore) for scanner in self._scanners)
        )

        hits: list[RawHit] = []
        for scanner_hits, outcome in results:
            self._outcomes.append(outcome)
            hits.extend(scanner_hits)

        self._log_health(time.monotonic() - started, len(hits))
        return hits

    def _log_health(self, elapsed: float, hit_count: int) -> None:
        counts = self.get_status_counts()
        logger.info(
            "Scan finished in %.1fs: %d scanners, %d hits, status counts %s",
            elapsed, len(self._outcomes), hit_count, dict(sorted(counts.items())),
        )
        failed = [o.scanner_name for o in self._outcomes if o.status == OutcomeStatus.ERROR]
        if failed:
            logger.warning("Failed scanners: %s", ", ".join(failed))

    def get_scanner_count(self) -> int:
        return len(self._scanners)

    def get_scanner_names(self) -> list[str]:
        return [s.name for s in self._scanners]

    def get_outcomes(self) -> list[ScannerOutcome]:
        return list(self._outcomes)

    def get_failed_count(self) -> int:
        return sum(1 for o in self._outcomes if o.status == OutcomeStatus.ERROR)

    def get_sources_checked_count(self) -> int:
        return len(self._outcomes)

    def get_status_counts(self) -> dict[str, int]:
        return dict(Counter(o.status.value for o in self._outcomes))
