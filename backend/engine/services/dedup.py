"""Exposure deduplication against a user's stored exposure history."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from engine.models.exposure import Exposure, REMEDIATION_STATUSES
from sources.base import RawHit


class SkipReason(str, Enum):
    IN_REMEDIATION = "IN_REMEDIATION"
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"


def _norm(value: Optional[str]) -> str:
    return " ".join((value or "").split()).lower()


def dedup_key(source: str, source_name: Optional[str], data_preview: Optional[str]) -> tuple[str, str, str]:
    """Stable identity of a finding: same source, same listing name, same preview."""
    return ((source or "").strip().upper(), _norm(source_name), _norm(data_preview))


def exposure_key(exposure: Exposure) -> tuple[str, str, str]:
    return dedup_key(exposure.source, exposure.source_name, exposure.data_preview)


def hit_key(hit: RawHit) -> tuple[str, str, str]:
    return dedup_key(hit.source, hit.source_name, hit.data_preview)


@dataclass
class SkippedHit:
    hit: RawHit
    reason: SkipReason
    exposure: Optional[Exposure] = None


@dataclass
class DedupResult:
    """Every hit lands in exactly one of new, refreshed or skipped."""
    new: list[RawHit] = field(default_factory=list)
    refreshed: list[tuple[RawHit, Exposure]] = field(default_factory=list)
    skipped: list[SkippedHit] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.new) + len(self.refreshed) + len(self.skipped)


class ExposureDeduplicator:
    """
    Splits a scan's hits into new, refreshed and skipped.

    The user's exposures are indexed once per run. A hit matching an exposure
    that a removal already owns is skipped so it is never resurrected; a hit
    matching any other exposure only refreshes it.
    """

    def __init__(self, existing: Iterable[Exposure]):
        self._index: dict[tuple, Exposure] = {}
        for exposure in existing:
            key = exposure_key(exposure)
            current = self._index.get(key)
            # When history holds duplicates, one in remediation wins
            if current is None or (
                exposure.status in REMEDIATION_STATUSES and current.status not in REMEDIATION_STATUSES
            ):
                self._index[key] = exposure

    def classify(self, hits: Iterable[RawHit]) -> DedupResult:
        result = DedupResult()
        seen: set[tuple] = set()

        for hit in hits:
            key = hit_key(hit)
            if key in seen:
                result.skipped.append(SkippedHit(hit, SkipReason.DUPLICATE_IN_BATCH, self._index.get(key)))
                continue
            seen.add(key)

            existing = self._index.get(key)
            if existing is None:
                result.new.append(hit)
            elif existing.status in REMEDIATION_STATUSES:
                result.skipped.append(SkippedHit(hit, SkipReason.IN_REMEDIATION, existing))
            else:
                result.refreshed.append((hit, existing))

        return result


def touch_refreshed(result: DedupResult, seen_at: datetime) -> None:
    """Record that refreshed exposures are still listed. Nothing else about them changes."""
    for _, exposure in result.refreshed:
        exposure.last_seen_at = seen_at
