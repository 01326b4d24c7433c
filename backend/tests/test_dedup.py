"""Deduplication of scan hits against exposure history."""

from datetime import datetime

import pytest

from engine.models.exposure import Exposure, ExposureStatus
from engine.services.dedup import (
    ExposureDeduplicator,
    SkipReason,
    dedup_key,
    touch_refreshed,
)
from sources.base import RawHit


def exposure(status=ExposureStatus.ACTIVE, source="SPOKEO", name="Spokeo", preview="J*** D** - Austin, TX"):
    return Exposure(
        source=source,
        source_name=name,
        data_type="COMBINED_PROFILE",
        data_preview=preview,
        status=status,
        last_seen_at=datetime(2026, 1, 1),
    )


def hit(source="SPOKEO", name="Spokeo", preview="J*** D** - Austin, TX"):
    return RawHit(source=source, source_name=name, data_type="COMBINED_PROFILE", data_preview=preview)


class TestDedupKey:
    def test_key_ignores_case_and_whitespace(self):
        assert dedup_key("spokeo ", "Spokeo", "J*** D**  - Austin") == dedup_key("SPOKEO", "spokeo", "j*** d** - austin")

    def test_different_preview_is_a_different_key(self):
        assert dedup_key("SPOKEO", "Spokeo", "A") != dedup_key("SPOKEO", "Spokeo", "B")


class TestClassify:
    def test_unknown_hit_is_new(self):
        result = ExposureDeduplicator([]).classify([hit()])
        assert len(result.new) == 1
        assert result.refreshed == [] and result.skipped == []

    @pytest.mark.parametrize("status", [ExposureStatus.ACTIVE, ExposureStatus.WHITELISTED])
    def test_match_outside_remediation_refreshes(self, status):
        existing = exposure(status)
        result = ExposureDeduplicator([existing]).classify([hit()])

        assert result.new == []
        assert result.refreshed == [(hit(), existing)]

    @pytest.mark.parametrize("status", [
        ExposureStatus.REMOVAL_PENDING,
        ExposureStatus.REMOVAL_IN_PROGRESS,
        ExposureStatus.REMOVED,
    ])
    def test_match_in_remediation_is_skipped(self, status):
        existing = exposure(status)
        result = ExposureDeduplicator([existing]).classify([hit()])

        assert result.new == [] and result.refreshed == []
        assert result.skipped[0].reason == SkipReason.IN_REMEDIATION
        assert result.skipped[0].exposure is existing

    def test_repeated_hit_in_one_batch_is_skipped(self):
        result = ExposureDeduplicator([]).classify([hit(), hit()])
        assert len(result.new) == 1
        assert result.skipped[0].reason == SkipReason.DUPLICATE_IN_BATCH

    def test_remediation_wins_over_duplicate_history(self):
        active = exposure(ExposureStatus.ACTIVE)
        removed = exposure(ExposureStatus.REMOVED)
        result = ExposureDeduplicator([active, removed]).classify([hit()])
        assert result.skipped[0].exposure is removed

    def test_counts_reconcile(self):
        history = [
            exposure(ExposureStatus.ACTIVE, source="SPOKEO"),
            exposure(ExposureStatus.REMOVED, source="RADARIS", name="Radaris"),
        ]
        hits = [
            hit(source="SPOKEO"),
            hit(source="RADARIS", name="Radaris"),
            hit(source="WHITEPAGES", name="WhitePages"),
            hit(source="WHITEPAGES", name="WhitePages"),
            hit(source="THATSTHEM", name="ThatsThem"),
        ]
        result = ExposureDeduplicator(history).classify(hits)

        assert (len(result.new), len(result.refreshed), len(result.skipped)) == (2, 1, 2)
        assert result.total == len(hits)


def test_touch_refreshed_only_moves_last_seen():
    existing = exposure(ExposureStatus.ACTIVE)
    result = ExposureDeduplicator([existing]).classify([hit()])

    seen_at = datetime(2026, 3, 1)
    touch_refreshed(result, seen_at)

    assert existing.last_seen_at == seen_at
    assert existing.status == ExposureStatus.ACTIVE
