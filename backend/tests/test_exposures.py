"""Exposure confirmation and re-validation against the current profile."""

import pytest

from engine.errors import ProfileMissingError
from engine.models import ExposureStatus
from engine.services.exposures import confirm_exposure, revalidate_exposures


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirmed_match_is_cleared_for_removal(self, db, make_user, make_exposure):
        user = await make_user()
        exposure = await make_exposure(user, requires_manual_action=True)

        await confirm_exposure(db, exposure, confirmed=True)

        assert exposure.user_confirmed is True
        assert exposure.requires_manual_action is False
        assert exposure.status == ExposureStatus.ACTIVE


class TestRevalidate:
    @pytest.mark.asyncio
    async def test_active_exposures_are_rescored(self, db, make_user, make_profile, make_exposure):
        user = await make_user()
        await make_profile(user)
        email_match = await make_exposure(
            user,
            source="HAVEIBEENPWNED",
            source_name="Have I Been Pwned - Adobe",
            data_type="EMAIL",
            listing={"emails": ["jane.doe@example.com"]},
            requires_manual_action=True,
        )
        name_only = await make_exposure(user, listing={"name": "Jane Doe"})
        in_removal = await make_exposure(
            user,
            source="RADARIS",
            source_name="Radaris",
            listing={"name": "Jane Doe"},
            status=ExposureStatus.REMOVAL_PENDING,
        )

        result = await revalidate_exposures(db, user.id)

        assert result.rescored == 2
        assert result.classifications == {"AUTO_PROCEED": 1, "NEEDS_REVIEW": 1}
        assert result.newly_actionable == 1
        assert email_match.confidence_score == 100
        assert email_match.requires_manual_action is False
        assert name_only.requires_manual_action is True
        assert in_removal.confidence_score is None

    @pytest.mark.asyncio
    async def test_needs_a_profile(self, db, make_user):
        user = await make_user()
        with pytest.raises(ProfileMissingError):
            await revalidate_exposures(db, user.id)
