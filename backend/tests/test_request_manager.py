"""Opt-out submission and the pending request processor."""

from datetime import datetime

import pytest

from engine.config import settings
from engine.models import ExposureStatus, RemovalMethod, RemovalStatus
from engine.services import email as email_service
from engine.services import request_manager
from engine.services.removal_state import create_removal_request
from engine.services.request_manager import (
    RequestManager,
    SubmissionResult,
    extract_confirmation,
    generate_opt_out_email,
    process_pending_requests,
)
from sources.base import Address, IdentityProfile

NOW = datetime(2026, 5, 4, 12, 0)

IDENTITY = IdentityProfile(
    full_name="Jane Doe",
    emails=("jane.doe@example.com",),
    phones=("555-123-4567",),
    addresses=(Address(street="12 Oak St", city="Austin", state="TX", zip_code="78701"),),
)


class ScriptedManager(RequestManager):
    """Returns a canned result per target source and records what it was asked to submit."""

    def __init__(self, results):
        super().__init__()
        self.results = results
        self.submitted = []

    async def submit(self, request, identity, exposure=None):
        self.submitted.append((request.target_source, identity.full_name))
        return self.results[request.target_source]


def ok(method=RemovalMethod.AUTO_EMAIL):
    return SubmissionResult(True, method, confirmation_number="EMAIL_SENT")


class TestProcessPending:
    @pytest.mark.asyncio
    async def test_successful_submission(self, db, make_user, make_profile, make_exposure):
        user = await make_user()
        await make_profile(user)
        exposure = await make_exposure(user)
        request = await create_removal_request(db, exposure)
        manager = ScriptedManager({"SPOKEO": ok()})

        stats = await process_pending_requests(db, manager=manager, now=NOW)

        assert stats == {"processed": 1, "submitted": 1, "deferred": 0, "failed": 0, "manual": 0}
        assert manager.submitted == [("SPOKEO", "Jane Doe")]
        assert request.status == RemovalStatus.SUBMITTED
        assert request.confirmation_number == "EMAIL_SENT"
        assert request.submitted_at == NOW
        assert exposure.status == ExposureStatus.REMOVAL_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_daily_cap_defers_the_rest(self, db, make_user, make_profile, make_exposure, monkeypatch):
        monkeypatch.setitem(settings.removal_daily_caps, "SPOKEO", 1)
        user = await make_user()
        await make_profile(user)
        first = await create_removal_request(db, await make_exposure(user, data_preview="J*** D** - Austin, TX"))
        second = await create_removal_request(db, await make_exposure(user, data_preview="J*** D** - Dallas, TX"))

        stats = await process_pending_requests(db, manager=ScriptedManager({"SPOKEO": ok()}), now=NOW)

        assert (stats["submitted"], stats["deferred"]) == (1, 1)
        assert {first.status, second.status} == {RemovalStatus.SUBMITTED, RemovalStatus.PENDING}

    @pytest.mark.asyncio
    async def test_failure_is_counted_and_retried(self, db, make_user, make_profile, make_exposure):
        user = await make_user()
        await make_profile(user)
        request = await create_removal_request(db, await make_exposure(user))
        failing = SubmissionResult(False, RemovalMethod.AUTO_EMAIL, error="smtp down")

        stats = await process_pending_requests(db, manager=ScriptedManager({"SPOKEO": failing}), now=NOW)

        assert stats["failed"] == 1
        assert request.status == RemovalStatus.PENDING
        assert request.attempts == 1
        assert request.last_error == "smtp down"

    @pytest.mark.asyncio
    async def test_unconfigured_email_is_not_counted_as_sent(self, db, make_user, make_profile, make_exposure, monkeypatch):
        monkeypatch.setattr(settings, "resend_api_key", "")
        user = await make_user()
        await make_profile(user)
        exposure = await make_exposure(user, source="MYLIFE", source_name="MyLife")
        request = await create_removal_request(db, exposure)
        assert request.method == RemovalMethod.AUTO_EMAIL

        stats = await process_pending_requests(db, manager=RequestManager(), now=NOW)

        assert (stats["submitted"], stats["failed"]) == (0, 1)
        assert request.status == RemovalStatus.PENDING
        assert request.confirmation_number is None
        assert request.last_error == "Opt-out email could not be sent"
        assert exposure.status == ExposureStatus.REMOVAL_PENDING

    @pytest.mark.asyncio
    async def test_manual_result_hands_over_to_the_user(self, db, make_user, make_profile, make_exposure):
        user = await make_user()
        await make_profile(user)
        request = await create_removal_request(db, await make_exposure(user))
        guide = SubmissionResult(
            False, RemovalMethod.MANUAL_GUIDE, requires_user_action=True, instructions="Visit the page"
        )
        manager = ScriptedManager({"SPOKEO": guide})

        stats = await process_pending_requests(db, manager=manager, now=NOW)
        assert stats["manual"] == 1
        assert request.method == RemovalMethod.MANUAL_GUIDE
        assert request.requires_user_action is True
        assert request.instructions == "Visit the page"

        # Waiting on the user, so the next run skips it
        stats = await process_pending_requests(db, manager=manager, now=NOW)
        assert stats["processed"] == 0
        assert len(manager.submitted) == 1

    @pytest.mark.asyncio
    async def test_missing_profile_counts_as_failure(self, db, make_user, make_exposure):
        user = await make_user()
        request = await create_removal_request(db, await make_exposure(user))
        manager = ScriptedManager({})

        stats = await process_pending_requests(db, manager=manager, now=NOW)

        assert stats["failed"] == 1
        assert request.last_error == "User profile not found"
        assert manager.submitted == []


class TestSubmission:
    @pytest.mark.asyncio
    async def test_email_submission(self, monkeypatch):
        sent = []

        async def fake_send(to, subject, body, reply_to=None):
            sent.append((to, subject, body, reply_to))
            return True

        monkeypatch.setattr(request_manager.email_service, "send_opt_out_email", fake_send)

        result = await RequestManager()._submit_email("SPOKEO", IDENTITY, None)

        assert result.success
        assert result.confirmation_number == "EMAIL_SENT"
        to, subject, body, reply_to = sent[0]
        assert to == "privacy@spokeo.com"
        assert subject == "Data Removal Request - Jane Doe"
        assert "Spokeo" in body
        assert reply_to == "jane.doe@example.com"

    @pytest.mark.asyncio
    async def test_email_send_failure(self, monkeypatch):
        async def fake_send(to, subject, body, reply_to=None):
            return False

        monkeypatch.setattr(request_manager.email_service, "send_opt_out_email", fake_send)

        result = await RequestManager()._submit_email("SPOKEO", IDENTITY, None)
        assert not result.success
        assert result.error == "Opt-out email could not be sent"

    @pytest.mark.asyncio
    async def test_opt_out_letters_need_a_configured_sender(self, monkeypatch):
        monkeypatch.setattr(settings, "resend_api_key", "")

        assert await email_service.send_email("jane@example.com", "Scan complete", html="<p>done</p>")
        assert not await email_service.send_opt_out_email("privacy@mylife.com", "Data Removal Request", "body")

    @pytest.mark.asyncio
    async def test_broker_without_privacy_email(self):
        result = await RequestManager()._submit_email("USPHONEBOOK", IDENTITY, None)
        assert result.error == "No opt-out email configured"

    @pytest.mark.asyncio
    async def test_form_without_config(self):
        result = await RequestManager()._submit_form("MYLIFE", IDENTITY, None)
        assert not result.success
        assert result.error == "No form configuration"

    def test_manual_guide(self):
        result = RequestManager()._manual_guide("PEOPLELOOKER")
        assert result.requires_user_action
        assert result.instructions.startswith("To remove your data from PeopleLooker")


class TestParsing:
    @pytest.mark.parametrize("content, expected", [
        ("<p>Your confirmation #: AB12-3456</p>", "AB12-3456"),
        ("Reference: XYZ9876", "XYZ9876"),
        ("Request ID 55501234", "55501234"),
        ("Thank you for your submission.", "SUBMITTED"),
        ("<form>Please try again</form>", None),
    ])
    def test_extract_confirmation(self, content, expected):
        assert extract_confirmation(content) == expected

    def test_opt_out_letter(self):
        body = generate_opt_out_email(IDENTITY, "Spokeo", "https://www.spokeo.com/Jane-Doe/p123")

        assert "removal of my personal information from Spokeo" in body
        assert "- Address: 12 Oak St, Austin, TX 78701" in body
        assert "- Email: jane.doe@example.com" in body
        assert "Profile URL: https://www.spokeo.com/Jane-Doe/p123" in body
        assert "CCPA" in body
        assert body.endswith("Jane Doe")
