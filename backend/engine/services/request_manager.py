"""Request manager service for handling opt-out submissions."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from playwright.async_api import Error as PlaywrightError, Page, async_playwright
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engine.config import settings
from engine.db.database import utcnow
from engine.models.exposure import Exposure
from engine.models.request import RemovalMethod, RemovalRequest, RemovalStatus
from engine.models.user import UserProfile
from engine.services import email as email_service
from engine.services.broker_directory import get_data_broker_info
from engine.services.identity import Decryptor, prepare_identity
from engine.services.notifications import Notifier, get_notifier
from engine.services.removal_methods import FORM_CONFIGS, daily_cap_for, get_manual_instructions
from engine.services.removal_state import record_submission_failure, transition
from sources.base import IdentityProfile

logger = logging.getLogger(__name__)

CONFIRMATION_PATTERNS = [
    re.compile(r"confirmation[:\s#]*([A-Z0-9-]{4,})", re.IGNORECASE),
    re.compile(r"reference[:\s#]*([A-Z0-9-]{4,})", re.IGNORECASE),
    re.compile(r"request (?:id|number)[:\s#]*([A-Z0-9-]{4,})", re.IGNORECASE),
]

SUCCESS_INDICATORS = [
    "successfully submitted",
    "request received",
    "we've received your request",
    "your request has been submitted",
    "thank you for your submission",
]


@dataclass
class SubmissionResult:
    """Result of an opt-out submission."""
    success: bool
    method: RemovalMethod
    confirmation_number: Optional[str] = None
    error: Optional[str] = None
    requires_user_action: bool = False
    instructions: Optional[str] = None


def extract_confirmation(content: str) -> Optional[str]:
    """Confirmation number from a post-submit page, "SUBMITTED" when only a success message shows."""
    for pattern in CONFIRMATION_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(1)

    content_lower = content.lower()
    if any(indicator in content_lower for indicator in SUCCESS_INDICATORS):
        return "SUBMITTED"
    return None


def generate_opt_out_email(identity: IdentityProfile, broker_name: str, profile_url: Optional[str] = None) -> str:
    """Opt-out letter body citing CCPA/GDPR."""
    full_name = identity.full_name or ""

    lines = [
        "To Whom It May Concern,",
        "",
        f"I am writing to request the immediate removal of my personal information from {broker_name}.",
        "",
        "Personal Information to Remove:",
        f"- Name: {full_name}",
    ]
    if identity.addresses:
        addr = identity.addresses[0]
        lines.append(f"- Address: {addr.street}, {addr.city}, {addr.state} {addr.zip_code}".replace(" ,", ""))
    if identity.emails:
        lines.append(f"- Email: {', '.join(identity.emails)}")
    if identity.phones:
        lines.append(f"- Phone: {', '.join(identity.phones)}")
    if profile_url:
        lines += ["", f"Profile URL: {profile_url}"]

    lines += [
        "",
        "Under the California Consumer Privacy Act (CCPA), General Data Protection Regulation (GDPR), "
        "and other applicable privacy laws, I have the right to request deletion of my personal information.",
        "",
        "Please confirm receipt of this request and notify me once my data has been removed.",
        "",
        "Sincerely,",
        full_name,
    ]
    return "\n".join(lines)


class RequestManager:
    """Manages opt-out request submissions."""

    def __init__(self, form_timeout_ms: int = 60000):
        self.timeout = form_timeout_ms

    async def submit(
        self,
        request: RemovalRequest,
        identity: IdentityProfile,
        exposure: Optional[Exposure] = None,
    ) -> SubmissionResult:
        """Submit an opt-out request with the method chosen when it was created."""
        method = RemovalMethod(request.method)

        if method == RemovalMethod.AUTO_FORM:
            return await self._submit_form(request.target_source, identity, exposure)
        elif method == RemovalMethod.AUTO_EMAIL:
            return await self._submit_email(request.target_source, identity, exposure)
        else:
            return self._manual_guide(request.target_source)

    async def _submit_form(
        self,
        source: str,
        identity: IdentityProfile,
        exposure: Optional[Exposure],
    ) -> SubmissionResult:
        """Auto-submit opt-out form using Playwright."""
        form = FORM_CONFIGS.get(source)
        if form is None:
            return SubmissionResult(False, RemovalMethod.AUTO_FORM, error="No form configuration")

        values = {
            "name": identity.full_name,
            "first_name": identity.first_name,
            "last_name": identity.last_name,
            "email": identity.emails[0] if identity.emails else None,
            "phone": identity.phones[0] if identity.phones else None,
            "profile_url": exposure.source_url if exposure else None,
        }
        if identity.addresses:
            addr = identity.addresses[0]
            values.update(street=addr.street, city=addr.city, state=addr.state, zip=addr.zip_code)

        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    context = await browser.new_context(user_agent=settings.scanner_user_agent)
                    page = await context.new_page()

                    await page.goto(form.url, timeout=self.timeout)
                    await page.wait_for_load_state("networkidle", timeout=30000)

                    for field_name, selector in form.selectors.items():
                        if values.get(field_name):
                            await self._safe_fill(page, selector, values[field_name])

                    await page.click(form.submit)
                    await page.wait_for_load_state("networkidle", timeout=30000)
                    confirmation = extract_confirmation(await page.content())
                finally:
                    await browser.close()
        except PlaywrightError as e:
            return SubmissionResult(False, RemovalMethod.AUTO_FORM, error=f"Form submission failed: {e}")

        if confirmation is None:
            return SubmissionResult(False, RemovalMethod.AUTO_FORM, error="No confirmation after submitting form")
        return SubmissionResult(True, RemovalMethod.AUTO_FORM, confirmation_number=confirmation)

    async def _safe_fill(self, page: Page, selector: str, value: str) -> bool:
        """Fill a form field if it exists."""
        element = await page.query_selector(selector)
        if element is None:
            logger.debug("Selector %s not found on opt-out form", selector)
            return False
        await element.fill(value)
        return True

    async def _submit_email(
        self,
        source: str,
        identity: IdentityProfile,
        exposure: Optional[Exposure],
    ) -> SubmissionResult:
        """Send the opt-out letter to the broker's privacy address."""
        broker = get_data_broker_info(source)
        if broker is None or not broker.privacy_email:
            return SubmissionResult(False, RemovalMethod.AUTO_EMAIL, error="No opt-out email configured")

        body = generate_opt_out_email(identity, broker.name, exposure.source_url if exposure else None)
        reply_to = identity.emails[0] if identity.emails else None
        sent = await email_service.send_opt_out_email(
            broker.privacy_email,
            f"Data Removal Request - {identity.full_name or 'Personal Information'}",
            body,
            reply_to=reply_to,
        )
        if not sent:
            return SubmissionResult(False, RemovalMethod.AUTO_EMAIL, error="Opt-out email could not be sent")
        return SubmissionResult(True, RemovalMethod.AUTO_EMAIL, confirmation_number="EMAIL_SENT")

    def _manual_guide(self, source: str) -> SubmissionResult:
        return SubmissionResult(
            success=False,
            method=RemovalMethod.MANUAL_GUIDE,
            requires_user_action=True,
            instructions=get_manual_instructions(source),
        )


async def count_submitted_today(db: AsyncSession, source: str, now: Optional[datetime] = None) -> int:
    day_start = (now or utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
    result = await db.execute(
        select(func.count(RemovalRequest.id)).where(
            RemovalRequest.target_source == source,
            RemovalRequest.submitted_at >= day_start,
        )
    )
    return result.scalar_one()


async def process_pending_requests(
    db: AsyncSession,
    manager: Optional[RequestManager] = None,
    notifier: Optional[Notifier] = None,
    decryptor: Optional[Decryptor] = None,
    limit: int = 50,
    now: Optional[datetime] = None,
) -> dict:
    """Submit PENDING requests in batches (called by the Celery worker).

    Sources at their daily cap are deferred to a later run. Requests waiting
    on the user to follow a manual guide are left alone.
    """
    manager = manager or RequestManager()
    notifier = notifier or get_notifier()
    now = now or utcnow()

    result = await db.execute(
        select(RemovalRequest)
        .where(RemovalRequest.status == RemovalStatus.PENDING, RemovalRequest.requires_user_action.is_(False))
        .order_by(RemovalRequest.created_at)
        .limit(limit)
    )
    requests = list(result.scalars().all())

    stats = {"processed": 0, "submitted": 0, "deferred": 0, "failed": 0, "manual": 0}
    submitted_today: dict[str, int] = {}

    for request in requests:
        source = request.target_source
        if source not in submitted_today:
            submitted_today[source] = await count_submitted_today(db, source, now)
        if submitted_today[source] >= daily_cap_for(source):
            stats["deferred"] += 1
            continue

        profile = (
            await db.execute(select(UserProfile).where(UserProfile.user_id == request.user_id))
        ).scalar_one_or_none()
        if profile is None:
            await record_submission_failure(db, request, "User profile not found", notifier)
            stats["failed"] += 1
            continue

        identity = prepare_identity(profile, decryptor)
        exposure = await db.get(Exposure, request.exposure_id)
        submission = await manager.submit(request, identity, exposure)
        stats["processed"] += 1

        if submission.success:
            request.confirmation_number = submission.confirmation_number
            await transition(db, request, RemovalStatus.SUBMITTED, now=now)
            submitted_today[source] += 1
            stats["submitted"] += 1
        elif submission.requires_user_action:
            request.method = submission.method
            request.requires_user_action = True
            request.instructions = submission.instructions
            request.notes = "Waiting for the user to complete the opt-out"
            stats["manual"] += 1
        else:
            await record_submission_failure(db, request, submission.error or "Submission failed", notifier)
            stats["failed"] += 1

    await db.commit()

    if stats["deferred"]:
        logger.info("Deferred %d removal requests at their daily source cap", stats["deferred"])
    logger.info("Processed pending removals: %s", stats)
    return stats
