"""Removal method selection from the per-source capability table."""

from dataclasses import dataclass, field
from typing import Optional

from engine.config import settings
from engine.models.request import RemovalMethod
from engine.services.broker_directory import get_data_broker_info


@dataclass(frozen=True)
class FormConfig:
    """Opt-out form the browser automation can fill."""
    url: str
    selectors: dict = field(default_factory=dict)  # name, email, phone, profile_url, street, city, state, zip
    submit: str = "button[type='submit']"
    confirmation: str = ".success, .confirmation"
    captcha: Optional[str] = None  # recaptcha_v2, hcaptcha
    cloudflare: bool = False


FORM_CONFIGS: dict[str, FormConfig] = {
    "TRUEPEOPLESEARCH": FormConfig(
        url="https://www.truepeoplesearch.com/removal",
        selectors={
            "profile_url": 'input[name="RecordUrl"], input[placeholder*="URL"]',
            "email": "input[name='email'], #email",
        },
        submit='button[type="submit"], input[value*="Remove"]',
    ),
    "FASTPEOPLESEARCH": FormConfig(
        url="https://www.fastpeoplesearch.com/removal",
        selectors={"name": "input[name='name']", "email": "input[name='email']"},
        confirmation=".success, .removed",
        cloudflare=True,
    ),
    "SPOKEO": FormConfig(
        url="https://www.spokeo.com/optout",
        selectors={"profile_url": 'input[name="url"], input[id="url"]', "email": "input[name='email'], input[type='email']"},
        submit="button[type='submit'], .submit-btn",
        captcha="recaptcha_v2",
        cloudflare=True,
    ),
    "WHITEPAGES": FormConfig(
        url="https://www.whitepages.com/suppression-requests",
        selectors={"name": "input[name='name']", "email": "input[name='email']", "phone": "input[name='phone']"},
        captcha="recaptcha_v2",
        cloudflare=True,
    ),
    "BEENVERIFIED": FormConfig(
        url="https://www.beenverified.com/opt-out/",
        selectors={"email": "input[name='email']"},
        captcha="recaptcha_v2",
        cloudflare=True,
    ),
    "RADARIS": FormConfig(
        url="https://radaris.com/control/privacy",
        selectors={"name": "input[name='name']", "email": "input[name='email']"},
        captcha="recaptcha_v2",
    ),
    "USPHONEBOOK": FormConfig(
        url="https://www.usphonebook.com/opt-out",
        selectors={"profile_url": "input[name='url']", "email": "input[name='email']"},
    ),
    "NUWBER": FormConfig(
        url="https://nuwber.com/removal/link",
        selectors={"profile_url": "input[name='url']", "email": "input[name='email']"},
        captcha="hcaptcha",
    ),
    "THATSTHEM": FormConfig(
        url="https://thatsthem.com/optout",
        selectors={"name": "input[name='name']", "email": "input[name='email']"},
        cloudflare=True,
    ),
}


@dataclass(frozen=True)
class MethodChoice:
    method: RemovalMethod
    reason: str
    can_automate: bool


def can_automate_form(source: str, captcha_solver_enabled: Optional[bool] = None) -> tuple[bool, str]:
    """Whether the opt-out form for ``source`` can be submitted unattended, and why not."""
    if captcha_solver_enabled is None:
        captcha_solver_enabled = settings.captcha_solver_enabled

    config = FORM_CONFIGS.get(source)
    if config is None:
        return False, "No form configuration"
    if config.cloudflare:
        return False, "Cloudflare bot protection"
    if config.captcha and not captcha_solver_enabled:
        return False, "Requires CAPTCHA, solver not configured"
    return True, ""


def get_best_automation_method(source: str, captcha_solver_enabled: Optional[bool] = None) -> MethodChoice:
    """Most automatable removal method for a source: form, then email, then a manual guide."""
    broker = get_data_broker_info(source)
    if broker is None:
        return MethodChoice(RemovalMethod.MANUAL_GUIDE, "Unknown broker - not in directory", False)
    if broker.removal_method == "MONITOR":
        return MethodChoice(RemovalMethod.MANUAL_GUIDE, "Monitor-only source, data can't be removed", False)

    form_ok, blocked_reason = can_automate_form(source, captcha_solver_enabled)
    if form_ok:
        return MethodChoice(RemovalMethod.AUTO_FORM, "Form automation available", True)

    if broker.removal_method in ("EMAIL", "BOTH") and broker.privacy_email:
        return MethodChoice(
            RemovalMethod.AUTO_EMAIL,
            f"Form blocked ({blocked_reason}), using email automation instead",
            True,
        )

    if broker.removal_method == "FORM" and source in FORM_CONFIGS:
        reason = f"Form-only broker, {blocked_reason.lower()}"
    else:
        reason = f"No automation available - {blocked_reason}"
    return MethodChoice(RemovalMethod.MANUAL_GUIDE, reason, False)


def get_manual_instructions(source: str) -> str:
    """Step-by-step opt-out guide for a user doing the removal themselves."""
    broker = get_data_broker_info(source)
    if broker is None:
        return "This source is not in our broker directory. Contact support for help removing this listing."

    form = FORM_CONFIGS.get(source)
    steps = []
    if broker.opt_out_url:
        steps.append(f"Visit the opt-out page: {broker.opt_out_url}")
        steps.append("Search for your listing using your name and location")
        steps.append("Select your profile from the search results")
    if form:
        steps.append("Fill out the opt-out form with your information")
        if form.captcha:
            steps.append("Complete the CAPTCHA verification")
        steps.append("Submit the form and save any confirmation")
    elif broker.privacy_email:
        steps.append(f"If no form is available, email: {broker.privacy_email}")
        steps.append("Include your full name and any profile URLs")
        steps.append("Reference CCPA/GDPR rights in your request")

    lines = [f"To remove your data from {broker.name}:", ""]
    lines += [f"{i}. {step}" for i, step in enumerate(steps, start=1)]
    if broker.estimated_days:
        lines += ["", f"Estimated processing time: {broker.estimated_days} days"]
    if broker.notes:
        lines.append(f"Note: {broker.notes}")
    return "\n".join(lines)


def daily_cap_for(source: str) -> int:
    """Max submissions per day to one source."""
    return settings.removal_daily_caps.get(source, settings.removal_daily_cap_default)
