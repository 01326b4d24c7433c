"""Removal method selection."""

import pytest

from engine.config import settings
from engine.models.request import RemovalMethod
from engine.services.removal_methods import (
    can_automate_form,
    daily_cap_for,
    get_best_automation_method,
    get_manual_instructions,
)


class TestBestMethod:
    @pytest.mark.parametrize("source", ["TRUEPEOPLESEARCH", "USPHONEBOOK"])
    def test_plain_form_is_automated(self, source):
        choice = get_best_automation_method(source, captcha_solver_enabled=False)
        assert choice.method == RemovalMethod.AUTO_FORM
        assert choice.can_automate

    def test_cloudflare_form_falls_back_to_email(self):
        choice = get_best_automation_method("SPOKEO", captcha_solver_enabled=True)
        assert choice.method == RemovalMethod.AUTO_EMAIL
        assert "Cloudflare" in choice.reason

    def test_captcha_form_depends_on_solver(self):
        assert get_best_automation_method("RADARIS", captcha_solver_enabled=False).method == RemovalMethod.AUTO_EMAIL
        assert get_best_automation_method("RADARIS", captcha_solver_enabled=True).method == RemovalMethod.AUTO_FORM

    def test_form_only_broker_with_captcha_needs_the_user(self):
        choice = get_best_automation_method("NUWBER", captcha_solver_enabled=False)
        assert choice.method == RemovalMethod.MANUAL_GUIDE
        assert choice.reason.startswith("Form-only broker")
        assert not choice.can_automate

        assert get_best_automation_method("NUWBER", captcha_solver_enabled=True).method == RemovalMethod.AUTO_FORM

    def test_email_only_broker(self):
        assert get_best_automation_method("MYLIFE").method == RemovalMethod.AUTO_EMAIL

    def test_no_form_config_and_no_email(self):
        choice = get_best_automation_method("PEOPLELOOKER")
        assert choice.method == RemovalMethod.MANUAL_GUIDE
        assert "No form configuration" in choice.reason

    def test_monitor_source_gets_a_guide(self):
        assert get_best_automation_method("HAVEIBEENPWNED").method == RemovalMethod.MANUAL_GUIDE

    def test_unknown_source(self):
        choice = get_best_automation_method("UNKNOWN")
        assert choice.method == RemovalMethod.MANUAL_GUIDE
        assert choice.reason == "Unknown broker - not in directory"

    def test_form_check_uses_settings_by_default(self, monkeypatch):
        monkeypatch.setattr(settings, "captcha_solver_enabled", True)
        assert can_automate_form("RADARIS") == (True, "")


class TestInstructions:
    def test_form_guide_mentions_captcha(self):
        text = get_manual_instructions("NUWBER")
        assert text.startswith("To remove your data from Nuwber:")
        assert "https://nuwber.com/removal/link" in text
        assert "CAPTCHA" in text
        assert "Estimated processing time: 3 days" in text

    def test_email_guide(self):
        text = get_manual_instructions("MYLIFE")
        assert "privacy@mylife.com" in text
        assert "CCPA/GDPR" in text

    def test_unknown_source(self):
        assert "not in our broker directory" in get_manual_instructions("UNKNOWN")


def test_daily_caps():
    assert daily_cap_for("SPOKEO") == 20
    assert daily_cap_for("TRUEPEOPLESEARCH") == settings.removal_daily_cap_default == 25
