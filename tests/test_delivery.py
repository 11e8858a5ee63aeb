"""
Test Suite: Email Delivery

Tests:
- Disabled delivery without an API key
- Verification and scan-complete emails through Resend
- Score change wording
"""

import pytest
import resend

from outrank.delivery import EmailDelivery, EmailResult
from outrank.delivery.email import describe_score_change


@pytest.fixture
def sent(monkeypatch):
    """Capture Resend calls instead of sending."""
    calls = []

    def fake_send(params):
        calls.append(params)
        return {"id": f"msg-{len(calls)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    monkeypatch.setattr(resend, "api_key", None)
    return calls


@pytest.fixture
def delivery(sent):
    return EmailDelivery(api_key="re_test", from_email="reports@example.com", app_url="https://app.example.com/")


# ============================================================================
# DELIVERY TESTS
# ============================================================================

class TestEmailDelivery:
    """Test sending through Resend."""

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch, sent):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)

        result = await EmailDelivery().send_verification_email("owner@acme.com", "tok", "acme.com")

        assert result.success is False
        assert result.error == "Email delivery not configured (missing API key)"
        assert sent == []

    def test_api_key_from_environment(self, monkeypatch, sent):
        monkeypatch.setenv("RESEND_API_KEY", "re_env")

        assert EmailDelivery().api_key == "re_env"

    @pytest.mark.asyncio
    async def test_verification_email(self, delivery, sent):
        result = await delivery.send_verification_email("owner@acme.com", "abc123", "acme.com")

        assert result == EmailResult(success=True, message_id="msg-1")
        params = sent[0]
        assert params["to"] == ["owner@acme.com"]
        assert params["from"] == "outrankllm <reports@example.com>"
        assert "acme.com" in params["subject"]
        assert "https://app.example.com/api/verify?token=abc123" in params["text"]
        assert "https://app.example.com/api/verify?token=abc123" in params["html"]

    @pytest.mark.asyncio
    async def test_scan_complete_email(self, delivery, sent):
        result = await delivery.send_scan_complete_email("pro@acme.com", "tok42", "acme.com", 59, previous_score=54)

        assert result.success is True
        params = sent[0]
        assert params["subject"].endswith("59%")
        assert "Up 5 points since your last scan." in params["text"]
        assert "https://app.example.com/report/tok42" in params["html"]

    @pytest.mark.asyncio
    async def test_send_failure_is_returned(self, delivery, monkeypatch):
        def broken(params):
            raise RuntimeError("domain not verified")

        monkeypatch.setattr(resend.Emails, "send", broken)

        result = await delivery.send_scan_complete_email("pro@acme.com", "tok", "acme.com", 10)

        assert result.success is False
        assert result.error == "domain not verified"
        assert result.to_dict() == {"success": False, "message_id": None, "error": "domain not verified"}


class TestScoreChange:
    def test_first_scan(self):
        assert describe_score_change(40, None) == "This is your first tracked scan."

    def test_up(self):
        assert describe_score_change(41, 40) == "Up 1 point since your last scan."
        assert describe_score_change(45, 40) == "Up 5 points since your last scan."

    def test_down(self):
        assert describe_score_change(39, 40) == "Down 1 point since your last scan."
        assert describe_score_change(30, 40) == "Down 10 points since your last scan."

    def test_unchanged(self):
        assert describe_score_change(40, 40) == "No change since your last scan."
