import json
from decimal import Decimal
from http.client import IncompleteRead
from urllib.error import URLError

import notifications
from conftest import make_settings
from notifications import EmailSender, render_budget_alert, render_monthly_report
from store import MonthlyStats


class FakeHTTPResponse:
    def __init__(self, payload: dict) -> None:
        self.payload = payload

    def read(self) -> bytes:
        return json.dumps(self.payload).encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_send_without_api_key_fails_without_network(monkeypatch):
    def no_network(*args, **kwargs):
        raise AssertionError("network must not be used")

    monkeypatch.setattr(notifications, "urlopen", no_network)
    result = EmailSender(make_settings(resend_api_key="")).send(
        "asha@example.com", "Subject", "<p>Body</p>"
    )
    assert not result.success
    assert result.error == "Missing API key"


def test_send_rejects_missing_parameters():
    result = EmailSender(make_settings()).send("", "Subject", "<p>Body</p>")
    assert not result.success
    assert result.error == "Invalid email parameters"


def test_send_posts_to_resend(monkeypatch):
    captured = {}

    def fake_urlopen(req, timeout):
        captured["url"] = req.full_url
        captured["auth"] = req.get_header("Authorization")
        captured["body"] = json.loads(req.data.decode("utf-8"))
        captured["timeout"] = timeout
        return FakeHTTPResponse({"id": "email_123"})

    monkeypatch.setattr(notifications, "urlopen", fake_urlopen)
    result = EmailSender(make_settings(resend_api_key="re_live")).send(
        "asha@example.com", "Budget Alert", "<p>Hi</p>"
    )

    assert result.success
    assert result.message_id == "email_123"
    assert captured["url"] == "https://api.resend.com/emails"
    assert captured["auth"] == "Bearer re_live"
    assert captured["body"]["to"] == ["asha@example.com"]
    assert captured["body"]["from"] == "Finelytics <reports@example.com>"
    assert captured["timeout"] == 1.0


def test_send_transport_error_is_returned_not_raised(monkeypatch):
    def broken(req, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(notifications, "urlopen", broken)
    result = EmailSender(make_settings()).send("asha@example.com", "S", "<p>B</p>")

    assert not result.success
    assert "connection refused" in result.error


def test_send_connection_reset_is_returned_not_raised(monkeypatch):
    def reset(req, timeout):
        raise ConnectionResetError("peer reset")

    monkeypatch.setattr(notifications, "urlopen", reset)
    result = EmailSender(make_settings()).send("asha@example.com", "S", "<p>B</p>")

    assert not result.success
    assert result.error == "peer reset"


def test_send_truncated_response_is_returned_not_raised(monkeypatch):
    class TruncatedResponse(FakeHTTPResponse):
        def read(self) -> bytes:
            raise IncompleteRead(b'{"id": "em')

    monkeypatch.setattr(
        notifications, "urlopen", lambda req, timeout: TruncatedResponse({})
    )
    result = EmailSender(make_settings()).send("asha@example.com", "S", "<p>B</p>")

    assert not result.success


def test_send_non_object_response_counts_as_sent(monkeypatch):
    monkeypatch.setattr(
        notifications, "urlopen", lambda req, timeout: FakeHTTPResponse(["queued"])
    )
    result = EmailSender(make_settings()).send("asha@example.com", "S", "<p>B</p>")

    assert result.success
    assert result.message_id is None


def test_render_budget_alert_escapes_account_name():
    subject, body = render_budget_alert(
        user_name="Asha",
        account_name="<Main>",
        percentage_used=Decimal("91.234"),
        budget_amount=Decimal("1000.00"),
        total_expenses=Decimal("912.34"),
    )
    assert subject == "Budget Alert for <Main>"
    assert "&lt;Main&gt;" in body
    assert "91.2%" in body
    assert "87.66" in body


def test_render_monthly_report_lists_categories_and_insights():
    stats = MonthlyStats(
        total_income=Decimal("10.00"),
        total_expenses=Decimal("4.00"),
        by_category={"food": Decimal("4.00")},
        transaction_count=2,
    )
    subject, body = render_monthly_report(
        user_name=None, month="May 2024", stats=stats, insights=["Nice work."]
    )
    assert subject == "Your Monthly Financial Report - May 2024"
    assert "Hello there" in body
    assert "food: 4.00" in body
    assert "Nice work." in body
    assert "6.00" in body
