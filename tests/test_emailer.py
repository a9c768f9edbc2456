"""Tests for clubops.emailer — HTML builder and Resend calls."""

from unittest.mock import patch

import pytest
from freezegun import freeze_time

from clubops.config import Settings
from clubops.emailer import _build_reminder_html, _safe_url, send_reminder_email, send_test_email
from clubops.errors import ConfigError

CASE_STUDY = {
    "legal_area": "Zivilrecht",
    "sub_area": "Schuldrecht AT",
    "focus_area": "Leistungsstörungen",
    "case_study_number": 7,
}
FEEDBACK = {
    "mistakes_learned": "Anspruchsgrundlage zu spät geprüft",
    "improvements_planned": "Gliederung vorab skizzieren",
}


class TestSafeUrl:
    def test_allows_https(self):
        assert _safe_url("https://example.com") == "https://example.com"

    def test_allows_http(self):
        assert _safe_url("http://example.com") == "http://example.com"

    def test_blocks_javascript(self):
        assert _safe_url("javascript:alert(1)") == "#"

    def test_blocks_data_uri(self):
        assert _safe_url("data:text/html,<h1>hi</h1>") == "#"

    def test_escapes_quotes_in_url(self):
        assert "&amp;" in _safe_url("https://example.com?a=1&b=2")

    def test_empty_string(self):
        assert _safe_url("") == ""


class TestBuildReminderHtml:
    def test_includes_case_details_and_feedback(self):
        html = _build_reminder_html("Anna", CASE_STUDY, FEEDBACK)
        assert "Hallo Anna," in html
        assert "Schuldrecht AT" in html
        assert "Klausur #:</strong> 7" in html
        assert "Gliederung vorab skizzieren" in html

    def test_skips_missing_details(self):
        html = _build_reminder_html("Anna", {"legal_area": "Strafrecht"}, FEEDBACK)
        assert "Strafrecht" in html
        assert "Teilgebiet" not in html

    def test_escapes_user_text(self):
        html = _build_reminder_html(
            "<b>Anna</b>",
            CASE_STUDY,
            {"mistakes_learned": "<script>alert(1)</script>", "improvements_planned": None},
        )
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "&lt;b&gt;Anna&lt;/b&gt;" in html

    def test_dashboard_button_only_with_url(self):
        assert "Zum Dashboard" not in _build_reminder_html("Anna", CASE_STUDY, FEEDBACK)
        html = _build_reminder_html("Anna", CASE_STUDY, FEEDBACK, dashboard_url="https://club.example.com/dashboard")
        assert 'href="https://club.example.com/dashboard"' in html

    def test_blocks_javascript_dashboard_url(self):
        html = _build_reminder_html("Anna", CASE_STUDY, FEEDBACK, dashboard_url="javascript:alert(1)")
        assert "javascript:" not in html


class TestSendReminderEmail:
    @patch("clubops.emailer.resend.Emails.send", return_value={"id": "email-1"})
    def test_sends_via_resend(self, mock_send, settings):
        result = send_reminder_email(settings, "anna@example.com", "Anna", CASE_STUDY, FEEDBACK)

        assert result == {"id": "email-1"}
        params = mock_send.call_args[0][0]
        assert params["to"] == ["anna@example.com"]
        assert params["from"] == settings.resend_from
        assert params["subject"] == "Erinnerung: Heute ist dein Wiederholungstag"
        assert "https://club.example.com/dashboard" in params["html"]

    @patch("clubops.emailer.resend.Emails.send")
    def test_requires_api_key(self, mock_send):
        with pytest.raises(ConfigError, match="RESEND_API_KEY"):
            send_reminder_email(Settings(), "anna@example.com", "Anna", CASE_STUDY, FEEDBACK)
        mock_send.assert_not_called()


class TestSendTestEmail:
    @freeze_time("2026-03-02 09:30:00")
    @patch("clubops.emailer.resend.Emails.send", return_value={"id": "email-2"})
    def test_sends_timestamped_message(self, mock_send, settings):
        assert send_test_email(settings, "ops@example.com") == {"id": "email-2"}

        params = mock_send.call_args[0][0]
        assert params["to"] == ["ops@example.com"]
        assert params["subject"] == "clubops test email"
        assert "2026-03-02 09:30 UTC" in params["html"]
