"""Email via Resend: test messages and review reminders."""

from __future__ import annotations

from datetime import datetime, timezone
from html import escape as _esc

import resend

from .config import Settings


def _safe_url(url: str) -> str:
    """Sanitise a URL for use in an HTML href attribute.

    Only ``http`` and ``https`` schemes are allowed.  Anything else
    (e.g. ``javascript:``, ``data:``) is replaced with ``#``.
    """
    stripped = url.strip()
    if stripped and not stripped.lower().startswith(("http://", "https://")):
        return "#"
    return _esc(stripped, quote=True)


def _configure(settings: Settings) -> str:
    """Set the Resend key and return the sender address."""
    settings.require("resend_api_key")
    resend.api_key = settings.resend_api_key
    return settings.resend_from


def _detail_row(label: str, value: str | None) -> str:
    if not value:
        return ""
    return f'<p style="margin:4px 0"><strong>{_esc(label)}:</strong> {_esc(str(value))}</p>'


def _build_reminder_html(
    first_name: str,
    case_study: dict,
    feedback: dict,
    dashboard_url: str = "",
) -> str:
    """Return the HTML body of a review reminder."""
    details = "".join(
        [
            _detail_row("Rechtsgebiet", case_study.get("legal_area")),
            _detail_row("Teilgebiet", case_study.get("sub_area")),
            _detail_row("Schwerpunkt", case_study.get("focus_area")),
            _detail_row("Klausur #", case_study.get("case_study_number")),
        ]
    )
    learned = _esc(feedback.get("mistakes_learned") or "")
    planned = _esc(feedback.get("improvements_planned") or "")
    button = (
        f'<p style="text-align:center;margin:24px 0">'
        f'<a href="{_safe_url(dashboard_url)}" style="background:#1E40AF;color:#fff;padding:10px 24px;'
        f'border-radius:6px;text-decoration:none;font-weight:600">Zum Dashboard</a></p>'
        if dashboard_url
        else ""
    )

    return f"""\
<!DOCTYPE html>
<html>
<body style="font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;
             max-width:600px;margin:0 auto;padding:20px;color:#1f2937">
  <h2 style="color:#1E40AF;margin-top:0">Wiederholungserinnerung</h2>
  <p>Hallo {_esc(first_name)},</p>
  <p>heute ist der Tag, an dem du dir vorgenommen hattest, die Inhalte deiner Klausur zu wiederholen!</p>
  <div style="background:#f9fafb;border:1px solid #e5e7eb;border-radius:8px;padding:16px">{details}</div>
  <h4 style="color:#DC2626">Deine Erkenntnisse</h4>
  <p style="font-style:italic">{learned}</p>
  <h4 style="color:#16A34A">Deine Verbesserungsziele</h4>
  <p style="font-style:italic">{planned}</p>
  {button}
</body>
</html>"""


def send_reminder_email(
    settings: Settings,
    to: str,
    first_name: str,
    case_study: dict,
    feedback: dict,
) -> dict:
    """Send a review reminder for one piece of student feedback.

    Args:
        settings: Needs ``resend_api_key``; ``app_url`` adds a dashboard link.
        to: Recipient email address.
        first_name: Student's first name for the greeting.
        case_study: Row from ``case_study_requests`` (legal_area, sub_area, ...).
        feedback: Row from ``student_feedback``.

    Returns:
        Resend API response dict.

    Raises:
        ConfigError: If RESEND_API_KEY is not set.
    """
    from_addr = _configure(settings)
    dashboard_url = f"{settings.app_url}/dashboard" if settings.app_url else ""
    params: dict = {
        "from": from_addr,
        "to": [to],
        "subject": "Erinnerung: Heute ist dein Wiederholungstag",
        "html": _build_reminder_html(first_name, case_study, feedback, dashboard_url=dashboard_url),
    }
    return resend.Emails.send(params)


def send_test_email(settings: Settings, to: str) -> dict:
    """Send a short message to check the Resend setup end to end."""
    from_addr = _configure(settings)
    sent_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return resend.Emails.send(
        {
            "from": from_addr,
            "to": [to],
            "subject": "clubops test email",
            "html": (
                f"<p>This is a test email sent by clubops at {_esc(sent_at)}.</p>"
                f"<p>Sender: {_esc(from_addr)}</p>"
            ),
        }
    )
