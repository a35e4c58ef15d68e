"""
templates.py — HTML bodies for the quiz-results and full-report emails.

Each builder returns (subject, html). Answer and recommendation text goes
through the same escaping helpers as the PDF report.
"""
from html import escape
from typing import Any, Optional
from urllib.parse import quote

from bizmodel.config import settings
from bizmodel.reports.pdf_generator import answer_text, humanize_key

QUIZ_RESULTS_SUBJECT = "Your BizModelAI Quiz Results"
FULL_REPORT_SUBJECT = "Your Complete Business Report - BizModelAI"
MAX_EMAIL_ANSWERS = 8


def results_link(attempt_id: int, email: str) -> str:
    return f"{settings.frontend_url}/results?attempt={attempt_id}&email={quote(email, safe='')}"


def _unsubscribe_link(email: str) -> str:
    return f"{settings.frontend_url}/unsubscribe?email={quote(email, safe='')}"


def _answers_list(quiz_data: dict[str, Any]) -> str:
    items = [
        f"<li><strong>{escape(humanize_key(str(key)))}:</strong> {answer_text(value)}</li>"
        for key, value in list(quiz_data.items())[:MAX_EMAIL_ANSWERS]
    ]
    return f"<ul>{''.join(items)}</ul>"


def _recommendations_list(analysis: Optional[dict[str, Any]]) -> str:
    recommendations = (analysis or {}).get("recommendations") or []
    items = [
        f"<li><strong>{answer_text(rec.get('businessModel', ''))}</strong>"
        f" ({escape(str(rec.get('fitScore', '')))}% fit): {answer_text(rec.get('analysis', ''))}</li>"
        for rec in recommendations
        if isinstance(rec, dict)
    ]
    if not items:
        return ""
    return f"<h2>Your best-fit business models</h2><ol>{''.join(items)}</ol>"


def _wrap(title: str, body: str, email: str) -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif; color: #1f2937;\">"
        f"<h1 style=\"color: #1B4F72;\">{escape(title)}</h1>"
        f"{body}"
        "<p style=\"font-size: 12px; color: #6b7280;\">"
        f"Don't want these emails? <a href=\"{escape(_unsubscribe_link(email))}\">Unsubscribe</a>."
        "</p></body></html>"
    )


def quiz_results_email(
    email: str,
    quiz_data: dict[str, Any],
    link: Optional[str],
    has_paid: bool,
) -> tuple[str, str]:
    if has_paid:
        call_to_action = "Your full report is unlocked. Open it any time:"
    else:
        call_to_action = "Unlock your full report to see every recommendation in detail:"
    body = "<p>Here is a summary of your answers.</p>" + _answers_list(quiz_data)
    if link:
        body += f"<p>{call_to_action} <a href=\"{escape(link)}\">View your results</a></p>"
    return QUIZ_RESULTS_SUBJECT, _wrap("Your quiz results are ready", body, email)


def full_report_email(
    email: str,
    quiz_data: dict[str, Any],
    link: str,
    analysis: Optional[dict[str, Any]],
) -> tuple[str, str]:
    body = (
        _recommendations_list(analysis)
        + "<h2>Your answers</h2>"
        + _answers_list(quiz_data)
        + f"<p><a href=\"{escape(link)}\">Open your complete report</a></p>"
    )
    return FULL_REPORT_SUBJECT, _wrap("Your complete business report", body, email)
