"""
pdf_generator.py — Paid business-model report generator.

Builds the unlocked report using reportlab PLATYPUS.
Output is a BytesIO buffer (no temp file on disk).

Entry point:
    generate_business_report(user, attempt, ai_entries) -> BytesIO

CRITICAL: buffer.seek(0) is called after doc.build(story) — reportlab leaves
the buffer position at the end after writing.

PDF sections:
  1. Header (title, recipient, quiz date)
  2. Business fit recommendations table (from the cached 'business-fit-analysis')
  3. Other cached AI sections, one heading each
  4. Quiz answers table
  5. Disclaimer footer (8pt)
"""
from __future__ import annotations

import json
import logging
from io import BytesIO
from typing import Any, Iterable, Optional
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor, black
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    KeepTogether,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from bizmodel.models.ai_content import AIContentORM
from bizmodel.models.quiz_attempt import QuizAttemptORM
from bizmodel.models.user import UserORM

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Colour constants
# ---------------------------------------------------------------------------

GREEN_LIGHT = HexColor("#D5F5E3")   # Top recommendation highlight
GREY_LIGHT  = HexColor("#F2F2F2")   # Table headers

BUSINESS_FIT_CONTENT_TYPE = "business-fit-analysis"
MAX_ANSWER_CHARS = 300


def answer_text(value: Any) -> str:
    """Any JSON value → escaped single-paragraph text."""
    if isinstance(value, str):
        raw = value
    elif isinstance(value, (list, tuple)):
        raw = ", ".join(str(v) for v in value)
    else:
        raw = json.dumps(value, default=str)
    if len(raw) > MAX_ANSWER_CHARS:
        raw = raw[:MAX_ANSWER_CHARS] + "…"
    return escape(raw)


def humanize_key(key: str) -> str:
    out = []
    for ch in key.replace("_", " "):
        if ch.isupper() and out and out[-1] != " ":
            out.append(" ")
        out.append(ch)
    return "".join(out).strip().capitalize()


# ---------------------------------------------------------------------------
# Private section builders
# ---------------------------------------------------------------------------

def _build_recommendation_table(analysis: dict[str, Any], styles) -> Optional[Table]:
    recommendations = analysis.get("recommendations") or []
    if not isinstance(recommendations, list) or not recommendations:
        return None

    cell = styles["BodyText"]
    data = [["Business model", "Fit", "Why it fits", "Time to profit"]]
    for rec in recommendations:
        if not isinstance(rec, dict):
            continue
        data.append([
            Paragraph(answer_text(rec.get("businessModel", "")), cell),
            f"{rec.get('fitScore', '')}",
            Paragraph(answer_text(rec.get("analysis", "")), cell),
            Paragraph(answer_text(rec.get("timeToProfit", "")), cell),
        ])
    if len(data) == 1:
        return None

    t = Table(data, colWidths=[40 * mm, 15 * mm, 85 * mm, 30 * mm], repeatRows=1)
    t.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), GREY_LIGHT),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("BACKGROUND", (0, 1), (-1, 1), GREEN_LIGHT),
        ("GRID", (0, 0), (-1, -1), 0.5, black),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ALIGN", (1, 1), (1, -1), "CENTER"),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]))
    return t


def _build_answers_table(quiz_data: dict[str, Any], styles) -> Table:
    cell = styles["BodyText"]
    data = [["Question", "Your answer"]]
    for key, value in quiz_data.items():
        data.append([Paragraph(escape(humanize_key(str(key))), cell), Paragraph(answer_text(value), cell)])

    t = Table(data, colWidths=[60 * mm, 110 * mm], repeatRows=1)
    t.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), GREY_LIGHT),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("GRID", (0, 0), (-1, -1), 0.5, black),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    return t


def _content_paragraphs(content: Any, styles) -> list:
    if isinstance(content, dict):
        flowables = []
        for key, value in content.items():
            flowables.append(Paragraph(f"<b>{escape(humanize_key(str(key)))}</b>", styles["Normal"]))
            flowables.append(Paragraph(answer_text(value), styles["Normal"]))
            flowables.append(Spacer(1, 2 * mm))
        return flowables
    return [Paragraph(answer_text(content), styles["Normal"])]


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def generate_business_report(
    user: UserORM,
    attempt: QuizAttemptORM,
    ai_entries: Iterable[AIContentORM] = (),
) -> BytesIO:
    """
    Build the full report for an unlocked attempt.

    Returns:
        BytesIO buffer at position 0, ready for StreamingResponse.
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title="BizModelAI Report",
    )
    styles = getSampleStyleSheet()
    story = []
    entries = {e.content_type: e.content for e in ai_entries}

    # 1. Header
    title_style = ParagraphStyle(
        "report_title",
        parent=styles["Heading1"],
        fontSize=18,
        fontName="Helvetica-Bold",
    )
    story.append(Paragraph("BizModelAI — Your Business Model Report", title_style))
    story.append(Spacer(1, 2 * mm))
    name = " ".join(p for p in (user.first_name, user.last_name) if p) or user.email
    story.append(Paragraph(f"Prepared for: {escape(name)}", styles["Normal"]))
    story.append(
        Paragraph(f"Quiz completed: {attempt.completed_at.strftime('%d %B %Y')}", styles["Normal"])
    )
    story.append(Spacer(1, 6 * mm))

    # 2. Recommendations
    analysis = entries.pop(BUSINESS_FIT_CONTENT_TYPE, None)
    if isinstance(analysis, dict):
        table = _build_recommendation_table(analysis, styles)
        if table is not None:
            heading = Paragraph("Top Business Models", styles["Heading2"])
            story.append(KeepTogether([heading, Spacer(1, 2 * mm), table]))
            story.append(Spacer(1, 4 * mm))
        if analysis.get("summary"):
            story.append(Paragraph(answer_text(analysis["summary"]), styles["Normal"]))
            story.append(Spacer(1, 6 * mm))

    # 3. Remaining AI sections
    for content_type in sorted(entries):
        story.append(Paragraph(escape(humanize_key(content_type.replace("-", " "))), styles["Heading2"]))
        story.extend(_content_paragraphs(entries[content_type], styles))
        story.append(Spacer(1, 4 * mm))

    # 4. Quiz answers
    story.append(Paragraph("Your Quiz Answers", styles["Heading2"]))
    story.append(Spacer(1, 2 * mm))
    story.append(_build_answers_table(attempt.quiz_data or {}, styles))

    # 5. Disclaimer
    disclaimer_style = ParagraphStyle("disclaimer", parent=styles["Normal"], fontSize=8)
    story.append(Spacer(1, 10 * mm))
    story.append(
        Paragraph(
            "This report is generated from your quiz answers for guidance only. "
            "It is not financial or legal advice.",
            disclaimer_style,
        )
    )

    doc.build(story)
    buffer.seek(0)

    logger.info(
        "PDF report generated attempt_id=%s sections=%d", attempt.id, len(entries) + 1,
    )
    return buffer
