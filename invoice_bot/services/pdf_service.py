"""
PDF Invoice Generation Service
Renders a stored invoice payload as an A4 Japanese invoice (御請求書).
"""
import re
from datetime import date
from io import BytesIO
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

FONT_NAME = "HeiseiKakuGo-W5"
DEFAULT_RECIPIENT = "請求先"
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')

_font_registered = False


def _ensure_font() -> None:
    global _font_registered
    if not _font_registered:
        pdfmetrics.registerFont(UnicodeCIDFont(FONT_NAME))
        _font_registered = True


def format_currency(amount) -> str:
    value = int(round(amount or 0))
    sign = "-" if value < 0 else ""
    return f"{sign}¥{abs(value):,}"


def build_pdf_file_name(data: dict, today: Optional[date] = None) -> str:
    """`<issueDate>_<recipient>様.pdf` with characters unsafe in file names replaced by `_`."""
    issue_date = data.get("issueDate") or (today or date.today()).isoformat()
    recipient_name = (data.get("recipient") or {}).get("name") or DEFAULT_RECIPIENT
    sanitized = _UNSAFE_FILENAME_CHARS.sub("_", recipient_name)
    return f"{issue_date}_{sanitized}様.pdf"


def _text(value) -> str:
    return escape(str(value or "")).replace("\n", "<br/>")


def generate_invoice_pdf(data: dict) -> bytes:
    """
    Generate PDF for an invoice payload

    Args:
        data: Invoice payload as stored on the draft (camelCase keys)

    Returns:
        PDF file content
    """
    _ensure_font()

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        title="請求書",
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("InvoiceTitle", parent=styles["Title"], fontName=FONT_NAME, fontSize=26, leading=32)
    heading_style = ParagraphStyle("InvoiceHeading", parent=styles["Heading2"], fontName=FONT_NAME, fontSize=14)
    normal_style = ParagraphStyle("InvoiceNormal", parent=styles["Normal"], fontName=FONT_NAME, fontSize=10, leading=14)
    right_style = ParagraphStyle("InvoiceRight", parent=normal_style, alignment=TA_RIGHT)

    recipient = data.get("recipient") or {}
    issuer = data.get("issuer") or {}
    items = data.get("items") or []

    elements = []
    elements.append(Paragraph("御請求書", title_style))

    header_lines = [f"No. {_text(data.get('invoiceNumber'))}", f"発行日: {_text(data.get('issueDate'))}"]
    elements.append(Paragraph("<br/>".join(header_lines), right_style))
    elements.append(Spacer(1, 8 * mm))

    recipient_lines = [f"{_text(recipient.get('name') or DEFAULT_RECIPIENT)} 御中"]
    if recipient.get("address"):
        recipient_lines.append(f"{_text(recipient.get('postalCode'))} {_text(recipient.get('address'))}")
    recipient_lines.append("")
    recipient_lines.append(f"ご請求金額 (税込): {format_currency(data.get('total'))}")
    if data.get("dueDate"):
        recipient_lines.append(f"お支払期限: {_text(data.get('dueDate'))}")

    issuer_lines = [f"{_text(issuer.get('name'))}"]
    for key, label in (("postalCode", ""), ("address", ""), ("phone", "TEL: "), ("email", "Email: ")):
        if issuer.get(key):
            issuer_lines.append(f"{label}{_text(issuer.get(key))}")
    if issuer.get("bankInfo"):
        issuer_lines.append(_text(issuer.get("bankInfo")))

    parties = Table(
        [[Paragraph("<br/>".join(recipient_lines), normal_style), Paragraph("<br/>".join(issuer_lines), right_style)]],
        colWidths=[95 * mm, 75 * mm],
    )
    parties.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
    elements.append(parties)
    elements.append(Spacer(1, 8 * mm))

    rows = [["品名 / 明細", "数量", "単価", "金額"]]
    for item in items:
        rows.append(
            [
                Paragraph(_text(item.get("description")), normal_style),
                str(item.get("quantity", "")),
                format_currency(item.get("unitPrice")),
                format_currency(item.get("amount")),
            ]
        )
    items_table = Table(rows, colWidths=[80 * mm, 25 * mm, 32 * mm, 33 * mm], repeatRows=1)
    items_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), FONT_NAME),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1f2937")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("ALIGN", (1, 0), (1, -1), "CENTER"),
                ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
                ("LINEBELOW", (0, 1), (-1, -1), 0.5, colors.HexColor("#e5e7eb")),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )
    elements.append(items_table)
    elements.append(Spacer(1, 6 * mm))

    totals = Table(
        [
            ["小計 (税抜)", format_currency(data.get("subtotal"))],
            ["消費税 (10%)", format_currency(data.get("tax"))],
            ["合計金額 (税込)", format_currency(data.get("total"))],
        ],
        colWidths=[40 * mm, 35 * mm],
        hAlign="RIGHT",
    )
    totals.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), FONT_NAME),
                ("FONTSIZE", (0, 0), (-1, 1), 10),
                ("FONTSIZE", (0, 2), (-1, 2), 13),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LINEABOVE", (0, 2), (-1, 2), 1.5, colors.HexColor("#1f2937")),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    elements.append(totals)

    if data.get("notes"):
        elements.append(Spacer(1, 8 * mm))
        elements.append(Paragraph("備考", heading_style))
        elements.append(Paragraph(_text(data.get("notes")), normal_style))

    doc.build(elements)
    return buffer.getvalue()
