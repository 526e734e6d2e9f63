"""Printable ticket PDF and the QR scan code embedded in it.

Both renderers are synchronous and CPU bound; async callers should run them
through `asyncio.to_thread`.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from io import BytesIO
from typing import Callable, Optional
from xml.sax.saxutils import escape

import qrcode
from qrcode import constants
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.platypus import (
    Flowable, Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
)

from ..config import EventInfo
from ..errors import DocumentRenderFailure
from ..helpers import format_price, humanize_kind
from ..model.orm import Ticket

log = logging.getLogger(__name__)

DARK_TEXT = colors.HexColor("#1a1a1a")
MUTED_TEXT = colors.HexColor("#666666")
FAINT_TEXT = colors.HexColor("#999999")
LIGHT_GRAY = colors.HexColor("#f5f5f5")
BORDER_GRAY = colors.HexColor("#e0e0e0")

QR_SIZE = 100
QR_FALLBACK_TEXT = "Present ticket code<br/>at venue entrance"

IMPORTANT_NOTES = (
    "Arrive early - doors open 30 minutes before start time",
    "Bring valid ID matching your ticket registration",
    "This ticket is non-transferable and non-refundable",
    "Keep this ticket or email QR code for entry",
    "Event time will be updated via email",
)


# ----------------------------
# Scan code (QR)
# ----------------------------
def build_scan_code(payload: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=None,
        error_correction=constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    return qr


def render_scan_code(payload: str) -> bytes:
    """PNG bytes of a QR code encoding `payload`."""
    img = build_scan_code(payload).make_image(
        fill_color="black", back_color="white"
    )
    bio = BytesIO()
    img.save(bio, format="PNG")
    return bio.getvalue()


# ----------------------------
# Ticket document (PDF)
# ----------------------------
class SpacedCode(Flowable):
    """Single line of monospace text with extra tracking between chars."""

    def __init__(self, text: str, font: str = "Courier-Bold",
                 size: float = 18, char_space: float = 2) -> None:
        super().__init__()
        self.text = text
        self.font = font
        self.size = size
        self.char_space = char_space

    def wrap(self, availWidth, availHeight):
        width = stringWidth(self.text, self.font, self.size)
        width += self.char_space * max(0, len(self.text) - 1)
        self.width, self.height = width, self.size * 1.2
        return self.width, self.height

    def draw(self):
        text = self.canv.beginText(0, self.size * 0.25)
        text.setFont(self.font, self.size)
        text.setCharSpace(self.char_space)
        text.setFillColor(DARK_TEXT)
        text.textOut(self.text)
        self.canv.drawText(text)


def _styles():
    base = getSampleStyleSheet()
    return {
        "brand": ParagraphStyle(
            "brand", parent=base["Title"], fontSize=28, leading=32,
            textColor=DARK_TEXT, alignment=TA_CENTER, spaceAfter=0,
        ),
        "subtitle": ParagraphStyle(
            "subtitle", parent=base["Normal"], fontSize=14, leading=18,
            textColor=MUTED_TEXT, alignment=TA_CENTER,
        ),
        "event": ParagraphStyle(
            "event", parent=base["Heading2"], fontSize=22, leading=26,
            textColor=DARK_TEXT, alignment=TA_CENTER,
        ),
        "caption": ParagraphStyle(
            "caption", parent=base["Normal"], fontSize=11, leading=13,
            textColor=MUTED_TEXT, alignment=TA_CENTER,
        ),
        "heading": ParagraphStyle(
            "heading", parent=base["Heading3"], fontSize=14,
            textColor=DARK_TEXT,
        ),
        "note": ParagraphStyle(
            "note", parent=base["Normal"], fontSize=10, leading=15,
            textColor=MUTED_TEXT,
        ),
    }


def ticket_details(ticket: Ticket, event: EventInfo) -> list:
    """(label, value) rows shared by the PDF and the email body."""
    return [
        ("Event:", event.name),
        ("Date:", event.date_label),
        ("Time:", event.time_label),
        ("Venue:", event.venue),
        ("Ticket Type:", humanize_kind(ticket.kind)),
        ("Price:", format_price(ticket.price_minor_units,
                                event.currency_symbol)),
        ("Email:", ticket.email),
    ]


def _scan_code_cell(ticket: Ticket, styles, scan_code) -> list:
    try:
        png = scan_code(ticket.code)
        return [
            Image(BytesIO(png), width=QR_SIZE, height=QR_SIZE),
            Paragraph("Scan at venue", styles["caption"]),
        ]
    except Exception:
        # the ticket is still valid without the QR; fall back to text
        log.warning("scan code render failed for %s", ticket.code,
                    exc_info=True)
        return [Paragraph(QR_FALLBACK_TEXT, styles["caption"])]


def render_ticket_document(
    ticket: Ticket,
    event: EventInfo,
    scan_code: Callable[[str], bytes] = render_scan_code,
    now: Optional[datetime] = None,
) -> bytes:
    """A4 PDF: header, details table, ticket code, QR, notes and footer.

    Raises DocumentRenderFailure if the PDF itself cannot be built. A failing
    `scan_code` never aborts the document.
    """
    year = (now or datetime.now(timezone.utc)).year
    styles = _styles()
    buf = BytesIO()

    try:
        doc = SimpleDocTemplate(
            buf, pagesize=A4,
            leftMargin=40, rightMargin=40, topMargin=40, bottomMargin=90,
            title=f"{event.name} Ticket {ticket.code}",
            author=event.organizer_name,
        )
        story = []

        header = Table(
            [[Paragraph(escape(event.name.upper()), styles["brand"])],
             [Paragraph("ADMISSION TICKET", styles["subtitle"])]],
            colWidths=[doc.width],
        )
        header.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), LIGHT_GRAY),
            ("BOX", (0, 0), (-1, -1), 1, BORDER_GRAY),
            ("TOPPADDING", (0, 0), (-1, 0), 14),
            ("BOTTOMPADDING", (0, -1), (-1, -1), 14),
        ]))
        story.append(header)
        story.append(Spacer(1, 20))
        story.append(Paragraph(escape(event.name), styles["event"]))
        story.append(Spacer(1, 6))

        details = Table(ticket_details(ticket, event), colWidths=[105, 245])
        details.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
            ("FONTSIZE", (0, 0), (-1, -1), 13),
            ("TEXTCOLOR", (0, 0), (0, -1), MUTED_TEXT),
            ("TEXTCOLOR", (1, 0), (1, -1), DARK_TEXT),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 10),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))

        body = Table(
            [[details, _scan_code_cell(ticket, styles, scan_code)]],
            colWidths=[doc.width - QR_SIZE - 30, QR_SIZE + 30],
        )
        body.setStyle(TableStyle([
            ("BOX", (0, 0), (-1, -1), 2, BORDER_GRAY),
            ("VALIGN", (0, 0), (0, 0), "TOP"),
            ("VALIGN", (1, 0), (1, 0), "MIDDLE"),
            ("ALIGN", (1, 0), (1, 0), "CENTER"),
            ("TOPPADDING", (0, 0), (-1, -1), 12),
            ("LEFTPADDING", (0, 0), (0, 0), 18),
        ]))
        story.append(body)
        story.append(Spacer(1, 14))

        code_row = Table(
            [["TICKET CODE:", SpacedCode(ticket.code)]],
            colWidths=[130, doc.width - 130],
        )
        code_row.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), LIGHT_GRAY),
            ("BOX", (0, 0), (-1, -1), 1, BORDER_GRAY),
            ("FONTNAME", (0, 0), (0, 0), "Helvetica"),
            ("FONTSIZE", (0, 0), (0, 0), 16),
            ("TEXTCOLOR", (0, 0), (0, 0), MUTED_TEXT),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("TOPPADDING", (0, 0), (-1, -1), 10),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 10),
            ("LEFTPADDING", (0, 0), (0, 0), 18),
        ]))
        story.append(code_row)
        story.append(Spacer(1, 20))

        story.append(Paragraph("Important Information:", styles["heading"]))
        for note in IMPORTANT_NOTES:
            story.append(Paragraph(f"&bull; {escape(note)}", styles["note"]))

        def _footer(canvas, _doc):
            canvas.saveState()
            width = _doc.pagesize[0]
            canvas.setFont("Helvetica", 11)
            canvas.setFillColor(MUTED_TEXT)
            canvas.drawCentredString(
                width / 2, 60,
                f"{event.name} - Where Code Meets Competition",
            )
            canvas.setFont("Helvetica", 10)
            canvas.setFillColor(FAINT_TEXT)
            canvas.drawCentredString(
                width / 2, 44,
                f"Questions? Contact {event.support_email} | "
                f"© {year} {event.organizer_name}",
            )
            canvas.restoreState()

        doc.build(story, onFirstPage=_footer, onLaterPages=_footer)
    except Exception as e:
        raise DocumentRenderFailure(ticket.code, f"PDF render failed: {e}")

    return buf.getvalue()
