from __future__ import annotations
import base64
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from jinja2 import DictLoader, Environment, select_autoescape

from ..config import EventInfo
from ..helpers import format_price, humanize_kind, to_iso
from ..mail.message import Attachment, OutboundMessage
from ..model.orm import Ticket
from .documents import render_scan_code, render_ticket_document, ticket_details
from .invites import build_invite_file, build_provider_links

log = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
ICS_MIME = "text/calendar"

# ----------------------------
# Jinja2 in-memory templates (no files needed)
# ----------------------------
TEMPLATES = {
    "base.html": r"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{% block title %}{{ event.name }}{% endblock %}</title>
</head>
<body style="margin:0;padding:0;background:#0a0a0a;color:#ffffff;font-family:Arial,sans-serif;line-height:1.6">
  <div style="max-width:600px;margin:0 auto;background:#1a1a1a;border-radius:12px;overflow:hidden">
    <div style="background:#00ff88;padding:30px 20px;text-align:center">
      <h1 style="color:#000;font-size:28px;margin:0 0 10px">{{ event.name|upper }}</h1>
      <p style="color:#000;font-size:16px;margin:0">{% block tagline %}{% endblock %}</p>
    </div>
    <div style="padding:40px 30px">
      {% block content %}{% endblock %}
    </div>
    <div style="background:#0a0a0a;padding:30px;text-align:center;border-top:1px solid #333">
      <p style="color:#888;font-size:14px">{{ event.name }} - Where Code Meets Competition</p>
      <p style="color:#888;font-size:14px">Questions? Contact
        <a href="mailto:{{ event.support_email }}" style="color:#00ff88">{{ event.support_email }}</a></p>
    </div>
  </div>
</body>
</html>
""",

    "calendar.html": r"""
<div style="background:#1a1a1a;padding:20px;border-radius:8px;margin:20px 0;border:1px solid #333">
  <h3 style="color:#00ff88;margin-bottom:15px;font-size:18px">Add to Calendar</h3>
  <p style="margin-bottom:15px;color:#cccccc">Don't miss the event! Add it to your calendar:</p>
  <a href="{{ links.google }}" style="background:#4285f4;color:white;padding:8px 16px;text-decoration:none;border-radius:4px;font-size:14px;display:inline-block" target="_blank">+ Google Calendar</a>
  <a href="{{ links.outlook }}" style="background:#0078d4;color:white;padding:8px 16px;text-decoration:none;border-radius:4px;font-size:14px;display:inline-block" target="_blank">+ Outlook</a>
  <a href="{{ links.yahoo }}" style="background:#6001d2;color:white;padding:8px 16px;text-decoration:none;border-radius:4px;font-size:14px;display:inline-block" target="_blank">+ Yahoo Calendar</a>
  <p style="margin-top:10px;font-size:12px;color:#888">Or use the attached .ics file to import into any calendar app</p>
</div>
""",

    "ticket.html": r"""{% extends "base.html" %}
{% block title %}Your {{ event.name }} Ticket{% endblock %}
{% block tagline %}Your ticket is ready!{% endblock %}
{% block content %}
  <p style="font-size:18px">Hello!</p>
  <p>Welcome to {{ event.name }}! Your ticket has been confirmed and is ready for the event.</p>
  <table style="width:100%;background:rgba(0,255,136,0.1);border:1px solid rgba(0,255,136,0.3);border-radius:8px;padding:25px;margin:25px 0">
    {% for label, value in details %}
    <tr>
      <td style="font-weight:bold;color:#00ff88;padding:6px 0">{{ label }}</td>
      <td style="color:#ffffff;padding:6px 0">{{ value }}</td>
    </tr>
    {% endfor %}
    <tr>
      <td style="font-weight:bold;color:#00ff88;padding:6px 0">Ticket Code:</td>
      <td style="font-family:'Courier New',monospace;font-size:20px;letter-spacing:2px">{{ ticket.code }}</td>
    </tr>
  </table>
  <div style="text-align:center;margin:30px 0;padding:25px;background:rgba(255,255,255,0.05);border-radius:8px">
    {% if qr_base64 %}
    <p>Show this QR code at the entrance:</p>
    <img src="data:image/png;base64,{{ qr_base64 }}" alt="Ticket QR code" width="200" height="200" style="background:white;padding:10px;border-radius:8px">
    {% else %}
    <p>Present your ticket code at the venue entrance.</p>
    {% endif %}
  </div>
  {% include "calendar.html" %}
  <div style="background:rgba(255,193,7,0.1);border-left:4px solid #ffc107;padding:20px;margin:25px 0">
    <h3 style="color:#ffc107;margin-bottom:10px">Important Information</h3>
    <ul>
      <li>Your PDF ticket is attached to this email{% if not has_document %} (unavailable right now, use your ticket code){% endif %}</li>
      <li>Bring valid ID matching your ticket registration</li>
      <li>This ticket is non-transferable and non-refundable</li>
      <li>Lost this email? Request your tickets again at <a href="{{ event.site_url }}/tickets/retrieve" style="color:#00ff88">{{ event.site_url }}/tickets/retrieve</a></li>
    </ul>
  </div>
{% endblock %}
""",

    "retrieval.html": r"""{% extends "base.html" %}
{% block title %}Your {{ event.name }} Tickets{% endblock %}
{% block tagline %}Your tickets, retrieved{% endblock %}
{% block content %}
  <p style="font-size:18px">Hello!</p>
  <p>You requested your {{ event.name }} tickets for <strong>{{ email }}</strong> on {{ requested_at }}.
     We found {{ tickets|length }} ticket{{ 's' if tickets|length != 1 }}.</p>
  {% for t in tickets %}
  <table style="width:100%;background:rgba(0,255,136,0.1);border:1px solid rgba(0,255,136,0.3);border-radius:8px;padding:20px;margin:15px 0">
    <tr><td style="font-weight:bold;color:#00ff88">Ticket Code:</td>
        <td style="font-family:'Courier New',monospace;font-size:18px;letter-spacing:2px">{{ t.code }}</td></tr>
    <tr><td style="font-weight:bold;color:#00ff88">Ticket Type:</td><td>{{ t.kind }}</td></tr>
    <tr><td style="font-weight:bold;color:#00ff88">Price:</td><td>{{ t.price }}</td></tr>
    <tr><td style="font-weight:bold;color:#00ff88">Status:</td><td>{{ t.status|capitalize }}</td></tr>
    <tr><td style="font-weight:bold;color:#00ff88">Purchased:</td><td>{{ t.purchased }}</td></tr>
    {% if not t.attached %}
    <tr><td colspan="2" style="color:#ffc107">PDF unavailable for this ticket; your ticket code is all you need at the door.</td></tr>
    {% endif %}
  </table>
  {% endfor %}
  <p><strong>Date:</strong> {{ event.date_label }} &middot; <strong>Venue:</strong> {{ event.location }}</p>
  {% include "calendar.html" %}
{% endblock %}
""",

    "signup_notice.html": r"""<h2>New {{ event.name }} Signup</h2>
<p><strong>Email:</strong> {{ email }}</p>
<p><strong>Signup Time:</strong> {{ signed_up_at }}</p>
<p><strong>Signup ID:</strong> {{ signup_id }}</p>
""",

    # bulk mails to signups, see notify_signups.py
    "welcome.html": r"""{% extends "base.html" %}
{% block tagline %}{{ event.tagline }}{% endblock %}
{% block content %}
  <p style="font-size:18px">Welcome to the ultimate developer competition!</p>
  <p>You're now registered for updates about {{ event.name }}:</p>
  <ul style="font-size:16px;line-height:1.8">
    <li><strong>Qualifying rounds</strong> leading up to the final</li>
    <li><strong>The final</strong> on {{ event.date_label }} at {{ event.venue }}</li>
  </ul>
  <div style="text-align:center;margin:30px 0">
    <a href="{{ event.site_url }}" style="background:#00ff88;color:#000;padding:15px 30px;text-decoration:none;border-radius:25px;display:inline-block">View Landing Page</a>
  </div>
  <p style="color:#999;font-size:14px">Stay tuned for more details about the qualifying challenges!</p>
{% endblock %}
""",

    "reminder.html": r"""{% extends "base.html" %}
{% block tagline %}{{ event.tagline }}{% endblock %}
{% block content %}
  <p style="font-size:20px;text-align:center"><strong>The first qualifying challenge opens tomorrow!</strong></p>
  <p>Are you ready to compete for your seat at {{ event.name }}?</p>
  <div style="text-align:center;margin:30px 0">
    <a href="{{ event.site_url }}" style="background:#00ff88;color:#000;padding:15px 30px;text-decoration:none;border-radius:25px;display:inline-block">Join the Competition</a>
  </div>
{% endblock %}
""",
}

# template -> subject; {name} is the event name
SIGNUP_UPDATES = {
    "welcome": "Welcome to {name}!",
    "reminder": "{name} Qualifying Starts Tomorrow!",
}

env = Environment(
    loader=DictLoader(TEMPLATES), autoescape=select_autoescape(["html"])
)


def document_filename(code: str, event: EventInfo) -> str:
    return f"{event.file_prefix}-ticket-{code}.pdf"


def invite_filename(code: str, event: EventInfo) -> str:
    return f"{event.file_prefix}-ticket-{code}.ics"


class NotificationComposer:
    def __init__(
        self,
        event: EventInfo,
        render_document: Callable[[Ticket, EventInfo], bytes] = (
            render_ticket_document
        ),
        scan_code: Callable[[str], bytes] = render_scan_code,
    ) -> None:
        self.event = event
        self.render_document = render_document
        self.scan_code = scan_code

    def _qr_base64(self, code: str) -> Optional[str]:
        try:
            return base64.b64encode(self.scan_code(code)).decode()
        except Exception:
            log.warning("inline QR render failed for %s", code, exc_info=True)
            return None

    def compose_ticket_message(
        self,
        ticket: Ticket,
        document: Optional[bytes],
        invite: Optional[str],
    ) -> OutboundMessage:
        """Confirmation email for one ticket. A missing document or invite
        (render failure upstream) simply drops that attachment."""
        ev = self.event
        html = env.get_template("ticket.html").render(
            event=ev,
            ticket=ticket,
            details=ticket_details(ticket, ev),
            links=build_provider_links(ticket, ev),
            qr_base64=self._qr_base64(ticket.code),
            has_document=document is not None,
        )
        attachments = []
        if document is not None:
            attachments.append(Attachment(
                document_filename(ticket.code, ev), document, PDF_MIME
            ))
        if invite is not None:
            attachments.append(Attachment(
                invite_filename(ticket.code, ev),
                invite.encode("utf-8"),
                ICS_MIME,
            ))
        return OutboundMessage(
            to=ticket.email,
            subject=f"Your {ev.name} Ticket - Ready for {ev.date_label}!",
            html_body=html,
            attachments=attachments,
        )

    def compose_retrieval_message(
        self,
        tickets: Sequence[Ticket],
        requested_at: datetime,
    ) -> OutboundMessage:
        """Resend every ticket for one address: a PDF per ticket (skipping
        any that fail to render) and one invite for the most recent."""
        if not tickets:
            raise ValueError("compose_retrieval_message needs tickets")
        ev = self.event

        attachments: List[Attachment] = []
        rows = []
        for t in tickets:
            attached = False
            try:
                pdf = self.render_document(t, ev)
                attachments.append(
                    Attachment(document_filename(t.code, ev), pdf, PDF_MIME)
                )
                attached = True
            except Exception:
                log.error("PDF render failed for ticket %s", t.code,
                          exc_info=True)
            rows.append({
                "code": t.code,
                "kind": humanize_kind(t.kind),
                "price": format_price(t.price_minor_units,
                                      ev.currency_symbol),
                "status": t.status,
                "purchased": to_iso(t.created_at) or "-",
                "attached": attached,
            })

        latest = max(tickets, key=lambda t: t.created_at or 0.0)
        attachments.append(Attachment(
            invite_filename(latest.code, ev),
            build_invite_file(latest, ev).encode("utf-8"),
            ICS_MIME,
        ))

        html = env.get_template("retrieval.html").render(
            event=ev,
            email=tickets[0].email,
            tickets=rows,
            requested_at=requested_at.strftime("%Y-%m-%d %H:%M UTC"),
            links=build_provider_links(latest, ev),
        )
        return OutboundMessage(
            to=tickets[0].email,
            subject=f"Your {ev.name} Tickets Retrieved",
            html_body=html,
            attachments=attachments,
        )

    def compose_signup_notice(
        self, to: str, email: str, signup_id: int, signed_up_at: datetime
    ) -> OutboundMessage:
        ev = self.event
        html = env.get_template("signup_notice.html").render(
            event=ev,
            email=email,
            signup_id=signup_id,
            signed_up_at=signed_up_at.strftime("%Y-%m-%d %H:%M:%S UTC"),
        )
        return OutboundMessage(
            to=to, subject=f"New {ev.name} Signup", html_body=html
        )

    def compose_signup_update(self, template: str, to: str) -> OutboundMessage:
        """Bulk update for one signup; `template` is a SIGNUP_UPDATES key."""
        if template not in SIGNUP_UPDATES:
            raise ValueError(f"unknown signup template {template!r}")
        ev = self.event
        html = env.get_template(f"{template}.html").render(event=ev)
        return OutboundMessage(
            to=to,
            subject=SIGNUP_UPDATES[template].format(name=ev.name),
            html_body=html,
        )
