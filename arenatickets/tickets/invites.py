from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import quote

from ..config import EventInfo
from ..model.orm import Ticket

PRODID = "-//Amp Arena//Event Calendar//EN"
REMINDERS = (
    ("-PT24H", "Reminder: {name} tomorrow!"),
    ("-PT2H", "{name} starts in 2 hours!"),
)


def ics_datetime(dt: datetime) -> str:
    """UTC basic format, e.g. 20251029T180000Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def ics_escape(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> str:
    # RFC 5545: 75 octets per physical line, continuation starts with a space
    raw = line.encode("utf-8")
    if len(raw) <= 75:
        return line
    parts: List[str] = []
    limit = 75
    while raw:
        cut = min(limit, len(raw))
        # never split inside a multi-byte sequence
        while cut < len(raw) and (raw[cut] & 0xC0) == 0x80:
            cut -= 1
        parts.append(raw[:cut].decode("utf-8"))
        raw = raw[cut:]
        limit = 74
    return "\r\n ".join(parts)


def invite_uid(ticket_code: str, event: EventInfo) -> str:
    return f"{event.file_prefix}-{ticket_code}@{event.domain}"


def event_title(event: EventInfo) -> str:
    return f"{event.name} - {event.tagline}"


def _description(ticket: Ticket, event: EventInfo) -> str:
    return (
        f"{event_title(event)}\n\n"
        f"Your ticket: {ticket.code}\n\n"
        "Bring this email or show your ticket QR code at the door."
    )


def build_invite_file(ticket: Ticket, event: EventInfo) -> str:
    """iCalendar text for one VEVENT.

    Depends only on the ticket and the event, so rebuilding the invite for a
    ticket yields identical bytes (including UID and DTSTAMP).
    """
    if ticket.created_at is not None:
        stamp = datetime.fromtimestamp(ticket.created_at, tz=timezone.utc)
    else:
        stamp = event.starts_at

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{invite_uid(ticket.code, event)}",
        f"DTSTAMP:{ics_datetime(stamp)}",
        f"DTSTART:{ics_datetime(event.starts_at)}",
        f"DTEND:{ics_datetime(event.ends_at)}",
        f"SUMMARY:{ics_escape(event_title(event))}",
        f"DESCRIPTION:{ics_escape(_description(ticket, event))}",
        f"LOCATION:{ics_escape(event.location)}",
        f"ORGANIZER;CN={event.organizer_name}:MAILTO:{event.organizer_email}",
    ]
    if ticket.email:
        lines.append(
            f"ATTENDEE;CN={ticket.email};RSVP=TRUE:MAILTO:{ticket.email}"
        )
    lines += [
        "STATUS:CONFIRMED",
        "CLASS:PUBLIC",
        "PRIORITY:5",
    ]
    for trigger, text in REMINDERS:
        lines += [
            "BEGIN:VALARM",
            f"TRIGGER:{trigger}",
            "ACTION:DISPLAY",
            f"DESCRIPTION:{ics_escape(text.format(name=event.name))}",
            "END:VALARM",
        ]
    lines += ["END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"


def build_provider_links(
    ticket: Optional[Ticket], event: EventInfo
) -> Dict[str, str]:
    """Add-to-calendar deep links; every free-text field is percent-encoded."""
    title = quote(event_title(event), safe="")
    text = f"{event_title(event)}."
    if ticket is not None:
        text += f" Your ticket: {ticket.code}."
    details = quote(text, safe="")
    location = quote(event.location, safe="")
    start = ics_datetime(event.starts_at)
    end = ics_datetime(event.ends_at)
    return {
        "google": (
            "https://calendar.google.com/calendar/render?action=TEMPLATE"
            f"&text={title}&dates={start}/{end}"
            f"&details={details}&location={location}"
        ),
        "outlook": (
            "https://outlook.live.com/calendar/0/deeplink/compose"
            f"?subject={title}&startdt={start}&enddt={end}"
            f"&body={details}&location={location}"
        ),
        "yahoo": (
            "https://calendar.yahoo.com/?v=60&view=d&type=20"
            f"&title={title}&st={start}&et={end}"
            f"&desc={details}&in_loc={location}"
        ),
    }
