from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from SellSchedule.schedule.models import CalendarEvent

if TYPE_CHECKING:
    from SellSchedule.schedule.models import ScheduleEntry


DEFAULT_EVENT_DURATION_MINUTES = 30
GOOGLE_CALENDAR_RENDER_URL = "https://calendar.google.com/calendar/render"


def build_calendar_event(entry: "ScheduleEntry", *, duration_minutes: int = DEFAULT_EVENT_DURATION_MINUTES) -> CalendarEvent:
    signups = ", ".join(entry.reactor_names)
    description = (
        f'<h3><a href="{html.escape(entry.url, quote=True)}">{html.escape(entry.text)}</a></h3>\n'
        f"<b>Signups:</b> {html.escape(signups)}\n\n"
        f"<b>Region:</b> {html.escape(entry.region)}"
    )
    return CalendarEvent(
        summary=entry.text,
        description=description,
        location=entry.region,
        start=int(entry.date),
        end=int(entry.date) + int(duration_minutes) * 60,
        guests=entry.reactor_names,
    )


def _gcal_stamp(epoch: int) -> str:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def google_calendar_link(event: CalendarEvent) -> str:
    """'Add to Google Calendar' deep link for one event."""
    query = urlencode(
        {
            "action": "TEMPLATE",
            "text": event.summary,
            "dates": f"{_gcal_stamp(event.start)}/{_gcal_stamp(event.end)}",
            "details": event.description,
            "location": event.location,
        }
    )
    return f"{GOOGLE_CALENDAR_RENDER_URL}?{query}"
