"""Calendar handlers: ``check_calendar`` and ``book_calendar_event``.

Whole-day events use an **exclusive** end date at the Google Calendar API
(a Dec 7–8 vacation is stored as ``start=2025-12-07, end=2025-12-09``).
``to_all_day_range`` / ``from_all_day_range`` are the only places that
convert between the inclusive range users speak in and the API's exclusive
one; every read and write goes through them.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import httpx

from src.config import CALENDAR_TIMEZONE, IS_PRODUCTION
from src.errors import CancellationError, InvalidParametersError
from src.models import ToolResult
from src.services.google_client import GoogleAPIError
from src.tools.context import ToolContext
from src.tools.registry import BookCalendarEventParams, CheckCalendarParams

logger = logging.getLogger(__name__)

ALL_DAY_KEYWORDS = ("vacation", "leave", "holiday", "pto", "day off", "time off")

DEFAULT_REMINDERS = [
    {"method": "email", "minutes": 24 * 60},  # 1 day before
    {"method": "popup", "minutes": 60},
]

EVENT_COLOR_ID = "11"  # red
MAX_EVENTS_PER_CALENDAR = 50
MAX_CONFLICT_DATES = 5


# ── Whole-day conversion ─────────────────────────────────────────────


def to_all_day_range(first_day: date, last_day: date) -> tuple[str, str]:
    """Inclusive ``[first_day, last_day]`` → API ``(start, exclusive_end)`` dates."""
    if last_day < first_day:
        raise ValueError(f"last day {last_day} is before first day {first_day}")
    return first_day.isoformat(), (last_day + timedelta(days=1)).isoformat()


def from_all_day_range(start: str, exclusive_end: str) -> tuple[date, date]:
    """API ``(start, exclusive_end)`` dates → inclusive ``(first_day, last_day)``."""
    first_day = date.fromisoformat(start)
    last_day = date.fromisoformat(exclusive_end) - timedelta(days=1)
    return first_day, max(first_day, last_day)


def is_all_day(title: str, flag: bool | None) -> bool:
    """Explicit flag wins; otherwise whole-day when the title reads like time off."""
    if flag is not None:
        return flag
    lowered = title.lower()
    return any(keyword in lowered for keyword in ALL_DAY_KEYWORDS)


def _utc_bound(day: date) -> str:
    return datetime.combine(day, time.min, tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


def _display(day: date) -> str:
    return day.strftime("%d %b %Y")


def _event_view(event: dict[str, Any]) -> dict[str, Any]:
    start = event.get("start") or {}
    end = event.get("end") or {}
    view: dict[str, Any] = {
        "id": event.get("id"),
        "title": event.get("summary"),
        "description": event.get("description"),
        "attendees": [a.get("email") for a in event.get("attendees") or [] if a.get("email")],
    }
    if "date" in start and "date" in end:
        first_day, last_day = from_all_day_range(start["date"], end["date"])
        view.update(start=first_day.isoformat(), end=last_day.isoformat(), allDay=True)
    else:
        view.update(start=start.get("dateTime"), end=end.get("dateTime"), allDay=False)
    return view


# ── check_calendar ───────────────────────────────────────────────────


def check_calendar(ctx: ToolContext, params: CheckCalendarParams) -> ToolResult:
    """List events in the inclusive date range for each requested calendar.

    A failure on one calendar is reported in that calendar's entry; the other
    calendars are still read.
    """
    if params.end_date < params.start_date:
        raise InvalidParametersError("check_calendar", invalid=["end_date"])

    access_token = ctx.access_token()
    time_min = _utc_bound(params.start_date)
    time_max = _utc_bound(params.end_date + timedelta(days=1))

    calendars: list[dict[str, Any]] = []
    for calendar_id in params.calendar_ids or ["primary"]:
        try:
            items = ctx.google.list_events(
                access_token,
                calendar_id,
                time_min=time_min,
                time_max=time_max,
                max_results=MAX_EVENTS_PER_CALENDAR,
                timeout=ctx.timeout(),
            )
        except httpx.TimeoutException as exc:
            if ctx.token.cancelled:
                raise CancellationError() from exc
            logger.warning("Calendar %s timed out: %s", calendar_id, exc)
            calendars.append({"calendarId": calendar_id, "error": "Request timed out",
                              "eventCount": 0, "events": []})
            continue
        except GoogleAPIError as exc:
            logger.warning(
                "Failed to check calendar %s: %s",
                calendar_id, exc if not IS_PRODUCTION else f"status {exc.status_code}",
            )
            error = (
                f"Calendar request failed (status {exc.status_code})" if IS_PRODUCTION else str(exc)
            )
            calendars.append({"calendarId": calendar_id, "error": error,
                              "eventCount": 0, "events": []})
            continue

        events = [_event_view(item) for item in items]
        calendars.append({
            "calendarId": calendar_id,
            "calendarName": "Your Calendar" if calendar_id == "primary" else calendar_id,
            "eventCount": len(events),
            "events": events,
        })

    total = sum(cal["eventCount"] for cal in calendars)
    conflict_dates = [e["start"] for cal in calendars for e in cal["events"]][:MAX_CONFLICT_DATES]
    start, end = params.start_date.isoformat(), params.end_date.isoformat()

    return ToolResult(
        data={
            "calendars": calendars,
            "totalEvents": total,
            "hasConflicts": total > 0,
            "conflictDates": conflict_dates,
            "dateRange": {"start": start, "end": end},
        },
        summary=(
            f"Found {total} event(s) during {start} to {end}. There may be conflicts."
            if total
            else f"No events found during {start} to {end}. Calendar is clear."
        ),
    )


# ── book_calendar_event ──────────────────────────────────────────────


def build_event(params: BookCalendarEventParams) -> tuple[dict[str, Any], bool]:
    """Translate booking parameters into a Calendar API event body."""
    all_day = is_all_day(params.title, params.all_day)
    reminders = (
        [r.model_dump() for r in params.reminders] if params.reminders else DEFAULT_REMINDERS
    )
    event: dict[str, Any] = {
        "summary": params.title,
        "description": params.description or "",
        "attendees": [{"email": email} for email in params.attendees],
        "reminders": {"useDefault": False, "overrides": reminders},
        "colorId": EVENT_COLOR_ID,
    }

    if all_day:
        try:
            start, end = to_all_day_range(params.start_date.date(), params.end_date.date())
        except ValueError:
            raise InvalidParametersError("book_calendar_event", invalid=["end_date"]) from None
        event["start"] = {"date": start}
        event["end"] = {"date": end}
    else:
        if params.end_date <= params.start_date:
            raise InvalidParametersError("book_calendar_event", invalid=["end_date"])
        event["start"] = {"dateTime": params.start_date.isoformat(), "timeZone": CALENDAR_TIMEZONE}
        event["end"] = {"dateTime": params.end_date.isoformat(), "timeZone": CALENDAR_TIMEZONE}
    return event, all_day


def book_calendar_event(ctx: ToolContext, params: BookCalendarEventParams) -> ToolResult:
    event, all_day = build_event(params)
    if all_day:
        logger.info(
            "Creating all-day event %r %s → %s (exclusive end)",
            params.title, event["start"]["date"], event["end"]["date"],
        )

    access_token = ctx.access_token()
    created = ctx.google.insert_event(
        access_token,
        event,
        send_updates="all" if params.attendees else "none",
        timeout=ctx.timeout(),
    )

    view = _event_view({**event, **created})
    first = params.start_date.date()
    last = params.end_date.date()
    return ToolResult(
        data={
            "eventId": created.get("id"),
            "htmlLink": created.get("htmlLink"),
            "title": created.get("summary", params.title),
            "start": view["start"],
            "end": view["end"],
            "attendees": view["attendees"],
            "isAllDay": all_day,
        },
        summary=(
            f'Calendar event "{params.title}" booked successfully from '
            f"{_display(first)} to {_display(last)}."
        ),
    )
