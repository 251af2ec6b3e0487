from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from icalendar import Calendar as ICalendar

from icsync.errors import ParseError
from icsync.models import Event

logger = logging.getLogger(__name__)


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8-sig", errors="replace")
    return str(raw_data).lstrip("\ufeff")


def _load_calendar(raw_data: bytes | str) -> ICalendar:
    text = _decode_raw_ical(raw_data)
    if not text.strip():
        raise ParseError("empty calendar body")
    try:
        components = ICalendar.from_ical(text, multiple=True)
    except Exception as exc:
        raise ParseError(f"{type(exc).__name__}: {exc}") from exc
    calendars = [item for item in components if getattr(item, "name", "") == "VCALENDAR"]
    if not calendars:
        raise ParseError("no VCALENDAR component found")
    return calendars[0]


def _text(component: Any, name: str) -> str:
    value = component.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        value = value[0] if value else ""
    return str(value)


def _tzid(prop: Any) -> str | None:
    params = getattr(prop, "params", None) or {}
    tzid = params.get("TZID")
    if isinstance(tzid, list):
        tzid = tzid[0] if tzid else None
    tzid = str(tzid).strip() if tzid else ""
    return tzid or None


def _normalize_when(prop: Any) -> date | datetime | None:
    if prop is None:
        return None
    value = getattr(prop, "dt", prop)
    if isinstance(value, datetime):
        # Floating times have no zone of their own; read them as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return value
    raise ValueError(f"unsupported date value {value!r}")


def _event_from_component(component: Any) -> Event:
    dtstart = component.get("DTSTART")
    dtend = component.get("DTEND")
    return Event(
        uid=_text(component, "UID").strip(),
        summary=_text(component, "SUMMARY"),
        description=_text(component, "DESCRIPTION"),
        location=_text(component, "LOCATION"),
        url=_text(component, "URL"),
        starts_at=_normalize_when(dtstart),
        ends_at=_normalize_when(dtend),
        tzid=_tzid(dtstart) or _tzid(dtend),
    )


def parse_calendar(raw_data: bytes | str) -> list[Event]:
    """Parse ICS data into Events, in the order the VEVENTs appear.

    Malformed data yields an empty list; a single undecodable VEVENT is
    skipped. Nothing raises past this function.
    """
    try:
        calendar_obj = _load_calendar(raw_data)
    except ParseError as exc:
        logger.warning(f"Calendar data could not be parsed: {exc}")
        return []

    events: list[Event] = []
    for component in calendar_obj.walk("VEVENT"):
        try:
            events.append(_event_from_component(component))
        except Exception as exc:
            uid = _text(component, "UID").strip()
            logger.warning(
                f"Skipping VEVENT {uid or '<no uid>'}: {exc}",
                extra={"uid": uid, "error_type": type(exc).__name__},
            )
    return events
