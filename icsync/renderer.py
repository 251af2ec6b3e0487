"""Render normalized events into destination post bodies.

The body is an ``[event]`` block understood by the host's calendar markup,
the free-text description, and an HTML comment carrying the UID::

    [event start="2024-06-01T10:00:00Z" timezone="UTC" status="standalone" name="Team Sync" minimal="true"]
    [/event]

    <!-- ics_uid: abc-123 -->

Rendering is a pure function of its inputs, which is what lets the upsert
skip writes when nothing changed.
"""
from __future__ import annotations

import re
from datetime import date, datetime, timezone

from icsync.models import Event

UNTITLED_EVENT = "Untitled event"
UID_MARKER_PATTERN = re.compile(r"<!-- ics_uid: (.*?) -->")
MARKER_ESCAPES = {"\\": "\\\\", "\r": "\\r", "\n": "\\n"}
MARKER_UNESCAPES = {"r": "\r", "n": "\n"}


def escape_attr(value: object) -> str:
    text = str(value if value is not None else "")
    text = text.replace("\\", "\\\\").replace('"', '\\"')
    text = text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    return text.strip()


def format_when(value: date | datetime | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return value.strftime("%Y-%m-%d")


def title_from_event(event: Event) -> str:
    return (event.summary or "").strip() or UNTITLED_EVENT


def escape_marker_uid(uid: str) -> str:
    text = "".join(MARKER_ESCAPES.get(char, char) for char in str(uid or "").strip())
    # "--" may not appear inside an HTML comment; break every run of dashes.
    return re.sub(r"-(?=-)", lambda _: "-\\", text)


def unescape_marker_uid(text: str) -> str:
    return re.sub(r"\\(.)", lambda m: MARKER_UNESCAPES.get(m.group(1), m.group(1)), text, flags=re.DOTALL)


def uid_marker(uid: str) -> str:
    return f"<!-- ics_uid: {escape_marker_uid(uid)} -->"


def extract_uid_marker(body: str) -> str | None:
    matches = UID_MARKER_PATTERN.findall(body or "")
    if not matches:
        return None
    return unescape_marker_uid(matches[-1]).strip() or None


def render_event(event: Event, site_tz: str = "UTC") -> str:
    start = format_when(event.starts_at)
    end = format_when(event.ends_at)
    tz = str(event.tzid or site_tz or "")
    name = escape_attr(event.summary)
    url = escape_attr(event.url)
    location = escape_attr(event.location)

    attrs: list[str] = []
    if start:
        attrs.append(f'start="{start}"')
    if end:
        attrs.append(f'end="{end}"')
    if tz:
        attrs.append(f'timezone="{escape_attr(tz)}"')
    attrs.append('status="standalone"')
    if name:
        attrs.append(f'name="{name}"')
    if url:
        attrs.append(f'url="{url}"')
    if location:
        attrs.append(f'location="{location}"')
    attrs.append('minimal="true"')

    body = f"[event {' '.join(attrs)}]\n[/event]\n"
    description = (event.description or "").strip()
    if description:
        body += f"\n{description}\n"
    body += f"\n{uid_marker(event.uid)}\n"
    return body
