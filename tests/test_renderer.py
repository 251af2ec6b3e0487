import re
import unittest
from datetime import date, datetime, timezone

from icsync.models import Event
from icsync.renderer import escape_attr, extract_uid_marker, format_when, render_event, title_from_event


class RenderEventTests(unittest.TestCase):
    def test_minimal_timed_event(self) -> None:
        event = Event(
            uid="abc-123",
            summary="Team Sync",
            starts_at=datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(
            render_event(event, site_tz="UTC"),
            '[event start="2024-06-01T10:00:00Z" timezone="UTC" status="standalone" '
            'name="Team Sync" minimal="true"]\n[/event]\n'
            "\n<!-- ics_uid: abc-123 -->\n",
        )

    def test_full_event(self) -> None:
        event = Event(
            uid="full-1",
            summary="Board meeting",
            description="  Agenda attached.\n\nBring slides.  ",
            location="Room 4",
            url="https://example.com/e/1",
            starts_at=datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc),
            ends_at=datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc),
            tzid="Europe/Berlin",
        )
        body = render_event(event, site_tz="UTC")
        self.assertTrue(
            body.startswith(
                '[event start="2024-06-01T08:00:00Z" end="2024-06-01T09:00:00Z" timezone="Europe/Berlin" '
                'status="standalone" name="Board meeting" url="https://example.com/e/1" '
                'location="Room 4" minimal="true"]\n[/event]\n'
            )
        )
        self.assertIn("\nAgenda attached.\n\nBring slides.\n", body)
        self.assertTrue(body.endswith("\n<!-- ics_uid: full-1 -->\n"))

    def test_site_timezone_used_without_tzid(self) -> None:
        event = Event(uid="a", starts_at=date(2024, 6, 1))
        body = render_event(event, site_tz="America/Chicago")
        self.assertIn('start="2024-06-01"', body)
        self.assertIn('timezone="America/Chicago"', body)
        self.assertNotIn("name=", body)

    def test_fields_cannot_break_structure(self) -> None:
        event = Event(
            uid="evil\n-->",
            summary='He said "hi"]\n[event start="1999-01-01"',
            location='A\r\nB',
            starts_at=datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
        )
        body = render_event(event)
        first_line = body.splitlines()[0]
        self.assertIn('name="He said \\"hi\\"] [event start=\\"1999-01-01\\""', first_line)
        self.assertIn('location="A B"', first_line)
        self.assertEqual(body.count("\n"), render_event(Event(uid="x", summary="s", starts_at=event.starts_at)).count("\n"))

    def test_trailing_backslash_cannot_swallow_next_attribute(self) -> None:
        event = Event(
            uid="u1",
            summary="C:\\temp\\",
            url="https://x.example/e",
            starts_at=datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
        )
        first_line = render_event(event).splitlines()[0]

        attrs = dict(re.findall(r'(\w+)="((?:[^"\\]|\\.)*)"', first_line))

        self.assertEqual(attrs["name"], "C:\\\\temp\\\\")
        self.assertEqual(attrs["url"], "https://x.example/e")
        self.assertEqual(attrs["minimal"], "true")

    def test_rendering_is_idempotent(self) -> None:
        event = Event(
            uid="same",
            summary="Repeat",
            description="Text",
            starts_at=datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
            ends_at=datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(render_event(event, "UTC"), render_event(event, "UTC"))


class RendererHelperTests(unittest.TestCase):
    def test_title_falls_back_when_blank(self) -> None:
        self.assertEqual(title_from_event(Event(uid="a", summary="  Team Sync ")), "Team Sync")
        self.assertEqual(title_from_event(Event(uid="a", summary="   ")), "Untitled event")
        self.assertEqual(title_from_event(Event(uid="a")), "Untitled event")

    def test_format_when(self) -> None:
        self.assertEqual(format_when(None), "")
        self.assertEqual(format_when(date(2024, 6, 1)), "2024-06-01")
        self.assertEqual(format_when(datetime(2024, 6, 1, 10, 0)), "2024-06-01T10:00:00Z")

    def test_escape_attr(self) -> None:
        self.assertEqual(escape_attr(' a "b"\nc '), 'a \\"b\\" c')
        self.assertEqual(escape_attr(None), "")

    def test_marker_round_trips(self) -> None:
        body = render_event(Event(uid="abc-123", description="<!-- ics_uid: spoof -->"))
        self.assertEqual(extract_uid_marker(body), "abc-123")
        self.assertIsNone(extract_uid_marker("no marker here"))

    def test_marker_survives_comment_terminators_in_uid(self) -> None:
        for uid in ("evt --> <b>x</b>", "a---b", "tail-", "C:\\dir\\", "two\nlines"):
            body = render_event(Event(uid=uid, summary="s"))
            marker_line = body.rstrip("\n").splitlines()[-1]

            self.assertEqual(extract_uid_marker(body), uid)
            self.assertEqual(marker_line.count("-->"), 1)
            self.assertTrue(marker_line.endswith(" -->"))
            self.assertNotIn("--", marker_line[len("<!--") : -len("-->")])


if __name__ == "__main__":
    unittest.main()
