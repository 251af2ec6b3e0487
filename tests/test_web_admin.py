import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml
from fastapi.testclient import TestClient

from icsync.models import FeedState, SyncResult
from icsync.web_admin import create_app


class WebAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = Path(self.temp_dir.name) / "config.yaml"
        self.state_path = str(Path(self.temp_dir.name) / "state.db")
        self.config_path.write_text(
            yaml.safe_dump(
                {
                    "feeds": [
                        {"url": "https://cal.example.com/private.ics?token=s3cret", "key": "private", "static_tags": ["Club"]},
                        {"url": "https://cal.example.com/public.ics", "key": "public"},
                    ]
                }
            ),
            encoding="utf-8",
        )
        env = {"ICSYNC_CONFIG_PATH": str(self.config_path), "ICSYNC_STATE_PATH": self.state_path}
        with mock.patch.dict(os.environ, env):
            self.app = create_app(start_scheduler=False)
        self.context = self.app.state.context
        self.client = TestClient(self.app)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_healthz(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_feeds_joined_with_state_and_redacted(self) -> None:
        self.context.state_store.set_feed_state("private", FeedState(etag='"v1"', status="200", fetched_at="t1"))

        resp = self.client.get("/api/feeds")

        self.assertEqual(resp.status_code, 200)
        feeds = resp.json()["feeds"]
        self.assertEqual([feed["key"] for feed in feeds], ["private", "public"])
        self.assertEqual(feeds[0]["url"], "https://cal.example.com/private.ics?***")
        self.assertEqual(feeds[0]["static_tags"], ["Club"])
        self.assertEqual(feeds[0]["state"], {"etag": '"v1"', "status": "200", "fetched_at": "t1"})
        self.assertEqual(feeds[1]["state"], {})
        self.assertNotIn("s3cret", resp.text)

    def test_config_is_masked(self) -> None:
        resp = self.client.get("/api/config")
        self.assertEqual(resp.status_code, 200)
        self.assertNotIn("s3cret", resp.text)

    def test_sync_run_triggers_scheduler(self) -> None:
        with mock.patch.object(self.context.scheduler, "trigger_manual") as trigger:
            resp = self.client.post("/api/sync/run")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["message"], "sync triggered")
        trigger.assert_called_once_with()

    def test_sync_run_wait_returns_result(self) -> None:
        result = SyncResult(status="success", message="done", duration_ms=5, trigger="manual", created=2)
        with mock.patch.object(self.context.sync_engine, "run_once", return_value=result) as run_once:
            resp = self.client.post("/api/sync/run", json={"wait": True})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["result"]["created"], 2)
        run_once.assert_called_once_with(trigger="manual", force=True)

    def test_status_audit_and_records(self) -> None:
        run_id = self.context.state_store.start_sync_run(trigger="manual")
        self.context.state_store.record_audit_event(
            feed_key="public", uid="abc-123", action="record_created", details={}, run_id=run_id
        )
        created = self.context.record_store.create(
            "Team Sync", "body", None, ["calendar"], custom_fields={"ics_uid": "abc-123"}
        )

        runs = self.client.get("/api/sync/status").json()["runs"]
        events = self.client.get("/api/audit/events", params={"run_id": run_id}).json()["events"]
        records = self.client.get("/api/records").json()["records"]
        record = self.client.get(f"/api/records/{created.record.record_id}").json()["record"]

        self.assertEqual(runs[0]["id"], run_id)
        self.assertEqual(events[0]["uid"], "abc-123")
        self.assertEqual(records[0]["ics_uid"], "abc-123")
        self.assertEqual(record["title"], "Team Sync")
        self.assertEqual(self.client.get("/api/records/999").status_code, 404)


if __name__ == "__main__":
    unittest.main()
