import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from icsync.config_manager import ConfigManager, redact_url
from icsync.models import AppConfig


class ConfigManagerTests(unittest.TestCase):
    def test_creates_default_config_when_missing(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "nested" / "config.yaml"
            manager = ConfigManager(str(config_path))
            self.assertTrue(config_path.exists())
            config = manager.load()
            self.assertTrue(config.enabled)
            self.assertEqual(config.feeds, [])

    def test_save_fallback_when_replace_ebusy(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            manager = ConfigManager(str(config_path))
            config = AppConfig.from_dict(
                {
                    "feeds": [{"url": "https://calendar.example.com/team.ics", "key": "team"}],
                    "default_tags": "calendar",
                }
            )

            original_replace = Path.replace

            def replace_side_effect(self: Path, target: Path) -> Path:
                if str(self).endswith(".tmp"):
                    raise OSError(errno.EBUSY, "Device or resource busy")
                return original_replace(self, target)

            with mock.patch("pathlib.Path.replace", new=replace_side_effect):
                manager.save(config)

            self.assertTrue(config_path.exists())
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            self.assertEqual(data["feeds"][0]["key"], "team")
            self.assertEqual(data["default_tags"], "calendar")

    def test_masked_redacts_feed_secrets(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            config_path.write_text(
                yaml.safe_dump(
                    {
                        "feeds": [
                            {"url": "https://user:pw@cal.example.com/private/basic.ics?token=s3cret", "key": "a"},
                            {"url": "https://cal.example.com/public.ics"},
                        ]
                    }
                ),
                encoding="utf-8",
            )
            manager = ConfigManager(str(config_path))
            masked = manager.masked()
            self.assertEqual(masked["feeds"][0]["url"], "https://***@cal.example.com/private/basic.ics?***")
            self.assertEqual(masked["feeds"][1]["url"], "https://cal.example.com/public.ics")
            self.assertNotIn("s3cret", str(masked))

    def test_redact_url_keeps_port(self) -> None:
        self.assertEqual(redact_url("http://cal.example.com:8443/a.ics"), "http://cal.example.com:8443/a.ics")


if __name__ == "__main__":
    unittest.main()
