import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from cakeday.config_manager import SECRET_MASK, ConfigManager
from cakeday.models import AppConfig


class ConfigManagerTests(unittest.TestCase):
    def test_missing_file_is_created_with_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "nested" / "config.yaml"
            manager = ConfigManager(str(config_path))
            self.assertTrue(config_path.exists())
            config = manager.load()
            self.assertEqual(config.calendar.calendar_name, "Birthdays")
            self.assertEqual(config.reminders.minutes, [-1, -1, -1])

    def test_save_fallback_when_replace_ebusy(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            manager = ConfigManager(str(config_path))
            config = AppConfig.from_dict(
                {
                    "caldav": {"base_url": "https://dav.example.com", "username": "u", "password": "p"},
                    "reminders": {"minutes": [1440]},
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
            self.assertFalse(config_path.with_suffix(".yaml.tmp").exists())
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            self.assertEqual(data["caldav"]["base_url"], "https://dav.example.com")
            self.assertEqual(data["reminders"]["minutes"], [1440, -1, -1])

    def test_update_deep_merges_sections(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            manager.update({"caldav": {"base_url": "https://dav.example.com", "username": "u", "password": "p"}})
            config = manager.update({"caldav": {"username": "v"}, "labels": {"birthday": "{name} turns"}})

            self.assertEqual(config.caldav.base_url, "https://dav.example.com")
            self.assertEqual(config.caldav.username, "v")
            self.assertEqual(config.caldav.password, "p")
            self.assertEqual(config.labels.birthday, "{name} turns")
            self.assertEqual(config.labels.birthday_with_age, "{name}'s birthday ({age})")

    def test_teardown_sync_identity_clears_calendar_and_disables_sync(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            manager.update(
                {
                    "caldav": {"base_url": "https://dav.example.com", "username": "u", "password": "p"},
                    "calendar": {"calendar_id": "https://dav.example.com/cal/birthdays/"},
                }
            )
            manager.teardown_sync_identity()

            config = manager.load()
            self.assertEqual(config.calendar.calendar_id, "")
            self.assertFalse(config.sync.enabled)
            self.assertEqual(config.caldav.username, "u")

    def test_set_calendar_id_persists(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            manager.set_calendar_id("https://dav.example.com/cal/birthdays/")
            self.assertEqual(manager.load().calendar.calendar_id, "https://dav.example.com/cal/birthdays/")

    def test_non_mapping_file_loads_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            config_path.write_text("- just\n- a list\n", encoding="utf-8")
            manager = ConfigManager(str(config_path))
            with self.assertLogs("cakeday.config_manager", level="WARNING"):
                config = manager.load()
            self.assertEqual(config.sync.interval_seconds, 3600)

    def test_masked_hides_password_only_when_set(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(str(Path(temp_dir) / "config.yaml"))
            self.assertEqual(manager.masked()["caldav"]["password"], "")
            manager.update({"caldav": {"password": "secret"}})
            masked = manager.masked()
            self.assertEqual(masked["caldav"]["password"], SECRET_MASK)
            self.assertEqual(manager.load().caldav.password, "secret")


if __name__ == "__main__":
    unittest.main()
