import sys
import tempfile
import unittest
from pathlib import Path

import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from askimage.config import (
    API_BASE_URL,
    API_KEY_ENCODED,
    CURRENT_SETTINGS_VERSION,
    DEFAULT_MODEL,
    DEFAULT_MODEL_NAME,
    FIRST_TIME_SETUP,
    SETTINGS_VERSION,
    ConfigStore,
    get_default_model,
    is_first_time_setup,
    mark_first_time_setup_completed,
    reset_settings,
    set_default_model,
)


class TestConfigStore(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "askimage" / "settings.yml"
        self.store = ConfigStore(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_file_reads_defaults(self) -> None:
        self.assertIsNone(self.store.get(API_BASE_URL))
        self.assertEqual(self.store.get(DEFAULT_MODEL, "x"), "x")
        self.assertFalse(self.path.exists())

    def test_set_writes_through(self) -> None:
        self.store.set(API_BASE_URL, "https://example.com/api")
        on_disk = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        self.assertEqual(on_disk, {API_BASE_URL: "https://example.com/api"})
        self.assertEqual(ConfigStore(self.path).get(API_BASE_URL), "https://example.com/api")
        self.assertFalse(self.path.with_suffix(".tmp").exists())

    def test_delete(self) -> None:
        self.store.set(DEFAULT_MODEL, "gemini-2.5-pro")
        self.store.delete(DEFAULT_MODEL)
        self.assertIsNone(ConfigStore(self.path).get(DEFAULT_MODEL))
        self.store.delete(DEFAULT_MODEL)

    def test_unknown_key_rejected(self) -> None:
        with self.assertRaises(KeyError):
            self.store.get("theme")
        with self.assertRaises(KeyError):
            self.store.set("theme", "dark")

    def test_garbage_file_reads_empty(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("- just\n- a list\n", encoding="utf-8")
        self.assertEqual(self.store.snapshot(), {})

    def test_invalid_yaml_reads_empty(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("api_key_encoded: [unclosed\n", encoding="utf-8")
        with self.assertLogs("askimage.config", level="WARNING"):
            self.assertIsNone(self.store.get(API_KEY_ENCODED))
        self.assertTrue(is_first_time_setup(self.store))
        self.store.set(DEFAULT_MODEL, "gemini-2.5-pro")
        self.assertEqual(yaml.safe_load(self.path.read_text(encoding="utf-8")), {DEFAULT_MODEL: "gemini-2.5-pro"})

    def test_unknown_keys_in_file_ignored(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("theme: dark\ndefault_model: gemini-1.5-pro\n", encoding="utf-8")
        self.assertEqual(self.store.snapshot(), {DEFAULT_MODEL: "gemini-1.5-pro"})

    def test_no_validation_in_store(self) -> None:
        self.store.set(API_BASE_URL, "not a url")
        self.assertEqual(self.store.get(API_BASE_URL), "not a url")


class TestSettingsHelpers(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = ConfigStore(Path(self._tmp.name) / "settings.yml")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_first_time_setup_flag(self) -> None:
        self.assertTrue(is_first_time_setup(self.store))
        mark_first_time_setup_completed(self.store)
        self.assertFalse(is_first_time_setup(self.store))
        self.assertEqual(self.store.get(SETTINGS_VERSION), CURRENT_SETTINGS_VERSION)

    def test_default_model(self) -> None:
        self.assertEqual(get_default_model(self.store), DEFAULT_MODEL_NAME)
        self.assertTrue(set_default_model(self.store, " gemini-2.5-pro "))
        self.assertEqual(get_default_model(self.store), "gemini-2.5-pro")
        self.assertFalse(set_default_model(self.store, "   "))
        self.assertEqual(get_default_model(self.store), "gemini-2.5-pro")

    def test_reset_clears_mutable_keys(self) -> None:
        self.store.set(API_BASE_URL, "https://example.com/api")
        self.store.set(API_KEY_ENCODED, "c2VjcmV0")
        set_default_model(self.store, "gemini-1.5-pro")
        mark_first_time_setup_completed(self.store)
        reset_settings(self.store)
        for key in (API_BASE_URL, API_KEY_ENCODED, DEFAULT_MODEL, FIRST_TIME_SETUP):
            self.assertIsNone(self.store.get(key))
        self.assertEqual(self.store.get(SETTINGS_VERSION), CURRENT_SETTINGS_VERSION)
        self.assertTrue(is_first_time_setup(self.store))
