"""
Unit tests for settings persistence, hotkey parsing and CLI helpers.
"""

import json
import tempfile
import unittest
from pathlib import Path

from autoflow.config import AutomationConfig
from autoflow.status import RunState
from hotkey_manager import HotkeyManager, parse_hotkey
from models import ApplicationSettings
from run_script import is_graph_document
from settings_manager import SettingsManager


class TestAutomationConfig(unittest.TestCase):
    def test_defaults(self):
        config = AutomationConfig()
        self.assertEqual(
            (config.default_delay_ms, config.max_retries, config.image_find_timeout_ms,
             config.image_find_confidence, config.safety_mode),
            (500, 3, 5000, 0.8, True),
        )

    def test_camel_case_keys_accepted(self):
        config = AutomationConfig.from_dict({"defaultDelayMs": 100, "maxRetries": 0, "imageFindConfidence": 0.9})
        self.assertEqual((config.default_delay_ms, config.max_retries, config.image_find_confidence), (100, 0, 0.9))

    def test_invalid_values_rejected(self):
        with self.assertRaises(ValueError):
            AutomationConfig(max_retries=-1)
        with self.assertRaises(ValueError):
            AutomationConfig(image_find_confidence=1.5)


class TestSettingsManager(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "settings.json"
        self.manager = SettingsManager(self.path)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_gives_defaults(self):
        settings = self.manager.load()
        self.assertEqual(settings.pause_hotkey, "F8")
        self.assertEqual(settings.stop_hotkey, "F7")

    def test_save_and_load(self):
        settings = ApplicationSettings(
            automation=AutomationConfig(default_delay_ms=250, safety_mode=False),
            mapping_file="maps.json",
            pause_hotkey="Ctrl+F9",
        )
        self.manager.save(settings)
        loaded = self.manager.load()
        self.assertEqual(loaded, settings)
        self.assertFalse(self.path.with_suffix(".tmp").exists())

    def test_corrupt_file_is_backed_up(self):
        self.path.write_text("{not json", encoding="utf-8")
        settings = self.manager.load()
        self.assertEqual(settings, ApplicationSettings())
        self.assertTrue(self.path.with_suffix(".bak").exists())
        self.assertFalse(self.path.exists())

    def test_invalid_values_fall_back_to_defaults(self):
        self.path.write_text(json.dumps({"automation": {"max_retries": -4}}), encoding="utf-8")
        self.assertEqual(self.manager.load(), ApplicationSettings())

    def test_mapping_file_relative_to_settings(self):
        self.assertIsNone(self.manager.resolve_mapping_file(ApplicationSettings()))
        resolved = self.manager.resolve_mapping_file(ApplicationSettings(mapping_file="maps/points.json"))
        self.assertEqual(resolved, Path(self._tmp.name) / "maps" / "points.json")
        absolute = Path(self._tmp.name).resolve() / "other.json"
        self.assertEqual(self.manager.resolve_mapping_file(ApplicationSettings(mapping_file=str(absolute))), absolute)


class FakeControls:
    def __init__(self, state=RunState.RUNNING):
        self.state = state
        self.calls = []

    def pause(self):
        self.calls.append("pause")
        self.state = RunState.PAUSED
        return True

    def resume(self):
        self.calls.append("resume")
        self.state = RunState.RUNNING
        return True

    def stop(self):
        self.calls.append("stop")
        return True

    def get_state(self):
        return self.state


class TestHotkeyParsing(unittest.TestCase):
    def test_function_keys_and_modifiers(self):
        self.assertEqual(parse_hotkey("F8"), "<f8>")
        self.assertEqual(parse_hotkey("Ctrl+Shift+p"), "<ctrl>+<shift>+p")
        self.assertEqual(parse_hotkey("control + ESC"), "<ctrl>+<esc>")

    def test_invalid_hotkeys(self):
        for bad in ("", " + ", "Ctrl+Banana"):
            with self.assertRaises(ValueError):
                parse_hotkey(bad)


class TestHotkeyManager(unittest.TestCase):
    def setUp(self):
        self.controls = FakeControls()

    def test_map_binds_toggle_and_stop(self):
        manager = HotkeyManager(self.controls, "F9", "Ctrl+F7")
        hotkeys = manager.build_hotkey_map()
        self.assertEqual(set(hotkeys), {"<f9>", "<ctrl>+<f7>"})
        hotkeys["<ctrl>+<f7>"]()
        self.assertEqual(self.controls.calls, ["stop"])

    def test_pause_key_toggles(self):
        manager = HotkeyManager(self.controls)
        manager.toggle_pause()
        manager.toggle_pause()
        self.assertEqual(self.controls.calls, ["pause", "resume"])

    def test_same_key_for_both_actions_rejected(self):
        manager = HotkeyManager(self.controls, "F8", "f8")
        with self.assertRaises(ValueError):
            manager.build_hotkey_map()
        self.assertFalse(manager.enable_hotkeys())
        self.assertFalse(manager.enabled)


class TestCliHelpers(unittest.TestCase):
    def test_graph_detection(self):
        self.assertTrue(is_graph_document({"nodes": [], "edges": []}))
        self.assertFalse(is_graph_document({"steps": []}))


if __name__ == "__main__":
    unittest.main()
