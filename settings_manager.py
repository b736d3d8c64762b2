"""Reads and writes the runner's settings JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from models import ApplicationSettings

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"


class SettingsManager:
    """
    Settings file next to this module unless a path is given.

    A file that cannot be read as settings is moved aside to ``.bak`` and the
    defaults are used, so one bad edit never blocks a run.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self.storage_path = Path(storage_path) if storage_path else Path(__file__).resolve().parent / SETTINGS_FILENAME

    def load(self) -> ApplicationSettings:
        if not self.storage_path.exists():
            return ApplicationSettings()
        try:
            return ApplicationSettings.from_dict(self._read())
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Settings file %s is unreadable (%s); using defaults", self.storage_path, exc)
            self._move_aside()
            return ApplicationSettings()

    def save(self, settings: ApplicationSettings) -> None:
        """Write through a ``.tmp`` sibling so a crash never leaves half a file."""
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.storage_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(settings.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.storage_path)
        logger.debug("Settings saved to %s", self.storage_path)

    def resolve_mapping_file(self, settings: ApplicationSettings) -> Optional[Path]:
        """The configured mapping file; relative paths are taken from the settings file's folder."""
        if not settings.mapping_file:
            return None
        path = Path(settings.mapping_file)
        return path if path.is_absolute() else self.storage_path.parent / path

    def _read(self) -> Dict[str, Any]:
        data = json.loads(self.storage_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Settings file must hold a JSON object")
        return data

    def _move_aside(self) -> None:
        try:
            self.storage_path.replace(self.storage_path.with_suffix(".bak"))
        except OSError as exc:
            logger.warning("Could not back up %s: %s", self.storage_path, exc)
