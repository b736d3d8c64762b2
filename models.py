"""
Persisted preferences of the workflow runner CLI.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from autoflow.config import AutomationConfig


@dataclass
class ApplicationSettings:
    """Persisted application preferences."""

    automation: AutomationConfig = field(default_factory=AutomationConfig)
    mapping_file: Optional[str] = None
    pause_hotkey: str = "F8"
    stop_hotkey: str = "F7"
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.pause_hotkey.strip():
            raise ValueError("Pause hotkey cannot be empty")

        if not self.stop_hotkey.strip():
            raise ValueError("Stop hotkey cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize settings to primitive types for JSON storage."""
        return {
            "automation": self.automation.to_dict(),
            "mapping_file": self.mapping_file,
            "pause_hotkey": self.pause_hotkey,
            "stop_hotkey": self.stop_hotkey,
            "log_level": self.log_level,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ApplicationSettings":
        """Create settings instance from JSON dictionary."""
        automation_data = data.get("automation", {}) or {}
        if not isinstance(automation_data, dict):
            raise ValueError("'automation' must be an object")

        mapping_file = data.get("mapping_file")
        return ApplicationSettings(
            automation=AutomationConfig.from_dict(automation_data),
            mapping_file=str(mapping_file) if mapping_file else None,
            pause_hotkey=str(data.get("pause_hotkey", "F8")),
            stop_hotkey=str(data.get("stop_hotkey", "F7")),
            log_level=str(data.get("log_level", "INFO") or "INFO").upper(),
        )
