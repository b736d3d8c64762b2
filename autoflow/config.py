"""
Execution defaults shared by the linear executor and the mapping registry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


def _pick(data: Dict[str, Any], snake: str, camel: str, default: Any) -> Any:
    if snake in data and data[snake] is not None:
        return data[snake]
    if camel in data and data[camel] is not None:
        return data[camel]
    return default


@dataclass
class AutomationConfig:
    """
    Tunables for running workflows.

    ``default_delay_ms`` is slept between linear steps, ``max_retries`` is the
    number of extra attempts a failing step gets, and the two ``image_find_*``
    values are used whenever an action does not carry its own.
    """
    default_delay_ms: int = 500
    max_retries: int = 3
    image_find_timeout_ms: int = 5000
    image_find_confidence: float = 0.8
    safety_mode: bool = True

    def __post_init__(self):
        if self.default_delay_ms < 0:
            raise ValueError("Default delay cannot be negative")

        if self.max_retries < 0:
            raise ValueError("Max retries cannot be negative")

        if self.image_find_timeout_ms < 0:
            raise ValueError("Image find timeout cannot be negative")

        if not 0.0 <= self.image_find_confidence <= 1.0:
            raise ValueError("Image find confidence must be between 0 and 1")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_delay_ms": self.default_delay_ms,
            "max_retries": self.max_retries,
            "image_find_timeout_ms": self.image_find_timeout_ms,
            "image_find_confidence": self.image_find_confidence,
            "safety_mode": self.safety_mode,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AutomationConfig":
        """Accepts snake_case keys as well as the camelCase keys of exported configs."""
        return AutomationConfig(
            default_delay_ms=int(_pick(data, "default_delay_ms", "defaultDelayMs", 500)),
            max_retries=int(_pick(data, "max_retries", "maxRetries", 3)),
            image_find_timeout_ms=int(_pick(data, "image_find_timeout_ms", "imageFindTimeout", 5000)),
            image_find_confidence=float(_pick(data, "image_find_confidence", "imageFindConfidence", 0.8)),
            safety_mode=bool(_pick(data, "safety_mode", "safetyMode", True)),
        )
