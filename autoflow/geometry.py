"""
Screen geometry primitives shared by actions, nodes and the mapping registry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


CLICK_ANCHORS = ("center", "top-left", "top-right", "bottom-left", "bottom-right")


@dataclass
class Point:
    """A screen coordinate, optionally labelled."""
    x: int
    y: int
    label: Optional[str] = None

    def to_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def __str__(self) -> str:
        base = f"({self.x}, {self.y})"
        return f"{self.label} {base}" if self.label else base

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "label": self.label}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Point":
        x_raw = data.get("x", 0)
        y_raw = data.get("y", 0)
        label_raw = data.get("label")

        return Point(
            x=int(x_raw) if x_raw is not None else 0,
            y=int(y_raw) if y_raw is not None else 0,
            label=str(label_raw) if label_raw not in (None, "") else None,
        )


@dataclass
class Region:
    """Axis-aligned rectangle in screen coordinates."""
    x: int
    y: int
    width: int
    height: int

    def anchor(self, position: str = "center") -> Tuple[int, int]:
        """
        Return the point of the region named by ``position``.

        ``center`` uses floored halves so odd sizes bias to the top-left.
        """
        if position == "center":
            return (self.x + self.width // 2, self.y + self.height // 2)
        if position == "top-left":
            return (self.x, self.y)
        if position == "top-right":
            return (self.x + self.width, self.y)
        if position == "bottom-left":
            return (self.x, self.y + self.height)
        if position == "bottom-right":
            return (self.x + self.width, self.y + self.height)
        raise ValueError(f"Unknown click position: {position}")

    def scaled(self, scale_x: float, scale_y: float) -> "Region":
        """Divide by a per-axis pixel-density scale (non-positive scales count as 1)."""
        sx = scale_x if scale_x > 0 else 1.0
        sy = scale_y if scale_y > 0 else 1.0
        return Region(
            x=int(round(self.x / sx)),
            y=int(round(self.y / sy)),
            width=int(round(self.width / sx)),
            height=int(round(self.height / sy)),
        )

    def to_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> Optional["Region"]:
        if not isinstance(data, dict):
            return None
        return Region(
            x=int(data.get("x", 0) or 0),
            y=int(data.get("y", 0) or 0),
            width=int(data.get("width", 0) or 0),
            height=int(data.get("height", 0) or 0),
        )
