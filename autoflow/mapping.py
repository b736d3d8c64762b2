"""
Named screen points and image templates, plus on-screen template lookup.

The registry is the only place that talks to the matcher: it captures the
screen through the action port, runs the match, converts the hit back into
logical screen coordinates and retries until a timeout.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from PIL import Image

from .config import AutomationConfig
from .desktop import ActionPort
from .errors import MappingError
from .geometry import Region
from .matcher import ScreenMatcher

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 500


@dataclass
class MappingPoint:
    """A named click target."""
    name: str
    x: int
    y: int
    id: str = ""
    kind: str = "click"

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "MappingPoint":
        return MappingPoint(
            name=str(data.get("name", "")),
            x=int(data.get("x", 0) or 0),
            y=int(data.get("y", 0) or 0),
            id=str(data.get("id", "") or ""),
            kind=str(data.get("type", data.get("kind", "click")) or "click"),
        )


@dataclass
class ImageTemplate:
    """
    A named reference image.

    Pixels are read from ``image_path`` on first use unless they were supplied
    directly (HxWxC uint8 array).
    """
    name: str
    image_path: str = ""
    id: str = ""
    region: Optional[Region] = None
    pixels: Optional[np.ndarray] = field(default=None, repr=False)

    def load_pixels(self) -> np.ndarray:
        if self.pixels is None:
            if not self.image_path:
                raise MappingError(f"Template '{self.name}' has no image")
            try:
                with Image.open(self.image_path) as img:
                    self.pixels = np.array(img.convert("RGB"), dtype=np.uint8)
            except OSError as e:
                raise MappingError(f"Template '{self.name}': cannot read {self.image_path}: {e}") from e
        return self.pixels

    @staticmethod
    def from_dict(data: Dict[str, Any], base_dir: str = "") -> "ImageTemplate":
        path = str(data.get("imagePath", data.get("image_path", "")) or "")
        if path and base_dir and not os.path.isabs(path):
            path = os.path.join(base_dir, path)
        return ImageTemplate(
            name=str(data.get("name", "")),
            image_path=path,
            id=str(data.get("id", "") or ""),
            region=Region.from_dict(data.get("region")),
        )


class MappingRegistry:
    """
    In-memory set of mapping points and templates.

    Args:
        port: Used for screen captures
        config: Default confidence and timeout for template lookups
        matcher: Template matcher (a default ``ScreenMatcher`` if omitted)
        sleep: Called between capture attempts, in seconds
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        port: ActionPort,
        config: Optional[AutomationConfig] = None,
        matcher: Optional[ScreenMatcher] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        poll_interval_ms: int = POLL_INTERVAL_MS,
    ):
        self.port = port
        self.config = config or AutomationConfig()
        self.matcher = matcher or ScreenMatcher()
        self._sleep = sleep
        self._clock = clock
        self.poll_interval_ms = poll_interval_ms
        self._points: Dict[str, MappingPoint] = {}
        self._templates: Dict[str, ImageTemplate] = {}

    # ---- registry ----
    def add_point(self, point: MappingPoint) -> None:
        if not point.name:
            raise MappingError("Mapping point name cannot be empty")
        if point.name in self._points:
            raise MappingError(f"Duplicate mapping point: {point.name}")
        self._points[point.name] = point

    def add_template(self, template: ImageTemplate) -> None:
        if not template.name:
            raise MappingError("Template name cannot be empty")
        if template.name in self._templates:
            raise MappingError(f"Duplicate template: {template.name}")
        self._templates[template.name] = template

    def get_point_by_name(self, name: str) -> Optional[MappingPoint]:
        return self._points.get(name)

    def get_template_by_name(self, name: str) -> Optional[ImageTemplate]:
        return self._templates.get(name)

    def points(self) -> List[MappingPoint]:
        return list(self._points.values())

    def templates(self) -> List[ImageTemplate]:
        return list(self._templates.values())

    def load(self, data: Dict[str, Any], base_dir: str = "") -> None:
        """Add everything from a ``{"mappingPoints": [...], "imageTemplates": [...]}`` document."""
        for raw in data.get("mappingPoints", []) or []:
            if isinstance(raw, dict):
                self.add_point(MappingPoint.from_dict(raw))
        for raw in data.get("imageTemplates", []) or []:
            if isinstance(raw, dict):
                self.add_template(ImageTemplate.from_dict(raw, base_dir))
        logger.info("Loaded %d mapping points and %d templates", len(self._points), len(self._templates))

    # ---- lookup ----
    def find_template_on_screen(
        self,
        name: str,
        confidence: Optional[float] = None,
        timeout_ms: Optional[int] = None,
        region: Optional[Region] = None,
    ) -> Optional[Region]:
        """
        Look for a template until it shows up or the timeout passes.

        At least one capture is always made, even with a zero timeout.

        Returns:
            The template's bounds in logical screen coordinates, or None
        """
        template = self._templates.get(name)
        if template is None:
            raise MappingError(f'Template "{name}" not found')

        if confidence is None:
            confidence = self.config.image_find_confidence
        if timeout_ms is None:
            timeout_ms = self.config.image_find_timeout_ms

        search_region = region or template.region
        template_pixels = template.load_pixels()
        deadline = self._clock() + max(0, timeout_ms) / 1000.0

        while True:
            capture = self.port.screenshot(search_region)
            hit = self.matcher.find(capture.pixels, template_pixels, confidence)
            if hit is not None:
                th, tw = template_pixels.shape[:2]
                found = Region(hit[0], hit[1], tw, th).scaled(capture.scale_x, capture.scale_y)
                if search_region is not None:
                    found = Region(found.x + search_region.x, found.y + search_region.y, found.width, found.height)
                logger.debug("Template '%s' found at %s", name, found)
                return found

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.debug("Template '%s' not found within %d ms", name, timeout_ms)
                return None
            self._sleep(min(self.poll_interval_ms / 1000.0, remaining))
