"""Approximate template matching on raw screen buffers using numpy."""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np

PIXEL_TOLERANCE = 30
MAX_SAMPLES = 100
MAX_STEP = 8


class ScreenMatcher:
    """
    Finds a template inside a screen capture by comparing a fixed set of
    sample pixels on a coarse grid, then refining around promising spots.

    The search is approximate on purpose: it checks at most ``MAX_SAMPLES``
    pixels per candidate and only every ``step``-th position, which keeps a
    full-screen search fast enough to repeat several times per second.
    """

    def __init__(self, tolerance: int = PIXEL_TOLERANCE, max_samples: int = MAX_SAMPLES, max_step: int = MAX_STEP):
        self.tolerance = tolerance
        self.max_samples = max_samples
        self.max_step = max_step

    def match_template(
        self,
        screen_pixels,
        screen_width: int,
        screen_height: int,
        screen_channels: int,
        template_pixels,
        template_width: int,
        template_height: int,
        template_channels: int,
        confidence: float,
    ) -> Optional[Tuple[int, int]]:
        """
        Locate a template in a screen buffer.

        Args:
            screen_pixels: Row-major interleaved pixels (bytes-like or ndarray)
            screen_width/screen_height/screen_channels: Screen buffer layout
            template_pixels: Row-major interleaved template pixels
            template_width/template_height/template_channels: Template layout
            confidence: Required fraction of matching sample pixels (0..1)

        Returns:
            (x, y) of the template's top-left corner in buffer pixels, or None
        """
        compare_channels = min(3, screen_channels, template_channels)
        if compare_channels <= 0 or template_width <= 0 or template_height <= 0:
            return None

        max_x = screen_width - template_width
        max_y = screen_height - template_height
        if max_x < 0 or max_y < 0:
            return None

        screen = _as_image(screen_pixels, screen_width, screen_height, screen_channels)[..., :compare_channels]
        template = _as_image(template_pixels, template_width, template_height, template_channels)[..., :compare_channels]

        step = self.coarse_step(template_width, template_height)
        samples = self.sample_offsets(template_width, template_height)
        sample_values = np.stack([template[ty, tx] for tx, ty in samples]).astype(np.int16)

        def ratios(xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
            matches = np.zeros((len(ys), len(xs)), dtype=np.int32)
            for (tx, ty), expected in zip(samples, sample_values):
                window = screen[np.ix_(ys + ty, xs + tx)].astype(np.int16)
                diff = np.abs(window - expected).sum(axis=-1)
                matches += diff < self.tolerance
            return matches / len(samples)

        def refine(x: int, y: int) -> Tuple[int, int, float]:
            xs = np.arange(max(0, x - step), min(max_x, x + step) + 1)
            ys = np.arange(max(0, y - step), min(max_y, y + step) + 1)
            grid = ratios(xs, ys)
            center_ratio = grid[y - ys[0], x - xs[0]]
            row, col = np.unravel_index(int(np.argmax(grid)), grid.shape)
            # only a strictly better neighbour replaces the starting point
            if grid[row, col] > center_ratio:
                return int(xs[col]), int(ys[row]), float(grid[row, col])
            return x, y, float(center_ratio)

        xs = np.arange(0, max_x + 1, step)
        ys = np.arange(0, max_y + 1, step)
        coarse = ratios(xs, ys)

        for row, col in np.argwhere(coarse >= confidence):
            rx, ry, ratio = refine(int(xs[col]), int(ys[row]))
            if ratio >= confidence:
                return (rx, ry)

        row, col = np.unravel_index(int(np.argmax(coarse)), coarse.shape)
        rx, ry, ratio = refine(int(xs[col]), int(ys[row]))
        if ratio >= confidence:
            return (rx, ry)
        return None

    def find(self, screen: np.ndarray, template: np.ndarray, confidence: float) -> Optional[Tuple[int, int]]:
        """Same as match_template for HxW or HxWxC arrays."""
        screen = _ensure_channels(screen)
        template = _ensure_channels(template)
        sh, sw, sc = screen.shape
        th, tw, tc = template.shape
        return self.match_template(screen, sw, sh, sc, template, tw, th, tc, confidence)

    def coarse_step(self, template_width: int, template_height: int) -> int:
        return min(self.max_step, max(1, min(template_width, template_height) // 12))

    def sample_offsets(self, template_width: int, template_height: int) -> List[Tuple[int, int]]:
        """Deterministic spread of up to ``max_samples`` (tx, ty) offsets inside the template."""
        count = max(1, min(self.max_samples, int(template_width * template_height * 0.1)))
        return [((i * 7) % template_width, (i * 11) % template_height) for i in range(count)]


def _as_image(pixels, width: int, height: int, channels: int) -> np.ndarray:
    if isinstance(pixels, np.ndarray):
        array = pixels
    else:
        array = np.frombuffer(bytes(pixels), dtype=np.uint8)
    return array.reshape((height, width, channels))


def _ensure_channels(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image[:, :, np.newaxis]
    return image
