"""
Desktop input synthesis and screen capture.

``ActionPort`` is the small surface the workflow engines need. The desktop
implementation prefers pynput for mouse and keyboard, falls back to
pyautogui, and uses pywinauto ``send_keys`` for typing on Windows where it
is more reliable. Screen captures come from pyautogui and are handed over as
numpy arrays.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .errors import ActionError
from .geometry import Region

logger = logging.getLogger(__name__)


@dataclass
class ScreenCapture:
    """
    Captured pixels plus the display's pixel-density scale.

    On HiDPI displays a capture has more pixels than the logical coordinate
    space used for clicking; divide capture coordinates by the scale.
    """
    pixels: np.ndarray  # HxWxC, uint8
    scale_x: float = 1.0
    scale_y: float = 1.0

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[2]) if self.pixels.ndim == 3 else 1


class ActionPort(Protocol):
    """Operations the engines issue against the operating system."""

    def move_mouse(self, x: int, y: int, duration_ms: Optional[int] = None) -> None: ...

    def click(self, button: str = "left", x: Optional[int] = None, y: Optional[int] = None) -> None: ...

    def type_text(self, text: str, interval_ms: Optional[int] = None) -> None: ...

    def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None: ...

    def drag(
        self, from_x: int, from_y: int, to_x: int, to_y: int, button: str = "left", duration_ms: Optional[int] = None
    ) -> None: ...

    def screenshot(self, region: Optional[Region] = None) -> ScreenCapture: ...

    def get_screen_size(self) -> Tuple[int, int]: ...


# Key names used in workflow files -> pynput Key attribute / pyautogui name.
_KEY_ALIASES = {
    "enter": ("enter", "enter"),
    "return": ("enter", "enter"),
    "escape": ("esc", "esc"),
    "esc": ("esc", "esc"),
    "tab": ("tab", "tab"),
    "space": ("space", "space"),
    "backspace": ("backspace", "backspace"),
    "delete": ("delete", "delete"),
    "arrowup": ("up", "up"),
    "arrowdown": ("down", "down"),
    "arrowleft": ("left", "left"),
    "arrowright": ("right", "right"),
    "up": ("up", "up"),
    "down": ("down", "down"),
    "left": ("left", "left"),
    "right": ("right", "right"),
    "home": ("home", "home"),
    "end": ("end", "end"),
    "pageup": ("page_up", "pageup"),
    "pagedown": ("page_down", "pagedown"),
    "control": ("ctrl", "ctrl"),
    "ctrl": ("ctrl", "ctrl"),
    "alt": ("alt", "alt"),
    "option": ("alt", "alt"),
    "shift": ("shift", "shift"),
    "meta": ("cmd", "win" if sys.platform.startswith("win") else "command"),
    "cmd": ("cmd", "command"),
    "command": ("cmd", "command"),
    "win": ("cmd", "win"),
    "super": ("cmd", "win"),
}
for _n in range(1, 13):
    _KEY_ALIASES[f"f{_n}"] = (f"f{_n}", f"f{_n}")


class DesktopActionPort:
    """ActionPort backed by the local desktop session."""

    def __init__(self, move_duration: float = 0.0) -> None:
        self._move_duration = move_duration
        pyautogui = _get_pyautogui()
        if pyautogui is not None:
            pyautogui.FAILSAFE = True  # Move mouse to a corner to abort
            pyautogui.PAUSE = 0.0

    def move_mouse(self, x: int, y: int, duration_ms: Optional[int] = None) -> None:
        duration = self._duration_seconds(duration_ms, self._move_duration)
        m_ctrl_cls, _m_btn_mod = _get_pynput_mouse()
        # pynput only teleports; a timed glide needs pyautogui
        if m_ctrl_cls is not None and duration <= 0:
            try:
                m_ctrl_cls().position = (int(x), int(y))
                logger.debug("Mouse moved to (%s, %s)", x, y)
                return
            except Exception as e:  # pragma: no cover - system specific
                logger.debug("pynput move failed, fallback to pyautogui: %s", e)
        pyautogui = self._require_pyautogui("move_mouse")
        try:
            pyautogui.moveTo(int(x), int(y), duration=duration)
        except Exception as e:  # pragma: no cover
            raise ActionError(f"move_mouse failed: {e}") from e

    def click(self, button: str = "left", x: Optional[int] = None, y: Optional[int] = None) -> None:
        btn_name = button if button in ("left", "right", "middle") else "left"
        m_ctrl_cls, m_btn_mod = _get_pynput_mouse()
        if m_ctrl_cls is not None and m_btn_mod is not None:
            try:
                controller = m_ctrl_cls()
                if x is not None and y is not None:
                    controller.position = (int(x), int(y))
                controller.click(getattr(m_btn_mod, btn_name))
                logger.debug("Mouse clicked: button=%s x=%s y=%s", btn_name, x, y)
                return
            except Exception as e:  # pragma: no cover
                logger.debug("pynput click failed, fallback to pyautogui: %s", e)
        pyautogui = self._require_pyautogui("click")
        try:
            if x is not None and y is not None:
                pyautogui.click(x=int(x), y=int(y), button=btn_name)
            else:
                pyautogui.click(button=btn_name)
        except Exception as e:  # pragma: no cover
            raise ActionError(f"click failed: {e}") from e

    def type_text(self, text: str, interval_ms: Optional[int] = None) -> None:
        if not text:
            return
        pause = (interval_ms or 10) / 1000.0
        if sys.platform.startswith("win") and _try_pywinauto_send_keys(text, pause=pause):
            return
        kb_cls, _key_mod = _get_pynput()
        if kb_cls is None:
            pyautogui = self._require_pyautogui("type_text")
            try:
                pyautogui.write(text, interval=pause)
                return
            except Exception as e:  # pragma: no cover
                raise ActionError(f"type_text failed: {e}") from e
        kb = kb_cls()
        try:
            for ch in text:
                kb.press(ch)
                kb.release(ch)
                time.sleep(pause)
        except Exception as e:  # pragma: no cover
            raise ActionError(f"type_text failed: {e}") from e

    def press_key(self, key: str, modifiers: Sequence[str] = ()) -> None:
        """Hold every modifier, press and release the main key, release modifiers in reverse."""
        kb_cls, key_mod = _get_pynput()
        if kb_cls is not None and key_mod is not None:
            kb = kb_cls()
            main = _pynput_key(key, key_mod)
            held = [_pynput_key(m, key_mod) for m in modifiers]
            try:
                for mk in held:
                    kb.press(mk)
                try:
                    kb.press(main)
                    kb.release(main)
                finally:
                    for mk in reversed(held):
                        kb.release(mk)
                logger.debug("Key pressed: %s modifiers=%s", key, list(modifiers))
                return
            except Exception as e:  # pragma: no cover
                raise ActionError(f"press_key '{key}' failed: {e}") from e
        pyautogui = self._require_pyautogui("press_key")
        try:
            pyautogui.hotkey(*[_pyautogui_key(m) for m in modifiers], _pyautogui_key(key))
        except Exception as e:  # pragma: no cover
            raise ActionError(f"press_key '{key}' failed: {e}") from e

    def drag(
        self, from_x: int, from_y: int, to_x: int, to_y: int, button: str = "left", duration_ms: Optional[int] = None
    ) -> None:
        duration = self._duration_seconds(duration_ms, max(self._move_duration, 0.2))
        btn_name = button if button in ("left", "right", "middle") else "left"
        pyautogui = self._require_pyautogui("drag")
        try:
            pyautogui.moveTo(int(from_x), int(from_y))
            pyautogui.dragTo(int(to_x), int(to_y), duration=duration, button=btn_name)
            logger.debug("Mouse dragged (%s, %s) -> (%s, %s)", from_x, from_y, to_x, to_y)
        except Exception as e:  # pragma: no cover
            raise ActionError(f"drag failed: {e}") from e

    def screenshot(self, region: Optional[Region] = None) -> ScreenCapture:
        pyautogui = self._require_pyautogui("screenshot")
        try:
            logical_w, logical_h = pyautogui.size()
            if region is not None:
                image = pyautogui.screenshot(region=region.to_tuple())
                expected_w, expected_h = region.width, region.height
            else:
                image = pyautogui.screenshot()
                expected_w, expected_h = logical_w, logical_h
        except Exception as e:  # pragma: no cover
            raise ActionError(f"screenshot failed: {e}") from e
        pixels = np.array(image.convert("RGB"), dtype=np.uint8)
        scale_x = pixels.shape[1] / expected_w if expected_w else 1.0
        scale_y = pixels.shape[0] / expected_h if expected_h else 1.0
        logger.debug("Screenshot captured: %sx%s scale=(%.2f, %.2f)", pixels.shape[1], pixels.shape[0], scale_x, scale_y)
        return ScreenCapture(pixels=pixels, scale_x=scale_x, scale_y=scale_y)

    def get_screen_size(self) -> Tuple[int, int]:
        pyautogui = self._require_pyautogui("get_screen_size")
        width, height = pyautogui.size()
        return int(width), int(height)

    @staticmethod
    def _duration_seconds(duration_ms: Optional[int], default: float) -> float:
        if duration_ms is None:
            return default
        return max(duration_ms, 0) / 1000.0

    def _require_pyautogui(self, operation: str) -> Any:
        pyautogui = _get_pyautogui()
        if pyautogui is None:
            raise ActionError(f"{operation}: no desktop backend available (install pyautogui)")
        return pyautogui


def _pynput_key(name: str, key_mod: Any) -> Any:
    alias = _KEY_ALIASES.get(name.strip().lower())
    if alias is not None:
        mapped = getattr(key_mod, alias[0], None)
        if mapped is not None:
            return mapped
    if len(name) == 1:
        return name.lower()
    logger.warning("Unknown key '%s', using as-is", name)
    return name


def _pyautogui_key(name: str) -> str:
    alias = _KEY_ALIASES.get(name.strip().lower())
    return alias[1] if alias is not None else name.lower()


def _get_pyautogui() -> Optional[Any]:
    try:
        import pyautogui  # local import: needs a display at import time
        return pyautogui
    except Exception:
        return None


def _get_pynput() -> Tuple[Optional[Any], Optional[Any]]:
    """Import pynput lazily and return (KeyboardControllerClass, KeyModule)."""
    try:
        from pynput.keyboard import Controller as KeyboardController, Key as KeyModule  # type: ignore
        return KeyboardController, KeyModule
    except Exception:
        return None, None


def _get_pynput_mouse() -> Tuple[Optional[Any], Optional[Any]]:
    """Import pynput.mouse lazily and return (MouseControllerClass, ButtonModule)."""
    try:
        from pynput.mouse import Controller as MouseController, Button as MouseButton  # type: ignore
        return MouseController, MouseButton
    except Exception:
        return None, None


def _try_pywinauto_send_keys(text: str, *, pause: float = 0.0) -> bool:
    """Try to type via pywinauto on Windows; return True on success."""
    try:
        from pywinauto.keyboard import send_keys as pw_send_keys  # type: ignore
        pw_send_keys(_escape_send_keys(text), with_spaces=True, pause=max(0.0, float(pause)))
        return True
    except Exception as e:  # pragma: no cover
        logger.debug("pywinauto send_keys failed: %s", e)
        return False


def _escape_send_keys(text: str) -> str:
    # send_keys treats these characters as control syntax
    special = set("+^%~(){}[]")
    out: List[str] = []
    for ch in text:
        out.append("{" + ch + "}" if ch in special else ch)
    return "".join(out)
