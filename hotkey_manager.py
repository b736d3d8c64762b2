"""Global hotkeys that pause/resume and stop a running workflow, built on pynput."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Protocol

from autoflow.status import RunState

try:
    from pynput import keyboard  # type: ignore
except Exception:  # pragma: no cover - environment dependent
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)

# Names accepted in settings -> pynput's <name> tokens
_NAMED_KEYS: Dict[str, str] = {
    "ctrl": "ctrl",
    "control": "ctrl",
    "alt": "alt",
    "option": "alt",
    "shift": "shift",
    "win": "cmd",
    "cmd": "cmd",
    "command": "cmd",
    "super": "cmd",
    "esc": "esc",
    "escape": "esc",
    "space": "space",
    "tab": "tab",
    "enter": "enter",
    "pause": "pause",
}


def parse_hotkey(hotkey: str) -> str:
    """
    Convert a settings hotkey to pynput's ``GlobalHotKeys`` syntax.

    Args:
        hotkey: e.g. ``"F8"`` or ``"Ctrl+Shift+p"``

    Returns:
        e.g. ``"<f8>"`` or ``"<ctrl>+<shift>+p"``

    Raises:
        ValueError: for an empty string or a key name pynput cannot express
    """
    tokens = [token for token in (hotkey or "").replace("+", " ").split() if token]
    if not tokens:
        raise ValueError(f"Empty hotkey: {hotkey!r}")

    parts: List[str] = []
    for token in tokens:
        name = token.lower()
        if name in _NAMED_KEYS:
            parts.append(f"<{_NAMED_KEYS[name]}>")
        elif name[0] == "f" and name[1:].isdigit():
            parts.append(f"<{name}>")
        elif len(name) == 1:
            parts.append(name)
        else:
            raise ValueError(f"Unknown key in hotkey: {token}")
    return "+".join(parts)


class RunControls(Protocol):
    """The part of a workflow runner the hotkeys drive."""

    def pause(self) -> bool: ...

    def resume(self) -> bool: ...

    def stop(self) -> bool: ...

    def get_state(self) -> RunState: ...


class HotkeyManager:
    """
    Binds a pause/resume toggle and a stop key to one runner while enabled.

    Usable as a context manager; hotkeys that cannot be registered only
    produce a log line, the run itself is unaffected.

    Args:
        controls: Runner receiving pause/resume/stop
        pause_hotkey: Toggles between pause and resume
        stop_hotkey: Requests the run to stop
    """

    def __init__(self, controls: RunControls, pause_hotkey: str = "F8", stop_hotkey: str = "F7") -> None:
        self._controls = controls
        self._pause_hotkey = pause_hotkey
        self._stop_hotkey = stop_hotkey
        self._listener: Optional[object] = None

    def toggle_pause(self) -> None:
        if self._controls.get_state() == RunState.PAUSED:
            self._controls.resume()
        else:
            self._controls.pause()

    def build_hotkey_map(self) -> Dict[str, Callable[[], None]]:
        pause_key = parse_hotkey(self._pause_hotkey)
        stop_key = parse_hotkey(self._stop_hotkey)
        if pause_key == stop_key:
            raise ValueError(f"Pause and stop share the hotkey {self._pause_hotkey}")
        return {pause_key: self.toggle_pause, stop_key: self._controls.stop}

    @property
    def enabled(self) -> bool:
        return self._listener is not None

    def enable_hotkeys(self) -> bool:
        """
        Start listening for the hotkeys.

        Returns:
            True if the listener is running
        """
        if self._listener is not None:
            return True

        try:
            hotkey_map = self.build_hotkey_map()
        except ValueError as exc:
            logger.error("Invalid hotkey definition: %s", exc)
            return False

        if keyboard is None:
            logger.warning("pynput keyboard backend not available; global hotkeys disabled")
            return False

        try:
            listener = keyboard.GlobalHotKeys(hotkey_map)
            listener.start()
        except Exception as exc:  # pragma: no cover - system specific
            logger.error("Failed to register hotkeys: %s", exc)
            return False

        self._listener = listener
        logger.info("Hotkeys active: %s pause/resume, %s stop", self._pause_hotkey, self._stop_hotkey)
        return True

    def disable_hotkeys(self) -> None:
        listener, self._listener = self._listener, None
        if listener is None:
            return
        try:
            listener.stop()  # type: ignore[attr-defined]
        except Exception as exc:  # pragma: no cover - system specific
            logger.debug("Hotkey listener did not stop cleanly: %s", exc)

    def __enter__(self) -> "HotkeyManager":
        self.enable_hotkeys()
        return self

    def __exit__(self, *exc_info) -> None:
        self.disable_hotkeys()
