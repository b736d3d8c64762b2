"""
Linear workflow actions: small, typed building blocks.

Supported actions (type field in JSON):
- click:       click a mapping point or x/y coordinates
- clickAt:     click literal coordinates
- type:        type literal text
- pressKey:    press a key with optional held modifiers
- wait:        sleep for milliseconds, or until a template shows up
- screenshot:  capture the screen or a region, optionally to a PNG file
- findImage:   require a template to be visible (optional = warn only)
- moveMouse:   move the cursor
- drag:        drag between two coordinates
- loop:        repeat an inline action list
- condition:   pick one of two inline action lists by image presence

Actions carry data only; the executor decides how to run them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .errors import ActionError
from .geometry import Region

MOUSE_BUTTONS = ("left", "right", "middle")


def _button(raw: Any) -> str:
    name = str(raw or "left").strip().lower()
    return name if name in MOUSE_BUTTONS else "left"


def _optional_int(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    return int(raw)


def _optional_float(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    return float(raw)


@dataclass
class BaseAction:
    """Common fields of all actions."""
    id: str = ""
    continue_on_error: bool = False

    ACTION_TYPE = ""

    @property
    def type(self) -> str:
        return self.ACTION_TYPE

    def children(self) -> List["BaseAction"]:
        """Inline actions embedded in this one (loops and conditions)."""
        return []

    def walk(self) -> Iterator["BaseAction"]:
        yield self
        for child in self.children():
            yield from child.walk()

    def describe(self) -> str:
        return self.type

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BaseAction":
        action_type = str(data.get("type", "")).strip()
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ActionError(f"{action_type}: 'params' must be an object")
        common = {
            "id": str(data.get("id", "") or ""),
            "continue_on_error": bool(data.get("continueOnError", data.get("continue_on_error", False))),
        }

        if action_type == "click":
            return ClickAction(
                mapping_point=params.get("mappingPoint") or None,
                x=_optional_int(params.get("x")),
                y=_optional_int(params.get("y")),
                button=_button(params.get("button")),
                **common,
            )
        if action_type == "clickAt":
            return ClickAtAction(
                x=int(params.get("x", 0) or 0),
                y=int(params.get("y", 0) or 0),
                button=_button(params.get("button")),
                **common,
            )
        if action_type == "type":
            return TypeAction(text=str(params.get("text", "")), **common)
        if action_type == "pressKey":
            return PressKeyAction(
                key=str(params.get("key", "")),
                modifiers=[str(m) for m in params.get("modifiers", []) or []],
                **common,
            )
        if action_type == "wait":
            return WaitAction(
                ms=int(params.get("ms", 0) or 0),
                or_until_image=params.get("orUntilImage") or None,
                timeout=_optional_int(params.get("timeout")),
                **common,
            )
        if action_type == "screenshot":
            return ScreenshotAction(
                region=Region.from_dict(params.get("region")),
                save_path=params.get("savePath") or None,
                **common,
            )
        if action_type == "findImage":
            return FindImageAction(
                template_name=str(params.get("templateName", "")),
                timeout=_optional_int(params.get("timeout")),
                confidence=_optional_float(params.get("confidence")),
                optional=bool(params.get("optional", False)),
                **common,
            )
        if action_type == "moveMouse":
            return MoveMouseAction(
                x=int(params.get("x", 0) or 0),
                y=int(params.get("y", 0) or 0),
                **common,
            )
        if action_type == "drag":
            return DragAction(
                from_x=int(params.get("fromX", 0) or 0),
                from_y=int(params.get("fromY", 0) or 0),
                to_x=int(params.get("toX", 0) or 0),
                to_y=int(params.get("toY", 0) or 0),
                button=_button(params.get("button")),
                **common,
            )
        if action_type == "loop":
            return LoopAction(
                count=_optional_int(params.get("count")),
                actions=_parse_list(params.get("actions")),
                **common,
            )
        if action_type == "condition":
            condition = str(params.get("condition", "imageFound"))
            if condition not in ("imageFound", "imageNotFound"):
                raise ActionError(f"condition: unknown condition '{condition}'")
            return ConditionAction(
                condition=condition,
                template_name=str(params.get("templateName", "")),
                if_true=_parse_list(params.get("ifTrue")),
                if_false=_parse_list(params.get("ifFalse")),
                **common,
            )
        raise ActionError(f"Unknown action type: {action_type}")


def _parse_list(raw: Any) -> List[BaseAction]:
    actions: List[BaseAction] = []
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, dict):
                actions.append(BaseAction.from_dict(item))
    return actions


@dataclass
class ClickAction(BaseAction):
    mapping_point: Optional[str] = None
    x: Optional[int] = None
    y: Optional[int] = None
    button: str = "left"

    ACTION_TYPE = "click"

    def describe(self) -> str:
        if self.mapping_point:
            return f"click ({self.mapping_point})"
        return "click"


@dataclass
class ClickAtAction(BaseAction):
    x: int = 0
    y: int = 0
    button: str = "left"

    ACTION_TYPE = "clickAt"


@dataclass
class TypeAction(BaseAction):
    text: str = ""

    ACTION_TYPE = "type"

    def describe(self) -> str:
        if not self.text:
            return "type"
        preview = self.text if len(self.text) <= 20 else self.text[:20] + "..."
        return f'type ("{preview}")'


@dataclass
class PressKeyAction(BaseAction):
    key: str = ""
    modifiers: List[str] = field(default_factory=list)

    ACTION_TYPE = "pressKey"


@dataclass
class WaitAction(BaseAction):
    ms: int = 0
    or_until_image: Optional[str] = None
    timeout: Optional[int] = None

    ACTION_TYPE = "wait"


@dataclass
class ScreenshotAction(BaseAction):
    region: Optional[Region] = None
    save_path: Optional[str] = None

    ACTION_TYPE = "screenshot"


@dataclass
class FindImageAction(BaseAction):
    template_name: str = ""
    timeout: Optional[int] = None
    confidence: Optional[float] = None
    optional: bool = False

    ACTION_TYPE = "findImage"

    def describe(self) -> str:
        return f"findImage ({self.template_name})"


@dataclass
class MoveMouseAction(BaseAction):
    x: int = 0
    y: int = 0

    ACTION_TYPE = "moveMouse"


@dataclass
class DragAction(BaseAction):
    from_x: int = 0
    from_y: int = 0
    to_x: int = 0
    to_y: int = 0
    button: str = "left"

    ACTION_TYPE = "drag"


@dataclass
class LoopAction(BaseAction):
    count: Optional[int] = None  # None means repeat until stopped
    actions: List[BaseAction] = field(default_factory=list)

    ACTION_TYPE = "loop"

    def children(self) -> List[BaseAction]:
        return list(self.actions)


@dataclass
class ConditionAction(BaseAction):
    condition: str = "imageFound"  # imageFound | imageNotFound
    template_name: str = ""
    if_true: List[BaseAction] = field(default_factory=list)
    if_false: List[BaseAction] = field(default_factory=list)

    ACTION_TYPE = "condition"

    def children(self) -> List[BaseAction]:
        return [*self.if_true, *self.if_false]
