"""
Graph workflow data model: nodes, edges and per-type node configuration.

Each node type parses into its own config dataclass so the runner can
dispatch on a closed set of kinds instead of poking at raw dictionaries.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .actions import MOUSE_BUTTONS
from .geometry import CLICK_ANCHORS, Point, Region

NODE_START = "start"
NODE_END = "end"
NODE_CLICK_MAPPED_POINT = "action.clickMappedPoint"
NODE_CLICK_COORDINATES = "action.clickCoordinates"
NODE_CLICK_FOUND_IMAGE = "action.clickFoundImage"
NODE_TYPE_TEXT = "action.typeText"
NODE_PRESS_KEY = "action.pressKey"
NODE_WAIT = "action.wait"
NODE_MOVE_MOUSE = "action.moveMouse"
NODE_DRAG_MOUSE = "action.dragMouse"
NODE_SCREENSHOT = "action.screenshot"
NODE_FIND_IMAGE = "condition.findImage"
NODE_LOOP = "logic.loop"
NODE_AI_BRAIN = "ai.brain"

ROUTE_OUT = "OUT"
ROUTE_FOUND = "FOUND"
ROUTE_NOT_FOUND = "NOT_FOUND"
ROUTE_LOOP = "LOOP"
ROUTE_DONE = "DONE"
ROUTE_ERROR = "ERROR"


def _button(raw: Any) -> str:
    name = str(raw or "left").strip().lower()
    return name if name in MOUSE_BUTTONS else "left"


def _count(raw: Any) -> int:
    try:
        return max(1, int(raw or 1))
    except (TypeError, ValueError):
        return 1


def _delay(raw: Any) -> int:
    try:
        return max(0, int(raw or 0))
    except (TypeError, ValueError):
        return 0


def _offset(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


@dataclass
class StartConfig:
    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "StartConfig":
        return StartConfig()


@dataclass
class EndConfig:
    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "EndConfig":
        return EndConfig()


@dataclass
class ClickMappedPointConfig:
    mapping_name: str
    button: str = "left"
    click_count: int = 1
    post_delay_ms: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ClickMappedPointConfig":
        return ClickMappedPointConfig(
            mapping_name=str(data.get("mappingName", "")),
            button=_button(data.get("button")),
            click_count=_count(data.get("clickCount")),
            post_delay_ms=_delay(data.get("postDelayMs")),
        )


@dataclass
class ClickCoordinatesConfig:
    x: int
    y: int
    button: str = "left"
    click_count: int = 1
    post_delay_ms: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ClickCoordinatesConfig":
        return ClickCoordinatesConfig(
            x=int(data.get("x", 0) or 0),
            y=int(data.get("y", 0) or 0),
            button=_button(data.get("button")),
            click_count=_count(data.get("clickCount")),
            post_delay_ms=_delay(data.get("postDelayMs")),
        )


@dataclass
class ClickFoundImageConfig:
    template_name: Optional[str] = None  # None = last found image
    click_position: str = "center"
    button: str = "left"
    click_count: int = 1
    offset_x: float = 0.0
    offset_y: float = 0.0
    post_delay_ms: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ClickFoundImageConfig":
        position = str(data.get("clickPosition") or "center")
        return ClickFoundImageConfig(
            template_name=data.get("templateName") or None,
            click_position=position if position in CLICK_ANCHORS else "center",
            button=_button(data.get("button")),
            click_count=_count(data.get("clickCount")),
            offset_x=_offset(data.get("offsetX")),
            offset_y=_offset(data.get("offsetY")),
            post_delay_ms=_delay(data.get("postDelayMs")),
        )


@dataclass
class TypeTextConfig:
    text: str
    speed: Optional[int] = None  # per-key delay in ms
    post_delay_ms: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TypeTextConfig":
        speed = data.get("speed")
        return TypeTextConfig(
            text=str(data.get("text", "")),
            speed=int(speed) if speed else None,
            post_delay_ms=_delay(data.get("postDelayMs")),
        )


@dataclass
class PressKeyConfig:
    key_combo: List[str]
    post_delay_ms: int = 0

    @property
    def main_key(self) -> str:
        return self.key_combo[-1] if self.key_combo else ""

    @property
    def modifiers(self) -> List[str]:
        return self.key_combo[:-1]

    def display(self) -> str:
        if self.modifiers:
            return f"{' + '.join(self.modifiers)} + {self.main_key}"
        return self.main_key

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PressKeyConfig":
        raw = data.get("keyCombo", [])
        keys = [str(k) for k in raw] if isinstance(raw, list) else [str(raw)]
        return PressKeyConfig(
            key_combo=[k for k in keys if k],
            post_delay_ms=_delay(data.get("postDelayMs")),
        )


@dataclass
class WaitConfig:
    ms: int

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "WaitConfig":
        return WaitConfig(ms=_delay(data.get("ms")))


@dataclass
class MoveMouseConfig:
    x: int
    y: int
    duration_ms: Optional[int] = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "MoveMouseConfig":
        duration = data.get("durationMs")
        return MoveMouseConfig(
            x=int(data.get("x", 0) or 0),
            y=int(data.get("y", 0) or 0),
            duration_ms=int(duration) if duration else None,
        )


# A drag endpoint is either a mapping point name or literal coordinates.
PointRef = Union[str, Point]


def _point_ref(raw: Any) -> PointRef:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        return Point.from_dict(raw)
    return Point(0, 0)


@dataclass
class DragMouseConfig:
    start: PointRef
    end: PointRef
    button: str = "left"
    duration_ms: Optional[int] = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DragMouseConfig":
        duration = data.get("durationMs")
        return DragMouseConfig(
            start=_point_ref(data.get("from")),
            end=_point_ref(data.get("to")),
            button=_button(data.get("button")),
            duration_ms=int(duration) if duration else None,
        )


@dataclass
class ScreenshotConfig:
    region: Optional[Region] = None
    save_to: Optional[str] = None
    post_delay_ms: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ScreenshotConfig":
        return ScreenshotConfig(
            region=Region.from_dict(data.get("region")),
            save_to=data.get("saveTo") or None,
            post_delay_ms=_delay(data.get("postDelayMs")),
        )


@dataclass
class FindImageConfig:
    template_name: str
    threshold: Optional[float] = None
    timeout_ms: Optional[int] = None
    region: Optional[Region] = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "FindImageConfig":
        threshold = data.get("threshold")
        timeout = data.get("timeoutMs")
        return FindImageConfig(
            template_name=str(data.get("templateName", "")),
            threshold=float(threshold) if threshold is not None else None,
            timeout_ms=int(timeout) if timeout is not None else None,
            region=Region.from_dict(data.get("region")),
        )


@dataclass
class LoopConfig:
    mode: str = "count"  # count | until
    count: int = 0
    until_template_name: Optional[str] = None
    timeout_ms: Optional[int] = None
    max_iterations: int = 0

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "LoopConfig":
        mode = str(data.get("mode") or "count")
        if mode not in ("count", "until"):
            raise ValueError(f"Unknown loop mode: {mode}")
        timeout = data.get("timeoutMs")
        return LoopConfig(
            mode=mode,
            count=int(data.get("count", 0) or 0),
            until_template_name=data.get("untilTemplateName") or None,
            timeout_ms=int(timeout) if timeout is not None else None,
            max_iterations=int(data.get("maxIterations", 0) or 0),
        )


@dataclass
class BrainConfig:
    """Routing options of an AI decision node; the remaining keys are passed through."""
    instruction: str = ""
    routes: List[str] = field(default_factory=list)
    default_route: str = ROUTE_OUT
    options: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BrainConfig":
        routes: List[str] = []
        for raw in data.get("routes", []) or []:
            route = str(raw or "").strip()
            if route and route != ROUTE_ERROR and route not in routes:
                routes.append(route)
        default_route = data.get("defaultRoute")
        if default_route not in routes:
            default_route = routes[0] if routes else ROUTE_OUT
        return BrainConfig(
            instruction=str(data.get("instruction", "") or "").strip(),
            routes=routes,
            default_route=default_route,
            options=dict(data),
        )


NodeConfig = Union[
    StartConfig,
    EndConfig,
    ClickMappedPointConfig,
    ClickCoordinatesConfig,
    ClickFoundImageConfig,
    TypeTextConfig,
    PressKeyConfig,
    WaitConfig,
    MoveMouseConfig,
    DragMouseConfig,
    ScreenshotConfig,
    FindImageConfig,
    LoopConfig,
    BrainConfig,
]

_CONFIG_PARSERS: Dict[str, Callable[[Dict[str, Any]], NodeConfig]] = {
    NODE_START: StartConfig.from_dict,
    NODE_END: EndConfig.from_dict,
    NODE_CLICK_MAPPED_POINT: ClickMappedPointConfig.from_dict,
    NODE_CLICK_COORDINATES: ClickCoordinatesConfig.from_dict,
    NODE_CLICK_FOUND_IMAGE: ClickFoundImageConfig.from_dict,
    NODE_TYPE_TEXT: TypeTextConfig.from_dict,
    NODE_PRESS_KEY: PressKeyConfig.from_dict,
    NODE_WAIT: WaitConfig.from_dict,
    NODE_MOVE_MOUSE: MoveMouseConfig.from_dict,
    NODE_DRAG_MOUSE: DragMouseConfig.from_dict,
    NODE_SCREENSHOT: ScreenshotConfig.from_dict,
    NODE_FIND_IMAGE: FindImageConfig.from_dict,
    NODE_LOOP: LoopConfig.from_dict,
    NODE_AI_BRAIN: BrainConfig.from_dict,
}

NODE_TYPES = tuple(_CONFIG_PARSERS)


def parse_node_config(node_type: str, data: Dict[str, Any]) -> NodeConfig:
    parser = _CONFIG_PARSERS.get(node_type)
    if parser is None:
        raise ValueError(f"Unsupported node type: {node_type}")
    return parser(data or {})


@dataclass
class FlowNode:
    id: str
    type: str
    config: NodeConfig
    label: Optional[str] = None
    raw_config: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "FlowNode":
        wrapper = data.get("data") or {}
        node_type = str(wrapper.get("nodeType") or data.get("type") or "")
        raw_config = wrapper.get("config")
        if raw_config is None:
            raw_config = wrapper.get("data")
        if not isinstance(raw_config, dict):
            raw_config = {}
        return FlowNode(
            id=str(data.get("id", "")),
            type=node_type,
            config=parse_node_config(node_type, raw_config),
            label=raw_config.get("label") or None,
            raw_config=dict(raw_config),
        )


@dataclass
class FlowEdge:
    source: str
    target: str
    source_handle: str = ROUTE_OUT
    id: str = ""

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "FlowEdge":
        return FlowEdge(
            source=str(data.get("source", "")),
            target=str(data.get("target", "")),
            source_handle=str(data.get("sourceHandle") or ROUTE_OUT),
            id=str(data.get("id", "") or ""),
        )


@dataclass
class WorkflowGraph:
    id: str
    name: str
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "WorkflowGraph":
        nodes = [FlowNode.from_dict(raw) for raw in data.get("nodes", []) or [] if isinstance(raw, dict)]
        edges = [FlowEdge.from_dict(raw) for raw in data.get("edges", []) or [] if isinstance(raw, dict)]
        return WorkflowGraph(
            id=str(data.get("id", "") or ""),
            name=str(data.get("name", "Unnamed Flow")),
            nodes=nodes,
            edges=edges,
        )
