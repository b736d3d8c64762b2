"""
Runner for node-graph workflows.

Starting at the unique start node, each node is executed and returns a route
token; the edge leaving the node through that handle decides what runs
next. Loops are ordinary back-edges, so two fixed guardrails (total steps
and visits per node) stop a graph that never reaches an end node.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from PIL import Image

from .brain import BrainCollaborator, BrainContext, build_node_neighborhood
from .config import AutomationConfig
from .desktop import ActionPort
from .engine import RunnerBase
from .errors import ActionError, GuardrailExceeded, MappingError, PreconditionError
from .geometry import Region
from .graph_compiler import CompiledGraph, GraphCompiler
from .graph_model import (
    NODE_END,
    ROUTE_DONE,
    ROUTE_ERROR,
    ROUTE_FOUND,
    ROUTE_LOOP,
    ROUTE_NOT_FOUND,
    ROUTE_OUT,
    BrainConfig,
    ClickCoordinatesConfig,
    ClickFoundImageConfig,
    ClickMappedPointConfig,
    DragMouseConfig,
    EndConfig,
    FindImageConfig,
    FlowNode,
    LoopConfig,
    MoveMouseConfig,
    PointRef,
    PressKeyConfig,
    ScreenshotConfig,
    StartConfig,
    TypeTextConfig,
    WaitConfig,
    WorkflowGraph,
)
from .mapping import MappingRegistry
from .status import NodeEvent, Subscribers

logger = logging.getLogger(__name__)

MAX_STEPS_TOTAL = 10000
MAX_VISITS_PER_NODE = 1000
UNTIL_LOOP_CONFIDENCE = 0.8


@dataclass
class FoundImageRecord:
    template_name: str
    x: int
    y: int
    width: int
    height: int

    @property
    def region(self) -> Region:
        return Region(self.x, self.y, self.width, self.height)

    def to_dict(self) -> Dict[str, object]:
        return {
            "templateName": self.template_name,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


class GraphWorkflowRunner(RunnerBase):
    """
    Executes a ``WorkflowGraph``.

    Args:
        port: Input and capture backend
        registry: Mapping points and templates
        brain: Collaborator for ``ai.brain`` nodes (optional)
        config: Shared automation defaults
        sleep: Used for every deliberate delay, in seconds
    """

    RUN_ID_PREFIX = "flowrun"

    def __init__(
        self,
        port: ActionPort,
        registry: MappingRegistry,
        brain: Optional[BrainCollaborator] = None,
        config: Optional[AutomationConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
        compiler: Optional[GraphCompiler] = None,
    ):
        super().__init__(port, registry, config, sleep)
        self.brain = brain
        self.compiler = compiler or GraphCompiler()
        self._event_subscribers: Subscribers[NodeEvent] = Subscribers()

        self._graph: Optional[WorkflowGraph] = None
        self._total_steps = 0
        self._visit_count: Dict[str, int] = {}
        self._loop_counters: Dict[str, int] = {}
        self._found_images: Dict[str, FoundImageRecord] = {}
        self._last_found_image: Optional[FoundImageRecord] = None

    def subscribe_events(self, callback: Callable[[NodeEvent], None]) -> Callable[[], None]:
        """Register for ``node.started`` / ``node.finished`` events; returns an unsubscribe callable."""
        return self._event_subscribers.subscribe(callback)

    def unsubscribe_events(self, callback: Callable[[NodeEvent], None]) -> None:
        self._event_subscribers.unsubscribe(callback)

    @property
    def last_found_image(self) -> Optional[FoundImageRecord]:
        return self._last_found_image

    # ---- lifecycle hooks ----
    def _validate(self, graph: WorkflowGraph) -> CompiledGraph:
        self._graph = graph
        self._total_steps = 0
        self._visit_count = {}
        self._loop_counters = {}
        self._found_images = {}
        self._last_found_image = None

        compiled = self.compiler.compile(graph)
        for warning in compiled.warnings:
            self._add_log(f"Warning: {warning}", "WARNING")
        return compiled

    def _execute_body(self, compiled: CompiledGraph) -> None:
        node: Optional[FlowNode] = compiled.start_node

        while node is not None and not self._should_stop():
            self._wait_while_paused()
            if self._should_stop():
                break

            self._count_visit(node)
            self._current_id = node.id
            self._emit_event("node.started", node)

            route = self._execute_node(node)
            self._emit_event("node.finished", node, route)

            if node.type == NODE_END:
                break

            edge = compiled.edge_for(node.id, route)
            if edge is None:
                self._add_log(f'No connection for handle "{route}". Ending branch.')
                break

            next_node = compiled.node_by_id.get(edge.target)
            if next_node is None:
                raise MappingError(f'Target node "{edge.target}" not found.')
            self._add_log(f"Route {node.id} --{route}--> {next_node.id}")
            node = next_node

    def _count_visit(self, node: FlowNode) -> None:
        self._total_steps += 1
        if self._total_steps > MAX_STEPS_TOTAL:
            raise GuardrailExceeded(f"Maximum of {MAX_STEPS_TOTAL} steps reached (possible infinite loop).")

        visits = self._visit_count.get(node.id, 0) + 1
        if visits > MAX_VISITS_PER_NODE:
            raise GuardrailExceeded(
                f'Node "{node.id}" was visited too many times ({MAX_VISITS_PER_NODE}). Possible infinite loop.'
            )
        self._visit_count[node.id] = visits

    def _emit_event(self, kind: str, node: FlowNode, result: Optional[str] = None) -> None:
        self._event_subscribers.publish(NodeEvent(
            kind=kind,
            run_id=self._run_id,
            workflow_id=self._workflow_id,
            node_id=node.id,
            node_type=node.type,
            result=result,
        ))

    # ---- node dispatch ----
    def _execute_node(self, node: FlowNode) -> str:
        self._add_log(f"Executing: {node.type} ({node.id})")
        config = node.config

        if isinstance(config, (StartConfig, EndConfig)):
            return ROUTE_OUT
        if isinstance(config, ClickMappedPointConfig):
            point = self.registry.get_point_by_name(config.mapping_name)
            if point is None:
                raise MappingError(f'Mapped point "{config.mapping_name}" not found.')
            self._click_times(config.button, point.x, point.y, config.click_count)
            self._delay_ms(config.post_delay_ms)
            return ROUTE_OUT
        if isinstance(config, ClickCoordinatesConfig):
            self._click_times(config.button, config.x, config.y, config.click_count)
            self._delay_ms(config.post_delay_ms)
            return ROUTE_OUT
        if isinstance(config, TypeTextConfig):
            self.port.type_text(config.text, config.speed)
            self._delay_ms(config.post_delay_ms)
            return ROUTE_OUT
        if isinstance(config, PressKeyConfig):
            return self._press_key(config)
        if isinstance(config, WaitConfig):
            self._delay_ms(config.ms)
            return ROUTE_OUT
        if isinstance(config, MoveMouseConfig):
            self.port.move_mouse(config.x, config.y, config.duration_ms)
            return ROUTE_OUT
        if isinstance(config, DragMouseConfig):
            from_x, from_y = self._resolve_point(config.start, "from")
            to_x, to_y = self._resolve_point(config.end, "to")
            self.port.drag(from_x, from_y, to_x, to_y, config.button, config.duration_ms)
            return ROUTE_OUT
        if isinstance(config, ScreenshotConfig):
            return self._screenshot(config)
        if isinstance(config, FindImageConfig):
            return self._find_image(config)
        if isinstance(config, ClickFoundImageConfig):
            return self._click_found_image(config)
        if isinstance(config, LoopConfig):
            return self._loop(node, config)
        if isinstance(config, BrainConfig):
            return self._brain(node)
        raise ActionError(f"Unsupported node type: {node.type}")

    def _click_times(self, button: str, x: int, y: int, count: int) -> None:
        for _ in range(max(1, count)):
            self.port.click(button, x, y)

    def _press_key(self, config: PressKeyConfig) -> str:
        combo = config.display()
        self._add_log(f"Pressing key: {combo}")
        try:
            self.port.press_key(config.main_key, config.modifiers)
        except Exception as e:
            self._add_log(f'Failed to press "{combo}": {e}', "ERROR")
            raise
        self._add_log(f"Key pressed: {combo}", "SUCCESS")
        self._delay_ms(config.post_delay_ms)
        return ROUTE_OUT

    def _resolve_point(self, ref: PointRef, label: str):
        if isinstance(ref, str):
            point = self.registry.get_point_by_name(ref)
            if point is None:
                raise MappingError(f'Point "{label}" {ref} not found.')
            return point.x, point.y
        return ref.x, ref.y

    def _screenshot(self, config: ScreenshotConfig) -> str:
        capture = self.port.screenshot(config.region)
        if config.save_to:
            try:
                Image.fromarray(capture.pixels).save(config.save_to, format="PNG")
            except OSError as e:
                raise ActionError(f"Could not save screenshot to {config.save_to}: {e}") from e
            self._add_log(f"Screenshot saved to {config.save_to}")
        self._delay_ms(config.post_delay_ms)
        return ROUTE_OUT

    def _find_image(self, config: FindImageConfig) -> str:
        name = config.template_name
        found = self.registry.find_template_on_screen(name, config.threshold, config.timeout_ms, config.region)
        if found is None:
            self._add_log(f'Image "{name}" not found.', "WARNING")
            return ROUTE_NOT_FOUND

        record = FoundImageRecord(name, found.x, found.y, found.width, found.height)
        self._found_images[name] = record
        self._last_found_image = record
        self._add_log(
            f'Image "{name}" found at ({found.x}, {found.y}) - {found.width}x{found.height}px.',
            "SUCCESS",
        )
        return ROUTE_FOUND

    def _click_found_image(self, config: ClickFoundImageConfig) -> str:
        if config.template_name:
            record = self._found_images.get(config.template_name)
            if record is None:
                raise PreconditionError(
                    f'No coordinates for image "{config.template_name}". Run a "Find Image" step first.'
                )
        elif self._last_found_image is not None:
            record = self._last_found_image
        else:
            raise PreconditionError('No image has been found yet. Run a "Find Image" step first.')

        anchor_x, anchor_y = record.region.anchor(config.click_position)
        click_x = anchor_x + config.offset_x
        click_y = anchor_y + config.offset_y
        if click_x == int(click_x) and click_y == int(click_y):
            click_x, click_y = int(click_x), int(click_y)

        for _ in range(max(1, config.click_count)):
            self.port.click(config.button, click_x, click_y)
        self._delay_ms(config.post_delay_ms)
        self._add_log(f"Clicked found image at ({click_x}, {click_y})", "SUCCESS")
        return ROUTE_OUT

    def _loop(self, node: FlowNode, config: LoopConfig) -> str:
        current = self._loop_counters.get(node.id, 0)

        if config.mode == "count":
            if current < config.count:
                self._loop_counters[node.id] = current + 1
                self._add_log(f"Loop {current + 1}/{config.count}")
                return ROUTE_LOOP
        else:
            found = None
            if config.until_template_name:
                found = self.registry.find_template_on_screen(
                    config.until_template_name, UNTIL_LOOP_CONFIDENCE, config.timeout_ms
                )
            if found is None and current < config.max_iterations:
                self._loop_counters[node.id] = current + 1
                self._add_log(f"Loop {current + 1}/{config.max_iterations} (until {config.until_template_name})")
                return ROUTE_LOOP

        self._loop_counters[node.id] = 0
        self._add_log("Loop done")
        return ROUTE_DONE

    def _brain(self, node: FlowNode) -> str:
        self._add_log("AI node started")
        try:
            if self.brain is None:
                raise ActionError("No brain collaborator configured")
            graph = self._graph
            context = BrainContext(
                workflow_id=graph.id if graph else "",
                workflow_name=graph.name if graph else "",
                run_id=self._run_id,
                node_id=node.id,
                node_neighborhood=build_node_neighborhood(graph, node.id) if graph else None,
                last_found_image=self._last_found_image.to_dict() if self._last_found_image else None,
            )
            result = self.brain.execute_node(node, context)
        except Exception as e:
            logger.exception("ai.brain node %s failed (run %s)", node.id, self._run_id)
            self._add_log(f"AI node failed, following ERROR. ({e})", "ERROR")
            return ROUTE_ERROR

        self._add_log(
            f'AI node finished with route "{result.route}" '
            f"({result.tool_calls_executed} tool calls in {result.turns} turns)."
        )
        if result.message:
            self._add_log(f"AI: {result.message}")
        return result.route or ROUTE_ERROR

