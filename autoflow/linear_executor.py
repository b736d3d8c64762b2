"""
Executor for linear workflows: ordered steps with retries.

Every step runs through ``_execute_action``; a failing step is retried up to
``max_retries`` times with a growing pause in between, and afterwards either
aborts the run or, with ``continueOnError``, is logged and skipped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from PIL import Image

from .actions import (
    BaseAction,
    ClickAction,
    ClickAtAction,
    ConditionAction,
    DragAction,
    FindImageAction,
    LoopAction,
    MoveMouseAction,
    PressKeyAction,
    ScreenshotAction,
    TypeAction,
    WaitAction,
)
from .config import AutomationConfig
from .desktop import ActionPort
from .engine import RunnerBase
from .errors import ActionError, AutomationError, MappingError, TemplateNotFoundError, UsageError, ValidationError
from .mapping import MappingRegistry
from .workflow_model import Workflow, WorkflowStep

logger = logging.getLogger(__name__)

WAIT_PROBE_TIMEOUT_MS = 1000
WAIT_PROBE_INTERVAL_MS = 100
CONDITION_PROBE_TIMEOUT_MS = 2000
MAX_RETRY_DELAY_MS = 2000
RETRY_DELAY_STEP_MS = 500


@dataclass
class LoopFrame:
    """Position inside a running loop action."""
    count: Optional[int]  # None = until stopped
    current: int
    step_index: int


def retry_delay_ms(retry: int) -> int:
    """Pause before retry number ``retry`` (0-based): none for the first, then 500 ms steps up to 2 s."""
    if retry <= 0:
        return 0
    return min(RETRY_DELAY_STEP_MS * retry, MAX_RETRY_DELAY_MS)


class LinearWorkflowExecutor(RunnerBase):
    """Runs a ``Workflow`` step by step against an action port."""

    RUN_ID_PREFIX = "run"

    def __init__(
        self,
        port: ActionPort,
        registry: MappingRegistry,
        config: Optional[AutomationConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(port, registry, config, sleep)
        self._clock = clock
        self._step_index = -1
        self.loop_stack: List[LoopFrame] = []

    # ---- validation ----
    def _prepare(self, workflow: Workflow):
        if not workflow.enabled:
            raise UsageError(f'Workflow "{workflow.name}" is disabled')
        return super()._prepare(workflow)

    def _validate(self, workflow: Workflow) -> Workflow:
        self._add_log(f'Validating workflow "{workflow.name}"...')
        problems = self.find_missing_resources(workflow)
        if problems:
            raise ValidationError(problems)
        self._add_log("Validation passed")
        return workflow

    def find_missing_resources(self, workflow: Workflow) -> List[str]:
        """Every mapping point and template the workflow names but the registry lacks."""
        problems: List[str] = []

        def note(problem: str) -> None:
            if problem not in problems:
                problems.append(problem)

        for action in workflow.iter_actions():
            if isinstance(action, ClickAction) and action.mapping_point:
                if self.registry.get_point_by_name(action.mapping_point) is None:
                    note(f'Mapping point "{action.mapping_point}" not found')
            for template_name in _template_names(action):
                if self.registry.get_template_by_name(template_name) is None:
                    note(f'Image template "{template_name}" not found')
        return problems

    # ---- execution ----
    def _execute_body(self, workflow: Workflow) -> None:
        self._step_index = -1
        self.loop_stack = []
        steps = workflow.sorted_steps()
        total = len(steps)
        self._add_log(f'Workflow "{workflow.name}" started with {total} step(s)')

        for index, step in enumerate(steps):
            if self._should_stop():
                break
            self._wait_while_paused()
            if self._should_stop():
                break

            self._step_index = index
            self._current_id = step.id
            self._progress = round((index + 1) / total * 100)
            self._add_log(f"Step {index + 1}/{total}: {step.action.describe()}")

            self._run_step(step, index, total)

            if index < total - 1:
                self._delay_ms(self.config.default_delay_ms)

    def _run_step(self, step: WorkflowStep, index: int, total: int) -> None:
        try:
            self._execute_action(step.action)
            self._add_log(f"Step {index + 1}/{total} completed: {step.action.type}", "SUCCESS")
            return
        except Exception as step_error:
            self._add_log(f"Step {index + 1} failed: {step_error}", "ERROR")
            failure = step_error

        max_retries = self.config.max_retries
        for retry in range(max_retries):
            if self._should_stop():
                break
            delay = retry_delay_ms(retry)
            if delay:
                self._add_log(f"Waiting {delay}ms before retry...")
                self._delay_ms(delay)
            self._add_log(f"Retrying step {index + 1} (attempt {retry + 1}/{max_retries})")
            try:
                self._execute_action(step.action)
                self._add_log(f"Step {index + 1} succeeded on retry {retry + 1}", "SUCCESS")
                return
            except Exception as retry_error:
                self._add_log(f"Retry {retry + 1} failed: {retry_error}", "WARNING")

        if self._should_stop():
            return
        if step.action.continue_on_error:
            suffix = f" after {max_retries} retries" if max_retries > 0 else ""
            self._add_log(
                f"Step {index + 1} failed{suffix}, but continuing workflow (continueOnError=true)",
                "WARNING",
            )
            return
        raise failure

    def _execute_action(self, action: BaseAction) -> None:
        if isinstance(action, ClickAction):
            self._click(action)
        elif isinstance(action, ClickAtAction):
            self.port.click(action.button, action.x, action.y)
        elif isinstance(action, TypeAction):
            self.port.type_text(action.text)
        elif isinstance(action, PressKeyAction):
            self.port.press_key(action.key, action.modifiers)
        elif isinstance(action, WaitAction):
            self._wait(action)
        elif isinstance(action, ScreenshotAction):
            self._screenshot(action)
        elif isinstance(action, FindImageAction):
            self._find_image(action)
        elif isinstance(action, MoveMouseAction):
            self.port.move_mouse(action.x, action.y)
        elif isinstance(action, DragAction):
            self.port.drag(action.from_x, action.from_y, action.to_x, action.to_y, action.button)
        elif isinstance(action, LoopAction):
            self._loop(action)
        elif isinstance(action, ConditionAction):
            self._condition(action)
        else:
            raise ActionError(f"Unknown action type: {action.type}")

    def _click(self, action: ClickAction) -> None:
        if action.mapping_point:
            point = self.registry.get_point_by_name(action.mapping_point)
            if point is None:
                raise MappingError(f'Mapping point "{action.mapping_point}" not found')
            self.port.click(action.button, point.x, point.y)
        elif action.x is not None and action.y is not None:
            self.port.click(action.button, action.x, action.y)
        else:
            raise ActionError("Either mappingPoint or x,y coordinates must be provided")

    def _wait(self, action: WaitAction) -> None:
        if not action.or_until_image:
            self._delay_ms(action.ms)
            return

        timeout = action.timeout if action.timeout is not None else self.config.image_find_timeout_ms
        started = self._clock()
        while (self._clock() - started) * 1000 < timeout:
            if self._should_stop():
                return
            try:
                found = self.registry.find_template_on_screen(
                    action.or_until_image,
                    self.config.image_find_confidence,
                    WAIT_PROBE_TIMEOUT_MS,
                )
                if found is not None:
                    return
            except AutomationError as e:
                logger.debug("Probe for '%s' failed: %s", action.or_until_image, e)
            self._delay_ms(WAIT_PROBE_INTERVAL_MS)
        raise TemplateNotFoundError(f'Image "{action.or_until_image}" not found within timeout')

    def _screenshot(self, action: ScreenshotAction) -> None:
        capture = self.port.screenshot(action.region)
        if action.save_path:
            try:
                Image.fromarray(capture.pixels).save(action.save_path, format="PNG")
            except OSError as e:
                raise ActionError(f"Could not save screenshot to {action.save_path}: {e}") from e
            self._add_log(f"Screenshot saved to {action.save_path}")

    def _find_image(self, action: FindImageAction) -> None:
        name = action.template_name
        confidence = action.confidence if action.confidence is not None else self.config.image_find_confidence
        timeout = action.timeout if action.timeout is not None else self.config.image_find_timeout_ms
        self._add_log(f'Searching for image template "{name}"...')
        try:
            found = self.registry.find_template_on_screen(name, confidence, timeout)
        except AutomationError as e:
            if action.optional:
                self._add_log(f'Failed to find image template "{name}" (optional): {e}', "WARNING")
                return
            raise

        if found is None:
            if action.optional:
                self._add_log(f'Image template "{name}" not found (optional, continuing)', "WARNING")
                return
            raise TemplateNotFoundError(f'Image template "{name}" not found on screen')
        self._add_log(
            f'Image template "{name}" found at ({found.x}, {found.y}) - {found.width}x{found.height}px',
            "SUCCESS",
        )

    def _loop(self, action: LoopAction) -> None:
        iteration = 0
        label = str(action.count) if action.count is not None else "inf"
        while action.count is None or iteration < action.count:
            if self._should_stop():
                break
            iteration += 1
            self.loop_stack.append(LoopFrame(count=action.count, current=iteration, step_index=self._step_index))
            try:
                self._add_log(f"Loop iteration {iteration}/{label}")
                self._run_nested(action.actions)
            finally:
                self.loop_stack.pop()

    def _condition(self, action: ConditionAction) -> None:
        try:
            found = self.registry.find_template_on_screen(
                action.template_name,
                self.config.image_find_confidence,
                CONDITION_PROBE_TIMEOUT_MS,
            ) is not None
        except AutomationError as e:
            self._add_log(f'Condition check for "{action.template_name}" failed, treating as not found: {e}', "WARNING")
            found = False

        take_true = found if action.condition == "imageFound" else not found
        branch = action.if_true if take_true else action.if_false
        self._add_log(f"Condition {action.condition} ({action.template_name}): {'true' if take_true else 'false'}")
        self._run_nested(branch)

    def _run_nested(self, actions: List[BaseAction]) -> None:
        for nested in actions:
            if self._should_stop():
                return
            self._wait_while_paused()
            if self._should_stop():
                return
            self._execute_action(nested)


def _template_names(action: BaseAction) -> List[str]:
    if isinstance(action, FindImageAction) and action.template_name:
        return [action.template_name]
    if isinstance(action, WaitAction) and action.or_until_image:
        return [action.or_until_image]
    if isinstance(action, ConditionAction) and action.template_name:
        return [action.template_name]
    return []
