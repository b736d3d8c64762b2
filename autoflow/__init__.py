"""
autoflow: scripted desktop automation with linear and graph workflows.

Key parts
---------
- actions / workflow_model:  linear steps parsed from JSON
- graph_model:               node/edge graphs parsed from JSON
- matcher:                   approximate on-screen template search (numpy)
- desktop:                   ActionPort protocol and the pynput/pyautogui backend
- mapping:                   named points and templates, template lookup on screen
- linear_executor:           ordered steps with retries and continue-on-error
- graph_compiler / runner:   validated graphs walked by route tokens with guardrails
"""

from .config import AutomationConfig
from .desktop import ActionPort, DesktopActionPort, ScreenCapture
from .errors import (
    ActionError,
    AutomationError,
    GraphValidationError,
    GuardrailExceeded,
    MappingError,
    PreconditionError,
    TemplateNotFoundError,
    UsageError,
    ValidationError,
)
from .graph_compiler import CompiledGraph, GraphCompiler, ValidationIssue
from .graph_model import WorkflowGraph
from .graph_runner import FoundImageRecord, GraphWorkflowRunner
from .linear_executor import LinearWorkflowExecutor
from .mapping import ImageTemplate, MappingPoint, MappingRegistry
from .matcher import ScreenMatcher
from .status import RunState, StatusSnapshot
from .workflow_model import Workflow

__all__ = [
    "ActionError",
    "ActionPort",
    "AutomationConfig",
    "AutomationError",
    "CompiledGraph",
    "DesktopActionPort",
    "FoundImageRecord",
    "GraphCompiler",
    "GraphValidationError",
    "GraphWorkflowRunner",
    "GuardrailExceeded",
    "ImageTemplate",
    "LinearWorkflowExecutor",
    "MappingError",
    "MappingPoint",
    "MappingRegistry",
    "PreconditionError",
    "RunState",
    "ScreenCapture",
    "ScreenMatcher",
    "StatusSnapshot",
    "TemplateNotFoundError",
    "UsageError",
    "ValidationError",
    "ValidationIssue",
    "Workflow",
    "WorkflowGraph",
]
