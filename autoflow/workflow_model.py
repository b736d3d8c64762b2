"""
Linear workflow data model and JSON parser.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .actions import BaseAction


@dataclass
class WorkflowStep:
    id: str
    order: int
    action: BaseAction

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "WorkflowStep":
        raw_action = data.get("action") or {}
        return WorkflowStep(
            id=str(data.get("id", "")),
            order=int(data.get("order", 0) or 0),
            action=BaseAction.from_dict(raw_action),
        )


@dataclass
class Workflow:
    id: str
    name: str
    steps: List[WorkflowStep] = field(default_factory=list)
    description: str = ""
    enabled: bool = True

    def sorted_steps(self) -> List[WorkflowStep]:
        """Steps in ascending ``order``; equal orders keep their listed order."""
        return sorted(self.steps, key=lambda step: step.order)

    def iter_actions(self):
        """Every action of the workflow, nested loop/condition actions included."""
        for step in self.steps:
            yield from step.action.walk()

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Workflow":
        steps_data = data.get("steps", []) or []
        steps: List[WorkflowStep] = []
        if isinstance(steps_data, list):
            for index, raw in enumerate(steps_data):
                if isinstance(raw, dict):
                    raw = dict(raw)
                    raw.setdefault("id", f"step_{index + 1}")
                    raw.setdefault("order", index)
                    steps.append(WorkflowStep.from_dict(raw))

        return Workflow(
            id=str(data.get("id", "") or ""),
            name=str(data.get("name", "Unnamed Workflow")),
            steps=steps,
            description=str(data.get("description", "") or ""),
            enabled=bool(data.get("enabled", True)),
        )
