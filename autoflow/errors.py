"""
Exceptions raised by the workflow engines and their collaborators.
"""

from __future__ import annotations

from typing import Iterable, List


class AutomationError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(AutomationError):
    """Pre-flight check failed; carries every problem that was found."""

    def __init__(self, problems: Iterable[str], title: str = "Validation failed"):
        self.problems: List[str] = list(problems)
        super().__init__(f"{title}:\n" + "\n".join(self.problems))


class GraphValidationError(ValidationError):
    def __init__(self, problems: Iterable[str]):
        super().__init__(problems, title="Invalid graph")


class TemplateNotFoundError(AutomationError):
    """A template was searched for and did not show up on screen."""


class GuardrailExceeded(AutomationError):
    """Execution counters passed their fixed limits (possible infinite loop)."""


class ActionError(AutomationError):
    """An input or capture call could not be carried out."""


class UsageError(AutomationError):
    """The caller used a runner in a way it does not allow."""


class MappingError(AutomationError):
    """Unknown or conflicting mapping point / template name."""


class PreconditionError(AutomationError):
    """A node needs state that an earlier node should have produced."""
