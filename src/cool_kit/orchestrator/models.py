"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, List, Optional

from ..errors import StepFailedError

if TYPE_CHECKING:
    from .pipeline import StepReporter


StepAction = Callable[["StepReporter"], None]


@dataclass(frozen=True)
class StepDefinition:
    """One named unit of work.

    ``action`` receives a :class:`StepReporter`; returning normally means the
    step succeeded, raising means it failed with that exception as the reason.
    """

    name: str
    description: str
    action: StepAction


@dataclass
class StepResult:
    """Outcome of one executed step."""

    name: str
    succeeded: bool
    started_at: datetime
    finished_at: datetime
    error_detail: Optional[str] = None

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class PipelineRun:
    """Transient record of one pipeline execution."""

    total_steps: int
    results: List[StepResult] = field(default_factory=list)
    error: Optional[StepFailedError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and len(self.results) == self.total_steps

    @property
    def failed_step(self) -> Optional[StepResult]:
        for result in self.results:
            if not result.succeeded:
                return result
        return None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict:
        return {
            "total_steps": self.total_steps,
            "succeeded": self.succeeded,
            "results": [
                {
                    "name": r.name,
                    "succeeded": r.succeeded,
                    "error": r.error_detail,
                    "started_at": r.started_at.isoformat(),
                    "finished_at": r.finished_at.isoformat(),
                }
                for r in self.results
            ],
        }
