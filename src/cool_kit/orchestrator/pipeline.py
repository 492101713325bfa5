"""Sequential step pipeline.

Steps run strictly in declared order. The first failing step stops the run;
whatever earlier steps created is left in place, since cleanup is an explicit
separate operation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from ..errors import StepFailedError
from .events import EventBus, LogLevel, ProgressEvent
from .models import PipelineRun, StepDefinition, StepResult

logger = logging.getLogger(__name__)


class StepReporter:
    """Progress and log emitter handed to a running step."""

    def __init__(self, bus: EventBus, step_index: int, total_steps: int) -> None:
        self._bus = bus
        self.step_index = step_index
        self.total_steps = total_steps

    def progress(self, fraction: float, message: str) -> None:
        """Report progress *within* the step; ``fraction`` is clamped to [0, 1]."""
        fraction = min(max(fraction, 0.0), 1.0)
        overall = (self.step_index + fraction) / self.total_steps
        self._bus.emit(
            ProgressEvent(
                step_index=self.step_index,
                total_steps=self.total_steps,
                fraction_complete=overall,
                message=message,
            )
        )

    def log(self, level: LogLevel, message: str) -> None:
        self._bus.log(level, message)

    def debug(self, message: str) -> None:
        self.log(LogLevel.DEBUG, message)

    def info(self, message: str) -> None:
        self.log(LogLevel.INFO, message)

    def warning(self, message: str) -> None:
        self.log(LogLevel.WARNING, message)

    def success(self, message: str) -> None:
        self.log(LogLevel.SUCCESS, message)


class StepPipeline:
    """Runs a list of :class:`StepDefinition` and records a :class:`PipelineRun`."""

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        *,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.bus = bus or EventBus()
        self._now = now

    def run(self, steps: Sequence[StepDefinition]) -> PipelineRun:
        total = len(steps)
        run = PipelineRun(total_steps=total)

        for index, step in enumerate(steps):
            self.bus.emit(
                ProgressEvent(
                    step_index=index,
                    total_steps=total,
                    fraction_complete=index / total,
                    message=step.description,
                )
            )
            self.bus.log(LogLevel.INFO, f"Starting: {step.name}")
            logger.info("Step %d/%d: %s", index + 1, total, step.name)

            started_at = self._now()
            reporter = StepReporter(self.bus, index, total)
            try:
                step.action(reporter)
            except Exception as exc:
                finished_at = self._now()
                error = StepFailedError(step.name, exc)
                error.__cause__ = exc
                run.results.append(
                    StepResult(
                        name=step.name,
                        succeeded=False,
                        started_at=started_at,
                        finished_at=finished_at,
                        error_detail=str(exc),
                    )
                )
                run.error = error
                logger.error("Step '%s' failed: %s", step.name, exc)
                self.bus.log(LogLevel.ERROR, f"Failed: {step.name} - {exc}")
                self.bus.emit(
                    ProgressEvent(
                        step_index=index,
                        total_steps=total,
                        fraction_complete=index / total,
                        message=f"Failed: {step.name}",
                        terminal=True,
                    )
                )
                return run

            run.results.append(
                StepResult(
                    name=step.name,
                    succeeded=True,
                    started_at=started_at,
                    finished_at=self._now(),
                )
            )
            self.bus.log(LogLevel.SUCCESS, f"✓ {step.name} completed")
            self.bus.emit(
                ProgressEvent(
                    step_index=index,
                    total_steps=total,
                    fraction_complete=(index + 1) / total,
                    message=f"Completed: {step.name}",
                    terminal=index == total - 1,
                )
            )

        return run
