"""Lifecycle orchestration engine.

- StepPipeline: runs ordered StepDefinitions, stopping at the first failure
- EventBus: ordered progress/log channel from the pipeline to a presenter
- DeploymentContext: typed per-run state shared between steps
"""

from .context import DeploymentContext
from .events import (
    CollectingSink,
    EventBus,
    EventSink,
    LogEvent,
    LoggingSink,
    LogLevel,
    NullSink,
    ProgressEvent,
)
from .models import PipelineRun, StepDefinition, StepResult
from .pipeline import StepPipeline, StepReporter

__all__ = [
    "DeploymentContext",
    "CollectingSink",
    "EventBus",
    "EventSink",
    "LogEvent",
    "LoggingSink",
    "LogLevel",
    "NullSink",
    "ProgressEvent",
    "PipelineRun",
    "StepDefinition",
    "StepResult",
    "StepPipeline",
    "StepReporter",
]
