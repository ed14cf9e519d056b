from vibeboard.actors.analyst import Analyst, AnalysisResult
from vibeboard.actors.base import (
    Actor,
    ActorContext,
    ActorDisabledError,
    TaskTransitionError,
)
from vibeboard.actors.coder import AttemptContext, Coder, CodeExecution, CodeResult
from vibeboard.actors.composer import (
    CodeRetryExhaustedError,
    Composer,
    ComposerResult,
    CompositionError,
    RootTaskFailedError,
    ScheduleOutcome,
)
from vibeboard.actors.custom import CustomActor, CustomResult
from vibeboard.actors.planner import Planner, PlannerResult
from vibeboard.actors.registry import ActorRegistry, UnknownActorError, default_registry
from vibeboard.actors.researcher import Researcher, ResearchResult
from vibeboard.actors.summarizer import Summarizer, SummaryResult
from vibeboard.actors.writer import Writer, WriterResult

__all__ = [
    "Actor",
    "ActorContext",
    "ActorDisabledError",
    "ActorRegistry",
    "AnalysisResult",
    "Analyst",
    "AttemptContext",
    "CodeExecution",
    "CodeResult",
    "CodeRetryExhaustedError",
    "Coder",
    "Composer",
    "ComposerResult",
    "CompositionError",
    "CustomActor",
    "CustomResult",
    "Planner",
    "PlannerResult",
    "ResearchResult",
    "Researcher",
    "RootTaskFailedError",
    "ScheduleOutcome",
    "Summarizer",
    "SummaryResult",
    "TaskTransitionError",
    "UnknownActorError",
    "Writer",
    "WriterResult",
    "default_registry",
]
