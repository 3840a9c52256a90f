"""Reducer output: the next state plus effect descriptors."""

from dataclasses import dataclass, field
from typing import List, Union

from pipeline_sync.domain.models import PipelineState


@dataclass(frozen=True)
class Notice:
    """A user-facing notification (a toast on the dashboard).

    Attributes:
        title: Short headline, e.g. "Pipeline Complete"
        description: One-sentence detail
        variant: "default" or "destructive"
    """

    title: str
    description: str = ""
    variant: str = "default"


@dataclass(frozen=True)
class ScheduleTerminalReset:
    """Close the stream shortly after a terminal status, then return to idle."""

    pass


Effect = Union[Notice, ScheduleTerminalReset]


@dataclass
class ReduceResult:
    """
    Outcome of reducing one event.

    Attributes:
        state: The next state (the same object when nothing changed)
        effects: Side effects for the orchestrator to run, in order
    """

    state: PipelineState
    effects: List[Effect] = field(default_factory=list)
