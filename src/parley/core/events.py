from __future__ import annotations
from dataclasses import dataclass, field
from typing import Union

from .messages import FunctionCallPart, UsageMetadata

FINISH_STOP = "stop"
FINISH_CANCELLED = "cancelled"


@dataclass(frozen=True)
class ContentEvent:
    text: str


@dataclass(frozen=True)
class ToolCallEvent:
    call: FunctionCallPart


@dataclass(frozen=True)
class ErrorEvent:
    kind: str
    message: str


@dataclass(frozen=True)
class DoneEvent:
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    finish_reason: str = FINISH_STOP

    @property
    def cancelled(self) -> bool:
        return self.finish_reason == FINISH_CANCELLED


StreamEvent = Union[ContentEvent, ToolCallEvent, ErrorEvent, DoneEvent]


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))
