from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterator, List, Optional, Protocol, Sequence, Tuple

from .cancel import CancellationToken
from .events import StreamEvent
from .messages import Turn


class StreamingMode(str, Enum):
    NATIVE = "native"      # backend delivers tokens incrementally
    BUFFERED = "buffered"  # one full response, emitted as a single chunk


@dataclass(frozen=True)
class CredentialCheck:
    """Where a credential was looked for. Never holds the secret."""
    label: str
    present: bool

    def describe(self) -> str:
        return f"{self.label}: {'SET' if self.present else 'NOT SET'}"


@dataclass(frozen=True)
class ProviderConfig:
    provider_id: str
    model_id: str
    api_key: Optional[str] = None
    system_prompt: str = ""
    credential_checks: Tuple[CredentialCheck, ...] = ()

    def with_system_prompt(self, system_prompt: str) -> "ProviderConfig":
        return replace(self, system_prompt=system_prompt)

    def describe_credentials(self) -> str:
        if not self.credential_checks:
            return "no credential sources configured"
        return "; ".join(c.describe() for c in self.credential_checks)

    def __repr__(self) -> str:
        key = "SET" if self.api_key else "NOT SET"
        return f"ProviderConfig(provider_id={self.provider_id!r}, model_id={self.model_id!r}, api_key={key})"


@dataclass(frozen=True)
class RequestConfig:
    """Per-call settings. Built fresh for every request from the current ProviderConfig."""
    system_prompt: str = ""
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    cancel: Optional[CancellationToken] = field(default=None, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled


@dataclass(frozen=True)
class TokenCount:
    total_tokens: int
    estimated: bool = True


class Provider(Protocol):
    """
    Capability interface every backend adapter implements.
    'history' is a read-only view; adapters return new Turns and never mutate it.
    """

    provider_id: str
    model: str
    streaming: StreamingMode

    def send(self, history: Sequence[Turn], request: RequestConfig) -> Turn:
        """Buffered call. Returns the model Turn with usage attached."""
        ...

    def send_stream(self, history: Sequence[Turn], request: RequestConfig) -> Iterator[StreamEvent]:
        """
        Streaming call. Yields ContentEvents, then exactly one DoneEvent.
        Errors raise; cancellation ends with DoneEvent(finish_reason="cancelled").
        """
        ...

    def count_tokens(self, history: Sequence[Turn], request: RequestConfig) -> TokenCount:
        ...

    def embed_content(self, texts: Sequence[str]) -> List[List[float]]:
        ...
