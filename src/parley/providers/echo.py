from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional, Sequence
import time

from parley.core.errors import RequestCancelled, Unsupported
from parley.core.events import FINISH_CANCELLED, FINISH_STOP, ContentEvent, DoneEvent, StreamEvent
from parley.core.messages import Turn, model_turn
from parley.core.ports import ProviderConfig, RequestConfig, StreamingMode, TokenCount
from parley.core.tokens import TokenCounter
from parley.providers.chat_format import require_user_text
from parley.providers.registry import ProviderRegistry

_LOREM_50 = (
    "Lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod tempor "
    "incididunt ut labore et dolore magna aliqua Curabitur non nulla sit amet nisl "
    "tempor convallis quis ac lectus Phasellus viverra nulla ut metus varius laoreet "
    "Quisque rutrum Aenean imperdiet Etiam ultricies nisi vel augue Curabitur ullamcorper ultricies nisi"
).split()


@ProviderRegistry.register("echo")
class EchoProvider:
    """
    Offline stub that returns a fixed 50-word lorem ipsum. Needs no credential.
    Streaming yields one word at a time with a small delay to simulate tokens.
    Usage is never reported, so it comes back as zeros.
    """
    streaming = StreamingMode.NATIVE

    def __init__(self, config: ProviderConfig, token_delay: float = 0.125, words: Optional[List[str]] = None):
        self.config = config
        self.model = config.model_id or "echo-lorem"
        self.token_delay = float(token_delay)
        self.words = list(words) if words is not None else list(_LOREM_50)
        self.counter = TokenCounter(encoding_name=None)

    @classmethod
    def create(cls, config: ProviderConfig, provider_cfg: Optional[Dict[str, Any]] = None) -> "EchoProvider":
        provider_cfg = provider_cfg or {}
        return cls(config, token_delay=provider_cfg.get("token_delay", 0.125), words=provider_cfg.get("words"))

    def send(self, history: Sequence[Turn], request: RequestConfig) -> Turn:
        require_user_text(history)
        if request.cancelled:
            raise RequestCancelled("Request cancelled before it was sent")
        return model_turn(" ".join(self.words))

    def send_stream(self, history: Sequence[Turn], request: RequestConfig) -> Iterator[StreamEvent]:
        require_user_text(history)
        last_idx = len(self.words) - 1
        for i, w in enumerate(self.words):
            if request.cancelled:
                yield DoneEvent(finish_reason=FINISH_CANCELLED)
                return
            yield ContentEvent(w + ("" if i == last_idx else " "))
            if self.token_delay > 0:
                time.sleep(self.token_delay)
        yield DoneEvent(finish_reason=FINISH_CANCELLED if request.cancelled else FINISH_STOP)

    def count_tokens(self, history: Sequence[Turn], request: RequestConfig) -> TokenCount:
        return TokenCount(self.counter.count_turns(history, request.system_prompt), estimated=True)

    def embed_content(self, texts: Sequence[str]) -> List[List[float]]:
        raise Unsupported("Embedding is not supported by the echo provider")
