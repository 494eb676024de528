from __future__ import annotations
import logging
import time, random
from typing import Iterator, List, Sequence

from parley.core.errors import is_retryable
from parley.core.events import ContentEvent, StreamEvent
from parley.core.messages import Turn
from parley.core.ports import Provider, RequestConfig, TokenCount

logger = logging.getLogger(__name__)


class ResiliencePolicy:
    def __init__(self, max_retries=3, base_delay=0.5, max_delay=8.0, total_timeout=30.0,
                 retry_exceptions=(TimeoutError,)):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.total_timeout = total_timeout
        self.retry_exceptions = tuple(retry_exceptions)

    def compute_backoff(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)) + random.random() * 0.1)


class ResilientProvider:
    """
    Opt-in retry wrapper with the same capability surface as the adapter it wraps.
    Retries transport failures and 429/5xx answers only; auth and request errors
    surface immediately. The original error is re-raised once retries run out.
    """

    def __init__(self, inner: Provider, policy: ResiliencePolicy):
        self.inner = inner
        self.policy = policy
        self.provider_id = getattr(inner, "provider_id", "unknown")
        self.model = getattr(inner, "model", "unknown")
        self.streaming = inner.streaming

    def _should_retry(self, exc: Exception, request: RequestConfig) -> bool:
        if request.cancelled:
            return False
        if is_retryable(exc):
            return True
        # Fallback on configured transient types (e.g., TimeoutError)
        return isinstance(exc, self.policy.retry_exceptions)

    def _give_up(self, exc: Exception, request: RequestConfig, attempt: int, start: float) -> bool:
        return (not self._should_retry(exc, request)
                or attempt > self.policy.max_retries
                or (time.monotonic() - start) > self.policy.total_timeout)

    def send(self, history: Sequence[Turn], request: RequestConfig) -> Turn:
        start = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.inner.send(history, request)
            except Exception as e:
                if self._give_up(e, request, attempt, start):
                    raise
                delay = self.policy.compute_backoff(attempt)
                logger.info("%s call failed (%s); retry %d in %.1fs", self.provider_id, e, attempt, delay)
                time.sleep(delay)

    def send_stream(self, history: Sequence[Turn], request: RequestConfig) -> Iterator[StreamEvent]:
        start = time.monotonic()
        attempt = 0
        yielded_any = False
        while True:
            attempt += 1
            try:
                for event in self.inner.send_stream(history, request):
                    if isinstance(event, ContentEvent):
                        yielded_any = True
                    yield event
                return
            except Exception as e:
                # Only retry before first chunk is yielded
                if yielded_any or self._give_up(e, request, attempt, start):
                    raise
                delay = self.policy.compute_backoff(attempt)
                logger.info("%s stream failed (%s); retry %d in %.1fs", self.provider_id, e, attempt, delay)
                time.sleep(delay)

    def count_tokens(self, history: Sequence[Turn], request: RequestConfig) -> TokenCount:
        return self.inner.count_tokens(history, request)

    def embed_content(self, texts: Sequence[str]) -> List[List[float]]:
        return self.inner.embed_content(texts)

    def close(self) -> None:
        close = getattr(self.inner, "close", None)
        if close is not None:
            close()
