from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .cancel import CancellationToken
from .content_generator import ContentGenerator
from .errors import ProviderError, TurnBudgetExceeded
from .events import ContentEvent, DoneEvent, ErrorEvent, StreamEvent, ToolCallEvent, is_terminal
from .messages import Content, FunctionCallPart, Part, Role, TextPart, Turn, UsageMetadata, user_turn
from .ports import ProviderConfig, RequestConfig, TokenCount

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Sequence[FunctionCallPart]], Sequence[Part]]

# ErrorEvent kinds for failures that are not ProviderErrors
TOOL_ERROR = "tool_error"
UNEXPECTED_ERROR = "unexpected_error"


class TurnStream:
    """
    Lazy, single-use event sequence for one user message.

    Iterate it to drive the request. Once the terminal event has been seen,
    ``turn`` holds the committed model Turn (None when the request was
    cancelled or failed). Iterating a second time raises RuntimeError.
    """

    def __init__(self, events: Iterator[StreamEvent]):
        self._events = events
        self._started = False
        self._chunks: List[str] = []
        self.turn: Optional[Turn] = None
        self.terminal: Optional[StreamEvent] = None

    def __iter__(self) -> Iterator[StreamEvent]:
        if self._started:
            raise RuntimeError("TurnStream is not restartable; send a new message instead")
        self._started = True
        return self._drive()

    def _drive(self) -> Iterator[StreamEvent]:
        try:
            while True:
                try:
                    event = next(self._events)
                except StopIteration as stop:
                    self.turn = stop.value
                    return
                if isinstance(event, ContentEvent):
                    self._chunks.append(event.text)
                elif is_terminal(event):
                    self.terminal = event
                yield event
        finally:
            self._events.close()

    def close(self) -> None:
        """Abandon the stream; nothing is committed."""
        self._started = True
        self._events.close()

    @property
    def done(self) -> Optional[DoneEvent]:
        return self.terminal if isinstance(self.terminal, DoneEvent) else None

    @property
    def error(self) -> Optional[ErrorEvent]:
        return self.terminal if isinstance(self.terminal, ErrorEvent) else None

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def usage(self) -> UsageMetadata:
        if self.turn is not None:
            return self.turn.usage
        return self.done.usage if self.done is not None else UsageMetadata()

    @property
    def cancelled(self) -> bool:
        return self.done is not None and self.done.cancelled

    @property
    def budget_exceeded(self) -> bool:
        return self.error is not None and self.error.kind == TurnBudgetExceeded.kind


class ChatSession:
    """
    Owns the conversation history and drives request/response cycles.

    History only changes when a message completes: a failed, cancelled or
    abandoned request leaves it exactly as it was, so resending the same
    input never duplicates entries. The session never retries on its own.
    """
    MAX_TURNS = 100

    def __init__(
        self,
        generator: ContentGenerator,
        config: Optional[ProviderConfig] = None,
        *,
        history: Optional[Sequence[Turn]] = None,
        request_defaults: Optional[Dict[str, Any]] = None,
        tool_handler: Optional[ToolHandler] = None,
    ):
        self.generator = generator
        self._config = config or generator.config
        self._history: List[Turn] = list(history or [])
        self._defaults = dict(request_defaults or {})
        self._tool_handler = tool_handler
        self._lock = threading.Lock()

    # ----- config -----

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def system_prompt(self) -> str:
        return self._config.system_prompt

    def update_system_prompt(self, system_prompt: str) -> None:
        """Takes effect on the next request; history is untouched."""
        with self._lock:
            self._config = self._config.with_system_prompt(system_prompt)

    def _request(self, signal: Optional[CancellationToken]) -> RequestConfig:
        with self._lock:
            prompt = self._config.system_prompt
        return RequestConfig(
            system_prompt=prompt,
            temperature=self._defaults.get("temperature"),
            top_p=self._defaults.get("top_p"),
            max_tokens=self._defaults.get("max_tokens"),
            cancel=signal,
        )

    # ----- history -----

    def get_history(self) -> List[Turn]:
        with self._lock:
            return list(self._history)

    def set_history(self, history: Sequence[Turn]) -> None:
        with self._lock:
            self._history = list(history)

    def add_history(self, turn: Turn) -> None:
        with self._lock:
            self._history.append(turn)

    def reset(self) -> None:
        """Start over with an empty history; the system prompt is kept."""
        with self._lock:
            self._history = []

    def _commit(self, staged: Sequence[Turn]) -> None:
        with self._lock:
            self._history.extend(staged)
            size = len(self._history)
        logger.debug("Committed %d turn(s); history size %d", len(staged), size)

    def _view(self, staged: Sequence[Turn]) -> tuple:
        with self._lock:
            return tuple(self._history) + tuple(staged)

    def _follow_up(self, turn: Turn) -> Optional[Turn]:
        calls = turn.function_calls
        if not calls or self._tool_handler is None:
            return None
        return Turn(Role.USER, tuple(self._tool_handler(calls)))

    # ----- sending -----

    def send_message_stream(
        self,
        content: Content,
        signal: Optional[CancellationToken] = None,
        max_turns: int = MAX_TURNS,
    ) -> TurnStream:
        return TurnStream(self._stream_cycles(user_turn(content), signal, max_turns))

    def _stream_cycles(self, user: Turn, signal: Optional[CancellationToken], max_turns: int):
        staged: List[Turn] = [user]
        last: Optional[Turn] = None
        remaining = max_turns
        while True:
            if remaining <= 0:
                msg = str(TurnBudgetExceeded(max_turns))
                logger.warning(msg)
                if last is not None:
                    self._commit(staged)
                yield ErrorEvent(TurnBudgetExceeded.kind, msg)
                return last
            remaining -= 1

            texts: List[str] = []
            calls: List[FunctionCallPart] = []
            done: Optional[DoneEvent] = None
            events = self.generator.generate_stream(self._view(staged), self._request(signal))
            try:
                for event in events:
                    if isinstance(event, DoneEvent):
                        done = event
                        continue
                    if isinstance(event, ContentEvent):
                        texts.append(event.text)
                    elif isinstance(event, ToolCallEvent):
                        calls.append(event.call)
                    yield event
            except ProviderError as exc:
                logger.info("Turn failed (%s): %s", exc.kind, exc)
                yield ErrorEvent(exc.kind, str(exc))
                raise
            except Exception as exc:
                logger.exception("Turn failed unexpectedly")
                yield ErrorEvent(UNEXPECTED_ERROR, str(exc))
                raise
            finally:
                close = getattr(events, "close", None)
                if close is not None:
                    close()

            done = done or DoneEvent()
            if done.cancelled:
                logger.info("Turn cancelled; history left unchanged")
                yield done
                return None

            parts: List[Part] = [TextPart("".join(texts))] if texts else []
            parts.extend(calls)
            last = Turn(Role.MODEL, tuple(parts), done.usage)
            staged.append(last)
            try:
                follow = self._follow_up(last)
            except Exception as exc:
                logger.warning("Tool handler failed: %s", exc)
                yield ErrorEvent(TOOL_ERROR, str(exc))
                raise
            if follow is not None:
                staged.append(follow)
                continue

            self._commit(staged)
            yield done
            return last

    def send_message(
        self,
        content: Content,
        signal: Optional[CancellationToken] = None,
        max_turns: int = MAX_TURNS,
    ) -> Turn:
        """Buffered variant. Raises TurnBudgetExceeded when max_turns runs out."""
        staged: List[Turn] = [user_turn(content)]
        for _ in range(max(0, max_turns)):
            model = self.generator.generate(self._view(staged), self._request(signal))
            staged.append(model)
            follow = self._follow_up(model)
            if follow is None:
                self._commit(staged)
                return model
            staged.append(follow)
        if len(staged) > 1:
            self._commit(staged)
        raise TurnBudgetExceeded(max_turns)

    def count_tokens(self) -> TokenCount:
        return self.generator.count_tokens(self.get_history(), self._request(None))
