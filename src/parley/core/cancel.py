from __future__ import annotations
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .errors import RequestCancelled

T = TypeVar("T")

_POLL_SECONDS = 0.05


class CancellationToken:
    """
    Caller-owned signal that aborts an in-flight request.
    Adapters register a callback (usually "close the HTTP response") for the
    duration of a call; cancel() runs the callbacks once.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                # closing an already-finished response is not an error
                pass

    def on_cancel(self, cb: Callable[[], None]) -> Callable[[], None]:
        """Register cb; returns an unregister function. Runs cb now if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)

                def unregister() -> None:
                    with self._lock:
                        if cb in self._callbacks:
                            self._callbacks.remove(cb)
                return unregister
        cb()
        return lambda: None


def _drop(value: Any, discard: Optional[Callable[[Any], Any]]) -> None:
    if discard is None:
        return
    try:
        discard(value)
    except Exception:
        # already closed by the other thread
        pass


def run_cancellable(
    fn: Callable[[], T],
    cancel: Optional[CancellationToken],
    *,
    discard: Optional[Callable[[T], Any]] = None,
) -> T:
    """
    Run a blocking call so that cancel() returns control to the caller at once.

    The call runs on a daemon worker thread while the caller waits for either
    its result or the token. On cancel, RequestCancelled is raised straight
    away; a result the worker produces afterwards is handed to ``discard``
    (e.g. to close an SDK stream) and otherwise dropped. Errors raised by the
    call propagate unchanged when the token was not cancelled.
    """
    if cancel is None:
        return fn()
    if cancel.cancelled:
        raise RequestCancelled("Request cancelled before it was sent")

    done = threading.Event()
    outcome: Dict[str, Any] = {}

    def worker() -> None:
        try:
            outcome["value"] = fn()
        except BaseException as e:
            outcome["error"] = e
        finally:
            done.set()
        if "value" in outcome and cancel.cancelled:
            _drop(outcome["value"], discard)

    unregister = cancel.on_cancel(done.set)
    threading.Thread(target=worker, name="parley-request", daemon=True).start()
    try:
        # short waits keep the main thread free to run the SIGINT handler
        while not done.wait(_POLL_SECONDS):
            pass
    finally:
        unregister()

    if cancel.cancelled:
        if "value" in outcome:
            _drop(outcome["value"], discard)
        raise RequestCancelled("Request cancelled")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]
