# tests/unit/test_cancel_and_errors.py

from __future__ import annotations
import sys
import threading
import time
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from parley.core.cancel import CancellationToken, run_cancellable  # type: ignore
from parley.core.errors import (  # type: ignore
    AuthRejected,
    BackendError,
    MissingCredential,
    ProviderClientError,
    RequestCancelled,
    TransportError,
    classify_status,
    is_retryable,
)


def test_cancel_runs_callbacks_once():
    token = CancellationToken()
    calls = []
    token.on_cancel(lambda: calls.append("a"))
    token.cancel()
    token.cancel()
    assert token.cancelled
    assert calls == ["a"]


def test_unregistered_callback_is_not_run():
    token = CancellationToken()
    calls = []
    unregister = token.on_cancel(lambda: calls.append("a"))
    unregister()
    token.cancel()
    assert calls == []


def test_on_cancel_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    calls = []
    token.on_cancel(lambda: calls.append("late"))
    assert calls == ["late"]


def test_failing_callback_does_not_stop_others():
    token = CancellationToken()
    calls = []

    def boom():
        raise RuntimeError("already closed")

    token.on_cancel(boom)
    token.on_cancel(lambda: calls.append("b"))
    token.cancel()
    assert calls == ["b"]


def test_run_cancellable_without_token_runs_inline():
    assert run_cancellable(lambda: threading.current_thread(), None) is threading.current_thread()


def test_run_cancellable_returns_result_and_propagates_errors():
    token = CancellationToken()
    assert run_cancellable(lambda: 42, token) == 42

    def fail():
        raise TransportError("down")

    with pytest.raises(TransportError):
        run_cancellable(fail, token)


def test_run_cancellable_refuses_a_cancelled_token():
    token = CancellationToken()
    token.cancel()
    calls = []
    with pytest.raises(RequestCancelled):
        run_cancellable(lambda: calls.append("ran"), token)
    assert calls == []


def test_run_cancellable_returns_on_cancel_and_discards_late_result():
    token = CancellationToken()
    release = threading.Event()
    discarded = []

    def slow():
        release.wait(5)
        return "late"

    threading.Timer(0.1, token.cancel).start()
    start = time.monotonic()
    with pytest.raises(RequestCancelled):
        run_cancellable(slow, token, discard=discarded.append)
    assert time.monotonic() - start < 1.0

    release.set()
    deadline = time.monotonic() + 2.0
    while not discarded and time.monotonic() < deadline:
        time.sleep(0.01)
    assert discarded == ["late"]


def test_classify_status():
    err = classify_status(403, "forbidden", auth_message="key checked", provider="deepseek")
    assert isinstance(err, AuthRejected)
    assert str(err) == "key checked"
    assert err.status == 403 and err.provider == "deepseek"

    err = classify_status(500, "DeepSeek API Error: boom")
    assert isinstance(err, BackendError)
    assert str(err) == "DeepSeek API Error: boom (Status: 500)"


def test_retryability():
    assert is_retryable(TransportError("down"))
    assert is_retryable(BackendError(429, "slow down"))
    assert is_retryable(BackendError(503, "unavailable"))
    assert not is_retryable(BackendError(400, "bad request"))
    assert not is_retryable(AuthRejected("no"))
    assert issubclass(MissingCredential, AuthRejected)
    assert issubclass(AuthRejected, ProviderClientError)
