# tests/unit/test_resilient_provider.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from parley.core.cancel import CancellationToken  # type: ignore
from parley.core.errors import AuthRejected, BackendError, TransportError  # type: ignore
from parley.core.events import ContentEvent, DoneEvent  # type: ignore
from parley.core.messages import model_turn, user_turn  # type: ignore
from parley.core.ports import RequestConfig, StreamingMode, TokenCount  # type: ignore
from parley.resilience.resilient_provider import ResilientProvider, ResiliencePolicy  # type: ignore

HISTORY = [user_turn("hi")]


# -------- helpers --------

class FlakyThenOK:
    provider_id = "flaky"
    model = "flaky"
    streaming = StreamingMode.NATIVE

    def __init__(self, fail_times=2, error=None):
        self.calls = 0
        self.fail_times = fail_times
        self.error = error or TransportError("boom")

    def send(self, history, request):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise self.error
        return model_turn("ok")

    def send_stream(self, history, request):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise self.error
        yield ContentEvent("ok")
        yield DoneEvent()

    def count_tokens(self, history, request):
        return TokenCount(42)

    def embed_content(self, texts):
        return [[1.0]]


class MidStreamBoom(FlakyThenOK):
    def send_stream(self, history, request):
        self.calls += 1
        yield ContentEvent("he")
        raise TransportError("boom mid-stream")


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("parley.resilience.resilient_provider.time.sleep", lambda *_: None)


# -------- tests --------

def test_send_retries_then_succeeds():
    inner = FlakyThenOK(fail_times=2)
    rp = ResilientProvider(inner, ResiliencePolicy(max_retries=5, base_delay=0))
    assert rp.send(HISTORY, RequestConfig()).text == "ok"
    assert inner.calls == 3


def test_retryable_backend_status_is_retried():
    inner = FlakyThenOK(fail_times=1, error=BackendError(503, "unavailable"))
    rp = ResilientProvider(inner, ResiliencePolicy(max_retries=2, base_delay=0))
    assert rp.send(HISTORY, RequestConfig()).text == "ok"


def test_non_retryable_errors_surface_immediately():
    for err in (AuthRejected("bad key"), BackendError(400, "bad request"), ValueError("nah")):
        inner = FlakyThenOK(fail_times=10, error=err)
        rp = ResilientProvider(inner, ResiliencePolicy(max_retries=3))
        with pytest.raises(type(err)):
            rp.send(HISTORY, RequestConfig())
        assert inner.calls == 1


def test_original_error_reraised_when_retries_run_out():
    inner = FlakyThenOK(fail_times=10)
    rp = ResilientProvider(inner, ResiliencePolicy(max_retries=2, base_delay=0))
    with pytest.raises(TransportError):
        rp.send(HISTORY, RequestConfig())
    assert inner.calls == 3


def test_total_timeout_enforced(monkeypatch):
    # Force elapsed time to exceed total_timeout immediately
    times = iter([0.0, 10.0, 10.0])
    monkeypatch.setattr("parley.resilience.resilient_provider.time.monotonic", lambda: next(times))
    inner = FlakyThenOK(fail_times=10)
    rp = ResilientProvider(inner, ResiliencePolicy(max_retries=5, base_delay=0, total_timeout=0.1))
    with pytest.raises(TransportError):
        rp.send(HISTORY, RequestConfig())
    assert inner.calls == 1


def test_no_retry_after_cancellation():
    token = CancellationToken()
    token.cancel()
    inner = FlakyThenOK(fail_times=1)
    rp = ResilientProvider(inner, ResiliencePolicy(max_retries=3, base_delay=0))
    with pytest.raises(TransportError):
        rp.send(HISTORY, RequestConfig(cancel=token))
    assert inner.calls == 1


def test_stream_retries_only_before_first_chunk():
    rp = ResilientProvider(FlakyThenOK(fail_times=1), ResiliencePolicy(max_retries=3, base_delay=0))
    assert list(rp.send_stream(HISTORY, RequestConfig())) == [ContentEvent("ok"), DoneEvent()]

    inner = MidStreamBoom()
    rp = ResilientProvider(inner, ResiliencePolicy(max_retries=3, base_delay=0))
    got = []
    with pytest.raises(TransportError):
        for event in rp.send_stream(HISTORY, RequestConfig()):
            got.append(event)
    assert got == [ContentEvent("he")]
    assert inner.calls == 1


def test_passthrough_surface():
    rp = ResilientProvider(FlakyThenOK(), ResiliencePolicy())
    assert rp.streaming is StreamingMode.NATIVE
    assert rp.model == "flaky"
    assert rp.count_tokens(HISTORY, RequestConfig()).total_tokens == 42
    assert rp.embed_content(["x"]) == [[1.0]]
    rp.close()  # inner has no close()

    closed = []
    inner = FlakyThenOK()
    inner.close = lambda: closed.append(True)
    ResilientProvider(inner, ResiliencePolicy()).close()
    assert closed == [True]
