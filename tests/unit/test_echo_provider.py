# tests/unit/test_echo_provider.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from parley.core.cancel import CancellationToken  # type: ignore
from parley.core.errors import EmptyRequest, Unsupported  # type: ignore
from parley.core.events import ContentEvent, DoneEvent  # type: ignore
from parley.core.messages import UsageMetadata, user_turn  # type: ignore
from parley.core.ports import ProviderConfig, RequestConfig  # type: ignore
from parley.providers.echo import EchoProvider  # type: ignore


def _echo(words=("one", "two", "three")):
    return EchoProvider.create(ProviderConfig("echo", "echo-lorem"), {"token_delay": 0, "words": list(words)})


def test_stream_word_by_word_then_done():
    events = list(_echo().send_stream([user_turn("hello")], RequestConfig()))
    assert events == [
        ContentEvent("one "), ContentEvent("two "), ContentEvent("three"),
        DoneEvent(usage=UsageMetadata()),
    ]


def test_send_matches_stream_text():
    echo = _echo()
    turn = echo.send([user_turn("hello")], RequestConfig())
    streamed = "".join(e.text for e in echo.send_stream([user_turn("hello")], RequestConfig())
                       if isinstance(e, ContentEvent))
    assert turn.text == streamed == "one two three"


def test_default_reply_is_fifty_words():
    echo = EchoProvider(ProviderConfig("echo", ""), token_delay=0)
    assert len(echo.send([user_turn("x")], RequestConfig()).text.split()) == 50
    assert echo.model == "echo-lorem"


def test_cancel_stops_stream():
    token = CancellationToken()
    events = []
    for e in _echo().send_stream([user_turn("hello")], RequestConfig(cancel=token)):
        events.append(e)
        token.cancel()
    assert events[0] == ContentEvent("one ")
    assert isinstance(events[-1], DoneEvent) and events[-1].cancelled
    assert len(events) == 2


def test_empty_request_and_embeddings():
    with pytest.raises(EmptyRequest):
        _echo().send([], RequestConfig())
    with pytest.raises(Unsupported):
        _echo().embed_content(["x"])
