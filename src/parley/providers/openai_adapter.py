# src/parley/providers/openai_adapter.py
from __future__ import annotations
import logging
from functools import partial
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx
from openai import APIConnectionError, OpenAI

from parley.core.cancel import run_cancellable
from parley.core.errors import ProviderError, RequestCancelled, TransportError, classify_status
from parley.core.events import FINISH_CANCELLED, FINISH_STOP, ContentEvent, DoneEvent, StreamEvent
from parley.core.messages import Turn, UsageMetadata, model_turn
from parley.core.ports import ProviderConfig, RequestConfig, StreamingMode, TokenCount
from parley.core.tokens import TokenCounter
from parley.providers.chat_format import (
    auth_failure_message,
    build_messages,
    require_api_key,
    require_user_text,
    sampling_args,
    usage_from_payload,
)
from parley.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
_SAMPLING_KEYS = ("temperature", "top_p", "max_tokens")


def _classify_openai_exception(exc: Exception, config: ProviderConfig) -> Optional[ProviderError]:
    """
    Convert OpenAI/client exceptions into neutral provider errors.
    Returns None for anything that isn't a transport or API failure (those propagate untouched).
    """
    if isinstance(exc, ProviderError):
        return exc
    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None)
    if status is not None:
        body = getattr(exc, "body", None)
        msg = getattr(exc, "message", None) or str(exc)
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            msg = body["message"]
        return classify_status(
            int(status), msg,
            auth_message=auth_failure_message(config, "OpenAI", int(status)),
            provider=config.provider_id,
        )
    if isinstance(exc, (APIConnectionError, httpx.HTTPError)):
        return TransportError(f"OpenAI API unreachable: {exc}")
    return None


def _close(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is not None:
        close()


@ProviderRegistry.register("openai")
class OpenAIAdapter:
    """
    Native-streaming adapter over the OpenAI SDK (and OpenAI-compatible endpoints via base_url).
    - sampling 'params' act as defaults; RequestConfig values win
    - maps SDK errors to AuthRejected / BackendError / TransportError
    """
    streaming = StreamingMode.NATIVE

    def __init__(
        self,
        config: ProviderConfig,
        *,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        embedding_model: Optional[str] = None,
        client: Any = None,
    ):
        self.config = config
        self.model = config.model_id or DEFAULT_MODEL
        self.params = params or {}
        self.timeout = timeout
        self.base_url = base_url
        self.organization = organization
        self.embedding_model = embedding_model or DEFAULT_EMBEDDING_MODEL
        self.counter = TokenCounter()
        self._client = client

    @classmethod
    def create(cls, config: ProviderConfig, provider_cfg: Optional[Dict[str, Any]] = None) -> "OpenAIAdapter":
        provider_cfg = provider_cfg or {}
        logger.debug("Creating OpenAI adapter model=%s api_key=%s base_url=%s",
                     config.model_id, "SET" if config.api_key else "NOT SET", provider_cfg.get("base_url"))
        return cls(
            config,
            params=provider_cfg.get("params") or {},
            timeout=provider_cfg.get("timeout"),
            base_url=provider_cfg.get("base_url"),
            organization=provider_cfg.get("organization"),
            embedding_model=provider_cfg.get("embedding_model"),
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            client_kwargs: Dict[str, Any] = {"api_key": require_api_key(self.config, "OpenAI")}
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            if self.organization:
                client_kwargs["organization"] = self.organization
            self._client = OpenAI(**client_kwargs)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            _close(self._client)

    def _raise(self, exc: Exception) -> None:
        err = _classify_openai_exception(exc, self.config)
        if err is None:
            raise exc
        if err is exc:
            raise err
        raise err from exc

    def _build_args(self, history: Sequence[Turn], request: RequestConfig, *, stream: bool) -> Dict[str, Any]:
        args: Dict[str, Any] = {
            "model": self.model,
            "messages": build_messages(history, request.system_prompt),
            "stream": stream,
            **{k: v for k, v in self.params.items() if k not in _SAMPLING_KEYS},
            **sampling_args(request, self.params),
        }
        if stream:
            args["stream_options"] = {"include_usage": True}
        if self.timeout is not None:
            args["timeout"] = self.timeout
        return args

    def _prepare(self, history: Sequence[Turn]) -> None:
        require_user_text(history)
        require_api_key(self.config, "OpenAI")

    def send(self, history: Sequence[Turn], request: RequestConfig) -> Turn:
        self._prepare(history)
        args = self._build_args(history, request, stream=False)
        try:
            resp = run_cancellable(lambda: self.client.chat.completions.create(**args), request.cancel)
        except Exception as e:
            self._raise(e)
        msg = resp.choices[0].message
        return model_turn(msg.content or "", usage_from_payload(getattr(resp, "usage", None)))

    def send_stream(self, history: Sequence[Turn], request: RequestConfig) -> Iterator[StreamEvent]:
        self._prepare(history)
        args = self._build_args(history, request, stream=True)
        try:
            stream = run_cancellable(lambda: self.client.chat.completions.create(**args), request.cancel,
                                     discard=_close)
        except RequestCancelled:
            yield DoneEvent(finish_reason=FINISH_CANCELLED)
            return
        except Exception as e:
            self._raise(e)

        close = partial(_close, stream)
        unregister = request.cancel.on_cancel(close) if request.cancel else (lambda: None)
        usage = UsageMetadata()
        try:
            for chunk in stream:
                if request.cancelled:
                    break
                if getattr(chunk, "usage", None):
                    usage = usage_from_payload(chunk.usage)
                piece = None
                try:
                    piece = chunk.choices[0].delta.content
                except (AttributeError, IndexError, TypeError):
                    piece = None
                if piece:
                    yield ContentEvent(piece)
        except Exception as e:
            # closing the stream on cancel surfaces as a read error
            if not request.cancelled:
                self._raise(e)
        finally:
            unregister()
            close()

        yield DoneEvent(usage=usage, finish_reason=FINISH_CANCELLED if request.cancelled else FINISH_STOP)

    def count_tokens(self, history: Sequence[Turn], request: RequestConfig) -> TokenCount:
        return TokenCount(self.counter.count_turns(history, request.system_prompt), estimated=True)

    def embed_content(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        require_api_key(self.config, "OpenAI")
        try:
            resp = self.client.embeddings.create(model=self.embedding_model, input=list(texts))
        except Exception as e:
            self._raise(e)
        return [list(d.embedding) for d in resp.data]
