# src/parley/providers/deepseek.py
from __future__ import annotations
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from parley.core.cancel import run_cancellable
from parley.core.errors import BackendError, RequestCancelled, TransportError, Unsupported, classify_status
from parley.core.events import FINISH_CANCELLED, ContentEvent, DoneEvent, StreamEvent
from parley.core.messages import Turn, model_turn
from parley.core.ports import ProviderConfig, RequestConfig, StreamingMode, TokenCount
from parley.core.tokens import TokenCounter
from parley.providers.chat_format import (
    auth_failure_message,
    build_messages,
    content_from_payload,
    error_message_from_payload,
    require_api_key,
    require_user_text,
    sampling_args,
    usage_from_payload,
)
from parley.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEEPSEEK_API_URL = "https://api.deepseek.com/v1/chat/completions"
DEFAULT_MODEL = "deepseek-chat"
DEFAULT_TIMEOUT = 120.0


@ProviderRegistry.register("deepseek")
class DeepSeekAdapter:
    """
    Buffering adapter for the DeepSeek chat-completions REST API.

    Every request is sent with ``stream: false``. ``send_stream`` performs the
    same buffered call and emits the whole reply as a single ContentEvent
    followed by DoneEvent, which consumers can't tell apart from a one-chunk
    native stream.
    """
    streaming = StreamingMode.BUFFERED

    def __init__(
        self,
        config: ProviderConfig,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config
        self.model = config.model_id or DEFAULT_MODEL
        self.url = base_url or DEEPSEEK_API_URL
        self.params = params or {}
        self.counter = TokenCounter()
        self._http = httpx.Client(timeout=timeout or DEFAULT_TIMEOUT, transport=transport)

    @classmethod
    def create(cls, config: ProviderConfig, provider_cfg: Optional[Dict[str, Any]] = None) -> "DeepSeekAdapter":
        provider_cfg = provider_cfg or {}
        logger.debug("Creating DeepSeek adapter model=%s api_key=%s url=%s",
                     config.model_id, "SET" if config.api_key else "NOT SET",
                     provider_cfg.get("base_url") or DEEPSEEK_API_URL)
        return cls(
            config,
            base_url=provider_cfg.get("base_url"),
            timeout=provider_cfg.get("timeout"),
            params=provider_cfg.get("params") or {},
        )

    def close(self) -> None:
        self._http.close()

    def _payload(self, history: Sequence[Turn], request: RequestConfig) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": build_messages(history, request.system_prompt),
            "stream": False,
            **sampling_args(request, self.params),
        }

    def _post(self, payload: Dict[str, Any], api_key: str, request: RequestConfig) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        cancel = request.cancel
        try:
            with self._http.stream("POST", self.url, json=payload, headers=headers) as response:
                unregister = cancel.on_cancel(response.close) if cancel else (lambda: None)
                try:
                    response.read()
                finally:
                    unregister()
        except (httpx.HTTPError, httpx.StreamError) as e:
            if request.cancelled:
                raise RequestCancelled("Request cancelled") from e
            raise TransportError(f"DeepSeek API unreachable: {e}") from e

        if request.cancelled:
            raise RequestCancelled("Request cancelled")

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code < 200 or response.status_code >= 300:
            msg = error_message_from_payload(data, response.reason_phrase or "request failed")
            raise classify_status(
                response.status_code,
                f"DeepSeek API Error: {msg}",
                auth_message=auth_failure_message(self.config, "DeepSeek", response.status_code),
                provider=self.config.provider_id,
            )
        if not isinstance(data, dict):
            raise BackendError(response.status_code, "DeepSeek API Error: response was not JSON")
        return data

    def send(self, history: Sequence[Turn], request: RequestConfig) -> Turn:
        require_user_text(history)
        api_key = require_api_key(self.config, "DeepSeek")
        payload = self._payload(history, request)
        data = run_cancellable(lambda: self._post(payload, api_key, request), request.cancel)
        return model_turn(content_from_payload(data), usage_from_payload(data.get("usage")))

    def send_stream(self, history: Sequence[Turn], request: RequestConfig) -> Iterator[StreamEvent]:
        try:
            turn = self.send(history, request)
        except RequestCancelled:
            yield DoneEvent(finish_reason=FINISH_CANCELLED)
            return
        yield ContentEvent(turn.text)
        yield DoneEvent(usage=turn.usage)

    def count_tokens(self, history: Sequence[Turn], request: RequestConfig) -> TokenCount:
        return TokenCount(self.counter.count_turns(history, request.system_prompt), estimated=True)

    def embed_content(self, texts: Sequence[str]) -> List[List[float]]:
        raise Unsupported("Embedding is not supported by the deepseek provider")
