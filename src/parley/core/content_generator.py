from __future__ import annotations
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from parley.core.events import StreamEvent
from parley.core.messages import Turn
from parley.core.ports import Provider, ProviderConfig, RequestConfig, StreamingMode, TokenCount
from parley.providers.registry import ProviderRegistry
from parley.resilience.resilient_provider import ResiliencePolicy, ResilientProvider

logger = logging.getLogger(__name__)


class ContentGenerator:
    """
    One interface over whichever adapter the configuration selects.

    The adapter and its streaming mode are fixed when the generator is built;
    nothing is re-detected per call.
    """

    def __init__(self, adapter: Provider, config: ProviderConfig):
        self.adapter = adapter
        self.config = config

    @classmethod
    def create(
        cls,
        config: ProviderConfig,
        provider_cfg: Optional[Dict[str, Any]] = None,
        *,
        retry_policy: Optional[ResiliencePolicy] = None,
    ) -> "ContentGenerator":
        """Raises UnsupportedProvider for ids no adapter is registered under."""
        ProviderRegistry.ensure_imports()
        Adapter = ProviderRegistry.get(config.provider_id)
        logger.debug("createContentGenerator provider=%s model=%s", config.provider_id, config.model_id)
        adapter = Adapter.create(config, provider_cfg or {})
        if retry_policy is not None and retry_policy.max_retries > 0:
            adapter = ResilientProvider(adapter, policy=retry_policy)
        return cls(adapter, config)

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @property
    def model_id(self) -> str:
        return getattr(self.adapter, "model", self.config.model_id)

    @property
    def streaming(self) -> StreamingMode:
        return self.adapter.streaming

    def generate(self, history: Sequence[Turn], request: RequestConfig) -> Turn:
        return self.adapter.send(history, request)

    def generate_stream(self, history: Sequence[Turn], request: RequestConfig) -> Iterator[StreamEvent]:
        return iter(self.adapter.send_stream(history, request))

    def count_tokens(self, history: Sequence[Turn], request: Optional[RequestConfig] = None) -> TokenCount:
        """Best-effort estimate; never an exact count."""
        request = request or RequestConfig(system_prompt=self.config.system_prompt)
        return self.adapter.count_tokens(history, request)

    def embed_content(self, texts: Sequence[str]) -> List[List[float]]:
        """Raises Unsupported for backends without embeddings."""
        return self.adapter.embed_content(texts)

    def close(self) -> None:
        """Release the adapter's HTTP client, if it holds one."""
        close = getattr(self.adapter, "close", None)
        if close is not None:
            close()
