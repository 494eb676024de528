"""
Canonical turns <-> chat-completions wire format.

Shared by every backend that speaks the `{model, messages:[{role, content}]}`
request shape and answers with `choices[0].message.content` plus an optional
`usage{prompt_tokens, completion_tokens, total_tokens}` block.
"""
from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence

from parley.core.errors import EmptyRequest, MissingCredential
from parley.core.messages import Role, Turn, UsageMetadata, flatten_text, wire_role
from parley.core.ports import ProviderConfig, RequestConfig

Message = Dict[str, str]


def require_user_text(history: Sequence[Turn]) -> None:
    if not any(t.role is Role.USER and flatten_text(t.parts).strip() for t in history):
        raise EmptyRequest("Request has no user message with text to send")


def build_messages(history: Sequence[Turn], system_prompt: str) -> List[Message]:
    messages: List[Message] = []
    if system_prompt and system_prompt.strip():
        messages.append({"role": "system", "content": system_prompt})
    for turn in history:
        text = flatten_text(turn.parts)
        # blank content is rejected by these backends
        if not text.strip():
            continue
        messages.append({"role": wire_role(turn.role), "content": text})
    return messages


def sampling_args(request: RequestConfig, defaults: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Optional sampling fields: per-request values win over provider defaults; unset ones are omitted."""
    args: Dict[str, Any] = {}
    base = dict(defaults or {})
    for key, value in (("temperature", request.temperature),
                       ("top_p", request.top_p),
                       ("max_tokens", request.max_tokens)):
        chosen = value if value is not None else base.get(key)
        if chosen is not None:
            args[key] = chosen
    return args


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def usage_from_payload(usage: Any) -> UsageMetadata:
    """Accepts a dict or an SDK object; missing fields count as zero."""
    if usage is None:
        return UsageMetadata()
    get = usage.get if isinstance(usage, Mapping) else (lambda k: getattr(usage, k, None))
    return UsageMetadata(
        prompt_tokens=_as_int(get("prompt_tokens")),
        candidate_tokens=_as_int(get("completion_tokens")),
        total_tokens=_as_int(get("total_tokens")),
    )


def content_from_payload(payload: Any) -> str:
    try:
        return payload["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


def error_message_from_payload(payload: Any, fallback: str) -> str:
    try:
        msg = payload["error"]["message"]
    except (KeyError, TypeError):
        msg = None
    return str(msg) if msg else fallback


def require_api_key(config: ProviderConfig, label: str) -> str:
    if not config.api_key:
        raise MissingCredential(
            f"{label} API key is not configured. "
            f"Checked {config.describe_credentials()}. "
            f"Please set the API key in the environment or in providers.{config.provider_id}.apiKey.",
            provider=config.provider_id,
        )
    return config.api_key


def auth_failure_message(config: ProviderConfig, label: str, status: int) -> str:
    return (
        f"{label} API authentication failed (Status: {status}). "
        f"Checked {config.describe_credentials()}. "
        f"Please check your API key."
    )
