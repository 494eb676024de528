# src/parley/core/tokens.py
from __future__ import annotations
from typing import Iterable, Optional

import tiktoken

from .messages import Turn, flatten_text


def _rough_token_count(text: str) -> int:
    # Fallback heuristic ≈ 4 chars/token
    if not text:
        return 0
    return max(1, (len(text) + 3) // 4)


class TokenCounter:
    """
    Best-effort token estimate for a conversation.
    Uses a tiktoken encoding when it can be loaded; otherwise a simple heuristic.
    Callers must not treat the result as exact: backends tokenize differently.
    """
    PER_MESSAGE_OVERHEAD = 4  # role, separators

    def __init__(self, encoding_name: Optional[str] = "cl100k_base"):
        self.encoding_name = encoding_name
        self._enc = None
        self._loaded = False

    def _encoding(self):
        if not self._loaded:
            self._loaded = True
            if self.encoding_name:
                try:
                    self._enc = tiktoken.get_encoding(self.encoding_name)
                except Exception:
                    # encodings are downloaded on first use; offline means heuristic
                    self._enc = None
        return self._enc

    def count_text(self, text: str) -> int:
        enc = self._encoding()
        if enc is not None:
            try:
                return len(enc.encode(text))
            except Exception:
                pass
        return _rough_token_count(text)

    def count_turns(self, turns: Iterable[Turn], system_prompt: str = "") -> int:
        total = 0
        if system_prompt.strip():
            total += self.PER_MESSAGE_OVERHEAD + self.count_text(system_prompt)
        for t in turns:
            total += self.PER_MESSAGE_OVERHEAD
            total += self.count_text(flatten_text(t.parts))
        return total
