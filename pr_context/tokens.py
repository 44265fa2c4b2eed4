"""Token counting: a cheap length estimate and pluggable exact counters."""

from __future__ import annotations

import asyncio
import math
import os
from typing import Protocol

import tiktoken

CHARS_PER_TOKEN = 3.5
DEFAULT_TOKEN_ENCODING = "cl100k_base"
TOKEN_ENCODING_ENV_VAR = "PR_CONTEXT_TOKEN_ENCODING"


class TokenCounter(Protocol):
    """Protocol for exact, asynchronous tokenizers."""

    async def __call__(self, text: str) -> int:
        """Return the exact token count for ``text``."""


def estimate_token_count(text: str) -> int:
    """Approximate token count from string length alone."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def resolve_token_encoding(encoding_name: str | None = None) -> str:
    """Resolve tokenizer encoding with explicit value, env override, then default."""
    return encoding_name or os.getenv(TOKEN_ENCODING_ENV_VAR) or DEFAULT_TOKEN_ENCODING


class TiktokenCounter:
    """Exact token counter backed by a tiktoken encoding.

    The encoding is loaded on first use; encoding runs in a worker thread so
    several segments can be measured concurrently.
    """

    def __init__(self, encoding_name: str | None = None) -> None:
        self._encoding_name = resolve_token_encoding(encoding_name)
        self._encoding: tiktoken.Encoding | None = None

    @property
    def encoding_name(self) -> str:
        return self._encoding_name

    def _get_encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self._encoding_name)
        return self._encoding

    def count_sync(self, text: str) -> int:
        """Count tokens on the calling thread."""
        # Special-token text inside a diff is ordinary content.
        return len(self._get_encoding().encode(text, disallowed_special=()))

    async def __call__(self, text: str) -> int:
        return await asyncio.to_thread(self.count_sync, text)
