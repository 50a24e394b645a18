"""Token estimation for prompt packs.

Estimators must be deterministic.  Approximate estimators over-estimate so
that packs stay within budget; exact ones guarantee that
``estimate_text(truncate_to_fit(text, n)) <= n``.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

import tiktoken

TRUNCATION_MARKER = "\n... [truncated]"


class TokenEstimator(ABC):
    """Counts and trims text for one provider."""

    provider: str = ""
    is_exact: bool = False

    @abstractmethod
    def estimate_text(self, text: str) -> int:
        """Number of tokens in *text*."""

    @abstractmethod
    def truncate_to_fit(self, text: str, max_tokens: int) -> str:
        """Prefix of *text* (plus a marker) that fits in *max_tokens*.

        Returns ``""`` when *max_tokens* <= 0 or *text* is empty.
        """


class GenericTokenEstimator(TokenEstimator):
    """Character-based estimate, conservative for most tokenizers."""

    provider = "generic"
    is_exact = False

    chars_per_token = 3.5
    safety_buffer = 0.10

    def estimate_text(self, text: str) -> int:
        base = math.ceil(len(text) / self.chars_per_token)
        return math.ceil(base * (1 + self.safety_buffer))

    def truncate_to_fit(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0 or not text:
            return ""
        if self.estimate_text(text) <= max_tokens:
            return text

        # leave room for the marker
        target_chars = math.floor((max_tokens / (1 + self.safety_buffer)) * self.chars_per_token) - 20
        if target_chars <= 0:
            return ""
        return text[:target_chars] + TRUNCATION_MARKER


class OpenAITokenEstimator(TokenEstimator):
    """Exact counts with tiktoken's ``cl100k_base`` encoding."""

    provider = "openai"
    is_exact = True

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self._encoder = tiktoken.get_encoding(encoding_name)

    def estimate_text(self, text: str) -> int:
        return len(self._encoder.encode(text))

    def truncate_to_fit(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0 or not text:
            return ""

        tokens = self._encoder.encode(text)
        if len(tokens) <= max_tokens:
            return text

        marker_tokens = self.estimate_text(TRUNCATION_MARKER)
        keep = max_tokens - marker_tokens
        while keep > 0:
            result = self._encoder.decode(tokens[:keep]) + TRUNCATION_MARKER
            if self.estimate_text(result) <= max_tokens:
                return result
            keep -= 1
        return ""


def create_estimator(provider: str) -> TokenEstimator:
    """Estimator for *provider*; unknown providers get the generic one."""
    name = (provider or "").lower()
    if name in ("openai", "gpt"):
        return OpenAITokenEstimator()
    return GenericTokenEstimator()
