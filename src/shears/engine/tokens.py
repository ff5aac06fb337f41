"""Token counting implementations for Shears.

Provides TiktokenCounter (savings accounting) and CharTokenCounter
(the cheap chars/4 estimate used by compaction).  Both implement the
TokenCounter protocol from protocols.py.
"""

from __future__ import annotations

import json

CHARS_PER_TOKEN = 4


def _text_of(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


class TiktokenCounter:
    """Token counter using tiktoken (OpenAI's tokenizer).

    Falls back to o200k_base encoding if model is unknown.

    Implements the TokenCounter protocol.
    """

    def __init__(self, model: str = "gpt-4o", encoding_name: str | None = None) -> None:
        import tiktoken

        if encoding_name is not None:
            self._enc = tiktoken.get_encoding(encoding_name)
        else:
            try:
                self._enc = tiktoken.encoding_for_model(model)
            except KeyError:
                self._enc = tiktoken.get_encoding("o200k_base")

        self._encoding_name = self._enc.name

    @property
    def encoding_name(self) -> str:
        """Name of the tiktoken encoding being used."""
        return self._encoding_name

    def count_text(self, text: str) -> int:
        """Count tokens in a plain text string. Returns 0 for empty string."""
        if not text:
            return 0
        return len(self._enc.encode(text, disallowed_special=()))

    def count_messages(self, messages: list[dict]) -> int:
        """Count tokens in a message list including per-message overhead.

        Structured (non-string) content is counted by its JSON form, so
        provider-specific block layouts are approximated rather than
        skipped.
        """
        if not messages:
            return 0
        total = 0
        for message in messages:
            total += 3  # per-message overhead
            for key, value in message.items():
                if value is None:
                    continue
                total += self.count_text(_text_of(value))
                if key == "name":
                    total += 1
        total += 3  # response primer
        return total


class CharTokenCounter:
    """Token estimate of one token per four characters.

    Implements the TokenCounter protocol.
    """

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN) -> None:
        self._chars_per_token = chars_per_token

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        return -(-len(text) // self._chars_per_token)

    def count_messages(self, messages: list[dict]) -> int:
        if not messages:
            return 0
        return self.count_text(_text_of(messages))
