"""Number-token library: compress frequent canonical phrases to dictionary indices.

Indices are positional. Reordering, inserting or removing dictionary entries
silently remaps every index already persisted in the store, so any change to
the dictionary needs a data migration of stored ``token_index`` values.
"""

import logging
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_DICTIONARY: tuple[str, ...] = (
    "Hello.",
    "How are you?",
    "I'm fine, thanks.",
    "What are you working on?",
    "I need help.",
    "Yes.",
    "No.",
    "That is correct.",
    "I agree.",
    "Please wait a moment.",
    "/ask",
    "/summary",
    "/optimize",
)

TOKEN_ERROR_TEMPLATE = "[TOKEN_ERROR: unknown index {index}]"


def encode(phrase: str, dictionary: Sequence[str]) -> Optional[int]:
    """Return the first dictionary position matching ``phrase``, or None.

    Matching is exact and case-insensitive; surrounding whitespace is ignored.
    """
    if not isinstance(phrase, str):
        return None
    needle = phrase.strip().lower()
    if not needle:
        return None
    for index, candidate in enumerate(dictionary):
        if candidate.lower() == needle:
            return index
    return None


def decode(index, dictionary: Sequence[str]) -> str:
    """Return the phrase at ``index`` or the token-error sentinel. Never raises."""
    if isinstance(index, bool) or not isinstance(index, int):
        return TOKEN_ERROR_TEMPLATE.format(index=index)
    if 0 <= index < len(dictionary):
        return dictionary[index]
    logger.warning(f"Token index {index} outside dictionary of size {len(dictionary)}")
    return TOKEN_ERROR_TEMPLATE.format(index=index)


class TokenCodec:
    """Dictionary bound once at process start and shared by encode and decode."""

    def __init__(self, dictionary: Optional[Sequence[str]] = None):
        self._dictionary = tuple(dictionary) if dictionary is not None else DEFAULT_TOKEN_DICTIONARY
        if not self._dictionary:
            raise ValueError("Token dictionary cannot be empty")

    @property
    def dictionary(self) -> tuple[str, ...]:
        return self._dictionary

    def __len__(self) -> int:
        return len(self._dictionary)

    def encode(self, phrase: str) -> Optional[int]:
        return encode(phrase, self._dictionary)

    def decode(self, index) -> str:
        return decode(index, self._dictionary)

    def listing(self) -> list[str]:
        """Lines of ``index: phrase`` for display."""
        return [f"{index}: {phrase}" for index, phrase in enumerate(self._dictionary)]
