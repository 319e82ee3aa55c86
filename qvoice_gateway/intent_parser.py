"""Deterministic natural-language intent parser for QVoiceTxt.

Maps plain English messages mentioning the archive or the weather to an
``(action, argument)`` pair. There is no language model here, only substring
and pattern matching, so results are fully reproducible in tests.
"""

import re
from dataclasses import dataclass
from enum import Enum


class ActionKind(Enum):
    """Actions the router knows how to interpret or confirm."""
    ARCHIVE_CONFIRM = "ARCHIVE_CONFIRM"
    ARCHIVE_SAVE = "ARCHIVE_SAVE"
    ARCHIVE_ACCESS = "ARCHIVE_ACCESS"
    WEATHER_LOOKUP = "WEATHER_LOOKUP"
    CHAT = "CHAT"


INTENT_KEYWORDS = ("archive", "weather")

_SAVE_PATTERN = re.compile(r"\b(save|store|keep|back\s*up)\b")
_LOCATION_PATTERN = re.compile(r"\bweather\b.*?\b(?:in|for|at)\s+(.+)$", re.IGNORECASE)


@dataclass
class IntentResult:
    """Parsed intent.

    Attributes:
        action: What the user wants done
        argument: Target of the action (location for weather, empty for archive),
            or the original text for CHAT
    """
    action: ActionKind
    argument: str = ""


def looks_like_intent(text: str) -> bool:
    """True if the message mentions a keyword the intent parser handles."""
    lowered = text.lower()
    return any(keyword in lowered for keyword in INTENT_KEYWORDS)


def parse_intent(text: str) -> IntentResult:
    """Parse a message into an intent, falling back to CHAT."""
    text = text.strip()
    lowered = text.lower()

    if "archive" in lowered:
        if _SAVE_PATTERN.search(lowered) or lowered == "archive_save":
            return IntentResult(ActionKind.ARCHIVE_SAVE)
        return IntentResult(ActionKind.ARCHIVE_ACCESS)

    if "weather" in lowered:
        match = _LOCATION_PATTERN.search(text)
        location = match.group(1).strip().rstrip("?.!") if match else ""
        return IntentResult(ActionKind.WEATHER_LOOKUP, location)

    return IntentResult(ActionKind.CHAT, text)
