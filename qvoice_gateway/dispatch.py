"""Classification and dispatch result types shared by the router and its handlers."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .intent_parser import ActionKind


class Classification(Enum):
    """How the router classified an utterance, in precedence order."""
    FOLLOWUP = "followup"
    TOKEN = "token"
    COMMAND = "command"
    INTENT = "intent"
    CHAT = "chat"


class DispatchKind(Enum):
    TEXT = "text"
    INTENT = "intent"
    ACTION = "action"


@dataclass
class DispatchResult:
    """Tagged result of a handler.

    TEXT carries ``content`` to append verbatim. INTENT carries an
    ``action``/``argument`` pair for the router to interpret. ACTION carries a
    side-effecting ``action`` that needs confirmation; ``content`` holds the
    details echoed back to the user.
    """
    kind: DispatchKind
    content: str = ""
    action: Optional[ActionKind] = None
    argument: str = ""

    @classmethod
    def text(cls, content: str) -> "DispatchResult":
        return cls(DispatchKind.TEXT, content=content)

    @classmethod
    def intent(cls, action: ActionKind, argument: str = "") -> "DispatchResult":
        return cls(DispatchKind.INTENT, action=action, argument=argument)

    @classmethod
    def confirm(cls, action: ActionKind, details: str) -> "DispatchResult":
        return cls(DispatchKind.ACTION, content=details, action=action)
