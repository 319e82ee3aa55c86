"""Command/intent router for QVoiceTxt.

Classifies each trimmed utterance with an explicit ordered rule table (first
match wins) and dispatches it:

1. follow-up to a pending confirmation
2. exact dictionary phrase, stored as a number token
3. registered slash command
4. unregistered slash command, treated as chat
5. message mentioning ``archive`` or ``weather``, parsed as an intent
6. chat fallback

Handler errors are converted to bot-visible text here; ``route`` never raises.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from storage.message_store import MessageStore

from .agent_client import AGENT_NAME, AgentClient
from .audio import AudioClip
from .commands import ARCHIVE_CONFIRM_PROMPT, BuiltinCommands, recent_history
from .dispatch import Classification, DispatchKind, DispatchResult
from .errors import (
    ApiStatusError,
    MalformedResponse,
    ServiceUnavailable,
    StoreError,
    ValidationError,
)
from .intent_parser import ActionKind, looks_like_intent, parse_intent
from .token_codec import TokenCodec

logger = logging.getLogger(__name__)

CONFIRM_WORDS = {"yes", "y"}
REJECT_WORDS = {"no", "n"}

GENERIC_FAILURE = f"⚠️ {AGENT_NAME}: Something went wrong while handling that. Please try again."
SERVICE_UNAVAILABLE_REPLY = f"⚠️ {AGENT_NAME}: Sorry, I couldn't reach the AI service right now. Please try again later."
MALFORMED_RESPONSE_REPLY = f"⚠️ {AGENT_NAME}: I received an unexpected response. Please try sending that again."
STORE_ERROR_REPLY = (
    f"⚠️ {AGENT_NAME}: The message store is unreachable right now. "
    "Commands that don't need it still work."
)
ARCHIVE_CANCELED_REPLY = "❌ Archive canceled. Your conversation was not saved."
FOLLOWUP_REPROMPT = "❓ I didn't catch that. Please answer yes or no. Send /archive to start over."


class RouteStatus(Enum):
    HANDLED = "handled"
    TOKENIZED = "tokenized"
    EMPTY = "empty"
    NOT_READY = "not_ready"
    BUSY = "busy"


@dataclass
class PendingConfirmation:
    """Action awaiting a yes/no follow-up. Lives for exactly one utterance."""
    action: ActionKind
    details: str


@dataclass
class RouteResult:
    """Outcome of routing one utterance.

    Attributes:
        status: Whether the utterance was handled, tokenized or rejected
        classification: Rule that matched, if any
        reply: Bot reply text (None for tokenized or rejected input)
        token_index: Dictionary index when the utterance was tokenized
        stored: False if persisting the user or bot utterance failed
    """
    status: RouteStatus
    classification: Optional[Classification] = None
    reply: Optional[str] = None
    token_index: Optional[int] = None
    stored: bool = True

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "classification": self.classification.value if self.classification else None,
            "reply": self.reply,
            "token_index": self.token_index,
            "stored": self.stored,
        }


@dataclass
class SpeechResult:
    clip: Optional[AudioClip] = None
    error: Optional[str] = None


Handler = Callable[[str, str], Awaitable[DispatchResult]]


@dataclass
class RoutingRule:
    classification: Classification
    predicate: Callable[[str], bool]
    handler: Optional[Handler]


def error_reply(exc: Exception) -> str:
    """Map an exception to the bot-visible reply for it."""
    if isinstance(exc, ValidationError):
        lines = [f"⚠️ {exc}"]
        if exc.usage:
            lines.append(f"Usage: {exc.usage}")
        lines.append("Type /help for all commands.")
        return "\n".join(lines)
    if isinstance(exc, ApiStatusError):
        return f"⚠️ {AGENT_NAME}: The AI service returned an error (status {exc.status_code})."
    if isinstance(exc, MalformedResponse):
        return MALFORMED_RESPONSE_REPLY
    if isinstance(exc, ServiceUnavailable):
        return SERVICE_UNAVAILABLE_REPLY
    if isinstance(exc, StoreError):
        return STORE_ERROR_REPLY
    return GENERIC_FAILURE


class CommandRouter:
    """Classify, dispatch and own the session's pending confirmation."""

    def __init__(
        self,
        store: MessageStore,
        codec: TokenCodec,
        agent: AgentClient,
        commands: BuiltinCommands,
        bot_user_id: str,
        is_ready: Optional[Callable[[], bool]] = None,
    ):
        self.store = store
        self.codec = codec
        self.agent = agent
        self.commands = commands
        self.bot_user_id = bot_user_id
        self.is_ready = is_ready or (lambda: True)
        self._pending: Optional[PendingConfirmation] = None
        self.rules: list[RoutingRule] = [
            RoutingRule(Classification.FOLLOWUP, lambda s: self._pending is not None, self._handle_followup),
            RoutingRule(Classification.TOKEN, lambda s: self.codec.encode(s) is not None, None),
            RoutingRule(Classification.COMMAND, self._is_registered_command, self._handle_command),
            RoutingRule(Classification.CHAT, lambda s: s.startswith("/"), self._handle_chat),
            RoutingRule(Classification.INTENT, looks_like_intent, self._handle_intent),
            RoutingRule(Classification.CHAT, lambda s: True, self._handle_chat),
        ]

    @property
    def pending(self) -> Optional[PendingConfirmation]:
        return self._pending

    def reset(self) -> None:
        self._pending = None

    def match_rule(self, text: str) -> RoutingRule:
        for rule in self.rules:
            if rule.predicate(text):
                return rule
        raise AssertionError("routing table has no fallback rule")

    def classify(self, text: str) -> Classification:
        return self.match_rule(text.strip()).classification

    async def route(self, text: str, user_id: str) -> RouteResult:
        """Route one utterance from ``user_id``. Never raises."""
        s = (text or "").strip()
        if not s:
            return RouteResult(RouteStatus.EMPTY)
        if not self.is_ready():
            return RouteResult(RouteStatus.NOT_READY)

        rule = self.match_rule(s)
        logger.debug(f"Classified input as {rule.classification.value}")

        if rule.classification is Classification.TOKEN:
            return self._store_token(s, user_id)

        stored = self._append(user_id, s)
        reply = await self._dispatch(rule, s, user_id)
        stored = self._append(self.bot_user_id, reply) and stored
        return RouteResult(RouteStatus.HANDLED, rule.classification, reply, stored=stored)

    async def speak(self, text: str) -> SpeechResult:
        """Synthesize ``text`` to a WAV clip. Never raises."""
        if not text or not text.strip():
            return SpeechResult(error="Nothing to speak.")
        try:
            return SpeechResult(clip=await self.agent.synthesize_speech(text.strip()))
        except Exception as exc:
            logger.error(f"Speech synthesis failed: {exc}", exc_info=not isinstance(exc, ServiceUnavailable))
            return SpeechResult(error=error_reply(exc))

    def _store_token(self, s: str, user_id: str) -> RouteResult:
        index = self.codec.encode(s)
        try:
            self.store.append(user_id, token_index=index)
        except StoreError as e:
            logger.error(f"Failed to store token utterance: {e}")
            return RouteResult(
                RouteStatus.TOKENIZED, Classification.TOKEN, STORE_ERROR_REPLY, token_index=index, stored=False
            )
        return RouteResult(RouteStatus.TOKENIZED, Classification.TOKEN, token_index=index)

    def _append(self, user_id: str, text: str) -> bool:
        try:
            self.store.append(user_id, text=text)
            return True
        except StoreError as e:
            logger.error(f"Failed to store message from {user_id}: {e}")
            return False

    async def _dispatch(self, rule: RoutingRule, s: str, user_id: str) -> str:
        try:
            result = await rule.handler(s, user_id)
            return await self._interpret(result, user_id)
        except ValidationError as e:
            logger.info(f"Invalid command arguments: {e}")
            return error_reply(e)
        except StoreError as e:
            logger.error(f"Store error during dispatch: {e}", exc_info=True)
            return error_reply(e)
        except (ServiceUnavailable, MalformedResponse, ApiStatusError) as e:
            logger.warning(f"Gateway error during dispatch: {e}")
            return error_reply(e)
        except Exception as e:
            logger.exception(f"Handler failed for {rule.classification.value} input: {e}")
            return GENERIC_FAILURE

    async def _interpret(self, result: DispatchResult, user_id: str) -> str:
        if result.kind is DispatchKind.TEXT:
            return result.content

        if result.kind is DispatchKind.ACTION:
            self._pending = PendingConfirmation(result.action, result.content)
            logger.info(f"Awaiting confirmation for {result.action.value}")
            return result.content

        action = result.action
        if action is ActionKind.ARCHIVE_ACCESS:
            return self._archive_listing(user_id)
        if action is ActionKind.ARCHIVE_SAVE:
            return await self._interpret(
                DispatchResult.confirm(ActionKind.ARCHIVE_CONFIRM, ARCHIVE_CONFIRM_PROMPT), user_id
            )
        if action is ActionKind.WEATHER_LOOKUP:
            return (await self.commands.weather(result.argument, user_id)).content
        return await self.agent.chat(result.argument, self._history(user_id, current=result.argument))

    async def _handle_followup(self, s: str, user_id: str) -> DispatchResult:
        pending = self._pending
        # Cleared whatever the answer is; an unrecognized answer does not keep it alive.
        self._pending = None
        answer = s.lower().strip(" .!")
        if answer in CONFIRM_WORDS:
            return self._execute_confirmed(pending, user_id)
        if answer in REJECT_WORDS:
            logger.info(f"Confirmation for {pending.action.value} rejected")
            return DispatchResult.text(ARCHIVE_CANCELED_REPLY)
        return DispatchResult.text(FOLLOWUP_REPROMPT)

    def _execute_confirmed(self, pending: PendingConfirmation, user_id: str) -> DispatchResult:
        if pending.action is ActionKind.ARCHIVE_CONFIRM:
            utterances = self.store.query()
            archive = self.store.save_archive(user_id, utterances)
            return DispatchResult.text(
                f"💾 Conversation archived: {archive.message_count} messages saved to the "
                f"Nexus vault (archive #{archive.id})."
            )
        logger.warning(f"No executor for confirmed action {pending.action.value}")
        return DispatchResult.text(GENERIC_FAILURE)

    def _is_registered_command(self, s: str) -> bool:
        return s.startswith("/") and self.commands.lookup(s.split()[0]) is not None

    async def _handle_command(self, s: str, user_id: str) -> DispatchResult:
        parts = s.split(maxsplit=1)
        handler = self.commands.lookup(parts[0])
        return await handler(parts[1].strip() if len(parts) > 1 else "", user_id)

    async def _handle_intent(self, s: str, user_id: str) -> DispatchResult:
        intent = parse_intent(s)
        return DispatchResult.intent(intent.action, intent.argument)

    async def _handle_chat(self, s: str, user_id: str) -> DispatchResult:
        return DispatchResult.text(await self.agent.chat(s, self._history(user_id, current=s)))

    def _history(self, user_id: str, current: Optional[str] = None) -> list[dict]:
        try:
            utterances = self.store.query(limit=30)
        except StoreError as e:
            logger.warning(f"Chat history unavailable, continuing without it: {e}")
            return []
        # Leave the current message out of the context if it was stored.
        if current is not None and utterances:
            last = utterances[-1]
            if last.user_id == user_id and last.text == current:
                utterances = utterances[:-1]
        return recent_history(utterances, user_id)

    def _archive_listing(self, user_id: str) -> str:
        archives = self.store.list_archives(user_id)
        if not archives:
            return f"📂 {AGENT_NAME}: No archived conversations yet. Send /archive to save this one."
        lines = [f"📂 Archived conversations ({len(archives)}):"]
        for archive in archives[:10]:
            lines.append(f"  #{archive.id} - {archive.message_count} messages, saved {archive.created_at}")
        return "\n".join(lines)
