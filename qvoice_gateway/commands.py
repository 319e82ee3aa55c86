"""Built-in slash commands for QVoiceTxt.

Each handler takes the raw argument string and the sender id and returns a
``DispatchResult``. Handlers raise ``ValidationError`` for bad arguments and
let gateway/store errors propagate; the router converts them to replies.
"""

import logging
from typing import Awaitable, Callable, Optional

from qvoice_orchestrator.reminders import ReminderScheduler, format_due_local, parse_remindme_args
from storage.message_store import MessageStore, Utterance

from .agent_client import AGENT_NAME, AgentClient
from .dispatch import DispatchResult
from .errors import ValidationError
from .intent_parser import ActionKind
from .token_codec import TokenCodec

logger = logging.getLogger(__name__)

HISTORY_TURNS = 10

ARCHIVE_CONFIRM_PROMPT = (
    f"{AGENT_NAME}: Archive the current conversation to the Nexus vault? Reply yes or no."
)

COMMAND_HELP = {
    "/ask": "/ask <text> - ask Agent Q a question",
    "/summary": "/summary - summarize the recent conversation",
    "/optimize": "/optimize [target] - optimization analysis (default: App Component)",
    "/weather": "/weather [location] - current weather",
    "/crypto": "/crypto [symbol] - latest crypto price",
    "/remindme": '/remindme <N><m|h> "<message>" - one-shot reminder',
    "/archive": "/archive - save this conversation (asks for confirmation)",
    "/admin": "/admin - session diagnostics",
    "/help": "/help - this list",
    "/tokenlist": "/tokenlist - phrases that are sent as number tokens",
}

CommandHandler = Callable[[str, str], Awaitable[DispatchResult]]


def recent_history(utterances: list[Utterance], user_id: str, max_turns: int = HISTORY_TURNS) -> list[dict]:
    """Last ``max_turns`` free-text turns as ``{sender, text}`` dicts."""
    relevant = [u for u in utterances if not u.is_tokenized and u.text][-max_turns:]
    return [
        {"sender": "user" if u.user_id == user_id else AGENT_NAME, "text": u.text}
        for u in relevant
    ]


class BuiltinCommands:
    """Registry of slash-command verbs and their handlers."""

    def __init__(
        self,
        store: MessageStore,
        codec: TokenCodec,
        agent: AgentClient,
        scheduler: Optional[ReminderScheduler] = None,
        default_location: str = "St. Louis,US",
        default_crypto: str = "BTC",
        status_provider: Optional[Callable[[], dict]] = None,
    ):
        self.store = store
        self.codec = codec
        self.agent = agent
        self.scheduler = scheduler
        self.default_location = default_location
        self.default_crypto = default_crypto
        self.status_provider = status_provider
        self._handlers: dict[str, CommandHandler] = {
            "/ask": self.ask,
            "/summary": self.summary,
            "/optimize": self.optimize,
            "/weather": self.weather,
            "/crypto": self.crypto,
            "/remindme": self.remindme,
            "/archive": self.archive,
            "/admin": self.admin,
            "/help": self.help,
            "/tokenlist": self.tokenlist,
        }

    @property
    def verbs(self) -> list[str]:
        return list(self._handlers)

    def lookup(self, verb: str) -> Optional[CommandHandler]:
        return self._handlers.get(verb.lower())

    def _history(self, user_id: str) -> list[dict]:
        return recent_history(self.store.query(limit=HISTORY_TURNS * 3), user_id)

    async def ask(self, args: str, user_id: str) -> DispatchResult:
        if not args:
            raise ValidationError("What would you like to ask?", usage=COMMAND_HELP["/ask"])
        return DispatchResult.text(await self.agent.ask(args, self._history(user_id)))

    async def summary(self, args: str, user_id: str) -> DispatchResult:
        return DispatchResult.text(await self.agent.summarize(self._history(user_id)))

    async def optimize(self, args: str, user_id: str) -> DispatchResult:
        return DispatchResult.text(await self.agent.optimize(args))

    async def weather(self, args: str, user_id: str) -> DispatchResult:
        return DispatchResult.text(await self.agent.weather(args or self.default_location))

    async def crypto(self, args: str, user_id: str) -> DispatchResult:
        symbol = (args.split()[0] if args else self.default_crypto).upper()
        return DispatchResult.text(await self.agent.crypto(symbol))

    async def remindme(self, args: str, user_id: str) -> DispatchResult:
        if self.scheduler is None:
            return DispatchResult.text(f"{AGENT_NAME}: Reminders are disabled in this session.")
        delay_ms, message = parse_remindme_args(args)
        record = self.scheduler.schedule(delay_ms, message)
        return DispatchResult.text(
            f'✅ Reminder set for {format_due_local(record.due_at_ms)}: "{message}" (ID: {record.id})'
        )

    async def archive(self, args: str, user_id: str) -> DispatchResult:
        return DispatchResult.confirm(ActionKind.ARCHIVE_CONFIRM, ARCHIVE_CONFIRM_PROMPT)

    async def admin(self, args: str, user_id: str) -> DispatchResult:
        status = self.status_provider() if self.status_provider else {}
        lines = [
            "🛠 Session diagnostics:",
            f"  User: {user_id}",
            f"  Phase: {status.get('phase', 'unknown')}",
            f"  Messages stored: {self.store.count()}",
            f"  Pending reminders: {self.store.count_reminders()}",
            f"  Archives: {len(self.store.list_archives(user_id))}",
            f"  Token dictionary: {len(self.codec)} phrases",
            f"  Agent API: {'live' if self.agent.is_live else 'offline (simulated)'}",
        ]
        if self.scheduler is not None:
            stats = self.scheduler.stats()
            lines.append(f"  Scheduler: ticks={stats['ticks']} last_error={stats['last_error'] or 'none'}")
        return DispatchResult.text("\n".join(lines))

    async def help(self, args: str, user_id: str) -> DispatchResult:
        lines = ["Available commands:"] + [f"  {line}" for line in COMMAND_HELP.values()]
        lines.append("Mention 'archive' or 'weather' in plain language, or just chat.")
        return DispatchResult.text("\n".join(lines))

    async def tokenlist(self, args: str, user_id: str) -> DispatchResult:
        lines = ["🔢 Token dictionary:"] + [f"  {line}" for line in self.codec.listing()]
        return DispatchResult.text("\n".join(lines))
