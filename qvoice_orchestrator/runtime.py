"""Wires the QVoiceTxt components together from a ``Config``.

Every collaborator is constructed here and passed in through constructors;
there is no module-level store or auth handle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from qvoice_gateway.agent_client import AgentClient
from qvoice_gateway.api_gateway import RetryingApiGateway
from qvoice_gateway.commands import BuiltinCommands
from qvoice_gateway.router import CommandRouter
from qvoice_gateway.session import ChatSession
from qvoice_gateway.token_codec import TokenCodec
from storage.message_store import MessageStore, SQLiteMessageStore

from .config import Config
from .reminders import ReminderScheduler
from .state_paths import resolve_store_db_path

logger = logging.getLogger(__name__)


@dataclass
class ChatRuntime:
    """All long-lived objects of one running QVoiceTxt instance."""

    config: Config
    codec: TokenCodec
    agent: AgentClient
    session: ChatSession
    _store_factory: Callable[[], MessageStore]
    store: Optional[MessageStore] = None
    scheduler: Optional[ReminderScheduler] = None
    _closed: bool = field(default=False, repr=False)

    def connect_store(self) -> MessageStore:
        """Store connector handed to the session; creates the scheduler bound to the store."""
        if self.store is None:
            self.store = self._store_factory()
            self.scheduler = ReminderScheduler(
                self.store,
                sender_id=self.config.bot_user_id,
                interval_seconds=self.config.reminder_interval_seconds,
                batch_size=self.config.reminder_batch_size,
            )
        return self.store

    def build_router(self, store: MessageStore, is_ready: Callable[[], bool]) -> CommandRouter:
        commands = BuiltinCommands(
            store=store,
            codec=self.codec,
            agent=self.agent,
            scheduler=self.scheduler,
            default_location=self.config.default_location,
            default_crypto=self.config.default_crypto,
            status_provider=self.session.status_snapshot,
        )
        return CommandRouter(
            store=store,
            codec=self.codec,
            agent=self.agent,
            commands=commands,
            bot_user_id=self.config.bot_user_id,
            is_ready=is_ready,
        )

    async def start(self, run_scheduler: bool = True) -> None:
        """Bring the session to READY and start reminder polling."""
        await self.session.start()
        if run_scheduler and self.scheduler is not None and not self.scheduler.is_alive():
            self.scheduler.start()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.scheduler is not None:
            self.scheduler.stop()
            if self.scheduler.is_alive():
                self.scheduler.join(timeout=5)
        await self.agent.close()
        if self.store is not None:
            self.store.close()
        logger.info("Runtime closed")


def build_runtime(
    config: Config,
    store_factory: Optional[Callable[[], MessageStore]] = None,
    gateway: Optional[RetryingApiGateway] = None,
    offline: bool = False,
) -> ChatRuntime:
    """Construct a runtime from configuration.

    Args:
        config: Loaded configuration
        store_factory: Override how the store is opened (tests pass an in-tmp store)
        gateway: Override the HTTP gateway
        offline: Force the simulated agent even if an API key is configured
    """
    codec = TokenCodec(config.token_dictionary)

    api_key = "" if offline else config.gemini_api_key
    if api_key and gateway is None:
        gateway = RetryingApiGateway(
            api_key=api_key,
            timeout=config.gemini_timeout,
            max_attempts=config.gemini_max_attempts,
        )
    agent = AgentClient(
        gateway=gateway if api_key else None,
        api_key=api_key,
        api_base_url=config.gemini_api_base_url,
        text_model=config.gemini_text_model,
        tts_model=config.gemini_tts_model,
        tts_voice=config.tts_voice,
    )

    if store_factory is None:
        db_path: Path = resolve_store_db_path(config.state_dir)

        def store_factory() -> MessageStore:
            return SQLiteMessageStore(db_path)

    runtime: ChatRuntime

    def router_factory(store: MessageStore, is_ready: Callable[[], bool]) -> CommandRouter:
        return runtime.build_router(store, is_ready)

    session = ChatSession(
        store_connector=lambda: runtime.connect_store(),
        router_factory=router_factory,
        initial_auth_token=config.initial_auth_token,
        step_seconds=config.handshake_step_seconds,
    )
    runtime = ChatRuntime(
        config=config,
        codec=codec,
        agent=agent,
        session=session,
        _store_factory=store_factory,
    )
    logger.info(f"Runtime built (app_id={config.app_id}, agent={'live' if agent.is_live else 'offline'})")
    return runtime
