from __future__ import annotations

pytest_plugins = ("pytest_asyncio",)

from dataclasses import replace
from pathlib import Path

import pytest

from qvoice_gateway.agent_client import AgentClient
from qvoice_gateway.commands import BuiltinCommands
from qvoice_gateway.router import CommandRouter
from qvoice_gateway.token_codec import TokenCodec
from qvoice_orchestrator.config import Config
from qvoice_orchestrator.reminders import ReminderScheduler
from storage.message_store import SQLiteMessageStore

BOT_ID = "Agent Q Core ✨"
USER_ID = "anon-test"


@pytest.fixture
def store(tmp_path: Path):
    store = SQLiteMessageStore(tmp_path / "qvoicetxt.sqlite3")
    yield store
    store.close()


@pytest.fixture
def clock():
    """Mutable millisecond clock for the reminder scheduler."""
    return {"now": 1_700_000_000_000}


@pytest.fixture
def scheduler(store, clock):
    return ReminderScheduler(store, sender_id=BOT_ID, now_fn=lambda: clock["now"])


@pytest.fixture
def codec():
    return TokenCodec()


@pytest.fixture
def agent():
    return AgentClient()


@pytest.fixture
def router(store, codec, agent, scheduler):
    commands = BuiltinCommands(store=store, codec=codec, agent=agent, scheduler=scheduler)
    return CommandRouter(store=store, codec=codec, agent=agent, commands=commands, bot_user_id=BOT_ID)


@pytest.fixture
def config(tmp_path: Path, monkeypatch) -> Config:
    for name in ("GEMINI_API_KEY", "QVOICE_INITIAL_AUTH_TOKEN", "QVOICE_TOKEN_DICTIONARY", "LOG_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("QVOICE_STATE_DIR", str(tmp_path / "state"))
    return replace(Config.from_env(), handshake_step_seconds=0.0)
