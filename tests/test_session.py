"""Tests for the session lifecycle state machine."""

import asyncio
import hashlib

import pytest

from qvoice_gateway.errors import SessionTransitionError, StoreError
from qvoice_gateway.router import RouteStatus
from qvoice_gateway.session import HANDSHAKE_SEQUENCE, ChatSession, SessionPhase


@pytest.fixture
def make_session(store, router):
    def _make(connector=None, token=None):
        def router_factory(connected_store, is_ready):
            router.is_ready = is_ready
            return router

        async def no_sleep(seconds):
            return None

        return ChatSession(
            store_connector=connector or (lambda: store),
            router_factory=router_factory,
            initial_auth_token=token,
            sleep=no_sleep,
        )

    return _make


@pytest.mark.asyncio
async def test_start_reaches_ready_with_announcements(make_session):
    session = make_session()
    statuses = []
    session.add_status_listener(statuses.append)

    assert session.phase is SessionPhase.UNAUTHENTICATED
    await session.start()

    assert session.phase is SessionPhase.READY
    assert session.is_ready()
    assert statuses == ["Authenticating...", *HANDSHAKE_SEQUENCE]
    assert session.status_snapshot() == {
        "phase": "READY",
        "user_id": session.user_id,
        "status": "Secure channel established.",
        "secure": True,
    }


@pytest.mark.asyncio
async def test_anonymous_identity_is_provisioned(make_session):
    first, second = make_session(), make_session()
    await first.start()
    await second.start()
    assert first.user_id.startswith("anon-")
    assert first.user_id != second.user_id


@pytest.mark.asyncio
async def test_token_identity_is_stable(make_session):
    session = make_session(token="secret-token")
    await session.start()
    expected = hashlib.sha256(b"secret-token").hexdigest()[:16]
    assert session.user_id == f"user-{expected}"


def test_connect_failure_keeps_phase(make_session):
    def broken():
        raise OSError("unreachable")

    session = make_session(connector=broken)
    with pytest.raises(StoreError):
        session.connect()
    assert session.phase is SessionPhase.UNAUTHENTICATED


def test_missing_store_configuration(make_session):
    session = make_session(connector=lambda: None)
    with pytest.raises(StoreError):
        session.connect()
    assert session.phase is SessionPhase.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_phases_cannot_be_skipped(make_session):
    session = make_session()
    with pytest.raises(SessionTransitionError):
        session.authenticate()
    with pytest.raises(SessionTransitionError):
        await session.run_handshake()

    session.connect()
    with pytest.raises(SessionTransitionError):
        session.connect()
    with pytest.raises(SessionTransitionError):
        session._advance(SessionPhase.READY)


@pytest.mark.asyncio
async def test_submit_before_ready_is_rejected(make_session, store):
    session = make_session()
    session.connect()
    session.authenticate()

    result = await session.submit("/help")
    assert result.status is RouteStatus.NOT_READY
    assert store.count() == 0


@pytest.mark.asyncio
async def test_submit_routes_as_session_user(make_session, store):
    session = make_session()
    await session.start()

    result = await session.submit("/help")
    assert result.status is RouteStatus.HANDLED
    assert store.query()[0].user_id == session.user_id
    assert session.busy is False


@pytest.mark.asyncio
async def test_submit_while_busy_is_rejected(make_session, router):
    session = make_session()
    await session.start()

    release = asyncio.Event()

    async def slow_chat(message, history=None):
        await release.wait()
        return "Agent Q: done"

    router.agent.chat = slow_chat
    first = asyncio.create_task(session.submit("tell me something"))
    await asyncio.sleep(0)
    assert session.busy is True

    second = await session.submit("another message")
    assert second.status is RouteStatus.BUSY

    release.set()
    assert (await first).reply == "Agent Q: done"
    assert session.busy is False


@pytest.mark.asyncio
async def test_reset_returns_to_start(make_session):
    session = make_session()
    await session.start()
    await session.submit("/archive")

    session.reset()

    assert session.phase is SessionPhase.UNAUTHENTICATED
    assert session.user_id is None
    assert session.is_secure is False
    assert (await session.submit("/help")).status is RouteStatus.NOT_READY


@pytest.mark.asyncio
async def test_speak_requires_ready(make_session):
    session = make_session()
    result = await session.speak("hello")
    assert result.clip is None
    assert result.error == "Session is not ready."
