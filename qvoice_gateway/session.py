"""Session lifecycle for QVoiceTxt.

Phases advance strictly in order:
UNAUTHENTICATED -> AUTHENTICATING -> HANDSHAKE_IN_PROGRESS -> READY.
Only ``reset()`` (a brand new session) goes back to the start.

The "secure channel" handshake is a scripted sequence of status
announcements; no key exchange or verification takes place.
"""

import asyncio
import hashlib
import logging
import uuid
from enum import Enum
from typing import Awaitable, Callable, Optional

from storage.message_store import MessageStore

from .errors import SessionTransitionError, StoreError
from .router import CommandRouter, RouteResult, RouteStatus, SpeechResult

logger = logging.getLogger(__name__)

HANDSHAKE_SEQUENCE: tuple[str, ...] = (
    "Initializing quantum link...",
    "Distributing entangled key pairs...",
    "Verifying channel integrity...",
    "Secure channel established.",
)


class SessionPhase(Enum):
    UNAUTHENTICATED = 0
    AUTHENTICATING = 1
    HANDSHAKE_IN_PROGRESS = 2
    READY = 3


StatusListener = Callable[[str], None]


class ChatSession:
    """One client session: owns the phase, the identity and the busy flag.

    The router is built by ``router_factory`` once the store is connected, so
    nothing in the session depends on module-level connection state.
    """

    def __init__(
        self,
        store_connector: Callable[[], MessageStore],
        router_factory: Callable[[MessageStore, Callable[[], bool]], CommandRouter],
        initial_auth_token: Optional[str] = None,
        step_seconds: float = 0.6,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._store_connector = store_connector
        self._router_factory = router_factory
        self.initial_auth_token = initial_auth_token
        self.step_seconds = step_seconds
        self._sleep = sleep or asyncio.sleep
        self._listeners: list[StatusListener] = []
        self._reset_state()

    def _reset_state(self) -> None:
        self.phase = SessionPhase.UNAUTHENTICATED
        self.store: Optional[MessageStore] = None
        self.router: Optional[CommandRouter] = None
        self.user_id: Optional[str] = None
        self.status = "Initializing..."
        self.is_secure = False
        self._busy = False

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def is_ready(self) -> bool:
        return self.phase is SessionPhase.READY

    @property
    def busy(self) -> bool:
        return self._busy

    def _advance(self, target: SessionPhase) -> None:
        if target.value != self.phase.value + 1:
            raise SessionTransitionError(f"Cannot move from {self.phase.name} to {target.name}")
        logger.info(f"Session phase {self.phase.name} -> {target.name}")
        self.phase = target

    def _announce(self, status: str) -> None:
        self.status = status
        for listener in self._listeners:
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    def connect(self) -> MessageStore:
        """Obtain the store connection and enter AUTHENTICATING.

        Raises:
            StoreError: If the store cannot be reached; the phase is unchanged.
        """
        if self.phase is not SessionPhase.UNAUTHENTICATED:
            raise SessionTransitionError(f"Already connected (phase {self.phase.name})")
        try:
            store = self._store_connector()
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to connect to the message store: {e}") from e
        if store is None:
            raise StoreError("Message store configuration is missing")
        self.store = store
        self.router = self._router_factory(store, self.is_ready)
        self._advance(SessionPhase.AUTHENTICATING)
        self._announce("Authenticating...")
        return store

    def authenticate(self) -> str:
        """Resolve an identity from the token, or provision an anonymous one."""
        if self.phase is not SessionPhase.AUTHENTICATING:
            raise SessionTransitionError(f"Cannot authenticate in phase {self.phase.name}")
        if self.initial_auth_token:
            digest = hashlib.sha256(self.initial_auth_token.encode()).hexdigest()[:16]
            self.user_id = f"user-{digest}"
            logger.info("Authenticated with provided token")
        else:
            self.user_id = f"anon-{uuid.uuid4().hex}"
            logger.info("Provisioned anonymous identity")
        self._advance(SessionPhase.HANDSHAKE_IN_PROGRESS)
        return self.user_id

    async def run_handshake(self) -> None:
        """Play the scripted channel announcements, then enter READY."""
        if self.phase is not SessionPhase.HANDSHAKE_IN_PROGRESS:
            raise SessionTransitionError(f"Cannot run handshake in phase {self.phase.name}")
        for status in HANDSHAKE_SEQUENCE:
            await self._sleep(self.step_seconds)
            self._announce(status)
        self.is_secure = True
        self._advance(SessionPhase.READY)

    async def start(self) -> None:
        """Connect, authenticate and run the handshake."""
        self.connect()
        self.authenticate()
        await self.run_handshake()

    async def submit(self, text: str) -> RouteResult:
        """Route one utterance, rejecting it while not ready or while busy."""
        if not self.is_ready() or self.router is None:
            return RouteResult(RouteStatus.NOT_READY)
        if self._busy:
            return RouteResult(RouteStatus.BUSY)
        self._busy = True
        try:
            return await self.router.route(text, self.user_id)
        finally:
            self._busy = False

    async def speak(self, text: str) -> SpeechResult:
        if not self.is_ready() or self.router is None:
            return SpeechResult(error="Session is not ready.")
        return await self.router.speak(text)

    def status_snapshot(self) -> dict:
        return {
            "phase": self.phase.name,
            "user_id": self.user_id,
            "status": self.status,
            "secure": self.is_secure,
        }

    def reset(self) -> None:
        """Start over as a new session."""
        if self.router is not None:
            self.router.reset()
        logger.info("Session reset")
        self._reset_state()
