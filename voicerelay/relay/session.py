"""
Session registry - connection sessions and durable user state

A ConnectionSession lives exactly as long as its WebSocket. Durable state
(agent resume token, conversation history) hangs off a UserState keyed by
user id, so a reconnecting client that re-identifies gets it back.
Turns are serialized per connection and again per user, so two tabs of
one user never run the agent side by side.
"""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import aiosqlite

from ..gateways.fast_ack import ConversationHistory
from .audio import AudioAccumulator
from .store import UserStore
from .workspace import validate_user_id

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class UserState:
    """State keyed by user identity, shared by all connections of that user."""
    user_id: str
    history: ConversationHistory
    agent_session_token: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)


class ConnectionSession:
    """
    Per-connection handle: identity binding, recording buffer and the
    FIFO turn queue. Turns run one at a time in arrival order.
    """

    def __init__(self, conn_id: str, user: UserState, sender: Sender):
        self.conn_id = conn_id
        self.user = user
        self.identified = False
        self.audio = AudioAccumulator()
        self.connected_at = time.time()
        self._sender = sender
        self._turn_lock = asyncio.Lock()
        self._turns: Set[asyncio.Task] = set()

    @property
    def user_id(self) -> str:
        return self.user.user_id

    @property
    def agent_session_token(self) -> Optional[str]:
        return self.user.agent_session_token

    @property
    def pending_turns(self) -> int:
        return len(self._turns)

    async def send(self, message: Dict[str, Any]):
        await self._sender(message)

    # === Turn queue ===

    def schedule(self, factory: Callable[[], Awaitable[None]], label: str = "turn") -> asyncio.Task:
        """Queue a turn. ``factory`` is only called once the previous turn finished."""
        task = asyncio.create_task(self._run_serialized(factory, label))
        self._turns.add(task)
        task.add_done_callback(self._turns.discard)
        return task

    async def _run_serialized(self, factory: Callable[[], Awaitable[None]], label: str):
        async with self._turn_lock:
            # identify may rebind the user while this turn waited
            async with self.user.turn_lock:
                try:
                    await factory()
                except asyncio.CancelledError:
                    logger.info(f"{label} cancelled", extra={"conn_id": self.conn_id})
                    raise
                except Exception as e:
                    logger.error(f"Error handling {label}: {e}", exc_info=True, extra={"conn_id": self.conn_id})
                    await self.send({"type": "error", "content": "Failed to process message"})

    def cancel_turns(self) -> int:
        """Cancel the running turn and every queued one. Returns how many were cancelled."""
        cancelled = 0
        for task in list(self._turns):
            if not task.done():
                task.cancel()
                cancelled += 1
        return cancelled

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until all queued turns finished. Returns False on timeout."""
        if not self._turns:
            return True
        done, pending = await asyncio.wait(list(self._turns), timeout=timeout)
        return not pending


class SessionRegistry:
    """
    Maps live connections onto sessions and user ids onto UserState.

    Connection entries are removed on close. An identified user whose last
    connection closed is parked in a bounded LRU of idle users so a quick
    reconnect keeps its history; the oldest idle users are evicted beyond
    ``max_idle_users``. The resume token is persisted in the UserStore when
    one is configured.
    """

    def __init__(
        self,
        history_factory: Callable[[], ConversationHistory],
        store: Optional[UserStore] = None,
        max_connections: int = 1000,
        max_idle_users: int = 1000,
    ):
        self.history_factory = history_factory
        self.store = store
        self.max_connections = max_connections
        self.max_idle_users = max_idle_users
        self._connections: Dict[str, ConnectionSession] = {}
        self._users: Dict[str, UserState] = {}
        self._idle_users: "OrderedDict[str, UserState]" = OrderedDict()
        self._user_connections: Dict[str, Set[str]] = {}  # user_id -> conn_ids
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get(self, conn_id: str) -> Optional[ConnectionSession]:
        return self._connections.get(conn_id)

    def get_user(self, user_id: str) -> Optional[UserState]:
        return self._users.get(user_id) or self._idle_users.get(user_id)

    def get_all_sessions(self) -> List[ConnectionSession]:
        return list(self._connections.values())

    async def open(self, sender: Sender, conn_id: Optional[str] = None) -> Optional[ConnectionSession]:
        """Register a new connection under a temporary user id. None when full."""
        async with self._lock:
            if len(self._connections) >= self.max_connections:
                logger.warning(f"Max connections reached: {self.max_connections}")
                return None

            conn_id = conn_id or str(uuid.uuid4())
            temp_user = UserState(user_id=str(uuid.uuid4()), history=self.history_factory())
            session = ConnectionSession(conn_id, temp_user, sender)
            self._connections[conn_id] = session
            self._users[temp_user.user_id] = temp_user
            self._user_connections.setdefault(temp_user.user_id, set()).add(conn_id)
            return session

    async def identify(self, session: ConnectionSession, user_id: str) -> UserState:
        """
        Bind the connection to a client supplied identity.

        Raises InvalidUserIdError for ids that cannot name a workspace and
        ValueError when the connection is already bound to another id.
        """
        validate_user_id(user_id)

        if session.identified:
            if session.user_id == user_id:
                return session.user
            raise ValueError("Connection already identified")

        async with self._lock:
            previous = session.user
            self._detach(session.conn_id, previous.user_id)
            if not self._user_connections.get(previous.user_id):
                self._users.pop(previous.user_id, None)

            user = self._users.get(user_id) or self._idle_users.pop(user_id, None)
            if user is None:
                user = UserState(user_id=user_id, history=self.history_factory())
            self._users[user_id] = user

            session.user = user
            session.identified = True
            self._user_connections.setdefault(user_id, set()).add(session.conn_id)

        if self.store is not None:
            try:
                if user.agent_session_token is None:
                    user.agent_session_token = await self.store.load(user_id)
                await self.store.touch(user_id)
            except (aiosqlite.Error, OSError) as e:
                logger.error(f"User store unavailable: {e}")

        return user

    async def update_agent_token(self, session: ConnectionSession, token: str):
        """Overwrite the user's resume token (the agent's id is authoritative)."""
        if not token or session.user.agent_session_token == token:
            return
        session.user.agent_session_token = token

        if self.store is not None:
            try:
                await self.store.save_token(session.user_id, token)
            except (aiosqlite.Error, OSError) as e:
                logger.error(f"Failed to persist agent session: {e}")

    async def close(self, conn_id: str) -> Optional[ConnectionSession]:
        """Remove a connection and cancel whatever it still had queued."""
        async with self._lock:
            session = self._connections.pop(conn_id, None)
            if session is None:
                return None
            self._detach(conn_id, session.user_id)
            if not self._user_connections.get(session.user_id):
                user = self._users.pop(session.user_id, None)
                if user is not None and session.identified:
                    self._park(user)

        session.cancel_turns()
        session.audio.clear()
        return session

    def _park(self, user: UserState):
        self._idle_users[user.user_id] = user
        self._idle_users.move_to_end(user.user_id)
        while len(self._idle_users) > self.max_idle_users:
            evicted, _ = self._idle_users.popitem(last=False)
            logger.debug(f"Evicted idle user state {evicted}")

    def _detach(self, conn_id: str, user_id: str):
        conns = self._user_connections.get(user_id)
        if conns is not None:
            conns.discard(conn_id)
            if not conns:
                del self._user_connections[user_id]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_connections": len(self._connections),
            "identified_connections": sum(1 for s in self._connections.values() if s.identified),
            "unique_users": len(self._user_connections),
            "idle_users": len(self._idle_users),
            "pending_turns": sum(s.pending_turns for s in self._connections.values()),
            "max_connections": self.max_connections,
        }
