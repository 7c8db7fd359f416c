"""
User store - SQLite persistence of durable per-user state

Only the agent resume token is persisted; it lets a reconnecting (or
restarted) client continue the agent conversation it had before.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserStore:
    """aiosqlite backed ``users`` table keyed by user id."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def init_db(self):
        """Create the users table if missing."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    agent_session_id TEXT,
                    created_at TEXT NOT NULL,
                    last_seen TEXT NOT NULL
                )
            """)
            await db.commit()

    async def load(self, user_id: str) -> Optional[str]:
        """Return the stored agent session id for a user, if any."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT agent_session_id FROM users WHERE user_id = ?",
                (user_id,)
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def touch(self, user_id: str):
        """Register a user (or refresh last_seen)."""
        now = _now()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """INSERT INTO users (user_id, created_at, last_seen) VALUES (?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET last_seen = excluded.last_seen""",
                (user_id, now, now)
            )
            await db.commit()

    async def save_token(self, user_id: str, token: str):
        now = _now()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """INSERT INTO users (user_id, agent_session_id, created_at, last_seen) VALUES (?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       agent_session_id = excluded.agent_session_id,
                       last_seen = excluded.last_seen""",
                (user_id, token, now, now)
            )
            await db.commit()

    async def forget(self, user_id: str):
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
            await db.commit()
