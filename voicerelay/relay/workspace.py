"""
Per-user workspace sandbox

Each user id maps onto ``<root>/user-<user_id>``. Paths are resolved
(following symlinks and ``..``) before the containment check, so a link or
a relative segment can never point a read outside the user's directory.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Union

from ..utils.errors import InvalidPathError, InvalidUserIdError, WorkspaceFileNotFoundError

logger = logging.getLogger(__name__)

_USER_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.@-]{1,128}$')


def validate_user_id(user_id: str) -> str:
    if not isinstance(user_id, str) or not _USER_ID_PATTERN.match(user_id) or ".." in user_id:
        raise InvalidUserIdError("Invalid user ID")
    return user_id


def _make_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path.resolve()


class WorkspaceManager:
    """Maps user ids onto isolated directories below one root."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser()

    def path_for(self, user_id: str) -> Path:
        validate_user_id(user_id)
        return self.root / f"user-{user_id}"

    async def ensure(self, user_id: str) -> Path:
        """Create the user's workspace if needed and return its canonical path."""
        path = self.path_for(user_id)
        return await asyncio.to_thread(_make_dir, path)

    def resolve_file(self, user_id: str, file_name: str) -> Path:
        """
        Resolve ``file_name`` inside the user's workspace. Touches the
        filesystem, so call it from a worker thread.

        Raises InvalidPathError unless the canonical path is strictly below
        the canonical workspace root.
        """
        if not isinstance(file_name, str) or not file_name or "\x00" in file_name:
            raise InvalidPathError("Invalid file path")

        workspace = self.path_for(user_id).resolve()
        try:
            candidate = (workspace / file_name).resolve()
        except (OSError, RuntimeError) as e:  # symlink loops
            raise InvalidPathError("Invalid file path") from e

        if candidate == workspace or not candidate.is_relative_to(workspace):
            raise InvalidPathError("Invalid file path")
        return candidate

    async def read_file(self, user_id: str, file_name: str) -> str:
        """Return the text content of one workspace file. Never writes."""
        return await asyncio.to_thread(self._read, user_id, file_name)

    def _read(self, user_id: str, file_name: str) -> str:
        path = self.resolve_file(user_id, file_name)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Workspace read failed for {file_name}: {e}")
            raise WorkspaceFileNotFoundError("File not found") from e
