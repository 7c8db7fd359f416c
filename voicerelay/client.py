"""
VoiceRelay client (Python)

Minimal async client for the relay WebSocket protocol.

Usage:
    from voicerelay.client import RelayClient

    async with RelayClient("ws://127.0.0.1:3001") as client:
        await client.send_message("Create a file called notes.md")

        async for event in client.events():
            if event.type == "groq_response":
                print(event.content)
            elif event.is_final:
                break

The client keeps a stable user id on disk, re-identifies after every
reconnect and retries the connection every ``reconnect_interval`` seconds.
"""

import asyncio
import base64
import json
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

logger = logging.getLogger(__name__)

DEFAULT_ID_FILE = Path.home() / ".voicerelay" / "user_id"


def load_or_create_user_id(id_file: Union[str, Path] = DEFAULT_ID_FILE) -> str:
    """Read the persisted user id, creating one on first use."""
    path = Path(id_file)
    if path.exists():
        user_id = path.read_text(encoding="utf-8").strip()
        if user_id:
            return user_id

    user_id = uuid.uuid4().hex
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(user_id, encoding="utf-8")
    return user_id


# === Events ===

@dataclass
class RelayEvent:
    """One server message."""
    type: str
    content: str = ""
    data: Any = None
    raw: Dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict) -> "RelayEvent":
        return cls(
            type=d.get("type", "unknown"),
            content=d.get("content") or "",
            data=d.get("data"),
            raw=d,
        )

    @property
    def is_error(self) -> bool:
        return self.type in ("error", "agent_error")

    @property
    def is_final(self) -> bool:
        """True for events that end an agent run."""
        return self.type in ("agent_result", "agent_error")

    def get_audio_bytes(self) -> Optional[bytes]:
        if self.type == "tts_audio" and isinstance(self.data, str):
            return base64.b64decode(self.data)
        return None


# === Client ===

class RelayClient:
    """Reconnecting WebSocket client bound to one persistent user id."""

    def __init__(
        self,
        url: str = "ws://127.0.0.1:3001",
        user_id: Optional[str] = None,
        reconnect_interval: float = 3.0,
        auto_reconnect: bool = True,
        id_file: Union[str, Path] = DEFAULT_ID_FILE,
    ):
        self.url = url
        self.user_id = user_id or load_or_create_user_id(id_file)
        self.reconnect_interval = reconnect_interval
        self.auto_reconnect = auto_reconnect

        self._ws: Optional[ClientConnection] = None
        self._connected = asyncio.Event()
        self._closing = False
        self._run_task: Optional[asyncio.Task] = None
        self._event_queue: asyncio.Queue[Optional[RelayEvent]] = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    async def __aenter__(self) -> "RelayClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def connect(self, timeout: Optional[float] = 10.0):
        """Start the connection loop and wait for the first successful connect."""
        if self._run_task is None:
            self._closing = False
            self._run_task = asyncio.create_task(self._run())
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def close(self):
        self._closing = True
        if self._ws is not None:
            await self._ws.close()
        if self._run_task is not None:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None
        await self._event_queue.put(None)

    async def _run(self):
        while not self._closing:
            try:
                async with connect(self.url) as ws:
                    self._ws = ws
                    await ws.send(json.dumps({"type": "identify", "userId": self.user_id}))
                    self._connected.set()
                    logger.info(f"Connected to {self.url} as {self.user_id}")
                    await self._receive_loop(ws)
            except (OSError, WebSocketException) as e:
                logger.warning(f"Connection to {self.url} failed: {e}")
            finally:
                self._ws = None
                self._connected.clear()

            if self._closing or not self.auto_reconnect:
                break
            logger.info(f"Reconnecting in {self.reconnect_interval}s")
            await asyncio.sleep(self.reconnect_interval)

        await self._event_queue.put(None)

    async def _receive_loop(self, ws: ClientConnection):
        async for message in ws:
            try:
                data = json.loads(message)
            except (json.JSONDecodeError, TypeError):
                logger.debug("Ignoring non-JSON server frame")
                continue
            if isinstance(data, dict):
                await self._event_queue.put(RelayEvent.from_dict(data))

    async def events(self) -> AsyncIterator[RelayEvent]:
        """Yield server events until the client is closed."""
        while True:
            event = await self._event_queue.get()
            if event is None:
                return
            yield event

    # === Requests ===

    async def _send(self, payload: Union[Dict, bytes]):
        if self._ws is None:
            raise ConnectionError("Not connected")
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        await self._ws.send(payload)

    async def send_message(self, text: str):
        await self._send({"type": "message", "content": text})

    async def send_audio(self, chunks: Iterable[bytes]):
        """Send one recording: audio_start, the binary chunks, audio_end."""
        await self._send({"type": "audio_start"})
        for chunk in chunks:
            await self._send(bytes(chunk))
        await self._send({"type": "audio_end"})

    async def fetch_file(self, file_name: str):
        await self._send({"type": "fetch_file", "content": file_name})

    async def interrupt(self):
        await self._send({"type": "interrupt"})

    async def ping(self):
        await self._send({"type": "ping"})
