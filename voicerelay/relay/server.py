"""
Relay server - WebSocket endpoint for voice clients

One WebSocket per browser tab. Each connection gets a ConnectionSession
from the SessionRegistry; frames are handed to the Dispatcher in arrival
order. ``GET /health`` answers with a JSON stats document instead of an
upgrade.
"""

import asyncio
import json
import logging
import signal
import sys
import time
import uuid
from http import HTTPStatus
from typing import Any, Dict, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from ..gateways.agent import AgentGateway
from ..gateways.fast_ack import FastAckGateway
from ..gateways.synthesis import SynthesisGateway
from ..gateways.transcription import TranscriptionGateway
from ..utils.config import Config
from . import messages
from .dispatcher import Dispatcher
from .orchestrator import TurnOrchestrator
from .session import SessionRegistry
from .store import UserStore
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class RelayServer:
    """
    WebSocket relay between voice clients and the model gateways.

    Shutdown stops accepting connections first, gives running turns
    ``shutdown_grace_seconds`` to finish, then closes every connection
    with 1001.
    """

    def __init__(
        self,
        config: Config,
        registry: SessionRegistry,
        dispatcher: Dispatcher,
        store: Optional[UserStore] = None,
    ):
        self.config = config
        self.registry = registry
        self.dispatcher = dispatcher
        self.store = store
        self._server: Optional[Server] = None
        self._websockets: Dict[str, ServerConnection] = {}
        self._running = False
        self._stopping = False
        self._started_at = 0.0

        # Metrics
        self._metrics = {
            "messages_received": 0,
            "connections_total": 0,
            "errors": 0,
        }

    @property
    def port(self) -> Optional[int]:
        """Bound port, useful when configured with port 0."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self):
        """Bind the listening socket. Returns once the server accepts connections."""
        if self.store is not None:
            await self.store.init_db()

        host = self.config.server.host
        port = self.config.server.port

        self._server = await serve(
            self._handle_connection,
            host,
            port,
            process_request=self._process_request,
            max_size=self.config.server.max_message_size,
            ping_interval=self.config.server.ping_interval,
            ping_timeout=self.config.server.ping_timeout,
        )
        self._running = True
        self._started_at = time.time()

        logger.info(f"Relay server listening on ws://{host}:{self.port}")

    async def serve_forever(self):
        """Start and block until the server is stopped."""
        if self._server is None:
            await self.start()
        await self._server.wait_closed()

    async def stop(self):
        """Graceful shutdown."""
        if self._server is None or self._stopping:
            return
        self._stopping = True
        self._running = False
        logger.info("Stopping relay server")

        # Refuse new connections, keep the open ones
        self._server.close(close_connections=False)

        grace = self.config.server.shutdown_grace_seconds
        sessions = self.registry.get_all_sessions()
        busy = [s for s in sessions if s.pending_turns]
        if busy:
            logger.info(f"Waiting up to {grace}s for {len(busy)} session(s) to finish their turns")
            results = await asyncio.gather(*(s.drain(grace) for s in busy))
            if not all(results):
                logger.warning("Grace period elapsed, cancelling remaining turns")
                for session in busy:
                    session.cancel_turns()

        for conn_id, websocket in list(self._websockets.items()):
            try:
                await websocket.close(1001, "Server shutting down")
            except ConnectionClosed:
                pass
            except Exception as e:
                logger.debug(f"Close failed for {conn_id}: {e}")

        await self._server.wait_closed()
        logger.info("Relay server stopped")

    # === Connection handling ===

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if request.path.split("?", 1)[0] != "/health":
            return None
        response = connection.respond(HTTPStatus.OK, json.dumps(self.get_stats()) + "\n")
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    async def _handle_connection(self, websocket: ServerConnection):
        conn_id = str(uuid.uuid4())

        async def sender(message: Dict[str, Any]):
            try:
                await websocket.send(json.dumps(message))
            except ConnectionClosed as e:
                logger.debug(f"Send to closed connection {conn_id} dropped ({e.rcvd.code if e.rcvd else 'no close frame'})")

        session = await self.registry.open(sender, conn_id=conn_id)
        if session is None:
            await websocket.close(1013, "Server overloaded")
            return

        self._websockets[conn_id] = websocket
        self._metrics["connections_total"] += 1
        logger.info(f"Client connected: {conn_id} (total: {self.registry.connection_count})")

        try:
            await session.send(messages.system_init("Connected to voice assistant", session.user_id))

            async for frame in websocket:
                self._metrics["messages_received"] += 1
                await self.dispatcher.dispatch(session, frame)

        except ConnectionClosed as e:
            logger.debug(f"Connection closed: {conn_id} ({e.rcvd.code if e.rcvd else 'abnormal'})")
        except Exception as e:
            logger.error(f"Connection error: {conn_id}: {e}", exc_info=True)
            self._metrics["errors"] += 1
        finally:
            self._websockets.pop(conn_id, None)
            await self.registry.close(conn_id)
            logger.info(f"Client disconnected: {conn_id} (total: {self.registry.connection_count})")

    def get_stats(self) -> Dict[str, Any]:
        stats = self.registry.get_stats()
        stats.update(
            {
                "status": "ok" if self._running else "stopping",
                "uptime_seconds": round(time.time() - self._started_at, 1) if self._started_at else 0.0,
                "messages_received": self._metrics["messages_received"],
                "connections_total": self._metrics["connections_total"],
                "errors": self._metrics["errors"],
            }
        )
        return stats

    async def run(self):
        """Run until SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        if sys.platform != "win32":
            def signal_handler():
                loop.create_task(self.stop())

            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, signal_handler)
                except NotImplementedError:
                    pass

        try:
            await self.serve_forever()
        except asyncio.CancelledError:
            logger.info("Interrupt received")
            await self.stop()
            raise


def build_server(
    config: Config,
    fast_ack: Optional[FastAckGateway] = None,
    transcriber: Optional[TranscriptionGateway] = None,
    synthesizer: Optional[SynthesisGateway] = None,
    agent: Optional[AgentGateway] = None,
) -> RelayServer:
    """Wire gateways, registry and dispatcher from a Config. Gateways can be injected."""
    for missing in config.missing_api_keys():
        logger.warning(f"Missing API key: {missing}")

    fast_ack = fast_ack or FastAckGateway(config.fast_ack)
    transcriber = transcriber or TranscriptionGateway(config.transcription)
    if synthesizer is None and config.synthesis.enabled:
        synthesizer = SynthesisGateway(config.synthesis)
    if agent is None and config.agent.enabled:
        agent = AgentGateway(config.agent)

    store = UserStore(config.store.db_path) if config.store.enabled else None
    registry = SessionRegistry(
        history_factory=fast_ack.new_history,
        store=store,
        max_connections=config.server.max_connections,
        max_idle_users=config.server.max_idle_users,
    )
    workspaces = WorkspaceManager(config.workspace.root)
    orchestrator = TurnOrchestrator(
        registry=registry,
        fast_ack=fast_ack,
        synthesizer=synthesizer,
        agent=agent,
        workspaces=workspaces,
        agent_timeout=config.agent.timeout_seconds or None,
    )
    dispatcher = Dispatcher(registry, orchestrator, transcriber, workspaces)

    return RelayServer(config, registry, dispatcher, store=store)
