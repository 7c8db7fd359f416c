"""
Dispatcher - demultiplexes inbound frames of one connection

Control messages are handled inline (identify, ping, fetch_file,
audio_start, interrupt) or queued as turns (message, audio_end); binary
frames go to the session's audio accumulator.
"""

import logging
from typing import Union

from ..gateways.transcription import TranscriptionGateway
from ..utils.errors import (
    EmptyAudioError,
    InvalidPathError,
    InvalidUserIdError,
    TranscriptionError,
    WorkspaceError,
)
from ..utils.logger import preview
from . import messages
from .messages import ClientMessage, ClientMessageType, FrameKind, classify_frame
from .orchestrator import TurnOrchestrator
from .session import ConnectionSession, SessionRegistry
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes frames to handlers. One instance serves all connections."""

    def __init__(
        self,
        registry: SessionRegistry,
        orchestrator: TurnOrchestrator,
        transcriber: TranscriptionGateway,
        workspaces: WorkspaceManager,
    ):
        self.registry = registry
        self.orchestrator = orchestrator
        self.transcriber = transcriber
        self.workspaces = workspaces

        self._handlers = {
            ClientMessageType.IDENTIFY.value: self._handle_identify,
            ClientMessageType.FETCH_FILE.value: self._handle_fetch_file,
            ClientMessageType.MESSAGE.value: self._handle_message,
            ClientMessageType.AUDIO_START.value: self._handle_audio_start,
            ClientMessageType.AUDIO_END.value: self._handle_audio_end,
            ClientMessageType.PING.value: self._handle_ping,
            ClientMessageType.INTERRUPT.value: self._handle_interrupt,
        }

    async def dispatch(self, session: ConnectionSession, frame: Union[str, bytes]):
        """Handle one inbound frame. Never raises for bad input."""
        kind, payload = classify_frame(frame)

        if kind == FrameKind.AUDIO:
            session.audio.append(payload)
            return

        if kind == FrameKind.INVALID:
            logger.warning(f"Dropping malformed control message: {preview(str(payload))}",
                           extra={"conn_id": session.conn_id})
            return

        message: ClientMessage = payload
        logger.info(f"Message type: {message.type}, content: {preview(message.content)}",
                    extra={"conn_id": session.conn_id})

        handler = self._handlers.get(message.type)
        if handler is None:
            logger.warning(f"Unknown message type: {message.type}", extra={"conn_id": session.conn_id})
            return

        try:
            await handler(session, message)
        except Exception as e:
            logger.error(f"Error handling {message.type}: {e}", exc_info=True,
                         extra={"conn_id": session.conn_id})
            await session.send(messages.error("Failed to process message"))

    # === Handlers ===

    async def _handle_identify(self, session: ConnectionSession, message: ClientMessage):
        if not message.user_id:
            return
        try:
            user = await self.registry.identify(session, message.user_id)
        except InvalidUserIdError:
            logger.warning("Rejected invalid user id", extra={"conn_id": session.conn_id})
            await session.send(messages.error("Invalid user ID"))
            return
        except ValueError as e:
            await session.send(messages.error(str(e)))
            return

        logger.info(f"Client identified with user ID: {user.user_id}", extra={"conn_id": session.conn_id})
        await session.send(messages.system_init("Identified", user.user_id))

    async def _handle_ping(self, session: ConnectionSession, message: ClientMessage):
        await session.send(messages.pong())

    async def _handle_fetch_file(self, session: ConnectionSession, message: ClientMessage):
        file_name = message.content
        if not file_name:
            return

        try:
            content = await self.workspaces.read_file(session.user_id, file_name)
        except (InvalidPathError, InvalidUserIdError):
            logger.warning(f"Invalid file path attempt: {preview(file_name)}",
                           extra={"conn_id": session.conn_id, "user_id": session.user_id})
            await session.send(messages.file_content(file_name, None, "Invalid file path"))
            return
        except WorkspaceError:
            await session.send(messages.file_content(file_name, None, "File not found"))
            return

        logger.info(f"Fetched file: {preview(file_name)} ({len(content)} chars)")
        await session.send(messages.file_content(file_name, content))

    async def _handle_message(self, session: ConnectionSession, message: ClientMessage):
        text = (message.content or "").strip()
        if not text:
            return
        session.schedule(lambda: self.orchestrator.run_turn(session, text), label="message")

    async def _handle_audio_start(self, session: ConnectionSession, message: ClientMessage):
        session.audio.start()
        logger.debug("Audio recording started", extra={"conn_id": session.conn_id})

    async def _handle_audio_end(self, session: ConnectionSession, message: ClientMessage):
        chunks = session.audio.chunk_count
        audio = session.audio.finish()
        logger.info(f"Audio recording stopped: {len(audio)} bytes ({chunks} chunks)",
                    extra={"conn_id": session.conn_id})
        session.schedule(lambda: self._transcribe_and_reply(session, audio), label="audio")

    async def _handle_interrupt(self, session: ConnectionSession, message: ClientMessage):
        cancelled = session.cancel_turns()
        logger.info(f"Interrupt: cancelled {cancelled} turn(s)", extra={"conn_id": session.conn_id})
        await session.send(messages.interrupted(cancelled))

    async def _transcribe_and_reply(self, session: ConnectionSession, audio: bytes):
        try:
            text = await self.transcriber.transcribe(audio)
        except EmptyAudioError:
            logger.warning("Transcription skipped: empty audio", extra={"conn_id": session.conn_id})
            await session.send(messages.error("No audio received"))
            return
        except TranscriptionError as e:
            logger.error(f"Error transcribing audio: {e}", extra={"conn_id": session.conn_id})
            await session.send(messages.error("Failed to transcribe audio"))
            return

        await session.send(messages.transcription(text, is_final=True))

        if text:
            await self.orchestrator.run_turn(session, text)
