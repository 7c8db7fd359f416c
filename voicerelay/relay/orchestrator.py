"""
Turn orchestrator - one user utterance to final event

1. fast acknowledgment       -> groq_response   (failure aborts the turn)
2. speech for the reply      -> tts_audio       (failure is logged only)
3. needs_agent(utterance)?                      (False ends the turn)
4. agent stream              -> agent_* events, tts_audio per assistant text
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from ..gateways.agent import AgentEvent, AgentGateway
from ..gateways.fast_ack import FastAckGateway
from ..gateways.synthesis import SynthesisGateway
from ..utils.errors import GatewayError, WorkspaceError
from ..utils.logger import preview
from . import messages
from .classifier import needs_agent
from .session import ConnectionSession, SessionRegistry
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class TurnOrchestrator:
    """Runs the reply pipeline for one completed utterance on one connection."""

    def __init__(
        self,
        registry: SessionRegistry,
        fast_ack: FastAckGateway,
        synthesizer: Optional[SynthesisGateway],
        agent: Optional[AgentGateway],
        workspaces: WorkspaceManager,
        classifier: Callable[[str], bool] = needs_agent,
        agent_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.fast_ack = fast_ack
        self.synthesizer = synthesizer
        self.agent = agent
        self.workspaces = workspaces
        self.classifier = classifier
        self.agent_timeout = agent_timeout

    async def run_turn(self, session: ConnectionSession, utterance: str):
        log_extra = {"conn_id": session.conn_id, "user_id": session.user_id}
        logger.info(f"Turn started: {preview(utterance)!r}", extra=log_extra)

        # Step 1: immediate acknowledgment
        try:
            reply = await self.fast_ack.generate(utterance, session.user.history)
        except GatewayError as e:
            logger.error(f"Fast-ack failed: {e}", extra=log_extra)
            await session.send(messages.error("Failed to generate response"))
            return

        await session.send(messages.fast_reply(reply))

        # Step 2: speech for the acknowledgment
        await self._speak(session, reply)

        # Step 3: only run the agent for task-like requests
        if self.agent is None or not self.agent.enabled:
            return
        if not self.classifier(utterance):
            logger.debug(f"Agent not needed for {preview(utterance)!r}", extra=log_extra)
            return

        # Step 4: stream the agent
        await self._run_agent(session, utterance)

    async def _speak(self, session: ConnectionSession, text: str):
        if self.synthesizer is None or not self.synthesizer.enabled:
            return
        try:
            audio = await self.synthesizer.synthesize(text)
        except GatewayError as e:
            logger.warning(f"TTS error (continuing anyway): {e}")
            return
        await session.send(messages.tts_audio(audio))

    async def _run_agent(self, session: ConnectionSession, utterance: str):
        log_extra = {"conn_id": session.conn_id, "user_id": session.user_id}

        try:
            cwd = await self.workspaces.ensure(session.user_id)
        except (WorkspaceError, OSError) as e:
            logger.error(f"Workspace unavailable: {e}", extra=log_extra)
            await session.send(AgentEvent(kind="error", content="Workspace unavailable").to_client())
            await session.send(messages.error("Agent could not run"))
            return

        logger.info("Agent needed - executing", extra=log_extra)
        start = time.monotonic()
        stream = self.agent.stream(utterance, session.agent_session_token, str(cwd))
        terminal: Optional[AgentEvent] = None

        try:
            async with asyncio.timeout(self.agent_timeout):
                async for event in stream:
                    await session.send(event.to_client())

                    if event.session_id:
                        await self.registry.update_agent_token(session, event.session_id)

                    if event.kind == "assistant" and event.content:
                        await self._speak(session, event.content)

                    if event.is_terminal:
                        terminal = event
                        break
        except TimeoutError:
            terminal = AgentEvent(kind="error", content="Agent exceeded its time budget")
            await session.send(terminal.to_client())
        finally:
            await stream.aclose()

        if terminal is None:
            terminal = AgentEvent(kind="error", content="Agent stream ended without a result")
            await session.send(terminal.to_client())

        if terminal.is_error:
            logger.warning(f"Agent turn failed: {terminal.content}", extra=log_extra)
            await session.send(messages.error("Agent could not complete the task"))
        else:
            logger.info(f"Agent completed in {time.monotonic() - start:.1f}s", extra=log_extra)
