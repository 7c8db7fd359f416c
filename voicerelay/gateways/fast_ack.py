"""
Fast acknowledgment gateway - low latency conversational replies

Talks to any OpenAI compatible /chat/completions endpoint (Groq by default)
and keeps a bounded per-user conversation history.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

import httpx

from ..utils.config import FastAckConfig
from ..utils.errors import FastAckError

logger = logging.getLogger(__name__)


@dataclass
class ConversationTurn:
    role: str  # "user" or "assistant"
    content: str
    timestamp: float = field(default_factory=time.time)


class ConversationHistory:
    """
    One fixed system instruction plus the most recent ``max_messages``
    turns. Oldest turns are evicted first.
    """

    def __init__(self, system_prompt: str = "", max_messages: int = 10):
        self.system_prompt = system_prompt
        self.max_messages = max_messages
        self.turns: Deque[ConversationTurn] = deque(maxlen=max_messages)

    def __len__(self) -> int:
        return len(self.turns)

    def add_user_turn(self, text: str):
        self.turns.append(ConversationTurn(role="user", content=text))

    def add_assistant_turn(self, text: str):
        self.turns.append(ConversationTurn(role="assistant", content=text))

    def get_messages_for_llm(self, pending_user_text: Optional[str] = None) -> List[Dict]:
        """Build message list for the chat endpoint."""
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})

        turns = list(self.turns)
        if pending_user_text is not None:
            turns.append(ConversationTurn(role="user", content=pending_user_text))
            turns = turns[-self.max_messages:]

        messages.extend({"role": t.role, "content": t.content} for t in turns)
        return messages

    def clear(self):
        self.turns.clear()


class FastAckGateway:
    """Produces one short conversational reply per utterance."""

    def __init__(self, config: FastAckConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    def new_history(self) -> ConversationHistory:
        return ConversationHistory(
            system_prompt=self.config.system_prompt,
            max_messages=self.config.history_size,
        )

    async def generate(self, text: str, history: ConversationHistory) -> str:
        """
        Send ``text`` with the bounded history and return the reply.

        History is only extended when the call succeeds, so a failed
        request leaves no dangling user turn behind.
        """
        if not self.config.api_key:
            raise FastAckError("Fast-ack client not configured - check GROQ_API_KEY")

        payload = {
            "model": self.config.model,
            "messages": history.get_messages_for_llm(pending_user_text=text),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        url = f"{self.config.base_url.rstrip('/')}/chat/completions"

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                )
        except httpx.HTTPError as e:
            raise FastAckError(f"Request failed: {e}") from e

        if resp.status_code != 200:
            raise FastAckError(resp.text[:200] or "Unexpected response", status_code=resp.status_code)

        try:
            data = resp.json()
            reply = (data.get("choices") or [{}])[0].get("message", {}).get("content") or ""
            reply = reply.strip() or "No response generated"
        except (ValueError, AttributeError, IndexError) as e:
            raise FastAckError(f"Malformed response: {e}") from e

        history.add_user_turn(text)
        history.add_assistant_turn(reply)

        logger.debug(f"Fast-ack reply ({len(reply)} chars) from {self.config.model}")
        return reply
