"""
Agent gateway - tool-executing background agent

Wraps the Claude Agent SDK. Every invocation runs inside the user's
workspace directory, may resume a previous agent session, and is exposed
as an async stream of AgentEvent records that ends with exactly one
terminal event (``result`` or ``error``).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Optional

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    query,
)

from ..utils.config import AgentConfig
from ..utils.errors import AgentError

logger = logging.getLogger(__name__)

TERMINAL_KINDS = ("result", "error")


@dataclass
class AgentEvent:
    kind: str  # assistant, user, result, system_init, system, error
    content: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @property
    def is_error(self) -> bool:
        return self.kind == "error" or (self.kind == "result" and bool(self.data.get("is_error")))

    @property
    def session_id(self) -> Optional[str]:
        return self.data.get("session_id") or None

    def to_client(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"type": f"agent_{self.kind}", "content": self.content}
        if self.data:
            message["data"] = self.data
        return message


def convert_message(message: Any) -> Optional[AgentEvent]:
    """Map one SDK message onto an AgentEvent. Unknown message types return None."""
    if isinstance(message, AssistantMessage):
        texts = [block.text for block in message.content if isinstance(block, TextBlock)]
        tool_uses = [
            {"id": block.id, "name": block.name, "input": block.input}
            for block in message.content
            if isinstance(block, ToolUseBlock)
        ]
        data: Dict[str, Any] = {}
        session_id = getattr(message, "session_id", None)
        if session_id:
            data["session_id"] = session_id
        if tool_uses:
            data["tool_uses"] = tool_uses
        return AgentEvent(kind="assistant", content="\n".join(texts), data=data)

    if isinstance(message, UserMessage):
        if isinstance(message.content, str):
            return AgentEvent(kind="user", content=message.content)
        results = [
            {"tool_use_id": block.tool_use_id, "is_error": bool(block.is_error)}
            for block in message.content
            if isinstance(block, ToolResultBlock)
        ]
        return AgentEvent(kind="user", data={"tool_results": results})

    if isinstance(message, SystemMessage):
        payload = message.data or {}
        if message.subtype == "init":
            return AgentEvent(
                kind="system_init",
                content="Agent initialized",
                data={
                    "session_id": payload.get("session_id"),
                    "tools": payload.get("tools"),
                    "model": payload.get("model"),
                },
            )
        return AgentEvent(kind="system", content="System event", data=dict(payload, subtype=message.subtype))

    if isinstance(message, ResultMessage):
        if message.subtype == "success" and message.result:
            content = message.result
        elif message.is_error:
            content = f"Agent stopped: {message.subtype}"
        else:
            content = "Task completed"
        return AgentEvent(
            kind="result",
            content=content,
            data={
                "session_id": message.session_id,
                "duration_ms": message.duration_ms,
                "cost_usd": message.total_cost_usd,
                "num_turns": message.num_turns,
                "is_error": message.is_error,
                "subtype": message.subtype,
            },
        )

    return None


class AgentGateway:
    """Streams agent progress for one prompt inside a sandboxed working directory."""

    def __init__(self, config: AgentConfig, query_fn: Optional[Callable[..., Any]] = None):
        self.config = config
        self._query = query_fn or query

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def build_options(self, resume_token: Optional[str], cwd: str) -> ClaudeAgentOptions:
        kwargs: Dict[str, Any] = dict(
            cwd=cwd,
            permission_mode=self.config.permission_mode,
            resume=resume_token,
            allowed_tools=list(self.config.allowed_tools),
            max_turns=self.config.max_turns,
            setting_sources=list(self.config.setting_sources),
            system_prompt={
                "type": "preset",
                "preset": "claude_code",
                "append": self.config.system_prompt_append,
            },
        )
        if self.config.model:
            kwargs["model"] = self.config.model
        return ClaudeAgentOptions(**kwargs)

    async def stream(
        self,
        prompt: str,
        resume_token: Optional[str],
        cwd: str,
    ) -> AsyncIterator[AgentEvent]:
        """
        Yield AgentEvents as the agent produces them.

        Failures of the agent runtime are reported as a terminal ``error``
        event instead of an exception; only a disabled gateway raises
        AgentError. Closing this generator early closes the underlying SDK
        stream.
        """
        if not self.enabled:
            raise AgentError("Agent disabled")

        sdk_stream = None
        terminal_seen = False

        try:
            options = self.build_options(resume_token, cwd)
            sdk_stream = self._query(prompt=prompt, options=options)
            async for message in sdk_stream:
                event = convert_message(message)
                if event is None:
                    logger.debug(f"Skipping agent message {type(message).__name__}")
                    continue
                yield event
                if event.is_terminal:
                    terminal_seen = True
                    break
        except Exception as e:
            logger.error(f"Agent execution error: {e}", exc_info=True)
            terminal_seen = True
            yield AgentEvent(kind="error", content=str(e) or "Unknown error occurred")
        finally:
            aclose = getattr(sdk_stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug(f"Agent stream close failed: {e}")

        if not terminal_seen:
            yield AgentEvent(kind="error", content="Agent stream ended without a result")
