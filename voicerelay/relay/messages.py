"""
Wire messages exchanged over the relay WebSocket

Inbound control frames are validated with pydantic; outbound messages are
plain dicts built by the helpers below.
"""

import base64
import json
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ClientMessageType(str, Enum):
    IDENTIFY = "identify"
    FETCH_FILE = "fetch_file"
    MESSAGE = "message"
    AUDIO_START = "audio_start"
    AUDIO_END = "audio_end"
    PING = "ping"
    INTERRUPT = "interrupt"


class ClientMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str
    content: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")


class FrameKind(str, Enum):
    CONTROL = "control"
    AUDIO = "audio"
    INVALID = "invalid"


def classify_frame(frame: Union[str, bytes]) -> tuple:
    """
    Split a raw frame into (kind, payload).

    - binary frames are audio
    - text frames that decode to a JSON object are control messages
    - text frames that are not JSON fall back to audio (their UTF-8 bytes)
    - JSON that is not a valid control object is INVALID
    """
    if isinstance(frame, (bytes, bytearray, memoryview)):
        return FrameKind.AUDIO, bytes(frame)

    try:
        decoded = json.loads(frame)
    except (ValueError, TypeError):
        return FrameKind.AUDIO, frame.encode("utf-8")

    if not isinstance(decoded, dict):
        return FrameKind.INVALID, decoded

    try:
        return FrameKind.CONTROL, ClientMessage.model_validate(decoded)
    except ValidationError:
        return FrameKind.INVALID, decoded


# === Server -> client ===

def system_init(content: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": "system_init", "content": content}
    if user_id:
        message["data"] = {"userId": user_id}
    return message


def fast_reply(content: str) -> Dict[str, Any]:
    return {"type": "groq_response", "content": content}


def transcription(content: str, is_final: bool = True) -> Dict[str, Any]:
    return {"type": "transcription", "content": content, "isFinal": is_final}


def tts_audio(audio: bytes) -> Dict[str, Any]:
    return {"type": "tts_audio", "data": base64.b64encode(audio).decode("ascii")}


def file_content(file_name: str, content: Optional[str], error: Optional[str] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {"fileName": file_name, "content": content}
    if error:
        data["error"] = error
    return {"type": "file_content", "data": data}


def error(content: str) -> Dict[str, Any]:
    return {"type": "error", "content": content}


def pong() -> Dict[str, Any]:
    return {"type": "pong"}


def interrupted(cancelled: int) -> Dict[str, Any]:
    return {
        "type": "interrupted",
        "content": "Interrupted" if cancelled else "Nothing to interrupt",
        "data": {"cancelled": cancelled},
    }
