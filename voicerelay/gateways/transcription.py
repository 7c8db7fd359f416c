"""
Transcription gateway - speech-to-text for one complete audio buffer
"""

import logging
from typing import Optional

import httpx

from ..utils.config import TranscriptionConfig
from ..utils.errors import EmptyAudioError, TranscriptionError

logger = logging.getLogger(__name__)


class TranscriptionGateway:
    """Uploads a recorded buffer to an OpenAI compatible /audio/transcriptions endpoint."""

    def __init__(self, config: TranscriptionConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    async def transcribe(self, audio: bytes) -> str:
        if not audio:
            raise EmptyAudioError()

        if not self.config.api_key:
            raise TranscriptionError("Transcription client not configured - check GROQ_API_KEY")

        files = {"file": (self.config.filename, audio, self.config.content_type)}
        data = {
            "model": self.config.model,
            "response_format": "json",
            "temperature": str(self.config.temperature),
        }
        if self.config.language:
            data["language"] = self.config.language

        url = f"{self.config.base_url.rstrip('/')}/audio/transcriptions"

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    files=files,
                    data=data,
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                )
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Request failed: {e}") from e

        if resp.status_code != 200:
            raise TranscriptionError(resp.text[:200] or "Unexpected response", status_code=resp.status_code)

        try:
            text = (resp.json().get("text") or "").strip()
        except (ValueError, AttributeError) as e:
            raise TranscriptionError(f"Malformed response: {e}") from e

        logger.debug(f"Transcribed {len(audio)} bytes into {len(text)} chars")
        return text
