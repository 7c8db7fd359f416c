"""
Synthesis gateway - text-to-speech
"""

import logging
from typing import Optional

import httpx

from ..utils.config import SynthesisConfig
from ..utils.errors import SynthesisError

logger = logging.getLogger(__name__)


class SynthesisGateway:
    """Calls an OpenAI compatible /audio/speech endpoint and returns the audio bytes."""

    def __init__(self, config: SynthesisConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def synthesize(self, text: str) -> bytes:
        if not self.config.enabled:
            raise SynthesisError("Synthesis disabled")

        if not self.config.api_key:
            raise SynthesisError("TTS client not configured - check OPENAI_API_KEY")

        if not text or not text.strip():
            raise SynthesisError("No text provided for synthesis")

        payload = {
            "model": self.config.model,
            "input": text,
            "voice": self.config.voice,
            "speed": self.config.speed,
        }
        url = f"{self.config.base_url.rstrip('/')}/audio/speech"

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                )
        except httpx.HTTPError as e:
            raise SynthesisError(f"Request failed: {e}") from e

        if resp.status_code != 200:
            raise SynthesisError("Speech request rejected", status_code=resp.status_code)

        audio = resp.content
        if not audio:
            raise SynthesisError("Empty audio returned")

        logger.debug(f"Generated {len(audio)} bytes of audio for {len(text)} chars")
        return audio
