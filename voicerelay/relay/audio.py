"""
Audio accumulator - per connection recording buffer

idle --audio_start--> recording --audio_end--> idle
"""

import logging
from enum import Enum
from typing import List

logger = logging.getLogger(__name__)


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"


class AudioAccumulator:
    """Collects binary frames between audio_start and audio_end in arrival order."""

    def __init__(self):
        self.state = RecordingState.IDLE
        self._chunks: List[bytes] = []

    @property
    def is_recording(self) -> bool:
        return self.state == RecordingState.RECORDING

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def byte_count(self) -> int:
        return sum(len(c) for c in self._chunks)

    def start(self):
        """Begin a recording, dropping anything left from a previous one."""
        if self._chunks:
            logger.debug(f"Discarding {len(self._chunks)} stale audio chunks")
        self._chunks = []
        self.state = RecordingState.RECORDING

    def append(self, chunk: bytes) -> bool:
        """Append one frame. Returns False when the frame was dropped (not recording)."""
        if not self.is_recording:
            logger.debug(f"Dropping {len(chunk)} byte audio frame outside a recording")
            return False

        self._chunks.append(bytes(chunk))
        if len(self._chunks) % 10 == 0:
            logger.debug(f"Audio: {len(self._chunks)} chunks, {self.byte_count} bytes total")
        return True

    def finish(self) -> bytes:
        """End the recording and hand back the concatenation. The buffer is empty afterwards."""
        audio = b"".join(self._chunks)
        self._chunks = []
        self.state = RecordingState.IDLE
        return audio

    def clear(self):
        self._chunks = []
        self.state = RecordingState.IDLE
