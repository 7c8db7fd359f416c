"""
errors.py - Exception hierarchy for VoiceRelay

Every collaborator failure is converted into one of these types before it
reaches the turn orchestrator, which maps them onto client `error` events.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all VoiceRelay errors."""


class ConfigError(RelayError):
    """Invalid or incomplete configuration."""


# ============================================================================
# Gateway errors
# ============================================================================


class GatewayError(RelayError):
    """An external AI collaborator failed."""

    gateway = "gateway"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"[{self.gateway}] {base} (HTTP {self.status_code})"
        return f"[{self.gateway}] {base}"


class FastAckError(GatewayError):
    gateway = "fast_ack"


class TranscriptionError(GatewayError):
    gateway = "transcription"


class EmptyAudioError(TranscriptionError):
    """Raised when an empty buffer is handed to the transcriber."""

    def __init__(self, message: str = "No audio data to transcribe"):
        super().__init__(message)


class SynthesisError(GatewayError):
    gateway = "synthesis"


class AgentError(GatewayError):
    gateway = "agent"


# ============================================================================
# Workspace errors
# ============================================================================


class WorkspaceError(RelayError):
    """Base class for workspace sandbox violations and lookups."""


class InvalidUserIdError(WorkspaceError):
    """User id cannot be mapped onto a workspace directory."""


class InvalidPathError(WorkspaceError):
    """Path resolves outside the user's workspace."""


class WorkspaceFileNotFoundError(WorkspaceError):
    """File is missing or unreadable inside the workspace."""
