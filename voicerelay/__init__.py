"""VoiceRelay - low-latency voice assistant relay with a background coding agent."""

__version__ = "0.1.0"
