from voicerelay.relay.classifier import needs_agent
from voicerelay.relay.audio import AudioAccumulator, RecordingState
from voicerelay.relay.workspace import WorkspaceManager
from voicerelay.relay.store import UserStore
from voicerelay.relay.session import ConnectionSession, SessionRegistry, UserState
from voicerelay.relay.orchestrator import TurnOrchestrator
from voicerelay.relay.dispatcher import Dispatcher
from voicerelay.relay.server import RelayServer, build_server

__all__ = [
    "needs_agent",
    "AudioAccumulator",
    "RecordingState",
    "WorkspaceManager",
    "UserStore",
    "ConnectionSession",
    "SessionRegistry",
    "UserState",
    "TurnOrchestrator",
    "Dispatcher",
    "RelayServer",
    "build_server",
]
