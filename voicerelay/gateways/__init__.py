from voicerelay.gateways.fast_ack import FastAckGateway, ConversationHistory
from voicerelay.gateways.transcription import TranscriptionGateway
from voicerelay.gateways.synthesis import SynthesisGateway
from voicerelay.gateways.agent import AgentGateway, AgentEvent

__all__ = [
    "FastAckGateway",
    "ConversationHistory",
    "TranscriptionGateway",
    "SynthesisGateway",
    "AgentGateway",
    "AgentEvent",
]
