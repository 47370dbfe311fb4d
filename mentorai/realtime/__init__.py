"""
Voice Conversation Core

Event-driven orchestration of one spoken tutoring conversation: speech
capture, a fallback chain of response strategies, speech synthesis, and an
optional hosted conversational agent.

Architecture:
- Event Bus: Async event coordination
- Session: States, transitions and signal snapshots
- Speech Input / Output: Capture and synthesis channel contracts
- Response Provider: Remote endpoint with local rule fallback
- External Agent: Duplex WebSocket link to a hosted agent
- Orchestrator: The conversation state machine
- Voice Assistant: Assembly for the CLI and HTTP API

The Azure Speech channels live in mentorai.realtime.azure_speech and are
imported on demand.

Usage:
    from mentorai.realtime import VoiceAssistant

    assistant = VoiceAssistant()
    await assistant.run()
"""

from .events import (
    Event,
    EventBus,
    TranscriptEvent,
    CaptureErrorEvent,
    CaptureTimeoutEvent,
    SynthesisEvent,
    SynthesisPhase,
    AgentStateEvent,
    AgentConnectionEvent,
    AgentLinkStatus,
    AgentResponseEvent,
    SignalEvent,
    NotificationEvent,
)
from .session import (
    ConversationState,
    ConversationSession,
    ChannelKind,
    Utterance,
    UtteranceOrigin,
    ResponseResult,
    ResponseSource,
    FailureKind,
    ErrorRecord,
    Notification,
    SignalSnapshot,
)
from .speech_input import SpeechInputChannel
from .speech_output import SpeechOutputChannel, ProsodyConfig, VoiceInfo, choose_voice, build_ssml
from .response_provider import (
    ResponseProvider,
    ResponseStrategy,
    ResponseFailure,
    RemoteResponseStrategy,
    LocalRuleStrategy,
    KeywordRule,
)
from .agent_channel import ExternalAgentChannel, AgentConnectionError
from .orchestrator import ConversationOrchestrator
from .voice_agent import VoiceAssistant, VoiceAssistantConfig, build_orchestrator, print_banner

__all__ = [
    # Events
    "Event",
    "EventBus",
    "TranscriptEvent",
    "CaptureErrorEvent",
    "CaptureTimeoutEvent",
    "SynthesisEvent",
    "SynthesisPhase",
    "AgentStateEvent",
    "AgentConnectionEvent",
    "AgentLinkStatus",
    "AgentResponseEvent",
    "SignalEvent",
    "NotificationEvent",
    # Session
    "ConversationState",
    "ConversationSession",
    "ChannelKind",
    "Utterance",
    "UtteranceOrigin",
    "ResponseResult",
    "ResponseSource",
    "FailureKind",
    "ErrorRecord",
    "Notification",
    "SignalSnapshot",
    # Channels
    "SpeechInputChannel",
    "SpeechOutputChannel",
    "ProsodyConfig",
    "VoiceInfo",
    "choose_voice",
    "build_ssml",
    # Responses
    "ResponseProvider",
    "ResponseStrategy",
    "ResponseFailure",
    "RemoteResponseStrategy",
    "LocalRuleStrategy",
    "KeywordRule",
    # Agent
    "ExternalAgentChannel",
    "AgentConnectionError",
    # Orchestration
    "ConversationOrchestrator",
    "VoiceAssistant",
    "VoiceAssistantConfig",
    "build_orchestrator",
    "print_banner",
]
