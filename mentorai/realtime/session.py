"""
Conversation Session Model

State, correlation ids and the observable signal snapshot for one dialogue.
Every mutable conversation flag lives on ConversationSession; consumers only
ever see frozen SignalSnapshot copies.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, FrozenSet, Optional


class ConversationState(Enum):
    """Top-level conversation state."""
    IDLE = auto()
    LISTENING = auto()
    TRANSCRIBING = auto()
    AWAITING_RESPONSE = auto()
    SPEAKING = auto()
    ERROR = auto()


# Legal moves of the orchestrator state machine. ERROR is also reachable from
# IDLE because an external-agent handshake fails before any listening starts.
ALLOWED_TRANSITIONS: Dict[ConversationState, FrozenSet[ConversationState]] = {
    ConversationState.IDLE: frozenset({
        ConversationState.LISTENING,
        ConversationState.TRANSCRIBING,
        ConversationState.ERROR,
    }),
    ConversationState.LISTENING: frozenset({
        ConversationState.TRANSCRIBING,
        ConversationState.SPEAKING,
        ConversationState.IDLE,
        ConversationState.ERROR,
    }),
    ConversationState.TRANSCRIBING: frozenset({
        ConversationState.AWAITING_RESPONSE,
        ConversationState.IDLE,
        ConversationState.ERROR,
    }),
    ConversationState.AWAITING_RESPONSE: frozenset({
        ConversationState.SPEAKING,
        ConversationState.IDLE,
        ConversationState.ERROR,
    }),
    ConversationState.SPEAKING: frozenset({
        ConversationState.IDLE,
        ConversationState.LISTENING,
        ConversationState.ERROR,
    }),
    ConversationState.ERROR: frozenset({
        ConversationState.IDLE,
    }),
}


def can_transition(current: ConversationState, target: ConversationState) -> bool:
    """Check whether the state machine allows moving from current to target."""
    return target in ALLOWED_TRANSITIONS[current]


class ChannelKind(Enum):
    """Which transport feeds the session."""
    NATIVE_SPEECH = "native_speech"
    EXTERNAL_AGENT = "external_agent"


class UtteranceOrigin(Enum):
    """Where a piece of user text came from."""
    SPEECH = "speech"
    AGENT = "agent"
    TYPED = "typed"


class ResponseSource(Enum):
    """Which strategy produced a response."""
    REMOTE = "remote"
    LOCAL_FALLBACK = "local_fallback"
    EXTERNAL_AGENT = "external_agent"


class FailureKind(Enum):
    """Failure taxonomy. Values double as message keys."""
    PERMISSION_DENIED = "permission_denied"
    RECOGNITION_FAILURE = "recognition_failure"
    SYNTHESIS_FAILURE = "synthesis_failure"
    RESPONSE_FAILURE = "response_failure"
    CONNECTION_FAILURE = "connection_failure"
    PROCESSING = "processing"


def new_id() -> str:
    """Short random correlation id."""
    return uuid.uuid4().hex[:8]


@dataclass(frozen=True)
class Utterance:
    """One piece of user text, consumed once."""
    text: str
    origin: UtteranceOrigin = UtteranceOrigin.TYPED
    captured_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ResponseResult:
    """Assistant text plus the strategy that produced it."""
    text: str
    source: ResponseSource


@dataclass(frozen=True)
class ErrorRecord:
    """A surfaced failure."""
    kind: FailureKind
    detail: str = ""
    occurred_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Notification:
    """Human-readable alert for the presentation layer."""
    kind: str
    level: str
    title: str
    message: str

    @property
    def is_error(self) -> bool:
        return self.level == "error"


@dataclass(frozen=True)
class SignalSnapshot:
    """Externally observable view of the conversation."""
    state: ConversationState = ConversationState.IDLE
    is_listening: bool = False
    is_speaking: bool = False
    is_processing: bool = False
    last_transcript: str = ""
    last_response: str = ""
    last_error: Optional[ErrorRecord] = None

    def to_dict(self) -> dict:
        """Serialize for JSON transports."""
        error = None
        if self.last_error is not None:
            error = {
                "kind": self.last_error.kind.value,
                "detail": self.last_error.detail,
                "occurred_at": self.last_error.occurred_at,
            }
        return {
            "state": self.state.name.lower(),
            "is_listening": self.is_listening,
            "is_speaking": self.is_speaking,
            "is_processing": self.is_processing,
            "last_transcript": self.last_transcript,
            "last_response": self.last_response,
            "last_error": error,
        }


@dataclass
class ConversationSession:
    """
    Mutable state of one dialogue.

    listening, transcribing, awaiting-response and speaking are projections of
    `state`, so at most one of them holds at a time.
    """
    channel_kind: ChannelKind = ChannelKind.NATIVE_SPEECH
    session_id: str = field(default_factory=new_id)
    state: ConversationState = ConversationState.IDLE
    pending_request_id: Optional[str] = None
    active_utterance_id: Optional[str] = None
    active_capture_id: Optional[str] = None
    last_error: Optional[ErrorRecord] = None
    last_transcript: str = ""
    last_response: str = ""
    created_at: float = field(default_factory=time.time)
    ended: bool = False

    @property
    def is_listening(self) -> bool:
        return self.state == ConversationState.LISTENING

    @property
    def is_speaking(self) -> bool:
        return self.state == ConversationState.SPEAKING

    @property
    def is_processing(self) -> bool:
        return self.state in (
            ConversationState.TRANSCRIBING,
            ConversationState.AWAITING_RESPONSE,
        )

    @property
    def age_s(self) -> float:
        return time.time() - self.created_at

    def snapshot(self) -> SignalSnapshot:
        """Build an immutable copy of the observable signals."""
        return SignalSnapshot(
            state=self.state,
            is_listening=self.is_listening,
            is_speaking=self.is_speaking,
            is_processing=self.is_processing,
            last_transcript=self.last_transcript,
            last_response=self.last_response,
            last_error=self.last_error,
        )
