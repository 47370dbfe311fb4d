"""
Event System for the Voice Conversation Core

Provides a small async event bus used by every component. Components never
call the orchestrator directly; they publish events and the orchestrator
publishes signals and notifications for the presentation layer.

Event Types:
- TranscriptEvent: Final text captured from the user
- CaptureErrorEvent: Speech capture failed
- CaptureTimeoutEvent: Capture window elapsed without a result
- SynthesisEvent: Speech output lifecycle (started/finished/failed/cancelled)
- AgentStateEvent: External agent speaking flag changed
- AgentConnectionEvent: External agent link status changed
- AgentResponseEvent: External agent produced a reply
- SignalEvent: New signal snapshot for consumers
- NotificationEvent: Human-readable alert for consumers
"""

import asyncio
import time
import uuid
from abc import ABC
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from mentorai.logger import get_logger
from mentorai.realtime.session import (
    FailureKind,
    Notification,
    SignalSnapshot,
)

logger = get_logger(__name__)

T = TypeVar("T", bound="Event")
EventHandler = Callable[[T], Awaitable[None]]


@dataclass
class Event(ABC):
    """Base event class for all conversation events."""
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    timestamp: float = field(default_factory=time.time)
    source: str = ""

    @property
    def age_ms(self) -> float:
        """Get event age in milliseconds."""
        return (time.time() - self.timestamp) * 1000


# ============================================================================
# Capture Events
# ============================================================================

@dataclass
class TranscriptEvent(Event):
    """Final user transcript."""
    text: str = ""
    capture_id: str = ""
    source: str = "speech_input"


@dataclass
class CaptureErrorEvent(Event):
    """Speech capture failed."""
    kind: FailureKind = FailureKind.RECOGNITION_FAILURE
    detail: str = ""
    capture_id: str = ""
    source: str = "speech_input"


@dataclass
class CaptureTimeoutEvent(Event):
    """Capture window elapsed with no transcript and no error."""
    capture_id: str = ""
    source: str = "speech_input"


# ============================================================================
# Synthesis Events
# ============================================================================

class SynthesisPhase(Enum):
    """Lifecycle of one utterance."""
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SynthesisEvent(Event):
    """Speech output progress for one utterance."""
    phase: SynthesisPhase = SynthesisPhase.STARTED
    utterance_id: str = ""
    detail: str = ""
    source: str = "speech_output"


# ============================================================================
# External Agent Events
# ============================================================================

class AgentLinkStatus(Enum):
    """External agent link status."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


@dataclass
class AgentStateEvent(Event):
    """External agent started or stopped speaking."""
    is_speaking: bool = False
    source: str = "external_agent"


@dataclass
class AgentConnectionEvent(Event):
    """External agent link changed status."""
    status: AgentLinkStatus = AgentLinkStatus.CONNECTED
    detail: str = ""
    conversation_id: Optional[str] = None
    source: str = "external_agent"


@dataclass
class AgentResponseEvent(Event):
    """External agent reply text."""
    text: str = ""
    source: str = "external_agent"


# ============================================================================
# Presentation Events
# ============================================================================

@dataclass
class SignalEvent(Event):
    """Snapshot pushed to consumers on every state transition."""
    snapshot: SignalSnapshot = field(default_factory=SignalSnapshot)
    source: str = "orchestrator"


@dataclass
class NotificationEvent(Event):
    """Alert pushed to consumers."""
    notification: Optional[Notification] = None
    source: str = "orchestrator"


# ============================================================================
# Event Bus
# ============================================================================

class EventBus:
    """
    Simple async event bus.

    Handlers are awaited in subscription order. Subscribing to a base class
    receives all subclasses. A failing handler is logged and never affects
    the publisher or other handlers.
    """

    def __init__(self):
        self._handlers: Dict[type, List[EventHandler]] = {}
        self._event_count: int = 0

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        """Subscribe to events of a specific type."""
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: EventHandler) -> None:
        """Unsubscribe a handler from an event type."""
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type] if h != handler
            ]

    async def publish(self, event: Event) -> None:
        """Dispatch an event to every matching handler."""
        self._event_count += 1

        handlers = []
        for registered_type, type_handlers in self._handlers.items():
            if isinstance(event, registered_type):
                handlers.extend(type_handlers)

        for handler in handlers:
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Handler error for {type(event).__name__}: {e}")

    @property
    def event_count(self) -> int:
        """Total events published."""
        return self._event_count
