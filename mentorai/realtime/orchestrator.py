"""
Conversation Orchestrator Module

Central state machine for one spoken tutoring conversation. Sequences speech
capture, response generation and speech synthesis (or a hosted agent that
does all three), and turns their events into SignalEvent snapshots and
NotificationEvent alerts for the presentation layer.

State flow:
    IDLE -> LISTENING -> TRANSCRIBING -> AWAITING_RESPONSE -> SPEAKING -> IDLE
    any non-idle state -> ERROR -> IDLE (one notification, no retry)
"""

import asyncio
from typing import Optional

from mentorai.logger import get_logger
from mentorai.messages import msg, title
from mentorai.realtime.agent_channel import (
    AGENT_SOURCE,
    AgentConnectionError,
    ExternalAgentChannel,
)
from mentorai.realtime.events import (
    AgentConnectionEvent,
    AgentLinkStatus,
    AgentResponseEvent,
    AgentStateEvent,
    CaptureErrorEvent,
    CaptureTimeoutEvent,
    EventBus,
    NotificationEvent,
    SignalEvent,
    SynthesisEvent,
    SynthesisPhase,
    TranscriptEvent,
)
from mentorai.realtime.response_provider import ResponseProvider
from mentorai.realtime.session import (
    ChannelKind,
    ConversationSession,
    ConversationState,
    ErrorRecord,
    FailureKind,
    Notification,
    ResponseSource,
    SignalSnapshot,
    Utterance,
    UtteranceOrigin,
    can_transition,
    new_id,
)
from mentorai.realtime.speech_input import SpeechInputChannel
from mentorai.realtime.speech_output import SpeechOutputChannel

logger = get_logger(__name__)


class ConversationOrchestrator:
    """
    Owns the single conversation session and its state machine.

    Components report through the event bus; the orchestrator never lets an
    exception from a component cross into its callers. Without a speech
    output channel responses are delivered as text only.

    Usage:
        orchestrator = ConversationOrchestrator(bus, ResponseProvider.from_settings(),
                                                speech_input=stt, speech_output=tts)
        await orchestrator.begin()
        ...
        await orchestrator.submit_text("Teach me calculus basics")
        await orchestrator.end()
    """

    def __init__(
        self,
        event_bus: EventBus,
        response_provider: ResponseProvider,
        speech_input: Optional[SpeechInputChannel] = None,
        speech_output: Optional[SpeechOutputChannel] = None,
        agent_channel: Optional[ExternalAgentChannel] = None,
    ):
        self._event_bus = event_bus
        self._provider = response_provider
        self._input = speech_input
        self._output = speech_output
        self._agent = agent_channel

        self._session: Optional[ConversationSession] = None
        self._snapshot = SignalSnapshot()
        self._response_task: Optional[asyncio.Task] = None

        event_bus.subscribe(TranscriptEvent, self._on_transcript)
        event_bus.subscribe(CaptureErrorEvent, self._on_capture_error)
        event_bus.subscribe(CaptureTimeoutEvent, self._on_capture_timeout)
        event_bus.subscribe(SynthesisEvent, self._on_synthesis)
        event_bus.subscribe(AgentConnectionEvent, self._on_agent_connection)
        event_bus.subscribe(AgentStateEvent, self._on_agent_state)
        event_bus.subscribe(AgentResponseEvent, self._on_agent_response)

    # ========================================================================
    # Read-only views
    # ========================================================================

    @property
    def state(self) -> ConversationState:
        return self._session.state if self._session else ConversationState.IDLE

    @property
    def snapshot(self) -> SignalSnapshot:
        return self._snapshot

    @property
    def session(self) -> Optional[ConversationSession]:
        return self._session

    @property
    def channel_kind(self) -> ChannelKind:
        return ChannelKind.EXTERNAL_AGENT if self._agent else ChannelKind.NATIVE_SPEECH

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    # ========================================================================
    # Commands
    # ========================================================================

    async def begin(self) -> bool:
        """
        Start a conversation.

        Returns:
            False if a session already exists or nothing could be started
        """
        if self._session is not None:
            logger.debug("begin() ignored: session already active")
            return False

        if self._agent is not None:
            return await self._begin_agent()

        if self._input is None:
            logger.warning("begin() ignored: no speech input configured")
            return False

        session = self._new_session(ChannelKind.NATIVE_SPEECH)
        capture_id = new_id()
        session.active_capture_id = capture_id
        await self._transition(ConversationState.LISTENING)
        await self._notify("listening", level="info")
        await self._input.start_listening(capture_id)
        # The capture may already have failed or timed out
        return self._session is session and not session.ended

    async def _begin_agent(self) -> bool:
        session = self._new_session(ChannelKind.EXTERNAL_AGENT)
        try:
            await self._agent.connect()
        except AgentConnectionError as e:
            if self._session is session:
                await self._fail(FailureKind.CONNECTION_FAILURE, str(e))
            return False

        if self._session is not session:
            # end() ran while the handshake was in flight
            await self._agent.disconnect()
            return False
        return True

    async def submit_text(self, text: str, origin: UtteranceOrigin = UtteranceOrigin.TYPED) -> bool:
        """
        Feed user text into the conversation.

        Spoken transcripts and typed or suggested questions enter here alike.

        Returns:
            True if the text was accepted
        """
        if not text or not text.strip():
            logger.debug("submit_text() ignored: blank text")
            return False

        utterance = Utterance(text=text.strip(), origin=origin)
        session = self._session

        if session is not None and session.channel_kind == ChannelKind.EXTERNAL_AGENT:
            return await self._forward_to_agent(session, utterance)

        if session is None:
            session = self._new_session(ChannelKind.NATIVE_SPEECH)
        elif session.state == ConversationState.LISTENING:
            session.active_capture_id = None
            await self._stop_input()
        else:
            logger.info(f"submit_text() rejected in state {session.state.name}")
            return False

        session.last_transcript = utterance.text
        if not await self._transition(ConversationState.TRANSCRIBING):
            return False

        request_id = new_id()
        session.pending_request_id = request_id
        if not await self._transition(ConversationState.AWAITING_RESPONSE):
            return False

        logger.info(f"Question ({utterance.origin.value}): {utterance.text[:60]}")
        task = asyncio.create_task(self._respond(session, request_id, utterance))
        self._response_task = task
        await asyncio.wait({task})
        return True

    async def _forward_to_agent(self, session: ConversationSession, utterance: Utterance) -> bool:
        if session.ended or self._agent is None or not self._agent.is_connected:
            logger.info("submit_text() rejected: agent not connected")
            return False
        await self._agent.send_text(utterance.text)
        session.last_transcript = utterance.text
        await self._publish_signal()
        return True

    async def end(self) -> None:
        """Stop every channel and return to IDLE. Idempotent, never raises."""
        session = self._session
        if session is None or session.ended:
            return

        logger.info(f"Ending session {session.session_id}")
        session.ended = True
        session.pending_request_id = None
        await self._release_resources()
        await self._close_session(session)
        if session.channel_kind == ChannelKind.EXTERNAL_AGENT:
            await self._notify("agent_disconnected", level="info")

    # ========================================================================
    # Response pipeline
    # ========================================================================

    async def _respond(self, session: ConversationSession, request_id: str, utterance: Utterance) -> None:
        try:
            result = await self._provider.get_response(utterance.text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Response generation failed: {e}")
            if self._is_current(session, request_id):
                await self._fail(FailureKind.PROCESSING, str(e))
            return

        if not self._is_current(session, request_id):
            logger.debug(f"Dropping stale response for request {request_id}")
            return

        session.pending_request_id = None
        session.last_response = result.text
        logger.info(f"Answer from {result.source.value}: {result.text[:60]}")

        if self._output is None:
            await self._close_session(session)
            return

        utterance_id = new_id()
        session.active_utterance_id = utterance_id
        if not await self._transition(ConversationState.SPEAKING):
            return
        if self._live_session() is not session:
            return

        try:
            await self._output.speak(result.text, utterance_id=utterance_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._session is session and session.active_utterance_id == utterance_id:
                await self._fail(FailureKind.SYNTHESIS_FAILURE, str(e))

    def _is_current(self, session: ConversationSession, request_id: str) -> bool:
        return (
            self._session is session
            and not session.ended
            and session.pending_request_id == request_id
        )

    # ========================================================================
    # Event handlers
    # ========================================================================

    def _live_session(self) -> Optional[ConversationSession]:
        session = self._session
        if session is None or session.ended:
            return None
        return session

    async def _on_transcript(self, event: TranscriptEvent) -> None:
        session = self._live_session()
        if session is None:
            return

        if event.source == AGENT_SOURCE:
            if session.channel_kind == ChannelKind.EXTERNAL_AGENT:
                session.last_transcript = event.text
                await self._publish_signal()
            return

        if session.state != ConversationState.LISTENING or event.capture_id != session.active_capture_id:
            logger.debug("Ignoring transcript from a stale capture")
            return

        session.active_capture_id = None
        accepted = await self.submit_text(event.text, origin=UtteranceOrigin.SPEECH)
        if not accepted and self._session is session and session.state == ConversationState.LISTENING:
            await self._close_session(session)

    async def _on_capture_error(self, event: CaptureErrorEvent) -> None:
        session = self._live_session()
        if session is None or event.capture_id != session.active_capture_id:
            return
        session.active_capture_id = None
        await self._fail(event.kind, event.detail)

    async def _on_capture_timeout(self, event: CaptureTimeoutEvent) -> None:
        session = self._live_session()
        if session is None or event.capture_id != session.active_capture_id:
            return
        logger.info("No speech captured, returning to idle")
        session.active_capture_id = None
        session.ended = True
        await self._close_session(session)

    async def _on_synthesis(self, event: SynthesisEvent) -> None:
        session = self._live_session()
        if session is None or event.utterance_id != session.active_utterance_id:
            return

        if event.phase == SynthesisPhase.FINISHED:
            session.active_utterance_id = None
            await self._close_session(session)
        elif event.phase == SynthesisPhase.FAILED:
            session.active_utterance_id = None
            await self._fail(FailureKind.SYNTHESIS_FAILURE, event.detail)

    async def _on_agent_connection(self, event: AgentConnectionEvent) -> None:
        session = self._live_session()
        if session is None or session.channel_kind != ChannelKind.EXTERNAL_AGENT:
            return

        if event.status == AgentLinkStatus.CONNECTED:
            await self._transition(ConversationState.LISTENING)
            await self._notify("agent_connected", level="info")
        elif event.status == AgentLinkStatus.DISCONNECTED:
            session.ended = True
            await self._close_session(session)
            await self._notify("agent_disconnected", level="info")
        elif event.status == AgentLinkStatus.FAILED:
            await self._fail(FailureKind.CONNECTION_FAILURE, event.detail)

    async def _on_agent_state(self, event: AgentStateEvent) -> None:
        session = self._live_session()
        if session is None or session.channel_kind != ChannelKind.EXTERNAL_AGENT:
            return

        target = ConversationState.SPEAKING if event.is_speaking else ConversationState.LISTENING
        if session.state != target:
            await self._transition(target)

    async def _on_agent_response(self, event: AgentResponseEvent) -> None:
        session = self._live_session()
        if session is None or session.channel_kind != ChannelKind.EXTERNAL_AGENT:
            return
        session.last_response = event.text
        logger.info(f"Answer from {ResponseSource.EXTERNAL_AGENT.value}: {event.text[:60]}")
        await self._publish_signal()

    # ========================================================================
    # State helpers
    # ========================================================================

    def _new_session(self, kind: ChannelKind) -> ConversationSession:
        session = ConversationSession(channel_kind=kind)
        self._session = session
        logger.info(f"Session {session.session_id} started ({kind.value})")
        return session

    async def _transition(self, target: ConversationState) -> bool:
        session = self._session
        if session is None:
            return False
        if not can_transition(session.state, target):
            logger.warning(f"Illegal transition {session.state.name} -> {target.name} ignored")
            return False

        logger.debug(f"State: {session.state.name} -> {target.name}")
        session.state = target
        await self._publish_signal()
        return True

    async def _publish_signal(self) -> None:
        session = self._session
        if session is None:
            return
        self._snapshot = session.snapshot()
        await self._event_bus.publish(SignalEvent(snapshot=self._snapshot))

    async def _close_session(self, session: ConversationSession) -> None:
        """Move the session to IDLE and forget it."""
        if self._session is not session:
            return
        session.ended = True
        session.pending_request_id = None
        session.active_utterance_id = None
        if session.state != ConversationState.IDLE:
            await self._transition(ConversationState.IDLE)
        self._session = None
        logger.info(f"Session {session.session_id} closed after {session.age_s:.1f}s")

    async def _fail(self, kind: FailureKind, detail: str = "") -> None:
        """Surface a failure: ERROR, one notification, release, back to IDLE."""
        session = self._session
        if session is None or session.state == ConversationState.ERROR:
            return

        logger.error(f"Conversation error ({kind.value}): {detail}")
        session.ended = True
        session.last_error = ErrorRecord(kind=kind, detail=detail)
        await self._transition(ConversationState.ERROR)
        await self._notify(kind.value, level="error")
        await self._release_resources()
        await self._close_session(session)

    async def _notify(self, key: str, level: str) -> None:
        notification = Notification(kind=key, level=level, title=title(key), message=msg(key))
        await self._event_bus.publish(NotificationEvent(notification=notification))

    async def _stop_input(self) -> None:
        if self._input is None:
            return
        try:
            await self._input.stop()
        except Exception as e:
            logger.debug(f"Error stopping speech input: {e}")

    async def _release_resources(self) -> None:
        """Stop every channel and drop any in-flight response."""
        task = self._response_task
        self._response_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

        await self._stop_input()

        if self._output:
            try:
                await self._output.stop()
            except Exception as e:
                logger.debug(f"Error stopping speech output: {e}")

        if self._agent:
            try:
                await self._agent.disconnect()
            except Exception as e:
                logger.debug(f"Error disconnecting agent: {e}")
