"""
Voice Assistant Module

Assembles a ConversationOrchestrator for the configured transport and wraps
it for the outer surfaces: an interactive console session for the CLI and a
signal/notification feed for the HTTP API.

Usage:
    assistant = VoiceAssistant()
    await assistant.run()
"""

import asyncio
import signal
from dataclasses import dataclass
from typing import Callable, List, Optional

from mentorai.config import TRANSPORT_AGENT, TRANSPORT_AUTO, TRANSPORT_NATIVE, settings
from mentorai.logger import get_logger
from mentorai.realtime.agent_channel import ExternalAgentChannel
from mentorai.realtime.events import (
    Event,
    EventBus,
    NotificationEvent,
    SignalEvent,
)
from mentorai.realtime.orchestrator import ConversationOrchestrator
from mentorai.realtime.response_provider import ResponseProvider
from mentorai.realtime.session import ConversationState, SignalSnapshot

logger = get_logger(__name__)

QUIT_WORDS = ("quit", "exit", "q")


@dataclass
class VoiceAssistantConfig:
    """Configuration for the voice assistant."""
    # None resolves VOICE_TRANSPORT from settings
    transport: Optional[str] = None

    # No speech channels at all; answers are delivered as text
    text_only: bool = False

    # Max events buffered per feed subscriber
    feed_queue_size: int = 100


def build_orchestrator(
    event_bus: EventBus,
    config: Optional[VoiceAssistantConfig] = None,
) -> ConversationOrchestrator:
    """
    Build an orchestrator wired to the deployment's transport.

    Raises:
        ValueError: If the transport is unknown or not configured
    """
    config = config or VoiceAssistantConfig()
    provider = ResponseProvider.from_settings()

    if config.text_only:
        logger.info("Assistant transport: text only")
        return ConversationOrchestrator(event_bus, provider)

    transport = config.transport
    if transport in (None, TRANSPORT_AUTO):
        transport = settings.resolve_transport()

    if transport == TRANSPORT_AGENT:
        settings.agent.validate()
        from mentorai.realtime.audio_io import MicrophoneSource, SpeakerSink

        agent = ExternalAgentChannel(
            event_bus,
            source=MicrophoneSource(),
            sink=SpeakerSink(),
        )
        logger.info(f"Assistant transport: external agent {settings.agent.agent_id}")
        return ConversationOrchestrator(event_bus, provider, agent_channel=agent)

    if transport == TRANSPORT_NATIVE:
        settings.speech.validate()
        from mentorai.realtime.azure_speech import AzureSpeechInput, AzureSpeechOutput

        logger.info(f"Assistant transport: Azure Speech ({settings.speech.region})")
        return ConversationOrchestrator(
            event_bus,
            provider,
            speech_input=AzureSpeechInput(event_bus),
            speech_output=AzureSpeechOutput(event_bus),
        )

    raise ValueError(f"Unknown voice transport '{transport}'")


class VoiceAssistant:
    """
    Conversation facade used by the CLI and the HTTP API.

    Features:
    - begin / submit / end delegate to the orchestrator
    - Per-subscriber queues of SignalEvent and NotificationEvent
    - Interactive console loop with Ctrl+C handling
    """

    def __init__(
        self,
        config: Optional[VoiceAssistantConfig] = None,
        orchestrator: Optional[ConversationOrchestrator] = None,
    ):
        self._config = config or VoiceAssistantConfig()
        if orchestrator is None:
            orchestrator = build_orchestrator(EventBus(), self._config)
        self._orchestrator = orchestrator
        self._event_bus = orchestrator.event_bus
        self._feeds: List[asyncio.Queue] = []
        self._running = False

        self._event_bus.subscribe(SignalEvent, self._fan_out)
        self._event_bus.subscribe(NotificationEvent, self._fan_out)

    @property
    def orchestrator(self) -> ConversationOrchestrator:
        return self._orchestrator

    @property
    def snapshot(self) -> SignalSnapshot:
        return self._orchestrator.snapshot

    @property
    def state(self) -> str:
        return self._orchestrator.state.name

    @property
    def is_running(self) -> bool:
        return self._running

    async def begin(self) -> bool:
        return await self._orchestrator.begin()

    async def submit(self, text: str) -> bool:
        return await self._orchestrator.submit_text(text)

    async def end(self) -> None:
        await self._orchestrator.end()

    # ========================================================================
    # Feed
    # ========================================================================

    def subscribe(self) -> asyncio.Queue:
        """Register a feed queue that receives signal and notification events."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._config.feed_queue_size)
        self._feeds.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._feeds:
            self._feeds.remove(queue)

    async def _fan_out(self, event: Event) -> None:
        for queue in list(self._feeds):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Feed queue full, dropping {type(event).__name__}")

    # ========================================================================
    # Console session
    # ========================================================================

    async def run(self, read_line: Callable[[str], str] = input) -> None:
        """
        Run an interactive console session.

        Enter on an empty line starts listening, any other text is asked as a
        typed question, 'quit' leaves.
        """
        self._running = True

        loop = asyncio.get_running_loop()
        handled = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
                handled.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows / non-main thread
                pass

        feed = self.subscribe()
        printer = asyncio.create_task(self._print_feed(feed))

        try:
            while self._running:
                try:
                    line = await asyncio.to_thread(read_line, "")
                except EOFError:
                    break

                line = line.strip()
                if not self._running or line.lower() in QUIT_WORDS:
                    break

                if not line:
                    if self._orchestrator.state == ConversationState.IDLE:
                        await self.begin()
                    else:
                        await self.end()
                    continue

                if not await self.submit(line):
                    print("  (busy, press Enter to stop the current answer)")
        except asyncio.CancelledError:
            logger.info("Voice assistant cancelled")
        finally:
            await self.stop()
            self.unsubscribe(feed)
            printer.cancel()
            await asyncio.wait({printer})
            for sig in handled:
                loop.remove_signal_handler(sig)

    async def stop(self) -> None:
        """End any session and leave the console loop."""
        self._running = False
        try:
            await self._orchestrator.end()
        except Exception as e:
            logger.error(f"Error ending conversation: {e}")
        logger.info("Voice assistant stopped")

    def _signal_handler(self) -> None:
        logger.info("Shutdown signal received")
        self._running = False

    async def _print_feed(self, feed: asyncio.Queue) -> None:
        last_response = ""
        last_state = None
        while True:
            event = await feed.get()
            if isinstance(event, NotificationEvent) and event.notification:
                note = event.notification
                marker = "!" if note.is_error else "*"
                print(f"  [{marker}] {note.title}: {note.message}")
            elif isinstance(event, SignalEvent):
                snap = event.snapshot
                if snap.state != last_state:
                    last_state = snap.state
                    print(f"  ({snap.state.name.lower()})")
                if snap.last_response and snap.last_response != last_response:
                    last_response = snap.last_response
                    print(f"\n🎓 MentorAI: {snap.last_response}\n")


def print_banner() -> None:
    """Print assistant startup banner."""
    print("\n" + "=" * 60)
    print("🎓  MentorAI Voice Tutor")
    print("=" * 60)
    print("Controls:")
    print("  • Press Enter to start speaking (Enter again to stop)")
    print("  • Type a question and press Enter to ask it")
    print("  • Type 'quit' or press Ctrl+C to leave")
    print("-" * 60)
    print("Try: 'Explain quantum entanglement' or 'Teach me calculus basics'")
    print("-" * 60)
