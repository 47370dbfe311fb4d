"""
External Agent Channel

Duplex WebSocket link to a hosted conversational agent (ElevenLabs
Conversational AI). The agent does its own transcription, reasoning and
synthesis; this channel streams microphone audio up, plays agent audio down
and republishes the agent's state on the event bus:

- TranscriptEvent (source="external_agent") for user transcripts
- AgentResponseEvent for agent replies
- AgentStateEvent while agent audio is playing out
- AgentConnectionEvent on connect / disconnect / failure

No automatic reconnect: a dropped link ends the conversation.
"""

import asyncio
import base64
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
import websockets

from mentorai.config import AgentConfig, settings
from mentorai.logger import get_logger
from mentorai.realtime.audio_io import AudioSink, AudioSource, pcm_duration_s
from mentorai.realtime.events import (
    AgentConnectionEvent,
    AgentLinkStatus,
    AgentResponseEvent,
    AgentStateEvent,
    EventBus,
    TranscriptEvent,
)

logger = get_logger(__name__)

AGENT_SOURCE = "external_agent"

Connector = Callable[[str], Awaitable[Any]]

# Messages that arrive keyed by payload rather than by "type"
_PAYLOAD_TYPES = {
    "conversation_initiation_metadata_event": "conversation_initiation_metadata",
    "user_transcription_event": "user_transcript",
    "agent_response_event": "agent_response",
    "audio_event": "audio",
    "interruption_event": "interruption",
    "ping_event": "ping",
    "conversation_end_event": "conversation_end",
}


class AgentConnectionError(Exception):
    """The agent link could not be established."""


def message_type(data: Dict[str, Any]) -> str:
    """Resolve the protocol message type of an inbound frame."""
    msg_type = data.get("type")
    if msg_type:
        return msg_type
    for key, name in _PAYLOAD_TYPES.items():
        if key in data:
            return name
    return "unknown"


class ExternalAgentChannel:
    """
    WebSocket client for a hosted conversational agent.

    Usage:
        agent = ExternalAgentChannel(event_bus, source=MicrophoneSource(), sink=SpeakerSink())
        await agent.connect()        # raises AgentConnectionError
        await agent.send_text("Teach me calculus basics")
        await agent.disconnect()
    """

    def __init__(
        self,
        event_bus: EventBus,
        config: Optional[AgentConfig] = None,
        source: Optional[AudioSource] = None,
        sink: Optional[AudioSink] = None,
        connector: Optional[Connector] = None,
    ):
        self._event_bus = event_bus
        self._config = config or settings.agent
        self._source = source
        self._sink = sink
        self._connector = connector or websockets.connect

        self._ws: Any = None
        self._connected = False
        self._receive_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._speaking_task: Optional[asyncio.Task] = None
        self._is_speaking = False
        self._speaking_until = 0.0
        self.conversation_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_speaking(self) -> bool:
        return self._is_speaking

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def connect(self) -> None:
        """
        Open the link, send conversation initiation and start audio.

        Raises:
            AgentConnectionError: On any handshake or device failure
        """
        if self._connected:
            return

        try:
            url = await self._resolve_url()
            self._ws = await asyncio.wait_for(
                self._connector(url), timeout=self._config.connect_timeout_s
            )
            await self._ws.send(json.dumps({"type": "conversation_initiation_client_data"}))
            if self._sink is not None:
                await self._sink.start()
            if self._source is not None:
                await self._source.start()
        except asyncio.CancelledError:
            await self._release()
            raise
        except Exception as e:
            logger.error(f"Agent connection failed: {e!r}")
            await self._release()
            raise AgentConnectionError(str(e) or type(e).__name__) from e

        self._connected = True
        self._receive_task = asyncio.create_task(self._receive_loop())
        if self._source is not None:
            self._send_task = asyncio.create_task(self._send_audio())

        logger.info(f"Connected to agent {self._config.agent_id}")
        await self._event_bus.publish(AgentConnectionEvent(status=AgentLinkStatus.CONNECTED))

    async def disconnect(self) -> None:
        """Close the link and release audio devices. Idempotent."""
        await self._teardown(AgentLinkStatus.DISCONNECTED)

    async def send_text(self, text: str) -> None:
        """Send a typed user message to the agent."""
        if not self._connected or self._ws is None:
            logger.warning("send_text() ignored: agent not connected")
            return
        await self._ws.send(json.dumps({"type": "user_message", "text": text}))

    async def _resolve_url(self) -> str:
        """Public agent URL, or a signed URL when an API key is configured."""
        if not self._config.api_key:
            return self._config.public_url

        timeout = aiohttp.ClientTimeout(total=self._config.connect_timeout_s)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(
                self._config.signed_url_endpoint,
                params={"agent_id": self._config.agent_id},
                headers={"xi-api-key": self._config.api_key},
            ) as response:
                response.raise_for_status()
                data = await response.json()

        signed_url = data.get("signed_url") if isinstance(data, dict) else None
        if not signed_url:
            raise AgentConnectionError("signed URL response missing 'signed_url'")
        return signed_url

    async def _teardown(self, status: AgentLinkStatus, detail: str = "") -> None:
        if not self._connected:
            return
        self._connected = False

        current = asyncio.current_task()
        for task in (self._send_task, self._receive_task):
            if task and not task.done() and task is not current:
                task.cancel()
                await asyncio.wait({task})
        self._send_task = None
        self._receive_task = None

        await self._release()
        was_speaking = self._stop_speaking_timer()
        if was_speaking:
            await self._event_bus.publish(AgentStateEvent(is_speaking=False))

        if status == AgentLinkStatus.FAILED:
            logger.error(f"Agent link failed: {detail}")
        else:
            logger.info("Agent conversation ended")
        await self._event_bus.publish(AgentConnectionEvent(status=status, detail=detail))

    async def _release(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing agent socket: {e}")
        for device in (self._source, self._sink):
            if device is None:
                continue
            try:
                await device.stop()
            except Exception as e:
                logger.debug(f"Error releasing audio device: {e}")

    # ========================================================================
    # Streaming
    # ========================================================================

    async def _send_audio(self) -> None:
        try:
            while self._connected:
                chunk = await self._source.read()
                if not chunk:
                    break
                if self._ws is None:
                    break
                await self._ws.send(json.dumps({
                    "user_audio_chunk": base64.b64encode(chunk).decode("ascii"),
                }))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Microphone streaming stopped: {e}")

    async def _receive_loop(self) -> None:
        status = AgentLinkStatus.DISCONNECTED
        detail = ""
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except (TypeError, ValueError):
                    logger.debug("Ignoring non-JSON agent frame")
                    continue

                outcome = await self._handle_message(data)
                if outcome is not None:
                    status, detail = outcome
                    break
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            status, detail = AgentLinkStatus.FAILED, f"connection closed: {e}"
        except Exception as e:
            status, detail = AgentLinkStatus.FAILED, str(e)

        await self._teardown(status, detail)

    async def _handle_message(self, data: Dict[str, Any]):
        """Handle one inbound frame. Returns (status, detail) when the link should end."""
        msg_type = message_type(data)

        if msg_type == "conversation_initiation_metadata":
            metadata = data.get("conversation_initiation_metadata_event", {})
            self.conversation_id = metadata.get("conversation_id")
            logger.info(f"Agent conversation id: {self.conversation_id}")

        elif msg_type == "user_transcript":
            text = data.get("user_transcription_event", {}).get("user_transcript", "")
            if text:
                await self._event_bus.publish(TranscriptEvent(text=text, source=AGENT_SOURCE))

        elif msg_type == "agent_response":
            text = data.get("agent_response_event", {}).get("agent_response", "")
            if text:
                await self._event_bus.publish(AgentResponseEvent(text=text))

        elif msg_type == "audio":
            audio_b64 = data.get("audio_event", {}).get("audio_base_64", "")
            if audio_b64:
                await self._on_audio(base64.b64decode(audio_b64))

        elif msg_type == "interruption":
            logger.debug("Agent interrupted, flushing playback")
            if self._sink is not None:
                self._sink.flush()
            if self._stop_speaking_timer():
                await self._event_bus.publish(AgentStateEvent(is_speaking=False))

        elif msg_type == "ping":
            event_id = data.get("ping_event", {}).get("event_id")
            if event_id is not None and self._ws is not None:
                await self._ws.send(json.dumps({"type": "pong", "event_id": event_id}))

        elif msg_type == "error":
            return AgentLinkStatus.FAILED, data.get("message", "agent error")

        elif msg_type == "conversation_end":
            reason = data.get("conversation_end_event", {}).get("termination_reason", "")
            logger.info(f"Agent ended conversation {reason}".strip())
            return AgentLinkStatus.DISCONNECTED, reason

        else:
            logger.debug(f"Unhandled agent message type={msg_type}")

        return None

    # ========================================================================
    # Speaking state
    # ========================================================================

    async def _on_audio(self, pcm: bytes) -> None:
        if self._sink is not None:
            await self._sink.play(pcm)

        now = time.monotonic()
        self._speaking_until = max(self._speaking_until, now) + pcm_duration_s(
            pcm, self._config.sample_rate
        )

        if not self._is_speaking:
            self._is_speaking = True
            await self._event_bus.publish(AgentStateEvent(is_speaking=True))

        if self._speaking_task is None or self._speaking_task.done():
            self._speaking_task = asyncio.create_task(self._speaking_watch())

    async def _speaking_watch(self) -> None:
        while True:
            remaining = self._speaking_until - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)

        self._speaking_task = None
        if self._is_speaking:
            self._is_speaking = False
            await self._event_bus.publish(AgentStateEvent(is_speaking=False))

    def _stop_speaking_timer(self) -> bool:
        """Cancel the playout timer. Returns True if the agent was speaking."""
        task = self._speaking_task
        self._speaking_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._speaking_until = 0.0
        was_speaking = self._is_speaking
        self._is_speaking = False
        return was_speaking
