"""
Speech Output Channel

Base class for text-to-speech playback plus the voice and prosody helpers
shared by concrete engines.

Last call wins: speak() while an utterance is playing halts it, publishes
CANCELLED for it and only then starts the new one.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from mentorai.config import settings
from mentorai.logger import get_logger
from mentorai.realtime.events import EventBus, SynthesisEvent, SynthesisPhase
from mentorai.realtime.session import new_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class VoiceInfo:
    """A voice offered by the synthesis engine."""
    name: str
    locale: str = ""


@dataclass
class ProsodyConfig:
    """Rate, pitch and volume applied to every utterance."""
    rate: float = field(default_factory=lambda: settings.voice.rate)
    pitch: float = field(default_factory=lambda: settings.voice.pitch)
    volume: float = field(default_factory=lambda: settings.voice.volume)

    @property
    def ssml_rate(self) -> str:
        return f"{self.rate:.2f}"

    @property
    def ssml_pitch(self) -> str:
        percent = round((self.pitch - 1.0) * 100)
        return f"{percent:+d}%"

    @property
    def ssml_volume(self) -> str:
        return str(round(self.volume * 100))


def choose_voice(
    voices: Iterable[VoiceInfo],
    preferred_vendors: Optional[List[str]] = None,
    preferred_locale: Optional[str] = None,
) -> Optional[VoiceInfo]:
    """
    Pick a voice by preference.

    First voice whose name contains any preferred vendor, else the first whose
    locale starts with the preferred locale, else None (engine default).
    """
    voices = list(voices)
    vendors = preferred_vendors if preferred_vendors is not None else settings.voice.preferred_vendors
    locale = preferred_locale if preferred_locale is not None else settings.voice.preferred_locale

    for voice in voices:
        if any(vendor and vendor in voice.name for vendor in vendors):
            return voice
    if locale:
        for voice in voices:
            if voice.locale.lower().startswith(locale.lower()):
                return voice
    return None


def escape_ssml(text: str) -> str:
    """Escape special characters for SSML."""
    return (
        text.replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;")
            .replace('"', "&quot;")
            .replace("'", "&apos;")
    )


def build_ssml(text: str, voice_name: str, prosody: ProsodyConfig, language: str = "en-US") -> str:
    """Build SSML for one utterance."""
    return f"""<speak version="1.0" xmlns="http://www.w3.org/2001/10/synthesis" xml:lang="{language}">
    <voice name="{voice_name}">
        <prosody rate="{prosody.ssml_rate}" pitch="{prosody.ssml_pitch}" volume="{prosody.ssml_volume}">
            {escape_ssml(text)}
        </prosody>
    </voice>
</speak>"""


class SpeechOutputChannel(ABC):
    """
    Text-to-speech playback with started/finished/failed/cancelled events.

    Subclasses implement _synthesize() (play one utterance to completion,
    raising on failure) and _halt() (stop audio immediately).

    Usage:
        tts = AzureSpeechOutput(event_bus)
        utterance_id = await tts.speak("Hello, what shall we learn today?")
        await tts.stop()
    """

    def __init__(self, event_bus: EventBus, prosody: Optional[ProsodyConfig] = None):
        self._event_bus = event_bus
        self._prosody = prosody or ProsodyConfig()
        self._utterance_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_speaking(self) -> bool:
        return self._utterance_id is not None

    @property
    def prosody(self) -> ProsodyConfig:
        return self._prosody

    @abstractmethod
    async def _synthesize(self, text: str) -> None:
        """Synthesize and play text. Returns when playback completes."""

    @abstractmethod
    async def _halt(self) -> None:
        """Stop any audio currently playing."""

    async def speak(self, text: str, utterance_id: Optional[str] = None) -> str:
        """
        Start speaking text, replacing any utterance in progress.

        Returns:
            The utterance id carried by this utterance's synthesis events
        """
        utterance_id = utterance_id or new_id()
        await self.stop()

        if not text or not text.strip():
            await self._publish(SynthesisPhase.FINISHED, utterance_id)
            return utterance_id

        self._utterance_id = utterance_id
        self._task = asyncio.create_task(self._run(utterance_id, text))
        return utterance_id

    async def stop(self) -> None:
        """Halt the current utterance and publish CANCELLED for it. Idempotent."""
        utterance_id = self._utterance_id
        if utterance_id is None:
            return

        self._utterance_id = None
        task = self._task
        self._task = None

        try:
            await self._halt()
        except Exception as e:
            logger.debug(f"Error halting audio: {e}")

        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})

        logger.debug(f"Utterance {utterance_id} cancelled")
        await self._publish(SynthesisPhase.CANCELLED, utterance_id)

    async def wait_done(self) -> None:
        """Wait for the current utterance, if any, to end."""
        task = self._task
        if task and not task.done():
            await asyncio.wait({task})

    async def _run(self, utterance_id: str, text: str) -> None:
        await self._publish(SynthesisPhase.STARTED, utterance_id)
        try:
            await self._synthesize(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Speech synthesis failed: {e}")
            if self._utterance_id == utterance_id:
                self._utterance_id = None
                self._task = None
                await self._publish(SynthesisPhase.FAILED, utterance_id, str(e))
            return

        if self._utterance_id == utterance_id:
            self._utterance_id = None
            self._task = None
            await self._publish(SynthesisPhase.FINISHED, utterance_id)

    async def _publish(self, phase: SynthesisPhase, utterance_id: str, detail: str = "") -> None:
        await self._event_bus.publish(SynthesisEvent(
            phase=phase, utterance_id=utterance_id, detail=detail,
        ))
