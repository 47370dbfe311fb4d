"""
Azure Speech Channels

Concrete speech input and output on the Azure Cognitive Services Speech SDK.

- AzureSpeechInput: continuous recognition on the default microphone, the
  first final result ends the capture, NoMatch segments are ignored.
- AzureSpeechOutput: SSML synthesis to the default speaker with the
  configured prosody; the voice is chosen from the service's voice list when
  none is configured.

Kept out of mentorai.realtime's package exports so the rest of the core
imports without the SDK installed.
"""

import asyncio
from typing import List, Optional

import azure.cognitiveservices.speech as speechsdk

from mentorai.config import settings
from mentorai.logger import get_logger
from mentorai.realtime.events import EventBus
from mentorai.realtime.speech_input import SpeechInputChannel, classify_cancellation
from mentorai.realtime.speech_output import (
    ProsodyConfig,
    SpeechOutputChannel,
    VoiceInfo,
    build_ssml,
    choose_voice,
)

logger = get_logger(__name__)

DEFAULT_VOICE = "en-US-JennyNeural"


class SynthesisFailed(RuntimeError):
    """Azure reported a synthesis error."""


def _speech_config() -> speechsdk.SpeechConfig:
    """Build an SDK config from settings."""
    if not settings.speech.is_configured:
        raise ValueError(
            "Azure Speech not configured. Set AZURE_SPEECH_API_KEY and "
            "AZURE_SPEECH_REGION in .env"
        )
    config = speechsdk.SpeechConfig(
        subscription=settings.speech.api_key,
        region=settings.speech.region,
    )
    config.speech_recognition_language = settings.speech.language
    return config


class AzureSpeechInput(SpeechInputChannel):
    """Azure continuous recognition, one final result per capture."""

    def __init__(self, event_bus: EventBus, timeout_s: Optional[float] = None):
        super().__init__(event_bus, timeout_s)
        self._speech_config = _speech_config()
        self._recognizer: Optional[speechsdk.SpeechRecognizer] = None
        logger.info(f"STT configured: language={settings.speech.language}")

    async def _open(self) -> None:
        audio_config = speechsdk.audio.AudioConfig(use_default_microphone=True)
        recognizer = speechsdk.SpeechRecognizer(
            speech_config=self._speech_config,
            audio_config=audio_config,
        )
        recognizer.recognized.connect(self._on_recognized)
        recognizer.canceled.connect(self._on_canceled)
        recognizer.session_started.connect(
            lambda evt: logger.debug(f"STT session started: {evt.session_id}")
        )
        self._recognizer = recognizer

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: recognizer.start_continuous_recognition_async().get())

    async def _close(self) -> None:
        recognizer = self._recognizer
        self._recognizer = None
        if recognizer is None:
            return

        for signal in (recognizer.recognized, recognizer.canceled, recognizer.session_started):
            signal.disconnect_all()

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: recognizer.stop_continuous_recognition_async().get())

    # ========================================================================
    # SDK callbacks (called from SDK thread)
    # ========================================================================

    def _on_recognized(self, evt: speechsdk.SpeechRecognitionEventArgs) -> None:
        if evt.result.reason != speechsdk.ResultReason.RecognizedSpeech:
            logger.debug(f"Ignoring recognition result: {evt.result.reason}")
            return

        text = evt.result.text.strip()
        if not text:
            return
        logger.debug(f"Final transcript: {text[:50]}")
        self._deliver_transcript(text)

    def _on_canceled(self, evt: speechsdk.SpeechRecognitionCanceledEventArgs) -> None:
        cancellation = evt.cancellation_details
        if cancellation.reason != speechsdk.CancellationReason.Error:
            logger.debug(f"STT cancelled: {cancellation.reason}")
            return

        detail = cancellation.error_details or "speech recognition error"
        logger.error(f"STT error: {detail}")
        self._deliver_error(classify_cancellation(detail), detail)


class AzureSpeechOutput(SpeechOutputChannel):
    """Azure neural TTS to the default speaker."""

    def __init__(
        self,
        event_bus: EventBus,
        prosody: Optional[ProsodyConfig] = None,
        voice_name: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        super().__init__(event_bus, prosody)
        self._speech_config = _speech_config()
        self._voice_name = voice_name or settings.speech.voice_name or None
        self._timeout_s = timeout_s or settings.voice.synthesis_timeout_s
        self._synthesizer: Optional[speechsdk.SpeechSynthesizer] = None

    async def _resolve_voice(self, synthesizer: speechsdk.SpeechSynthesizer) -> str:
        """Explicit voice, else the preferred one from the service, else the default."""
        if self._voice_name:
            return self._voice_name

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None, lambda: synthesizer.get_voices_async(settings.speech.language).get()
            )
            voices: List[VoiceInfo] = [
                VoiceInfo(name=v.short_name, locale=v.locale) for v in (result.voices or [])
            ]
        except Exception as e:
            logger.warning(f"Could not list voices, using default: {e}")
            voices = []

        choice = choose_voice(voices)
        self._voice_name = choice.name if choice else DEFAULT_VOICE
        logger.info(f"TTS voice: {self._voice_name}")
        return self._voice_name

    async def _synthesize(self, text: str) -> None:
        audio_config = speechsdk.audio.AudioOutputConfig(use_default_speaker=True)
        synthesizer = speechsdk.SpeechSynthesizer(
            speech_config=self._speech_config,
            audio_config=audio_config,
        )
        self._synthesizer = synthesizer

        try:
            voice = await self._resolve_voice(synthesizer)
            ssml = build_ssml(text, voice, self.prosody, settings.speech.language)
            result_future = synthesizer.speak_ssml_async(ssml)

            loop = asyncio.get_running_loop()
            try:
                result = await asyncio.wait_for(
                    loop.run_in_executor(None, result_future.get),
                    timeout=self._timeout_s,
                )
            except asyncio.TimeoutError:
                synthesizer.stop_speaking_async()
                raise SynthesisFailed(f"synthesis timed out after {self._timeout_s:.0f}s")

            if result.reason == speechsdk.ResultReason.SynthesizingAudioCompleted:
                return
            if result.reason == speechsdk.ResultReason.Canceled:
                details = result.cancellation_details
                raise SynthesisFailed(details.error_details or str(details.reason))
            raise SynthesisFailed(f"unexpected synthesis result: {result.reason}")
        finally:
            if self._synthesizer is synthesizer:
                self._synthesizer = None

    async def _halt(self) -> None:
        synthesizer = self._synthesizer
        if synthesizer is None:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: synthesizer.stop_speaking_async().get())
