"""
Tests for the speech input and output channel contracts and the voice helpers.
"""

import asyncio
import pytest

from mentorai.realtime.events import (
    CaptureErrorEvent,
    CaptureTimeoutEvent,
    SynthesisEvent,
    SynthesisPhase,
    TranscriptEvent,
)
from mentorai.realtime.session import FailureKind
from mentorai.realtime.speech_input import classify_cancellation
from mentorai.realtime.speech_output import (
    ProsodyConfig,
    VoiceInfo,
    build_ssml,
    choose_voice,
    escape_ssml,
)

from tests.fakes import FakeSpeechInput, FakeSpeechOutput, wait_until

CAPTURE_EVENTS = (TranscriptEvent, CaptureErrorEvent, CaptureTimeoutEvent)


def capture_outcomes(recorder):
    return [e for e in recorder.events if isinstance(e, CAPTURE_EVENTS)]


class TestVoiceSelection:
    """Tests for choose_voice()."""

    VOICES = [
        VoiceInfo(name="Acme Robot", locale="de-DE"),
        VoiceInfo(name="Acme Narrator", locale="en-GB"),
        VoiceInfo(name="Google UK English Female", locale="en-GB"),
        VoiceInfo(name="Microsoft Aria Online", locale="en-US"),
    ]

    def test_vendor_order_is_list_order(self):
        """The first voice matching any vendor wins, in voice order."""
        voice = choose_voice(self.VOICES, preferred_vendors=["Microsoft", "Google"], preferred_locale="en")
        assert voice.name == "Google UK English Female"

    def test_locale_fallback(self):
        voice = choose_voice(self.VOICES, preferred_vendors=["Nuance"], preferred_locale="en")
        assert voice.name == "Acme Narrator"

    def test_locale_match_is_case_insensitive(self):
        voice = choose_voice(self.VOICES, preferred_vendors=[], preferred_locale="DE")
        assert voice.name == "Acme Robot"

    def test_no_match_means_engine_default(self):
        assert choose_voice(self.VOICES, preferred_vendors=["Nuance"], preferred_locale="fr") is None
        assert choose_voice([], preferred_vendors=["Microsoft"], preferred_locale="en") is None


class TestProsody:
    """Tests for SSML prosody rendering."""

    def test_default_values(self):
        prosody = ProsodyConfig(rate=0.9, pitch=1.1, volume=0.8)
        assert prosody.ssml_rate == "0.90"
        assert prosody.ssml_pitch == "+10%"
        assert prosody.ssml_volume == "80"

    def test_lower_pitch(self):
        assert ProsodyConfig(rate=1.0, pitch=0.8, volume=1.0).ssml_pitch == "-20%"

    def test_escape(self):
        assert escape_ssml('a < b & "c"') == "a &lt; b &amp; &quot;c&quot;"

    def test_build_ssml(self):
        prosody = ProsodyConfig(rate=0.9, pitch=1.1, volume=0.8)
        ssml = build_ssml("Rates & limits", "en-US-JennyNeural", prosody)

        assert '<voice name="en-US-JennyNeural">' in ssml
        assert 'rate="0.90" pitch="+10%" volume="80"' in ssml
        assert "Rates &amp; limits" in ssml
        assert 'xml:lang="en-US"' in ssml


class TestCancellationClassification:
    """Tests for mapping Azure cancellation details to failure kinds."""

    def test_microphone_errors(self):
        assert classify_cancellation("SPXERR_MIC_NOT_AVAILABLE") == FailureKind.PERMISSION_DENIED
        assert classify_cancellation("Access denied to audio device") == FailureKind.PERMISSION_DENIED

    def test_other_errors(self):
        assert classify_cancellation("WebSocket upgrade failed: 401") == FailureKind.RECOGNITION_FAILURE
        assert classify_cancellation("") == FailureKind.RECOGNITION_FAILURE


class TestSpeechOutput:
    """Tests for the synthesis channel contract."""

    @pytest.mark.asyncio
    async def test_utterance_lifecycle(self, event_bus, recorder):
        output = FakeSpeechOutput(event_bus)

        utterance_id = await output.speak("Hello learner")
        assert output.is_speaking is True
        await output.wait_done()

        assert recorder.synthesis == [
            (SynthesisPhase.STARTED, utterance_id),
            (SynthesisPhase.FINISHED, utterance_id),
        ]
        assert output.is_speaking is False
        assert output.spoken == ["Hello learner"]

    @pytest.mark.asyncio
    async def test_caller_supplied_id(self, event_bus, recorder):
        output = FakeSpeechOutput(event_bus)
        assert await output.speak("Hi", utterance_id="u-custom") == "u-custom"
        await output.wait_done()
        assert recorder.synthesis[-1] == (SynthesisPhase.FINISHED, "u-custom")

    @pytest.mark.asyncio
    async def test_last_call_wins(self, event_bus, recorder):
        """speak(A) then speak(B): A is cancelled before B starts."""
        output = FakeSpeechOutput(event_bus, hold=True)

        first = await output.speak("first answer", utterance_id="u1")
        await wait_until(lambda: len(recorder.synthesis) == 1)
        second = await output.speak("second answer", utterance_id="u2")
        await wait_until(lambda: len(recorder.synthesis) == 3)
        output.release()
        await output.wait_done()

        assert recorder.synthesis == [
            (SynthesisPhase.STARTED, first),
            (SynthesisPhase.CANCELLED, first),
            (SynthesisPhase.STARTED, second),
            (SynthesisPhase.FINISHED, second),
        ]
        assert output.halt_count == 1

    @pytest.mark.asyncio
    async def test_empty_text_finishes_immediately(self, event_bus, recorder):
        output = FakeSpeechOutput(event_bus)

        utterance_id = await output.speak("   ")

        assert recorder.synthesis == [(SynthesisPhase.FINISHED, utterance_id)]
        assert output.spoken == []
        assert output.is_speaking is False

    @pytest.mark.asyncio
    async def test_failure_reported(self, event_bus, recorder):
        output = FakeSpeechOutput(event_bus)
        output.fail_with = RuntimeError("no audio device")

        utterance_id = await output.speak("Hello")
        await output.wait_done()

        phase, reported_id = recorder.synthesis[-1]
        assert phase == SynthesisPhase.FAILED
        assert reported_id == utterance_id
        assert "no audio device" in recorder.of_type(SynthesisEvent)[-1].detail
        assert output.is_speaking is False

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, event_bus, recorder):
        output = FakeSpeechOutput(event_bus, hold=True)

        utterance_id = await output.speak("long answer")
        await output.stop()
        await output.stop()

        cancelled = [s for s in recorder.synthesis if s[0] == SynthesisPhase.CANCELLED]
        assert cancelled == [(SynthesisPhase.CANCELLED, utterance_id)]
        assert output.halt_count == 1
        assert output.is_speaking is False

    @pytest.mark.asyncio
    async def test_stop_when_silent_publishes_nothing(self, event_bus, recorder):
        output = FakeSpeechOutput(event_bus)
        await output.stop()
        assert recorder.events == []


class TestSpeechInput:
    """Tests for the capture channel contract."""

    @pytest.mark.asyncio
    async def test_single_transcript(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus)

        assert await channel.start_listening("c1") is True
        assert channel.is_active
        channel.say("Explain quantum entanglement")
        await wait_until(lambda: capture_outcomes(recorder))

        outcomes = capture_outcomes(recorder)
        assert len(outcomes) == 1
        assert outcomes[0].text == "Explain quantum entanglement"
        assert outcomes[0].capture_id == "c1"
        assert channel.is_active is False
        assert channel.mic_open is False

    @pytest.mark.asyncio
    async def test_only_first_outcome_counts(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus)

        await channel.start_listening()
        channel.say("first")
        channel.fail(FailureKind.RECOGNITION_FAILURE, "late error")
        channel.say("second")
        await asyncio.sleep(0.05)

        outcomes = capture_outcomes(recorder)
        assert len(outcomes) == 1
        assert outcomes[0].text == "first"

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, event_bus):
        channel = FakeSpeechInput(event_bus)

        assert await channel.start_listening() is True
        capture_id = channel.capture_id
        assert await channel.start_listening() is False
        assert channel.capture_id == capture_id
        assert channel.open_count == 1

        await channel.stop()

    @pytest.mark.asyncio
    async def test_timeout(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus, timeout_s=0.05)

        await channel.start_listening("c-timeout")
        await wait_until(lambda: capture_outcomes(recorder))

        outcomes = capture_outcomes(recorder)
        assert len(outcomes) == 1
        assert isinstance(outcomes[0], CaptureTimeoutEvent)
        assert outcomes[0].capture_id == "c-timeout"
        assert channel.mic_open is False

    @pytest.mark.asyncio
    async def test_stop_is_silent(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus, timeout_s=0.05)

        await channel.start_listening()
        await channel.stop()
        await channel.stop()
        await asyncio.sleep(0.1)

        assert capture_outcomes(recorder) == []
        assert channel.mic_open is False

    @pytest.mark.asyncio
    async def test_late_transcript_dropped(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus)

        await channel.start_listening()
        await channel.stop()
        channel.say("arrived after stop")
        await asyncio.sleep(0.02)

        assert capture_outcomes(recorder) == []

    @pytest.mark.asyncio
    async def test_permission_denied(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus)
        channel.fail_open = PermissionError("declined")

        await channel.start_listening("c1")

        outcomes = capture_outcomes(recorder)
        assert len(outcomes) == 1
        assert outcomes[0].kind == FailureKind.PERMISSION_DENIED
        assert outcomes[0].capture_id == "c1"
        assert channel.is_active is False

    @pytest.mark.asyncio
    async def test_engine_start_failure(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus)
        channel.fail_open = OSError("engine crashed")

        await channel.start_listening()

        outcomes = capture_outcomes(recorder)
        assert outcomes[0].kind == FailureKind.RECOGNITION_FAILURE
        assert "engine crashed" in outcomes[0].detail

    @pytest.mark.asyncio
    async def test_microphone_error_on_start_is_permission_denied(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus)
        channel.fail_open = RuntimeError("Exception with an error code: 0xe (SPXERR_MIC_NOT_AVAILABLE)")

        await channel.start_listening("c1")

        outcomes = capture_outcomes(recorder)
        assert len(outcomes) == 1
        assert outcomes[0].kind == FailureKind.PERMISSION_DENIED
        assert "SPXERR_MIC_NOT_AVAILABLE" in outcomes[0].detail

    @pytest.mark.asyncio
    async def test_timeout_covers_slow_engine_start(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus, timeout_s=0.1, open_delay=0.5)
        loop = asyncio.get_running_loop()

        started = loop.time()
        assert await channel.start_listening("c-slow") is True
        elapsed = loop.time() - started

        assert elapsed < 0.3
        outcomes = capture_outcomes(recorder)
        assert len(outcomes) == 1
        assert isinstance(outcomes[0], CaptureTimeoutEvent)
        assert outcomes[0].capture_id == "c-slow"
        assert channel.is_active is False

        # The engine finishes starting later and is released again
        await asyncio.sleep(0.6)
        assert channel.mic_open is False
        assert len(capture_outcomes(recorder)) == 1

    @pytest.mark.asyncio
    async def test_stop_during_slow_engine_start(self, event_bus, recorder):
        channel = FakeSpeechInput(event_bus, open_delay=0.2)

        starting = asyncio.create_task(channel.start_listening())
        await wait_until(lambda: channel.open_count == 1)
        await channel.stop()

        assert await starting is True
        await asyncio.sleep(0.3)
        assert channel.mic_open is False
        assert capture_outcomes(recorder) == []

    @pytest.mark.asyncio
    async def test_microphone_released_before_publish(self, event_bus):
        channel = FakeSpeechInput(event_bus)

        await channel.start_listening()
        channel.say("hello")
        await wait_until(lambda: channel.mic_open_at_publish)

        assert channel.mic_open_at_publish == [False]

    @pytest.mark.asyncio
    async def test_transcript_from_foreign_thread(self, event_bus, recorder):
        """Engine callbacks on worker threads are marshalled onto the loop."""
        channel = FakeSpeechInput(event_bus)

        await channel.start_listening()
        await asyncio.to_thread(channel.say, "from a worker thread")
        await wait_until(lambda: capture_outcomes(recorder))

        assert capture_outcomes(recorder)[0].text == "from a worker thread"
