"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
Nothing here touches Azure, audio hardware or the network.
"""

import os
import sys
import pytest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment before mentorai.config is imported
os.environ["APP_ENV"] = "test"
os.environ["AZURE_SPEECH_API_KEY"] = ""
os.environ["AZURE_SPEECH_REGION"] = ""
os.environ["ELEVENLABS_AGENT_ID"] = ""
os.environ["ELEVENLABS_API_KEY"] = ""
os.environ["RESPONSE_API_URL"] = ""
os.environ["VOICE_TRANSPORT"] = "auto"

from mentorai.realtime.events import EventBus
from mentorai.realtime.response_provider import LocalRuleStrategy, ResponseProvider

from tests.fakes import (
    EventRecorder,
    FakeAudioSink,
    FakeSpeechInput,
    FakeSpeechOutput,
    FakeWebSocket,
)


@pytest.fixture
def event_bus():
    """Fresh event bus per test."""
    return EventBus()


@pytest.fixture
def recorder(event_bus):
    """Records every event published on the bus."""
    return EventRecorder(event_bus)


@pytest.fixture
def local_provider():
    """Response provider with only the local rules."""
    return ResponseProvider(terminal=LocalRuleStrategy())


@pytest.fixture
def speech_input(event_bus):
    """Fake microphone capture with a generous timeout."""
    return FakeSpeechInput(event_bus, timeout_s=5.0)


@pytest.fixture
def speech_output(event_bus):
    """Fake synthesis that plays until released."""
    return FakeSpeechOutput(event_bus, hold=True)


@pytest.fixture
def fake_ws():
    """Scriptable WebSocket for the agent link."""
    return FakeWebSocket()


@pytest.fixture
def audio_sink():
    """Records agent audio instead of playing it."""
    return FakeAudioSink()


@pytest.fixture
def sample_questions():
    """Questions a learner might ask."""
    return [
        "Explain quantum entanglement",
        "Teach me calculus basics",
        "xyzzy plugh",
    ]
