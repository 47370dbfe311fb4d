"""
MentorAI - Voice Tutor Core

A spoken-dialogue tutoring assistant: capture a spoken question, answer it
through a fallback chain of response strategies, speak the answer back, and
report listening/speaking/idle/error signals to presentation layers.

This package provides:
- The conversation orchestration state machine
- Azure Speech capture and synthesis channels
- A hosted conversational agent link (ElevenLabs Conversational AI)
- CLI and HTTP API surfaces
"""

__version__ = "1.0.0"

from mentorai.config import settings

__all__ = ["settings", "__version__"]
