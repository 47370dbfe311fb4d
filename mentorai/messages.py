"""User-facing message lookup.

Short alert texts keyed by notification kind, plus the rotating welcome line
shown by the HTTP API.
"""

from __future__ import annotations

from datetime import datetime
import random

_MESSAGES: dict[str, tuple[str, str]] = {
    "permission_denied": (
        "Microphone Access Denied",
        "Please allow microphone access to use voice features.",
    ),
    "recognition_failure": (
        "Speech Recognition Error",
        "I couldn't understand that. Please try speaking again.",
    ),
    "synthesis_failure": (
        "Speech Error",
        "Unable to play voice. Please check your audio output settings.",
    ),
    "connection_failure": (
        "Connection Error",
        "Failed to connect to AI mentor.",
    ),
    "processing": (
        "Processing Error",
        "Unable to process your message. Please try again.",
    ),
    "agent_connected": (
        "AI Connected",
        "You can now talk to your mentor!",
    ),
    "agent_disconnected": (
        "AI Disconnected",
        "Conversation ended.",
    ),
    "listening": (
        "Listening",
        "Speak now...",
    ),
    "error.assistant_not_ready": (
        "Not Ready",
        "The assistant is starting up. Please try again in a moment.",
    ),
    "error.rate_limited": (
        "Slow Down",
        "Too many requests. Please wait a moment and try again.",
    ),
}


_WELCOME_MORNING: tuple[str, ...] = (
    "Good morning! What would you like to learn today?",
    "Morning! Ready to explore something new?",
)

_WELCOME_AFTERNOON: tuple[str, ...] = (
    "Good afternoon! What topic shall we dig into?",
    "Afternoon! Ask me anything you're curious about.",
)

_WELCOME_EVENING: tuple[str, ...] = (
    "Good evening! What are you studying tonight?",
    "Evening! Want a quick lesson on something?",
)

_WELCOME_GENERIC: tuple[str, ...] = (
    "Hi! I'm MentorAI, your personal training mentor.",
    "Hello! Click the microphone and ask me anything.",
    "Welcome back. What would you like to explore?",
)


def _welcome_message(now: datetime) -> str:
    hour = now.hour
    if 5 <= hour < 12:
        pool = _WELCOME_MORNING
    elif 12 <= hour < 17:
        pool = _WELCOME_AFTERNOON
    elif 17 <= hour < 22:
        pool = _WELCOME_EVENING
    else:
        pool = ()

    return random.choice(pool + _WELCOME_GENERIC)


def title(key: str) -> str:
    """Return the short alert title for a key, or the key itself if unknown."""
    entry = _MESSAGES.get(key)
    return entry[0] if entry else key


def msg(key: str) -> str:
    """Return the alert body for a key, or the key itself if unknown."""
    if key == "welcome.message":
        return _welcome_message(datetime.now())
    entry = _MESSAGES.get(key)
    return entry[1] if entry else key
