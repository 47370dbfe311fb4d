"""
Response Provider Module

Turns user text into assistant text through a fallback chain:

1. RemoteResponseStrategy - POST {"message": text} to the configured chat
   endpoint and read {"response": ...} back
2. LocalRuleStrategy - ordered keyword rules with an echo fallback; never fails

get_response() never raises and never returns empty text.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import aiohttp

from mentorai.config import settings
from mentorai.logger import get_logger
from mentorai.realtime.session import ResponseResult, ResponseSource

logger = get_logger(__name__)


class ResponseFailure(Exception):
    """A fallible strategy could not produce a response."""


class ResponseStrategy(ABC):
    """One link of the fallback chain."""

    name: str = "strategy"

    @abstractmethod
    async def respond(self, text: str) -> ResponseResult:
        """Produce a response or raise ResponseFailure."""


class RemoteResponseStrategy(ResponseStrategy):
    """
    Remote chat endpoint.

    Success requires a 2xx status and a JSON object whose "response" is a
    non-empty string.
    """

    name = "remote"

    def __init__(self, url: str, timeout_s: float = 8.0):
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    @property
    def url(self) -> str:
        return self._url

    async def respond(self, text: str) -> ResponseResult:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(self._url, json={"message": text}) as response:
                    response.raise_for_status()
                    data = await response.json(content_type=None)
        except aiohttp.ClientResponseError as e:
            raise ResponseFailure(f"HTTP {e.status} from {self._url}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ResponseFailure(f"request to {self._url} failed: {e!r}") from e
        except ValueError as e:
            raise ResponseFailure(f"invalid JSON from {self._url}") from e

        reply = data.get("response") if isinstance(data, dict) else None
        if not isinstance(reply, str) or not reply.strip():
            raise ResponseFailure("response body has no usable 'response' field")

        return ResponseResult(text=reply, source=ResponseSource.REMOTE)


@dataclass
class KeywordRule:
    """
    Substring rule over lowercased input.

    Matches when the input contains any of `any_of` (if given) and all of
    `all_of` (if given).
    """
    name: str
    reply: str
    any_of: List[str] = field(default_factory=list)
    all_of: List[str] = field(default_factory=list)

    def matches(self, lowered: str) -> bool:
        if self.any_of and not any(word in lowered for word in self.any_of):
            return False
        if self.all_of and not all(word in lowered for word in self.all_of):
            return False
        return bool(self.any_of or self.all_of)


# Order matters: first match wins
DEFAULT_RULES = [
    KeywordRule(
        name="greeting",
        any_of=["hello", "hi", "hey"],
        reply=(
            "Hello! I'm MentorAI, your personal training mentor. I'm here to help you "
            "learn about any topic you're curious about. What would you like to explore today?"
        ),
    ),
    KeywordRule(
        name="wellbeing",
        any_of=["how are you", "how do you do"],
        reply=(
            "I'm doing great, thank you for asking! I'm excited to help you learn "
            "something new today. What subject interests you?"
        ),
    ),
    KeywordRule(
        name="thanks",
        any_of=["thank you", "thanks"],
        reply=(
            "You're very welcome! I'm always happy to help you learn. "
            "Is there anything else you'd like to know about?"
        ),
    ),
    KeywordRule(
        name="farewell",
        any_of=["goodbye", "bye"],
        reply=(
            "Goodbye! It was great helping you learn today. "
            "Feel free to come back anytime you have more questions!"
        ),
    ),
    KeywordRule(
        name="identity",
        all_of=["what", "your name"],
        reply=(
            "I'm MentorAI! I'm your personal AI training mentor, designed to help you "
            "learn and understand various topics. What would you like to learn about?"
        ),
    ),
    KeywordRule(
        name="quantum",
        any_of=["quantum"],
        reply=(
            "Quantum physics is fascinating! It's the study of matter and energy at the "
            "smallest scales, where particles behave in ways that seem impossible in our "
            "everyday world. Would you like to explore quantum entanglement or "
            "wave-particle duality?"
        ),
    ),
    KeywordRule(
        name="calculus",
        any_of=["calculus"],
        reply=(
            "Calculus is the mathematical study of change and motion! It has two main "
            "branches: differential calculus (rates of change) and integral calculus "
            "(accumulation). What aspect would you like to dive into?"
        ),
    ),
    KeywordRule(
        name="capabilities",
        any_of=["help", "what can you do"],
        reply=(
            "I can help you learn about virtually any topic! Just ask me questions about "
            "science, math, history, programming, or anything else you're curious about. "
            "What interests you most?"
        ),
    ),
]

ECHO_TEMPLATE = (
    "That's an interesting question about \"{text}\"! I'd love to help you understand "
    "this better. Could you tell me more about what specific aspect you'd like to learn, "
    "or would you like me to give you a general overview?"
)


class LocalRuleStrategy(ResponseStrategy):
    """Keyword rule matcher. Terminal link of the chain: always answers."""

    name = "local"

    def __init__(self, rules: Optional[Sequence[KeywordRule]] = None):
        self._rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    def match(self, text: str) -> Optional[KeywordRule]:
        """Return the first matching rule, or None for the echo fallback."""
        lowered = text.lower()
        for rule in self._rules:
            if rule.matches(lowered):
                return rule
        return None

    async def respond(self, text: str) -> ResponseResult:
        rule = self.match(text)
        if rule is not None:
            logger.debug(f"Local rule matched: {rule.name}")
            return ResponseResult(text=rule.reply, source=ResponseSource.LOCAL_FALLBACK)
        return ResponseResult(text=ECHO_TEMPLATE.format(text=text), source=ResponseSource.LOCAL_FALLBACK)


class ResponseProvider:
    """
    Fallback chain of response strategies.

    Usage:
        provider = ResponseProvider.from_settings()
        result = await provider.get_response("Teach me calculus basics")
        print(result.text, result.source)
    """

    def __init__(
        self,
        strategies: Optional[Sequence[ResponseStrategy]] = None,
        terminal: Optional[LocalRuleStrategy] = None,
    ):
        self._strategies = list(strategies or [])
        self._terminal = terminal or LocalRuleStrategy()

    @classmethod
    def from_settings(cls) -> "ResponseProvider":
        """Build the chain from settings.response."""
        strategies: List[ResponseStrategy] = []
        if settings.response.is_remote_enabled:
            strategies.append(RemoteResponseStrategy(
                settings.response.api_url,
                timeout_s=settings.response.timeout_s,
            ))
        return cls(strategies)

    @property
    def strategies(self) -> List[ResponseStrategy]:
        return list(self._strategies) + [self._terminal]

    async def get_response(self, text: str) -> ResponseResult:
        """Try each fallible strategy in order, then the local rules."""
        for strategy in self._strategies:
            try:
                result = await strategy.respond(text)
            except asyncio.CancelledError:
                raise
            except ResponseFailure as e:
                logger.warning(f"Response strategy '{strategy.name}' failed, falling back: {e}")
                continue
            except Exception as e:
                logger.warning(f"Response strategy '{strategy.name}' errored, falling back: {e}")
                continue

            if result.text.strip():
                return result
            logger.warning(f"Response strategy '{strategy.name}' returned empty text")

        return await self._terminal.respond(text)
