"""
Configuration Management Module

This module handles all application configuration using environment variables
with sensible defaults. It follows the 12-factor app methodology for configuration.

Usage:
    from mentorai.config import settings
    print(settings.capture.timeout_s)

Environment variables are loaded from .env file (if present) and can be
overridden by system environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
# This should be called before accessing any environment variables
load_dotenv()


TRANSPORT_AUTO = "auto"
TRANSPORT_NATIVE = "native"
TRANSPORT_AGENT = "agent"


def get_env(key: str, default: str = "", required: bool = False) -> str:
    """
    Get an environment variable with optional default and validation.

    Args:
        key: The environment variable name
        default: Default value if not set
        required: If True, raises ValueError when not set

    Returns:
        The environment variable value or default

    Raises:
        ValueError: If required=True and the variable is not set
    """
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get an environment variable as integer."""
    return int(get_env(key, str(default)))


def get_env_float(key: str, default: float) -> float:
    """Get an environment variable as float."""
    return float(get_env(key, str(default)))


def get_env_bool(key: str, default: bool) -> bool:
    """Get an environment variable as boolean."""
    value = get_env(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def get_env_list(key: str, default: str = "") -> List[str]:
    """Get a comma-separated environment variable as a list of stripped items."""
    return [item.strip() for item in get_env(key, default).split(",") if item.strip()]


@dataclass
class SpeechConfig:
    """
    Azure Speech Services configuration.

    Used by both the speech input channel (recognition) and the speech
    output channel (synthesis).

    Attributes:
        api_key: Azure Speech subscription key
        region: Azure region of the Speech resource
        language: Recognition language tag
        voice_name: Explicit synthesis voice; empty means pick one by preference
    """
    api_key: str = field(default_factory=lambda: get_env("AZURE_SPEECH_API_KEY"))
    region: str = field(default_factory=lambda: get_env("AZURE_SPEECH_REGION"))
    language: str = field(default_factory=lambda: get_env("SPEECH_LANGUAGE", "en-US"))
    voice_name: str = field(default_factory=lambda: get_env("SPEECH_VOICE_NAME"))

    @property
    def is_configured(self) -> bool:
        """Check whether Azure Speech credentials are present."""
        return bool(self.api_key and self.region)

    def validate(self) -> bool:
        """Validate that required Azure Speech settings are configured."""
        if not self.api_key:
            raise ValueError("AZURE_SPEECH_API_KEY is required")
        if not self.region:
            raise ValueError("AZURE_SPEECH_REGION is required")
        return True


@dataclass
class VoiceConfig:
    """
    Speech synthesis voice settings.

    Attributes:
        rate: Speaking rate multiplier (1.0 = normal)
        pitch: Pitch multiplier (1.0 = normal)
        volume: Output volume between 0.0 and 1.0
        preferred_vendors: Voice-name fragments preferred when no voice is configured
        preferred_locale: Locale prefix used when no vendor voice matches
        synthesis_timeout_s: Upper bound for a single utterance
    """
    rate: float = field(default_factory=lambda: get_env_float("VOICE_RATE", 0.9))
    pitch: float = field(default_factory=lambda: get_env_float("VOICE_PITCH", 1.1))
    volume: float = field(default_factory=lambda: get_env_float("VOICE_VOLUME", 0.8))
    preferred_vendors: List[str] = field(
        default_factory=lambda: get_env_list("VOICE_PREFERRED_VENDORS", "Microsoft,Google")
    )
    preferred_locale: str = field(default_factory=lambda: get_env("VOICE_PREFERRED_LOCALE", "en"))
    synthesis_timeout_s: float = field(default_factory=lambda: get_env_float("SYNTHESIS_TIMEOUT_S", 30.0))

    def validate(self) -> bool:
        """Validate voice settings."""
        if self.rate <= 0:
            raise ValueError("VOICE_RATE must be positive")
        if self.pitch <= 0:
            raise ValueError("VOICE_PITCH must be positive")
        if not 0.0 <= self.volume <= 1.0:
            raise ValueError("VOICE_VOLUME must be between 0 and 1")
        return True


@dataclass
class CaptureConfig:
    """
    Speech capture configuration.

    Attributes:
        timeout_s: Seconds to wait for a transcript before giving up silently
    """
    timeout_s: float = field(default_factory=lambda: get_env_float("CAPTURE_TIMEOUT_S", 10.0))

    def validate(self) -> bool:
        """Validate capture settings."""
        if self.timeout_s <= 0:
            raise ValueError("CAPTURE_TIMEOUT_S must be positive")
        return True


@dataclass
class ResponseConfig:
    """
    Remote response endpoint configuration.

    Attributes:
        api_url: Full URL of the chat endpoint; empty disables the remote strategy
        timeout_s: Total timeout for one remote call
    """
    api_url: str = field(default_factory=lambda: get_env("RESPONSE_API_URL"))
    timeout_s: float = field(default_factory=lambda: get_env_float("RESPONSE_TIMEOUT_S", 8.0))

    @property
    def is_remote_enabled(self) -> bool:
        """Check if a remote endpoint is configured."""
        return bool(self.api_url)


@dataclass
class AgentConfig:
    """
    Hosted conversational agent (ElevenLabs Conversational AI) configuration.

    Attributes:
        agent_id: Agent identifier; empty disables the external agent transport
        api_key: Optional API key, required for private agents (signed URL)
        ws_url: WebSocket endpoint for public agents
        signed_url_endpoint: REST endpoint returning a signed WebSocket URL
        connect_timeout_s: Handshake timeout
        sample_rate: PCM sample rate exchanged with the agent
    """
    agent_id: str = field(default_factory=lambda: get_env("ELEVENLABS_AGENT_ID"))
    api_key: str = field(default_factory=lambda: get_env("ELEVENLABS_API_KEY"))
    ws_url: str = field(default_factory=lambda: get_env(
        "ELEVENLABS_WS_URL", "wss://api.elevenlabs.io/v1/convai/conversation"
    ))
    signed_url_endpoint: str = field(default_factory=lambda: get_env(
        "ELEVENLABS_SIGNED_URL_ENDPOINT",
        "https://api.elevenlabs.io/v1/convai/conversation/get-signed-url",
    ))
    connect_timeout_s: float = field(default_factory=lambda: get_env_float("AGENT_CONNECT_TIMEOUT_S", 10.0))
    sample_rate: int = field(default_factory=lambda: get_env_int("AGENT_SAMPLE_RATE", 16000))

    @property
    def is_configured(self) -> bool:
        """Check whether an agent identifier is present."""
        return bool(self.agent_id)

    @property
    def public_url(self) -> str:
        """Get the WebSocket URL for a public agent."""
        base = self.ws_url.rstrip("/")
        return f"{base}?agent_id={self.agent_id}"

    def validate(self) -> bool:
        """Validate that the agent is configured."""
        if not self.agent_id:
            raise ValueError("ELEVENLABS_AGENT_ID is required")
        return True


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        file: Optional log file path
    """
    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE") or None)


@dataclass
class Settings:
    """
    Main settings container aggregating all configuration sections.

    Access via the singleton `settings` instance.

    Example:
        from mentorai.config import settings

        if settings.agent.is_configured:
            url = settings.agent.public_url

        timeout = settings.capture.timeout_s
    """
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    response: ResponseConfig = field(default_factory=ResponseConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Application-level settings
    app_env: str = field(default_factory=lambda: get_env("APP_ENV", "development"))
    transport: str = field(default_factory=lambda: get_env("VOICE_TRANSPORT", TRANSPORT_AUTO).lower())
    api_host: str = field(default_factory=lambda: get_env("API_HOST", "127.0.0.1"))
    api_port: int = field(default_factory=lambda: get_env_int("API_PORT", 8000))
    cors_origins: List[str] = field(
        default_factory=lambda: get_env_list("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
    )
    rate_limit_requests: int = field(default_factory=lambda: get_env_int("RATE_LIMIT_REQUESTS", 60))
    rate_limit_window: int = field(default_factory=lambda: get_env_int("RATE_LIMIT_WINDOW", 60))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    def resolve_transport(self) -> str:
        """
        Decide which voice transport this deployment uses.

        Returns:
            TRANSPORT_NATIVE or TRANSPORT_AGENT

        Raises:
            ValueError: If the requested transport is unknown or not configured
        """
        if self.transport == TRANSPORT_AGENT:
            self.agent.validate()
            return TRANSPORT_AGENT
        if self.transport == TRANSPORT_NATIVE:
            self.speech.validate()
            return TRANSPORT_NATIVE
        if self.transport != TRANSPORT_AUTO:
            raise ValueError(
                f"VOICE_TRANSPORT must be one of auto, native, agent (got '{self.transport}')"
            )
        if self.agent.is_configured:
            return TRANSPORT_AGENT
        self.speech.validate()
        return TRANSPORT_NATIVE

    def validate_all(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all validations pass

        Raises:
            ValueError: If any validation fails
        """
        self.voice.validate()
        self.capture.validate()
        self.resolve_transport()
        return True


# Singleton settings instance
# Import this in other modules: from mentorai.config import settings
settings = Settings()
