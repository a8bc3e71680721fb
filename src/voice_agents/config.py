"""Configuration schema for the voice agent session core.

Defines Pydantic models for loading and validating configuration from YAML
files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class TurnDetectionConfig(BaseModel):
    """Server-side voice activity detection parameters (automatic turn mode)."""

    threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Energy threshold (high to reduce false triggers)",
    )
    prefix_padding_ms: int = Field(
        default=300, ge=0, description="Audio kept before detected speech start"
    )
    silence_duration_ms: int = Field(
        default=500,
        ge=0,
        description="Trailing silence before a turn is considered complete",
    )
    create_response: bool = Field(
        default=True, description="Let the server create a response at turn end"
    )


class SessionConfig(BaseModel):
    """Session controller configuration."""

    connect_timeout_s: float = Field(
        default=15.0,
        gt=0.0,
        le=300.0,
        description="Bound on credential fetch + transport open before reverting",
    )
    greeting_trigger: str = Field(
        default="hi",
        min_length=1,
        description="Hidden user turn that makes a freshly connected agent speak first",
    )
    default_agent_set: str = Field(
        default="personalCoach", description="Agent set used when none is requested"
    )


class CredentialConfig(BaseModel):
    """Ephemeral credential endpoint configuration."""

    url: str = Field(
        default="http://localhost:3000/api/session",
        description="Endpoint returning {client_secret: {value}}",
    )
    request_timeout_s: float = Field(default=10.0, gt=0.0)


class RealtimeConfig(BaseModel):
    """Realtime transport configuration."""

    url: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Realtime websocket endpoint",
    )
    model: str = Field(default="gpt-4o-realtime-preview", min_length=1)
    transcription_model: str = Field(
        default="whisper-1", description="Input audio transcription model"
    )
    sample_rate: int = Field(default=24000, description="PCM16 sample rate in Hz")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that the realtime endpoint is a websocket URL."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"Realtime url must start with ws:// or wss://, got '{v}'")
        return v

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        """Validate that the sample rate is one the realtime API emits."""
        valid_rates = [16000, 24000, 48000]
        if v not in valid_rates:
            raise ValueError(f"Realtime sample_rate must be one of {valid_rates}, got {v}")
        return v


class ModerationConfig(BaseModel):
    """Output guardrail classifier configuration."""

    url: str = Field(
        default="https://api.openai.com/v1/responses",
        description="Classification endpoint",
    )
    model: str = Field(default="gpt-4o-mini", min_length=1)
    api_key: str | None = Field(default=None, description="Bearer token for the endpoint")
    request_timeout_s: float = Field(default=10.0, gt=0.0)


class AudioConfig(BaseModel):
    """Local capture, playback and recording configuration."""

    input_device: str | None = Field(
        default=None, description="sounddevice input device name/index (None = default)"
    )
    capture_block_ms: int = Field(
        default=40, ge=10, le=500, description="Microphone block length sent per append"
    )
    output_device: str | None = Field(
        default=None, description="sounddevice output device name/index (None = default)"
    )
    max_recording_s: float = Field(
        default=1800.0,
        ge=1.0,
        description="Recording cap; frames past the cap are dropped",
    )


class AppConfig(BaseModel):
    """Root configuration."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    turn_detection: TurnDetectionConfig = Field(default_factory=TurnDetectionConfig)
    credentials: CredentialConfig = Field(default_factory=CredentialConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    moderation: ModerationConfig = Field(default_factory=ModerationConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    preferences_path: Path = Field(
        default=Path.home() / ".voice_agents" / "preferences.json",
        description="Where persisted UI toggles are stored",
    )
    custom_agents_path: Path | None = Field(
        default=None, description="Builder JSON file with custom agents"
    )

    @field_validator("preferences_path", "custom_agents_path")
    @classmethod
    def expand_user_paths(cls, v: Path | None) -> Path | None:
        """Expand a leading ~ in configured paths."""
        return v.expanduser() if v is not None else None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if credential_url := os.getenv("VOICE_AGENTS_CREDENTIAL_URL"):
            data.setdefault("credentials", {})["url"] = credential_url

        if realtime_url := os.getenv("VOICE_AGENTS_REALTIME_URL"):
            data.setdefault("realtime", {})["url"] = realtime_url

        if api_key := os.getenv("OPENAI_API_KEY"):
            moderation = data.setdefault("moderation", {})
            if not moderation.get("api_key"):
                moderation["api_key"] = api_key

        if log_level := os.getenv("VOICE_AGENTS_LOG_LEVEL"):
            data["log_level"] = log_level

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "AppConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls()
