"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration.

    project_id must be set via .env or environment variable before the
    Gemini/Veo collaborators are used.
    """

    project_id: str = ""
    location: str = "us-central1"


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    prompt_llm: str = "gemini-2.5-flash"
    image_gen: str = "gemini-2.5-flash-image"
    video_gen: str = "veo-3.1-fast-generate-001"
    video_gen_fallback: Optional[str] = None


class ElevenLabsConfig(BaseModel):
    """Speech and music synthesis service."""

    api_key: str = ""
    base_url: str = "https://api.elevenlabs.io"
    voice_id: str = "Hjzqw9NR0xFMYU9Us0DL"
    tts_model: str = "eleven_turbo_v2_5"
    request_timeout: float = 120.0


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    max_scenes: int = 5
    default_scenes: int = 3
    scene_duration_seconds: int = 5
    aspect_ratio: str = "16:9"
    max_concurrent_jobs: int = 1
    enable_voiceover: bool = False
    include_original_anchor: bool = True
    video_concurrency: int = 1
    video_poll_interval: int = 10
    video_poll_max: int = 60
    crossfade_seconds: float = 0.0
    frame_rate: int = 30
    audio_sample_rate: int = 44100
    output_height: int = 720
    degraded_output_height: int = 480
    music_volume: float = 0.5
    voice_volume: float = 1.0
    original_volume: float = 0.5
    max_recovery_restarts: int = 1


class RetryPolicyConfig(BaseModel):
    """Bounded retry with exponential backoff."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.3


class RetryConfig(BaseModel):
    """Per-collaborator retry policies.

    Image and video generators get longer base delays than text generation
    because a failed call costs more. default applies to any capability
    without its own entry.
    """

    default: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    prompts: RetryPolicyConfig = Field(
        default_factory=lambda: RetryPolicyConfig(base_delay=2.0)
    )
    images: RetryPolicyConfig = Field(
        default_factory=lambda: RetryPolicyConfig(base_delay=5.0, max_delay=60.0)
    )
    videos: RetryPolicyConfig = Field(
        default_factory=lambda: RetryPolicyConfig(
            base_delay=3.0, max_delay=10.0, backoff_multiplier=1.5
        )
    )
    speech: RetryPolicyConfig = Field(
        default_factory=lambda: RetryPolicyConfig(base_delay=1.0, max_delay=5.0)
    )
    music: RetryPolicyConfig = Field(
        default_factory=lambda: RetryPolicyConfig(base_delay=3.0)
    )
    merge: RetryPolicyConfig = Field(
        default_factory=lambda: RetryPolicyConfig(
            max_attempts=2, base_delay=0.5, max_delay=2.0
        )
    )


class RateLimitConfig(BaseModel):
    """Sliding-window request limit for one external capability."""

    max_requests: int = 10
    window_seconds: float = 60.0


class RateLimitsConfig(BaseModel):
    """Per-capability vendor quotas."""

    prompts: RateLimitConfig = Field(default_factory=lambda: RateLimitConfig(max_requests=30))
    images: RateLimitConfig = Field(default_factory=lambda: RateLimitConfig(max_requests=10))
    videos: RateLimitConfig = Field(default_factory=lambda: RateLimitConfig(max_requests=5))
    speech: RateLimitConfig = Field(default_factory=lambda: RateLimitConfig(max_requests=20))
    music: RateLimitConfig = Field(default_factory=lambda: RateLimitConfig(max_requests=5))


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///scenechain.db"
    data_dir: Path = Path("tmp")
    uploads_dir: Path = Path("tmp/uploads")
    session_max_age_hours: float = 24.0
    reaper_interval_seconds: float = 3600.0
    cleanup_days: int = 7

    @field_validator("data_dir", "uploads_dir", mode="before")
    @classmethod
    def convert_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 5000
    log_level: str = "INFO"


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: SCENECHAIN_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="SCENECHAIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = Field(default_factory=GoogleCloudConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    elevenlabs: ElevenLabsConfig = Field(default_factory=ElevenLabsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit keyword arguments, used by tests)
        2. Environment variables
        3. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Singleton instance
settings = Settings()
