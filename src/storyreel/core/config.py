"""
Configuration System
====================

Centralized, validated configuration management with typed dataclasses.

Polling bounds are configuration: a ``max_poll_attempts`` of ``None``
means the poll loop waits until the job reaches a terminal status.
"""

import os
import re
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class JobServiceConfig:
    """One asynchronous job endpoint (image, video, image-to-video, speech, composition)."""

    endpoint_id: str = ""
    poll_interval: float = 2.0
    max_poll_attempts: Optional[int] = None

    def validate(self, name: str) -> None:
        if not self.endpoint_id:
            raise ConfigurationError(
                f"Missing endpoint_id for service: {name}",
                config_key=f"services.{name}.endpoint_id",
            )
        if self.poll_interval < 0:
            raise ConfigurationError(
                f"poll_interval must be >= 0, got {self.poll_interval}",
                config_key=f"services.{name}.poll_interval",
            )
        if self.max_poll_attempts is not None and self.max_poll_attempts < 1:
            raise ConfigurationError(
                f"max_poll_attempts must be >= 1 or null, got {self.max_poll_attempts}",
                config_key=f"services.{name}.max_poll_attempts",
            )


def _default_job_services() -> Dict[str, JobServiceConfig]:
    return {
        "image": JobServiceConfig("86zngifdc1ukdz", 2.0, 60),
        "composition": JobServiceConfig("tob76lalk2ulxf", 2.0, 60),
        "video": JobServiceConfig("wan-2-2-t2v-720", 5.0, None),
        "i2v": JobServiceConfig("o2hasm8tmfewuw", 3.0, 120),
        "tts": JobServiceConfig("lew07dpd05v8gd", 2.0, None),
    }


@dataclass
class ServicesConfig:
    """Job-service connection settings."""

    base_url: str = "https://api.runpod.ai/v2"
    api_key: str = ""
    request_timeout: float = 60.0
    endpoints: Dict[str, JobServiceConfig] = field(default_factory=_default_job_services)

    REQUIRED_SERVICES = {"image", "composition", "video", "i2v", "tts"}

    def __post_init__(self):
        # Merge YAML dicts over the defaults so partial overrides work
        merged = _default_job_services()
        for name, value in (self.endpoints or {}).items():
            if isinstance(value, JobServiceConfig):
                merged[name] = value
            elif isinstance(value, dict):
                base = asdict(merged.get(name, JobServiceConfig()))
                base.update(value)
                try:
                    merged[name] = JobServiceConfig(**base)
                except TypeError as e:
                    raise ConfigurationError(
                        f"Invalid service settings for {name}: {e}",
                        config_key=f"services.{name}",
                    )
            else:
                raise ConfigurationError(
                    f"Service settings for {name} must be a mapping",
                    config_key=f"services.{name}",
                    expected_type="mapping",
                )
        self.endpoints = merged
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.base_url:
            raise ConfigurationError("services.base_url is required", config_key="services.base_url")
        if self.request_timeout <= 0:
            raise ConfigurationError(
                f"request_timeout must be positive, got {self.request_timeout}",
                config_key="services.request_timeout",
            )
        for name in self.REQUIRED_SERVICES:
            if name not in self.endpoints:
                raise ConfigurationError(f"Missing service: {name}", config_key=f"services.{name}")
        for name, service in self.endpoints.items():
            service.validate(name)

    def get(self, name: str) -> JobServiceConfig:
        if name not in self.endpoints:
            raise ConfigurationError(f"Unknown service: {name}", config_key=f"services.{name}")
        return self.endpoints[name]


@dataclass
class LLMConfig:
    """Script-analysis LLM settings (chat-completions API)."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o"
    script_temperature: float = 0.8
    script_max_tokens: int = 8000
    emotion_temperature: float = 0.7
    emotion_max_tokens: int = 50
    request_timeout: float = 120.0
    enhance_transitions: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        for name, value in [
            ("script_temperature", self.script_temperature),
            ("emotion_temperature", self.emotion_temperature),
        ]:
            if not 0.0 <= value <= 2.0:
                raise ConfigurationError(
                    f"{name} must be 0.0-2.0, got {value}",
                    config_key=f"llm.{name}",
                )


@dataclass
class StoryboardConfig:
    """Scene planning settings."""

    allowed_durations: List[int] = field(default_factory=lambda: [5, 8])
    max_scene_duration: int = 8
    min_scenes: int = 5
    testing_mode: bool = False
    testing_scene_count: int = 2
    default_tone: str = "calm-inspiring"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.allowed_durations:
            raise ConfigurationError(
                "allowed_durations must not be empty",
                config_key="storyboard.allowed_durations",
            )
        if any(d <= 0 for d in self.allowed_durations):
            raise ConfigurationError(
                f"allowed_durations must be positive, got {self.allowed_durations}",
                config_key="storyboard.allowed_durations",
            )
        self.allowed_durations = sorted(set(self.allowed_durations))
        if self.max_scene_duration <= 0:
            raise ConfigurationError(
                f"max_scene_duration must be positive, got {self.max_scene_duration}",
                config_key="storyboard.max_scene_duration",
            )
        if self.min_scenes < 1 or self.testing_scene_count < 1:
            raise ConfigurationError(
                "Scene counts must be at least 1",
                config_key="storyboard.min_scenes",
            )


@dataclass
class VideoConfig:
    """Video-synthesis job settings."""

    size: str = "1280*720"
    num_inference_steps: int = 30
    guidance: float = 5.0
    seed: int = -1
    negative_prompt: str = ""
    enable_safety_checker: bool = True
    enable_prompt_optimization: bool = False

    VALID_SIZES = {"1280*720", "720*1280", "832*480", "480*832"}

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.size not in self.VALID_SIZES:
            raise ConfigurationError(
                f"Invalid video size: {self.size}",
                config_key="video.size",
            )
        if not 1 <= self.num_inference_steps <= 100:
            raise ConfigurationError(
                f"num_inference_steps must be 1-100, got {self.num_inference_steps}",
                config_key="video.num_inference_steps",
            )


@dataclass
class AudioConfig:
    """Speech-synthesis settings."""

    default_speaker_url: str = "https://storage.googleapis.com/storyreel-assets/voices/narrator-default.mp3"
    max_voice_sample_mb: int = 10


@dataclass
class MediaConfig:
    """Muxing and object-storage service settings."""

    base_url: str = "http://localhost:4000"
    request_timeout: float = 300.0


# =============================================================================
# Main Configuration Class
# =============================================================================


SECTIONS = ["services", "llm", "storyboard", "video", "audio", "media"]


@dataclass
class Config:
    """
    Main configuration container with validation and loading.

    Provides a unified interface to all configuration settings with:
    - Type-safe access to configuration values
    - Validation on load
    - Environment variable interpolation
    """

    services: ServicesConfig = field(default_factory=ServicesConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    storyboard: StoryboardConfig = field(default_factory=StoryboardConfig)
    video: VideoConfig = field(default_factory=VideoConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    media: MediaConfig = field(default_factory=MediaConfig)

    # Raw config for extensions
    _raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "Config":
        """
        Load configuration from file with environment variable interpolation.

        Args:
            path: Path to YAML config file (defaults.yaml)

        Returns:
            Validated Config instance
        """
        search_paths = [
            Path("./config/defaults.yaml"),
            Path("./defaults.yaml"),
            Path.home() / ".storyreel" / "config.yaml",
        ]

        if path:
            explicit = Path(path)
            if not explicit.exists():
                raise ConfigurationError(f"Config file not found: {explicit}", config_key=str(explicit))
            search_paths.insert(0, explicit)

        config_data = {}

        for search_path in search_paths:
            if search_path.exists():
                logger.info(f"Loading config from: {search_path}")
                try:
                    with open(search_path, "r") as f:
                        config_data = yaml.safe_load(f) or {}
                    break
                except yaml.YAMLError as e:
                    raise ConfigurationError(
                        f"Invalid YAML in config file: {e}",
                        config_key=str(search_path),
                    )
        else:
            logger.info("No config file found, using defaults")

        config_data = cls._interpolate_env_vars(config_data)

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary with validation."""
        services = dict(data.get("services") or {})
        endpoints = {
            name: services.pop(name)
            for name in list(services)
            if isinstance(services[name], dict)
        }
        if "api_key" not in services:
            services["api_key"] = os.environ.get("RUNPOD_API_KEY", "")
        llm = dict(data.get("llm") or {})
        if "api_key" not in llm:
            llm["api_key"] = os.environ.get("OPENAI_API_KEY", "")
        media = dict(data.get("media") or {})
        if "base_url" not in media and os.environ.get("MEDIA_API_URL"):
            media["base_url"] = os.environ["MEDIA_API_URL"]

        try:
            return cls(
                services=ServicesConfig(endpoints=endpoints, **services),
                llm=LLMConfig(**llm),
                storyboard=StoryboardConfig(**data.get("storyboard", {})),
                video=VideoConfig(**data.get("video", {})),
                audio=AudioConfig(**data.get("audio", {})),
                media=MediaConfig(**media),
                _raw=data,
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @staticmethod
    def _interpolate_env_vars(data: Any) -> Any:
        """Recursively interpolate ${VAR} patterns with environment variables."""
        if isinstance(data, str):
            # Handle ${VAR} and ${VAR:-default} patterns
            pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

            def replace(match):
                var_name = match.group(1)
                default = match.group(2) or ""
                return os.environ.get(var_name, default)

            return re.sub(pattern, replace, data)
        elif isinstance(data, dict):
            return {k: Config._interpolate_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [Config._interpolate_env_vars(item) for item in data]
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (API keys omitted)."""
        result = {section: asdict(getattr(self, section)) for section in SECTIONS}
        result["services"].pop("api_key", None)
        result["llm"].pop("api_key", None)
        return result


# =============================================================================
# Convenience Functions
# =============================================================================


_global_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance (lazily loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = Config.load()
    return _global_config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset global configuration to None (forces reload on next access)."""
    global _global_config
    _global_config = None
