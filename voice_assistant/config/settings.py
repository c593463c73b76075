"""Configuration settings for the voice assistant."""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, asdict
import json
import structlog
from dotenv import load_dotenv
import threading


logger = structlog.get_logger()


@dataclass
class SystemPrompts:
    """System prompt and personalization text for the chat session."""
    default: str = (
        "You are a helpful and concise real-time AI assistant. Your responses "
        "should be fast and to the point. The user is speaking to you, so your "
        "responses should be natural in a conversation."
    )
    personalization: str = ""


@dataclass
class AudioSettings:
    """Audio configuration settings."""
    sample_rate: int = 16000
    input_device: str = "default"
    loopback_device: str = ""
    frame_duration_ms: int = 30
    silence_duration_ms: int = 700
    max_utterance_seconds: float = 15.0
    vad_aggressiveness: int = 2
    tab_chunk_seconds: float = 5.0


@dataclass
class ProviderSettings:
    """Provider-specific settings."""
    ai_gateway: str = "gemini"
    speech_service: str = "vad_dictation"
    capture_service: str = "loopback"
    transcriber: str = "gemini"

    # Gemini
    gemini_model: str = "gemini-2.5-flash"
    gemini_transcription_model: str = "gemini-2.5-flash"
    gemini_temperature: float = 0.7
    gemini_max_tokens: int = 2048


@dataclass
class PricingSettings:
    """Per-million-token prices used for the running cost estimate."""
    input_price_per_million: float = 0.25
    output_price_per_million: float = 0.50


@dataclass
class AttachmentSettings:
    """Attachment limits."""
    max_file_size_mb: float = 10.0


@dataclass
class TimeoutSettings:
    """Timeout settings for various operations."""
    ai_response_timeout: int = 30  # seconds


@dataclass
class RetrySettings:
    """Retry configuration for opening a response stream."""
    max_retries: int = 3
    initial_backoff: float = 1.0  # seconds


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "json"
    file_enabled: bool = True
    file_rotation_mb: int = 10
    file_backup_count: int = 7


_SECTIONS = (
    "system_prompts",
    "audio",
    "providers",
    "pricing",
    "attachments",
    "timeouts",
    "retries",
    "logging",
)


def _env_bool(value: str) -> bool:
    return value.lower() == "true"


class Settings:
    """Main settings class for the voice assistant."""

    def __init__(self, config_file: Optional[Union[str, Path]] = None,
                 load_env_file: bool = True):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = not load_env_file

        self.system_prompts = SystemPrompts()
        self.audio = AudioSettings()
        self.providers = ProviderSettings()
        self.pricing = PricingSettings()
        self.attachments = AttachmentSettings()
        self.timeouts = TimeoutSettings()
        self.retries = RetrySettings()
        self.logging = LoggingSettings()

        # Load .env file first
        self._load_env_file()

        if self.config_file and self.config_file.exists():
            self.load_from_file()

        self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from the nearest .env file."""
        if not self._env_loaded:
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from a JSON configuration file."""
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, 'r') as f:
                    config = json.load(f)

                for section in _SECTIONS:
                    if section not in config:
                        continue
                    target = getattr(self, section)
                    for key, value in config[section].items():
                        if hasattr(target, key):
                            setattr(target, key, value)

                logger.info("Loaded settings from file", file=str(self.config_file))

        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings from file",
                         file=str(self.config_file),
                         error=str(e))

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            if os.getenv("SYSTEM_PROMPT_DEFAULT"):
                self.system_prompts.default = os.getenv("SYSTEM_PROMPT_DEFAULT")
            if os.getenv("PERSONALIZATION_TEXT"):
                self.system_prompts.personalization = os.getenv("PERSONALIZATION_TEXT")

            # Audio settings
            if os.getenv("AUDIO_SAMPLE_RATE"):
                self.audio.sample_rate = int(os.getenv("AUDIO_SAMPLE_RATE"))
            if os.getenv("AUDIO_INPUT_DEVICE"):
                self.audio.input_device = os.getenv("AUDIO_INPUT_DEVICE")
            if os.getenv("LOOPBACK_DEVICE"):
                self.audio.loopback_device = os.getenv("LOOPBACK_DEVICE")
            if os.getenv("TAB_CHUNK_SECONDS"):
                self.audio.tab_chunk_seconds = float(os.getenv("TAB_CHUNK_SECONDS"))

            # Provider selection and Gemini overrides
            if os.getenv("AI_GATEWAY"):
                self.providers.ai_gateway = os.getenv("AI_GATEWAY")
            if os.getenv("GEMINI_MODEL"):
                self.providers.gemini_model = os.getenv("GEMINI_MODEL")
            if os.getenv("GEMINI_TRANSCRIPTION_MODEL"):
                self.providers.gemini_transcription_model = os.getenv("GEMINI_TRANSCRIPTION_MODEL")
            if os.getenv("GEMINI_TEMPERATURE"):
                self.providers.gemini_temperature = float(os.getenv("GEMINI_TEMPERATURE"))
            if os.getenv("GEMINI_MAX_TOKENS"):
                self.providers.gemini_max_tokens = int(os.getenv("GEMINI_MAX_TOKENS"))

            # Pricing
            if os.getenv("INPUT_PRICE_PER_MILLION"):
                self.pricing.input_price_per_million = float(os.getenv("INPUT_PRICE_PER_MILLION"))
            if os.getenv("OUTPUT_PRICE_PER_MILLION"):
                self.pricing.output_price_per_million = float(os.getenv("OUTPUT_PRICE_PER_MILLION"))

            if os.getenv("MAX_ATTACHMENT_MB"):
                self.attachments.max_file_size_mb = float(os.getenv("MAX_ATTACHMENT_MB"))

            if os.getenv("AI_RESPONSE_TIMEOUT"):
                self.timeouts.ai_response_timeout = int(os.getenv("AI_RESPONSE_TIMEOUT"))

            if os.getenv("MAX_RETRIES"):
                self.retries.max_retries = int(os.getenv("MAX_RETRIES"))
            if os.getenv("INITIAL_BACKOFF"):
                self.retries.initial_backoff = float(os.getenv("INITIAL_BACKOFF"))

            # Logging settings
            if os.getenv("LOG_LEVEL"):
                self.logging.level = os.getenv("LOG_LEVEL")
            if os.getenv("LOG_FORMAT"):
                self.logging.format = os.getenv("LOG_FORMAT")
            if os.getenv("LOG_FILE_ENABLED"):
                self.logging.file_enabled = _env_bool(os.getenv("LOG_FILE_ENABLED"))

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv("GOOGLE_API_KEY")

    def save_to_file(self, file_path: Optional[Union[str, Path]] = None) -> None:
        """Save current settings to file."""
        save_path = Path(file_path) if file_path else self.config_file
        if not save_path:
            raise ValueError("No file path provided")

        with self._lock:
            save_path.parent.mkdir(parents=True, exist_ok=True)
            with open(save_path, 'w') as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

            logger.info("Saved settings to file", file=str(save_path))

    def get_provider_config(self, provider_type: str) -> Dict[str, Any]:
        """Get constructor arguments for a specific provider."""
        if provider_type == "gemini":
            return {
                "model_name": self.providers.gemini_model,
                "temperature": self.providers.gemini_temperature,
                "max_output_tokens": self.providers.gemini_max_tokens,
                "timeout": float(self.timeouts.ai_response_timeout),
                "max_retries": self.retries.max_retries,
                "initial_backoff": self.retries.initial_backoff,
            }
        elif provider_type == "gemini_transcriber":
            return {"model_name": self.providers.gemini_transcription_model}
        elif provider_type == "vad_dictation":
            return {
                "sample_rate": self.audio.sample_rate,
                "frame_duration_ms": self.audio.frame_duration_ms,
                "silence_duration_ms": self.audio.silence_duration_ms,
                "max_utterance_seconds": self.audio.max_utterance_seconds,
                "vad_aggressiveness": self.audio.vad_aggressiveness,
            }
        elif provider_type == "loopback":
            return {
                "device_id": self.audio.loopback_device or None,
                "sample_rate": self.audio.sample_rate,
            }
        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    def reload(self) -> None:
        """Reload settings from file and environment."""
        with self._lock:
            if self.config_file and self.config_file.exists():
                self.load_from_file()
            self.load_from_env()
            logger.info("Settings reloaded")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        if self.audio.sample_rate not in [8000, 16000, 32000, 48000]:
            issues.append(f"Invalid sample rate: {self.audio.sample_rate}")
        if self.audio.frame_duration_ms not in [10, 20, 30]:
            issues.append(f"Invalid frame duration: {self.audio.frame_duration_ms}")
        if self.audio.tab_chunk_seconds <= 0:
            issues.append(f"Invalid tab chunk length: {self.audio.tab_chunk_seconds}")

        if self.pricing.input_price_per_million < 0:
            issues.append(f"Invalid input price: {self.pricing.input_price_per_million}")
        if self.pricing.output_price_per_million < 0:
            issues.append(f"Invalid output price: {self.pricing.output_price_per_million}")

        if self.attachments.max_file_size_mb <= 0:
            issues.append(f"Invalid attachment size limit: {self.attachments.max_file_size_mb}")

        if self.timeouts.ai_response_timeout <= 0:
            issues.append(f"Invalid AI response timeout: {self.timeouts.ai_response_timeout}")

        if self.retries.max_retries < 1:
            issues.append(f"Invalid max retries: {self.retries.max_retries}")
        if self.retries.initial_backoff <= 0:
            issues.append(f"Invalid initial backoff: {self.retries.initial_backoff}")

        if not self.api_key and self.providers.ai_gateway == "gemini":
            issues.append("GOOGLE_API_KEY is not set")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        return {section: asdict(getattr(self, section)) for section in _SECTIONS}


# Global settings instance
settings = Settings()
