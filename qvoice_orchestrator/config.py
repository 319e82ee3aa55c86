"""Configuration management for QVoiceTxt"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from qvoice_gateway.token_codec import DEFAULT_TOKEN_DICTIONARY

from .state_paths import resolve_state_dir


@dataclass
class Config:
    """Configuration for the QVoiceTxt runtime"""

    app_id: str

    # Generative API settings
    gemini_api_key: str
    gemini_text_model: str
    gemini_tts_model: str
    gemini_api_base_url: str
    gemini_timeout: float
    gemini_max_attempts: int
    tts_voice: str

    # Session settings
    bot_user_id: str
    initial_auth_token: Optional[str]
    token_dictionary: tuple[str, ...]
    handshake_step_seconds: float

    # Reminder scheduler
    reminder_interval_seconds: float
    reminder_batch_size: int

    # Command defaults
    default_location: str
    default_crypto: str

    # HTTP gateway
    host: str
    port: int

    # Logging and state
    state_dir: Path
    log_dir: Path
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""

        def parse_dictionary(value: Optional[str]) -> tuple[str, ...]:
            if not value or not value.strip():
                return DEFAULT_TOKEN_DICTIONARY
            return tuple(entry.strip() for entry in value.split("|") if entry.strip())

        state_dir = resolve_state_dir()
        log_dir = Path(os.path.expandvars(os.getenv("LOG_DIR", str(state_dir / "logs")))).expanduser()

        return cls(
            app_id=os.getenv("QVOICE_APP_ID", "default-app-id"),
            gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
            gemini_text_model=os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash-preview-09-2025"),
            gemini_tts_model=os.getenv("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
            gemini_api_base_url=os.getenv(
                "GEMINI_API_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/models"
            ),
            gemini_timeout=float(os.getenv("GEMINI_TIMEOUT", "30")),
            gemini_max_attempts=int(os.getenv("GEMINI_MAX_ATTEMPTS", "3")),
            tts_voice=os.getenv("QVOICE_TTS_VOICE", "Kore"),
            bot_user_id=os.getenv("QVOICE_BOT_USER_ID", "Agent Q Core ✨"),
            initial_auth_token=os.getenv("QVOICE_INITIAL_AUTH_TOKEN") or None,
            token_dictionary=parse_dictionary(os.getenv("QVOICE_TOKEN_DICTIONARY")),
            handshake_step_seconds=float(os.getenv("QVOICE_HANDSHAKE_STEP_SECONDS", "0.6")),
            reminder_interval_seconds=float(os.getenv("QVOICE_REMINDER_INTERVAL", "12")),
            reminder_batch_size=int(os.getenv("QVOICE_REMINDER_BATCH_SIZE", "10")),
            default_location=os.getenv("QVOICE_DEFAULT_LOCATION", "St. Louis,US"),
            default_crypto=os.getenv("QVOICE_DEFAULT_CRYPTO", "BTC"),
            host=os.getenv("QVOICE_CHAT_HOST", "127.0.0.1"),
            port=int(os.getenv("QVOICE_CHAT_PORT", "8081")),
            state_dir=state_dir,
            log_dir=log_dir,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """Validate configuration"""
        if not self.gemini_api_base_url.startswith("http"):
            raise ValueError(f"Invalid GEMINI_API_BASE_URL: {self.gemini_api_base_url}")
        if self.gemini_max_attempts < 1:
            raise ValueError("GEMINI_MAX_ATTEMPTS must be at least 1")
        if self.gemini_timeout <= 0:
            raise ValueError("GEMINI_TIMEOUT must be positive")
        if self.reminder_interval_seconds <= 0:
            raise ValueError("QVOICE_REMINDER_INTERVAL must be positive")
        if self.reminder_batch_size < 1:
            raise ValueError("QVOICE_REMINDER_BATCH_SIZE must be at least 1")
        if self.handshake_step_seconds < 0:
            raise ValueError("QVOICE_HANDSHAKE_STEP_SECONDS cannot be negative")
        if not self.token_dictionary:
            raise ValueError("QVOICE_TOKEN_DICTIONARY must contain at least one phrase")
        if not self.bot_user_id:
            raise ValueError("QVOICE_BOT_USER_ID cannot be empty")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid QVOICE_CHAT_PORT: {self.port}")

    @property
    def is_live(self) -> bool:
        return bool(self.gemini_api_key)
