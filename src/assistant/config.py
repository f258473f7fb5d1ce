"""Relay configuration with environment variable loading.

Pydantic-based configuration for the assistant relay. Values are read once
at process start; missing credentials only produce startup warnings so the
server can still come up and fail individual requests fast.
"""

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


class RelayConfig(BaseModel):
    """Configuration for the assistant relay.

    Attributes:
        openai_api_key: API key for the Assistants API.
        assistant_id: Identifier of the hosted assistant to run.
        base_url: API base URL (None for OpenAI default).
        host: Interface the HTTP server binds to.
        port: Listen port.
        stream_timeout_ms: Wall-clock limit for one streaming run.
        debug_sse: Forward every upstream event as a `debug` SSE event.
        upload_dir: Directory for temporary attachment copies.
    """

    openai_api_key: str = Field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY", ""),
        description="API key for the Assistants API",
    )
    assistant_id: str = Field(
        default_factory=lambda: os.getenv("ASSISTANT_ID", ""),
        description="Hosted assistant identifier",
    )
    base_url: str | None = Field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL") or None,
        description="API base URL (None for OpenAI default)",
    )
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(
        default_factory=lambda: int(os.getenv("PORT", "3001")),
        ge=1,
        le=65535,
    )
    stream_timeout_ms: int = Field(
        default_factory=lambda: int(os.getenv("STREAM_TIMEOUT_MS", "120000")),
        ge=1,
        description="Abort a streaming run after this many milliseconds",
    )
    debug_sse: bool = Field(default_factory=lambda: _env_flag("DEBUG_SSE"))
    upload_dir: str = Field(default_factory=lambda: os.getenv("UPLOAD_DIR", "uploads"))

    @field_validator("openai_api_key", "assistant_id")
    @classmethod
    def strip_credentials(cls, v: str) -> str:
        """Strip surrounding whitespace; emptiness is reported, not rejected."""
        return v.strip()

    @property
    def stream_timeout(self) -> float:
        """Stream timeout in seconds."""
        return self.stream_timeout_ms / 1000

    def missing_settings(self) -> list[str]:
        """Return env var names of required settings that are not set."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.assistant_id:
            missing.append("ASSISTANT_ID")
        return missing


def log_config_warnings(config: RelayConfig) -> None:
    """Warn about missing required settings without stopping startup."""
    for name in config.missing_settings():
        logger.warning(f"{name} missing in environment; chat requests will fail")


_relay_config: RelayConfig | None = None


def get_relay_config() -> RelayConfig:
    """Get or create the process-wide relay configuration.

    Returns:
        The RelayConfig instance.
    """
    global _relay_config
    if _relay_config is None:
        _relay_config = RelayConfig()
    return _relay_config
