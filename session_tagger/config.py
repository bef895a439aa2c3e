"""Settings and fixed tuning constants for AI tag suggestions."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".cache" / "session-tagger" / "sessions.db"
API_KEY_ENV = "ANTHROPIC_API_KEY"
ENV_PREFIX = "SESSION_TAGGER_"

# Model request
MODEL_NAME = "claude-3-haiku-20240307"
MAX_TOKENS = 1024
TEMPERATURE = 0.3
REQUEST_TIMEOUT_SECONDS = 30.0

# Retry policy
MAX_ATTEMPTS = 3
INITIAL_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 10.0
BACKOFF_MULTIPLIER = 2.0

# Cost estimation (USD per million tokens)
INPUT_COST_PER_MILLION = 0.25
OUTPUT_COST_PER_MILLION = 1.25
AVG_INPUT_TOKENS_PER_SESSION = 800
AVG_OUTPUT_TOKENS_PER_SESSION = 400
AVG_SECONDS_PER_REQUEST = 2

# Response bounds
MAX_SUGGESTIONS = 10


class SettingsSource(Protocol):
    def get_setting(self, key: str) -> Optional[str]: ...


@dataclass
class TaggerSettings:
    """User-facing settings for background tagging.

    Resolution order: defaults, then the settings table (if a source is
    given), then ``SESSION_TAGGER_<NAME>`` environment variables.
    """

    auto_suggest_enabled: bool = False
    auto_accept_enabled: bool = False
    auto_accept_threshold: float = 0.9
    scan_agent_sessions: bool = False
    rate_limit_enabled: bool = True
    max_sessions_per_hour: int = 100
    breaker_threshold: int = 5

    @classmethod
    def load(cls, source: Optional[SettingsSource] = None) -> "TaggerSettings":
        settings = cls()
        for f in fields(cls):
            raw = None
            if source is not None:
                try:
                    raw = source.get_setting(f.name)
                except Exception as e:
                    logger.warning(f"Failed to read setting {f.name}: {e}")
            env_value = os.environ.get(ENV_PREFIX + f.name.upper())
            if env_value is not None:
                raw = env_value
            if raw is None:
                continue
            try:
                setattr(settings, f.name, _coerce(raw, type(getattr(settings, f.name))))
            except ValueError:
                logger.warning(f"Ignoring invalid value for {f.name}: {raw!r}")
        return settings


def _coerce(raw: str, target: type):
    value = str(raw).strip()
    if target is bool:
        lowered = value.lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(value)
    return target(value)


def get_api_key() -> Optional[str]:
    """Return the trimmed API key from the environment, if set."""
    key = os.environ.get(API_KEY_ENV)
    if key and key.strip():
        return key.strip()
    return None
