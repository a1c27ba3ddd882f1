"""Configuration for ChatDelta."""

import os
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Environment variables holding each provider's API key
CREDENTIAL_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
}

# API endpoints
OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

# Saved by POST /api/config, read at session creation
CONFIG_FILE = "data/chatdelta_config.json"

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "gemini": "gemini-1.5-pro-latest",
    "claude": "claude-3-5-sonnet-20241022",
}

# Shown by `--list-models` and /api/models
KNOWN_MODELS = {
    "openai": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
    "gemini": ["gemini-1.5-pro-latest", "gemini-1.5-flash-latest", "gemini-pro"],
    "claude": ["claude-3-5-sonnet-20241022", "claude-3-haiku-20240307", "claude-3-opus-20240229"],
}

DEFAULT_SUMMARIZER = "gemini"


@dataclass
class ClientConfig:
    """Per-client connection settings shared by every provider implementation."""

    timeout: float = 30.0
    max_retries: int = 0
    backoff_base: float = 1.0
    backoff_cap: float = 30.0
    max_tokens: int = 1024
    temperature: Optional[float] = None

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be greater than 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_base < 0 or self.backoff_cap < 0:
            raise ValueError("backoff values must be >= 0")
        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")

    def backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Delay before the retry that follows a failed attempt.

        Args:
            attempt: Zero-based index of the attempt that just failed
            retry_after: Server-suggested delay (rate limits), if any

        Returns:
            Seconds to sleep, never more than ``backoff_cap``
        """
        delay = self.backoff_base * (2 ** attempt)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.backoff_cap)

    def retry_budget(self) -> float:
        """Worst-case seconds for one send: every attempt times out and every backoff is slept."""
        backoff = sum(self.backoff_delay(attempt) for attempt in range(self.max_retries))
        return self.timeout * (self.max_retries + 1) + backoff


@dataclass
class DeltaConfig:
    """Everything a session needs besides credentials."""

    models: Dict[str, str] = field(default_factory=dict)
    summarizer: Optional[str] = DEFAULT_SUMMARIZER
    summarize: bool = True
    unit_timeout: Optional[float] = 60.0
    dispatch_deadline: Optional[float] = 90.0
    client: ClientConfig = field(default_factory=ClientConfig)

    def model_for(self, provider: str) -> str:
        return self.models.get(provider) or DEFAULT_MODELS[provider]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeltaConfig":
        defaults = cls()
        client_data = data.get("client") or {}
        return cls(
            models=dict(data.get("models") or {}),
            summarizer=data.get("summarizer", defaults.summarizer),
            summarize=bool(data.get("summarize", defaults.summarize)),
            unit_timeout=data.get("unit_timeout", defaults.unit_timeout),
            dispatch_deadline=data.get("dispatch_deadline", defaults.dispatch_deadline),
            client=ClientConfig(**client_data),
        )


def load_credentials(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Collect provider API keys.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        Dict of provider name -> API key, only for keys that are set and non-blank
    """
    source = os.environ if environ is None else environ
    credentials = {}
    for provider, env_var in CREDENTIAL_ENV_VARS.items():
        value = (source.get(env_var) or "").strip()
        if value:
            credentials[provider] = value
    return credentials


def _ensure_config_dir(path: str):
    """Ensure the directory holding the config file exists."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def load_delta_config(path: str = CONFIG_FILE) -> DeltaConfig:
    """Load configuration from file, or return defaults."""
    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                return DeltaConfig.from_dict(json.load(f))
        except (json.JSONDecodeError, IOError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable config file %s: %s", path, e)
    return DeltaConfig()


def save_delta_config(config: DeltaConfig, path: str = CONFIG_FILE):
    """Save configuration to file."""
    _ensure_config_dir(path)
    with open(path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)
