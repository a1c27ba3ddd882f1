"""
Client registry: turns a credential mapping into the active provider clients.

Known providers, in registration (column) order:
- "openai"  (aliases: gpt, chatgpt)   -> OpenAIClient, OPENAI_API_KEY
- "gemini"                             -> GeminiClient, GEMINI_API_KEY
- "claude"  (aliases: anthropic)       -> ClaudeClient, ANTHROPIC_API_KEY

Building the registry is pure wiring: no network calls, no retries.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple, Type

import httpx

from .config import CREDENTIAL_ENV_VARS, DEFAULT_MODELS, DeltaConfig
from .errors import ConfigurationError
from .providers import ClaudeClient, GeminiClient, OpenAIClient, ProviderClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderKind:
    name: str
    label: str
    env_var: str
    default_model: str
    client_class: Type[ProviderClient]
    aliases: Tuple[str, ...] = ()


PROVIDER_KINDS: Tuple[ProviderKind, ...] = (
    ProviderKind("openai", "ChatGPT", CREDENTIAL_ENV_VARS["openai"], DEFAULT_MODELS["openai"],
                 OpenAIClient, ("gpt", "chatgpt")),
    ProviderKind("gemini", "Gemini", CREDENTIAL_ENV_VARS["gemini"], DEFAULT_MODELS["gemini"],
                 GeminiClient),
    ProviderKind("claude", "Claude", CREDENTIAL_ENV_VARS["claude"], DEFAULT_MODELS["claude"],
                 ClaudeClient, ("anthropic",)),
)


def resolve_provider_name(name: str) -> str:
    """
    Map a user-facing provider name or alias onto its canonical name.

    Raises:
        ConfigurationError: if the name matches no known provider
    """
    wanted = name.strip().lower()
    for kind in PROVIDER_KINDS:
        if wanted == kind.name or wanted in kind.aliases:
            return kind.name
    valid = ", ".join(kind.name for kind in PROVIDER_KINDS)
    raise ConfigurationError(f"Unknown provider '{name}'. Valid options: {valid}")


def _resolve_all(names: Optional[Iterable[str]]) -> Optional[set]:
    if not names:
        return None
    return {resolve_provider_name(name) for name in names}


def build_clients(
    credentials: Mapping[str, str],
    config: Optional[DeltaConfig] = None,
    only: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[ProviderClient]:
    """
    Build one client per provider that has a usable credential.

    Args:
        credentials: Provider name -> API key (see ``config.load_credentials``)
        config: Model overrides and client settings; defaults when omitted
        only: If given, restrict to these providers (names or aliases)
        exclude: Providers to leave out (names or aliases)
        transport: httpx transport handed to every client (tests)

    Returns:
        Active clients in registration order; may be empty
    """
    config = config or DeltaConfig()
    only_set = _resolve_all(only)
    exclude_set = _resolve_all(exclude) or set()

    clients: List[ProviderClient] = []
    for kind in PROVIDER_KINDS:
        if only_set is not None and kind.name not in only_set:
            continue
        if kind.name in exclude_set:
            continue
        api_key = (credentials.get(kind.name) or "").strip()
        if not api_key:
            logger.info("%s not set, skipping %s", kind.env_var, kind.label)
            continue
        clients.append(kind.client_class(
            api_key=api_key,
            model=config.model_for(kind.name),
            config=config.client,
            transport=transport,
        ))
    return clients


def require_clients(clients: List[ProviderClient]) -> List[ProviderClient]:
    """Escalate an empty active set to the caller."""
    if not clients:
        raise ConfigurationError(
            "No AI clients available. Check your API keys and --only/--exclude settings."
        )
    return clients


def select_summarizer(
    clients: List[ProviderClient],
    preferred: Optional[str],
    enabled: bool = True,
) -> Optional[ProviderClient]:
    """
    Pick the client that writes the digest.

    The preferred provider wins when it is active; otherwise the first active
    client is used. Returns None when summarization is disabled or nothing is active.
    """
    if not enabled or not clients:
        return None
    if preferred:
        wanted = resolve_provider_name(preferred)
        for client in clients:
            if client.name == wanted:
                return client
        logger.info("Summarizer '%s' is not active, falling back to %s", preferred, clients[0].label)
    return clients[0]
