"""
Provider clients for the AI backends ChatDelta compares.

Each client implements one capability, ``send(prompt, deadline)``, which
returns ``Success`` or ``Failure`` and never raises for provider faults:
- OpenAIClient  (chat completions)
- GeminiClient  (generateContent)
- ClaudeClient  (messages)
- ScriptedClient (offline replay, for tests)

Usage:
    from chatdelta.providers import OpenAIClient

    client = OpenAIClient(api_key, "gpt-4o")
    outcome = await client.send("What is Rust?", deadline=30.0)
"""

from .base import ProviderClient, classify_status
from .anthropic_provider import ClaudeClient
from .dummy import ScriptedClient
from .gemini_provider import GeminiClient
from .openai_provider import OpenAIClient

__all__ = [
    "ProviderClient",
    "OpenAIClient",
    "GeminiClient",
    "ClaudeClient",
    "ScriptedClient",
    "classify_status",
]
