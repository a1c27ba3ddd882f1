"""Anthropic/Claude API client for direct model queries."""

from typing import Any, Dict, List, Optional, Tuple

from ..config import ANTHROPIC_API_URL, ANTHROPIC_VERSION
from ..types import Message
from .base import ProviderClient


class ClaudeClient(ProviderClient):
    """
    Messages API client.

    Models: "claude-3-5-sonnet-20241022", "claude-3-haiku-20240307", ...
    """

    kind = "claude"
    label = "Claude"

    def _build_request(self, messages: List[Message]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }

        # Convert OpenAI-style messages to Anthropic format
        # Extract system message if present
        system_content = None
        anthropic_messages = []

        for msg in messages:
            if msg['role'] == 'system':
                system_content = msg['content']
            else:
                anthropic_messages.append({
                    'role': msg['role'],
                    'content': msg['content']
                })

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": anthropic_messages,
            "max_tokens": self.config.max_tokens,
        }

        if system_content:
            payload["system"] = system_content
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature

        return ANTHROPIC_API_URL, headers, payload

    def _parse_response(self, data: Dict[str, Any]) -> Optional[str]:
        # Response content is an array of content blocks; thinking blocks are skipped
        content_blocks = data.get('content', [])
        text_parts = [block.get('text', '') for block in content_blocks if block.get('type') == 'text']
        if not text_parts:
            return None
        return "".join(text_parts)
