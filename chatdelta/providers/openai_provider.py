"""OpenAI API client for direct model queries."""

from typing import Any, Dict, List, Optional, Tuple

from ..config import OPENAI_API_URL
from ..types import Message
from .base import ProviderClient


class OpenAIClient(ProviderClient):
    """
    Chat completions client.

    Models: "gpt-4o", "gpt-4o-mini", "gpt-4-turbo", ...
    """

    kind = "openai"
    label = "ChatGPT"

    def _build_request(self, messages: List[Message]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
        }
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature

        return OPENAI_API_URL, headers, payload

    def _parse_response(self, data: Dict[str, Any]) -> Optional[str]:
        message = data['choices'][0]['message']
        return message.get('content')
