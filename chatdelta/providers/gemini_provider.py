"""Google Gemini API client for direct model queries."""

from typing import Any, Dict, List, Optional, Tuple

from ..config import GEMINI_API_URL
from ..types import Message
from .base import ProviderClient


class GeminiClient(ProviderClient):
    """
    generateContent client.

    Models: "gemini-1.5-pro-latest", "gemini-1.5-flash-latest", ...
    """

    kind = "gemini"
    label = "Gemini"

    def _build_request(self, messages: List[Message]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

        # Gemini calls the assistant role "model" and takes the system prompt separately
        system_content = None
        contents = []
        for msg in messages:
            if msg['role'] == 'system':
                system_content = msg['content']
                continue
            role = 'model' if msg['role'] == 'assistant' else 'user'
            contents.append({'role': role, 'parts': [{'text': msg['content']}]})

        generation_config: Dict[str, Any] = {"maxOutputTokens": self.config.max_tokens}
        if self.config.temperature is not None:
            generation_config["temperature"] = self.config.temperature

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_content:
            payload["systemInstruction"] = {"parts": [{"text": system_content}]}

        url = f"{GEMINI_API_URL}/{self.model}:generateContent"
        return url, headers, payload

    def _parse_response(self, data: Dict[str, Any]) -> Optional[str]:
        candidates = data.get('candidates') or []
        if not candidates:
            return None
        parts = candidates[0]['content'].get('parts', [])
        text = "".join(part.get('text', '') for part in parts)
        return text or None
