"""Offline provider client that replays a script instead of calling an API."""

import asyncio
from typing import List, Optional, Sequence, Tuple, Union

from ..config import ClientConfig
from ..errors import ProviderError
from ..types import Message
from .base import ProviderClient

Step = Union[str, ProviderError, Tuple[float, Union[str, ProviderError]]]


class ScriptedClient(ProviderClient):
    """
    Replays ``steps`` one attempt at a time.

    A step is a reply string, a ``ProviderError`` to raise, or a
    ``(delay_seconds, step)`` pair. Once the script runs out the last step
    repeats, so a single error step fails every retry.
    """

    def __init__(
        self,
        name: str,
        steps: Sequence[Step],
        model: str = "scripted",
        config: Optional[ClientConfig] = None,
        label: Optional[str] = None,
    ):
        if not steps:
            raise ValueError("ScriptedClient needs at least one step")
        self.kind = name
        self.label = label or name
        super().__init__(api_key="", model=model, config=config)
        self._steps = list(steps)
        self.attempts = 0
        self.prompts: List[List[Message]] = []

    async def _attempt(self, messages: List[Message], timeout: float) -> str:
        step = self._steps[min(self.attempts, len(self._steps) - 1)]
        self.attempts += 1
        self.prompts.append(list(messages))

        if isinstance(step, tuple):
            delay, step = step
            await asyncio.sleep(delay)
        if isinstance(step, ProviderError):
            raise step
        return step
