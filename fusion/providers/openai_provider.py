"""OpenAI provider using openai SDK with native async."""

import asyncio
import logging
import time
from collections.abc import Sequence

from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from fusion.models import HistoryMessage
from fusion.providers.base import AIProvider, CallOptions, ProviderError, ProviderReply

logger = logging.getLogger(__name__)


def chat_messages(prompt: str, history: Sequence[HistoryMessage]) -> list[dict[str, str]]:
    """Build an OpenAI-style message list: history turns then the prompt."""
    messages = [{"role": m.role, "content": m.content} for m in history]
    messages.append({"role": "user", "content": prompt})
    return messages


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    def name(self) -> str:
        return self._config.name

    def _client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, base_url=self._config.base_url)

    async def generate(
        self,
        prompt: str,
        *,
        api_key: str,
        model: str,
        history: Sequence[HistoryMessage] = (),
        options: CallOptions = CallOptions(),
    ) -> ProviderReply:
        kwargs: dict = {
            "model": model,
            "messages": chat_messages(prompt, history),
            "max_completion_tokens": self._config.max_tokens,
        }
        # gpt-5 reasoning models reject a custom temperature
        if options.temperature is not None and not model.startswith("gpt-5"):
            kwargs["temperature"] = options.temperature

        start = time.monotonic()
        try:
            async with self._client(api_key) as client:
                response = await asyncio.wait_for(
                    client.chat.completions.create(**kwargs),
                    timeout=self._config.timeout_sec,
                )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        tokens = response.usage.total_tokens if response.usage else 0

        logger.info("OpenAI %s: %.2fs, %d tokens", model, latency, tokens)

        return ProviderReply(content=choice.message.content, tokens=tokens)
