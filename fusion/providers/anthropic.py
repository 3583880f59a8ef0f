"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import time
from collections.abc import Sequence

import anthropic as anthropic_sdk

from config.config_loader import ProviderConfig
from fusion.models import HistoryMessage
from fusion.providers.base import AIProvider, CallOptions, ProviderError, ProviderReply
from fusion.providers.openai_provider import chat_messages

logger = logging.getLogger(__name__)

_DEFAULT_TEMPERATURE = 0.7


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    def name(self) -> str:
        return self._config.name

    def _client(self, api_key: str) -> anthropic_sdk.AsyncAnthropic:
        return anthropic_sdk.AsyncAnthropic(api_key=api_key)

    async def generate(
        self,
        prompt: str,
        *,
        api_key: str,
        model: str,
        history: Sequence[HistoryMessage] = (),
        options: CallOptions = CallOptions(),
    ) -> ProviderReply:
        temperature = options.temperature if options.temperature is not None else _DEFAULT_TEMPERATURE
        start = time.monotonic()
        try:
            async with self._client(api_key) as client:
                response = await asyncio.wait_for(
                    client.messages.create(
                        model=model,
                        max_tokens=self._config.max_tokens,
                        messages=chat_messages(prompt, history),
                        temperature=temperature,
                    ),
                    timeout=self._config.timeout_sec,
                )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise ProviderError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        content = "\n".join(text_blocks)

        tokens = 0
        if response.usage:
            tokens = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic %s: %.2fs, %d tokens", model, latency, tokens)

        return ProviderReply(content=content, tokens=tokens)
