"""xAI Grok provider using openai SDK (OpenAI-compatible API)."""

import asyncio
import logging
import time
from collections.abc import Sequence

from openai import AsyncOpenAI

from config.config_loader import ProviderConfig
from fusion.models import HistoryMessage
from fusion.providers.base import AIProvider, CallOptions, ProviderError, ProviderReply
from fusion.providers.openai_provider import chat_messages

logger = logging.getLogger(__name__)

_DEFAULT_TEMPERATURE = 0.7


class XAIProvider(AIProvider):
    """xAI Grok provider via OpenAI-compatible API."""

    def __init__(self, config: ProviderConfig) -> None:
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for xAI provider")
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
        temperature = options.temperature if options.temperature is not None else _DEFAULT_TEMPERATURE
        start = time.monotonic()
        try:
            async with self._client(api_key) as client:
                response = await asyncio.wait_for(
                    client.chat.completions.create(
                        model=model,
                        messages=chat_messages(prompt, history),
                        max_tokens=self._config.max_tokens,
                        temperature=temperature,
                    ),
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

        logger.info("xAI %s: %.2fs, %d tokens", model, latency, tokens)

        return ProviderReply(content=choice.message.content, tokens=tokens)

    async def generate_image(self, prompt: str, *, api_key: str) -> str:
        if not self._config.image_model:
            return await super().generate_image(prompt, api_key=api_key)
        try:
            async with self._client(api_key) as client:
                response = await asyncio.wait_for(
                    client.images.generate(
                        model=self._config.image_model,
                        prompt=prompt,
                        n=1,
                        response_format="b64_json",
                    ),
                    timeout=self._config.timeout_sec,
                )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Image request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"Image generation failed: {exc}") from exc

        image = response.data[0] if response.data else None
        if image is None:
            raise ProviderError(self._config.name, "No image data in response")
        if image.url:
            return image.url
        if image.b64_json:
            return f"data:image/png;base64,{image.b64_json}"
        raise ProviderError(self._config.name, "No image data in response")
