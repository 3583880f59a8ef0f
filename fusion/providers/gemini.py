"""Gemini provider using google-genai SDK with native async."""

import asyncio
import base64
import logging
import time
from collections.abc import Sequence

from google import genai
from google.genai import types as genai_types

from config.config_loader import ProviderConfig
from fusion.models import HistoryMessage
from fusion.providers.base import AIProvider, CallOptions, ProviderError, ProviderReply

logger = logging.getLogger(__name__)


def gemini_contents(prompt: str, history: Sequence[HistoryMessage]) -> list[genai_types.Content]:
    """Gemini names the assistant role "model"."""
    contents = [
        genai_types.Content(
            role="model" if m.role == "assistant" else "user",
            parts=[genai_types.Part(text=m.content)],
        )
        for m in history
    ]
    contents.append(genai_types.Content(role="user", parts=[genai_types.Part(text=prompt)]))
    return contents


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    def name(self) -> str:
        return self._config.name

    def _client(self, api_key: str) -> genai.Client:
        return genai.Client(api_key=api_key)

    def _generation_config(self, options: CallOptions) -> genai_types.GenerateContentConfig:
        config = genai_types.GenerateContentConfig(max_output_tokens=self._config.max_tokens)
        if options.temperature is not None:
            config.temperature = options.temperature
        if options.force_json:
            config.response_mime_type = "application/json"
        if options.search_grounding:
            config.tools = [genai_types.Tool(google_search=genai_types.GoogleSearch())]
        return config

    async def generate(
        self,
        prompt: str,
        *,
        api_key: str,
        model: str,
        history: Sequence[HistoryMessage] = (),
        options: CallOptions = CallOptions(),
    ) -> ProviderReply:
        client = self._client(api_key)
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=model,
                    contents=gemini_contents(prompt, history),
                    config=self._generation_config(options),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc
        finally:
            await client.aio.aclose()

        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        tokens = 0
        if response.usage_metadata and response.usage_metadata.total_token_count:
            tokens = response.usage_metadata.total_token_count

        logger.info("Gemini %s: %.2fs, %d tokens", model, latency, tokens)

        return ProviderReply(content=response.text, tokens=tokens)

    async def generate_image(self, prompt: str, *, api_key: str) -> str:
        if not self._config.image_model:
            return await super().generate_image(prompt, api_key=api_key)
        client = self._client(api_key)
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self._config.image_model,
                    contents=prompt,
                    config=genai_types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Image request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"Image generation failed: {exc}") from exc
        finally:
            await client.aio.aclose()

        candidate = response.candidates[0] if response.candidates else None
        if candidate is None or candidate.content is None:
            raise ProviderError(self._config.name, "No candidates returned")

        for part in candidate.content.parts or []:
            inline = part.inline_data
            if inline and inline.mime_type and inline.mime_type.startswith("image") and inline.data:
                encoded = base64.b64encode(inline.data).decode("ascii")
                return f"data:{inline.mime_type};base64,{encoded}"

        raise ProviderError(self._config.name, "No image data found")
