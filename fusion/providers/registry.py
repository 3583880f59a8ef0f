"""Explicit model registry: alias -> (provider, concrete model), built once at startup."""

import logging
from dataclasses import dataclass

from config.config_loader import AppConfig, ModelConfig
from fusion.providers.anthropic import AnthropicProvider
from fusion.providers.base import AIProvider
from fusion.providers.gemini import GeminiProvider
from fusion.providers.openai_provider import OpenAIProvider
from fusion.providers.xai import XAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GeminiProvider,
    "grok": XAIProvider,
}


class UnknownModelError(KeyError):
    """Raised when an identifier has no registry entry."""

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(model_id)

    def __str__(self) -> str:
        return f"Unsupported model: {self.model_id}"


@dataclass(frozen=True)
class ResolvedModel:
    alias: str
    model: str
    provider: AIProvider

    @property
    def provider_name(self) -> str:
        return self.provider.name()


class ModelRegistry:
    """Maps caller-facing model identifiers onto provider instances."""

    def __init__(self, models: dict[str, ModelConfig], providers: dict[str, AIProvider]) -> None:
        missing = {m.provider for m in models.values()} - set(providers)
        if missing:
            raise ValueError(f"No provider instance for: {', '.join(sorted(missing))}")
        self._models = dict(models)
        self._providers = dict(providers)

    @classmethod
    def from_config(cls, config: AppConfig) -> "ModelRegistry":
        providers: dict[str, AIProvider] = {}
        for name, provider_cfg in config.providers.items():
            if name not in PROVIDER_CLASSES:
                logger.warning("Provider '%s' unknown, skipping", name)
                continue
            providers[name] = PROVIDER_CLASSES[name](provider_cfg)
        models = {alias: m for alias, m in config.models.items() if m.provider in providers}
        return cls(models, providers)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models

    def aliases(self) -> list[str]:
        return list(self._models)

    def resolve(self, model_id: str) -> ResolvedModel:
        """Raises UnknownModelError when model_id is not registered."""
        try:
            entry = self._models[model_id]
        except KeyError:
            raise UnknownModelError(model_id) from None
        return ResolvedModel(alias=entry.alias, model=entry.model, provider=self._providers[entry.provider])

    def provider_name(self, model_id: str) -> str | None:
        entry = self._models.get(model_id)
        return entry.provider if entry else None
