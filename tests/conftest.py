"""Shared pytest fixtures."""

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    FactCheckConfig,
    ModelConfig,
    PromptsConfig,
    ProviderConfig,
    ServicesConfig,
)
from fusion.adapter import ModelAdapter
from fusion.models import CredentialSet, HistoryMessage
from fusion.orchestrator import FusionOrchestrator
from fusion.providers.base import AIProvider, CallOptions, ProviderError, ProviderReply
from fusion.providers.registry import ModelRegistry

SYNTH_REPLY = "Fused answer. Verification: 3 points verified, 90% consensus, 1 contradictions resolved"


def tagged_reply(prompt: str, model: str) -> str:
    """Default stub behaviour: answer according to the phase tag in the prompt."""
    if "[SYNTH]" in prompt:
        return f"{SYNTH_REPLY} (by {model})"
    if "[REFINE]" in prompt:
        return f"{model} refined"
    if "[CROSS]" in prompt:
        return f"{model} cross"
    if "[VERIFY]" in prompt:
        return "Checked answer [1]."
    if "[GROUND]" in prompt:
        return "grounded draft"
    return f"{model} initial"


class StubProvider(AIProvider):
    """Test double AIProvider that records every call."""

    def __init__(
        self,
        provider_name: str = "stub",
        responder: Callable[[str, str], str] = tagged_reply,
        tokens: int = 10,
        failing: Sequence[str] = (),
        image_url: str | None = "data:image/png;base64,AAAA",
    ) -> None:
        self._name = provider_name
        self.responder = responder
        self.tokens = tokens
        self.failing = set(failing)
        self.image_url = image_url
        self.calls: list[dict] = []
        self.image_calls: list[str] = []

    def name(self) -> str:
        return self._name

    async def generate(
        self,
        prompt: str,
        *,
        api_key: str,
        model: str,
        history: Sequence[HistoryMessage] = (),
        options: CallOptions = CallOptions(),
    ) -> ProviderReply:
        self.calls.append({
            "prompt": prompt,
            "api_key": api_key,
            "model": model,
            "history": list(history),
            "options": options,
        })
        if model in self.failing:
            raise ProviderError(self._name, f"{model} unavailable")
        return ProviderReply(content=self.responder(prompt, model), tokens=self.tokens)

    async def generate_image(self, prompt: str, *, api_key: str) -> str:
        self.image_calls.append(prompt)
        if self.image_url is None:
            raise ProviderError(self._name, "Image generation failed")
        return self.image_url

    def prompts_for(self, model: str, tag: str) -> list[str]:
        return [c["prompt"] for c in self.calls if c["model"] == model and tag in c["prompt"]]


TEST_MODELS = {
    "gpt-test": "openai",
    "claude-test": "anthropic",
    "gemini-test": "google",
    "grok-test": "grok",
}


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        plain_text="[PLAIN]",
        project_wrapper="[PROJECT]{instructions}\n[SYSTEM]{system}\n[QUESTION]{prompt}",
        cross_analysis="[CROSS] {question}\nOWN: {own_answer}\nPEERS:\n{peer_answers}",
        refinement="[REFINE] {question}\nOWN: {own_answer}\nCRITIQUES:\n{critiques}",
        synthesis="[SYNTH] {question} ({count})\n{responses}",
        grounding="[GROUND] {question}\n{draft}",
        arbiter_system="[ARBITER]",
        arbiter_user="[VERIFY] {question}\nDRAFT: {draft}\nGROUNDED: {grounded}\nEVIDENCE:\n{evidence}",
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        fusion_mode="fusion",
        master_model="gpt-test",
        output_dir=tmp_path / "output",
        default_panel=["gpt-test", "claude-test", "gemini-test"],
        max_images=4,
    )


@pytest.fixture
def sample_factcheck_config() -> FactCheckConfig:
    return FactCheckConfig(
        search_url="https://search.test/search",
        grounding_model="gemini-test",
        search_results=5,
        extract_urls=3,
        extract_chars=1000,
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
    sample_factcheck_config: FactCheckConfig,
) -> AppConfig:
    providers = {
        name: ProviderConfig(name=name, timeout_sec=30, max_tokens=1024)
        for name in ("openai", "anthropic", "google")
    }
    providers["grok"] = ProviderConfig(name="grok", timeout_sec=30, max_tokens=1024, base_url="https://api.x.ai/v1")
    return AppConfig(
        defaults=sample_defaults_config,
        providers=providers,
        models={alias: ModelConfig(alias=alias, provider=p, model=alias) for alias, p in TEST_MODELS.items()},
        prompts=sample_prompts_config,
        factcheck=sample_factcheck_config,
        services=ServicesConfig(),
        credential_env={"openai": ["OPENAI_API_KEY"], "serper": ["SERPER_API_KEY"]},
    )


@pytest.fixture
def stub_providers() -> dict[str, StubProvider]:
    return {name: StubProvider(name) for name in ("openai", "anthropic", "google", "grok")}


@pytest.fixture
def registry(stub_providers: dict[str, StubProvider]) -> ModelRegistry:
    models = {alias: ModelConfig(alias=alias, provider=p, model=alias) for alias, p in TEST_MODELS.items()}
    return ModelRegistry(models, stub_providers)


@pytest.fixture
def adapter(registry: ModelRegistry, sample_prompts_config: PromptsConfig) -> ModelAdapter:
    return ModelAdapter(registry, sample_prompts_config)


@pytest.fixture
def credentials() -> CredentialSet:
    return CredentialSet(
        openai="sk-openai",
        anthropic="sk-anthropic",
        google="sk-google",
        grok="sk-grok",
        serper="sk-serper",
        tavily="sk-tavily",
    )


@pytest.fixture
def orchestrator(
    adapter: ModelAdapter,
    sample_prompts_config: PromptsConfig,
    sample_defaults_config: DefaultsConfig,
) -> FusionOrchestrator:
    return FusionOrchestrator(adapter, sample_prompts_config, sample_defaults_config)
