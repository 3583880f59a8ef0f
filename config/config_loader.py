"""Load settings.yaml into typed dataclasses. Reports which credentials are present at startup."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ProviderConfig:
    name: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None
    image_model: str | None = None


@dataclass
class ModelConfig:
    alias: str             # identifier callers send, e.g. "claude-opus-4.6"
    provider: str          # "openai", "anthropic", "google", "grok"
    model: str             # concrete provider model string


@dataclass
class PromptsConfig:
    plain_text: str
    project_wrapper: str
    cross_analysis: str
    refinement: str
    synthesis: str
    grounding: str
    arbiter_system: str
    arbiter_user: str


@dataclass
class DefaultsConfig:
    fusion_mode: str
    master_model: str
    output_dir: Path
    default_panel: list[str] = field(default_factory=list)
    max_images: int = 4


@dataclass
class FactCheckConfig:
    search_url: str
    grounding_model: str
    search_results: int = 5
    extract_urls: int = 3
    extract_chars: int = 1000
    country: str | None = None
    language: str | None = None


@dataclass
class ServicesConfig:
    base_url: str = ""
    anon_key: str = ""
    key_vault_path: str = "/functions/v1/api-keys"
    memory_get_path: str = "/functions/v1/memory-get"
    memory_extract_path: str = "/functions/v1/memory-extract"
    auth_user_path: str = "/auth/v1/user"
    rest_path: str = "/rest/v1"
    manus_base_url: str = "https://api.manus.ai/v1"
    manus_agent_profile: str = "manus-1.6"
    timeout_sec: int = 30


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    providers: dict[str, ProviderConfig]
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    factcheck: FactCheckConfig
    services: ServicesConfig = field(default_factory=ServicesConfig)
    credential_env: dict[str, list[str]] = field(default_factory=dict)
    available_credentials: set[str] = field(default_factory=set)


def read_secret(env_names: list[str], environ: Mapping[str, str] | None = None) -> str | None:
    """Return the first non-empty value among env_names, or None."""
    environ = os.environ if environ is None else environ
    for env_name in env_names:
        value = environ.get(env_name, "").strip()
        if value:
            return value
    return None


def _as_list(value: str | list[str]) -> list[str]:
    return [value] if isinstance(value, str) else [str(v) for v in value]


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs which credentials are present but does not raise: a model without a
    key simply fails at call time.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        fusion_mode=str(defaults_raw.get("fusion_mode", "fusion")),
        master_model=str(defaults_raw["master_model"]),
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        default_panel=list(defaults_raw["default_panel"]),
        max_images=int(defaults_raw.get("max_images", 4)),
    )

    providers: dict[str, ProviderConfig] = {}
    for provider_name, provider_raw in raw["providers"].items():
        providers[provider_name] = ProviderConfig(
            name=provider_name,
            timeout_sec=int(provider_raw["timeout_sec"]),
            max_tokens=int(provider_raw["max_tokens"]),
            base_url=provider_raw.get("base_url"),
            image_model=provider_raw.get("image_model"),
        )

    models: dict[str, ModelConfig] = {}
    for alias, model_raw in raw["models"].items():
        provider_name = model_raw["provider"]
        if provider_name not in providers:
            raise ValueError(f"Model '{alias}' references unknown provider '{provider_name}'")
        models[str(alias)] = ModelConfig(
            alias=str(alias),
            provider=provider_name,
            model=str(model_raw["model"]),
        )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        plain_text=prompts_raw["plain_text"].strip(),
        project_wrapper=prompts_raw["project_wrapper"],
        cross_analysis=prompts_raw["cross_analysis"],
        refinement=prompts_raw["refinement"],
        synthesis=prompts_raw["synthesis"],
        grounding=prompts_raw["grounding"],
        arbiter_system=prompts_raw["arbiter_system"],
        arbiter_user=prompts_raw["arbiter_user"],
    )

    factcheck_raw = raw["factcheck"]
    factcheck = FactCheckConfig(
        search_url=str(factcheck_raw["search_url"]),
        grounding_model=str(factcheck_raw["grounding_model"]),
        search_results=int(factcheck_raw.get("search_results", 5)),
        extract_urls=int(factcheck_raw.get("extract_urls", 3)),
        extract_chars=int(factcheck_raw.get("extract_chars", 1000)),
        country=factcheck_raw.get("country"),
        language=factcheck_raw.get("language"),
    )

    services_raw = raw.get("services", {})
    services = ServicesConfig(
        base_url=read_secret(_as_list(services_raw.get("base_url_env", "SUPABASE_URL"))) or "",
        anon_key=read_secret(_as_list(services_raw.get("anon_key_env", "SUPABASE_ANON_KEY"))) or "",
        key_vault_path=services_raw.get("key_vault_path", ServicesConfig.key_vault_path),
        memory_get_path=services_raw.get("memory_get_path", ServicesConfig.memory_get_path),
        memory_extract_path=services_raw.get("memory_extract_path", ServicesConfig.memory_extract_path),
        auth_user_path=services_raw.get("auth_user_path", ServicesConfig.auth_user_path),
        rest_path=services_raw.get("rest_path", ServicesConfig.rest_path),
        manus_base_url=services_raw.get("manus_base_url", ServicesConfig.manus_base_url),
        manus_agent_profile=services_raw.get("manus_agent_profile", ServicesConfig.manus_agent_profile),
        timeout_sec=int(services_raw.get("timeout_sec", ServicesConfig.timeout_sec)),
    )

    credential_env = {name: _as_list(envs) for name, envs in raw["credentials"].items()}
    available: set[str] = set()
    for name, env_names in credential_env.items():
        if read_secret(env_names):
            available.add(name)
            logger.info("Credential available: %s", name)
        else:
            logger.info("Credential missing: %s (set one of %s in .env)", name, ", ".join(env_names))

    return AppConfig(
        defaults=defaults,
        providers=providers,
        models=models,
        prompts=prompts,
        factcheck=factcheck,
        services=services,
        credential_env=credential_env,
        available_credentials=available,
    )
