"""Credential resolution: process defaults merged with per-caller vault overrides."""

import asyncio
import logging
from collections.abc import Mapping

from config.config_loader import AppConfig, read_secret
from fusion.collaborators import KeyVaultClient
from fusion.models import CredentialSet

logger = logging.getLogger(__name__)

# Vault provider name -> CredentialSet slot
VAULT_PROVIDERS: dict[str, str] = {
    "openai": "openai",
    "anthropic": "anthropic",
    "google": "google",
    "xai": "grok",
}


def default_credentials(config: AppConfig, environ: Mapping[str, str] | None = None) -> CredentialSet:
    """Build the process-wide credential set. Call once at startup."""
    secrets = {
        name: read_secret(env_names, environ)
        for name, env_names in config.credential_env.items()
    }
    return CredentialSet().merged(secrets)


class CredentialResolver:
    def __init__(self, defaults: CredentialSet, vault: KeyVaultClient | None = None) -> None:
        self._defaults = defaults
        self._vault = vault

    @property
    def defaults(self) -> CredentialSet:
        return self._defaults

    async def _lookup(self, caller_token: str, vault_provider: str) -> str | None:
        try:
            return await self._vault.decrypt(caller_token, vault_provider)
        except Exception as exc:
            logger.debug("Vault lookup for %s failed, using default: %s", vault_provider, exc)
            return None

    async def resolve(self, caller_token: str | None = None) -> CredentialSet:
        """Return the credential set for one request.

        Without a caller token the defaults come back unchanged. With one, every
        vault provider is looked up concurrently; a failed lookup only means that
        provider keeps its default.
        """
        if not caller_token or self._vault is None:
            return self._defaults

        names = list(VAULT_PROVIDERS)
        secrets = await asyncio.gather(*(self._lookup(caller_token, n) for n in names))
        overrides = {VAULT_PROVIDERS[n]: s for n, s in zip(names, secrets) if s}
        if overrides:
            logger.info("Using caller keys for: %s", ", ".join(sorted(overrides)))
        return self._defaults.merged(overrides)
