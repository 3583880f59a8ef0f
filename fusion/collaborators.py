"""HTTP clients for the external services the fusion pipeline consumes."""

import json
import logging
from collections.abc import Sequence

import httpx

from config.config_loader import ServicesConfig
from fusion.models import HistoryMessage

logger = logging.getLogger(__name__)


class _ServiceClient:
    def __init__(self, services: ServicesConfig, http: httpx.AsyncClient) -> None:
        self._services = services
        self._http = http

    def _url(self, path: str) -> str:
        return self._services.base_url.rstrip("/") + path

    def _headers(self, caller_token: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {caller_token}",
            "Content-Type": "application/json",
        }
        if self._services.anon_key:
            headers["apikey"] = self._services.anon_key
        return headers


class AuthClient(_ServiceClient):
    """Resolves a bearer token to a user id."""

    async def get_user_id(self, caller_token: str | None) -> str | None:
        """Return the caller's user id, or None when the token is absent or rejected."""
        if not caller_token or not self._services.base_url:
            return None
        try:
            resp = await self._http.get(
                self._url(self._services.auth_user_path),
                headers=self._headers(caller_token),
            )
            resp.raise_for_status()
            return resp.json().get("id") or None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("User auth check failed: %s", exc)
            return None


class KeyVaultClient(_ServiceClient):
    """Fetches a caller's own decrypted provider key."""

    async def decrypt(self, caller_token: str, provider: str) -> str | None:
        """Return the decrypted secret, or None when the vault has none.

        Raises:
            httpx.HTTPError: On transport failure.
        """
        resp = await self._http.post(
            self._url(self._services.key_vault_path),
            params={"action": "decrypt"},
            headers=self._headers(caller_token),
            json={"provider": provider},
        )
        if resp.status_code != 200:
            return None
        return resp.json().get("api_key") or None


class MemoryClient(_ServiceClient):
    """Reads the caller's memory block and triggers memory extraction."""

    async def fetch_block(self, caller_token: str | None) -> str:
        if not caller_token or not self._services.base_url:
            return ""
        try:
            resp = await self._http.get(
                self._url(self._services.memory_get_path),
                headers=self._headers(caller_token),
            )
            resp.raise_for_status()
            return resp.json().get("system_prompt_block") or ""
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Memory fetch failed: %s", exc)
            return ""

    async def extract(
        self,
        caller_token: str,
        conversation_id: str,
        messages: Sequence[HistoryMessage],
    ) -> None:
        """Raises httpx.HTTPError on failure."""
        resp = await self._http.post(
            self._url(self._services.memory_extract_path),
            headers=self._headers(caller_token),
            json={
                "conversation_id": conversation_id,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
            },
        )
        resp.raise_for_status()


class ManusClient:
    """Creates tasks on the external Manus agent API."""

    def __init__(self, services: ServicesConfig, http: httpx.AsyncClient) -> None:
        self._services = services
        self._http = http

    async def create_task(self, prompt: str, api_key: str) -> str:
        """Submit the prompt and return the created task id.

        Raises:
            httpx.HTTPError: When the task cannot be created.
        """
        structured_prompt = json.dumps({
            "user_request": prompt,
            "response_format_instructions": {
                "format": "json",
                "json_structure": {
                    "execution_summary": {
                        "plan": "Array of the steps of the action plan.",
                        "thought_process_log": "Chronological list of thoughts and decisions.",
                        "tool_calls_log": "Log of tools used with parameters and results.",
                    },
                    "final_answer": "The final answer formatted in Markdown.",
                },
            },
        })
        body: dict = {
            "prompt": structured_prompt,
            "agentProfile": self._services.manus_agent_profile,
        }
        if self._services.base_url:
            body["webhookUrl"] = self._services.base_url.rstrip("/") + "/functions/v1/manus-webhook"

        resp = await self._http.post(
            self._services.manus_base_url.rstrip("/") + "/tasks",
            headers={"API_KEY": api_key, "Content-Type": "application/json"},
            json=body,
        )
        resp.raise_for_status()
        return str(resp.json()["id"])
