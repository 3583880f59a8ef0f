"""Tests for fusion/collaborators.py: HTTP clients against httpx.MockTransport."""

import json

import httpx
import pytest

from config.config_loader import ServicesConfig
from fusion.collaborators import AuthClient, KeyVaultClient, ManusClient, MemoryClient
from fusion.models import HistoryMessage

SERVICES = ServicesConfig(base_url="https://svc.test", anon_key="anon")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_auth_returns_user_id():
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://svc.test/auth/v1/user"
        assert request.headers["Authorization"] == "Bearer tok"
        return httpx.Response(200, json={"id": "user-1"})

    async with _client(handler) as http:
        assert await AuthClient(SERVICES, http).get_user_id("tok") == "user-1"


async def test_auth_rejected_token_is_anonymous():
    async with _client(lambda request: httpx.Response(401, json={"msg": "bad jwt"})) as http:
        assert await AuthClient(SERVICES, http).get_user_id("tok") is None


async def test_auth_without_token_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with _client(handler) as http:
        assert await AuthClient(SERVICES, http).get_user_id(None) is None


async def test_vault_decrypt():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/functions/v1/api-keys"
        assert request.url.params["action"] == "decrypt"
        assert json.loads(request.content) == {"provider": "xai"}
        return httpx.Response(200, json={"api_key": "xai-secret"})

    async with _client(handler) as http:
        assert await KeyVaultClient(SERVICES, http).decrypt("tok", "xai") == "xai-secret"


async def test_vault_missing_key_is_none():
    async with _client(lambda request: httpx.Response(404, json={"error": "not found"})) as http:
        assert await KeyVaultClient(SERVICES, http).decrypt("tok", "openai") is None


async def test_memory_block_fetch():
    async with _client(lambda request: httpx.Response(200, json={"system_prompt_block": "User likes brevity."})) as http:
        assert await MemoryClient(SERVICES, http).fetch_block("tok") == "User likes brevity."


async def test_memory_block_failure_is_empty():
    async with _client(lambda request: httpx.Response(500)) as http:
        assert await MemoryClient(SERVICES, http).fetch_block("tok") == ""


async def test_memory_extract_posts_messages():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    messages = [HistoryMessage(role="user", content="hi"), HistoryMessage(role="assistant", content="hello")]
    async with _client(handler) as http:
        await MemoryClient(SERVICES, http).extract("tok", "conv-1", messages)

    assert seen["path"] == "/functions/v1/memory-extract"
    assert seen["body"] == {
        "conversation_id": "conv-1",
        "messages": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
    }


async def test_memory_extract_failure_raises():
    async with _client(lambda request: httpx.Response(502)) as http:
        with pytest.raises(httpx.HTTPStatusError):
            await MemoryClient(SERVICES, http).extract("tok", "conv-1", [])


async def test_manus_create_task():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["API_KEY"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "task-7"})

    async with _client(handler) as http:
        task_id = await ManusClient(SERVICES, http).create_task("Plan a trip", "mk")

    assert task_id == "task-7"
    assert seen["url"] == "https://api.manus.ai/v1/tasks"
    assert seen["key"] == "mk"
    assert seen["body"]["agentProfile"] == "manus-1.6"
    assert json.loads(seen["body"]["prompt"])["user_request"] == "Plan a trip"
    assert seen["body"]["webhookUrl"] == "https://svc.test/functions/v1/manus-webhook"
