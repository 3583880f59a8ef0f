"""Model health checks: ping each selected model before starting a run."""

import asyncio
import logging

from fusion.adapter import ModelAdapter
from fusion.models import CredentialSet

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(adapter: ModelAdapter, model_id: str, credentials: CredentialSet) -> tuple[str, bool, str]:
    """Ping a single model. Returns (model_id, ok, error_message)."""
    try:
        result = await asyncio.wait_for(
            adapter.call(model_id, _PING_PROMPT, credentials),
            timeout=_TIMEOUT_SEC,
        )
    except asyncio.TimeoutError:
        return model_id, False, f"No reply within {_TIMEOUT_SEC:.0f}s"
    if not result.ok:
        return model_id, False, result.error or "empty response"
    return model_id, True, ""


async def run_health_checks(
    adapter: ModelAdapter,
    model_ids: list[str],
    credentials: CredentialSet,
) -> dict[str, tuple[bool, str]]:
    """Ping all models in parallel.

    Returns:
        Dict mapping model id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(adapter, m, credentials) for m in model_ids))
    return {model_id: (ok, err) for model_id, ok, err in results}
