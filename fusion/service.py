"""Request handler: wires caller identity, credentials, orchestration, fact-check and persistence."""

import asyncio
import logging
from collections.abc import Callable

import httpx

from config.config_loader import AppConfig
from fusion.adapter import ModelAdapter
from fusion.background import BackgroundQueue
from fusion.collaborators import AuthClient, KeyVaultClient, ManusClient, MemoryClient
from fusion.credentials import CredentialResolver, default_credentials
from fusion.factcheck import VERIFY_PROVIDERS, FactChecker, SerperSearch
from fusion.models import CredentialSet, FactCheckResult, FusionOutcome, FusionRequest, HistoryMessage
from fusion.orchestrator import FusionOrchestrator
from fusion.persistence import InMemoryRunStore, PostgrestRunStore, RunStore, SavedRun, persist_run
from fusion.providers.registry import ModelRegistry

logger = logging.getLogger(__name__)

StoreFactory = Callable[[str | None], RunStore]


def parse_bearer(header: str | None) -> str | None:
    """Token from an "Authorization: Bearer <token>" header value."""
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class FusionService:
    def __init__(
        self,
        orchestrator: FusionOrchestrator,
        fact_checker: FactChecker,
        resolver: CredentialResolver,
        store_factory: StoreFactory,
        *,
        auth: AuthClient | None = None,
        memory: MemoryClient | None = None,
        background: BackgroundQueue | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.fact_checker = fact_checker
        self.resolver = resolver
        self._store_factory = store_factory
        self._auth = auth
        self._memory = memory
        self.background = background

    async def _user_id(self, caller_token: str | None) -> str | None:
        if self._auth is None or not caller_token:
            return None
        return await self._auth.get_user_id(caller_token)

    async def _memory_block(self, caller_token: str | None) -> str:
        if self._memory is None or not caller_token:
            return ""
        return await self._memory.fetch_block(caller_token)

    async def _instructions(self, store: RunStore, project_id: str | None) -> str | None:
        if not project_id:
            return None
        try:
            return await store.get_project_instructions(project_id)
        except Exception as exc:
            logger.warning("Could not load instructions for project %s: %s", project_id, exc)
            return None

    async def handle(self, request: FusionRequest, caller_token: str | None = None) -> dict:
        """Run one fusion request end to end and return the response mapping.

        Raises:
            UnauthenticatedSaveError: Saving was requested without a resolvable user.
            PersistenceError: The run could not be saved.
            FusionError: The mode itself failed (manus task creation).
        """
        user_id, memory_block, credentials = await asyncio.gather(
            self._user_id(caller_token),
            self._memory_block(caller_token),
            self.resolver.resolve(caller_token),
        )
        logger.info(
            "Request: mode=%s models=%s authenticated=%s",
            request.fusion_mode,
            ",".join(request.model_slugs) or "-",
            user_id is not None,
        )

        store = self._store_factory(caller_token)
        instructions = await self._instructions(store, request.project_id)

        outcome = await self.orchestrator.run(
            request,
            credentials,
            instructions=instructions,
            memory_block=memory_block,
        )

        fact_check = await self._fact_check(request, outcome, credentials)
        if fact_check is not None:
            outcome.content = fact_check.final_text

        saved: SavedRun | None = None
        if not request.skip_save:
            saved = await persist_run(store, user_id, request, outcome, fact_check)

        conversation_id = saved.conversation_id if saved else request.conversation_id
        if caller_token and conversation_id and saved and outcome.mode != "manus":
            self._queue_memory_extraction(caller_token, conversation_id, request, outcome.content)

        return build_response(request, outcome, saved, fact_check, user_id is not None)

    async def _fact_check(
        self,
        request: FusionRequest,
        outcome: FusionOutcome,
        credentials: CredentialSet,
    ) -> FactCheckResult | None:
        if not request.web_verify or not outcome.content or outcome.mode in ("image", "manus"):
            return None
        return await self.fact_checker.verify(request.prompt, outcome.content, outcome.master_model, credentials)

    def _queue_memory_extraction(
        self,
        caller_token: str,
        conversation_id: str,
        request: FusionRequest,
        answer: str,
    ) -> None:
        if self._memory is None or self.background is None:
            return
        messages = [
            *request.history,
            HistoryMessage(role="user", content=request.prompt),
            HistoryMessage(role="assistant", content=answer),
        ]
        memory = self._memory
        self.background.submit(
            f"memory-extract:{conversation_id}",
            lambda: memory.extract(caller_token, conversation_id, messages),
        )


def build_response(
    request: FusionRequest,
    outcome: FusionOutcome,
    saved: SavedRun | None,
    fact_check: FactCheckResult | None,
    user_authenticated: bool,
) -> dict:
    web_verified = bool(fact_check and fact_check.verified)
    citations = fact_check.citations if fact_check else []
    return {
        "run_id": saved.run_id if saved else None,
        "fusion_mode": outcome.mode,
        "fusion": outcome.content,
        "raw_responses": [r.to_dict() for r in outcome.raw_responses],
        "phases": outcome.phases.to_dict(),
        "exchanges": [e.to_dict() for e in outcome.exchanges],
        "token_usage": {"total": outcome.total_tokens},
        "api_calls": outcome.api_calls,
        "conversation_id": saved.conversation_id if saved else request.conversation_id,
        "web_verified": web_verified,
        "citations": [c.to_dict() for c in citations],
        "citations_count": len(citations),
        "verify_providers": list(VERIFY_PROVIDERS) if web_verified else [],
        "debug_info": {
            "user_authenticated": user_authenticated,
            "master_model": outcome.master_model,
        },
    }


def create_service(
    config: AppConfig,
    http: httpx.AsyncClient,
    *,
    credentials: CredentialSet | None = None,
    store: RunStore | None = None,
    background: BackgroundQueue | None = None,
) -> FusionService:
    """Build the full service graph once per process.

    Without a configured services base URL the caller-facing collaborators
    (auth, vault, memory) are disabled and runs go to an in-memory store.
    """
    services = config.services
    registry = ModelRegistry.from_config(config)
    adapter = ModelAdapter(registry, config.prompts)
    orchestrator = FusionOrchestrator(adapter, config.prompts, config.defaults, ManusClient(services, http))
    fact_checker = FactChecker(adapter, config.prompts, config.factcheck, SerperSearch(config.factcheck, http))

    remote = bool(services.base_url)
    resolver = CredentialResolver(
        credentials or default_credentials(config),
        KeyVaultClient(services, http) if remote else None,
    )

    store_factory: StoreFactory
    if store is not None:
        store_factory = lambda _token: store
    elif remote:
        store_factory = lambda token: PostgrestRunStore(services, http, token)
    else:
        local = InMemoryRunStore()
        store_factory = lambda _token: local

    return FusionService(
        orchestrator,
        fact_checker,
        resolver,
        store_factory,
        auth=AuthClient(services, http) if remote else None,
        memory=MemoryClient(services, http) if remote else None,
        background=background,
    )
