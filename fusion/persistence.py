"""Run persistence: the store interface, two stores, and the sequential save of a run."""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

import httpx

from config.config_loader import ServicesConfig
from fusion.errors import PersistenceError, UnauthenticatedSaveError
from fusion.models import (
    Citation,
    FactCheckResult,
    FusionOutcome,
    FusionRequest,
    ModelResult,
    Run,
    Synthesis,
)

logger = logging.getLogger(__name__)


@dataclass
class SavedRun:
    run_id: str
    conversation_id: str


class RunStore(ABC):
    """Relational store for conversations, runs and their per-phase rows."""

    @abstractmethod
    async def get_project_instructions(self, project_id: str) -> str | None:
        ...

    @abstractmethod
    async def create_conversation(self, user_id: str, title: str, project_id: str | None) -> str:
        """Create a conversation and return its id."""
        ...

    @abstractmethod
    async def create_run(self, run: Run) -> str:
        """Insert the run record and return its id."""
        ...

    @abstractmethod
    async def update_run(self, run: Run) -> None:
        ...

    @abstractmethod
    async def insert_raw_responses(self, run_id: str, results: Sequence[ModelResult]) -> None:
        ...

    @abstractmethod
    async def insert_critiques(self, run_id: str, results: Sequence[ModelResult]) -> None:
        ...

    @abstractmethod
    async def insert_refinements(self, run_id: str, results: Sequence[ModelResult]) -> None:
        ...

    @abstractmethod
    async def insert_synthesis(self, run_id: str, synthesis: Synthesis, final_content: str) -> None:
        ...

    @abstractmethod
    async def insert_message(
        self,
        conversation_id: str,
        user_id: str,
        role: str,
        content: str,
        *,
        run_id: str | None = None,
        web_verified: bool = False,
        citations: Sequence[Citation] = (),
    ) -> None:
        ...


class InMemoryRunStore(RunStore):
    """Dict-backed store for the CLI and tests."""

    def __init__(self) -> None:
        self.projects: dict[str, str] = {}
        self.conversations: dict[str, dict] = {}
        self.runs: dict[str, Run] = {}
        self.raw_responses: list[dict] = []
        self.critiques: list[dict] = []
        self.refinements: list[dict] = []
        self.syntheses: list[dict] = []
        self.messages: list[dict] = []

    async def get_project_instructions(self, project_id: str) -> str | None:
        return self.projects.get(project_id)

    async def create_conversation(self, user_id: str, title: str, project_id: str | None) -> str:
        conversation_id = str(uuid.uuid4())
        self.conversations[conversation_id] = {
            "user_id": user_id,
            "title": title,
            "project_id": project_id,
        }
        return conversation_id

    async def create_run(self, run: Run) -> str:
        self.runs[run.id] = run
        return run.id

    async def update_run(self, run: Run) -> None:
        if run.id not in self.runs:
            raise KeyError(f"Unknown run: {run.id}")
        self.runs[run.id] = run

    async def insert_raw_responses(self, run_id: str, results: Sequence[ModelResult]) -> None:
        self.raw_responses.extend(
            {"run_id": run_id, "model_slug": r.model, "content": r.content} for r in results
        )

    async def insert_critiques(self, run_id: str, results: Sequence[ModelResult]) -> None:
        self.critiques.extend(
            {
                "run_id": run_id,
                "critic_model_slug": r.model,
                "target_model_slug": ",".join(r.analyzed_by),
                "critique_content": r.content,
            }
            for r in results
        )

    async def insert_refinements(self, run_id: str, results: Sequence[ModelResult]) -> None:
        self.refinements.extend(
            {
                "fusion_run_id": run_id,
                "model_slug": r.model,
                "content": r.content,
                "tokens": r.tokens,
                "status": r.status,
            }
            for r in results
        )

    async def insert_synthesis(self, run_id: str, synthesis: Synthesis, final_content: str) -> None:
        self.syntheses.append(synthesis_row(run_id, synthesis, final_content))

    async def insert_message(
        self,
        conversation_id: str,
        user_id: str,
        role: str,
        content: str,
        *,
        run_id: str | None = None,
        web_verified: bool = False,
        citations: Sequence[Citation] = (),
    ) -> None:
        self.messages.append(message_row(conversation_id, user_id, role, content, run_id, web_verified, citations))


def synthesis_row(run_id: str, synthesis: Synthesis, final_content: str) -> dict:
    row: dict = {
        "run_id": run_id,
        "master_model_slug": synthesis.master_model,
        "final_content": final_content,
    }
    report = synthesis.fact_check_report
    if report is not None:
        row["fact_check_report"] = report.to_dict()
        row["consensus_score"] = report.consensus_percentage / 100
        row["contradictions_count"] = report.contradictions_found
        row["verified_claims_count"] = report.verified_claims
    return row


def message_row(
    conversation_id: str,
    user_id: str,
    role: str,
    content: str,
    run_id: str | None,
    web_verified: bool,
    citations: Sequence[Citation],
) -> dict:
    row: dict = {
        "conversation_id": conversation_id,
        "user_id": user_id,
        "role": role,
        "content": content,
        "is_fusion_result": role == "assistant",
    }
    if role == "assistant":
        row["fusion_run_id"] = run_id
        row["web_verified"] = web_verified
        row["citations"] = [c.to_dict() for c in citations]
    return row


class PostgrestRunStore(RunStore):
    """Store backed by a PostgREST endpoint, acting as the caller."""

    def __init__(self, services: ServicesConfig, http: httpx.AsyncClient, caller_token: str | None) -> None:
        self._base = services.base_url.rstrip("/") + services.rest_path
        self._http = http
        self._headers = {"Content-Type": "application/json"}
        if services.anon_key:
            self._headers["apikey"] = services.anon_key
        if caller_token:
            self._headers["Authorization"] = f"Bearer {caller_token}"

    async def _insert(self, table: str, rows: dict | list[dict], *, returning: bool = False) -> list[dict]:
        headers = dict(self._headers)
        headers["Prefer"] = "return=representation" if returning else "return=minimal"
        resp = await self._http.post(f"{self._base}/{table}", headers=headers, json=rows)
        resp.raise_for_status()
        return resp.json() if returning else []

    async def get_project_instructions(self, project_id: str) -> str | None:
        resp = await self._http.get(
            f"{self._base}/projects",
            headers=self._headers,
            params={"id": f"eq.{project_id}", "select": "instructions"},
        )
        resp.raise_for_status()
        rows = resp.json()
        return rows[0].get("instructions") if rows else None

    async def create_conversation(self, user_id: str, title: str, project_id: str | None) -> str:
        rows = await self._insert(
            "conversations",
            {"user_id": user_id, "title": title, "project_id": project_id},
            returning=True,
        )
        return str(rows[0]["id"])

    async def create_run(self, run: Run) -> str:
        rows = await self._insert(
            "fusion_runs",
            {
                "id": run.id,
                "user_id": run.user_id,
                "conversation_id": run.conversation_id,
                "prompt_original": run.prompt,
                "master_model_slug": run.master_model,
                "status": run.status,
            },
            returning=True,
        )
        return str(rows[0]["id"])

    async def update_run(self, run: Run) -> None:
        resp = await self._http.patch(
            f"{self._base}/fusion_runs",
            headers=self._headers,
            params={"id": f"eq.{run.id}"},
            json={
                "status": run.status,
                "total_tokens": run.total_tokens,
                "total_api_calls": run.total_api_calls,
                "has_refinement": run.has_refinement,
                "has_fact_check": run.has_fact_check,
            },
        )
        resp.raise_for_status()

    async def insert_raw_responses(self, run_id: str, results: Sequence[ModelResult]) -> None:
        await self._insert(
            "fusion_raw_responses",
            [{"run_id": run_id, "model_slug": r.model, "content": r.content} for r in results],
        )

    async def insert_critiques(self, run_id: str, results: Sequence[ModelResult]) -> None:
        await self._insert(
            "fusion_critiques",
            [
                {
                    "run_id": run_id,
                    "critic_model_slug": r.model,
                    "target_model_slug": ",".join(r.analyzed_by),
                    "critique_content": r.content,
                }
                for r in results
            ],
        )

    async def insert_refinements(self, run_id: str, results: Sequence[ModelResult]) -> None:
        await self._insert(
            "fusion_refinements",
            [
                {
                    "fusion_run_id": run_id,
                    "model_slug": r.model,
                    "content": r.content,
                    "tokens": r.tokens,
                    "status": r.status,
                }
                for r in results
            ],
        )

    async def insert_synthesis(self, run_id: str, synthesis: Synthesis, final_content: str) -> None:
        await self._insert("fusion_syntheses", synthesis_row(run_id, synthesis, final_content))

    async def insert_message(
        self,
        conversation_id: str,
        user_id: str,
        role: str,
        content: str,
        *,
        run_id: str | None = None,
        web_verified: bool = False,
        citations: Sequence[Citation] = (),
    ) -> None:
        await self._insert(
            "messages",
            message_row(conversation_id, user_id, role, content, run_id, web_verified, citations),
        )


async def persist_run(
    store: RunStore,
    user_id: str | None,
    request: FusionRequest,
    outcome: FusionOutcome,
    fact_check: FactCheckResult | None = None,
) -> SavedRun:
    """Write one finished run, one row group at a time.

    Raises:
        UnauthenticatedSaveError: No user to attribute the run to.
        PersistenceError: Any store failure; rows already written stay written.
    """
    if not user_id:
        logger.error("Cannot save run: caller is not authenticated")
        raise UnauthenticatedSaveError()

    web_verified = bool(fact_check and fact_check.verified)
    citations = fact_check.citations if fact_check else []
    phases = outcome.phases

    try:
        conversation_id = request.conversation_id or await store.create_conversation(
            user_id, request.prompt[:30], request.project_id
        )
        run = Run(
            id=str(uuid.uuid4()),
            user_id=user_id,
            conversation_id=conversation_id,
            prompt=request.prompt,
            master_model=outcome.master_model,
        )
        run.id = await store.create_run(run)

        await store.insert_raw_responses(run.id, outcome.raw_responses)
        if phases.cross_analysis:
            await store.insert_critiques(run.id, phases.cross_analysis)
        if phases.refinement:
            await store.insert_refinements(run.id, phases.refinement)
        if phases.synthesis is not None:
            await store.insert_synthesis(run.id, phases.synthesis, outcome.content)

        run.status = "complete"
        run.total_tokens = outcome.total_tokens
        run.total_api_calls = outcome.api_calls
        run.has_refinement = bool(phases.refinement)
        run.has_fact_check = web_verified
        await store.update_run(run)

        if outcome.mode != "manus":
            await store.insert_message(conversation_id, user_id, "user", request.prompt)
            await store.insert_message(
                conversation_id,
                user_id,
                "assistant",
                outcome.content,
                run_id=run.id,
                web_verified=web_verified,
                citations=citations,
            )
    except PersistenceError:
        raise
    except Exception as exc:
        logger.error("Saving run failed: %s", exc)
        raise PersistenceError(f"Failed to save fusion run: {exc}") from exc

    logger.info("Saved run %s in conversation %s", run.id, conversation_id)
    return SavedRun(run_id=run.id, conversation_id=conversation_id)
