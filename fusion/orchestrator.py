"""Fusion orchestration: parallel model calls per phase, cross-analysis, refinement, synthesis."""

import asyncio
import logging
import random
from collections.abc import Sequence
from dataclasses import replace
from urllib.parse import quote

import httpx

from config.config_loader import DefaultsConfig, PromptsConfig
from fusion.adapter import ModelAdapter
from fusion.collaborators import ManusClient
from fusion.errors import FusionError, MissingCredentialError
from fusion.models import (
    CROSS_ANALYSIS,
    INITIAL,
    REFINEMENT,
    SUCCESS,
    CredentialSet,
    Exchange,
    FusionOutcome,
    FusionRequest,
    HistoryMessage,
    ModelResult,
    Phases,
    Synthesis,
)
from fusion.providers.base import ProviderError
from fusion.providers.registry import UnknownModelError
from fusion.synthesis import build_cross_analysis_prompt, build_refinement_prompt, synthesize

logger = logging.getLogger(__name__)

MANUS_MODEL = "manus-agent"
_POLLINATIONS_URL = "https://image.pollinations.ai/prompt/{prompt}?seed={seed}"


def _dedupe(model_ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for model_id in model_ids:
        if model_id not in seen:
            seen.add(model_id)
            unique.append(model_id)
    return unique


def _token_sum(results: Sequence[ModelResult]) -> int:
    return sum(r.tokens for r in results)


def failure_message(result: ModelResult) -> str:
    return f"Error from {result.model}: {result.error or 'empty response'}"


class FusionOrchestrator:
    """Runs one fusion request in the mode it asks for."""

    def __init__(
        self,
        adapter: ModelAdapter,
        prompts: PromptsConfig,
        defaults: DefaultsConfig,
        manus: ManusClient | None = None,
    ) -> None:
        self._adapter = adapter
        self._prompts = prompts
        self._defaults = defaults
        self._manus = manus

    def master_for(self, request: FusionRequest) -> str:
        if request.fusion_mode == "manus":
            return MANUS_MODEL
        return request.master_model_slug or self._defaults.master_model

    async def run(
        self,
        request: FusionRequest,
        credentials: CredentialSet,
        *,
        instructions: str | None = None,
        memory_block: str = "",
    ) -> FusionOutcome:
        """Run the requested mode.

        Raises:
            MissingCredentialError: manus mode without a Manus key.
            FusionError: manus task creation failed.
        """
        master = self.master_for(request)
        logger.info("Fusion run: mode=%s master=%s", request.fusion_mode, master)

        if request.fusion_mode == "manus":
            return await self._run_manus(request, credentials)
        if request.fusion_mode == "image":
            return await self._run_image(request, master, credentials)
        return await self._run_text(request, master, credentials, instructions, memory_block)

    async def _fan_out(
        self,
        calls: Sequence[tuple[str, str]],
        phase: str,
        credentials: CredentialSet,
        *,
        instructions: str | None,
        history: Sequence[HistoryMessage] = (),
        force_json: bool = False,
        memory_block: str = "",
    ) -> list[ModelResult]:
        """Issue (model, prompt) calls concurrently and wait for all of them."""
        logger.info("Starting %s with %d models", phase, len(calls))
        results = await asyncio.gather(*(
            self._adapter.call(
                model_id,
                prompt,
                credentials,
                phase=phase,
                instructions=instructions,
                history=history,
                force_json=force_json,
                memory_block=memory_block,
            )
            for model_id, prompt in calls
        ))
        succeeded = sum(1 for r in results if r.ok)
        logger.info("%s complete: %d/%d models succeeded", phase, succeeded, len(results))
        return list(results)

    async def _run_text(
        self,
        request: FusionRequest,
        master: str,
        credentials: CredentialSet,
        instructions: str | None,
        memory_block: str,
    ) -> FusionOutcome:
        model_ids = _dedupe(request.model_slugs or self._defaults.default_panel)
        if request.fusion_mode == "solo":
            model_ids = model_ids[:1]
        phases = Phases()
        outcome = FusionOutcome(mode=request.fusion_mode, master_model=master, content="", phases=phases)

        # Phase 1: initial responses
        initial = await self._fan_out(
            [(m, request.prompt) for m in model_ids],
            INITIAL,
            credentials,
            instructions=instructions,
            history=request.history,
            force_json=request.force_json,
            memory_block=memory_block,
        )
        phases.initial = initial
        outcome.raw_responses = initial
        outcome.total_tokens += _token_sum(initial)
        outcome.api_calls += len(initial)
        successes = [r for r in initial if r.ok]

        if len(model_ids) == 1:
            only = initial[0]
            if only.ok:
                outcome.content = only.content
                phases.synthesis = Synthesis(master_model=only.model, content=only.content, tokens=only.tokens)
            else:
                outcome.content = failure_message(only)
                phases.synthesis = Synthesis(master_model=master, content=outcome.content, tokens=0)
            logger.info("Solo run: returning %s directly", only.model)
            return outcome

        feeding = successes
        if request.fusion_mode == "supernova" and len(successes) >= 2:
            # Phase 2: cross-analysis
            cross, exchanges = await self._cross_analysis(request.prompt, successes, credentials, instructions)
            phases.cross_analysis = cross
            outcome.exchanges = exchanges
            outcome.total_tokens += _token_sum(cross)
            outcome.api_calls += len(cross)

            # Phase 3: refinement
            refinement = await self._refine(request.prompt, initial, cross, credentials, instructions)
            phases.refinement = refinement
            outcome.total_tokens += _token_sum(refinement)
            outcome.api_calls += len(refinement)

            for phase_results in (refinement, cross):
                phase_successes = [r for r in phase_results if r.ok]
                if phase_successes:
                    feeding = phase_successes
                    break

        # Phase 4: master synthesis
        if not feeding:
            logger.warning("No successful answers, skipping synthesis")
            outcome.content = self._degraded_content(phases)
            return outcome

        synthesis, master_result = await synthesize(
            self._adapter,
            self._prompts,
            request.prompt,
            feeding,
            master,
            credentials,
            instructions=instructions,
            history=request.history,
            force_json=request.force_json,
            memory_block=memory_block,
        )
        phases.synthesis = synthesis
        outcome.total_tokens += master_result.tokens
        outcome.api_calls += 1
        outcome.content = synthesis.content
        return outcome

    async def _cross_analysis(
        self,
        question: str,
        successes: Sequence[ModelResult],
        credentials: CredentialSet,
        instructions: str | None,
    ) -> tuple[list[ModelResult], list[Exchange]]:
        calls: list[tuple[str, str]] = []
        exchanges: list[Exchange] = []
        peers_of: dict[str, tuple[str, ...]] = {}
        for own in successes:
            peers = [p for p in successes if p.model != own.model]
            peers_of[own.model] = tuple(p.model for p in peers)
            exchanges.extend(Exchange(from_model=p.model, to_model=own.model) for p in peers)
            calls.append((own.model, build_cross_analysis_prompt(self._prompts, question, own, peers)))

        results = await self._fan_out(calls, CROSS_ANALYSIS, credentials, instructions=instructions)
        return [replace(r, analyzed_by=peers_of[r.model]) for r in results], exchanges

    async def _refine(
        self,
        question: str,
        initial: Sequence[ModelResult],
        cross: Sequence[ModelResult],
        credentials: CredentialSet,
        instructions: str | None,
    ) -> list[ModelResult]:
        """Refine every selected model; one whose first answer failed starts from an empty answer."""
        calls: list[tuple[str, str]] = []
        for own in initial:
            critiques = [c for c in cross if c.model != own.model and c.ok]
            calls.append((own.model, build_refinement_prompt(self._prompts, question, own, critiques)))
        return await self._fan_out(calls, REFINEMENT, credentials, instructions=instructions)

    @staticmethod
    def _degraded_content(phases: Phases) -> str:
        """Whatever text exists, else the failure messages."""
        texts = [r.content for r in phases.all_results() if r.content]
        if texts:
            return "\n\n".join(texts)
        return "\n".join(failure_message(r) for r in phases.initial)

    async def _run_manus(self, request: FusionRequest, credentials: CredentialSet) -> FusionOutcome:
        if not credentials.manus:
            raise MissingCredentialError("manus")
        if self._manus is None:
            raise FusionError("Manus client is not configured")
        try:
            task_id = await self._manus.create_task(request.prompt, credentials.manus)
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise FusionError(f"Manus task creation failed: {exc}") from exc

        content = f"MANUS_TASK::{task_id}"
        result = ModelResult(model=MANUS_MODEL, phase=INITIAL, content=content, status=SUCCESS)
        phases = Phases(initial=[result], synthesis=Synthesis(master_model=MANUS_MODEL, content=content))
        return FusionOutcome(
            mode="manus",
            master_model=MANUS_MODEL,
            content=content,
            raw_responses=[result],
            phases=phases,
            api_calls=1,
        )

    async def _generate_image(self, prompt: str, master: str, credentials: CredentialSet) -> str:
        try:
            resolved = self._adapter.registry.resolve(master)
        except UnknownModelError:
            seed = random.randint(0, 999_999)
            return _POLLINATIONS_URL.format(prompt=quote(prompt, safe=""), seed=seed)

        api_key = credentials.get(resolved.provider_name)
        if not api_key:
            raise ProviderError(resolved.provider_name, f"Missing API key for model: {master}")
        return await resolved.provider.generate_image(prompt, api_key=api_key)

    async def _run_image(self, request: FusionRequest, master: str, credentials: CredentialSet) -> FusionOutcome:
        count = min(max(1, request.image_count), self._defaults.max_images)
        images: list[str] = []
        errors: list[str] = []

        for i in range(count):
            try:
                images.append(await self._generate_image(request.prompt, master, credentials))
            except ProviderError as exc:
                logger.warning("Image %d/%d failed: %s", i + 1, count, exc)
                errors.append(str(exc))

        if images:
            content = f"Here are your images generated with **{master}**:\n\n"
            content += "\n\n".join(f"![Image]({url})" for url in images)
            if errors:
                content += f"\n\n*(Note: {len(errors)} images failed: {', '.join(errors)})*"
        else:
            content = f"Image generation failed: {', '.join(errors)}"

        result = ModelResult(model=master, phase=INITIAL, content=content, status=SUCCESS)
        return FusionOutcome(
            mode="image",
            master_model=master,
            content=content,
            raw_responses=[result],
            phases=Phases(initial=[result]),
            image_urls=images,
            api_calls=count,
        )
