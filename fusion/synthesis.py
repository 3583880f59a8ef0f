"""Master synthesis: label answers, call the master model, parse its reliability line."""

import logging
import re
from collections.abc import Sequence

from config.config_loader import PromptsConfig
from fusion.adapter import ModelAdapter
from fusion.models import (
    SYNTHESIS,
    CredentialSet,
    FactCheckReport,
    HistoryMessage,
    ModelResult,
    Synthesis,
)
from fusion.providers.base import CallOptions

logger = logging.getLogger(__name__)

_MASTER_TEMPERATURE = 0.3

# "10 points verified, 90% consensus, 1 contradictions resolved"
_REPORT_RE = re.compile(
    r"(\d+)\s*points?\s+verified[^\d\n]*(\d+)\s*%[^\d\n]*(\d+)\s*contradictions?",
    re.IGNORECASE,
)


def parse_fact_check_report(text: str) -> FactCheckReport | None:
    """Best effort: None when the master did not follow the reliability pattern."""
    match = _REPORT_RE.search(text or "")
    if not match:
        return None
    return FactCheckReport(
        verified_claims=int(match.group(1)),
        consensus_percentage=int(match.group(2)),
        contradictions_found=int(match.group(3)),
    )


def format_labeled_responses(results: Sequence[ModelResult]) -> str:
    """Format answers for the master, each under its source model."""
    return "\n\n".join(f"=== {r.model.upper()} ===\n{r.content}" for r in results)


def build_cross_analysis_prompt(
    prompts: PromptsConfig,
    question: str,
    own: ModelResult,
    peers: Sequence[ModelResult],
) -> str:
    peer_answers = "\n\n".join(f"[{p.model}]: {p.content}" for p in peers)
    return prompts.cross_analysis.format(
        question=question,
        own_answer=own.content,
        peer_answers=peer_answers,
    )


def build_refinement_prompt(
    prompts: PromptsConfig,
    question: str,
    own: ModelResult,
    critiques: Sequence[ModelResult],
) -> str:
    critique_block = "\n\n".join(f"Analysis from {c.model}: {c.content}" for c in critiques)
    return prompts.refinement.format(
        question=question,
        own_answer=own.content,
        critiques=critique_block,
    )


def best_single_response(results: Sequence[ModelResult]) -> ModelResult:
    """The most developed successful answer; first wins on ties."""
    return max(results, key=lambda r: len(r.content))


async def synthesize(
    adapter: ModelAdapter,
    prompts: PromptsConfig,
    question: str,
    results: Sequence[ModelResult],
    master_model: str,
    credentials: CredentialSet,
    *,
    instructions: str | None = None,
    history: Sequence[HistoryMessage] = (),
    force_json: bool = False,
    memory_block: str = "",
) -> tuple[Synthesis, ModelResult]:
    """Run the master synthesis over successful answers.

    Args:
        results: Successful answers of the last phase that produced any.

    Returns:
        (Synthesis, raw master ModelResult). When the master call fails the
        synthesis carries the best single answer instead and 0 tokens.
    """
    synthesis_prompt = prompts.synthesis.format(
        question=question,
        count=len(results),
        responses=format_labeled_responses(results),
    )
    options = CallOptions(
        temperature=_MASTER_TEMPERATURE,
        search_grounding=adapter.provider_name(master_model) == "google",
    )

    logger.info("Running synthesis via %s over %d answers", master_model, len(results))

    master_result = await adapter.call(
        master_model,
        synthesis_prompt,
        credentials,
        phase=SYNTHESIS,
        instructions=instructions,
        history=history,
        force_json=force_json,
        options=options,
        memory_block=memory_block,
    )

    if not master_result.ok:
        fallback = best_single_response(results)
        logger.warning(
            "Master %s failed (%s); falling back to the answer of %s",
            master_model,
            master_result.error,
            fallback.model,
        )
        return Synthesis(master_model=master_model, content=fallback.content, tokens=0), master_result

    return (
        Synthesis(
            master_model=master_model,
            content=master_result.content,
            tokens=master_result.tokens,
            fact_check_report=parse_fact_check_report(master_result.content),
        ),
        master_result,
    )
