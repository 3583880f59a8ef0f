"""Web fact-check pipeline: discovery + grounding, evidence extraction, adjudication, finalization."""

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from typing import Any

import httpx
from tavily import AsyncTavilyClient

from config.config_loader import FactCheckConfig, PromptsConfig
from fusion.adapter import ModelAdapter
from fusion.errors import FactCheckError
from fusion.models import Citation, CredentialSet, FactCheckResult
from fusion.providers.base import CallOptions

logger = logging.getLogger(__name__)

VERIFY_PROVIDERS = ["gemini_grounding", "serper", "tavily"]

_SOURCES_SPLIT_RE = re.compile(r"---SOURCES---|Sources\s*:", re.IGNORECASE)
_MARKER_RE = re.compile(r"[ \t]*\[(\d+)\]")


def finalize(arbiter_text: str, sources: Sequence[Citation]) -> tuple[str, list[Citation]]:
    """Strip any trailing sources section and keep citations and markers consistent.

    A source survives only if its [n] marker still occurs in the text; a
    marker whose index matches no surviving source is removed.
    """
    text = _SOURCES_SPLIT_RE.split(arbiter_text, maxsplit=1)[0].strip()
    citations = [s for s in sources if f"[{s.index}]" in text]
    kept = {c.index for c in citations}
    text = _MARKER_RE.sub(lambda m: m.group(0) if int(m.group(1)) in kept else "", text)
    return text, citations


def format_evidence(sources: Sequence[Citation], extracted: dict[str, str]) -> str:
    """Number each source; extracted page content replaces the search snippet."""
    blocks = [
        f"[{s.index}] {s.title}\nURL: {s.url}\nExcerpt: {extracted.get(s.url) or s.snippet}\n"
        for s in sources
    ]
    return "\n".join(blocks)


class SerperSearch:
    """Organic web search through the Serper API."""

    def __init__(self, config: FactCheckConfig, http: httpx.AsyncClient) -> None:
        self._config = config
        self._http = http

    async def search(self, query: str, api_key: str) -> list[Citation]:
        """Return up to `search_results` sources, indexed from 1.

        Raises:
            httpx.HTTPError: On transport or HTTP failure.
        """
        body: dict[str, Any] = {"q": query, "num": self._config.search_results}
        if self._config.country:
            body["gl"] = self._config.country
        if self._config.language:
            body["hl"] = self._config.language

        resp = await self._http.post(
            self._config.search_url,
            headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
            json=body,
        )
        resp.raise_for_status()
        organic = resp.json().get("organic") or []
        return [
            Citation(
                index=i + 1,
                title=item.get("title", ""),
                url=item.get("link", ""),
                snippet=item.get("snippet", ""),
                date=item.get("date"),
            )
            for i, item in enumerate(organic[: self._config.search_results])
        ]


class FactChecker:
    """Runs the four fact-check stages over a finished answer.

    Any stage failure returns the draft unchanged with verified=False.
    """

    def __init__(
        self,
        adapter: ModelAdapter,
        prompts: PromptsConfig,
        config: FactCheckConfig,
        search: SerperSearch,
        extractor_factory: Callable[[str], Any] = AsyncTavilyClient,
    ) -> None:
        self._adapter = adapter
        self._prompts = prompts
        self._config = config
        self._search = search
        self._extractor_factory = extractor_factory

    async def verify(
        self,
        question: str,
        draft: str,
        master_model: str,
        credentials: CredentialSet,
    ) -> FactCheckResult:
        unchanged = FactCheckResult(final_text=draft)
        if not credentials.google or not credentials.serper:
            logger.warning("Fact-check skipped: missing Google or Serper key")
            return unchanged

        try:
            return await self._run(question, draft, master_model, credentials)
        except Exception as exc:
            logger.warning("Fact-check pipeline failed, keeping original answer: %s", exc)
            return unchanged

    async def _run(
        self,
        question: str,
        draft: str,
        master_model: str,
        credentials: CredentialSet,
    ) -> FactCheckResult:
        logger.info("Fact-check stage A: discovery + grounding")
        sources, grounded = await asyncio.gather(
            self._discover(question, credentials.serper),
            self._ground(question, draft, credentials),
        )
        logger.info("Discovery found %d sources", len(sources))

        extracted: dict[str, str] = {}
        if credentials.tavily and sources:
            logger.info("Fact-check stage B: evidence extraction")
            extracted = await self._extract([s.url for s in sources[: self._config.extract_urls]], credentials.tavily)

        logger.info("Fact-check stage C: adjudication by %s", master_model)
        arbiter = await self._adapter.call(
            master_model,
            self._prompts.arbiter_user.format(
                question=question,
                draft=draft,
                grounded=grounded,
                evidence=format_evidence(sources, extracted),
            ),
            credentials,
            instructions=self._prompts.arbiter_system,
        )
        if not arbiter.ok:
            raise FactCheckError(arbiter.error or f"Arbiter {master_model} returned nothing")

        final_text, citations = finalize(arbiter.content, sources)
        logger.info("Fact-check complete: %d/%d sources cited", len(citations), len(sources))
        return FactCheckResult(final_text=final_text, citations=citations, verified=True)

    async def _discover(self, question: str, api_key: str) -> list[Citation]:
        try:
            return await self._search.search(question, api_key)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Search failed, continuing without sources: %s", exc)
            return []

    async def _ground(self, question: str, draft: str, credentials: CredentialSet) -> str:
        result = await self._adapter.call(
            self._config.grounding_model,
            self._prompts.grounding.format(question=question, draft=draft),
            credentials,
            options=CallOptions(search_grounding=True),
        )
        if not result.ok:
            logger.warning("Grounding failed, using the draft: %s", result.error)
            return draft
        return result.content

    async def _extract(self, urls: list[str], api_key: str) -> dict[str, str]:
        try:
            response = await self._extractor_factory(api_key).extract(urls=urls)
        except Exception as exc:
            logger.warning("Extraction failed, continuing with snippets: %s", exc)
            return {}
        pages = response.get("results") or []
        limit = self._config.extract_chars
        return {p["url"]: (p.get("raw_content") or "")[:limit] for p in pages if p.get("url")}
