"""Dataclasses for the fusion pipeline, plus their JSON-ready dict views. No I/O."""

from dataclasses import dataclass, field, fields, replace

# Phase tags
INITIAL = "initial"
CROSS_ANALYSIS = "cross_analysis"
REFINEMENT = "refinement"
SYNTHESIS = "synthesis"

# Result status
SUCCESS = "success"
FAILED = "failed"

FUSION_MODES = ("solo", "fusion", "supernova", "image", "manus")


@dataclass(frozen=True)
class HistoryMessage:
    role: str              # "user" or "assistant"
    content: str


@dataclass(frozen=True)
class CredentialSet:
    """Provider secrets for one request. Never persisted."""

    openai: str | None = None
    anthropic: str | None = None
    google: str | None = None
    grok: str | None = None
    manus: str | None = None
    serper: str | None = None
    tavily: str | None = None

    def get(self, provider: str) -> str | None:
        return getattr(self, provider, None)

    def merged(self, overrides: dict[str, str | None]) -> "CredentialSet":
        """Return a copy where every non-empty override replaces the default."""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if v and k in known}
        return replace(self, **changes)

    def available(self) -> set[str]:
        return {f.name for f in fields(self) if getattr(self, f.name)}


@dataclass(frozen=True)
class ModelResult:
    model: str
    phase: str
    content: str
    status: str
    tokens: int = 0
    error: str | None = None
    analyzed_by: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    def to_dict(self) -> dict:
        data: dict = {
            "slug": self.model,
            "content": self.content,
            "status": self.status,
            "tokens": self.tokens,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.phase == CROSS_ANALYSIS:
            data["analyzedBy"] = list(self.analyzed_by)
        return data


@dataclass(frozen=True)
class Exchange:
    from_model: str
    to_model: str
    kind: str = "analysis"

    def to_dict(self) -> dict:
        return {"from": self.from_model, "to": self.to_model, "type": self.kind}


@dataclass(frozen=True)
class FactCheckReport:
    verified_claims: int
    consensus_percentage: int
    contradictions_found: int

    def to_dict(self) -> dict:
        return {
            "verified_claims": self.verified_claims,
            "consensus_percentage": self.consensus_percentage,
            "contradictions_found": self.contradictions_found,
        }


@dataclass
class Synthesis:
    master_model: str
    content: str
    tokens: int = 0
    fact_check_report: FactCheckReport | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "masterSlug": self.master_model,
            "content": self.content,
            "tokens": self.tokens,
        }
        if self.fact_check_report is not None:
            data["fact_check_report"] = self.fact_check_report.to_dict()
        return data


@dataclass
class Phases:
    initial: list[ModelResult] = field(default_factory=list)
    cross_analysis: list[ModelResult] = field(default_factory=list)
    refinement: list[ModelResult] = field(default_factory=list)
    synthesis: Synthesis | None = None

    def all_results(self) -> list[ModelResult]:
        return [*self.initial, *self.cross_analysis, *self.refinement]

    def to_dict(self) -> dict:
        return {
            "initial": [r.to_dict() for r in self.initial],
            "crossAnalysis": [r.to_dict() for r in self.cross_analysis],
            "refinement": [r.to_dict() for r in self.refinement],
            "synthesis": self.synthesis.to_dict() if self.synthesis else None,
        }


@dataclass(frozen=True)
class Citation:
    index: int
    title: str
    url: str
    snippet: str = ""
    date: str | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "date": self.date,
        }


@dataclass
class FactCheckResult:
    final_text: str
    citations: list[Citation] = field(default_factory=list)
    verified: bool = False


@dataclass
class FusionRequest:
    prompt: str
    model_slugs: list[str] = field(default_factory=list)
    master_model_slug: str | None = None
    fusion_mode: str = "fusion"
    conversation_id: str | None = None
    project_id: str | None = None
    history: list[HistoryMessage] = field(default_factory=list)
    web_verify: bool = False
    skip_save: bool = False
    image_count: int = 1
    force_json: bool = False


@dataclass
class FusionOutcome:
    mode: str
    master_model: str
    content: str
    raw_responses: list[ModelResult] = field(default_factory=list)
    phases: Phases = field(default_factory=Phases)
    exchanges: list[Exchange] = field(default_factory=list)
    total_tokens: int = 0
    api_calls: int = 0
    image_urls: list[str] = field(default_factory=list)


@dataclass
class Run:
    id: str
    user_id: str
    conversation_id: str
    prompt: str
    master_model: str
    status: str = "pending"    # "pending", "complete", "failed"
    total_tokens: int = 0
    total_api_calls: int = 0
    has_refinement: bool = False
    has_fact_check: bool = False
