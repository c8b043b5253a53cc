"""
Data models for NichePress
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .exceptions import InvalidStatusTransition, KeywordAlreadyWrittenError

QUALIFICATION_THRESHOLD = 5.0
SIMILARITY_THRESHOLD = 0.7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeywordStatus(str, Enum):
    """Lifecycle of a keyword node. WRITTEN and REJECTED are terminal."""

    UNWRITTEN = "UNWRITTEN"
    WRITTEN = "WRITTEN"
    REJECTED = "REJECTED"


# ========== STORED RECORDS ==========

class Niche(BaseModel):
    """A topical domain that owns a keyword forest, its articles and its run history"""

    id: Optional[int] = Field(default=None, description="Store-assigned id")
    name: str = Field(..., min_length=1, description="Unique niche name")
    description: str = Field(default="", description="What the niche is about")
    seed_keywords: list[str] = Field(default_factory=list, description="Ordered seed phrases")
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("seed_keywords", mode="before")
    @classmethod
    def _split_seeds(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [s.strip() for s in value if s and s.strip()]


class KeywordNode(BaseModel):
    """
    A candidate search phrase positioned in a niche's discovery forest.

    parent_id is a non-owning reference to another node, looked up through
    the store. Nodes are only built by the qualification stage.
    """

    id: Optional[int] = Field(default=None, description="Store-assigned id")
    keyword: str = Field(..., min_length=1, description="Phrase text, unique across the store")
    niche_id: int = Field(..., description="Owning niche")
    depth_level: int = Field(default=0, ge=0, description="Distance from a seed phrase")
    parent_id: Optional[int] = Field(default=None, description="Parent node id, if any")
    qualification_score: Optional[float] = Field(default=None, description="LLM score (0-10)")
    qualification_reasoning: str = Field(default="", description="Why the LLM scored it so")
    status: KeywordStatus = Field(default=KeywordStatus.UNWRITTEN)
    discovered_at: datetime = Field(default_factory=utcnow)
    written_at: Optional[datetime] = Field(default=None)

    @classmethod
    def from_qualification(
        cls,
        qualification: "KeywordQualification",
        niche_id: int,
        depth_level: int,
        parent_id: Optional[int] = None,
    ) -> "KeywordNode":
        """Build a node from an LLM verdict. Status is fixed here by the score threshold."""
        score = qualification.score
        return cls(
            keyword=qualification.keyword,
            niche_id=niche_id,
            depth_level=depth_level,
            parent_id=parent_id,
            qualification_score=score,
            qualification_reasoning=qualification.reasoning,
            status=KeywordStatus.UNWRITTEN if score >= QUALIFICATION_THRESHOLD else KeywordStatus.REJECTED,
        )

    def is_qualified(self) -> bool:
        return self.qualification_score is not None and self.qualification_score >= QUALIFICATION_THRESHOLD

    def mark_written(self, at: Optional[datetime] = None) -> None:
        if self.status == KeywordStatus.WRITTEN:
            raise KeywordAlreadyWrittenError(self.keyword)
        if self.status != KeywordStatus.UNWRITTEN:
            raise InvalidStatusTransition(
                f"Keyword '{self.keyword}' is {self.status.value} and cannot be written"
            )
        self.status = KeywordStatus.WRITTEN
        self.written_at = at or utcnow()


class Article(BaseModel):
    """A generated article, bound 1:1 to the keyword node it was written for"""

    id: Optional[int] = Field(default=None, description="Store-assigned id")
    keyword_id: int = Field(..., description="Owning keyword node")
    keyword: str = Field(default="", description="Text of the owning keyword node")
    niche_id: int = Field(..., description="Niche of the owning node")
    title: str = Field(..., description="Article title")
    meta_description: str = Field(default="", description="Meta description")
    body: str = Field(default="", description="Article body (HTML)")
    created_at: datetime = Field(default_factory=utcnow)
    published_at: Optional[datetime] = Field(default=None)

    @computed_field
    @property
    def word_count(self) -> int:
        return len(self.body.split())


class ExplorationLog(BaseModel):
    """Append-only record of one pipeline run"""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = Field(default=None, description="Store-assigned id")
    niche_id: int = Field(..., description="Niche the run belonged to")
    executed_at: datetime = Field(default_factory=utcnow)
    strategy: str = Field(default="", description="Strategy text chosen for the run")
    max_depth_level: int = Field(default=0, description="Deepest node in the niche at run time")
    keywords_discovered: int = Field(default=0)
    keywords_qualified: int = Field(default=0)
    articles_generated: int = Field(default=0)
    notes: str = Field(default="", description="LLM summary and next steps")
    duration_ms: int = Field(default=0)
    success: bool = Field(default=True)
    error_message: Optional[str] = Field(default=None)


# ========== LLM RESPONSE SHAPES ==========
# Each response is always a valid value; is_fallback tags the default built
# when the model's output could not be parsed.

class _LLMResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_fallback: bool = Field(default=False, description="True when built from the fallback path")


class StrategyDecision(_LLMResponse):
    strategy: str
    seed_keywords_to_explore: list[str] = Field(default_factory=list, alias="seedKeywordsToExplore")
    reasoning: str = ""
    target_depth_level: int = Field(default=1, ge=0, alias="targetDepthLevel")

    @field_validator("seed_keywords_to_explore", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return value or []


class KeywordQualification(_LLMResponse):
    keyword: str
    relevant: bool
    overlaps_existing: bool = Field(alias="overlapsExisting")
    score: float
    reasoning: str = ""


class KeywordSelection(_LLMResponse):
    selected_keyword: str = Field(alias="selectedKeyword")
    reasoning: str = ""
    content_angle: str = Field(default="", alias="contentAngle")


class SimilarityCheck(_LLMResponse):
    similar: bool
    reasoning: str = ""
    similarity_score: float = Field(default=0.0, ge=0.0, le=1.0, alias="similarityScore")
    overlapping_articles: list[str] = Field(default_factory=list, alias="overlappingArticles")

    def blocks_generation(self) -> bool:
        return self.similar and self.similarity_score >= SIMILARITY_THRESHOLD


class ArticleContent(_LLMResponse):
    title: str
    meta_description: str = Field(default="", alias="metaDescription")
    body: str = Field(alias="content")
    estimated_word_count: int = Field(default=0, alias="estimatedWordCount")


class RunSummary(_LLMResponse):
    summary: str
    next_steps: str = Field(default="", alias="nextSteps")


# ========== PIPELINE RESULTS ==========

class ExplorationResult(BaseModel):
    """Outcome of a discovery + qualification pass run outside the daily workflow"""

    niche_id: int
    keywords_discovered: int = 0
    keywords_qualified: int = 0
    keywords_saved: int = 0


class NicheStats(BaseModel):
    """Keyword and article totals for one niche"""

    niche_id: int
    total_keywords: int = 0
    unwritten_keywords: int = 0
    written_keywords: int = 0
    rejected_keywords: int = 0
    max_depth_level: int = 0
    total_articles: int = 0
    average_qualification_score: float = 0.0
    recent_runs: list[ExplorationLog] = Field(default_factory=list)


class NicheRunOutcome(BaseModel):
    niche_id: int
    niche_name: str
    success: bool
    error: Optional[str] = None


class BatchRunReport(BaseModel):
    """Per-niche outcome of a sequential run across all niches"""

    outcomes: list[NicheRunOutcome] = Field(default_factory=list)
    stopped_early: bool = False

    @property
    def succeeded(self) -> list[NicheRunOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[NicheRunOutcome]:
        return [o for o in self.outcomes if not o.success]
