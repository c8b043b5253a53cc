"""
NichePress - automated keyword exploration and SEO article generation.

Grows a keyword forest per niche from autocomplete suggestions, qualifies the
candidates with an LLM, picks one to write about, checks it against existing
articles, and generates the article.

Usage:
    from nichepress import (
        InMemoryGraphStore, KeywordDiscoveryEngine, LLMGateway, LLMConfig,
        Niche, OrchestrationPipeline, SuggestionClient,
    )

    store = InMemoryGraphStore()
    niche = store.add_niche(Niche(name="coffee", seed_keywords=["cold brew"]))

    pipeline = OrchestrationPipeline(
        store,
        KeywordDiscoveryEngine(SuggestionClient(), store),
        LLMGateway(LLMConfig.from_env()),
    )
    log = await pipeline.run_daily_workflow(niche.id)
    print(f"{log.keywords_discovered} discovered, {log.articles_generated} written")
"""

from .config import LLMConfig, PacingConfig, SuggestConfig
from .discovery import KeywordDiscoveryEngine
from .exceptions import (
    ContentTooSimilarError,
    DuplicateKeywordError,
    DuplicateNicheError,
    InvalidStatusTransition,
    KeywordAlreadyWrittenError,
    KeywordNotFoundError,
    LLMTransportError,
    NicheNotFoundError,
    NichePressError,
    WorkflowError,
)
from .llm_gateway import LLMGateway
from .models import (
    Article,
    ArticleContent,
    BatchRunReport,
    ExplorationLog,
    ExplorationResult,
    KeywordNode,
    KeywordQualification,
    KeywordSelection,
    KeywordStatus,
    Niche,
    NicheStats,
    RunSummary,
    SimilarityCheck,
    StrategyDecision,
)
from .pipeline import OrchestrationPipeline, collect_niche_stats
from .rate_limiter import FixedIntervalGate
from .scheduler import NicheBatchRunner
from .store import InMemoryGraphStore, JsonFileGraphStore, KeywordGraphStore
from .suggest_client import SuggestionClient, parse_suggestions

__version__ = "0.1.0"
__all__ = [
    # Pipeline
    "OrchestrationPipeline",
    "NicheBatchRunner",
    "collect_niche_stats",
    # Services
    "KeywordDiscoveryEngine",
    "SuggestionClient",
    "parse_suggestions",
    "LLMGateway",
    "FixedIntervalGate",
    # Store
    "KeywordGraphStore",
    "InMemoryGraphStore",
    "JsonFileGraphStore",
    # Config
    "LLMConfig",
    "PacingConfig",
    "SuggestConfig",
    # Records
    "Niche",
    "KeywordNode",
    "KeywordStatus",
    "Article",
    "ExplorationLog",
    "ExplorationResult",
    "NicheStats",
    "BatchRunReport",
    # LLM responses
    "StrategyDecision",
    "KeywordQualification",
    "KeywordSelection",
    "SimilarityCheck",
    "ArticleContent",
    "RunSummary",
    # Errors
    "NichePressError",
    "LLMTransportError",
    "NicheNotFoundError",
    "DuplicateNicheError",
    "KeywordNotFoundError",
    "DuplicateKeywordError",
    "InvalidStatusTransition",
    "KeywordAlreadyWrittenError",
    "ContentTooSimilarError",
    "WorkflowError",
]
