"""
Per-niche content pipeline.

The daily run walks seven stages strictly in order:

    strategy -> discovery -> qualification -> selection
             -> similarity gate -> generation -> summary & log

Each stage calls the stateless discovery engine or LLM gateway, and the
store records the outcome. Every run, successful or not, leaves exactly one
ExplorationLog behind.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .config import PacingConfig
from .discovery import KeywordDiscoveryEngine
from .exceptions import (
    ContentTooSimilarError,
    InvalidStatusTransition,
    KeywordAlreadyWrittenError,
    KeywordNotFoundError,
    NicheNotFoundError,
    WorkflowError,
)
from .llm_gateway import MAX_BATCH_SIZE, LLMGateway
from .models import (
    Article,
    ArticleContent,
    ExplorationLog,
    ExplorationResult,
    KeywordNode,
    KeywordQualification,
    KeywordStatus,
    Niche,
    NicheStats,
    utcnow,
)
from .rate_limiter import FixedIntervalGate
from .store import KeywordGraphStore

logger = logging.getLogger(__name__)

QUALIFICATION_BATCH_SIZE = MAX_BATCH_SIZE
SELECTION_CANDIDATES = 20
RECENT_SAMPLE_SIZE = 10


def collect_niche_stats(store: KeywordGraphStore, niche_id: int, recent_runs: int = 5) -> NicheStats:
    """Totals by status, depth, articles and recent runs for one niche."""
    if store.get_niche(niche_id) is None:
        raise NicheNotFoundError(niche_id)

    nodes = store.find_keywords_by_niche(niche_id)
    scores = [n.qualification_score for n in nodes if n.qualification_score is not None]

    return NicheStats(
        niche_id=niche_id,
        total_keywords=len(nodes),
        unwritten_keywords=store.count_keywords(niche_id, KeywordStatus.UNWRITTEN),
        written_keywords=store.count_keywords(niche_id, KeywordStatus.WRITTEN),
        rejected_keywords=store.count_keywords(niche_id, KeywordStatus.REJECTED),
        max_depth_level=store.max_depth(niche_id) or 0,
        total_articles=store.count_articles(niche_id),
        average_qualification_score=sum(scores) / len(scores) if scores else 0.0,
        recent_runs=store.find_recent_logs(niche_id, limit=recent_runs),
    )


@dataclass
class _RunCounters:
    """Counts accumulated while a run progresses, kept for the failure log."""

    strategy: Optional[str] = None
    keywords_discovered: int = 0
    keywords_qualified: int = 0
    articles_generated: int = 0
    notes: list[str] = field(default_factory=list)


class OrchestrationPipeline:
    """
    Turn seed phrases into a scored keyword forest and articles.

    Usage:
        pipeline = OrchestrationPipeline(store, discovery, gateway)
        log = await pipeline.run_daily_workflow(niche_id)
        result = await pipeline.explore_keywords_only(niche_id, ["cold brew"], depth=1)
        article = await pipeline.generate_article_for_keyword(keyword_id)
    """

    def __init__(
        self,
        store: KeywordGraphStore,
        discovery: KeywordDiscoveryEngine,
        gateway: LLMGateway,
        pacing: Optional[PacingConfig] = None,
        sleep=None,
    ):
        self.store = store
        self.discovery = discovery
        self.gateway = gateway
        self.pacing = pacing or PacingConfig()
        self._batch_gate = FixedIntervalGate(self.pacing.batch_delay, sleep=sleep)

    # ==================== ENTRY POINTS ====================

    async def run_daily_workflow(self, niche_id: int, stop: Optional[asyncio.Event] = None) -> ExplorationLog:
        """
        Run all seven stages for one niche and return the persisted log.

        Any failure inside the run is recorded as a failed ExplorationLog and
        re-raised as WorkflowError (the original error is its __cause__).
        """
        niche = self._require_niche(niche_id)
        start_time = time.monotonic()
        counters = _RunCounters()

        logger.info(f"=== Starting daily SEO content workflow for niche: {niche.name} ===")

        try:
            # Step 1: strategy
            logger.info("Step 1: Deciding exploration strategy...")
            existing = self.store.find_keywords_by_niche(niche.id)
            strategy = await self.gateway.decide_strategy(niche, existing)
            counters.strategy = f"{strategy.strategy} - {strategy.reasoning}"
            logger.info(f"Strategy: {strategy.strategy} - Target depth: {strategy.target_depth_level}")

            # Step 2: discovery
            logger.info("Step 2: Discovering keywords...")
            seeds = strategy.seed_keywords_to_explore or niche.seed_keywords
            new_phrases = await self._discover(niche, seeds, strategy.target_depth_level, stop)
            counters.keywords_discovered = len(new_phrases)

            # Step 3: qualification
            if new_phrases:
                logger.info("Step 3: Qualifying keywords with LLM...")
                nodes = await self._qualify(
                    niche, new_phrases, existing, seeds, strategy.target_depth_level, stop
                )
                self.store.save_all(nodes)
                counters.keywords_qualified = sum(1 for n in nodes if n.is_qualified())
                logger.info(f"Saved {len(nodes)} keywords, {counters.keywords_qualified} qualified")

            # Steps 4-6: selection, similarity gate, generation
            counters.articles_generated = await self._select_and_write(niche, counters)

            # Step 7: summary & log
            logger.info("Step 7: Generating daily summary...")
            recent = sorted(
                self.store.find_keywords_by_niche(niche.id),
                key=lambda n: n.discovered_at,
                reverse=True,
            )[:RECENT_SAMPLE_SIZE]
            summary = await self.gateway.summarize(
                counters.keywords_discovered,
                counters.keywords_qualified,
                counters.articles_generated,
                niche,
                recent,
            )
            notes = f"{summary.summary}\n\nNext steps: {summary.next_steps}"
            if counters.notes:
                notes += "\n\n" + "\n".join(counters.notes)

            log = self.store.save_log(
                ExplorationLog(
                    niche_id=niche.id,
                    strategy=counters.strategy,
                    max_depth_level=self.store.max_depth(niche.id) or 0,
                    keywords_discovered=counters.keywords_discovered,
                    keywords_qualified=counters.keywords_qualified,
                    articles_generated=counters.articles_generated,
                    notes=notes,
                    duration_ms=self._elapsed_ms(start_time),
                    success=True,
                )
            )
        except asyncio.CancelledError:
            logger.warning(f"Daily workflow for niche {niche.name} was cancelled")
            self._save_failure_log(niche, counters, start_time, "Workflow cancelled")
            raise
        except Exception as e:
            logger.exception(f"Error in daily workflow execution for niche {niche.name}")
            message = str(e) or e.__class__.__name__
            self._save_failure_log(niche, counters, start_time, message)
            raise WorkflowError(niche.id, message) from e

        logger.info("=== Daily workflow completed successfully ===")
        logger.info(
            f"Duration: {log.duration_ms}ms | discovered: {log.keywords_discovered} | "
            f"qualified: {log.keywords_qualified} | articles: {log.articles_generated}"
        )
        return log

    async def explore_keywords_only(
        self,
        niche_id: int,
        seeds: list[str],
        depth: int,
        stop: Optional[asyncio.Event] = None,
        alphabet_soup: bool = False,
    ) -> ExplorationResult:
        """Discovery and qualification only: no selection, no article, no log."""
        niche = self._require_niche(niche_id)
        seeds = [s.strip() for s in seeds if s and s.strip()] or niche.seed_keywords
        logger.info(f"Manual keyword exploration for: {niche.name}")

        new_phrases = await self._discover(niche, seeds, depth, stop, alphabet_soup=alphabet_soup)
        existing = self.store.find_keywords_by_niche(niche.id)
        nodes = await self._qualify(niche, new_phrases, existing, seeds, depth, stop) if new_phrases else []
        saved = self.store.save_all(nodes)
        qualified = sum(1 for n in saved if n.is_qualified())
        logger.info(f"Saved {len(saved)} keywords from manual exploration ({qualified} qualified)")

        return ExplorationResult(
            niche_id=niche.id,
            keywords_discovered=len(new_phrases),
            keywords_qualified=qualified,
            keywords_saved=len(saved),
        )

    async def generate_article_for_keyword(self, keyword_id: int) -> Article:
        """
        Similarity check and generation for one chosen keyword.

        Unlike the daily run, a tripped similarity gate is an error here.
        """
        node = self.store.get_keyword(keyword_id)
        if node is None:
            raise KeywordNotFoundError(keyword_id)
        if node.status == KeywordStatus.WRITTEN:
            raise KeywordAlreadyWrittenError(node.keyword)
        if node.status == KeywordStatus.REJECTED:
            raise InvalidStatusTransition(f"Keyword '{node.keyword}' was rejected and cannot be written")
        niche = self._require_niche(node.niche_id)

        similarity = await self.gateway.check_similarity(
            node.keyword, self.store.find_articles_by_niche(niche.id)
        )
        if similarity.blocks_generation():
            raise ContentTooSimilarError(node.keyword, similarity.overlapping_articles)

        content = await self.gateway.generate_article(node, niche)
        article = self._persist_article(node, niche, content)
        logger.info(f"Article generated for keyword: {node.keyword}")
        return article

    def get_niche_stats(self, niche_id: int, recent_runs: int = 5) -> NicheStats:
        return collect_niche_stats(self.store, niche_id, recent_runs=recent_runs)

    # ==================== STAGES ====================

    async def _discover(
        self,
        niche: Niche,
        seeds: list[str],
        depth: int,
        stop: Optional[asyncio.Event],
        alphabet_soup: bool = False,
    ) -> list[str]:
        suggestions = await self.discovery.discover_from_seeds(seeds, depth, stop=stop)
        if alphabet_soup:
            for seed in seeds:
                suggestions.extend(await self.discovery.alphabet_soup(seed, stop=stop))
            suggestions = list(dict.fromkeys(suggestions))

        new_phrases = self.discovery.filter_new(suggestions, niche)
        logger.info(f"Discovered {len(new_phrases)} new keyword suggestions")
        return new_phrases

    async def _qualify(
        self,
        niche: Niche,
        phrases: list[str],
        existing: list[KeywordNode],
        seeds: list[str],
        depth: int,
        stop: Optional[asyncio.Event] = None,
    ) -> list[KeywordNode]:
        """
        Score phrases in batches and build nodes for the relevant, non-overlapping ones.

        Nodes are only built here, after a qualification answer, never while
        discovery is still pacing requests.
        """
        nodes: list[KeywordNode] = []
        built: set[str] = set()
        parent_id = self._resolve_parent(seeds)

        for start in range(0, len(phrases), QUALIFICATION_BATCH_SIZE):
            batch = phrases[start:start + QUALIFICATION_BATCH_SIZE]
            batch_num = start // QUALIFICATION_BATCH_SIZE + 1
            qualifications = await self.gateway.qualify(batch, niche, existing)

            for qualification in qualifications:
                if not self._accepts(qualification) or qualification.keyword in built:
                    continue
                built.add(qualification.keyword)
                nodes.append(
                    KeywordNode.from_qualification(qualification, niche.id, depth, parent_id=parent_id)
                )

            logger.info(f"Qualification batch {batch_num}: {len(batch)} phrases, {len(nodes)} nodes so far")
            if start + QUALIFICATION_BATCH_SIZE < len(phrases):
                # A stop signal only shortens the pause; discovered phrases still get scored
                await self._batch_gate.wait(stop)

        return nodes

    @staticmethod
    def _accepts(qualification: KeywordQualification) -> bool:
        # Relevance and overlap are checked before the score threshold
        return qualification.relevant and not qualification.overlaps_existing

    def _resolve_parent(self, seeds: list[str]) -> Optional[int]:
        """First seed phrase that already exists as a node, in seed order."""
        for seed in seeds:
            parent = self.store.find_by_phrase(seed)
            if parent is not None:
                return parent.id
        return None

    async def _select_and_write(self, niche: Niche, counters: _RunCounters) -> int:
        """Stages 4-6. Returns the number of articles generated (0 or 1)."""
        logger.info("Step 4: Selecting keyword for article generation...")
        unwritten = self.store.find_unwritten_qualified(niche.id)
        if not unwritten:
            logger.info("No qualified unwritten keywords available for article generation")
            counters.notes.append("Selection skipped: no qualified unwritten keywords")
            return 0

        candidates = unwritten[:SELECTION_CANDIDATES]
        selection = await self.gateway.select_best(candidates, niche)
        logger.info(f"Selected keyword: {selection.selected_keyword} - {selection.reasoning}")

        selected = next((n for n in unwritten if n.keyword == selection.selected_keyword), None)
        if selected is None:
            logger.warning(f"Selected keyword not found in unwritten list: {selection.selected_keyword}")
            counters.notes.append(f"Selection skipped: '{selection.selected_keyword}' is not an unwritten keyword")
            return 0

        logger.info("Step 5: Checking content similarity...")
        similarity = await self.gateway.check_similarity(
            selected.keyword, self.store.find_articles_by_niche(niche.id)
        )
        if similarity.blocks_generation():
            logger.info(f"Skipping article - too similar to existing content ({similarity.similarity_score})")
            counters.notes.append(f"Generation skipped: '{selected.keyword}' too similar to existing content")
            return 0

        logger.info("Step 6: Generating article...")
        content = await self.gateway.generate_article(selected, niche)
        article = self._persist_article(selected, niche, content)
        logger.info(f"Article generated successfully: {article.title}")
        return 1

    def _persist_article(self, node: KeywordNode, niche: Niche, content: ArticleContent) -> Article:
        """Save the article and flip the node to WRITTEN as one unit."""
        with self.store.transaction():
            article = self.store.save_article(
                Article(
                    keyword_id=node.id,
                    keyword=node.keyword,
                    niche_id=niche.id,
                    title=content.title,
                    meta_description=content.meta_description,
                    body=content.body,
                )
            )
            node.mark_written(utcnow())
            self.store.save_keyword(node)
        return article

    # ==================== HELPERS ====================

    def _save_failure_log(
        self, niche: Niche, counters: _RunCounters, start_time: float, message: str
    ) -> ExplorationLog:
        return self.store.save_log(
            ExplorationLog(
                niche_id=niche.id,
                strategy=counters.strategy or "ERROR",
                max_depth_level=self.store.max_depth(niche.id) or 0,
                keywords_discovered=counters.keywords_discovered,
                keywords_qualified=counters.keywords_qualified,
                articles_generated=counters.articles_generated,
                notes="Workflow failed",
                duration_ms=self._elapsed_ms(start_time),
                success=False,
                error_message=message,
            )
        )

    def _require_niche(self, niche_id: int) -> Niche:
        niche = self.store.get_niche(niche_id)
        if niche is None:
            raise NicheNotFoundError(niche_id)
        return niche

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
