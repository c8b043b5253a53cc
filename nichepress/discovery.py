"""
Keyword discovery from autocomplete suggestions.

Expands seed phrases into candidate keywords: direct suggestions for the
seed plus suggestions for the seed combined with depth-specific modifiers.
All calls are sequential and paced, since the suggestion endpoint is rate
limited.
"""

import asyncio
import logging
from typing import Iterable, Optional

from .config import PacingConfig
from .models import Niche
from .rate_limiter import FixedIntervalGate
from .store import KeywordGraphStore
from .suggest_client import SuggestionClient

logger = logging.getLogger(__name__)

# Lexical modifiers appended to a seed, by exploration depth (2 means 2 and deeper)
MODIFIERS_BY_DEPTH = {
    0: ("how to", "what is", "best", "guide"),
    1: ("tips", "for beginners", "examples", "vs"),
    2: ("benefits", "cost", "reviews", "comparison"),
}
MAX_MODIFIER_DEPTH = 2

# Letters used for alphabet soup expansion ("seed a", "seed b", ...)
ALPHABET_SOUP_LETTERS = ("a", "b", "c", "d", "e", "f", "g", "h", "i", "t", "w")


def modifiers_for_depth(depth: int) -> tuple[str, ...]:
    return MODIFIERS_BY_DEPTH[min(max(depth, 0), MAX_MODIFIER_DEPTH)]


def _distinct(phrases: Iterable[str], exclude: Optional[str] = None) -> list[str]:
    """Order-preserving dedupe that drops blanks and anything equal to exclude (case-insensitive)."""
    excluded = exclude.strip().lower() if exclude else None
    seen = set()
    result = []
    for phrase in phrases:
        if not phrase or not phrase.strip():
            continue
        if excluded is not None and phrase.strip().lower() == excluded:
            continue
        if phrase in seen:
            continue
        seen.add(phrase)
        result.append(phrase)
    return result


class KeywordDiscoveryEngine:
    """
    Grow candidate keywords from seeds.

    Stateless apart from its collaborators. A stop signal (asyncio.Event)
    passed to any discovery call abandons the remaining requests and returns
    what was gathered so far.

    Usage:
        engine = KeywordDiscoveryEngine(SuggestionClient(), store)
        phrases = await engine.discover_from_seeds(["cold brew"], depth=1)
        new_phrases = engine.filter_new(phrases, niche)
    """

    def __init__(
        self,
        client: SuggestionClient,
        store: KeywordGraphStore,
        pacing: Optional[PacingConfig] = None,
        sleep=None,
    ):
        self.client = client
        self.store = store
        self.pacing = pacing or PacingConfig()
        self._modifier_gate = FixedIntervalGate(self.pacing.modifier_delay, sleep=sleep)
        self._seed_gate = FixedIntervalGate(self.pacing.seed_delay, sleep=sleep)
        self._alphabet_gate = FixedIntervalGate(self.pacing.alphabet_delay, sleep=sleep)

    async def expand(self, seed: str, depth: int, stop: Optional[asyncio.Event] = None) -> list[str]:
        """
        Suggestions for one seed at the given depth.

        Never returns the seed itself (case-insensitive).
        """
        suggestions = list(await self.client.fetch_suggestions(seed))

        if depth <= MAX_MODIFIER_DEPTH:
            for modifier in modifiers_for_depth(depth):
                if stop is not None and stop.is_set():
                    logger.info(f"Modifier expansion of '{seed}' stopped")
                    break
                suggestions.extend(await self.client.fetch_suggestions(f"{seed} {modifier}"))
                if not await self._modifier_gate.wait(stop):
                    logger.info(f"Modifier expansion of '{seed}' stopped")
                    break

        return _distinct(suggestions, exclude=seed)

    async def discover_from_seeds(
        self,
        seeds: list[str],
        depth: int,
        stop: Optional[asyncio.Event] = None,
    ) -> list[str]:
        """Deduplicated union of expand() over all seeds, in seed order."""
        discovered: list[str] = []

        for seed in seeds:
            if stop is not None and stop.is_set():
                break
            logger.info(f"Exploring seed keyword: {seed} at depth {depth}")
            discovered.extend(await self.expand(seed, depth, stop=stop))
            if not await self._seed_gate.wait(stop):
                logger.info("Seed exploration stopped")
                break

        result = _distinct(discovered)
        logger.info(f"Discovered {len(result)} distinct suggestions from {len(seeds)} seeds")
        return result

    async def alphabet_soup(self, seed: str, stop: Optional[asyncio.Event] = None) -> list[str]:
        """Widen a seed by querying it with common trailing letters."""
        suggestions: list[str] = []

        for letter in ALPHABET_SOUP_LETTERS:
            if stop is not None and stop.is_set():
                break
            suggestions.extend(await self.client.fetch_suggestions(f"{seed} {letter}"))
            if not await self._alphabet_gate.wait(stop):
                break

        return _distinct(suggestions, exclude=seed)

    def filter_new(self, candidates: list[str], niche: Optional[Niche] = None) -> list[str]:
        """
        Drop phrases already known to the store.

        Phrase uniqueness is global, so niche is informational only: a phrase
        owned by another niche is still not new.
        """
        new = [phrase for phrase in candidates if not self.store.exists_by_phrase(phrase)]
        dropped = len(candidates) - len(new)
        if dropped:
            label = f" for niche '{niche.name}'" if niche else ""
            logger.info(f"Filtered {dropped} already known keywords{label}")
        return new
