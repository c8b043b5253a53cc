"""
LLM gateway: task-specific prompts over a chat-completion HTTP API.

Every operation follows the same contract:

1. build a single-turn prompt from niche/keyword context (bounded previews),
2. POST it with a JSON-only system instruction,
3. parse the first text block as JSON into the operation's response model,
4. on unparseable output, return a documented fallback tagged is_fallback.

Transport failures (non-2xx, timeout, unreachable host, empty body) are
never masked: they raise LLMTransportError. A malformed answer proves the
service is alive; an unreachable service means the integration is broken.
"""

import json
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import LLMConfig
from .models import (
    Article,
    ArticleContent,
    KeywordNode,
    KeywordQualification,
    KeywordSelection,
    Niche,
    RunSummary,
    SimilarityCheck,
    StrategyDecision,
)
from .exceptions import LLMTransportError

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 20

# Prompt preview bounds
STRATEGY_CONTEXT_LIMIT = 50
QUALIFICATION_CONTEXT_LIMIT = 30
SELECTION_LIMIT = 20
SUMMARY_SAMPLE_LIMIT = 10

FALLBACK_QUALIFICATION_SCORE = 3.0
FALLBACK_SIMILARITY_SCORE = 0.5

_JSON_ONLY = "Respond with valid JSON only, no prose and no markdown formatting."

SYSTEM_PROMPTS = {
    "strategy": f"You are an SEO content strategist. {_JSON_ONLY}",
    "qualify": "You are an SEO keyword analyst. Respond with a valid JSON array only, no prose and no markdown formatting.",
    "select": f"You are an SEO content strategist. {_JSON_ONLY}",
    "similarity": f"You are an SEO content analyst. {_JSON_ONLY}",
    "article": f"You are an expert SEO content writer. {_JSON_ONLY}",
    "summary": f"You are an SEO strategist summarizing daily progress. {_JSON_ONLY}",
}


class _ParseError(ValueError):
    pass


def parse_json_payload(response_text: str) -> Any:
    """Decode JSON from a model answer, tolerating a surrounding markdown fence."""
    text = response_text.strip()
    if text.startswith("```"):
        if "```json" in text:
            text = text.split("```json", 1)[1]
        else:
            text = text.split("```", 1)[1]
        text = text.split("```", 1)[0].strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise _ParseError(f"{e}. Response: {response_text[:200]}") from e


def _niche_header(niche: Niche) -> str:
    return f"Niche: {niche.name}\nDescription: {niche.description}\n"


class LLMGateway:
    """
    Wrap the messages API behind six typed operations.

    Usage:
        gateway = LLMGateway(LLMConfig.from_env())
        strategy = await gateway.decide_strategy(niche, nodes)
        if strategy.is_fallback:
            ...
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or LLMConfig.from_env()
        if not self.config.api_key:
            raise ValueError(
                "LLM API key required. Set NICHEPRESS_LLM_API_KEY (or ANTHROPIC_API_KEY) or pass LLMConfig(api_key=...)."
            )
        self._http_client = http_client
        self.usage = {"input_tokens": 0, "output_tokens": 0, "calls": 0}

    # ==================== OPERATIONS ====================

    async def decide_strategy(self, niche: Niche, existing_nodes: list[KeywordNode]) -> StrategyDecision:
        """Choose which seeds and depth to explore today."""
        text = await self._call(self._strategy_prompt(niche, existing_nodes), SYSTEM_PROMPTS["strategy"])
        try:
            data = parse_json_payload(text)
            return StrategyDecision.model_validate(data)
        except (_ParseError, ValidationError) as e:
            logger.error(f"Failed to parse exploration strategy response: {e}")
            return StrategyDecision(
                strategy="explore_seed_keywords",
                seed_keywords_to_explore=list(niche.seed_keywords),
                reasoning="Using default strategy due to parsing error",
                target_depth_level=1,
                is_fallback=True,
            )

    async def qualify(
        self,
        candidates: list[str],
        niche: Niche,
        existing_nodes: list[KeywordNode],
    ) -> list[KeywordQualification]:
        """
        Score a batch of at most 20 candidate phrases.

        Answers are matched back to the batch case-insensitively; phrases the
        model invented or repeated are dropped. Unparseable output rejects
        the whole batch (not relevant, overlapping, score 3.0).
        """
        if len(candidates) > MAX_BATCH_SIZE:
            raise ValueError(f"Qualification batch too large: {len(candidates)} > {MAX_BATCH_SIZE}")
        if not candidates:
            return []

        text = await self._call(
            self._qualification_prompt(candidates, niche, existing_nodes), SYSTEM_PROMPTS["qualify"]
        )
        try:
            data = parse_json_payload(text)
            if not isinstance(data, list):
                raise _ParseError(f"Expected a JSON array, got {type(data).__name__}")
            parsed = [KeywordQualification.model_validate(item) for item in data]
        except (_ParseError, ValidationError) as e:
            logger.error(f"Failed to parse keyword qualification response: {e}")
            return [
                KeywordQualification(
                    keyword=keyword,
                    relevant=False,
                    overlaps_existing=True,
                    score=FALLBACK_QUALIFICATION_SCORE,
                    reasoning="Default low score due to parsing error",
                    is_fallback=True,
                )
                for keyword in candidates
            ]

        by_lower = {c.strip().lower(): c for c in candidates}
        matched = []
        seen = set()
        for qualification in parsed:
            original = by_lower.get(qualification.keyword.strip().lower())
            if original is None:
                logger.warning(f"Ignoring qualification for unknown keyword: {qualification.keyword}")
                continue
            if original in seen:
                continue
            seen.add(original)
            matched.append(qualification.model_copy(update={"keyword": original}))
        return matched

    async def select_best(self, candidates: list[KeywordNode], niche: Niche) -> KeywordSelection:
        """Pick today's keyword. Falls back to the highest score, first one on ties."""
        if not candidates:
            raise ValueError("select_best needs at least one candidate")
        candidates = candidates[:SELECTION_LIMIT]

        text = await self._call(self._selection_prompt(candidates, niche), SYSTEM_PROMPTS["select"])
        try:
            data = parse_json_payload(text)
            return KeywordSelection.model_validate(data)
        except (_ParseError, ValidationError) as e:
            logger.error(f"Failed to parse keyword selection response: {e}")
            best = max(candidates, key=lambda n: n.qualification_score or 0.0)
            return KeywordSelection(
                selected_keyword=best.keyword,
                reasoning="Selected highest scoring keyword due to parsing error",
                content_angle="Comprehensive guide",
                is_fallback=True,
            )

    async def check_similarity(self, keyword: str, existing_articles: list[Article]) -> SimilarityCheck:
        """Judge whether a keyword duplicates an existing article. Failure never blocks."""
        text = await self._call(
            self._similarity_prompt(keyword, existing_articles), SYSTEM_PROMPTS["similarity"]
        )
        try:
            data = parse_json_payload(text)
            return SimilarityCheck.model_validate(data)
        except (_ParseError, ValidationError) as e:
            logger.error(f"Failed to parse similarity check response: {e}")
            return SimilarityCheck(
                similar=False,
                reasoning="Unable to determine similarity",
                similarity_score=FALLBACK_SIMILARITY_SCORE,
                overlapping_articles=[],
                is_fallback=True,
            )

    async def generate_article(self, node: KeywordNode, niche: Niche) -> ArticleContent:
        """Write the article for a keyword with the larger token budget."""
        text = await self._call(
            self._article_prompt(node, niche),
            SYSTEM_PROMPTS["article"],
            max_tokens=self.config.article_max_tokens,
        )
        try:
            data = parse_json_payload(text)
            return ArticleContent.model_validate(data)
        except (_ParseError, ValidationError) as e:
            logger.error(f"Failed to parse article generation response: {e}")
            return ArticleContent(
                title=f"Guide to {node.keyword}",
                meta_description=f"Learn everything about {node.keyword}",
                body="Article generation failed. Please try again.",
                estimated_word_count=0,
                is_fallback=True,
            )

    async def summarize(
        self,
        discovered: int,
        qualified: int,
        generated: int,
        niche: Niche,
        recent_nodes: list[KeywordNode],
    ) -> RunSummary:
        text = await self._call(
            self._summary_prompt(discovered, qualified, generated, niche, recent_nodes),
            SYSTEM_PROMPTS["summary"],
        )
        try:
            data = parse_json_payload(text)
            return RunSummary.model_validate(data)
        except (_ParseError, ValidationError) as e:
            logger.error(f"Failed to parse daily summary response: {e}")
            return RunSummary(
                summary=(
                    f"Daily workflow completed for {niche.name}: {discovered} keywords discovered, "
                    f"{qualified} qualified, {generated} articles generated"
                ),
                next_steps="Continue keyword exploration",
                is_fallback=True,
            )

    # ==================== PROMPT BUILDERS ====================

    def _strategy_prompt(self, niche: Niche, existing_nodes: list[KeywordNode]) -> str:
        if existing_nodes:
            tree = "\n".join(
                f"- {n.keyword} (depth: {n.depth_level}, score: {n.qualification_score})"
                for n in existing_nodes[:STRATEGY_CONTEXT_LIMIT]
            )
            context = f"Existing Keyword Tree:\n{tree}"
        else:
            context = "No existing keywords yet. This is the initial exploration."

        return f"""{_niche_header(niche)}
Seed keywords: {", ".join(niche.seed_keywords)}

{context}

Based on this niche and keyword tree, decide today's exploration strategy.
Should we:
1. Go deeper on promising branches (explore child keywords of high-scoring keywords)
2. Explore new angles (use seed keywords or unexplored areas)
3. Fill gaps in existing coverage

Respond with JSON in this format:
{{
  "strategy": "explore_deeper|explore_new|fill_gaps",
  "seedKeywordsToExplore": ["keyword1", "keyword2"],
  "reasoning": "explanation of why this strategy",
  "targetDepthLevel": 2
}}"""

    def _qualification_prompt(
        self, candidates: list[str], niche: Niche, existing_nodes: list[KeywordNode]
    ) -> str:
        existing = ", ".join(n.keyword for n in existing_nodes[:QUALIFICATION_CONTEXT_LIMIT])
        suggestions = "\n".join(f"- {c}" for c in candidates)

        return f"""{_niche_header(niche)}
Existing keywords: {existing}

New keyword suggestions to evaluate:
{suggestions}

For each suggestion, evaluate:
1. Is it relevant to our niche?
2. Does it overlap significantly with existing keywords?
3. Score the SEO opportunity (0-10, where 10 is excellent)

Respond with a JSON array in this format:
[
  {{
    "keyword": "suggestion text",
    "relevant": true,
    "overlapsExisting": false,
    "score": 7.5,
    "reasoning": "why this score"
  }}
]"""

    def _selection_prompt(self, candidates: list[KeywordNode], niche: Niche) -> str:
        listing = "\n".join(
            f"- {n.keyword} (score: {n.qualification_score}, depth: {n.depth_level})" for n in candidates
        )

        return f"""{_niche_header(niche)}
Qualified unwritten keywords:
{listing}

Which keyword should we write about today?
Consider:
- Strategic value for building a content cluster
- Filling content gaps
- Creating foundational vs. supporting content

Respond with JSON in this format:
{{
  "selectedKeyword": "exact keyword text",
  "reasoning": "why this keyword",
  "contentAngle": "the unique angle for this article"
}}"""

    def _similarity_prompt(self, keyword: str, existing_articles: list[Article]) -> str:
        if existing_articles:
            listing = "\n".join(f"- Title: {a.title} | Keyword: {a.keyword}" for a in existing_articles)
        else:
            listing = "(none yet)"

        return f"""New keyword: {keyword}

Existing articles:
{listing}

Does the new keyword '{keyword}' represent substantially the same topic as any existing article?
We want to avoid duplicate content but allow complementary topics.

Respond with JSON in this format:
{{
  "similar": false,
  "reasoning": "explanation",
  "similarityScore": 0.0,
  "overlappingArticles": []
}}"""

    def _article_prompt(self, node: KeywordNode, niche: Niche) -> str:
        return f"""Write a comprehensive, SEO-optimized article for:

Niche: {niche.name}
Target Keyword: {node.keyword}
Keyword Context: {node.qualification_reasoning}

Requirements:
- 1500-2500 words
- Include the keyword naturally throughout
- Use proper heading structure (H2, H3)
- Provide actionable, valuable information
- Write in a clear, engaging style
- Include an introduction and conclusion

Respond with JSON in this format:
{{
  "title": "SEO-optimized title",
  "metaDescription": "compelling 150-160 char meta description",
  "content": "full article content in HTML format",
  "estimatedWordCount": 2000
}}"""

    def _summary_prompt(
        self,
        discovered: int,
        qualified: int,
        generated: int,
        niche: Niche,
        recent_nodes: list[KeywordNode],
    ) -> str:
        sample = ""
        if recent_nodes:
            listing = "\n".join(f"- {n.keyword}" for n in recent_nodes[:SUMMARY_SAMPLE_LIMIT])
            sample = f"\nSample keywords discovered:\n{listing}\n"

        return f"""Today's SEO content generation summary:

Niche: {niche.name}
Keywords discovered: {discovered}
Keywords qualified: {qualified}
Articles generated: {generated}
{sample}
Provide a strategic summary and recommendations for tomorrow.

Respond with JSON in this format:
{{
  "summary": "brief overview of today's progress",
  "nextSteps": "strategic recommendations"
}}"""

    # ==================== HTTP ====================

    async def _call(self, prompt: str, system_prompt: str, max_tokens: Optional[int] = None) -> str:
        """Send one single-turn request and return the first text block."""
        if self.config.max_retries <= 1:
            return await self._post(prompt, system_prompt, max_tokens)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(
                multiplier=self.config.retry_backoff, min=2 * self.config.retry_backoff, max=10
            ),
            retry=retry_if_exception_type(LLMTransportError),
            reraise=True,
        ):
            with attempt:
                return await self._post(prompt, system_prompt, max_tokens)

    async def _post(self, prompt: str, system_prompt: str, max_tokens: Optional[int]) -> str:
        payload = {
            "model": self.config.model,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.config.anthropic_version,
            "content-type": "application/json",
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self.config.api_url, json=payload, headers=headers, timeout=self.config.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await client.post(self.config.api_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"LLM call timed out after {self.config.timeout}s")
            raise LLMTransportError(f"LLM call timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Error calling LLM API: {e}")
            raise LLMTransportError(f"Failed to call LLM: {e}") from e

        if not response.is_success:
            logger.error(f"LLM API returned {response.status_code}: {response.text[:200]}")
            raise LLMTransportError(
                f"LLM API returned HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise LLMTransportError(f"LLM API returned a non-JSON envelope: {e}") from e

        text = self._first_text(envelope)
        if not text or not text.strip():
            raise LLMTransportError("Empty response from LLM")

        self._record_usage(envelope)
        return text

    @staticmethod
    def _first_text(envelope: Any) -> Optional[str]:
        if not isinstance(envelope, dict):
            return None
        content = envelope.get("content")
        if not isinstance(content, list) or not content:
            return None
        first = content[0]
        if not isinstance(first, dict):
            return None
        text = first.get("text")
        return text if isinstance(text, str) else None

    def _record_usage(self, envelope: dict) -> None:
        usage = envelope.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        self.usage["calls"] += 1
        self.usage["input_tokens"] += int(usage.get("input_tokens") or 0)
        self.usage["output_tokens"] += int(usage.get("output_tokens") or 0)
        logger.debug(
            f"LLM call done (stop_reason={envelope.get('stop_reason')}, "
            f"in={usage.get('input_tokens')}, out={usage.get('output_tokens')})"
        )
