"""Tests for the LLM gateway."""

import json

import httpx
import pytest

from nichepress import (
    Article,
    KeywordNode,
    KeywordStatus,
    LLMConfig,
    LLMGateway,
    LLMTransportError,
    Niche,
)
from nichepress.llm_gateway import parse_json_payload

from conftest import llm_envelope

NICHE = Niche(id=1, name="coffee", description="Brewing coffee at home", seed_keywords=["cold brew", "espresso"])


def _node(keyword, score, depth=0, node_id=None):
    return KeywordNode(
        id=node_id,
        keyword=keyword,
        niche_id=1,
        depth_level=depth,
        qualification_score=score,
        status=KeywordStatus.UNWRITTEN,
    )


class FakeLLM:
    """Records requests and answers with queued texts (or a fixed text)."""

    def __init__(self, *texts, status_code=200):
        self.texts = list(texts)
        self.status_code = status_code
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="overloaded")
        text = self.texts.pop(0) if len(self.texts) > 1 else self.texts[0]
        return httpx.Response(200, json=llm_envelope(text))

    @property
    def bodies(self):
        return [json.loads(r.content) for r in self.requests]


def _gateway(handler, config):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LLMGateway(config, http_client=http)


class TestParseJsonPayload:
    def test_plain(self):
        assert parse_json_payload('{"a": 1}') == {"a": 1}

    def test_fenced(self):
        assert parse_json_payload('```json\n[{"a": 1}]\n```') == [{"a": 1}]

    def test_bare_fence(self):
        assert parse_json_payload('```\n{"a": 1}\n```') == {"a": 1}

    def test_prose_fails(self):
        with pytest.raises(ValueError):
            parse_json_payload("Sure! Here is your JSON.")


class TestGatewayInit:
    def test_api_key_required(self):
        with pytest.raises(ValueError):
            LLMGateway(LLMConfig(api_key=None))

    def test_config_from_env(self, monkeypatch):
        monkeypatch.delenv("NICHEPRESS_LLM_API_KEY", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")
        monkeypatch.setenv("NICHEPRESS_LLM_MAX_RETRIES", "3")
        config = LLMConfig.from_env(model="claude-test")
        assert config.api_key == "env-key"
        assert config.max_retries == 3
        assert config.model == "claude-test"


class TestRequestShape:
    @pytest.mark.asyncio
    async def test_headers_and_body(self, llm_config):
        llm = FakeLLM('{"summary": "ok", "nextSteps": "more"}')
        gateway = _gateway(llm, llm_config)

        await gateway.summarize(3, 2, 1, NICHE, [])

        request = llm.requests[0]
        assert str(request.url) == "https://llm.test/v1/messages"
        assert request.headers["x-api-key"] == "test-key"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert request.headers["content-type"] == "application/json"

        body = llm.bodies[0]
        assert body["model"] == llm_config.model
        assert body["max_tokens"] == 4096
        assert body["temperature"] == 0.7
        assert "JSON" in body["system"]
        assert body["messages"] == [{"role": "user", "content": body["messages"][0]["content"]}]
        assert "Keywords discovered: 3" in body["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_article_uses_larger_budget(self, llm_config):
        llm = FakeLLM('{"title": "T", "metaDescription": "M", "content": "<p>x</p>", "estimatedWordCount": 1}')
        gateway = _gateway(llm, llm_config)

        await gateway.generate_article(_node("cold brew ratio", 8.0), NICHE)

        assert llm.bodies[0]["max_tokens"] == 8000

    @pytest.mark.asyncio
    async def test_usage_tracked(self, llm_config):
        llm = FakeLLM('{"summary": "ok"}')
        gateway = _gateway(llm, llm_config)

        await gateway.summarize(0, 0, 0, NICHE, [])
        await gateway.summarize(0, 0, 0, NICHE, [])

        assert gateway.usage == {"input_tokens": 20, "output_tokens": 40, "calls": 2}

    @pytest.mark.asyncio
    async def test_malformed_usage_counts_no_tokens(self, llm_config):
        def handler(request):
            return httpx.Response(
                200,
                json={"content": [{"type": "text", "text": '{"summary": "ok"}'}], "usage": ["bad"]},
            )

        gateway = _gateway(handler, llm_config)
        summary = await gateway.summarize(0, 0, 0, NICHE, [])

        assert summary.summary == "ok"
        assert gateway.usage == {"input_tokens": 0, "output_tokens": 0, "calls": 1}


class TestDecideStrategy:
    @pytest.mark.asyncio
    async def test_parsed(self, llm_config):
        llm = FakeLLM(
            '{"strategy": "explore_deeper", "seedKeywordsToExplore": ["cold brew ratio"], '
            '"reasoning": "strong branch", "targetDepthLevel": 2}'
        )
        decision = await _gateway(llm, llm_config).decide_strategy(NICHE, [_node("cold brew ratio", 8)])

        assert decision.strategy == "explore_deeper"
        assert decision.seed_keywords_to_explore == ["cold brew ratio"]
        assert decision.target_depth_level == 2
        assert decision.is_fallback is False
        assert "cold brew ratio (depth: 0, score: 8.0)" in llm.bodies[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_first_run_prompt(self, llm_config):
        llm = FakeLLM('{"strategy": "explore_new"}')
        await _gateway(llm, llm_config).decide_strategy(NICHE, [])
        assert "initial exploration" in llm.bodies[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_fallback(self, llm_config):
        decision = await _gateway(FakeLLM("I think you should explore."), llm_config).decide_strategy(NICHE, [])

        assert decision.is_fallback is True
        assert decision.strategy == "explore_seed_keywords"
        assert decision.seed_keywords_to_explore == ["cold brew", "espresso"]
        assert decision.target_depth_level == 1


class TestQualify:
    @pytest.mark.asyncio
    async def test_parsed_and_matched(self, llm_config):
        answer = json.dumps(
            [
                {"keyword": "Cold Brew Ratio", "relevant": True, "overlapsExisting": False, "score": 8.5, "reasoning": "high intent"},
                {"keyword": "cold brew ratio", "relevant": True, "overlapsExisting": False, "score": 2, "reasoning": "dupe"},
                {"keyword": "invented phrase", "relevant": True, "overlapsExisting": False, "score": 9, "reasoning": "?"},
                {"keyword": "cold brew maker", "relevant": False, "overlapsExisting": False, "score": 4, "reasoning": "gear"},
            ]
        )
        result = await _gateway(FakeLLM(answer), llm_config).qualify(
            ["cold brew ratio", "cold brew maker"], NICHE, []
        )

        assert [(q.keyword, q.score) for q in result] == [("cold brew ratio", 8.5), ("cold brew maker", 4)]
        assert all(not q.is_fallback for q in result)

    @pytest.mark.asyncio
    async def test_malformed_rejects_whole_batch(self, llm_config):
        result = await _gateway(FakeLLM('[{"keyword": "cold brew ratio"'), llm_config).qualify(
            ["cold brew ratio", "cold brew maker"], NICHE, []
        )

        assert [q.keyword for q in result] == ["cold brew ratio", "cold brew maker"]
        for q in result:
            assert q.is_fallback is True
            assert q.relevant is False
            assert q.overlaps_existing is True
            assert q.score == 3.0

    @pytest.mark.asyncio
    async def test_object_instead_of_array(self, llm_config):
        result = await _gateway(FakeLLM('{"keyword": "cold brew ratio"}'), llm_config).qualify(
            ["cold brew ratio"], NICHE, []
        )
        assert result[0].is_fallback is True

    @pytest.mark.asyncio
    async def test_batch_limit(self, llm_config):
        llm = FakeLLM("[]")
        with pytest.raises(ValueError):
            await _gateway(llm, llm_config).qualify([f"kw {i}" for i in range(21)], NICHE, [])
        assert llm.requests == []

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_call(self, llm_config):
        llm = FakeLLM("[]")
        assert await _gateway(llm, llm_config).qualify([], NICHE, []) == []
        assert llm.requests == []


class TestSelectBest:
    @pytest.mark.asyncio
    async def test_parsed(self, llm_config):
        llm = FakeLLM('{"selectedKeyword": "cold brew maker", "reasoning": "gap", "contentAngle": "buyer guide"}')
        selection = await _gateway(llm, llm_config).select_best(
            [_node("cold brew ratio", 9), _node("cold brew maker", 7)], NICHE
        )
        assert selection.selected_keyword == "cold brew maker"
        assert selection.content_angle == "buyer guide"

    @pytest.mark.asyncio
    async def test_fallback_picks_highest_first_on_ties(self, llm_config):
        candidates = [_node("a", 7), _node("b", 9), _node("c", 9)]
        selection = await _gateway(FakeLLM("nope"), llm_config).select_best(candidates, NICHE)

        assert selection.is_fallback is True
        assert selection.selected_keyword == "b"

    @pytest.mark.asyncio
    async def test_empty_candidates(self, llm_config):
        with pytest.raises(ValueError):
            await _gateway(FakeLLM("{}"), llm_config).select_best([], NICHE)


class TestCheckSimilarity:
    @pytest.mark.asyncio
    async def test_parsed(self, llm_config):
        llm = FakeLLM(
            '{"similar": true, "reasoning": "same topic", "similarityScore": 0.9, '
            '"overlappingArticles": ["Cold Brew 101"]}'
        )
        existing = [Article(id=1, keyword_id=1, keyword="cold brew", niche_id=1, title="Cold Brew 101")]
        check = await _gateway(llm, llm_config).check_similarity("cold brew basics", existing)

        assert check.blocks_generation() is True
        assert check.overlapping_articles == ["Cold Brew 101"]
        assert "Title: Cold Brew 101 | Keyword: cold brew" in llm.bodies[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_fallback_never_blocks(self, llm_config):
        check = await _gateway(FakeLLM("maybe?"), llm_config).check_similarity("cold brew basics", [])

        assert check.is_fallback is True
        assert check.similar is False
        assert check.similarity_score == 0.5
        assert check.blocks_generation() is False


class TestGenerateArticle:
    @pytest.mark.asyncio
    async def test_fallback(self, llm_config):
        content = await _gateway(FakeLLM("<html>"), llm_config).generate_article(
            _node("cold brew ratio", 8), NICHE
        )
        assert content.is_fallback is True
        assert content.title == "Guide to cold brew ratio"
        assert content.meta_description == "Learn everything about cold brew ratio"
        assert content.body == "Article generation failed. Please try again."


class TestSummarize:
    @pytest.mark.asyncio
    async def test_fallback(self, llm_config):
        summary = await _gateway(FakeLLM("done"), llm_config).summarize(12, 5, 1, NICHE, [])

        assert summary.is_fallback is True
        assert summary.summary == (
            "Daily workflow completed for coffee: 12 keywords discovered, 5 qualified, 1 articles generated"
        )
        assert summary.next_steps == "Continue keyword exploration"


class TestTransportErrors:
    """Transport failures are raised, never turned into fallbacks."""

    @pytest.mark.asyncio
    async def test_non_success_status(self, llm_config):
        with pytest.raises(LLMTransportError) as exc_info:
            await _gateway(FakeLLM("{}", status_code=529), llm_config).decide_strategy(NICHE, [])
        assert exc_info.value.status_code == 529

    @pytest.mark.asyncio
    async def test_timeout(self, llm_config):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(LLMTransportError):
            await _gateway(handler, llm_config).check_similarity("cold brew", [])

    @pytest.mark.asyncio
    async def test_unreachable(self, llm_config):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LLMTransportError):
            await _gateway(handler, llm_config).summarize(0, 0, 0, NICHE, [])

    @pytest.mark.asyncio
    async def test_empty_content(self, llm_config):
        def handler(request):
            return httpx.Response(200, json={"content": [], "usage": {}})

        with pytest.raises(LLMTransportError, match="Empty response"):
            await _gateway(handler, llm_config).select_best([_node("a", 7)], NICHE)

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self, llm_config):
        llm = FakeLLM("{}", status_code=500)
        with pytest.raises(LLMTransportError):
            await _gateway(llm, llm_config).decide_strategy(NICHE, [])
        assert len(llm.requests) == 1

    @pytest.mark.asyncio
    async def test_retries_when_configured(self):
        config = LLMConfig(api_key="test-key", max_retries=3, retry_backoff=0)
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json=llm_envelope('{"summary": "recovered"}'))

        summary = await _gateway(handler, config).summarize(0, 0, 0, NICHE, [])

        assert summary.summary == "recovered"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        config = LLMConfig(api_key="test-key", max_retries=2, retry_backoff=0)
        llm = FakeLLM("{}", status_code=502)

        with pytest.raises(LLMTransportError):
            await _gateway(llm, config).summarize(0, 0, 0, NICHE, [])
        assert len(llm.requests) == 2
