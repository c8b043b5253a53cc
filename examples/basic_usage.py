"""
NichePress - Basic Usage Example

Before running, set your API key:
    export NICHEPRESS_LLM_API_KEY='your-api-key'

Run from project root:
    python examples/basic_usage.py
"""

import asyncio
import os

from nichepress import (
    InMemoryGraphStore,
    KeywordDiscoveryEngine,
    LLMConfig,
    LLMGateway,
    Niche,
    OrchestrationPipeline,
    SuggestionClient,
)


async def main():
    # Check API key
    if not (os.getenv("NICHEPRESS_LLM_API_KEY") or os.getenv("ANTHROPIC_API_KEY")):
        print("Error: Set NICHEPRESS_LLM_API_KEY environment variable")
        print("  export NICHEPRESS_LLM_API_KEY='your-key'")
        return

    # Everything lives in memory for this run
    store = InMemoryGraphStore()
    niche = store.add_niche(
        Niche(
            name="home coffee",
            description="Brewing specialty coffee at home",
            seed_keywords=["cold brew", "pour over"],
        )
    )

    pipeline = OrchestrationPipeline(
        store,
        KeywordDiscoveryEngine(SuggestionClient(), store),
        LLMGateway(LLMConfig.from_env()),
    )

    print(f"\n🔑 Exploring keywords for {niche.name}...")
    print(f"   Seeds: {', '.join(niche.seed_keywords)}\n")

    # Discovery + qualification only, one level deep
    result = await pipeline.explore_keywords_only(niche.id, [], depth=1)
    print(f"✓ Discovered {result.keywords_discovered}, saved {result.keywords_saved}")
    print(f"  Qualified: {result.keywords_qualified}")

    print("\n📊 Top unwritten keywords:")
    for node in store.find_unwritten_qualified(niche.id)[:10]:
        print(f"  [{node.qualification_score:.1f}] {node.keyword} (depth {node.depth_level})")

    # Full daily run: picks a keyword and writes one article
    print("\n📝 Running the daily workflow...")
    log = await pipeline.run_daily_workflow(niche.id)
    print(f"✓ Done in {log.duration_ms / 1000:.1f}s, {log.articles_generated} article(s) generated")

    for article in store.find_articles_by_niche(niche.id):
        print(f"\n  {article.title}")
        print(f"  {article.meta_description}")
        print(f"  {article.word_count} words")

    print(f"\n{log.notes}")


if __name__ == "__main__":
    asyncio.run(main())
