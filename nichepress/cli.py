"""
NichePress CLI - drive the keyword exploration and content pipeline from the command line.
"""

import asyncio
import logging
import os
import sys
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import LLMConfig, PacingConfig
from .discovery import KeywordDiscoveryEngine
from .exceptions import NicheNotFoundError, NichePressError
from .llm_gateway import LLMGateway
from .models import KeywordStatus, Niche
from .pipeline import OrchestrationPipeline, collect_niche_stats
from .scheduler import NicheBatchRunner
from .store import JsonFileGraphStore, KeywordGraphStore
from .suggest_client import SuggestionClient

console = Console()

DEFAULT_STORE_PATH = "nichepress_store.json"


def setup_logging(verbose: bool):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_pipeline(store: KeywordGraphStore, pacing: Optional[PacingConfig] = None) -> OrchestrationPipeline:
    """Wire the suggestion client, discovery engine and LLM gateway around a store."""
    pacing = pacing or PacingConfig()
    gateway = LLMGateway(LLMConfig.from_env())
    discovery = KeywordDiscoveryEngine(SuggestionClient(), store, pacing=pacing)
    return OrchestrationPipeline(store, discovery, gateway, pacing=pacing)


def _run_with_spinner(description: str, coro):
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(description, total=None)
        return asyncio.run(coro)


def _fail(e: Exception):
    console.print(f"[red]Error: {e}[/red]")
    sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--store",
    "store_path",
    envvar="NICHEPRESS_STORE",
    default=DEFAULT_STORE_PATH,
    show_default=True,
    help="Path of the JSON store file",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx: click.Context, store_path: str, verbose: bool):
    """
    NichePress - automated keyword exploration and SEO article generation.

    Grows a keyword forest per niche from autocomplete suggestions, qualifies
    it with an LLM, and writes one article per daily run.
    """
    load_dotenv()
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["store_path"] = store_path


def _store(ctx: click.Context) -> JsonFileGraphStore:
    return JsonFileGraphStore(ctx.obj["store_path"])


# ==================== NICHES ====================

@main.group()
def niche():
    """Manage niches."""


@niche.command("add")
@click.argument("name")
@click.option("--description", "-d", default="", help="What the niche is about")
@click.option("--seeds", "-s", required=True, help="Seed keywords (comma-separated)")
@click.pass_context
def niche_add(ctx: click.Context, name: str, description: str, seeds: str):
    """Create a niche with its seed keywords."""
    try:
        created = _store(ctx).add_niche(Niche(name=name, description=description, seed_keywords=seeds))
    except NichePressError as e:
        _fail(e)
    console.print(f"[green]✓ Created niche '{created.name}' (ID: {created.id})[/green]")
    console.print(f"  Seeds: {', '.join(created.seed_keywords)}")


@niche.command("list")
@click.pass_context
def niche_list(ctx: click.Context):
    """List all niches."""
    niches = _store(ctx).list_niches()
    if not niches:
        console.print("[yellow]No niches yet. Create one with: nichepress niche add NAME -s 'seed1,seed2'[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Seeds", style="green")
    table.add_column("Description")
    for n in niches:
        table.add_row(str(n.id), n.name, ", ".join(n.seed_keywords), n.description or "-")
    console.print(table)


@niche.command("update")
@click.argument("niche_id", type=int)
@click.option("--name", "-n", default=None, help="New niche name")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--seeds", "-s", default=None, help="Replacement seed keywords (comma-separated)")
@click.pass_context
def niche_update(
    ctx: click.Context,
    niche_id: int,
    name: Optional[str],
    description: Optional[str],
    seeds: Optional[str],
):
    """Change a niche's name, description or seed keywords."""
    store = _store(ctx)
    current = store.get_niche(niche_id)
    if current is None:
        _fail(NicheNotFoundError(niche_id))

    changes = {}
    if name is not None:
        changes["name"] = name
    if description is not None:
        changes["description"] = description
    if seeds is not None:
        changes["seed_keywords"] = seeds
    if not changes:
        console.print("[yellow]Nothing to update. Pass --name, --description or --seeds.[/yellow]")
        return

    try:
        updated = store.update_niche(Niche.model_validate({**current.model_dump(), **changes}))
    except (NichePressError, ValueError) as e:
        _fail(e)
    console.print(f"[green]✓ Updated niche '{updated.name}' (ID: {updated.id})[/green]")
    console.print(f"  Seeds: {', '.join(updated.seed_keywords)}")


@niche.command("remove")
@click.argument("niche_id", type=int)
@click.confirmation_option(prompt="Delete the niche with all its keywords, articles and logs?")
@click.pass_context
def niche_remove(ctx: click.Context, niche_id: int):
    """Delete a niche and everything it owns."""
    try:
        _store(ctx).delete_niche(niche_id)
    except NichePressError as e:
        _fail(e)
    console.print(f"[green]✓ Deleted niche {niche_id}[/green]")


# ==================== WORKFLOW TRIGGERS ====================

@main.command()
@click.argument("niche_id", type=int, required=False)
@click.option("--all", "run_all", is_flag=True, help="Run every niche sequentially")
@click.pass_context
def run(ctx: click.Context, niche_id: Optional[int], run_all: bool):
    """
    Run the daily workflow for a niche (or all niches).

    Examples:

        nichepress run 1

        nichepress run --all
    """
    if niche_id is None and not run_all:
        _fail(click.UsageError("Pass a NICHE_ID or --all"))

    store = _store(ctx)
    try:
        pipeline = build_pipeline(store)
    except ValueError as e:
        _fail(e)

    if run_all:
        report = _run_with_spinner("Running all niches...", NicheBatchRunner(pipeline).run_all())
        for outcome in report.outcomes:
            mark = "[green]✓[/green]" if outcome.success else "[red]✗[/red]"
            detail = "" if outcome.success else f" - {outcome.error}"
            console.print(f"  {mark} {outcome.niche_name}{detail}")
        if report.failed:
            sys.exit(1)
        return

    try:
        log = _run_with_spinner("Running daily workflow...", pipeline.run_daily_workflow(niche_id))
    except NichePressError as e:
        _fail(e)

    console.print(f"\n[green]✓ Workflow completed in {log.duration_ms / 1000:.1f}s[/green]")
    console.print(f"  Strategy: {log.strategy}")
    console.print(f"  Keywords discovered: {log.keywords_discovered}")
    console.print(f"  Keywords qualified: {log.keywords_qualified}")
    console.print(f"  Articles generated: {log.articles_generated}")
    console.print(f"\n[dim]{log.notes}[/dim]")


@main.command()
@click.argument("niche_id", type=int)
@click.option("--seeds", "-s", default=None, help="Seed keywords (comma-separated, default: niche seeds)")
@click.option("--depth", "-d", default=0, show_default=True, help="Exploration depth")
@click.option("--alphabet", is_flag=True, help="Also widen each seed with alphabet soup queries")
@click.pass_context
def explore(ctx: click.Context, niche_id: int, seeds: Optional[str], depth: int, alphabet: bool):
    """Discover and qualify keywords without writing an article."""
    store = _store(ctx)
    try:
        pipeline = build_pipeline(store)
        seed_list = seeds.split(",") if seeds else []
        result = _run_with_spinner(
            "Exploring keywords...",
            pipeline.explore_keywords_only(niche_id, seed_list, depth, alphabet_soup=alphabet),
        )
    except (NichePressError, ValueError) as e:
        _fail(e)

    console.print("\n[green]✓ Keywords explored successfully[/green]")
    console.print(f"  Discovered: {result.keywords_discovered}")
    console.print(f"  Qualified: {result.keywords_qualified}")
    console.print(f"  Saved: {result.keywords_saved}")


@main.command()
@click.argument("keyword_id", type=int)
@click.pass_context
def write(ctx: click.Context, keyword_id: int):
    """Generate the article for one specific keyword."""
    store = _store(ctx)
    try:
        pipeline = build_pipeline(store)
        article = _run_with_spinner("Writing article...", pipeline.generate_article_for_keyword(keyword_id))
    except (NichePressError, ValueError) as e:
        _fail(e)

    console.print(f"\n[green]✓ {article.title}[/green]")
    console.print(f"  {article.meta_description}")
    console.print(f"  Words: {article.word_count}")


# ==================== INSPECTION ====================

@main.command()
@click.argument("niche_id", type=int)
@click.pass_context
def stats(ctx: click.Context, niche_id: int):
    """Show keyword and article totals for a niche."""
    store = _store(ctx)
    try:
        summary = collect_niche_stats(store, niche_id)
    except NichePressError as e:
        _fail(e)

    console.print(f"\n[bold blue]📊 {store.get_niche(niche_id).name}[/bold blue]")
    console.print(f"  Keywords: {summary.total_keywords}")
    console.print(f"    unwritten: {summary.unwritten_keywords}")
    console.print(f"    written: {summary.written_keywords}")
    console.print(f"    rejected: {summary.rejected_keywords}")
    console.print(f"  Max depth: {summary.max_depth_level}")
    console.print(f"  Articles: {summary.total_articles}")
    console.print(f"  Average score: {summary.average_qualification_score:.1f}")

    logs = summary.recent_runs
    if logs:
        console.print("\n[bold]Recent runs:[/bold]")
        table = Table(show_header=True, header_style="bold")
        table.add_column("Date")
        table.add_column("OK", justify="center")
        table.add_column("Discovered", justify="right")
        table.add_column("Qualified", justify="right")
        table.add_column("Articles", justify="right")
        table.add_column("Error", style="red")
        for log in logs:
            table.add_row(
                log.executed_at.strftime("%Y-%m-%d %H:%M"),
                "✅" if log.success else "❌",
                str(log.keywords_discovered),
                str(log.keywords_qualified),
                str(log.articles_generated),
                log.error_message or "",
            )
        console.print(table)


@main.command()
@click.argument("niche_id", type=int)
@click.option(
    "--status",
    type=click.Choice([s.value for s in KeywordStatus], case_sensitive=False),
    default=None,
    help="Only keywords with this status",
)
@click.option("--depth", type=int, default=None, help="Only keywords at this depth")
@click.option("--limit", "-n", default=50, show_default=True, help="Rows to show")
@click.pass_context
def keywords(ctx: click.Context, niche_id: int, status: Optional[str], depth: Optional[int], limit: int):
    """List the keyword forest of a niche."""
    store = _store(ctx)
    nodes = store.find_keywords_by_niche(
        niche_id,
        status=KeywordStatus(status.upper()) if status else None,
        depth=depth,
    )
    if not nodes:
        console.print("[yellow]No keywords found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Keyword", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Depth", justify="right")
    table.add_column("Parent", justify="right")
    table.add_column("Status", style="green")
    for node in sorted(nodes, key=lambda n: -(n.qualification_score or 0))[:limit]:
        table.add_row(
            str(node.id),
            node.keyword,
            f"{node.qualification_score:.1f}" if node.qualification_score is not None else "-",
            str(node.depth_level),
            str(node.parent_id) if node.parent_id is not None else "-",
            node.status.value,
        )
    console.print(table)


@main.command()
@click.argument("niche_id", type=int)
@click.option("--show", "show_id", type=int, default=None, help="Print the full article with this ID")
@click.pass_context
def articles(ctx: click.Context, niche_id: int, show_id: Optional[int]):
    """List the articles generated for a niche, newest first."""
    store = _store(ctx)
    if store.get_niche(niche_id) is None:
        _fail(NicheNotFoundError(niche_id))

    found = store.find_articles_by_niche(niche_id)
    if show_id is not None:
        article = next((a for a in found if a.id == show_id), None)
        if article is None:
            _fail(click.BadParameter(f"No article {show_id} in niche {niche_id}"))
        console.print(f"\n[bold]{article.title}[/bold]")
        console.print(f"[dim]{article.meta_description}[/dim]\n")
        console.print(article.body, markup=False)
        return

    if not found:
        console.print("[yellow]No articles yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Keyword", style="green")
    table.add_column("Words", justify="right")
    table.add_column("Created")
    for article in found:
        table.add_row(
            str(article.id),
            article.title,
            article.keyword,
            str(article.word_count),
            article.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@main.command()
@click.argument("niche_id", type=int)
@click.option("--limit", "-n", default=10, show_default=True, help="Runs to show")
@click.pass_context
def logs(ctx: click.Context, niche_id: int, limit: int):
    """Show the most recent workflow runs of a niche."""
    store = _store(ctx)
    if store.get_niche(niche_id) is None:
        _fail(NicheNotFoundError(niche_id))

    runs = store.find_recent_logs(niche_id, limit=limit)
    if not runs:
        console.print("[yellow]No runs yet.[/yellow]")
        return

    for log in runs:
        mark = "[green]✓[/green]" if log.success else "[red]✗[/red]"
        console.print(f"\n{mark} {log.executed_at.strftime('%Y-%m-%d %H:%M')}  {escape(log.strategy)}")
        console.print(
            f"  discovered: {log.keywords_discovered} | qualified: {log.keywords_qualified} | "
            f"articles: {log.articles_generated} | {log.duration_ms}ms"
        )
        if log.error_message:
            console.print(f"  [red]{escape(log.error_message)}[/red]")
        console.print(f"  [dim]{escape(log.notes)}[/dim]")


@main.command()
def check():
    """
    Check API key configuration.
    """
    console.print("\n[bold blue]🔑 NichePress - Configuration Check[/bold blue]\n")

    config = LLMConfig.from_env()
    if config.api_key:
        console.print(f"  [green]✓[/green] LLM API key: Set ({config.api_key[:8]}...)")
    else:
        console.print("  [red]✗[/red] LLM API key: Not set")
    console.print(f"  Model: {config.model}")
    console.print(f"  Endpoint: {config.api_url}")
    console.print(f"  Store: {os.getenv('NICHEPRESS_STORE', DEFAULT_STORE_PATH)}")

    if not config.api_key:
        console.print("\n[bold]Setup Instructions:[/bold]")
        console.print("  export NICHEPRESS_LLM_API_KEY='your-api-key'")


if __name__ == "__main__":
    main()
