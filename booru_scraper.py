"""
Download every post matching a tag query from one of the supported boards,
resumably, then collect metadata and sidecars for what was saved.

    python booru_scraper.py --site gelbooru --tags yakumo_ran --extra-tags "fox_ears, solo"
"""
from __future__ import annotations

import asyncio
import atexit
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.prompt import Confirm, Prompt
from rich.table import Table

from booru_utils.crawler import (
    MAX_CONCURRENT_DOWNLOADS,
    MAX_REQ_PER_SECOND,
    CursorCrawler,
    DownloadOutcome,
    download_post,
    query_folder_name,
)
from booru_utils.errors import BooruError
from booru_utils.ratelimiter import RateLimiter
from booru_utils.resume import RESUME_FILE_NAME
from generate_gelbooru_metadata import (
    DEFAULT_OUTPUT_NAME,
    MetadataOptions,
    credentials_from_env,
    generate_metadata,
)
from providers import PROVIDERS, ProviderCore, create_provider

console = Console()
logger = logging.getLogger(__name__)

LOG_FILE = "booru_scraper.log"
DEFAULT_IMAGE_ROOT = "images"
SUGGESTION_COUNT = 10


def build_query(tag: str, extra_tags: Optional[str] = None) -> str:
    """Picked tag plus comma-separated extras, each with inner spaces turned into underscores."""
    tags = [tag.strip().replace(" ", "_")]
    for extra in (extra_tags or "").split(","):
        extra = extra.strip()
        if extra:
            tags.append(extra.replace(" ", "_"))
    return " ".join(t for t in tags if t)


def _suggestion_name(item: Dict[str, Any]) -> Optional[str]:
    return item.get("value") or item.get("tag") or item.get("name")


async def suggest_tags(provider: ProviderCore, term: str) -> List[Dict[str, Any]]:
    autocomplete = getattr(provider, "autocomplete", None)
    if autocomplete is None or not term:
        return []
    try:
        result = await autocomplete(term)
    except BooruError as e:
        logger.warning(f"Autocomplete for {term!r} failed: {e}")
        return []
    return [item for item in result.results if _suggestion_name(item)][:SUGGESTION_COUNT]


def pick_tag(provider: ProviderCore) -> str:
    """Ask for a search term and let the user choose among the board's suggestions."""
    term = Prompt.ask("Search for a tag", console=console).strip()
    suggestions = asyncio.run(suggest_tags(provider, term))
    if not suggestions:
        return term

    table = Table(title=f"Suggestions for {term!r}")
    table.add_column("#", style="cyan")
    table.add_column("Tag", style="white")
    table.add_column("Posts", style="green")
    for i, item in enumerate(suggestions, 1):
        table.add_row(str(i), _suggestion_name(item), str(item.get("post_count", item.get("count", "?"))))
    console.print(table)
    choice = Prompt.ask("Pick a number, or press enter to use the term as typed", default="", console=console)
    if choice.isdigit() and 1 <= int(choice) <= len(suggestions):
        return _suggestion_name(suggestions[int(choice) - 1])
    return term


async def probe_query(provider: ProviderCore, query: str) -> Optional[int]:
    """Number of matching posts: 0 when nothing matches, None when the board does not say."""
    result = await provider.search(query, {"limit": 1})
    if result.count is not None:
        return result.count
    return None if result.total_results else 0


async def crawl(crawler: CursorCrawler, expected: Optional[int]):
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task_id = progress.add_task(f"Downloading {crawler.query}", total=expected or None)

        def on_outcome(c: CursorCrawler, outcome: DownloadOutcome) -> None:
            progress.update(
                task_id,
                advance=1,
                description=f"Downloading {c.query} [dim](id:<{c.last_seen_id or '-'}, latest {outcome.numeric_id}, {outcome.rating})[/dim]",
            )
            if outcome.status == "error":
                console.print(f"[yellow]Skipped {outcome.numeric_id} ({outcome.error})[/yellow]")

        crawler.on_outcome = on_outcome
        return await crawler.run()


def run(args) -> int:
    login = credentials_from_env(args.site)
    provider = create_provider(args.site, url=args.url, login=login if login else None)
    if not login:
        console.print(f"[yellow]No {args.site.upper()}_USERNAME / {args.site.upper()}_API_KEY set, continuing anonymously[/yellow]")

    with provider:
        tag = args.tags or pick_tag(provider)
        extra = args.extra_tags
        if extra is None and not args.yes:
            extra = Prompt.ask("Enter any additional tags (comma-separated, optional)", default="", console=console)
        query = build_query(tag, extra)
        if not query:
            console.print("[red]No tag given.[/red]")
            return 1

        expected = asyncio.run(probe_query(provider, query))
        if expected == 0:
            console.print(f'[bold red]No results found for "{query}"[/bold red]')
            return 0
        if not args.yes and not Confirm.ask(
            f'Download images for "{query}"? This will download {expected if expected is not None else "all matching"} images.', console=console
        ):
            console.print("[bold red]Download canceled![/bold red]")
            return 0

        site_root = Path(args.root) / args.site
        save_root = site_root / query_folder_name(query)
        session = provider.http.session

        async def worker(post):
            return await download_post(post, save_root, session=session)

        crawler = CursorCrawler(
            provider,
            query,
            save_root / RESUME_FILE_NAME,
            worker,
            limiter=RateLimiter(args.rate, args.concurrency),
            search_options={"limit": args.limit},
        )
        previous = crawler.restore()
        crawler.persist()
        atexit.register(crawler.persist)

        config = Table(title=f"{provider.name} Downloader", show_header=False)
        config.add_column("Key", style="cyan")
        config.add_column("Value", style="white")
        config.add_row("Search term", query)
        config.add_row("Save location", str(save_root))
        config.add_row("Rate", f"{args.rate} req/s, {args.concurrency} concurrent")
        console.print(config)
        if crawler.gap_fill:
            console.print(f"[cyan]Previous crawl finished ({previous.updated_at}). Checking for new uploads since that run.[/cyan]")
        elif crawler.resumed_from is not None:
            console.print(
                f"[yellow]Continuing from last processed id {crawler.resumed_from}. "
                f"Already downloaded {crawler.total_images} images.[/yellow]"
            )

        start = time.monotonic()
        summary = asyncio.run(crawl(crawler, expected))
        elapsed = max(time.monotonic() - start, 0.001)

        if summary.downloaded == 0 and summary.skipped == 0:
            console.print(f"[bold red]No images found for search term: {query}[/bold red]")
        else:
            console.print(f"[bold green]Finished! Downloaded {summary.downloaded} new images total.[/bold green]")
            console.print(f"[bold green]Skipped {summary.skipped} items (existing or errored).[/bold green]")
            console.print(f"[bold green]Time taken: {int(elapsed // 60)}m {int(elapsed % 60)}s, {summary.downloaded / elapsed:.2f} images/s[/bold green]")
        logger.info(f"Crawl of {query!r} done: {summary}")

        if not args.no_metadata:
            console.print("[bold cyan]\nGenerating metadata and XMP sidecars for this query...[/bold cyan]")
            options = MetadataOptions(
                root_dir=str(save_root),
                output_file=str(save_root / DEFAULT_OUTPUT_NAME),
                write_xmp=True,
                mode="single",
                search_query=query,
                site=args.site,
            )
            try:
                result = asyncio.run(generate_metadata(options, provider))
                console.print(f"[bold green]Metadata ready ({result.total_records} records, {len(result.missing_ids)} missing).[/bold green]")
            except (BooruError, OSError, ValueError) as e:
                logger.error(f"Metadata generation failed: {e}")
                console.print(f"[bold red]Metadata generation failed: {e}[/bold red]")
    return 0


if __name__ == "__main__":
    import argparse

    logging.basicConfig(filename=LOG_FILE, level=logging.INFO, format="%(asctime)s - %(message)s")

    parser = argparse.ArgumentParser(description="Download posts matching a tag query from an image board")
    parser.add_argument("--site", type=str, choices=sorted(PROVIDERS), default="gelbooru", help="Which board to crawl")
    parser.add_argument("--url", type=str, help="Base URL override (mirrors, self-hosted boards)")
    parser.add_argument("--tags", type=str, help="The tag to download; prompted for when missing")
    parser.add_argument("--extra-tags", type=str, help="Additional comma-separated tags")
    parser.add_argument("--root", type=str, default=DEFAULT_IMAGE_ROOT, help="Root directory for downloads")
    parser.add_argument("--limit", type=int, default=100, help="Posts per page")
    parser.add_argument("--rate", type=float, default=MAX_REQ_PER_SECOND, help="Max download starts per second")
    parser.add_argument("--concurrency", type=int, default=MAX_CONCURRENT_DOWNLOADS, help="Max concurrent downloads")
    parser.add_argument("--yes", action="store_true", help="Skip confirmation prompts")
    parser.add_argument("--no-metadata", action="store_true", help="Skip the metadata pass after downloading")
    args = parser.parse_args()

    try:
        sys.exit(run(args))
    except KeyboardInterrupt:
        console.print("[bold red]\nCancelled by user.[/bold red]")
        sys.exit(0)
    except BooruError as e:
        logger.error(f"Run failed: {e}")
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
