"""
Collect metadata for already-downloaded posts and write a JSON bundle plus
per-file XMP sidecars.

    python generate_gelbooru_metadata.py --root images/gelbooru --query "yakumo_ran"
    python generate_gelbooru_metadata.py --root images/gelbooru --crawl
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
from rich.console import Console
from rich.prompt import Confirm, Prompt
from tqdm import tqdm

from booru_utils.crawler import folder_query, query_folder_name
from booru_utils.errors import BooruError, LoginRequired
from booru_utils.local_files import collect_grouped_images, group_images_by_query
from booru_utils.ratelimiter import RateLimiter
from booru_utils.reconciler import (
    METADATA_MAX_CONCURRENT,
    METADATA_REQ_PER_SECOND,
    QueryWorkload,
    reconcile_workload,
)
from booru_utils.resume import utc_now_iso
from booru_utils.xmp import XmpStats, XmpWriter
from providers import PROVIDERS, LoginDetails, create_provider

console = Console()
logger = logging.getLogger(__name__)

LOG_FILE = "metadata.log"
DEFAULT_SITE = "gelbooru"
DEFAULT_ROOT = os.path.join("images", "gelbooru")
DEFAULT_OUTPUT_NAME = "gelbooru_metadata.json"
BUNDLE_VERSION = 3


@dataclass
class MetadataOptions:
    root_dir: str
    output_file: str
    write_xmp: bool = True
    mode: str = "single"  # "single" | "crawl"
    search_query: Optional[str] = None
    site: str = DEFAULT_SITE


@dataclass
class MetadataRunResult:
    output_file: str
    total_records: int
    missing_ids: List[int]
    xmp_stats: Optional[XmpStats]
    root_dir: str


def credentials_from_env(site: str) -> LoginDetails:
    prefix = site.upper()
    return LoginDetails(os.getenv(f"{prefix}_USERNAME"), os.getenv(f"{prefix}_API_KEY"))


def assert_credentials(site: str) -> LoginDetails:
    login = credentials_from_env(site)
    if not (login.username and login.api_key):
        prefix = site.upper()
        raise LoginRequired(f"Missing {prefix}_USERNAME or {prefix}_API_KEY in the environment")
    return login


def build_workloads(options: MetadataOptions, grouped) -> List[QueryWorkload]:
    by_query = group_images_by_query(grouped)
    if options.mode == "crawl":
        unassigned = by_query.get("", {})
        if unassigned:
            console.print(f"[yellow]Skipping {len(unassigned)} ids that are not inside a query folder while crawling.[/yellow]")
        return [QueryWorkload(folder_query(folder), groups) for folder, groups in sorted(by_query.items()) if folder.strip()]

    query = options.search_query
    groups = by_query.get(query)
    if groups is None:
        groups = by_query.get(query_folder_name(query))
    if groups is None:
        console.print(f'[yellow]No files under a query folder named "{query}". Processing all {len(grouped)} ids instead.[/yellow]')
        groups = grouped
    return [QueryWorkload(query, groups)]


def _elapsed(start: float) -> str:
    seconds = int(time.monotonic() - start)
    return f"{seconds // 60} minutes and {seconds % 60} seconds"


async def generate_metadata(options: MetadataOptions, provider: Any = None) -> MetadataRunResult:
    """Scan, reconcile every workload, write sidecars as records arrive and save the bundle."""
    if provider is None:
        with create_provider(options.site, login=assert_credentials(options.site)) as owned:
            return await generate_metadata(options, owned)

    root_dir = str(Path(options.root_dir).resolve())
    output_file = str(Path(options.output_file).resolve())
    search_query = (options.search_query or "").strip() if options.mode == "single" else None
    if options.mode == "single" and not search_query:
        raise ValueError("A search query is required when running in single-query mode.")
    options.search_query = search_query

    console.print(f"[dim]Scanning directory: {root_dir}[/dim]")
    grouped = collect_grouped_images(root_dir)
    total_files = sum(len(files) for files in grouped.values())
    if not grouped:
        console.print("[yellow]No matching images were found. Filenames must be numeric post ids.[/yellow]")
        return MetadataRunResult(output_file, 0, [], None, root_dir)
    console.print(f"[green]Found {total_files} files covering {len(grouped)} unique ids.[/green]")

    workloads = build_workloads(options, grouped)
    if not workloads:
        console.print("[red]No query folders were found under the specified root directory.[/red]")
        return MetadataRunResult(output_file, 0, [], None, root_dir)

    limiter = RateLimiter(METADATA_REQ_PER_SECOND, METADATA_MAX_CONCURRENT)
    writer = XmpWriter(root_dir) if options.write_xmp else None
    records = []
    missing_ids: List[int] = []
    summaries: List[Dict[str, Any]] = []
    start = time.monotonic()

    for workload in workloads:
        console.print(f'[dim]Processing query "{workload.query}" ({len(workload.groups)} unique ids)[/dim]')
        with tqdm(total=len(workload.groups), desc=f"Fetching metadata ({workload.query})", unit="id") as pbar:
            result = await reconcile_workload(
                provider,
                workload,
                limiter,
                on_record=writer.process_record if writer else None,
                on_progress=pbar.update,
            )
        records.extend(result.records)
        missing_ids.extend(result.missing_ids)
        summaries.append(result.summary.to_json())
        missing_note = f", {result.summary.missing_ids} missing" if result.summary.missing_ids else ""
        console.print(
            f'[green]Finished "{workload.query}": {result.summary.resolved_ids}/{result.summary.total_ids} ids matched{missing_note}.[/green]'
        )

    missing_ids.sort()
    console.print(f"[dim]Done fetching posts! Took {_elapsed(start)}.[/dim]")

    xmp_stats = writer.finalize() if writer else None
    if not records:
        console.print("[red]No metadata could be retrieved. Please verify your API credentials and try again.[/red]")
        return MetadataRunResult(output_file, 0, missing_ids, xmp_stats, root_dir)

    if xmp_stats is not None:
        console.print(
            f"[green]XMP sidecars processed: {xmp_stats.written} written, {xmp_stats.skipped} skipped, "
            f"{xmp_stats.failed} failed out of {xmp_stats.attempted} files.[/green]"
        )
        for err in xmp_stats.errors[:5]:
            console.print(f"[red]  - {err['path']}: {err['reason']}[/red]")
        if len(xmp_stats.errors) > 5:
            console.print(f"[red]  ...and {len(xmp_stats.errors) - 5} more errors.[/red]")

    bundle: Dict[str, Any] = {
        "version": BUNDLE_VERSION,
        "generatedAt": utc_now_iso(),
        "rootDir": root_dir,
        "mode": options.mode,
        "searchQuery": search_query,
        "totalFiles": total_files,
        "totalUniqueIds": len(grouped),
        "totalMetadataRecords": len(records),
        "missingIds": missing_ids,
        "processedQueries": summaries,
        "xmpSidecars": xmp_stats.to_json() if xmp_stats else None,
        "records": [record.to_json() for record in records],
    }
    bundle = {key: value for key, value in bundle.items() if value is not None}
    os.makedirs(os.path.dirname(output_file), exist_ok=True)
    with open(output_file, "wb") as f:
        f.write(orjson.dumps(bundle, option=orjson.OPT_INDENT_2))

    console.print(f"[green]Metadata saved to: {output_file}[/green]")
    if missing_ids:
        console.print(
            f"[yellow]Metadata was unavailable for {len(missing_ids)} ids (likely deleted or private posts). "
            'See the "missingIds" section in the output file.[/yellow]'
        )
    logger.info(f"Wrote {len(records)} records, {len(missing_ids)} missing, to {output_file}")
    return MetadataRunResult(output_file, len(records), missing_ids, xmp_stats, root_dir)


def prompt_for_options(args) -> MetadataOptions:
    """Fill whatever the flags left open by asking on the terminal."""
    root_dir = args.root or Prompt.ask("Where are your images stored?", default=DEFAULT_ROOT, console=console)
    output_file = args.output or Prompt.ask(
        "Where should the metadata JSON be saved?",
        default=os.path.join(root_dir, DEFAULT_OUTPUT_NAME),
        console=console,
    )
    if args.query:
        mode = "single"
    elif args.crawl:
        mode = "crawl"
    else:
        mode = Prompt.ask("Process a single query or crawl every query folder?", choices=["single", "crawl"], default="single", console=console)
    search_query = args.query
    while mode == "single" and not (search_query or "").strip():
        search_query = Prompt.ask("Which search query should be used to fetch metadata?", console=console)
    write_xmp = args.xmp if args.xmp is not None else Confirm.ask("Generate/update per-file XMP sidecars?", default=True, console=console)
    return MetadataOptions(root_dir, output_file, write_xmp, mode, search_query, args.site)


if __name__ == "__main__":
    import argparse

    logging.basicConfig(filename=LOG_FILE, level=logging.INFO, format="%(asctime)s - %(message)s")

    parser = argparse.ArgumentParser(description="Fetch metadata for downloaded posts and write XMP sidecars")
    parser.add_argument("--site", type=str, choices=sorted(PROVIDERS), default=DEFAULT_SITE, help="Provider the files came from")
    parser.add_argument("--root", type=str, help="Root directory holding <query>/<rating>/<id>.<ext> files")
    parser.add_argument("--output", type=str, help="Output JSON bundle path")
    parser.add_argument("--query", type=str, help="Search query (single mode)")
    parser.add_argument("--crawl", action="store_true", help="Process every query folder under the root")
    parser.add_argument("--xmp", dest="xmp", action="store_true", default=None, help="Write XMP sidecars")
    parser.add_argument("--no-xmp", dest="xmp", action="store_false", help="Skip XMP sidecars")
    args = parser.parse_args()

    try:
        options = prompt_for_options(args)
        start = time.monotonic()
        asyncio.run(generate_metadata(options))
        console.print(f"[dim]Total elapsed time: {_elapsed(start)}.[/dim]")
    except KeyboardInterrupt:
        console.print("[bold red]\nCancelled by user.[/bold red]")
        sys.exit(0)
    except (BooruError, ValueError, FileNotFoundError) as e:
        logger.error(f"Metadata generation failed: {e}")
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
