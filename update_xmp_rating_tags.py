"""
Add the ``rating:<x>`` keyword to existing XMP sidecars, taking the rating from
the folder each sidecar sits in (``<query>/<rating>/<id>.xmp``).
"""
import logging
import os
import sys

from rich.console import Console

from booru_utils.xmp import backfill_rating_tags

console = Console()

LOG_FILE = "update_xmp_rating_tags.log"
DEFAULT_ROOT = os.path.join("images", "gelbooru")

if __name__ == "__main__":
    import argparse

    logging.basicConfig(filename=LOG_FILE, level=logging.INFO, format="%(asctime)s - %(message)s")

    parser = argparse.ArgumentParser(description="Back-fill rating tags into XMP sidecars")
    parser.add_argument("--root", type=str, default=DEFAULT_ROOT, help="Root directory to scan for .xmp files")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args()

    root_dir = os.path.abspath(args.root)
    if not os.path.isdir(root_dir):
        console.print(f"[red]Directory not found: {root_dir}[/red]")
        sys.exit(1)

    console.print(f"[dim]Scanning {root_dir} for XMP files...[/dim]")
    stats = backfill_rating_tags(root_dir, dry_run=args.dry_run)
    if stats.processed == 0:
        console.print("[yellow]No XMP files were found.[/yellow]")
        sys.exit(0)

    console.print("\n[bold]Done updating XMP rating tags.[/bold]")
    if args.dry_run:
        console.print("[dim]Dry run enabled: no files were modified.[/dim]")
    console.print(f"[green]Processed files: {stats.processed:,}[/green]")
    console.print(f"[green]Updated files: {stats.updated:,}[/green]")
    console.print(f"[dim]Already tagged: {stats.already_tagged:,}[/dim]")
    console.print(f"[dim]Missing rating folder: {stats.skipped_missing_rating:,}[/dim]")
    console.print(f"[dim]XMPs without rdf:Bag: {stats.missing_bags:,}[/dim]")
    if stats.errors:
        console.print(f"[yellow]Errors: {stats.errors:,}[/yellow]")
    logging.info(f"Rating tag back-fill on {root_dir}: {stats}")
