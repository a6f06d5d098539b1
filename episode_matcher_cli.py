#!/usr/bin/env python3
"""
episode-matcher
Extract production codes from video files and rename them using TVDB data.
"""

import argparse
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from rapidfuzz import fuzz
from rich import print
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from episode_cache import EpisodeCache
from episode_matcher import EpisodeMatcher, MatchMode, MatchOutcome, collect_video_files
from matcher_config import ConfigError, load_config
from media_tools import FFmpegMediaSource
from metadata_resolver import MetadataResolver
from rename_loop import RenameResult, rename_episode
from text_recognizer import OCR_ENGINES, TextRecognizer
from tvdb_loader import MetadataLookupError, TVDBClient, UnauthorizedError

console = Console()


def ask_operator(prompt: str) -> Optional[str]:
    """Ask on the terminal; end of input counts as no answer."""
    try:
        return console.input(f"{escape(prompt)}\n>> ")
    except EOFError:
        print()
        return None


def show_in_pager(text: str) -> None:
    with console.pager():
        console.print(text or "(no subtitle text)", markup=False, highlight=False)


def rank_search_results(query: str, results: List[Dict]) -> List[Dict]:
    """Order series search results by how closely their name matches the query."""
    query = query.lower()
    return sorted(results, key=lambda r: fuzz.WRatio(query, r["name"].lower()), reverse=True)


def select_series(
    client: TVDBClient,
    query: str,
    ask: Callable[[str], Optional[str]] = ask_operator,
) -> str:
    """
    Search TVDB by name and let the operator pick a series.

    Returns:
        TVDB series id

    Raises:
        ValueError: no results, or no valid selection
    """
    results = rank_search_results(query, client.search_series(query))

    if not results:
        raise ValueError(f"No shows found matching '{query}'")
    if len(results) == 1:
        return results[0]["tvdb_id"]

    print("Multiple shows found. Please select one:")
    for i, result in enumerate(results, 1):
        year = f" ({result['year']})" if result.get("year") else ""
        print(f"  {i}: {escape(result['name'])}{year} (ID: {result['tvdb_id']})")

    answer = (ask(f"Enter number (1-{len(results)})") or "").strip()
    if not answer.isdigit() or not 1 <= int(answer) <= len(results):
        raise ValueError("Invalid selection")
    return results[int(answer) - 1]["tvdb_id"]


def build_summary(rows: List[List[str]]) -> Table:
    table = Table(title="Batch summary")
    table.add_column("File")
    table.add_column("Result")
    table.add_column("Details")
    for row in rows:
        table.add_row(*(escape(cell) for cell in row))
    return table


def process_outcome(outcome: MatchOutcome, series_name: str, skip_confirm: bool) -> List[str]:
    if not outcome.resolved:
        return [outcome.path.name, "failed", outcome.describe()]

    result = rename_episode(outcome.path, series_name, outcome.record, ask_operator, skip_confirm)
    return [outcome.path.name, result.value, outcome.describe()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="episode-matcher",
        description="Extract production codes from video files and rename them using TVDB data",
    )
    parser.add_argument("inputs", nargs="+", type=Path, help="Input files or directories to process")
    series = parser.add_mutually_exclusive_group(required=True)
    series.add_argument("--show", help="Show name to search in TVDB")
    series.add_argument("--show-id", help="Direct TVDB show ID")
    parser.add_argument("--no-confirm", action="store_true", help="Skip confirmation prompts")
    parser.add_argument("-r", "--recursive", action="store_true", help="Recursively scan directories for MKV files")
    parser.add_argument(
        "--prompt-size",
        type=int,
        help="File size in bytes above which you are prompted for the production code when OCR finds none",
    )
    parser.add_argument(
        "--match-mode",
        choices=[mode.value for mode in MatchMode],
        default=MatchMode.PRODUCTION_CODE.value,
        help="Matching mode (default: production-code)",
    )
    parser.add_argument("--ocr-engine", choices=OCR_ENGINES, help="OCR engine (default: from config, else easyocr)")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    try:
        config = load_config()
    except ConfigError as e:
        print(f"[red]Error:[/red] {escape(str(e))}")
        return 1

    cache = EpisodeCache(config.cache_path).load()
    client = TVDBClient(config.tvdb_api_key)
    resolver = MetadataResolver(cache, client)

    try:
        series_id = args.show_id or select_series(client, args.show)
        series_name = resolver.resolve_series_name(series_id)
    except (MetadataLookupError, ValueError) as e:
        print(f"[red]Error selecting show:[/red] {escape(str(e))}")
        return 1

    try:
        added = resolver.preload_series(series_id)
        if added is None:
            print(f"Using cached episode data for {escape(series_name)}")
        else:
            print(f"Cached {added} episode(s) of {escape(series_name)}")
    except UnauthorizedError as e:
        print(f"[red]Error:[/red] {escape(str(e))}")
        return 1
    except MetadataLookupError as e:
        print(f"[yellow]Warning: could not preload episodes, looking up per file: {escape(str(e))}[/yellow]")

    files = collect_video_files(args.inputs, args.recursive)
    if not files:
        print("[yellow]No MKV files to process.[/yellow]")
        return 0

    matcher = EpisodeMatcher(
        media=FFmpegMediaSource(config.tail_seconds, config.sample_fps),
        recognizer=TextRecognizer(args.ocr_engine or config.ocr_engine, use_gpu=config.ocr_gpu),
        resolver=resolver,
        ask=ask_operator,
        show=show_in_pager,
        mode=MatchMode(args.match_mode),
        prompt_size=args.prompt_size,
    )

    exit_code = 0
    rows: List[List[str]] = []
    for outcome in matcher.match_batch(files, series_id):
        rows.append(process_outcome(outcome, series_name, args.no_confirm))
        if outcome.is_fatal:
            print(f"[red]Error:[/red] {escape(str(outcome.error))}; stopping batch.")
            exit_code = 1
            break

    cache.flush()
    print()
    print(build_summary(rows))
    renamed = sum(1 for row in rows if row[1] == RenameResult.RENAMED.value)
    print(f"{renamed} of {len(files)} file(s) renamed.")
    return exit_code


def main(argv: Optional[List[str]] = None) -> None:
    sys.exit(run(parse_args(argv)))


if __name__ == "__main__":
    main()
