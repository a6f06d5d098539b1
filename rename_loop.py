"""
Rename step: turn a resolved episode into a Plex-style filename and,
once the operator agrees, move the file.
"""

from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from rich import print
from rich.markup import escape

from episode_cache import EpisodeRecord

ILLEGAL_FILENAME_CHARS = '/\\:*?"<>|'
PLACEHOLDER_CHAR = "-"
OUTPUT_EXTENSION = ".mkv"


class RenameResult(Enum):
    RENAMED = "renamed"
    SKIPPED = "skipped"
    ALREADY_NAMED = "already named"
    FAILED = "failed"


def sanitize_filename(name: str) -> str:
    """Replace characters that are illegal in filenames with '-'."""
    replaced = sorted({c for c in name if c in ILLEGAL_FILENAME_CHARS})
    if replaced:
        print(
            f"[yellow]Replaced {' '.join(escape(c) for c in replaced)} with "
            f"'{PLACEHOLDER_CHAR}' in \"{escape(name)}\"[/yellow]"
        )
    cleaned = "".join(PLACEHOLDER_CHAR if c in ILLEGAL_FILENAME_CHARS else c for c in name)
    return cleaned.strip()


def build_filename(series_name: str, record: EpisodeRecord) -> str:
    """
    Build the target filename for an episode.

    Example:
        "The Simpsons - S06E08 - Lisa on Ice.mkv"
    """
    return (
        f"{sanitize_filename(series_name)} - "
        f"S{record.season:02d}E{record.episode:02d} - "
        f"{sanitize_filename(record.title)}{OUTPUT_EXTENSION}"
    )


def find_unique_path(source: Path, target: Path) -> Path:
    """
    Avoid clobbering an existing file.

    Returns target unless another file already has that name, in which case
    "name [copy N].ext" with the first free N is returned. The source file
    itself never counts as a collision.
    """
    candidate = target
    counter = 1
    while candidate.exists() and not _same_file(candidate, source):
        candidate = target.with_name(f"{target.stem} [copy {counter}]{target.suffix}")
        counter += 1
    return candidate


def _same_file(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return False


def confirm_rename(source: Path, target: Path, ask: Callable[[str], Optional[str]]) -> bool:
    answer = ask(f'Rename "{source.name}" -> "{target.name}"? [y/N]')
    return (answer or "").strip().lower() in ("y", "yes")


def rename_episode(
    source: Path,
    series_name: str,
    record: EpisodeRecord,
    ask: Callable[[str], Optional[str]],
    skip_confirm: bool = False,
) -> RenameResult:
    """
    Rename a file to its episode name.

    Args:
        source: File to rename
        series_name: Display name of the series
        record: Resolved episode
        ask: Asks the operator a question
        skip_confirm: Rename without asking

    Returns:
        What happened; an OS error is reported and returned as FAILED
    """
    source = Path(source)
    target = find_unique_path(source, source.parent / build_filename(series_name, record))

    if _same_file(source, target) and source.name == target.name:
        print("File is already named correctly.")
        return RenameResult.ALREADY_NAMED

    if not skip_confirm and not confirm_rename(source, target, ask):
        print("Skipped.")
        return RenameResult.SKIPPED

    try:
        source.rename(target)
    except OSError as e:
        print(f"[red]Failed to rename {escape(source.name)}: {escape(str(e))}[/red]")
        return RenameResult.FAILED

    print(f"[green]Renamed:[/green] {escape(source.name)} → {escape(target.name)}")
    return RenameResult.RENAMED
