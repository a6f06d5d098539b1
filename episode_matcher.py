"""
Episode Matching Engine
Drives one video file at a time from extraction to a resolved TVDB episode:

    production-code mode:
        EXTRACTING -> RECOGNIZING -> CODE_EXTRACTED -> RESOLVING -> RESOLVED
                                  -> CODE_MISSING -> MANUAL_PROMPT -> RESOLVING
    subtitle mode:
        EXTRACTING -> (RECOGNIZING) -> TRANSCRIBING -> RESOLVING -> RESOLVED

Every other path ends in FAILED with a reason.
"""

import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from PIL import Image
from rich import print
from rich.markup import escape

from episode_cache import EpisodeRecord
from media_tools import MediaToolError, SubtitleTrack
from metadata_resolver import MetadataResolver
from pgs_subtitles import SubtitleImage
from production_codes import (
    canonicalize_code,
    extract_production_code,
    normalize_code,
    parse_season_episode,
)
from tvdb_loader import EpisodeNotFoundError, MetadataLookupError, UnauthorizedError

VIDEO_EXTENSIONS = {".mkv"}

AskFn = Callable[[str], Optional[str]]
ShowFn = Callable[[str], None]


class MatchMode(Enum):
    PRODUCTION_CODE = "production-code"
    SUBTITLES = "subtitles"


class MatchState(Enum):
    EXTRACTING = "extracting"
    RECOGNIZING = "recognizing"
    CODE_EXTRACTED = "code-extracted"
    CODE_MISSING = "code-missing"
    MANUAL_PROMPT = "manual-prompt"
    TRANSCRIBING = "transcribing"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


TERMINAL_STATES = {MatchState.RESOLVED, MatchState.FAILED}


class FailureReason(Enum):
    NO_VIDEO_STREAM = "no video stream"
    NO_CODE_FOUND = "no code found"
    UNKNOWN_CODE = "unknown code"
    LOOKUP_ERROR = "lookup error"
    NO_SUBTITLE_TRACK = "no subtitle track"
    MEDIA_ERROR = "media tool error"


@dataclass
class MatchOutcome:
    """Terminal result of matching one file."""
    path: Path
    state: MatchState = MatchState.EXTRACTING
    reason: Optional[FailureReason] = None
    record: Optional[EpisodeRecord] = None
    production_code: Optional[str] = None
    season_episode: Optional[Tuple[int, int]] = None
    error: Optional[Exception] = None
    history: List[MatchState] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.state is MatchState.RESOLVED

    @property
    def is_fatal(self) -> bool:
        """True when no later file can succeed either (rejected API key)."""
        return isinstance(self.error, UnauthorizedError)

    def describe(self) -> str:
        if self.resolved and self.record:
            return f"S{self.record.season:02d}E{self.record.episode:02d} - {self.record.title}"
        detail = f": {self.error}" if self.error else ""
        return f"{self.reason.value if self.reason else 'unfinished'}{detail}"


class _FileMatch:
    """State machine for a single file."""

    def __init__(self, matcher: "EpisodeMatcher", path: Path, series_id: str):
        self.matcher = matcher
        self.path = path
        self.series_id = series_id
        self.outcome = MatchOutcome(path=path)

        self.frames: List[Image.Image] = []
        self.subtitle_images: List[SubtitleImage] = []
        self.subtitle_text = ""
        self.lines: List[str] = []

        if matcher.mode is MatchMode.PRODUCTION_CODE:
            self.handlers: Dict[MatchState, Callable[[], MatchState]] = {
                MatchState.EXTRACTING: self._extract_frames,
                MatchState.RECOGNIZING: self._recognize_frames,
                MatchState.CODE_EXTRACTED: lambda: MatchState.RESOLVING,
                MatchState.CODE_MISSING: self._code_missing,
                MatchState.MANUAL_PROMPT: self._manual_prompt,
                MatchState.RESOLVING: self._resolve,
            }
        else:
            self.handlers = {
                MatchState.EXTRACTING: self._extract_subtitles,
                MatchState.RECOGNIZING: self._recognize_subtitles,
                MatchState.TRANSCRIBING: self._transcribe,
                MatchState.RESOLVING: self._resolve,
            }

    def run(self) -> MatchOutcome:
        state = MatchState.EXTRACTING
        while state not in TERMINAL_STATES:
            self.outcome.history.append(state)
            try:
                state = self.handlers[state]()
            except MediaToolError as e:
                state = self._fail(FailureReason.MEDIA_ERROR, e)

        self.outcome.history.append(state)
        self.outcome.state = state
        return self.outcome

    def _fail(self, reason: FailureReason, error: Optional[Exception] = None) -> MatchState:
        self.outcome.reason = reason
        self.outcome.error = error
        return MatchState.FAILED

    # ---------- production-code mode ----------

    def _extract_frames(self) -> MatchState:
        self.frames = self.matcher.media.extract_frames(self.path)
        if not self.frames:
            return self._fail(FailureReason.NO_VIDEO_STREAM)
        return MatchState.RECOGNIZING

    def _recognize_frames(self) -> MatchState:
        for index, frame in enumerate(self.frames):
            self.lines.extend(self.matcher.recognize(frame, f"frame {index + 1}"))

        code = extract_production_code(self.lines)
        if code is None:
            return MatchState.CODE_MISSING

        print(f"[cyan]Production code:[/cyan] {code}")
        self.outcome.production_code = code
        return MatchState.CODE_EXTRACTED

    def _code_missing(self) -> MatchState:
        prompt_size = self.matcher.prompt_size
        if prompt_size is not None and _file_size(self.path) > prompt_size:
            return MatchState.MANUAL_PROMPT
        return self._fail(FailureReason.NO_CODE_FOUND)

    def _manual_prompt(self) -> MatchState:
        answer = self.matcher.ask(f"Production code or SxxExx for {self.path.name} (blank to skip)")
        answer = (answer or "").strip()
        if not answer:
            return self._fail(FailureReason.NO_CODE_FOUND)

        # Known code formats win over SxxExx; "3x22" is a classic code here
        code = canonicalize_code(answer)
        if code:
            self.outcome.production_code = code
            return MatchState.RESOLVING

        season_episode = parse_season_episode(answer, allow_x_form=False)
        if season_episode:
            self.outcome.season_episode = season_episode
            return MatchState.RESOLVING

        code = normalize_code(answer)
        if not code:
            return self._fail(FailureReason.NO_CODE_FOUND)
        self.outcome.production_code = code
        return MatchState.RESOLVING

    # ---------- subtitle mode ----------

    def _extract_subtitles(self) -> MatchState:
        media = self.matcher.media
        track: Optional[SubtitleTrack] = media.find_subtitle_track(self.path)
        if track is None:
            return self._fail(FailureReason.NO_SUBTITLE_TRACK)

        print(f"[cyan]Using subtitle track {track.index} ({track.codec.name})[/cyan]")
        with tempfile.TemporaryDirectory() as tmpdir:
            subtitle_path = media.extract_subtitles(self.path, track, Path(tmpdir))
            if track.codec.is_image_based:
                self.subtitle_images = media.read_subtitle_images(subtitle_path)
                return MatchState.RECOGNIZING
            try:
                self.subtitle_text = subtitle_path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                raise MediaToolError(f"Could not read extracted subtitles: {e}") from e

        return MatchState.TRANSCRIBING

    def _recognize_subtitles(self) -> MatchState:
        blocks = []
        for subtitle in self.subtitle_images:
            lines = self.matcher.recognize(subtitle.image, f"subtitle at {subtitle.timestamp:.1f}s")
            if lines:
                blocks.append(f"[{_format_timestamp(subtitle.timestamp)}]\n" + "\n".join(lines))
        self.subtitle_text = "\n\n".join(blocks)
        return MatchState.TRANSCRIBING

    def _transcribe(self) -> MatchState:
        self.matcher.show(self.subtitle_text)
        answer = self.matcher.ask(f"Season and episode for {self.path.name} as SxxExx (blank to skip)")
        season_episode = parse_season_episode(answer or "")
        if not season_episode:
            return self._fail(FailureReason.NO_CODE_FOUND)
        self.outcome.season_episode = season_episode
        return MatchState.RESOLVING

    # ---------- both modes ----------

    def _resolve(self) -> MatchState:
        resolver = self.matcher.resolver
        try:
            if self.outcome.season_episode:
                season, episode = self.outcome.season_episode
                record = resolver.resolve_episode_by_number(self.series_id, season, episode)
            else:
                record = resolver.resolve_episode(self.series_id, self.outcome.production_code)
        except EpisodeNotFoundError as e:
            return self._fail(FailureReason.UNKNOWN_CODE, e)
        except MetadataLookupError as e:
            return self._fail(FailureReason.LOOKUP_ERROR, e)

        self.outcome.record = record
        return MatchState.RESOLVED


class EpisodeMatcher:
    """
    Identifies the episode in each video file of a batch.

    Args:
        media: Frame/subtitle source (see media_tools.FFmpegMediaSource)
        recognizer: Object with recognize(image) -> set of text lines
        resolver: Cache-backed TVDB resolver
        ask: Asks the operator a question; None means no answer
        show: Displays subtitle text to the operator
        mode: Production-code or subtitle matching, for the whole batch
        prompt_size: Files larger than this many bytes get a manual
            code prompt when OCR finds nothing; None disables prompting
    """

    def __init__(
        self,
        media,
        recognizer,
        resolver: MetadataResolver,
        ask: AskFn,
        show: Optional[ShowFn] = None,
        mode: MatchMode = MatchMode.PRODUCTION_CODE,
        prompt_size: Optional[int] = None,
    ):
        self.media = media
        self.recognizer = recognizer
        self.resolver = resolver
        self.ask = ask
        self.show = show or (lambda text: print(escape(text)))
        self.mode = mode
        self.prompt_size = prompt_size

    def recognize(self, image: Image.Image, label: str) -> List[str]:
        """OCR one image; a failure on a single image only loses that image."""
        try:
            return sorted(self.recognizer.recognize(image))
        except Exception as e:
            print(f"[yellow]Warning: OCR failed on {label}: {escape(str(e))}[/yellow]")
            return []

    def match_file(self, path: Path, series_id: str) -> MatchOutcome:
        return _FileMatch(self, Path(path), str(series_id)).run()

    def match_batch(self, paths: Iterable[Path], series_id: str) -> Iterator[MatchOutcome]:
        """
        Match files one after another.

        A failed file never stops the batch; the caller decides whether an
        outcome with is_fatal set should end it early.
        """
        for path in paths:
            print(f"\n[bold]Processing:[/bold] {escape(Path(path).name)}")
            outcome = self.match_file(path, series_id)
            if outcome.resolved:
                print(f"[green]Found episode:[/green] {escape(outcome.describe())}")
            else:
                print(f"[yellow]Could not identify {escape(Path(path).name)}: {escape(outcome.describe())}[/yellow]")
            yield outcome


def collect_video_files(inputs: Iterable[Path], recursive: bool = False) -> List[Path]:
    """
    Expand input paths into the ordered list of video files to process.

    Directories contribute their .mkv files (sorted; subdirectories only
    when recursive). Explicit file arguments are kept in the given order.
    Missing paths are reported and skipped.
    """
    files: List[Path] = []

    for input_path in inputs:
        input_path = Path(input_path)
        if not input_path.exists():
            print(f"[red]Error:[/red] input path does not exist: {escape(str(input_path))}")
            continue

        if input_path.is_file():
            if input_path.suffix.lower() in VIDEO_EXTENSIONS:
                files.append(input_path)
            else:
                print(f"[yellow]Skipping non-MKV file: {escape(str(input_path))}[/yellow]")
            continue

        pattern = "**/*" if recursive else "*"
        found = sorted(
            p for p in input_path.glob(pattern)
            if p.is_file() and p.suffix.lower() in VIDEO_EXTENSIONS
        )
        print(f"Found {len(found)} MKV file(s) in {escape(str(input_path))}")
        files.extend(found)

    return files


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _format_timestamp(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
