"""Shared test fixtures for episode-matcher."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from PIL import Image

from episode_cache import EpisodeCache, EpisodeRecord
from tvdb_loader import EpisodeNotFoundError


class FakeRecognizer:
    """Returns canned OCR lines, one response per recognize() call."""

    def __init__(self, responses: List[set]):
        self.responses = list(responses)
        self.calls = 0

    def recognize(self, image):
        self.calls += 1
        return self.responses.pop(0) if self.responses else set()


class FakeMedia:
    """Stands in for FFmpegMediaSource."""

    def __init__(self, frames=None, track=None, subtitle_text="", subtitle_images=None):
        self.frames = frames or []
        self.track = track
        self.subtitle_text = subtitle_text
        self.subtitle_images = subtitle_images or []
        self.frame_calls = 0

    def extract_frames(self, video_path):
        self.frame_calls += 1
        return list(self.frames)

    def find_subtitle_track(self, video_path):
        return self.track

    def extract_subtitles(self, video_path, track, output_dir):
        path = Path(output_dir) / f"extracted.{track.codec.extension}"
        path.write_text(self.subtitle_text, encoding="utf-8")
        return path

    def read_subtitle_images(self, subtitle_path):
        return list(self.subtitle_images)


class FakeTVDBClient:
    """In-memory TVDB with call counters."""

    def __init__(
        self,
        series: Optional[Dict[str, str]] = None,
        by_code: Optional[Dict[Tuple[str, str], EpisodeRecord]] = None,
        by_number: Optional[Dict[Tuple[str, int, int], EpisodeRecord]] = None,
        error: Optional[Exception] = None,
    ):
        self.series = series or {}
        self.by_code = by_code or {}
        self.by_number = by_number or {}
        self.error = error
        self.code_lookups: List[Tuple[str, str]] = []
        self.number_lookups: List[Tuple[str, int, int]] = []
        self.series_lookups: List[str] = []
        self.episode_list_calls = 0

    def get_series_name(self, series_id):
        self.series_lookups.append(series_id)
        if self.error:
            raise self.error
        if series_id not in self.series:
            raise EpisodeNotFoundError(f"no series {series_id}")
        return self.series[series_id]

    def find_episode_by_production_code(self, series_id, production_code):
        self.code_lookups.append((series_id, production_code))
        if self.error:
            raise self.error
        try:
            return self.by_code[(series_id, production_code)]
        except KeyError:
            raise EpisodeNotFoundError(f"no episode {production_code}")

    def find_episode_by_number(self, series_id, season, episode):
        self.number_lookups.append((series_id, season, episode))
        if self.error:
            raise self.error
        try:
            return self.by_number[(series_id, season, episode)]
        except KeyError:
            raise EpisodeNotFoundError(f"no episode S{season}E{episode}")

    def get_series_episodes(self, series_id):
        self.episode_list_calls += 1
        if self.error:
            raise self.error
        records = [r for (sid, _), r in self.by_code.items() if sid == series_id]
        records += [r for (sid, _, _), r in self.by_number.items() if sid == series_id]
        return records


class ScriptedAsk:
    """Answers operator prompts from a list and remembers the prompts."""

    def __init__(self, answers: List[Optional[str]]):
        self.answers = list(answers)
        self.prompts: List[str] = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else None


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def cache(temp_dir: Path) -> EpisodeCache:
    return EpisodeCache(temp_dir / "cache.json")


@pytest.fixture
def two_fathers() -> EpisodeRecord:
    return EpisodeRecord(season=6, episode=8, title="Two Fathers", production_code="6ABX08", tvdb_id=1008)


@pytest.fixture
def frame() -> Image.Image:
    return Image.new("L", (8, 8), 255)


@pytest.fixture
def video_file(temp_dir: Path) -> Path:
    path = temp_dir / "title_t03.mkv"
    path.write_bytes(b"\x00" * 2048)
    return path
