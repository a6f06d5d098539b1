"""
Episode Metadata Cache
Persistent JSON store of series names and episode records learned from TVDB,
so repeated runs over the same boxed set never hit the network twice.
"""

import json
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional

from rich import print
from rich.markup import escape


@dataclass(frozen=True)
class EpisodeRecord:
    """Episode metadata as resolved from TVDB."""
    season: int
    episode: int
    title: str
    production_code: Optional[str] = None
    tvdb_id: Optional[int] = None

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "EpisodeRecord":
        return cls(
            season=int(data["season"]),
            episode=int(data["episode"]),
            title=data.get("title", ""),
            production_code=data.get("production_code"),
            tvdb_id=data.get("tvdb_id"),
        )


class EpisodeCache:
    """
    Append-only cache of TVDB lookups, keyed by series.

    Document layout:
        {
          "series": {series_id: name},
          "episodes_by_production_code": {series_id: {code: record}},
          "episodes_by_number": {series_id: {season: {episode: record}}}
        }

    Entries are never updated once written; put_* only inserts missing keys.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.series: Dict[str, str] = {}
        self.episodes_by_production_code: Dict[str, Dict[str, EpisodeRecord]] = {}
        self.episodes_by_number: Dict[str, Dict[int, Dict[int, EpisodeRecord]]] = {}

    def load(self) -> "EpisodeCache":
        """
        Load the cache document from disk.

        A missing or unreadable file leaves the cache empty; the cache is
        only an optimization, so this never raises.
        """
        if not self.path.exists():
            return self

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            self._load_document(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            print(f"[yellow]Warning: ignoring unreadable cache {escape(str(self.path))}: {escape(str(e))}[/yellow]")
            self.series = {}
            self.episodes_by_production_code = {}
            self.episodes_by_number = {}

        return self

    def _load_document(self, data: Dict) -> None:
        series = {str(k): str(v) for k, v in data.get("series", {}).items()}

        by_code = {}
        for series_id, episodes in data.get("episodes_by_production_code", {}).items():
            by_code[str(series_id)] = {
                code: EpisodeRecord.from_dict(record) for code, record in episodes.items()
            }

        by_number = {}
        for series_id, seasons in data.get("episodes_by_number", {}).items():
            by_number[str(series_id)] = {
                int(season): {
                    int(number): EpisodeRecord.from_dict(record)
                    for number, record in episodes.items()
                }
                for season, episodes in seasons.items()
            }

        self.series = series
        self.episodes_by_production_code = by_code
        self.episodes_by_number = by_number

    def to_document(self) -> Dict:
        return {
            "series": dict(self.series),
            "episodes_by_production_code": {
                series_id: {code: record.to_dict() for code, record in episodes.items()}
                for series_id, episodes in self.episodes_by_production_code.items()
            },
            "episodes_by_number": {
                series_id: {
                    str(season): {str(number): record.to_dict() for number, record in episodes.items()}
                    for season, episodes in seasons.items()
                }
                for series_id, seasons in self.episodes_by_number.items()
            },
        }

    def flush(self) -> bool:
        """
        Write the cache to disk.

        The document is written to a temporary file and moved into place,
        so a crash mid-write never leaves a truncated cache behind.

        Returns:
            True if the cache was written, False if writing failed
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".cache-", suffix=".json", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self.to_document(), f, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            print(f"[yellow]Warning: failed to save cache {escape(str(self.path))}: {escape(str(e))}[/yellow]")
            return False
        return True

    def get_series(self, series_id: str) -> Optional[str]:
        return self.series.get(str(series_id))

    def get_episode(self, series_id: str, production_code: str) -> Optional[EpisodeRecord]:
        return self.episodes_by_production_code.get(str(series_id), {}).get(production_code)

    def get_episode_by_number(self, series_id: str, season: int, episode: int) -> Optional[EpisodeRecord]:
        return self.episodes_by_number.get(str(series_id), {}).get(int(season), {}).get(int(episode))

    def has_series_episodes(self, series_id: str) -> bool:
        series_id = str(series_id)
        return bool(
            self.episodes_by_production_code.get(series_id)
            or self.episodes_by_number.get(series_id)
        )

    def put_series(self, series_id: str, name: str) -> bool:
        """Insert a series name if absent. Returns True if it was inserted."""
        series_id = str(series_id)
        if series_id in self.series:
            return False
        self.series[series_id] = name
        return True

    def put_episode(self, series_id: str, record: EpisodeRecord) -> bool:
        """
        Insert an episode record if absent.

        The record is indexed by its production code (when it has one) and by
        season/episode number. Existing entries for either key are kept.

        Returns:
            True if anything new was inserted
        """
        series_id = str(series_id)
        inserted = False

        if record.production_code:
            by_code = self.episodes_by_production_code.setdefault(series_id, {})
            if record.production_code not in by_code:
                by_code[record.production_code] = record
                inserted = True

        season = self.episodes_by_number.setdefault(series_id, {}).setdefault(record.season, {})
        if record.episode not in season:
            season[record.episode] = record
            inserted = True

        return inserted
