"""
Metadata Resolver
Answers series/episode lookups from the local cache, falling back to TVDB
and remembering every successful answer.
"""

from typing import Optional

from episode_cache import EpisodeCache, EpisodeRecord
from production_codes import normalize_code
from tvdb_loader import TVDBClient


class MetadataResolver:
    """
    Cache-first lookups against TVDB.

    A cache hit never touches the network. A miss makes one client call;
    successes are written to the cache and flushed before returning,
    failures propagate and leave the cache untouched so the next run can
    try again.
    """

    def __init__(self, cache: EpisodeCache, client: TVDBClient):
        self.cache = cache
        self.client = client

    def _remember_episode(self, series_id: str, record: EpisodeRecord) -> None:
        if self.cache.put_episode(series_id, record):
            self.cache.flush()

    def resolve_series_name(self, series_id: str) -> str:
        name = self.cache.get_series(series_id)
        if name is not None:
            return name

        name = self.client.get_series_name(series_id)
        if self.cache.put_series(series_id, name):
            self.cache.flush()
        return name

    def resolve_episode(self, series_id: str, production_code: str) -> EpisodeRecord:
        """
        Resolve a production code to an episode.

        Raises:
            EpisodeNotFoundError: TVDB has no episode with this code
            TransientLookupError: TVDB could not be reached
            UnauthorizedError: the API key was rejected
        """
        code = normalize_code(production_code) or production_code
        cached = self.cache.get_episode(series_id, code)
        if cached is not None:
            return cached

        record = self.client.find_episode_by_production_code(series_id, code)
        if record.production_code != code:
            # Index under the key we were asked for, which is what OCR produces
            record = EpisodeRecord(
                season=record.season,
                episode=record.episode,
                title=record.title,
                production_code=code,
                tvdb_id=record.tvdb_id,
            )
        self._remember_episode(series_id, record)
        return record

    def resolve_episode_by_number(self, series_id: str, season: int, episode: int) -> EpisodeRecord:
        """Resolve a season/episode pair to an episode (subtitle mode)."""
        cached = self.cache.get_episode_by_number(series_id, season, episode)
        if cached is not None:
            return cached

        record = self.client.find_episode_by_number(series_id, season, episode)
        self._remember_episode(series_id, record)
        return record

    def preload_series(self, series_id: str) -> Optional[int]:
        """
        Pull the whole episode list of a series into the cache.

        Skipped when the cache already knows episodes of this series.

        Returns:
            Number of newly cached episodes, or None if skipped
        """
        if self.cache.has_series_episodes(series_id):
            return None

        records = self.client.get_series_episodes(series_id)
        added = sum(1 for record in records if self.cache.put_episode(series_id, record))
        if added:
            self.cache.flush()
        return added
