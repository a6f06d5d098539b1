#!/usr/bin/env python3
"""
TVDB Episode Loader
Fetches series and episode metadata from TVDB API v4.
"""

from typing import Dict, Iterator, List, Optional

import requests

from episode_cache import EpisodeRecord
from production_codes import normalize_code

# TVDB API Configuration
TVDB_API_URL = "https://api4.thetvdb.com/v4"
REQUEST_TIMEOUT = 10


class MetadataLookupError(LookupError):
    """A TVDB lookup did not produce a result."""


class EpisodeNotFoundError(MetadataLookupError):
    """TVDB reports no such series or episode. Not worth retrying."""


class TransientLookupError(MetadataLookupError):
    """Network or service failure. Safe to retry on a later run."""


class UnauthorizedError(MetadataLookupError):
    """Missing or rejected API key. No further lookups can succeed."""


class TVDBClient:
    """Client for TVDB API v4."""

    def __init__(self, api_key: str, timeout: float = REQUEST_TIMEOUT):
        self.api_key = api_key
        self.timeout = timeout
        self.token: Optional[str] = None

    def login(self) -> None:
        """
        Authenticate with TVDB and store the bearer token.

        Raises:
            UnauthorizedError: the API key was rejected
            TransientLookupError: TVDB could not be reached
        """
        if not self.api_key:
            raise UnauthorizedError("No TVDB API key configured")

        try:
            response = requests.post(
                f"{TVDB_API_URL}/login",
                json={"apikey": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransientLookupError(f"TVDB login failed: {e}") from e

        if response.status_code in (401, 403):
            raise UnauthorizedError(f"TVDB login rejected: HTTP {response.status_code}")
        if response.status_code != 200:
            raise TransientLookupError(f"TVDB login failed: HTTP {response.status_code}")

        try:
            self.token = response.json()["data"]["token"]
        except (ValueError, KeyError, TypeError) as e:
            raise TransientLookupError(f"Unexpected TVDB login response: {e}") from e

    def get_headers(self) -> Dict[str, str]:
        """Get request headers with bearer token."""
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _get(self, endpoint: str, params: Optional[Dict] = None) -> Dict:
        """
        Make an authenticated GET request and return the decoded body.

        Raises:
            EpisodeNotFoundError: HTTP 404
            UnauthorizedError: HTTP 401/403
            TransientLookupError: anything else that is not a 200
        """
        if not self.token:
            self.login()

        try:
            response = requests.get(
                f"{TVDB_API_URL}/{endpoint}",
                headers=self.get_headers(),
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransientLookupError(f"TVDB request {endpoint} failed: {e}") from e

        if response.status_code == 404:
            raise EpisodeNotFoundError(f"TVDB has no {endpoint}")
        if response.status_code in (401, 403):
            raise UnauthorizedError(f"TVDB rejected {endpoint}: HTTP {response.status_code}")
        if response.status_code != 200:
            raise TransientLookupError(f"TVDB request {endpoint} failed: HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise TransientLookupError(f"Invalid JSON from TVDB {endpoint}: {e}") from e

    def search_series(self, query: str) -> List[Dict]:
        """
        Search TVDB for series by name.

        Returns:
            List of {"tvdb_id", "name", "year"} dicts, in TVDB's order
        """
        data = self._get("search", params={"query": query, "type": "series"})

        results = []
        for item in data.get("data") or []:
            translations = item.get("translations") or {}
            name = translations.get("eng") or item.get("name") or next(iter(translations.values()), None)
            results.append({
                "tvdb_id": str(item.get("tvdb_id", "")),
                "name": name or "Unknown",
                "year": item.get("year", ""),
            })
        return results

    def get_series_name(self, series_id: str) -> str:
        """Fetch the display name of a series."""
        data = self._get(f"series/{series_id}")
        name = (data.get("data") or {}).get("name")
        if not name:
            raise EpisodeNotFoundError(f"TVDB series {series_id} has no name")
        return name

    def iter_episodes(
        self,
        series_id: str,
        season: Optional[int] = None,
        episode: Optional[int] = None,
    ) -> Iterator[Dict]:
        """
        Page through the default-order episode list of a series.

        Args:
            series_id: TVDB series ID
            season: Optional season number filter
            episode: Optional episode number filter (needs season)

        Yields:
            Raw TVDB episode dicts
        """
        page = 0

        while True:
            params: Dict = {"page": page}
            if season is not None:
                params["season"] = season
            if episode is not None:
                params["episodeNumber"] = episode

            try:
                data = self._get(f"series/{series_id}/episodes/default", params=params)
            except EpisodeNotFoundError:
                # TVDB answers 404 past the last page
                if page == 0:
                    raise
                return

            episodes = (data.get("data") or {}).get("episodes") or []
            if not episodes:
                return

            yield from episodes

            links = data.get("links") or {}
            if not links.get("next"):
                return
            page += 1

    def get_production_code(self, episode: Dict) -> Optional[str]:
        """
        Production code of a raw episode dict, normalized.

        The default episode listing usually omits it, in which case the
        extended record is fetched.
        """
        code = episode.get("productionCode")
        if code is None and episode.get("id") is not None:
            try:
                data = self._get(f"episodes/{episode['id']}/extended")
            except EpisodeNotFoundError:
                return None
            code = (data.get("data") or {}).get("productionCode")
        if not code:
            return None
        return normalize_code(code)

    def find_episode_by_production_code(self, series_id: str, production_code: str) -> EpisodeRecord:
        """
        Find an episode by production code.

        TVDB has no production-code endpoint, so the episode list is walked
        and each candidate's code compared client-side.

        Raises:
            EpisodeNotFoundError: no episode carries that code
        """
        wanted = normalize_code(production_code)

        for episode in self.iter_episodes(series_id):
            code = self.get_production_code(episode)
            if code and code == wanted:
                return self._to_record(episode, code)

        raise EpisodeNotFoundError(f"No episode with production code {production_code} in series {series_id}")

    def find_episode_by_number(self, series_id: str, season: int, episode: int) -> EpisodeRecord:
        """
        Find an episode by season and episode number.

        Raises:
            EpisodeNotFoundError: TVDB has no such episode
        """
        for item in self.iter_episodes(series_id, season=season, episode=episode):
            if item.get("seasonNumber") == season and item.get("number") == episode:
                return self._to_record(item, normalize_code(item.get("productionCode") or ""))

        raise EpisodeNotFoundError(f"No episode S{season:02d}E{episode:02d} in series {series_id}")

    def get_series_episodes(self, series_id: str, with_production_codes: bool = True) -> List[EpisodeRecord]:
        """
        Fetch all episodes for a series.

        Args:
            series_id: TVDB series ID
            with_production_codes: Also fetch each episode's production code

        Returns:
            List of episode records, in TVDB order
        """
        records = []
        for episode in self.iter_episodes(series_id):
            if episode.get("seasonNumber") is None or episode.get("number") is None:
                continue
            code = self.get_production_code(episode) if with_production_codes else None
            records.append(self._to_record(episode, code))
        return records

    @staticmethod
    def _to_record(episode: Dict, production_code: Optional[str]) -> EpisodeRecord:
        return EpisodeRecord(
            season=int(episode.get("seasonNumber") or 0),
            episode=int(episode.get("number") or 0),
            title=episode.get("name") or "",
            production_code=production_code or None,
            tvdb_id=episode.get("id"),
        )
