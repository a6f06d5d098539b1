"""Unit tests for the TVDB v4 client."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from tvdb_loader import (
    TVDB_API_URL,
    EpisodeNotFoundError,
    TransientLookupError,
    TVDBClient,
    UnauthorizedError,
)


def make_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    return response


LOGIN_OK = make_response(200, {"data": {"token": "tok"}})


def episodes_page(episodes, has_next=False):
    return make_response(200, {
        "data": {"episodes": episodes},
        "links": {"next": "x" if has_next else None},
    })


@pytest.fixture
def client() -> TVDBClient:
    return TVDBClient("key")


class TestLogin:
    def test_login_stores_token(self, client: TVDBClient):
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK) as post:
            client.login()

        assert client.token == "tok"
        assert post.call_args.kwargs["json"] == {"apikey": "key"}
        assert client.get_headers()["Authorization"] == "Bearer tok"

    def test_rejected_key_is_unauthorized(self, client: TVDBClient):
        with patch("tvdb_loader.requests.post", return_value=make_response(401)):
            with pytest.raises(UnauthorizedError):
                client.login()

    def test_missing_key_is_unauthorized(self):
        with pytest.raises(UnauthorizedError):
            TVDBClient("").login()

    def test_network_error_is_transient(self, client: TVDBClient):
        with patch("tvdb_loader.requests.post", side_effect=requests.exceptions.ConnectionError("down")):
            with pytest.raises(TransientLookupError):
                client.login()


class TestErrorMapping:
    @pytest.mark.parametrize("status,error", [
        (404, EpisodeNotFoundError),
        (401, UnauthorizedError),
        (403, UnauthorizedError),
        (500, TransientLookupError),
        (429, TransientLookupError),
    ])
    def test_status_codes(self, client: TVDBClient, status, error):
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", return_value=make_response(status)):
            with pytest.raises(error):
                client.get_series_name("77398")

    def test_timeout_is_transient(self, client: TVDBClient):
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(TransientLookupError):
                client.get_series_name("77398")

    def test_bad_json_is_transient(self, client: TVDBClient):
        response = make_response(200)
        response.json.side_effect = ValueError("not json")
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", return_value=response):
            with pytest.raises(TransientLookupError):
                client.get_series_name("77398")


class TestLookups:
    def test_series_name(self, client: TVDBClient):
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", return_value=make_response(200, {"data": {"name": "The X-Files"}})) as get:
            assert client.get_series_name("77398") == "The X-Files"

        assert get.call_args.args[0] == f"{TVDB_API_URL}/series/77398"

    def test_search_prefers_english_translation(self, client: TVDBClient):
        payload = {"data": [
            {"tvdb_id": "77398", "name": "Akte X", "translations": {"eng": "The X-Files"}, "year": "1993"},
            {"tvdb_id": "1", "name": "Other"},
        ]}
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", return_value=make_response(200, payload)):
            results = client.search_series("x-files")

        assert results[0] == {"tvdb_id": "77398", "name": "The X-Files", "year": "1993"}
        assert results[1]["name"] == "Other"

    def test_find_by_production_code_walks_pages_and_extended(self, client: TVDBClient):
        # Episodes are checked as each page arrives
        responses = [
            episodes_page([{"id": 1, "seasonNumber": 6, "number": 7, "name": "Home"}], has_next=True),
            make_response(200, {"data": {"productionCode": "6ABX07"}}),
            episodes_page([{"id": 2, "seasonNumber": 6, "number": 8, "name": "Two Fathers"}]),
            make_response(200, {"data": {"productionCode": "6abx08"}}),
        ]
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", side_effect=responses) as get:
            record = client.find_episode_by_production_code("77398", "6ABX08")

        assert (record.season, record.episode, record.title) == (6, 8, "Two Fathers")
        assert record.production_code == "6ABX08"
        assert record.tvdb_id == 2
        assert get.call_count == 4

    def test_find_by_production_code_not_found(self, client: TVDBClient):
        responses = [
            episodes_page([{"id": 1, "seasonNumber": 1, "number": 1, "name": "Pilot", "productionCode": "1X79"}]),
        ]
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", side_effect=responses):
            with pytest.raises(EpisodeNotFoundError):
                client.find_episode_by_production_code("77398", "6ABX08")

    def test_find_by_number_passes_filters(self, client: TVDBClient):
        page = episodes_page([{"id": 2, "seasonNumber": 6, "number": 8, "name": "Two Fathers"}])
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", return_value=page) as get:
            record = client.find_episode_by_number("77398", 6, 8)

        assert record.title == "Two Fathers"
        assert get.call_args.kwargs["params"] == {"page": 0, "season": 6, "episodeNumber": 8}

    def test_find_by_number_empty_is_not_found(self, client: TVDBClient):
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", return_value=episodes_page([])):
            with pytest.raises(EpisodeNotFoundError):
                client.find_episode_by_number("77398", 6, 99)

    def test_series_episodes_skip_missing_extended(self, client: TVDBClient):
        responses = [
            episodes_page([
                {"id": 1, "seasonNumber": 0, "number": 1, "name": "Special"},
                {"id": 2, "seasonNumber": 1, "number": 1, "name": "Pilot", "productionCode": "#1X79"},
            ]),
            make_response(404),
        ]
        with patch("tvdb_loader.requests.post", return_value=LOGIN_OK), \
                patch("tvdb_loader.requests.get", side_effect=responses):
            records = client.get_series_episodes("77398")

        assert [(r.season, r.episode, r.production_code) for r in records] == [(0, 1, None), (1, 1, "1X79")]
