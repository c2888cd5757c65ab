"""Tests for the catalog client and record normalization."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from matchcast.catalog import (
    StreamedCatalog,
    generate_match_id,
    normalize_match,
    normalize_stream,
    parse_teams,
)
from matchcast.types import Match, MatchSource, Stream


def json_response(payload) -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = payload
    return response


@pytest.fixture
def catalog():
    catalog = StreamedCatalog(api_base="https://api.example.com/api/")
    yield catalog
    catalog.close()


class TestNormalization:
    """Test conversion of raw catalog records."""

    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            ("Arsenal - Chelsea", ("Arsenal", "Chelsea")),
            ("Lakers vs Celtics", ("Lakers", "Celtics")),
            ("Nadal V Federer", ("Nadal", "Federer")),
            ("Grand Prix", ("Grand Prix", "")),
            ("A - B - C", ("A", "B")),
        ],
    )
    def test_parse_teams(self, title, expected) -> None:
        """Test team names are split on the known separators."""
        assert parse_teams(title) == expected

    def test_normalize_match_from_title_and_epoch_date(self) -> None:
        """Test a recent epoch date makes the match live."""
        started = (time.time() - 3600) * 1000
        match = normalize_match(
            {
                "id": 42,
                "title": "Arsenal - Chelsea",
                "category": "football",
                "tournament": "Premier League",
                "date": started,
                "sources": [{"source": "alpha", "id": "ars-che"}, {"source": "", "id": "x"}],
            }
        )

        assert match.id == "42"
        assert (match.team1, match.team2) == ("Arsenal", "Chelsea")
        assert match.sport == "football"
        assert match.league == "Premier League"
        assert match.is_live is True
        assert match.start_time is not None
        assert match.sources == (MatchSource(source="alpha", id="ars-che"),)
        assert match.title == "Arsenal vs Chelsea"

    def test_normalize_match_old_date_not_live(self) -> None:
        """Test a match that started more than three hours ago is not live."""
        match = normalize_match({"id": "1", "title": "A - B", "date": (time.time() - 5 * 3600) * 1000})

        assert match.is_live is False

    def test_normalize_match_explicit_fields(self) -> None:
        """Test records without a title or epoch date use explicit fields."""
        match = normalize_match(
            {
                "id": "m1",
                "team1": "Home",
                "team2": "Away",
                "startTime": "2026-10-19T18:00:00Z",
                "is_live": True,
            }
        )

        assert (match.team1, match.team2) == ("Home", "Away")
        assert match.start_time is not None
        assert match.start_time.hour == 18
        assert match.is_live is True

    def test_generate_match_id_is_stable(self) -> None:
        """Test records without an id get a stable derived id."""
        raw = {"sport": "tennis", "team1": "Nadal", "team2": "Federer", "sources": [{"source": "a", "id": "7"}]}

        assert generate_match_id(raw) == generate_match_id(dict(raw))
        assert generate_match_id(raw) != generate_match_id({**raw, "team2": "Djokovic"})
        assert generate_match_id({"id": 5}) == "5"

    def test_normalize_stream_defaults(self) -> None:
        """Test URL fallbacks, HD flag and source default."""
        stream = normalize_stream({"embedUrl": "https://embed.example.com/1", "hd": True}, "alpha")

        assert stream == Stream(
            url="https://embed.example.com/1",
            embed_url="https://embed.example.com/1",
            language=None,
            quality="HD",
            source="alpha",
        )
        assert normalize_stream({"url": "https://cdn.example.com/1"}, "alpha").quality == "SD"
        assert normalize_stream({"url": "u", "source": "bravo"}, "alpha").source == "bravo"


class TestStreamedCatalog:
    """Test catalog requests."""

    @patch("matchcast.catalog.requests.get")
    def test_fetch_streams_list(self, mock_get, catalog) -> None:
        """Test a list payload becomes several streams."""
        mock_get.return_value = json_response(
            [
                {"embedUrl": "https://embed.example.com/1", "language": "en", "hd": True},
                {"embedUrl": "https://embed.example.com/2", "language": "fr"},
            ]
        )

        streams = catalog.fetch_streams("alpha", "ars-che")

        assert [s.language for s in streams] == ["en", "fr"]
        assert all(s.source == "alpha" for s in streams)
        mock_get.assert_called_once_with(
            "https://api.example.com/api/stream/alpha/ars-che",
            headers={"Accept": "application/json"},
            timeout=10.0,
        )

    @patch("matchcast.catalog.requests.get")
    def test_fetch_streams_single_object(self, mock_get, catalog) -> None:
        """Test a single object payload becomes one stream."""
        mock_get.return_value = json_response({"url": "https://cdn.example.com/1.m3u8"})

        assert len(catalog.fetch_streams("alpha", "1")) == 1

    @patch("matchcast.catalog.requests.get")
    def test_fetch_streams_error(self, mock_get, catalog) -> None:
        """Test request errors yield no streams."""
        mock_get.side_effect = requests.ConnectionError("refused")

        assert catalog.fetch_streams("alpha", "1") == []

    @patch("matchcast.catalog.requests.get")
    def test_fetch_streams_http_error(self, mock_get, catalog) -> None:
        """Test error status codes yield no streams."""
        response = json_response([])
        response.raise_for_status.side_effect = requests.HTTPError("404")
        mock_get.return_value = response

        assert catalog.fetch_streams("alpha", "1") == []

    @patch("matchcast.catalog.requests.get")
    def test_fetch_matches_all_sports(self, mock_get, catalog) -> None:
        """Test matches from every sport are merged."""
        payloads = {
            "https://api.example.com/api/sports": [{"id": "football"}, {"id": "tennis"}],
            "https://api.example.com/api/matches/football": [{"id": "f1", "title": "A - B"}],
            "https://api.example.com/api/matches/tennis": [{"id": "t1", "title": "C vs D"}],
        }
        mock_get.side_effect = lambda url, **_kwargs: json_response(payloads[url])

        matches = catalog.fetch_matches()

        assert [m.id for m in matches] == ["f1", "t1"]
        assert catalog.find_match("t1") is not None

    @patch("matchcast.catalog.requests.get")
    def test_fetch_matches_sports_in_parallel(self, mock_get, catalog) -> None:
        """Test per-sport requests run at the same time."""
        # Sequential requests would break the barrier
        both_in_flight = threading.Barrier(2, timeout=2)
        payloads = {
            "https://api.example.com/api/sports": [{"id": "football"}, {"id": "tennis"}],
            "https://api.example.com/api/matches/football": [{"id": "f1", "title": "A - B"}],
            "https://api.example.com/api/matches/tennis": [{"id": "t1", "title": "C vs D"}],
        }

        def get(url, **_kwargs):
            if "/matches/" in url:
                both_in_flight.wait()
            return json_response(payloads[url])

        mock_get.side_effect = get

        matches = catalog.fetch_matches()

        assert [m.id for m in matches] == ["f1", "t1"]

    @patch("matchcast.catalog.requests.get")
    def test_fetch_matches_invalid_payload(self, mock_get, catalog) -> None:
        """Test a non-list payload yields no matches."""
        mock_get.return_value = json_response({"error": "nope"})

        assert catalog.fetch_matches("football") == []

    @pytest.mark.asyncio
    async def test_resolve_candidates(self, catalog) -> None:
        """Test sources are merged in order and failing sources dropped."""
        match = Match(
            id="m1",
            sources=(
                MatchSource("alpha", "1"),
                MatchSource("bravo", "2"),
                MatchSource("charlie", "3"),
            ),
        )

        def fake_fetch(source: str, source_id: str) -> list[Stream]:
            if source == "bravo":
                msg = "unexpected"
                raise RuntimeError(msg)
            return [Stream(url=f"https://cdn.example.com/{source}/{source_id}", source=source)]

        with patch.object(catalog, "fetch_streams", side_effect=fake_fetch):
            streams = await catalog.resolve_candidates(match)

        assert [s.source for s in streams] == ["alpha", "charlie"]

    @pytest.mark.asyncio
    async def test_resolve_candidates_no_sources(self, catalog) -> None:
        """Test a match without sources resolves to nothing."""
        assert await catalog.resolve_candidates(Match(id="m1")) == []
