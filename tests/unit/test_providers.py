"""Unit tests for provider clients over a mocked HTTP transport."""

from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest

from app.services.engine.errors import ExternalProviderError, ValidationError
from app.services.providers.cache import MemoryTTLCache
from app.services.providers.narrative import NarrativeClient, NarrativeRequest, shorten
from app.services.providers.odds import OddsClient
from app.services.providers.retry import RetryPolicy
from app.services.providers.stats import StatsClient, nickname

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0)

EVENT = {
    "id": "evt-1001",
    "home_team": "Boston Celtics",
    "away_team": "Denver Nuggets",
    "commence_time": "2026-10-18T23:30:00Z",
    "bookmakers": [
        {
            "key": "draftkings",
            "markets": [
                {"key": "spreads", "outcomes": [
                    {"name": "Boston Celtics", "point": -3.5},
                    {"name": "Denver Nuggets", "point": 3.5},
                ]},
                {"key": "totals", "outcomes": [
                    {"name": "Over", "point": 225.5},
                    {"name": "Under", "point": 225.5},
                ]},
            ],
        },
    ],
}

STATS = {"pace": 99.0, "ortg": 118.2, "drtg": 111.0, "ppg": 117.5, "unknown_field": 1}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestOddsClient:
    """Odds provider client."""

    async def test_list_games(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[EVENT, {"id": "", "home_team": "X"}])

        odds = OddsClient(
            "https://odds.test/v4", "secret", {"NBA": "basketball_nba"},
            retry_policy=NO_WAIT, http_client=_client(handler),
        )

        games = await odds.list_games("nba")

        assert len(games) == 1
        assert games[0].game_id == "evt-1001"
        assert games[0].sport == "NBA"
        assert games[0].commence_time == datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)
        assert seen[0].url.path == "/v4/sports/basketball_nba/odds"
        assert seen[0].url.params["apiKey"] == "secret"

    async def test_snapshot_normalizes_books(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=EVENT)

        odds = OddsClient(
            "https://odds.test/v4", "secret", {"NBA": "basketball_nba"},
            retry_policy=NO_WAIT, http_client=_client(handler),
        )

        books = await odds.get_odds_snapshot("evt-1001", "NBA")

        assert len(books) == 1
        assert books[0].spread_home == -3.5
        assert books[0].total == 225.5

    async def test_rate_limit_is_retried(self):
        responses = iter([httpx.Response(429), httpx.Response(200, json=EVENT)])

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        odds = OddsClient(
            "https://odds.test/v4", "secret", {"NBA": "basketball_nba"},
            retry_policy=NO_WAIT, http_client=_client(handler),
        )

        books = await odds.get_odds_snapshot("evt-1001", "NBA")
        assert books[0].book == "draftkings"

    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401, text="bad key")

        odds = OddsClient(
            "https://odds.test/v4", "secret", {"NBA": "basketball_nba"},
            retry_policy=NO_WAIT, http_client=_client(handler),
        )

        with pytest.raises(ExternalProviderError) as exc_info:
            await odds.get_odds_snapshot("evt-1001", "NBA")

        assert exc_info.value.retryable is False
        assert len(calls) == 1

    async def test_unsupported_sport_rejected(self):
        odds = OddsClient("https://odds.test/v4", "secret", {"NBA": "basketball_nba"})

        with pytest.raises(ValidationError):
            await odds.list_games("NHL")


class TestStatsClient:
    """Statistics provider client."""

    def test_nickname(self):
        assert nickname("Boston Celtics") == "Celtics"
        assert nickname("Portland Trail Blazers") == "Blazers"
        assert nickname("Celtics") == "Celtics"

    async def test_nickname_fallback_after_failure(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if "Boston Celtics" in request.url.path:
                return httpx.Response(503)
            return httpx.Response(200, json=STATS)

        stats = StatsClient(
            "https://stats.test", retry_policy=NO_WAIT, http_client=_client(handler)
        )

        result = await stats.get_team_stats("Boston Celtics", "NBA")

        assert paths == ["/nba/teams/Boston Celtics/stats", "/nba/teams/Celtics/stats"]
        assert result.team == "Boston Celtics"
        assert result.ortg == 118.2
        assert result.net_rating == pytest.approx(7.2)

    async def test_rejected_name_falls_back_to_nickname(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if "Boston Celtics" in request.url.path:
                return httpx.Response(404, text="unknown team")
            return httpx.Response(200, json=STATS)

        stats = StatsClient(
            "https://stats.test", retry_policy=NO_WAIT, http_client=_client(handler)
        )

        result = await stats.get_team_stats("Boston Celtics", "NBA")

        assert paths == ["/nba/teams/Boston Celtics/stats", "/nba/teams/Celtics/stats"]
        assert result.team == "Boston Celtics"

    async def test_rejected_nickname_is_not_retried_again(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(404, text="unknown team")

        stats = StatsClient(
            "https://stats.test", retry_policy=NO_WAIT, http_client=_client(handler)
        )

        with pytest.raises(ExternalProviderError) as exc_info:
            await stats.get_team_stats("Boston Celtics", "NBA")

        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False
        assert len(paths) == 2

    async def test_cache_hit_skips_request(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=STATS)

        stats = StatsClient(
            "https://stats.test",
            api_key="token",
            cache=MemoryTTLCache(),
            retry_policy=NO_WAIT,
            http_client=_client(handler),
        )

        first = await stats.get_team_stats("Denver Nuggets", "NBA")
        second = await stats.get_team_stats("Denver Nuggets", "NBA")

        assert first == second
        assert len(calls) == 1
        assert calls[0].headers["Authorization"] == "Bearer token"

    async def test_incomplete_payload_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"pace": 99.0})

        stats = StatsClient(
            "https://stats.test", retry_policy=NO_WAIT, http_client=_client(handler)
        )

        with pytest.raises(ValidationError):
            await stats.get_team_stats("Denver Nuggets", "NBA")


class FakeCompletions:
    def __init__(self, contents: list[str]):
        self.contents = contents
        self.prompts: list[str] = []

    async def create(self, **kwargs):
        self.prompts.append(kwargs["messages"][1]["content"])
        content = self.contents.pop(0)
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _openai(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class TestNarrativeClient:
    """Narrative generation over a stubbed chat API."""

    async def test_generates_narrative(self):
        completions = FakeCompletions(
            ['{"predictions": ["Over 225.5"], "narrative": "Both defenses are leaking."}']
        )
        client = NarrativeClient(client=_openai(completions), retry_policy=NO_WAIT)

        narrative = await client.generate_narrative(
            {"game": "Denver Nuggets @ Boston Celtics", "factors": [{"key": "paceIndex"}]}
        )

        assert narrative.predictions == ["Over 225.5"]
        assert narrative.narrative == "Both defenses are leaking."
        assert "paceIndex" in completions.prompts[0]

    async def test_invalid_json_is_provider_error(self):
        completions = FakeCompletions(["not json"])
        client = NarrativeClient(client=_openai(completions), retry_policy=NO_WAIT)

        with pytest.raises(ExternalProviderError):
            await client.generate_narrative({"game": "A @ B"})

    def test_shorten_drops_factor_breakdown(self):
        request = NarrativeRequest(context={"game": "A @ B", "factors": [1, 2]})

        assert "factors" in request.user_prompt()
        assert "factors" not in shorten(request).user_prompt()

    def test_missing_api_key_is_not_retryable(self):
        client = NarrativeClient(api_key="")

        with pytest.raises(ExternalProviderError) as exc_info:
            client.client

        assert exc_info.value.retryable is False
