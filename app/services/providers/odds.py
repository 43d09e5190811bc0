"""Odds provider client."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
import structlog

from app.services.engine.errors import ValidationError
from app.services.engine.types import BookLines
from app.services.providers.adapters import normalize_odds_payload
from app.services.providers.http import ProviderHTTPClient
from app.services.providers.retry import RetryPolicy

logger = structlog.get_logger(__name__)

MARKETS = "h2h,spreads,totals"


@dataclass(frozen=True)
class GameListing:
    """An upcoming game offered by the odds provider."""

    game_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: datetime


def _parse_time(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"Bad commence_time {value!r}") from e


class OddsClient(ProviderHTTPClient):
    """
    Odds provider client.

    Events are returned as ``events -> bookmakers -> markets -> outcomes``
    and converted to per-book lines by the odds adapter.
    """

    provider_name = "odds"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        sport_keys: dict[str, str],
        regions: str = "us",
        retry_policy: RetryPolicy | None = None,
        timeout: float = 6.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(base_url, timeout=timeout, http_client=http_client)
        self.api_key = api_key
        self.sport_keys = {k.upper(): v for k, v in sport_keys.items()}
        self.regions = regions
        self.retry_policy = retry_policy or RetryPolicy()

    def _sport_key(self, sport: str) -> str:
        try:
            return self.sport_keys[sport.upper()]
        except KeyError:
            raise ValidationError(f"Unsupported sport {sport}") from None

    def _params(self) -> dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "regions": self.regions,
            "markets": MARKETS,
            "oddsFormat": "american",
        }

    async def list_games(self, sport: str) -> list[GameListing]:
        """List upcoming games with odds for a sport."""
        path = f"sports/{self._sport_key(sport)}/odds"

        async def fetch(p: str) -> Any:
            return await self._get_json(p, self._params())

        events = await self.retry_policy.run("list_games", fetch, path)
        if not isinstance(events, list):
            raise ValidationError("Odds provider returned a non-list event payload")

        games = [
            GameListing(
                game_id=str(e["id"]),
                sport=sport.upper(),
                home_team=e["home_team"],
                away_team=e["away_team"],
                commence_time=_parse_time(e["commence_time"]),
            )
            for e in events
            if e.get("id") and e.get("home_team") and e.get("away_team")
        ]
        logger.info("games_listed", sport=sport, games=len(games))
        return games

    async def get_odds_snapshot(self, game_id: str, sport: str) -> list[BookLines]:
        """Fetch current per-book lines for one game."""
        path = f"sports/{self._sport_key(sport)}/events/{game_id}/odds"

        async def fetch(p: str) -> Any:
            return await self._get_json(p, self._params())

        event = await self.retry_policy.run("get_odds_snapshot", fetch, path)
        if not isinstance(event, dict):
            raise ValidationError(f"Odds provider returned a non-object event for {game_id}")

        books = normalize_odds_payload(
            event, event.get("home_team", ""), event.get("away_team", "")
        )
        logger.info("odds_fetched", game_id=game_id, books=len(books))
        return books
