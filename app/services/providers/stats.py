"""Team statistics provider client."""

from dataclasses import asdict, dataclass, fields
from typing import Any

import httpx
import structlog

from app.services.engine.errors import EngineError, ExternalProviderError, ValidationError
from app.services.providers.cache import TTLCache
from app.services.providers.http import ProviderHTTPClient
from app.services.providers.retry import RetryPolicy

logger = structlog.get_logger(__name__)

REJECTED_NAME_STATUSES = frozenset({400, 404, 422})


@dataclass(frozen=True)
class TeamStats:
    """Season (and recent-form) statistics for one team.

    Rates are per 100 possessions; percentages are fractions (0.54, not 54).
    Recent-form and split fields are optional and fall back to season values.
    """

    team: str
    pace: float
    ortg: float
    drtg: float
    ppg: float = 0.0
    pace_last10: float | None = None
    ortg_last10: float | None = None
    three_par: float = 0.0
    opp_three_par: float = 0.0
    three_pct_last10: float = 0.0
    ftr: float = 0.0
    opp_ftr: float = 0.0
    efg_pct: float = 0.0
    tov_pct: float = 0.0
    oreb_pct: float = 0.0
    turnovers_last10: float = 0.0
    off_reb: float = 0.0
    def_reb: float = 0.0
    opp_off_reb: float = 0.0
    opp_def_reb: float = 0.0
    home_ortg: float | None = None
    home_drtg: float | None = None
    away_ortg: float | None = None
    away_drtg: float | None = None

    @property
    def net_rating(self) -> float:
        return self.ortg - self.drtg

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TeamStats":
        """Build from a provider payload, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        try:
            return cls(**values)
        except TypeError as e:
            raise ValidationError(f"Team stats payload incomplete: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def nickname(team: str) -> str:
    """Fallback query form: the team nickname ("Boston Celtics" -> "Celtics")."""
    parts = team.split()
    return parts[-1] if len(parts) > 1 else team


def name_rejected(error: EngineError) -> bool:
    """True when the provider refused the team name itself."""
    return (
        isinstance(error, ExternalProviderError)
        and error.status_code in REJECTED_NAME_STATUSES
    )


class StatsClient(ProviderHTTPClient):
    """
    Statistics provider client.

    Team statistics are cached through the injected TTLCache and fetched
    under the injected RetryPolicy. A rejected team name is retried once in
    nickname form.
    """

    provider_name = "stats"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        cache: TTLCache | None = None,
        cache_ttl_seconds: int = 900,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 6.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(base_url, timeout=timeout, http_client=http_client)
        self.api_key = api_key
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.retry_policy = retry_policy or RetryPolicy()

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def get_team_stats(self, team: str, sport: str) -> TeamStats:
        """Fetch statistics for a team, using the cache when warm."""
        cache_key = f"team_stats:{sport.lower()}:{team.lower()}"
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug("team_stats_cache_hit", team=team, sport=sport)
                return TeamStats.from_dict(cached)

        async def fetch(name: str) -> dict[str, Any]:
            return await self._get_json(f"{sport.lower()}/teams/{name}/stats")

        data = await self.retry_policy.run(
            "team_stats", fetch, team, fallback=nickname, fallback_on=name_rejected
        )
        if not isinstance(data, dict):
            raise ValidationError(f"Unexpected team stats payload for {team}")

        stats = TeamStats.from_dict({**data, "team": team})
        if self.cache is not None:
            await self.cache.set(cache_key, stats.to_dict(), self.cache_ttl_seconds)
        logger.info("team_stats_fetched", team=team, sport=sport)
        return stats
