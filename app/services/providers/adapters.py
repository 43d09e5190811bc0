"""Ingestion-boundary adapters.

Stored odds and capper profiles exist in several historical shapes. Each
adapter here recognises the shapes explicitly and returns the one canonical
form the engine accepts. Unknown shapes are rejected, never guessed at.

Odds payload shapes:
- provider: ``{"bookmakers": [{"key", "markets": [{"key", "outcomes"}]}]}``
- books map: ``{book_key: {"moneyline": {...}, "spread": {"line"}, "total": {"line"}}}``
- single book: ``{"moneyline": {...}, "spread": {"home_line"}, "total": {"line"}}``

Capper profile factor shapes:
- list: ``[{"key", "enabled", "weight"}]``
- dict: ``{key: weight}``
- nested: ``{"factors": <list or dict>}`` or ``{"profile_json": {"factors": ...}}``
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog

from app.services.engine.errors import ConfigurationError, ValidationError
from app.services.engine.market_edge import SPREAD_EDGE_KEY, TOTAL_EDGE_KEY
from app.services.engine.types import BookLines, OddsSnapshot
from app.services.factors.base import WeightConfig

logger = structlog.get_logger(__name__)

SINGLE_BOOK_KEY = "consensus"
MARKET_EDGE_KEYS = frozenset({TOTAL_EDGE_KEY, SPREAD_EDGE_KEY})


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _outcome(outcomes: list[dict[str, Any]], name: str) -> dict[str, Any] | None:
    for outcome in outcomes:
        if outcome.get("name") == name:
            return outcome
    return None


def _lines_from_provider_book(
    bookmaker: dict[str, Any], home_team: str, away_team: str
) -> BookLines:
    ml_home = ml_away = spread_home = total = None
    for market in bookmaker.get("markets") or []:
        outcomes = market.get("outcomes") or []
        key = market.get("key")
        if key == "h2h":
            home = _outcome(outcomes, home_team)
            away = _outcome(outcomes, away_team)
            if home and away:
                ml_home, ml_away = _number(home.get("price")), _number(away.get("price"))
        elif key == "spreads":
            home = _outcome(outcomes, home_team)
            if home:
                spread_home = _number(home.get("point"))
        elif key == "totals":
            over = _outcome(outcomes, "Over")
            if over:
                total = _number(over.get("point"))
    return BookLines(
        book=str(bookmaker.get("key") or bookmaker.get("title") or "unknown"),
        moneyline_home=ml_home,
        moneyline_away=ml_away,
        spread_home=spread_home,
        total=total,
    )


def _lines_from_stored_book(book: str, odds: dict[str, Any]) -> BookLines:
    moneyline = odds.get("moneyline") or {}
    spread = odds.get("spread") or {}
    total = odds.get("total") or {}
    spread_line = spread.get("line", spread.get("home_line"))
    return BookLines(
        book=book,
        moneyline_home=_number(moneyline.get("home")),
        moneyline_away=_number(moneyline.get("away")),
        spread_home=_number(spread_line),
        total=_number(total.get("line")),
    )


def normalize_odds_payload(
    payload: Any, home_team: str, away_team: str
) -> list[BookLines]:
    """Convert any known odds payload shape into per-book lines."""
    if not isinstance(payload, dict):
        raise ValidationError(f"Odds payload must be an object, got {type(payload).__name__}")

    if "bookmakers" in payload:
        books = payload.get("bookmakers") or []
        return [_lines_from_provider_book(b, home_team, away_team) for b in books]

    if {"moneyline", "spread", "total"} & payload.keys():
        logger.debug("odds_payload_single_book_shape")
        return [_lines_from_stored_book(SINGLE_BOOK_KEY, payload)]

    if payload and all(isinstance(v, dict) for v in payload.values()):
        logger.debug("odds_payload_books_map_shape", books=len(payload))
        return [_lines_from_stored_book(book, odds) for book, odds in payload.items()]

    if not payload:
        return []

    raise ValidationError(f"Unrecognised odds payload keys: {sorted(payload)[:5]}")


def _average(values: Iterable[float | None]) -> tuple[float | None, int]:
    present = [v for v in values if v is not None]
    if not present:
        return None, 0
    return round(sum(present) / len(present), 1), len(present)


def build_odds_snapshot(
    game_id: str, books: list[BookLines], captured_at: datetime
) -> OddsSnapshot:
    """Average lines across the books that report each market.

    Books that omit a market are ignored for that market only. Markets no
    book reports are None; callers decide whether that is fatal.
    """
    ml_home, ml_home_n = _average(b.moneyline_home for b in books)
    ml_away, _ = _average(b.moneyline_away for b in books)
    spread, spread_n = _average(b.spread_home for b in books)
    total, total_n = _average(b.total for b in books)

    reporting = [
        b for b in books
        if any(v is not None for v in (b.moneyline_home, b.spread_home, b.total))
    ]
    return OddsSnapshot(
        game_id=game_id,
        captured_at=captured_at,
        books_considered=len(reporting),
        moneyline_home=ml_home,
        moneyline_away=ml_away,
        spread_line=spread,
        total_line=total,
        books_by_market={"moneyline": ml_home_n, "spread": spread_n, "total": total_n},
    )


def _required_weight(key: str, weight: Any) -> Any:
    if weight is None:
        raise ConfigurationError(f"Enabled factor {key} has no weight")
    return weight


def _weights_from_factors(factors: Any) -> dict[str, Any]:
    weights: dict[str, Any] = {}
    if isinstance(factors, list):
        for entry in factors:
            if not isinstance(entry, dict) or "key" not in entry:
                raise ValidationError(f"Malformed factor entry: {entry!r}")
            if entry.get("enabled", True):
                weights[entry["key"]] = _required_weight(entry["key"], entry.get("weight"))
        return weights
    if isinstance(factors, dict):
        for key, value in factors.items():
            if isinstance(value, dict):
                if value.get("enabled", True):
                    weights[key] = _required_weight(key, value.get("weight"))
            else:
                weights[key] = _required_weight(key, value)
        return weights
    raise ValidationError(f"Unrecognised factor config shape: {type(factors).__name__}")


def weight_config_from_profile(profile: Any, source: str = "capper_profile") -> WeightConfig:
    """Build a WeightConfig from any known capper profile shape.

    Market-edge keys are dropped: that factor is always injected at full
    weight and is never analyst-configured.
    """
    if isinstance(profile, dict) and "profile_json" in profile:
        profile = profile["profile_json"] or {}
    if isinstance(profile, dict) and "factors" in profile:
        profile = profile["factors"]
    if profile is None:
        profile = []

    weights = {
        key: weight
        for key, weight in _weights_from_factors(profile).items()
        if key not in MARKET_EDGE_KEYS
    }
    return WeightConfig(weights, source=source)
