"""Scheduled pick generation.

For every capper profile with ``auto_run`` enabled, runs the pipeline on each
upcoming game in the pick window. Runs are keyed deterministically per
capper, game, bet type and game date, so a repeated beat replays instead of
producing a second pick.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from app.config import get_settings
from app.models.base import get_task_session
from app.models.domain import JobRun
from app.services.engine.errors import EngineError
from app.services.engine.types import BetType
from app.services.pipeline.factory import build_orchestrator, provider_clients
from app.services.pipeline.repository import ProfileWeightSource, RunRepository
from app.services.pipeline.stages import RunRequest
from app.services.providers.odds import GameListing
from app.tasks import celery_app

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AutoPickTarget:
    """Plain copy of an auto-run capper profile."""

    capper: str
    sport: str
    bet_type: BetType
    profile_version: str | None = None


def auto_pick_key(capper: str, game_id: str, bet_type: BetType, game_time: datetime) -> str:
    """Idempotency key for a scheduled run: sha256(capper|game|bet_type|date)."""
    raw = f"{capper}|{game_id}|{bet_type.value}|{game_time.date().isoformat()}"
    return hashlib.sha256(raw.encode()).hexdigest()


def eligible_games(
    games: list[GameListing], now: datetime, window_hours: int
) -> list[GameListing]:
    """Games that have not started and start within the window."""
    horizon = now + timedelta(hours=window_hours)
    return [g for g in games if now < g.commence_time <= horizon]


@celery_app.task(bind=True, soft_time_limit=540, time_limit=600)
def generate_auto_picks(self):
    """
    Scheduled: Every 30 minutes
    Timeout: 10 minutes

    For each auto-run capper profile:
    1. List upcoming games for the profile's sport
    2. Skip games outside the pick window
    3. Skip games the capper already has a pick on
    4. Run the full pipeline under a deterministic idempotency key
    """
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_generate_auto_picks_async(self))
    finally:
        loop.close()


@celery_app.task(bind=True, soft_time_limit=120, time_limit=150)
def run_pipeline(self, request: dict[str, Any], idempotency_key: str, dry_run: bool = False):
    """Run the pipeline for one request, as the HTTP trigger would."""
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(
            _run_pipeline_async(RunRequest.model_validate(request), idempotency_key, dry_run)
        )
    finally:
        loop.close()


async def _run_pipeline_async(
    request: RunRequest, idempotency_key: str, dry_run: bool
) -> dict[str, Any]:
    settings = get_settings()
    async with get_task_session() as session, provider_clients(settings) as clients:
        orchestrator = build_orchestrator(session, clients, settings)
        result = await orchestrator.execute_pipeline(
            request, idempotency_key, dry_run=dry_run
        )
    logger.info(
        "pipeline_task_complete",
        run_id=result.run_id,
        success=result.success,
        state=result.state.value if result.state else None,
    )
    return result.model_dump(mode="json")


async def _generate_auto_picks_async(task):
    """Async implementation of scheduled pick generation."""
    settings = get_settings()
    started_at = datetime.now(timezone.utc)
    job_status = "running"
    error_message = None
    stats = {
        "profiles": 0,
        "games_considered": 0,
        "runs": 0,
        "picks": 0,
        "failed": 0,
        "skipped_existing_pick": 0,
        "skipped_window": 0,
    }

    if not settings.auto_pick_enabled:
        logger.info("auto_picks_disabled")
        return stats

    async with get_task_session() as session:
        # Create job run record
        job_run = JobRun(
            job_name="generate_auto_picks",
            started_at=started_at,
            status="running",
        )
        session.add(job_run)
        await session.commit()
        job_run_id = job_run.id

        try:
            profiles = await ProfileWeightSource(session).list_auto_run_profiles()
            targets = [
                AutoPickTarget(
                    capper=p.capper,
                    sport=p.sport,
                    bet_type=BetType(p.bet_type),
                    profile_version=p.profile_version,
                )
                for p in profiles
            ]
            stats["profiles"] = len(targets)

            repository = RunRepository(session)
            async with provider_clients(settings) as clients:
                orchestrator = build_orchestrator(session, clients, settings)
                games_by_sport: dict[str, list[GameListing]] = {}

                for target in targets:
                    if target.sport not in games_by_sport:
                        try:
                            games_by_sport[target.sport] = await clients.odds.list_games(
                                target.sport
                            )
                        except EngineError as e:
                            logger.warning(
                                "auto_picks_game_listing_failed",
                                sport=target.sport,
                                error=e.message,
                            )
                            games_by_sport[target.sport] = []

                    games = games_by_sport[target.sport]
                    now = datetime.now(timezone.utc)
                    in_window = eligible_games(games, now, settings.auto_pick_window_hours)
                    stats["skipped_window"] += len(games) - len(in_window)

                    for game in in_window:
                        stats["games_considered"] += 1
                        if await repository.has_pick(
                            target.capper, game.game_id, target.bet_type
                        ):
                            stats["skipped_existing_pick"] += 1
                            continue

                        request = RunRequest(
                            capper=target.capper,
                            sport=target.sport,
                            bet_type=target.bet_type,
                            game_id=game.game_id,
                            home_team=game.home_team,
                            away_team=game.away_team,
                            game_time=game.commence_time,
                            profile_version=target.profile_version,
                            trigger="scheduled",
                        )
                        key = auto_pick_key(
                            target.capper, game.game_id, target.bet_type, game.commence_time
                        )
                        try:
                            result = await orchestrator.execute_pipeline(request, key)
                        except EngineError as e:
                            stats["failed"] += 1
                            logger.warning(
                                "auto_pick_rejected",
                                capper=target.capper,
                                game_id=game.game_id,
                                error=e.message,
                            )
                            continue

                        stats["runs"] += 1
                        if not result.success:
                            stats["failed"] += 1
                        elif result.pick is not None:
                            stats["picks"] += 1

            job_status = "success"

            logger.info(
                "auto_picks_task_complete",
                runs=stats["runs"],
                picks=stats["picks"],
                failed=stats["failed"],
                duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
            )

        except Exception as e:
            job_status = "failed"
            error_message = str(e)
            logger.error(
                "auto_picks_task_failed",
                error=str(e),
                task_id=task.request.id if task is not None else None,
            )
            await session.rollback()

        finally:
            # Update job run record
            job_run = await session.get(JobRun, job_run_id)
            job_run.completed_at = datetime.now(timezone.utc)
            job_run.status = job_status
            job_run.error_message = error_message
            job_run.records_processed = stats["runs"]
            job_run.job_metadata = stats
            await session.commit()

    return stats
