"""At-most-once stage execution.

A stage's writes and its idempotency record are committed in the same
transaction. If a concurrent writer got there first (duplicate primary key,
unique pick, or a lost compare-and-set on the run state) the transaction is
rolled back and the winner's stored result is replayed instead.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError

from app.services.engine.errors import PreconditionFailed
from app.services.pipeline.repository import RunRepository
from app.services.pipeline.states import StageName

logger = structlog.get_logger(__name__)


class WriteConflict(Exception):
    """Another execution advanced the run first."""


@dataclass(frozen=True)
class StoredResult:
    status: int
    body: dict[str, Any]


class IdempotencyGuard:
    """Wrap a stage's persistence in an idempotency record."""

    def __init__(self, repository: RunRepository):
        self.repository = repository

    async def lookup(self, run_id: str, stage: StageName, key: str) -> StoredResult | None:
        record = await self.repository.get_idempotency(run_id, stage, key)
        if record is None:
            return None
        return StoredResult(record.stored_status, record.stored_body)

    async def lookup_stage(self, run_id: str, stage: StageName) -> StoredResult | None:
        record = await self.repository.get_stage_record(run_id, stage)
        if record is None:
            return None
        return StoredResult(record.stored_status, record.stored_body)

    async def execute(
        self,
        run_id: str,
        stage: StageName,
        key: str,
        persist: Callable[[], Awaitable[tuple[int, dict[str, Any]]]],
    ) -> tuple[int, dict[str, Any], bool]:
        """Run ``persist`` and commit it with the idempotency record.

        Returns:
            (status, body, replayed)
        """
        try:
            status, body = await persist()
            await self.repository.add_idempotency(run_id, stage, key, status, body)
            await self.repository.commit()
            return status, body, False
        except (IntegrityError, WriteConflict) as e:
            await self.repository.rollback()
            logger.info(
                "stage_write_conflict",
                run_id=run_id,
                stage=stage.value,
                error=type(e).__name__,
            )
        except Exception:
            await self.repository.rollback()
            raise

        stored = await self.lookup(run_id, stage, key) or await self.lookup_stage(
            run_id, stage
        )
        if stored is None:
            raise PreconditionFailed(
                f"Run {run_id} changed concurrently during {stage.value}",
                stage=stage.value,
            )
        return stored.status, stored.body, True
