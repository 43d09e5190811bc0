"""Unit tests for the idempotency guard and run repository."""

import pytest

from app.models.domain import IdempotencyRecord
from app.services.engine.errors import PreconditionFailed
from app.services.pipeline.idempotency import IdempotencyGuard, WriteConflict
from app.services.pipeline.repository import RunRepository
from app.services.pipeline.states import PipelineState, StageName

RUN_ID = "5d0c4c3e-0000-5000-8000-000000000001"


async def _store(session_factory, key: str, status: int, body: dict) -> None:
    async with session_factory() as session:
        session.add(
            IdempotencyRecord(
                run_id=RUN_ID,
                stage=StageName.SNAPSHOT.value,
                key=key,
                stored_status=status,
                stored_body=body,
            )
        )
        await session.commit()


class TestIdempotencyGuard:
    """Stage results are written once and replayed verbatim."""

    async def test_first_execution_stores_result(self, session_factory):
        async with session_factory() as session:
            guard = IdempotencyGuard(RunRepository(session))

            async def persist():
                return 200, {"value": 1}

            status, body, replayed = await guard.execute(
                RUN_ID, StageName.SNAPSHOT, "k1", persist
            )
            stored = await guard.lookup(RUN_ID, StageName.SNAPSHOT, "k1")

        assert (status, body, replayed) == (200, {"value": 1}, False)
        assert stored.status == 200
        assert stored.body == {"value": 1}

    async def test_duplicate_key_replays_winner(self, session_factory):
        """A concurrent writer with the same key loses on the primary key."""
        await _store(session_factory, "k1", 200, {"winner": True})

        async with session_factory() as session:
            guard = IdempotencyGuard(RunRepository(session))

            async def persist():
                return 200, {"winner": False}

            status, body, replayed = await guard.execute(
                RUN_ID, StageName.SNAPSHOT, "k1", persist
            )

        assert replayed is True
        assert body == {"winner": True}

    async def test_lost_state_race_replays_other_key(self, session_factory):
        """A writer under a different key loses the compare-and-set."""
        await _store(session_factory, "winner-key", 200, {"winner": True})

        async with session_factory() as session:
            guard = IdempotencyGuard(RunRepository(session))

            async def persist():
                raise WriteConflict("state moved")

            status, body, replayed = await guard.execute(
                RUN_ID, StageName.SNAPSHOT, "loser-key", persist
            )

        assert (status, body, replayed) == (200, {"winner": True}, True)

    async def test_conflict_without_record_is_precondition_failure(self, session_factory):
        async with session_factory() as session:
            guard = IdempotencyGuard(RunRepository(session))

            async def persist():
                raise WriteConflict("state moved")

            with pytest.raises(PreconditionFailed):
                await guard.execute(RUN_ID, StageName.SNAPSHOT, "k1", persist)

    async def test_other_errors_roll_back_and_propagate(self, session_factory):
        async with session_factory() as session:
            guard = IdempotencyGuard(RunRepository(session))

            async def persist():
                raise RuntimeError("boom")

            with pytest.raises(RuntimeError):
                await guard.execute(RUN_ID, StageName.SNAPSHOT, "k1", persist)

            assert await guard.lookup(RUN_ID, StageName.SNAPSHOT, "k1") is None


class TestRunRepository:
    """Compare-and-set state transitions."""

    async def test_transition_is_compare_and_set(self, db_session, total_request):
        repo = RunRepository(db_session)
        await repo.add_run(RUN_ID, total_request, "shiva_v2")
        await repo.commit()

        assert await repo.transition(
            RUN_ID, PipelineState.CREATED, PipelineState.SNAPSHOT_CAPTURED
        ) is True
        assert await repo.transition(
            RUN_ID, PipelineState.CREATED, PipelineState.SNAPSHOT_CAPTURED
        ) is False
        await repo.commit()

        agg = await repo.load_aggregate(RUN_ID)
        assert agg.state == PipelineState.SNAPSHOT_CAPTURED
        assert agg.request == total_request

    async def test_missing_run_loads_as_none(self, db_session):
        assert await RunRepository(db_session).load_aggregate("missing") is None
