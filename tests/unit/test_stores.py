"""Tests for fan-out reads and cascades in OpenFGAStore."""

import asyncio

import pytest

from conftest import FakeEngine
from rebac_admin.openfga.exceptions import EngineUnavailableError, PartialFanOutError
from rebac_admin.openfga.stores import PERMISSION_TYPES, OpenFGAStore
from rebac_admin.openfga.types import Permission, Tuple
from rebac_admin.pool.worker_pool import PoolStoppedError, WorkerPool

SUBJECT = "role:r1#assignee"


@pytest.fixture
def fga() -> FakeEngine:
    engine = FakeEngine(page_size=2)
    engine.grant(SUBJECT, "can_view", "client:okta")
    engine.grant(SUBJECT, "can_edit", "identity:joe")
    engine.grant(SUBJECT, "assignee", "role:r2")
    engine.grant("user:alice", "assignee", "role:r1")
    engine.grant("user:alice", "can_delete", "role:r1")
    engine.grant("group:devs#member", "assignee", "role:r1")
    return engine


async def _store(engine, workers: int = 4) -> OpenFGAStore:
    pool = WorkerPool(workers)
    pool.start()
    return OpenFGAStore(engine, pool)


class SlowReadEngine(FakeEngine):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def read_tuples(self, *args, **kwargs):
        await asyncio.sleep(self.delay)
        return await super().read_tuples(*args, **kwargs)


async def _stop_soon(pool: WorkerPool, after: float):
    await asyncio.sleep(after)
    await pool.stop()


class TestListPermissions:
    @pytest.mark.asyncio
    async def test_one_read_per_type(self, fga):
        store = await _store(fga)
        try:
            permissions, tokens = await store.list_permissions(SUBJECT)
        finally:
            await store.pool.stop()

        reads = [c for c in fga.calls if c[0] == "read"]
        assert sorted(r[3] for r in reads) == sorted(f"{t}:" for t in PERMISSION_TYPES)
        assert all(r[1] == SUBJECT for r in reads)

        # assignee on role:r2 is a membership, not a permission
        assert permissions == [
            Permission("can_edit", "identity:joe"),
            Permission("can_view", "client:okta"),
        ]
        assert tokens == {t: "" for t in PERMISSION_TYPES}

    @pytest.mark.asyncio
    async def test_continuation_tokens_per_type(self, fga):
        for n in range(3):
            fga.grant(SUBJECT, "can_view", f"client:c{n}")
        store = await _store(fga)
        try:
            first, tokens = await store.list_permissions(SUBJECT)
            assert tokens["client"] == "2"
            assert len([p for p in first if p.object.startswith("client:")]) == 2

            second, tokens = await store.list_permissions(SUBJECT, tokens)
        finally:
            await store.pool.stop()

        assert [p.object for p in second if p.object.startswith("client:")] == [
            "client:c2",
            "client:okta",
        ]
        assert tokens["client"] == ""

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_types(self, fga):
        fga.failing_reads["identity:"] = EngineUnavailableError("read failed", "read")
        store = await _store(fga)
        try:
            with pytest.raises(PartialFanOutError) as exc_info:
                await store.list_permissions(SUBJECT)
        finally:
            await store.pool.stop()

        error = exc_info.value
        assert list(error.failures) == ["identity"]
        assert error.permissions == [Permission("can_view", "client:okta")]
        assert error.tokens["identity"] == ""
        assert str(error).startswith("fan-out failed for types: identity")

    @pytest.mark.asyncio
    async def test_single_worker_still_completes(self, fga):
        store = await _store(fga, workers=1)
        try:
            permissions, _ = await store.list_permissions(SUBJECT)
        finally:
            await store.pool.stop()
        assert len(permissions) == 2

    @pytest.mark.asyncio
    async def test_stopped_pool_reports_every_type(self, fga):
        store = await _store(fga)
        await store.pool.stop()

        with pytest.raises(PartialFanOutError) as exc_info:
            await store.list_permissions(SUBJECT)
        assert set(exc_info.value.failures) == set(PERMISSION_TYPES)


class TestAssignments:
    @pytest.mark.asyncio
    async def test_assign_and_unassign_permissions(self):
        engine = FakeEngine()
        store = await _store(engine)
        try:
            await store.assign_permissions("group:g1#member", Permission("can_view", "role:r1"))
            assert Tuple("group:g1#member", "can_view", "role:r1") in engine.tuples

            await store.unassign_permissions("group:g1#member", Permission("can_view", "role:r1"))
            assert not engine.tuples
        finally:
            await store.pool.stop()

    @pytest.mark.asyncio
    async def test_assign_roles_and_groups_batch(self):
        engine = FakeEngine()
        store = await _store(engine)
        try:
            await store.assign_roles("user:joe", "role:a", "role:b")
            await store.assign_groups("user:joe", "group:g")
        finally:
            await store.pool.stop()

        writes = [c for c in engine.calls if c[0] == "write"]
        assert len(writes) == 2
        assert engine.tuples == {
            Tuple("user:joe", "assignee", "role:a"),
            Tuple("user:joe", "assignee", "role:b"),
            Tuple("user:joe", "member", "group:g"),
        }

    @pytest.mark.asyncio
    async def test_listing_helpers(self):
        engine = FakeEngine()
        engine.grant("user:joe", "assignee", "role:a")
        engine.grant("user:joe", "member", "group:g")
        store = await _store(engine)
        try:
            assert await store.list_assigned_roles("user:joe") == ["a"]
            assert await store.list_assigned_groups("user:joe") == ["g"]
            assert await store.list_viewable_roles("user:joe") == []
        finally:
            await store.pool.stop()


class TestRemoveRoleRelations:
    @pytest.mark.asyncio
    async def test_cascade_removes_everything(self, fga):
        store = await _store(fga)
        try:
            failures = await store.remove_role_relations("r1")
        finally:
            await store.pool.stop()

        assert failures == {}
        assert fga.referencing("role:r1") == set()

        reads = [c for c in fga.calls if c[0] == "read" and c[4] == ""]
        assert len(reads) == 12

    @pytest.mark.asyncio
    async def test_cascade_pages_through_branch(self, fga):
        for n in range(5):
            fga.grant(SUBJECT, "can_view", f"group:g{n}")
        store = await _store(fga)
        try:
            await store.remove_role_relations("r1")
        finally:
            await store.pool.stop()

        group_reads = [c for c in fga.calls if c[0] == "read" and c[3] == "group:"]
        assert [r[4] for r in group_reads] == ["", "2", "4"]
        # one batched delete for the whole branch
        group_deletes = [c for c in fga.calls if c[0] == "delete" and c[1][0].object.startswith("group:")]
        assert len(group_deletes) == 1
        assert len(group_deletes[0][1]) == 5
        assert fga.referencing("role:r1") == set()

    @pytest.mark.asyncio
    async def test_failed_branch_does_not_stop_others(self, fga):
        fga.failing_reads["client:"] = EngineUnavailableError("read failed", "read")
        store = await _store(fga)
        try:
            failures = await store.remove_role_relations("r1")
        finally:
            await store.pool.stop()

        assert list(failures) == ["type=client"]
        assert fga.referencing("role:r1") == {Tuple(SUBJECT, "can_view", "client:okta")}

    @pytest.mark.asyncio
    async def test_pool_stopped_mid_cascade_reports_every_branch(self):
        engine = SlowReadEngine(delay=0.2)
        store = await _store(engine, workers=2)

        stopper = asyncio.create_task(_stop_soon(store.pool, 0.05))
        failures = await store.remove_role_relations("r1")
        await stopper

        assert len(failures) == 12
        assert all(isinstance(exc, PoolStoppedError) for exc in failures.values())


class TestPoolStoppedMidFanOut:
    @pytest.mark.asyncio
    async def test_listing_raises_partial_failure(self):
        engine = SlowReadEngine(delay=0.2)
        store = await _store(engine, workers=2)

        stopper = asyncio.create_task(_stop_soon(store.pool, 0.05))
        with pytest.raises(PartialFanOutError) as exc_info:
            await store.list_permissions(SUBJECT)
        await stopper

        assert set(exc_info.value.failures) == set(PERMISSION_TYPES)
        assert exc_info.value.permissions == []
        assert exc_info.value.tokens == {t: "" for t in PERMISSION_TYPES}
