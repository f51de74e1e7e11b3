"""Test configuration and fixtures."""

import os
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["AUTHORIZATION_ENABLED"] = "false"
os.environ["AUTHORIZATION_CHECK_TIMEOUT_MS"] = "2000"
os.environ["OPENFGA_WORKERS_TOTAL"] = "8"

from rebac_admin.authorization.principal import TOKEN_HEADER, encode_identifier
from rebac_admin.authorization.references import ADMIN_OBJECT
from rebac_admin.main import create_app
from rebac_admin.models.base import Base
from rebac_admin.openfga.exceptions import EngineResponseError
from rebac_admin.openfga.types import ReadPage, Tuple


TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# In-memory ReBAC engine
# ---------------------------------------------------------------------------


class FakeEngine:
    """Tuple store and check evaluator standing in for OpenFGA.

    Evaluation covers what the bundled model needs: direct tuples, public
    wildcards, usersets (``type:id#relation``) and the ``admin from
    privileged`` rewrite. Reads page ``page_size`` tuples at a time.
    """

    def __init__(self, page_size: int = 50):
        self.tuples: Set[Tuple] = set()
        self.page_size = page_size
        self.calls: List[tuple] = []
        # operation name -> exception raised on every call
        self.failures: Dict[str, Exception] = {}
        # object prefixes whose reads fail
        self.failing_reads: Dict[str, Exception] = {}
        self.store_id = ""
        self.models: List[dict] = []

    def grant(self, user: str, relation: str, object: str):
        self.tuples.add(Tuple(user, relation, object))

    def make_admin(self, user_id: str):
        self.grant(f"user:{user_id}", "admin", ADMIN_OBJECT)

    def _maybe_fail(self, operation: str):
        if operation in self.failures:
            raise self.failures[operation]

    def _allowed(self, user: str, relation: str, object: str, facts: Set[Tuple], depth: int = 0) -> bool:
        if depth > 5:
            return False
        if Tuple(user, relation, object) in facts:
            return True
        for fact in facts:
            if fact.object != object:
                continue
            if fact.relation == relation:
                if fact.user.endswith(":*") and user.startswith(fact.user[:-1]):
                    return True
                if "#" in fact.user:
                    userset, _, userset_relation = fact.user.partition("#")
                    if self._allowed(user, userset_relation, userset, facts, depth + 1):
                        return True
            if fact.relation == "privileged" and relation.startswith("can_"):
                if self._allowed(user, "admin", fact.user, facts, depth + 1):
                    return True
        return False

    async def close(self):
        pass

    async def create_store(self, name, timeout=None) -> str:
        self.calls.append(("create_store", name))
        self._maybe_fail("create_store")
        self.store_id = f"store-{name}"
        return self.store_id

    async def write_model(self, model, timeout=None) -> str:
        self.calls.append(("write_model",))
        self._maybe_fail("write_model")
        self.models.append(model)
        return f"model-{len(self.models)}"

    async def compare_model(self, expected, timeout=None) -> bool:
        self.calls.append(("compare_model",))
        self._maybe_fail("compare_model")
        return True

    async def write_tuple(self, user, relation, object, timeout=None):
        await self.write_tuples(Tuple(user, relation, object))

    async def delete_tuple(self, user, relation, object, timeout=None):
        await self.delete_tuples(Tuple(user, relation, object))

    async def write_tuples(self, *tuples: Tuple, timeout=None):
        self.calls.append(("write", tuples))
        self._maybe_fail("write")
        if not tuples:
            return
        for t in tuples:
            if t in self.tuples:
                raise EngineResponseError("write rejected: HTTP 400", 400, operation="write")
        self.tuples.update(tuples)

    async def delete_tuples(self, *tuples: Tuple, timeout=None):
        self.calls.append(("delete", tuples))
        self._maybe_fail("delete")
        if not tuples:
            return
        for t in tuples:
            if t not in self.tuples:
                raise EngineResponseError("delete rejected: HTTP 400", 400, operation="delete")
        self.tuples.difference_update(tuples)

    async def check(self, user, relation, object, *contextual_tuples, timeout=None) -> bool:
        self.calls.append(("check", user, relation, object))
        self._maybe_fail("check")
        return self._allowed(user, relation, object, self.tuples | set(contextual_tuples))

    async def batch_check(self, *tuples, timeout=None) -> bool:
        return all([await self.check(*t.values()) for t in tuples])

    async def read_tuples(self, user="", relation="", object="", continuation_token="", timeout=None) -> ReadPage:
        self.calls.append(("read", user, relation, object, continuation_token))
        self._maybe_fail("read")
        for prefix, exc in self.failing_reads.items():
            if object.startswith(prefix):
                raise exc

        def matches(t: Tuple) -> bool:
            if user and t.user != user:
                return False
            if relation and t.relation != relation:
                return False
            if object.endswith(":"):
                return t.object.startswith(object)
            return not object or t.object == object

        found = sorted((t for t in self.tuples if matches(t)), key=Tuple.values)
        start = int(continuation_token or 0)
        end = start + self.page_size
        token = str(end) if end < len(found) else ""
        return ReadPage(tuples=found[start:end], continuation_token=token)

    async def list_objects(self, user, relation, object_type, timeout=None) -> List[str]:
        self.calls.append(("list_objects", user, relation, object_type))
        self._maybe_fail("list_objects")
        prefix = f"{object_type}:"
        objects = sorted({t.object for t in self.tuples if t.object.startswith(prefix)})
        return [o[len(prefix):] for o in objects if self._allowed(user, relation, o, self.tuples)]

    async def list_users(self, object, relation, user_type, timeout=None) -> List[str]:
        return sorted(
            t.user for t in self.tuples
            if t.object == object and t.relation == relation and t.user.startswith(f"{user_type}:")
        )

    def checks(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "check"]

    def referencing(self, object: str) -> Set[Tuple]:
        return {t for t in self.tuples if object in (t.object, t.user.split("#")[0])}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def auth_headers(user_id: Optional[str]) -> Dict[str, str]:
    if user_id is None:
        return {}
    return {TOKEN_HEADER: encode_identifier(user_id)}


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest_asyncio.fixture
async def session_factory():
    """Async session factory over a fresh in-memory database."""
    test_async_engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with test_async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        bind=test_async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    await test_async_engine.dispose()


@pytest.fixture
def app(engine):
    return create_app(engine_client=engine)


@pytest.fixture
def client(app) -> TestClient:
    """Test client running the full lifespan against the fake engine."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def admin(engine) -> Dict[str, str]:
    """Headers for a superuser."""
    engine.make_admin("alice")
    return auth_headers("alice")
