"""Application-facing authorization operations.

``Authorizer`` wraps the engine client with the checks handlers need, the
superuser sub-authorizer and the entitlement side effects that follow a
resource being created or deleted.
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from ..openfga.exceptions import PermissionDeniedError
from ..openfga.interfaces import AuthorizationClient
from ..openfga.schema import SchemaProvider
from ..openfga.types import Tuple
from ..pool.worker_pool import PoolStoppedError, WaitGroup, WorkerPool
from .mapper import CAN_VIEW
from .principal import RequestPrincipal
from .references import ADMIN_OBJECT, reference, user_for_tuple

logger = logging.getLogger(__name__)

ADMIN_RELATION = "admin"


class AdminAuthorizer:
    """Grants, revokes and checks the superuser relation."""

    def __init__(self, client: AuthorizationClient):
        self.client = client

    async def check_admin(self, user_id: str, timeout: Optional[float] = None) -> bool:
        return await self.client.check(
            user_for_tuple(user_id), ADMIN_RELATION, ADMIN_OBJECT, timeout=timeout
        )

    async def create_admin(self, user_id: str):
        await self.client.write_tuple(user_for_tuple(user_id), ADMIN_RELATION, ADMIN_OBJECT)
        logger.info("Granted superuser to %s", user_id)

    async def remove_admin(self, user_id: str):
        await self.client.delete_tuple(user_for_tuple(user_id), ADMIN_RELATION, ADMIN_OBJECT)
        logger.info("Revoked superuser from %s", user_id)


class EntitlementJob:
    """Handle on an entitlement write running in the worker pool."""

    def __init__(self, job_id: str, results: asyncio.Queue, wait_group: WaitGroup):
        self.id = job_id
        self._results = results
        self._wait_group = wait_group
        self._error: Optional[Exception] = None
        self._collected = False

    async def wait(self) -> Optional[Exception]:
        """Wait for the write and return its error, if any."""
        await self._wait_group.wait()
        if not self._collected:
            if self._results.empty():
                self._error = PoolStoppedError("entitlement job abandoned")
            else:
                result = self._results.get_nowait()
                if isinstance(result.value, Exception):
                    self._error = result.value
            self._collected = True
        return self._error


class Authorizer(AdminAuthorizer):
    def __init__(
        self,
        client: AuthorizationClient,
        pool: Optional[WorkerPool] = None,
        schema: Optional[SchemaProvider] = None,
    ):
        super().__init__(client)
        self.pool = pool
        self.schema = schema

    async def check(
        self,
        user: str,
        relation: str,
        object: str,
        *contextual_tuples: Tuple,
        timeout: Optional[float] = None,
    ) -> bool:
        return await self.client.check(user, relation, object, *contextual_tuples, timeout=timeout)

    async def require(self, user: str, relation: str, object: str, *contextual_tuples: Tuple):
        """Like ``check`` but raises ``PermissionDeniedError`` on deny."""
        if not await self.check(user, relation, object, *contextual_tuples):
            raise PermissionDeniedError(user, relation, object)

    async def list_objects(self, user: str, relation: str, object_type: str) -> List[str]:
        return await self.client.list_objects(user, relation, object_type)

    async def filter_objects(
        self, user: str, relation: str, object_type: str, objects: Iterable[str]
    ) -> List[str]:
        """Keep the ids from ``objects`` that ``user`` holds ``relation`` on.

        Order follows the engine's listing.
        """
        wanted = set(objects)
        allowed = await self.list_objects(user, relation, object_type)
        return [obj for obj in allowed if obj in wanted]

    async def validate_model(self):
        """Raise ``ModelMismatchError`` if the engine's model is not the expected one."""
        if self.schema is None:
            raise RuntimeError("Authorizer has no schema to validate against")
        await self.schema.validate(self.client)

    # ------------------------------------------------------------------
    # Entitlement side effects
    # ------------------------------------------------------------------

    def set_create_entitlements(
        self, principal: RequestPrincipal, resource_type: str, resource_id: str
    ) -> EntitlementJob:
        """Grant ``principal`` view access on a resource it just created."""
        obj = reference(resource_type, resource_id)
        return self._submit_entitlement(
            lambda: self.client.write_tuple(principal.user, CAN_VIEW, obj)
        )

    def set_delete_entitlements(
        self, principal: RequestPrincipal, resource_type: str, resource_id: str
    ) -> EntitlementJob:
        """Drop ``principal``'s view access on a resource it just deleted."""
        obj = reference(resource_type, resource_id)
        return self._submit_entitlement(
            lambda: self.client.delete_tuple(principal.user, CAN_VIEW, obj)
        )

    def _submit_entitlement(self, task) -> EntitlementJob:
        """Queue ``task`` on the pool. Raises ``PoolFullError`` when saturated."""
        if self.pool is None:
            raise RuntimeError("Authorizer has no worker pool for entitlement jobs")

        results: asyncio.Queue = asyncio.Queue(maxsize=1)
        wait_group = WaitGroup(1)
        try:
            job_id = self.pool.submit(task, results, wait_group)
        except Exception:
            wait_group.done()
            logger.error("Failed to submit entitlement job to worker pool", exc_info=True)
            raise
        return EntitlementJob(job_id, results, wait_group)
