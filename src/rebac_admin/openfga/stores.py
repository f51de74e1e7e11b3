"""Cross-cutting tuple operations over the ReBAC engine.

``OpenFGAStore`` is a low-level store: it deals in raw references and
``Permission`` values and leaves user-facing shapes to the service layer.
Reads that span every permission type are fanned out through the shared
``WorkerPool``.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple as _Tuple

from ..pool.worker_pool import PoolFullError, PoolStoppedError, WaitGroup, WorkerPool, take
from .exceptions import PartialFanOutError
from .types import Permission, Tuple

logger = logging.getLogger(__name__)

ASSIGNEE_RELATION = "assignee"
MEMBER_RELATION = "member"
CAN_VIEW_RELATION = "can_view"
PERMISSION_PREFIX = "can_"

# Object types a permission can target
PERMISSION_TYPES = ("role", "group", "identity", "scheme", "provider", "client")

# Relations held directly on a role object
ROLE_DIRECT_RELATIONS = (
    "privileged",
    "assignee",
    "can_create",
    "can_delete",
    "can_edit",
    "can_view",
)


class OpenFGAStore:
    """Fan-out reads, batched writes and cascades over permission tuples."""

    def __init__(self, client, pool: WorkerPool):
        self.client = client
        self.pool = pool

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_viewable_roles(self, subject: str) -> List[str]:
        """Roles ``subject`` can view (``user:x``, ``group:g#member``, ``role:r#assignee``)."""
        return await self.client.list_objects(subject, CAN_VIEW_RELATION, "role")

    async def list_assigned_roles(self, subject: str) -> List[str]:
        return await self.client.list_objects(subject, ASSIGNEE_RELATION, "role")

    async def list_assigned_groups(self, subject: str) -> List[str]:
        return await self.client.list_objects(subject, MEMBER_RELATION, "group")

    async def list_permissions(
        self, subject: str, continuation_tokens: Optional[Dict[str, str]] = None
    ) -> _Tuple[List[Permission], Dict[str, str]]:
        """List the permissions held by ``subject`` across every permission type.

        Issues exactly one read per type, resuming each type from its own
        continuation token. Only ``can_*`` relations are permissions.

        Returns:
            The permissions found and the next continuation token per type.

        Raises:
            PartialFanOutError: one or more types failed. The error carries
                the permissions and tokens of the types that succeeded; failed
                types have an empty token.
        """
        tokens_in = continuation_tokens or {}
        outcomes = await self._fan_out({
            ofga_type: partial(
                self._list_permissions_by_type, subject, ofga_type, tokens_in.get(ofga_type, "")
            )
            for ofga_type in PERMISSION_TYPES
        })

        permissions: List[Permission] = []
        tokens: Dict[str, str] = {}
        failures: Dict[str, Exception] = {}

        for ofga_type in PERMISSION_TYPES:
            outcome = outcomes[ofga_type]
            if isinstance(outcome, Exception):
                failures[ofga_type] = outcome
                tokens[ofga_type] = ""
                continue
            type_permissions, token = outcome
            permissions.extend(type_permissions)
            tokens[ofga_type] = token

        if failures:
            error = PartialFanOutError(failures, permissions, tokens)
            logger.error("Listing permissions for %s: %s", subject, error)
            raise error

        return permissions, tokens

    async def _list_permissions_by_type(
        self, subject: str, ofga_type: str, continuation_token: str
    ) -> _Tuple[List[Permission], str]:
        page = await self.client.read_tuples(subject, "", f"{ofga_type}:", continuation_token)

        permissions = [
            Permission(relation=t.relation, object=t.object)
            for t in page.tuples
            # non can_ relations (e.g. assignee) are memberships, not permissions
            if t.relation.startswith(PERMISSION_PREFIX)
        ]
        return permissions, page.continuation_token

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def assign_roles(self, subject: str, *role_ids: str):
        await self.client.write_tuples(*_tuples(subject, ASSIGNEE_RELATION, role_ids))

    async def unassign_roles(self, subject: str, *role_ids: str):
        await self.client.delete_tuples(*_tuples(subject, ASSIGNEE_RELATION, role_ids))

    async def assign_groups(self, subject: str, *group_ids: str):
        await self.client.write_tuples(*_tuples(subject, MEMBER_RELATION, group_ids))

    async def unassign_groups(self, subject: str, *group_ids: str):
        await self.client.delete_tuples(*_tuples(subject, MEMBER_RELATION, group_ids))

    async def assign_permissions(self, subject: str, *permissions: Permission):
        await self.client.write_tuples(
            *(Tuple(subject, p.relation, p.object) for p in permissions)
        )

    async def unassign_permissions(self, subject: str, *permissions: Permission):
        await self.client.delete_tuples(
            *(Tuple(subject, p.relation, p.object) for p in permissions)
        )

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    async def remove_role_relations(self, role_id: str) -> Dict[str, Exception]:
        """Delete every tuple referencing ``role:<role_id>``.

        Runs one branch per permission type (tuples granted to the role's
        assignees) and one per direct relation on the role object. Each
        branch pages through all of its tuples before one batched delete.
        A failing branch is abandoned; the others still run.

        Returns:
            Failures keyed by branch name, empty when the cascade completed.
        """
        role = f"role:{role_id}"
        assignees = f"{role}#{ASSIGNEE_RELATION}"

        branches: Dict[str, Callable[[], Awaitable[Any]]] = {}
        for ofga_type in PERMISSION_TYPES:
            branches[f"type={ofga_type}"] = partial(
                self._remove_branch, assignees, "", f"{ofga_type}:"
            )
        for relation in ROLE_DIRECT_RELATIONS:
            branches[f"relation={relation}"] = partial(
                self._remove_branch, "", relation, role
            )

        outcomes = await self._fan_out(branches)
        failures = {
            name: outcome for name, outcome in outcomes.items() if isinstance(outcome, Exception)
        }
        for name, exc in failures.items():
            logger.error("Cascade branch %s for %s failed: %s", name, role, exc)
        return failures

    async def _remove_branch(self, user: str, relation: str, object: str) -> int:
        found: List[Tuple] = []
        token = ""
        while True:
            page = await self.client.read_tuples(user, relation, object, token)
            found.extend(page.tuples)
            token = page.continuation_token
            if not token:
                break

        if found:
            await self.client.delete_tuples(*found)
        return len(found)

    # ------------------------------------------------------------------
    # Pool plumbing
    # ------------------------------------------------------------------

    async def _fan_out(self, jobs: Dict[str, Callable[[], Any]]) -> Dict[str, Any]:
        """Run ``jobs`` on the pool and wait for all of them.

        Returns each job's value, or the exception it raised, keyed by name.
        Jobs abandoned by a stopping pool report ``PoolStoppedError``.
        """
        results: asyncio.Queue = asyncio.Queue(maxsize=len(jobs))
        wait_group = WaitGroup(len(jobs))
        names: Dict[str, str] = {}
        outcomes: Dict[str, Any] = {}

        for name, job in jobs.items():
            try:
                names[self.pool.submit(job, results, wait_group)] = name
            except (PoolFullError, PoolStoppedError) as exc:
                wait_group.done()
                outcomes[name] = exc

        await wait_group.wait()

        for result in await take(results, results.qsize()):
            outcomes[names[result.id]] = result.value

        for name in names.values():
            if name not in outcomes:
                outcomes[name] = PoolStoppedError("job abandoned")
        return outcomes


def _tuples(subject: str, relation: str, objects) -> List[Tuple]:
    return [Tuple(subject, relation, obj) for obj in objects]
