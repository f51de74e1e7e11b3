"""Role business logic composing the relational store and the ReBAC engine."""

import logging
from typing import Dict, List, Optional, Tuple as _Tuple

from ..authorization.principal import RequestPrincipal
from ..authorization.references import (
    ASSIGNEE_RELATION,
    GROUP_TYPE,
    role_assignee_for_tuple,
    role_for_tuple,
    user_for_tuple,
)
from ..authorization.urn import URN
from ..models.role import Role
from ..openfga.exceptions import PartialFanOutError
from ..openfga.interfaces import AuthorizationClient
from ..openfga.stores import OpenFGAStore
from ..openfga.types import Permission, Tuple
from .exceptions import RoleCompensationError
from .repository import RoleRepository

logger = logging.getLogger(__name__)

OWNER_RELATIONS = (ASSIGNEE_RELATION, "can_delete")


class RoleService:
    """Roles live as rows (name, owner) plus tuples on ``role:<id>``."""

    def __init__(
        self,
        repository: RoleRepository,
        client: AuthorizationClient,
        store: OpenFGAStore,
    ):
        self.repository = repository
        self.client = client
        self.store = store

    async def list_roles(self, user_id: str, page: int = 0, size: int = 0) -> List[Role]:
        return await self.repository.list_roles(user_id, page, size)

    async def get_role(self, user_id: str, name: str) -> Role:
        """Return the role called ``name`` owned by ``user_id``.

        Raises:
            RoleNotFoundError: no such role for this owner.
        """
        return await self.repository.find_role_by_name_and_owner(name, user_id)

    async def get_role_by_id(self, principal: RequestPrincipal, role_id: int) -> Role:
        """Owner-scoped lookup by id; superusers see every role."""
        if principal.is_admin:
            return await self.repository.find_role_by_id(role_id)
        return await self.repository.find_role_by_id_and_owner(role_id, principal.identifier)

    async def create_role(self, owner_id: str, name: str) -> Role:
        """Insert the role and grant its owner ``assignee`` and ``can_delete``.

        The row insert and the tuple write are coordinated by hand: a failed
        tuple write rolls the insert back, and a failed commit deletes the
        tuples again. If the rollback or that delete fails as well the two
        stores may disagree and ``RoleCompensationError`` is raised, carrying
        both errors.
        """
        role, tx = await self.repository.create_role_tx(name, owner_id)

        owner = user_for_tuple(owner_id)
        obj = role_for_tuple(role.id)
        tuples = [Tuple(owner, relation, obj) for relation in OWNER_RELATIONS]

        try:
            await self.client.write_tuples(*tuples)
        except Exception as tuple_error:
            logger.error("Writing owner tuples for role %s failed, rolling back: %s", name, tuple_error)
            try:
                await tx.rollback()
            except Exception as rollback_error:
                error = RoleCompensationError(rollback_error, tuple_error)
                logger.error("%s", error)
                raise error from tuple_error
            raise

        try:
            await tx.commit()
        except Exception as commit_error:
            logger.error("Committing role %s failed, removing its tuples: %s", name, commit_error)
            try:
                await self.client.delete_tuples(*tuples)
            except Exception as tuple_error:
                error = RoleCompensationError(commit_error, tuple_error)
                logger.error("%s", error)
                raise error from commit_error
            raise

        logger.info("Created role %s (id=%s) for %s", name, role.id, owner_id)
        return role

    async def delete_role(self, name: str) -> int:
        """Delete the role row, then every tuple referencing the role.

        Cleanup failures are logged and never raised: once the row is gone
        the role is deleted, even if stale tuples remain.

        Raises:
            RoleNotFoundError: no role called ``name``.
        """
        role_id = await self.repository.delete_role_by_name(name)

        failures = await self.store.remove_role_relations(str(role_id))
        if failures:
            logger.error(
                "Role %s (id=%s) deleted, tuple cleanup incomplete for: %s",
                name,
                role_id,
                ", ".join(sorted(failures)),
            )
        else:
            logger.info("Deleted role %s (id=%s)", name, role_id)
        return role_id

    async def list_role_groups(
        self, role_id: int, continuation_token: str = ""
    ) -> _Tuple[List[str], str]:
        """Groups assigned to the role, one page at a time.

        The engine pages over all assignees, so a page may hold fewer groups
        than the page size.
        """
        page = await self.client.read_tuples(
            "", ASSIGNEE_RELATION, role_for_tuple(role_id), continuation_token
        )
        groups = [t.user for t in page.tuples if t.user.startswith(f"{GROUP_TYPE}:")]
        return groups, page.continuation_token

    async def list_permissions(
        self, role_id: int, continuation_tokens: Optional[Dict[str, str]] = None
    ) -> _Tuple[List[str], Dict[str, str]]:
        """Permissions granted to the role's assignees, as ``relation::object`` URNs.

        Raises:
            PartialFanOutError: some types failed; carries the URNs and
                tokens of the types that did not.
        """
        subject = role_assignee_for_tuple(role_id)
        try:
            permissions, tokens = await self.store.list_permissions(subject, continuation_tokens)
        except PartialFanOutError as e:
            raise PartialFanOutError(e.failures, _urns(e.permissions), e.tokens) from e
        return _urns(permissions), tokens

    async def assign_permissions(self, role_id: int, *permissions: Permission):
        await self.store.assign_permissions(role_assignee_for_tuple(role_id), *permissions)

    async def remove_permissions(self, role_id: int, *permissions: Permission):
        await self.store.unassign_permissions(role_assignee_for_tuple(role_id), *permissions)


def _urns(permissions: List[Permission]) -> List[str]:
    return [URN(p.relation, p.object).id for p in permissions]
