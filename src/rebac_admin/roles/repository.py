"""Relational storage for role rows."""

import logging
from typing import Callable, List, Tuple

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from .exceptions import RoleExistsError, RoleNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


def page_size(size: int) -> int:
    return size if size > 0 else DEFAULT_PAGE_SIZE


def offset(page: int, size: int) -> int:
    """Zero-based pages; anything below zero is the first page."""
    return page * size if page > 0 else 0


class Transaction:
    """Open relational transaction handed back to the caller to finish."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self):
        try:
            await self._session.commit()
        finally:
            await self._session.close()

    async def rollback(self):
        try:
            await self._session.rollback()
        finally:
            await self._session.close()


class RoleRepository:
    """Queries over the ``roles`` table.

    Plain methods run in their own session and commit immediately. The
    ``*_tx`` variants return an open ``Transaction`` the caller commits or
    rolls back.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def find_role_by_name(self, name: str) -> Role:
        return await self._find_one(select(Role).where(Role.name == name))

    async def find_role_by_id(self, role_id: int) -> Role:
        return await self._find_one(select(Role).where(Role.id == role_id))

    async def find_role_by_id_and_owner(self, role_id: int, owner: str) -> Role:
        return await self._find_one(
            select(Role).where(Role.id == role_id, Role.owner == owner)
        )

    async def find_role_by_name_and_owner(self, name: str, owner: str) -> Role:
        return await self._find_one(
            select(Role).where(Role.name == name, Role.owner == owner)
        )

    async def _find_one(self, query) -> Role:
        async with self._session_factory() as session:
            result = await session.execute(query)
            role = result.scalar_one_or_none()
        if role is None:
            raise RoleNotFoundError()
        return role

    async def list_roles(self, owner: str, page: int = 0, size: int = 0) -> List[Role]:
        limit = page_size(size)
        query = (
            select(Role)
            .where(Role.owner == owner)
            .order_by(Role.id)
            .limit(limit)
            .offset(offset(page, limit))
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def create_role_tx(self, name: str, owner: str) -> Tuple[Role, Transaction]:
        """Insert a role inside a transaction left open for the caller."""
        session = self._session_factory()
        try:
            result = await session.execute(
                insert(Role).values(name=name, owner=owner).returning(Role.id)
            )
            role_id = result.scalar_one()
        except IntegrityError as exc:
            await Transaction(session).rollback()
            raise RoleExistsError(f"role '{name}' already exists") from exc
        except Exception:
            await Transaction(session).rollback()
            raise
        return Role(id=role_id, name=name, owner=owner), Transaction(session)

    async def delete_role_by_name(self, name: str) -> int:
        """Delete a role and return its id."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Role).where(Role.name == name).returning(Role.id)
            )
            role_id = result.scalar_one_or_none()
            if role_id is None:
                await session.rollback()
                raise RoleNotFoundError()
            await session.commit()
        return role_id
