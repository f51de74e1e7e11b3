"""Roles endpoints under ``/api/v0``.

Access to every route is decided by the authorization middleware before a
handler runs; handlers only scope lookups to the caller.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..authorization.authorizer import Authorizer
from ..authorization.principal import RequestPrincipal, get_request_principal
from ..authorization.references import ROLE_TYPE
from ..authorization.urn import URN
from ..openfga.exceptions import AuthorizationEngineError, PartialFanOutError
from ..openfga.types import Permission
from ..pool.worker_pool import PoolFullError, PoolStoppedError
from ..roles.exceptions import RoleCompensationError, RoleExistsError, RoleNotFoundError
from ..roles.service import RoleService
from .responses import PAGINATION_HEADER, encode_tokens, load_tokens, respond

logger = logging.getLogger(__name__)

router = APIRouter()

GROUPS_TOKEN_KEY = "groups"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class RoleResponse(BaseModel):
    id: int
    name: str
    owner: str

    class Config:
        from_attributes = True


class PermissionItem(BaseModel):
    relation: str = Field(min_length=1)
    object: str = Field(min_length=1)


class UpdatePermissionsRequest(BaseModel):
    permissions: List[PermissionItem] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_role_service(request: Request) -> RoleService:
    return request.app.state.role_service


def get_authorizer(request: Request) -> Authorizer:
    return request.app.state.authorizer


def _engine_error(e: Exception) -> HTTPException:
    logger.error("Authorization engine error: %s", e)
    return HTTPException(status_code=500, detail=str(e))


async def _get_role(service: RoleService, principal: RequestPrincipal, role_id: int):
    try:
        return await service.get_role_by_id(principal, role_id)
    except RoleNotFoundError:
        raise HTTPException(status_code=404, detail="Role not found")


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles")
async def list_roles(
    page: int = Query(default=0, ge=0),
    size: int = Query(default=100, ge=1, le=500),
    principal: RequestPrincipal = Depends(get_request_principal),
    service: RoleService = Depends(get_role_service),
):
    """List the caller's roles."""
    roles = await service.list_roles(principal.identifier, page, size)
    return respond(
        data=[RoleResponse.model_validate(r).model_dump() for r in roles],
        message="List of roles",
        meta={"page": page, "size": size},
    )


@router.get("/roles/{role_id}")
async def get_role(
    role_id: int,
    principal: RequestPrincipal = Depends(get_request_principal),
    service: RoleService = Depends(get_role_service),
):
    role = await _get_role(service, principal, role_id)
    return respond(data=[RoleResponse.model_validate(role).model_dump()], message="Role detail")


@router.post("/roles", status_code=201)
async def create_role(
    role_data: RoleCreate,
    principal: RequestPrincipal = Depends(get_request_principal),
    service: RoleService = Depends(get_role_service),
    authorizer: Authorizer = Depends(get_authorizer),
):
    """Create a role owned by the caller."""
    try:
        role = await service.create_role(principal.identifier, role_data.name)
    except RoleExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RoleCompensationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except AuthorizationEngineError as e:
        raise _engine_error(e)

    meta = None
    try:
        job = authorizer.set_create_entitlements(principal, ROLE_TYPE, str(role.id))
        error = await job.wait()
    except (PoolFullError, PoolStoppedError) as e:
        error = e
    if error is not None:
        logger.warning("Role %s created without creator entitlements: %s", role.name, error)
        meta = {"errors": {"entitlements": str(error)}}

    return respond(
        data=[RoleResponse.model_validate(role).model_dump()],
        message=f"Created role {role.name}",
        status=201,
        meta=meta,
    )


@router.patch("/roles/{role_id}")
async def update_role(role_id: int):
    return respond(
        message=f"use /api/v0/roles/{role_id}/entitlements to assign permissions",
        status=501,
    )


@router.delete("/roles/{role_id}")
async def delete_role(
    role_id: int,
    principal: RequestPrincipal = Depends(get_request_principal),
    service: RoleService = Depends(get_role_service),
):
    """Delete a role and clean up every tuple referencing it."""
    role = await _get_role(service, principal, role_id)
    try:
        await service.delete_role(role.name)
    except RoleNotFoundError:
        raise HTTPException(status_code=404, detail="Role not found")
    return respond(message=f"Deleted role {role.name}")


# ---------------------------------------------------------------------------
# Entitlements
# ---------------------------------------------------------------------------


@router.get("/roles/{role_id}/entitlements")
async def list_role_entitlements(
    role_id: int,
    x_token_pagination: str = Header(default="", alias=PAGINATION_HEADER),
    service: RoleService = Depends(get_role_service),
):
    """List the role's entitlements as ``relation::object`` ids.

    Per-type continuation tokens round-trip through the pagination header.
    When some types fail the entitlements of the others are still returned
    and the failures are listed under ``_meta.errors``.
    """
    tokens = load_tokens(x_token_pagination)
    meta = None
    try:
        permissions, next_tokens = await service.list_permissions(role_id, tokens)
    except PartialFanOutError as e:
        permissions, next_tokens = e.permissions, e.tokens
        meta = {"errors": {t: str(exc) for t, exc in sorted(e.failures.items())}}

    headers = {PAGINATION_HEADER: encode_tokens(next_tokens)}
    return respond(data=permissions, message="List of entitlements", meta=meta, headers=headers)


@router.patch("/roles/{role_id}/entitlements")
async def assign_role_entitlements(
    role_id: int,
    request_data: UpdatePermissionsRequest,
    service: RoleService = Depends(get_role_service),
):
    permissions = [Permission(p.relation, p.object) for p in request_data.permissions]
    try:
        await service.assign_permissions(role_id, *permissions)
    except AuthorizationEngineError as e:
        raise _engine_error(e)
    return respond(message=f"Updated permissions for role {role_id}")


@router.delete("/roles/{role_id}/entitlements/{entitlement_id}")
async def remove_role_entitlement(
    role_id: int,
    entitlement_id: str,
    service: RoleService = Depends(get_role_service),
):
    urn = URN.parse(entitlement_id)
    if urn is None:
        raise HTTPException(status_code=400, detail=f"invalid entitlement id '{entitlement_id}'")

    try:
        await service.remove_permissions(role_id, Permission(urn.relation, urn.object))
    except AuthorizationEngineError as e:
        raise _engine_error(e)
    return respond(message=f"Removed permission {urn.id} for role {role_id}")


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@router.get("/roles/{role_id}/groups")
async def list_role_groups(
    role_id: int,
    x_token_pagination: str = Header(default="", alias=PAGINATION_HEADER),
    service: RoleService = Depends(get_role_service),
):
    tokens = load_tokens(x_token_pagination)
    try:
        groups, token = await service.list_role_groups(role_id, tokens.get(GROUPS_TOKEN_KEY, ""))
    except AuthorizationEngineError as e:
        raise _engine_error(e)

    headers = {PAGINATION_HEADER: encode_tokens({GROUPS_TOKEN_KEY: token} if token else {})}
    return respond(data=groups, message="List of groups", headers=headers)
