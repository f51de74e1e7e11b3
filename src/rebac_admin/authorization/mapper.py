"""Translate an inbound API request into the ReBAC checks it requires.

Each resource collection under ``/api/v0`` has a converter that returns an
ordered list of ``Permission`` values. All functions here are pure: the
same request always yields the same permissions in the same order.

Collection-level requests (no resource id) target the reserved global
access object of the type and carry a wildcard-viewer contextual fact.
Every permission carries the admin contextual fact for its object, so
superusers satisfy any check without a persisted tuple.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Tuple as _Tuple

from ..openfga.types import Tuple
from .references import (
    ADMIN_OBJECT,
    CLIENT_TYPE,
    GROUP_TYPE,
    IDENTITY_TYPE,
    PRIVILEGED_RELATION,
    PROVIDER_TYPE,
    ROLE_TYPE,
    RULE_TYPE,
    SCHEME_TYPE,
    user_wildcard_for_tuple,
)

logger = logging.getLogger(__name__)

CAN_VIEW = "can_view"
CAN_EDIT = "can_edit"
CAN_CREATE = "can_create"
CAN_DELETE = "can_delete"

SYSTEM_OBJECT_PREFIX = "__system__"
# Stands in for "*", which the engine reserves for public access
GLOBAL_ACCESS_OBJECT_NAME = SYSTEM_OBJECT_PREFIX + "global"
DEFAULT_SCHEME_ID = "**DEFAULT**"

API_V0_PREFIX = "/api/v0/"
DEFAULT_SCHEME_PATH = "/api/v0/schemas/default"
V1_PROVIDERS_PREFIX = "/api/v1/authentication/providers"

# Sub-collection segment -> path parameter holding its item id
SUB_RESOURCE_PARAMS = {
    "entitlements": "e_id",
    "identities": "i_id",
    "roles": "r_id",
    "groups": "g_id",
}

METHOD_RELATIONS = {
    "GET": CAN_VIEW,
    "POST": CAN_CREATE,
    "PUT": CAN_EDIT,
    "PATCH": CAN_EDIT,
    "DELETE": CAN_DELETE,
}


@dataclass(frozen=True)
class Permission:
    """A required ``relation`` on ``resource_type:resource_id``."""

    relation: str
    resource_type: str
    resource_id: str
    contextual_tuples: _Tuple[Tuple, ...] = ()

    @property
    def object(self) -> str:
        return f"{self.resource_type}:{self.resource_id}"


@dataclass(frozen=True)
class RequestDescriptor:
    """The parts of an HTTP request the mapper looks at."""

    method: str
    path: str
    path_params: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    def param(self, name: str) -> str:
        return self.path_params.get(name, "")


def describe_request(method: str, path: str, body: Optional[bytes] = None) -> RequestDescriptor:
    """Build a descriptor, extracting path params from ``/api/v0/...`` paths.

    ``/api/v0/<collection>/<id>/<sub>/<sub_id>`` yields ``id`` plus the
    sub-collection's own param (``e_id``, ``i_id``, ``r_id`` or ``g_id``).
    """
    path = path.rstrip("/") or "/"
    params = {}

    if path.startswith(API_V0_PREFIX):
        segments = path[len(API_V0_PREFIX):].split("/")
        if len(segments) > 1 and segments[1]:
            params["id"] = segments[1]
        if len(segments) > 3 and segments[3]:
            sub_param = SUB_RESOURCE_PARAMS.get(segments[2])
            if sub_param:
                params[sub_param] = segments[3]

    return RequestDescriptor(method=method.upper(), path=path, path_params=params, body=body)


def relation_for_method(method: str) -> str:
    return METHOD_RELATIONS.get(method.upper(), CAN_VIEW)


# ---------------------------------------------------------------------------
# Permission builders
# ---------------------------------------------------------------------------

def _admin_fact(obj: str) -> Tuple:
    return Tuple(ADMIN_OBJECT, PRIVILEGED_RELATION, obj)


def specific(relation: str, resource_type: str, resource_id: str) -> Permission:
    """Permission on a single resource, satisfiable by admins."""
    obj = f"{resource_type}:{resource_id}"
    return Permission(relation, resource_type, resource_id, (_admin_fact(obj),))


def global_(relation: str, resource_type: str) -> Permission:
    """Permission on the collection as a whole."""
    obj = f"{resource_type}:{GLOBAL_ACCESS_OBJECT_NAME}"
    return Permission(
        relation,
        resource_type,
        GLOBAL_ACCESS_OBJECT_NAME,
        (
            Tuple(user_wildcard_for_tuple(), CAN_VIEW, obj),
            _admin_fact(obj),
        ),
    )


def _default(request: RequestDescriptor, resource_type: str) -> List[Permission]:
    relation = relation_for_method(request.method)
    resource_id = request.param("id")
    if not resource_id:
        return [global_(relation, resource_type)]
    return [specific(relation, resource_type, resource_id)]


def _body_members(request: RequestDescriptor, key: str) -> List[str]:
    """Read the ``key`` list out of a JSON body.

    An unreadable body yields no members; the caller still gets the
    permission on the owning resource.
    """
    try:
        payload = json.loads(request.body or b"")
        members = payload.get(key) or []
        if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
            raise ValueError(f"'{key}' is not a list of strings")
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug("Skipping %s membership checks for %s: %s", key, request.path, e)
        return []
    return members


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------

def map_identities(request: RequestDescriptor) -> List[Permission]:
    return _default(request, IDENTITY_TYPE)


def map_clients(request: RequestDescriptor) -> List[Permission]:
    return _default(request, CLIENT_TYPE)


def map_providers(request: RequestDescriptor) -> List[Permission]:
    return _default(request, PROVIDER_TYPE)


def map_rules(request: RequestDescriptor) -> List[Permission]:
    return _default(request, RULE_TYPE)


def map_schemes(request: RequestDescriptor) -> List[Permission]:
    if request.path == DEFAULT_SCHEME_PATH:
        return [specific(relation_for_method(request.method), SCHEME_TYPE, DEFAULT_SCHEME_ID)]
    return _default(request, SCHEME_TYPE)


def map_roles(request: RequestDescriptor) -> List[Permission]:
    """Roles API.

    Entitlement changes and identity assignment need ``can_edit`` on the
    role; assigning an identity also needs ``can_view`` on it.
    """
    role_id = request.param("id")
    method = request.method

    if role_id:
        # DELETE /roles/{id}/entitlements/{e_id}
        if request.param("e_id") and method == "DELETE":
            return [specific(CAN_EDIT, ROLE_TYPE, role_id)]

        # POST /roles/{id}/entitlements
        if request.path.endswith("entitlements") and method == "POST":
            return [specific(CAN_EDIT, ROLE_TYPE, role_id)]

        # POST /roles/{id}/identities/{i_id}
        identity_id = request.param("i_id")
        if identity_id and method == "POST":
            return [
                specific(CAN_EDIT, ROLE_TYPE, role_id),
                specific(CAN_VIEW, IDENTITY_TYPE, identity_id),
            ]

    return _default(request, ROLE_TYPE)


def map_groups(request: RequestDescriptor) -> List[Permission]:
    """Groups API.

    Batch assignment endpoints additionally require ``can_view`` on every
    identity or role listed in the body, ahead of ``can_edit`` on the group.
    """
    group_id = request.param("id")
    method = request.method
    path = request.path

    if not group_id:
        return _default(request, GROUP_TYPE)

    edit_group = specific(CAN_EDIT, GROUP_TYPE, group_id)

    # DELETE /groups/{id}/entitlements/{e_id}
    if request.param("e_id") and method == "DELETE":
        return [edit_group]

    # DELETE /groups/{id}/identities/{i_id}
    identity_id = request.param("i_id")
    if identity_id and method == "DELETE":
        return [edit_group, specific(CAN_VIEW, IDENTITY_TYPE, identity_id)]

    # PATCH /groups/{id}/identities
    if path.endswith("identities") and method == "PATCH":
        viewable = [
            specific(CAN_VIEW, IDENTITY_TYPE, identity)
            for identity in _body_members(request, "identities")
        ]
        return viewable + [edit_group]

    # POST|DELETE /groups/{id}/entitlements
    if path.endswith("entitlements") and method in ("POST", "DELETE"):
        return [edit_group]

    # POST /groups/{id}/roles
    if path.endswith("roles") and method == "POST":
        viewable = [
            specific(CAN_VIEW, ROLE_TYPE, role)
            for role in _body_members(request, "roles")
        ]
        return viewable + [edit_group]

    # DELETE /groups/{id}/roles/{r_id}
    role_id = request.param("r_id")
    if role_id and method == "DELETE":
        return [edit_group, specific(CAN_VIEW, ROLE_TYPE, role_id)]

    return _default(request, GROUP_TYPE)


CONVERTERS: _Tuple[_Tuple[str, Callable[[RequestDescriptor], List[Permission]]], ...] = (
    ("/api/v0/identities", map_identities),
    ("/api/v0/clients", map_clients),
    ("/api/v0/idps", map_providers),
    ("/api/v0/rules", map_rules),
    ("/api/v0/schemas", map_schemes),
    ("/api/v0/roles", map_roles),
    ("/api/v0/groups", map_groups),
)


def map_request(request: RequestDescriptor) -> List[Permission]:
    """Return the permissions ``request`` needs, in evaluation order.

    Paths outside the known collections need none.
    """
    if request.path.startswith(V1_PROVIDERS_PREFIX):
        return []

    for prefix, converter in CONVERTERS:
        if request.path.startswith(prefix):
            return converter(request)
    return []
