"""Request-scoped identity resolved by the authorization middleware."""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from .references import user_for_tuple

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Authorization"
ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class RequestPrincipal:
    """Who is calling, and whether they are a superuser.

    Set once by the middleware and read by handlers.
    """

    identifier: str
    is_admin: bool = False

    @property
    def user(self) -> str:
        return user_for_tuple(self.identifier)

    @property
    def anonymous(self) -> bool:
        return self.identifier == ANONYMOUS


def identifier_from_header(value: Optional[str]) -> str:
    """Decode the base64 user id carried in ``X-Authorization``.

    Missing or undecodable values resolve to the anonymous identity.
    """
    if not value:
        return ANONYMOUS
    try:
        identifier = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.debug("Undecodable %s header, treating caller as anonymous", TOKEN_HEADER)
        return ANONYMOUS
    return identifier or ANONYMOUS


def encode_identifier(identifier: str) -> str:
    return base64.b64encode(identifier.encode("utf-8")).decode("ascii")


def get_request_principal(request: Request) -> RequestPrincipal:
    """FastAPI dependency returning the principal set by the middleware."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail="user not authenticated or request context broken",
        )
    return principal
