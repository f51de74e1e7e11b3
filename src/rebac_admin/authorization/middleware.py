"""Request gate evaluating the ReBAC checks each API call requires.

Per request: resolve the caller from ``X-Authorization``, check superuser
status once, map the request to its permissions and evaluate them in order
under one aggregate timeout. The first deny stops evaluation with a 403;
an engine failure or timeout is a 500. On success the resolved
``RequestPrincipal`` is stored on ``request.state``.
"""

import asyncio
import logging
import uuid
from typing import Iterable, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..observability.logging import clear_log_context, set_log_context
from ..openfga.exceptions import AuthorizationEngineError
from .authorizer import Authorizer
from .mapper import Permission, describe_request, map_request
from .principal import TOKEN_HEADER, RequestPrincipal, identifier_from_header

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT = 0.05

# Never mapped or checked
SKIP_PATHS = frozenset({
    "/api/v0/status",
    "/api/v0/version",
    "/api/v0/metrics",
})

BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

ENGINE_ERROR_MESSAGE = "failed connecting to authorization engine"
FORBIDDEN_MESSAGE = "insufficient permissions to execute operation"


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """Fail-closed authorization gate in front of every API route.

    The authorizer is read from ``app.state.authorizer`` unless one is
    passed in, since it is only built during the application lifespan.
    """

    def __init__(
        self,
        app,
        authorizer: Optional[Authorizer] = None,
        check_timeout: float = DEFAULT_CHECK_TIMEOUT,
        skip_paths: Iterable[str] = SKIP_PATHS,
    ):
        super().__init__(app)
        self.authorizer = authorizer
        self.check_timeout = check_timeout
        self.skip_paths = frozenset(skip_paths)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.skip_paths or not path.startswith("/api/"):
            return await call_next(request)

        authorizer = self.authorizer or request.app.state.authorizer

        identifier = identifier_from_header(request.headers.get(TOKEN_HEADER))
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        set_log_context(principal=identifier, request_id=request_id)

        try:
            is_admin = await self._check_admin(authorizer, identifier)

            body = await request.body() if request.method in BODY_METHODS else None
            permissions = map_request(describe_request(request.method, path, body))

            principal = RequestPrincipal(identifier=identifier, is_admin=is_admin)
            try:
                allowed = await asyncio.wait_for(
                    self._check_all(authorizer, principal.user, permissions),
                    timeout=self.check_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(
                    "Authorization checks for %s %s exceeded %.0fms",
                    request.method,
                    path,
                    self.check_timeout * 1000,
                )
                return _error(ENGINE_ERROR_MESSAGE, 500)
            except AuthorizationEngineError as e:
                logger.error("Authorization check failed for %s %s: %s", request.method, path, e)
                return _error(ENGINE_ERROR_MESSAGE, 500)

            if not allowed:
                logger.debug("%s not authorized to perform %s %s", principal.user, request.method, path)
                return _error(FORBIDDEN_MESSAGE, 403)

            request.state.principal = principal
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_log_context()

    async def _check_admin(self, authorizer: Authorizer, identifier: str) -> bool:
        try:
            return await asyncio.wait_for(
                authorizer.check_admin(identifier), timeout=self.check_timeout
            )
        except (asyncio.TimeoutError, AuthorizationEngineError) as e:
            logger.warning("Superuser check failed for %s, treating as non-admin: %s", identifier, e)
            return False

    @staticmethod
    async def _check_all(authorizer: Authorizer, user: str, permissions: List[Permission]) -> bool:
        # Sequential, stops at the first deny
        for permission in permissions:
            allowed = await authorizer.check(
                user,
                permission.relation,
                permission.object,
                *permission.contextual_tuples,
            )
            if not allowed:
                return False
        return True


def _error(message: str, status: int) -> JSONResponse:
    return JSONResponse(status_code=status, content={"status": status, "message": message})
