"""Exception types raised while talking to the ReBAC engine.

The client translates transport and HTTP failures into this hierarchy so that
callers never have to know about httpx.
"""

from typing import Dict, List, Optional


class AuthorizationEngineError(Exception):
    """Base exception for all authorization engine errors."""

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        super().__init__(message)


class EngineResponseError(AuthorizationEngineError):
    """Engine answered with a non-2xx response."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response_body: str = "",
        operation: str = "",
    ):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, operation)


class EngineUnavailableError(AuthorizationEngineError):
    """Transport failure, timeout or 5xx talking to the engine. Retryable."""

    pass


class EngineServerError(EngineResponseError, EngineUnavailableError):
    """5xx response from the engine."""

    pass


class PermissionDeniedError(AuthorizationEngineError):
    """A specific check evaluated to false. Never retried."""

    def __init__(self, user: str, relation: str, object: str):
        self.user = user
        self.relation = relation
        self.object = object
        super().__init__(f"{user} lacks {relation} on {object}", "check")


class ModelMismatchError(AuthorizationEngineError):
    """Deployed authorization model differs from the expected one."""

    pass


class PartialFanOutError(AuthorizationEngineError):
    """One or more per-type fan-out reads failed while others succeeded.

    ``permissions`` and ``tokens`` hold what the successful types returned;
    callers must treat them as possibly incomplete.
    """

    def __init__(
        self,
        failures: Dict[str, Exception],
        permissions: Optional[List] = None,
        tokens: Optional[Dict[str, str]] = None,
    ):
        self.failures = failures
        self.permissions = permissions if permissions is not None else []
        self.tokens = tokens if tokens is not None else {}
        lines = [
            f"{n} - {ofga_type}: {exc}"
            for n, (ofga_type, exc) in enumerate(sorted(failures.items()))
        ]
        super().__init__(
            "fan-out failed for types: " + ", ".join(sorted(failures)) + "\n" + "\n".join(lines),
            "list_permissions",
        )
