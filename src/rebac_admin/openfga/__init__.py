"""OpenFGA client, tuple stores and the bundled authorization model."""

from .client import OpenFGAClient
from .exceptions import (
    AuthorizationEngineError,
    EngineResponseError,
    EngineServerError,
    EngineUnavailableError,
    ModelMismatchError,
    PartialFanOutError,
    PermissionDeniedError,
)
from .noop import NoopClient
from .types import Permission, ReadPage, Tuple

__all__ = [
    "OpenFGAClient",
    "NoopClient",
    "Tuple",
    "Permission",
    "ReadPage",
    "AuthorizationEngineError",
    "EngineResponseError",
    "EngineServerError",
    "EngineUnavailableError",
    "ModelMismatchError",
    "PartialFanOutError",
    "PermissionDeniedError",
]
