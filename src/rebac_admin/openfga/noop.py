"""Engine client used when authorization is disabled."""

import logging
from typing import Any, Dict, List, Optional

from .types import ReadPage, Tuple

logger = logging.getLogger(__name__)


class NoopClient:
    """Satisfies the ``OpenFGAClient`` contract without a backing engine.

    Checks allow, listings are empty, writes are dropped and models always
    compare equal.
    """

    def __init__(self):
        logger.warning("Authorization is disabled, every check will be allowed")

    async def close(self):
        pass

    async def create_store(self, name: str, timeout: Optional[float] = None) -> str:
        return ""

    async def read_model(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        return {}

    async def write_model(self, model: Dict[str, Any], timeout: Optional[float] = None) -> str:
        return ""

    async def compare_model(self, expected: Dict[str, Any], timeout: Optional[float] = None) -> bool:
        return True

    async def write_tuple(self, user: str, relation: str, object: str, timeout: Optional[float] = None):
        pass

    async def delete_tuple(self, user: str, relation: str, object: str, timeout: Optional[float] = None):
        pass

    async def write_tuples(self, *tuples: Tuple, timeout: Optional[float] = None):
        pass

    async def delete_tuples(self, *tuples: Tuple, timeout: Optional[float] = None):
        pass

    async def check(
        self,
        user: str,
        relation: str,
        object: str,
        *contextual_tuples: Tuple,
        timeout: Optional[float] = None,
    ) -> bool:
        return True

    async def batch_check(self, *tuples: Tuple, timeout: Optional[float] = None) -> bool:
        return True

    async def read_tuples(
        self,
        user: str = "",
        relation: str = "",
        object: str = "",
        continuation_token: str = "",
        timeout: Optional[float] = None,
    ) -> ReadPage:
        return ReadPage()

    async def list_objects(
        self, user: str, relation: str, object_type: str, timeout: Optional[float] = None
    ) -> List[str]:
        return []

    async def list_users(
        self, object: str, relation: str, user_type: str, timeout: Optional[float] = None
    ) -> List[str]:
        return []
