"""Capabilities the application consumes from the ReBAC engine.

``OpenFGAClient`` and ``NoopClient`` both satisfy these structurally.
"""

from typing import Any, Dict, List, Optional, Protocol

from .types import ReadPage, Tuple


class CheckEngine(Protocol):
    async def check(
        self,
        user: str,
        relation: str,
        object: str,
        *contextual_tuples: Tuple,
        timeout: Optional[float] = None,
    ) -> bool: ...

    async def batch_check(self, *tuples: Tuple, timeout: Optional[float] = None) -> bool: ...

    async def list_objects(
        self, user: str, relation: str, object_type: str, timeout: Optional[float] = None
    ) -> List[str]: ...

    async def list_users(
        self, object: str, relation: str, user_type: str, timeout: Optional[float] = None
    ) -> List[str]: ...


class TupleStore(Protocol):
    async def read_tuples(
        self,
        user: str = "",
        relation: str = "",
        object: str = "",
        continuation_token: str = "",
        timeout: Optional[float] = None,
    ) -> ReadPage: ...

    async def write_tuple(self, user: str, relation: str, object: str, timeout: Optional[float] = None): ...

    async def delete_tuple(self, user: str, relation: str, object: str, timeout: Optional[float] = None): ...

    async def write_tuples(self, *tuples: Tuple, timeout: Optional[float] = None): ...

    async def delete_tuples(self, *tuples: Tuple, timeout: Optional[float] = None): ...


class ModelStore(Protocol):
    async def create_store(self, name: str, timeout: Optional[float] = None) -> str: ...

    async def read_model(self, timeout: Optional[float] = None) -> Dict[str, Any]: ...

    async def write_model(self, model: Dict[str, Any], timeout: Optional[float] = None) -> str: ...

    async def compare_model(self, expected: Dict[str, Any], timeout: Optional[float] = None) -> bool: ...


class AuthorizationClient(CheckEngine, TupleStore, ModelStore, Protocol):
    async def close(self): ...
