"""Async client for the OpenFGA HTTP API.

All transport, timeout and non-2xx failures are translated into the
exceptions in ``exceptions.py``. The client never retries: callers own
their latency budget (the request middleware allows tens of milliseconds
for every check of a request).
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .exceptions import (
    AuthorizationEngineError,
    EngineResponseError,
    EngineServerError,
    EngineUnavailableError,
)
from .types import ReadPage, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class OpenFGAClient:
    """Thin async wrapper over the OpenFGA store endpoints."""

    def __init__(
        self,
        api_url: str,
        store_id: str,
        authorization_model_id: str = "",
        api_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store_id = store_id
        self.authorization_model_id = authorization_model_id
        self.timeout = timeout

        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"

        self._http = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> "OpenFGAClient":
        return cls(
            api_url=settings.get_openfga_api_url(),
            store_id=settings.openfga_store_id,
            authorization_model_id=settings.openfga_authorization_model_id,
            api_token=settings.openfga_api_token,
            timeout=settings.openfga_request_timeout,
        )

    async def close(self):
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _store_path(self, suffix: str) -> str:
        return f"/stores/{self.store_id}/{suffix}"

    def _with_model(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if self.authorization_model_id:
            body["authorization_model_id"] = self.authorization_model_id
        return body

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a request and return the decoded JSON payload.

        Raises:
            EngineUnavailableError: transport failure or timeout.
            EngineServerError: 5xx response.
            EngineResponseError: any other non-2xx response.
        """
        try:
            response = await self._http.request(
                method,
                path,
                json=body,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise EngineUnavailableError(
                f"{operation} timed out: {type(exc).__name__}", operation
            ) from exc
        except httpx.TransportError as exc:
            raise EngineUnavailableError(
                f"{operation} failed: {type(exc).__name__}: {exc}", operation
            ) from exc

        if response.status_code >= 500:
            raise EngineServerError(
                f"{operation} failed: HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
                operation=operation,
            )
        if response.status_code >= 400:
            raise EngineResponseError(
                f"{operation} rejected: HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
                operation=operation,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise AuthorizationEngineError(
                f"{operation} returned a malformed body", operation
            ) from exc

    # ------------------------------------------------------------------
    # Model operations
    # ------------------------------------------------------------------

    async def create_store(self, name: str, timeout: Optional[float] = None) -> str:
        """Create a store and point the client at it. Returns the store id."""
        data = await self._request("POST", "/stores", "create_store", body={"name": name}, timeout=timeout)
        self.store_id = data.get("id", "")
        return self.store_id

    async def read_model(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Return the authorization model the client is pinned to.

        Without a pinned model id the latest model of the store is returned.
        """
        if self.authorization_model_id:
            data = await self._request(
                "GET",
                self._store_path(f"authorization-models/{self.authorization_model_id}"),
                "read_model",
                timeout=timeout,
            )
            return data.get("authorization_model", {})

        data = await self._request(
            "GET", self._store_path("authorization-models"), "read_model", timeout=timeout
        )
        models = data.get("authorization_models") or []
        return models[0] if models else {}

    async def write_model(self, model: Dict[str, Any], timeout: Optional[float] = None) -> str:
        data = await self._request(
            "POST",
            self._store_path("authorization-models"),
            "write_model",
            body=model,
            timeout=timeout,
        )
        return data.get("authorization_model_id", "")

    async def compare_model(self, expected: Dict[str, Any], timeout: Optional[float] = None) -> bool:
        """Compare the deployed model against ``expected``.

        Type definitions are compared regardless of order.
        """
        deployed = await self.read_model(timeout=timeout)
        return models_equal(deployed, expected)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def write_tuple(self, user: str, relation: str, object: str, timeout: Optional[float] = None):
        await self.write_tuples(Tuple(user, relation, object), timeout=timeout)

    async def delete_tuple(self, user: str, relation: str, object: str, timeout: Optional[float] = None):
        await self.delete_tuples(Tuple(user, relation, object), timeout=timeout)

    async def write_tuples(self, *tuples: Tuple, timeout: Optional[float] = None):
        """Write all tuples in a single all-or-nothing request."""
        if not tuples:
            return
        body = self._with_model({"writes": {"tuple_keys": [t.to_key() for t in tuples]}})
        await self._request("POST", self._store_path("write"), "write", body=body, timeout=timeout)

    async def delete_tuples(self, *tuples: Tuple, timeout: Optional[float] = None):
        """Delete all tuples in a single all-or-nothing request."""
        if not tuples:
            return
        body = self._with_model({"deletes": {"tuple_keys": [t.to_key() for t in tuples]}})
        await self._request("POST", self._store_path("write"), "delete", body=body, timeout=timeout)

    # ------------------------------------------------------------------
    # Check operations
    # ------------------------------------------------------------------

    async def check(
        self,
        user: str,
        relation: str,
        object: str,
        *contextual_tuples: Tuple,
        timeout: Optional[float] = None,
    ) -> bool:
        body: Dict[str, Any] = {
            "tuple_key": {"user": user, "relation": relation, "object": object},
        }
        if contextual_tuples:
            body["contextual_tuples"] = {
                "tuple_keys": [t.to_key() for t in contextual_tuples]
            }
        try:
            data = await self._request(
                "POST", self._store_path("check"), "check", body=self._with_model(body), timeout=timeout
            )
        except AuthorizationEngineError:
            logger.error("Check failed for %s %s %s", user, relation, object)
            raise
        return bool(data.get("allowed", False))

    async def batch_check(self, *tuples: Tuple, timeout: Optional[float] = None) -> bool:
        """Evaluate every tuple in one request; True only if all are allowed.

        A denied tuple or a per-item error yields an ``EngineResponseError``
        describing each failure.
        """
        if not tuples:
            return True

        checks = [
            {"tuple_key": t.to_key(), "correlation_id": str(n)}
            for n, t in enumerate(tuples)
        ]
        data = await self._request(
            "POST",
            self._store_path("batch-check"),
            "batch_check",
            body=self._with_model({"checks": checks}),
            timeout=timeout,
        )

        results = data.get("result", {})
        allowed = True
        errors = []
        for n, t in enumerate(tuples):
            item = results.get(str(n), {})
            allowed = allowed and bool(item.get("allowed", False))
            if item.get("error"):
                errors.append(f"* {t.user} {t.relation} {t.object}: {item['error']}")

        if not allowed:
            raise EngineResponseError(
                "\n".join(["error while performing check operation:"] + errors),
                operation="batch_check",
            )
        return True

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def read_tuples(
        self,
        user: str = "",
        relation: str = "",
        object: str = "",
        continuation_token: str = "",
        timeout: Optional[float] = None,
    ) -> ReadPage:
        tuple_key = {
            key: value
            for key, value in (("user", user), ("relation", relation), ("object", object))
            if value
        }
        body: Dict[str, Any] = {"tuple_key": tuple_key}
        if continuation_token:
            body["continuation_token"] = continuation_token

        data = await self._request("POST", self._store_path("read"), "read", body=body, timeout=timeout)
        return ReadPage(
            tuples=[Tuple.from_key(item.get("key", {})) for item in data.get("tuples") or []],
            continuation_token=data.get("continuation_token") or "",
        )

    async def list_objects(
        self, user: str, relation: str, object_type: str, timeout: Optional[float] = None
    ) -> List[str]:
        """Return ids of objects of ``object_type`` ``user`` has ``relation`` to."""
        body = self._with_model({"user": user, "relation": relation, "type": object_type})
        data = await self._request(
            "POST", self._store_path("list-objects"), "list_objects", body=body, timeout=timeout
        )
        prefix = f"{object_type}:"
        return [
            obj[len(prefix):] if obj.startswith(prefix) else obj
            for obj in data.get("objects") or []
        ]

    async def list_users(
        self, object: str, relation: str, user_type: str, timeout: Optional[float] = None
    ) -> List[str]:
        """Return ``type:id`` references of users holding ``relation`` on ``object``."""
        object_type, _, object_id = object.partition(":")
        body = self._with_model({
            "object": {"type": object_type, "id": object_id},
            "relation": relation,
            "user_filters": [{"type": user_type}],
        })
        data = await self._request(
            "POST", self._store_path("list-users"), "list_users", body=body, timeout=timeout
        )
        return list(_user_references(data.get("users") or []))


def _user_references(users: Iterable[Dict[str, Any]]):
    for user in users:
        if "object" in user:
            yield f"{user['object']['type']}:{user['object']['id']}"
        elif "userset" in user:
            userset = user["userset"]
            yield f"{userset['type']}:{userset['id']}#{userset['relation']}"
        elif "wildcard" in user:
            yield f"{user['wildcard']['type']}:*"


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def models_equal(deployed: Dict[str, Any], expected: Dict[str, Any]) -> bool:
    """Compare two authorization models by schema version and type definitions."""
    if deployed.get("schema_version") != expected.get("schema_version"):
        logger.error(
            "Authorization model schema version mismatch: %s != %s",
            deployed.get("schema_version"),
            expected.get("schema_version"),
        )
        return False

    deployed_types = sorted(_canonical(t) for t in deployed.get("type_definitions") or [])
    expected_types = sorted(_canonical(t) for t in expected.get("type_definitions") or [])
    if deployed_types != expected_types:
        logger.error("Authorization model type definitions mismatch")
        return False
    return True
