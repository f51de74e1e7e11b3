"""Response envelope and token pagination shared by the v0 API."""

import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

PAGINATION_HEADER = "X-Token-Pagination"


class ApiResponse(BaseModel):
    """``{"data", "message", "status", "_meta"}`` envelope."""

    model_config = ConfigDict(populate_by_name=True)

    data: Any = None
    message: str = ""
    status: int = 200
    meta: Optional[Dict[str, Any]] = Field(default=None, alias="_meta")


def respond(
    data: Any = None,
    message: str = "",
    status: int = 200,
    meta: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = ApiResponse(data=data, message=message, status=status, meta=meta)
    return JSONResponse(
        status_code=status,
        content=body.model_dump(mode="json", by_alias=True),
        headers=headers,
    )


def load_tokens(header: Optional[str]) -> Dict[str, str]:
    """Decode a base64 JSON map of continuation tokens.

    A malformed header is logged and treated as "start from the beginning".
    """
    if not header:
        return {}
    try:
        tokens = json.loads(base64.b64decode(header, validate=True))
    except (binascii.Error, ValueError) as e:
        logger.error("Ignoring malformed %s header: %s", PAGINATION_HEADER, e)
        return {}
    if not isinstance(tokens, dict):
        logger.error("Ignoring %s header that is not a JSON object", PAGINATION_HEADER)
        return {}
    return {str(k): str(v) for k, v in tokens.items()}


def encode_tokens(tokens: Dict[str, str]) -> str:
    if not tokens:
        return ""
    return base64.b64encode(json.dumps(tokens, sort_keys=True).encode("utf-8")).decode("ascii")
