"""Holds the authorization model this build of the service expects."""

import copy
import json
import logging
from importlib import resources
from typing import Any, Dict, Optional

from .exceptions import ModelMismatchError

logger = logging.getLogger(__name__)

MODEL_RESOURCE = "authorization_model.json"


class SchemaProvider:
    """Loads the bundled authorization model once and hands out copies."""

    def __init__(self, model: Optional[Dict[str, Any]] = None):
        self._model = model if model is not None else self._load_bundled()

    @staticmethod
    def _load_bundled() -> Dict[str, Any]:
        raw = resources.files(__package__).joinpath(MODEL_RESOURCE).read_text(encoding="utf-8")
        return json.loads(raw)

    @property
    def model(self) -> Dict[str, Any]:
        return copy.deepcopy(self._model)

    @property
    def schema_version(self) -> str:
        return self._model.get("schema_version", "")

    async def validate(self, client):
        """Raise ``ModelMismatchError`` unless the engine runs the expected model."""
        if not await client.compare_model(self._model):
            raise ModelMismatchError(
                "deployed authorization model does not match the expected one",
                "compare_model",
            )
        logger.info("Authorization model validated (schema %s)", self.schema_version)
