"""Value objects exchanged with the ReBAC engine."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple as _Tuple


@dataclass(frozen=True)
class Tuple:
    """A single ``(user, relation, object)`` fact in the relation graph.

    Hides the engine's wire format from the rest of the application.
    """

    user: str
    relation: str
    object: str

    def values(self) -> _Tuple[str, str, str]:
        return self.user, self.relation, self.object

    def to_key(self) -> Dict[str, str]:
        return {"user": self.user, "relation": self.relation, "object": self.object}

    @classmethod
    def from_key(cls, key: Dict[str, Any]) -> "Tuple":
        return cls(
            user=key.get("user", ""),
            relation=key.get("relation", ""),
            object=key.get("object", ""),
        )


@dataclass(frozen=True)
class Permission:
    """A ``relation`` on an ``object``, as granted to some subject."""

    relation: str
    object: str


@dataclass
class ReadPage:
    """One page of a paginated tuple read."""

    tuples: List[Tuple] = field(default_factory=list)
    continuation_token: str = ""
