"""Composite ``relation::object`` identifiers for permissions exposed over HTTP."""

from dataclasses import dataclass
from typing import Optional

PERMISSION_SEPARATOR = "::"


@dataclass(frozen=True)
class URN:
    relation: str
    object: str

    @property
    def id(self) -> str:
        return f"{self.relation}{PERMISSION_SEPARATOR}{self.object}"

    @classmethod
    def parse(cls, value: str) -> Optional["URN"]:
        """Parse ``relation::object``; returns None when not a valid URN.

        Both the relation and the object must be non-empty.
        Only the first two segments are used.
        """
        values = value.split(PERMISSION_SEPARATOR)
        if len(values) < 2 or not values[0] or not values[1]:
            return None
        return cls(relation=values[0], object=values[1])

    def __str__(self) -> str:
        return self.id
