"""Database models for the ReBAC admin backend."""

from .base import Base
from .role import Role

__all__ = [
    "Base",
    "Role",
]
