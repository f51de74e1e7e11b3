"""Role-specific exception types."""

from typing import Optional


class RoleError(Exception):
    """Base exception for role operations."""

    pass


class RoleNotFoundError(RoleError):
    """No role row matched the lookup."""

    def __init__(self, message: str = "role not found"):
        super().__init__(message)


class RoleExistsError(RoleError):
    """A role with the same name already exists."""

    pass


class RoleCompensationError(RoleError):
    """Role creation failed and undoing the half that succeeded failed too.

    The role's relational and tuple state may disagree; re-query before
    retrying.
    """

    def __init__(self, relational_error: Exception, tuple_error: Optional[Exception] = None):
        self.relational_error = relational_error
        self.tuple_error = tuple_error
        message = f"role creation failed, relational store: {relational_error}"
        if tuple_error is not None:
            message += f"; tuple store: {tuple_error}"
        super().__init__(message)
