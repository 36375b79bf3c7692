"""
Error taxonomy for the access-control engine.

Administrative operations raise these typed errors so that the embedding
service can render a precise message. Decision-path denials are never raised;
they are returned as ``Decision`` values.
"""

from typing import Optional


class AccessControlError(Exception):
    """Base class for all access-control errors."""

    code = "access_control_error"

    def __init__(self, message: str, *, subject: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.subject = subject

    def __str__(self) -> str:
        return self.message


class NotFound(AccessControlError):
    """A user, role, request or policy does not exist."""
    code = "not_found"


class AlreadyExists(AccessControlError):
    """An entity with the same identifier already exists."""
    code = "already_exists"


class InvalidState(AccessControlError):
    """The operation is not allowed in the entity's current state."""
    code = "invalid_state"


class RoleProtected(InvalidState):
    """System roles cannot be edited or deleted."""
    code = "role_protected"


class RoleInUse(InvalidState):
    """A role with effective assignments cannot be deleted."""
    code = "role_in_use"


class InheritanceCycle(InvalidState):
    """Role inheritance edges would form a cycle."""
    code = "inheritance_cycle"


class InvalidInput(AccessControlError):
    """Malformed input supplied by the caller."""
    code = "invalid_input"


class ExpressionError(InvalidInput):
    """A security rule expression failed to parse or evaluate."""
    code = "expression_error"


class StorageError(AccessControlError):
    """The persistence layer failed to read or write."""
    code = "storage_error"


class AccessControlSystemError(AccessControlError):
    """Unexpected failure during evaluation."""
    code = "system_error"
