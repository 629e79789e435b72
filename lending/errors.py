from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """Base class for failures raised by the lending domain."""

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field_name = field_name


class InvalidField(DomainError, ValueError):
    """An argument violates a static constraint (blank, too long, out of order)."""

    def __init__(self, message: str, field_name: str) -> None:
        super().__init__(message, field_name)


class InvalidOperation(DomainError):
    """The entity's current status, or a lending policy, forbids the action."""


class NotFound(LookupError):
    """No stored entity with the requested id."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id


class ConcurrencyConflict(Exception):
    """The stored row changed since the entity was loaded."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} was modified concurrently; reload and retry.")
        self.entity = entity
        self.entity_id = entity_id
