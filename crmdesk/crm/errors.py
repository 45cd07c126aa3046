from __future__ import annotations

from typing import Any


class PrimaryFlagError(Exception):
    """Base error for primary/default flag bookkeeping."""

    def __init__(self, entity: str, message: str) -> None:
        self.entity = entity
        super().__init__(message)


class PrimaryRecordNotFound(PrimaryFlagError):
    def __init__(self, entity: str, record_id: Any, group_key: Any = None) -> None:
        self.record_id = record_id
        self.group_key = group_key
        if group_key is None:
            message = f"{entity} {record_id} not found"
        else:
            message = f"{entity} {record_id} not found in group {group_key}"
        super().__init__(entity, message)


class PrimaryFlagConflict(PrimaryFlagError):
    """More than one flagged row was observed (or rejected by the database) for a group."""

    def __init__(self, entity: str, group_key: Any, primary_count: int | None = None) -> None:
        self.group_key = group_key
        self.primary_count = primary_count
        super().__init__(entity, f"concurrent primary update detected for {entity} group {group_key}")


class PrimaryFlagValidationError(PrimaryFlagError):
    pass
