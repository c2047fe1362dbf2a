"""Record and batch request models."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OperationKind(StrEnum):
    """Mutation applied to every record of a batch."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RecordReference(BaseModel):
    """Pointer to a persisted record: table logical name plus identifier."""

    model_config = ConfigDict(frozen=True)

    table: str
    id: str


class Record(BaseModel):
    """A single entity instance subject to create, update or delete.

    The identifier is absent until the service assigns one on create.
    Records are owned by the caller; the driver never keeps them.
    """

    table: str
    fields: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None

    @field_validator("table")
    @classmethod
    def validate_table(cls, value: str) -> str:
        """Table logical name must be non-empty and lowercase."""
        if not value.strip():
            msg = "table must not be empty"
            raise ValueError(msg)
        if value != value.lower():
            msg = "table must be a lowercase logical name"
            raise ValueError(msg)
        return value

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    def reference(self) -> RecordReference:
        """Return a reference to this record. Raises ValueError if unpersisted."""
        if self.id is None:
            msg = f"record in table {self.table} has no identifier"
            raise ValueError(msg)
        return RecordReference(table=self.table, id=self.id)


class RequestHints(BaseModel):
    """Request-level options attached to every call of a batch."""

    model_config = ConfigDict(frozen=True)

    tag: str | None = None
    bypass_custom_processing: bool = False
    extra: dict[str, str] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    """An ordered, immutable set of records and the operation to apply to them."""

    model_config = ConfigDict(frozen=True)

    records: tuple[Record, ...]
    operation: OperationKind
    hints: RequestHints = Field(default_factory=RequestHints)
