from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class GraphCycleError(Exception):
    """Raised when derived field declarations depend on themselves."""


class UnknownFieldError(KeyError):
    pass


class ReadOnlyFieldError(ValueError):
    """Raised when a caller tries to write a derived field directly."""


class CollaboratorError(Exception):
    """A call to an external collaborator API failed."""


class SubmissionNetworkError(CollaboratorError):
    pass


class AttachmentDeletionError(CollaboratorError):
    def __init__(self, field_id: str, message: str):
        super().__init__(f"{field_id}: {message}")
        self.field_id = field_id


class CodeLookupError(CollaboratorError):
    pass


@dataclass(frozen=True)
class TypeMismatch:
    """Returned by FieldStore.set when a write is rejected."""

    field_id: str
    expected: str
    value: Any

    @property
    def message(self) -> str:
        return f"{self.field_id} expects a {self.expected} value, got {type(self.value).__name__}"
