from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Union
from datetime import datetime


FieldKind = Literal["text", "number", "date", "time", "boolean", "file", "object", "list"]
Operator = Literal["<", "<=", ">", ">=", "==", "!="]
Severity = Literal["blocking", "advisory"]
ErrorKind = Literal[
    "TypeMismatch",
    "FormatError",
    "RangeError",
    "RequiredFieldError",
    "CrossFieldOrderError",
    "ChronologyError",
    "DuplicateRecordError",
]


class FieldError(BaseModel):
    field: str
    kind: ErrorKind
    message: str
    severity: Severity = "blocking"


class RuleRightConstant(BaseModel):
    source: Literal["constant"] = "constant"
    value: Any


class RuleRightField(BaseModel):
    # compares against another field of the same form
    source: Literal["field"] = "field"
    field: str


RuleRight = Union[RuleRightConstant, RuleRightField]


class FileRef(BaseModel):
    """A file that already lives on the backend."""
    source: Literal["persisted"] = "persisted"
    url: str
    originalName: str = ""


class PendingFile(BaseModel):
    """A local file spooled to disk, waiting to be sent with the next submit."""
    source: Literal["pending"] = "pending"
    path: str
    filename: str
    contentType: str = "application/octet-stream"
    size: int = 0


class StoreSnapshot(BaseModel):
    values: Dict[str, Any] = Field(default_factory=dict)
    touched: List[str] = Field(default_factory=list)


class FormState(BaseModel):
    formType: str
    recordId: Optional[str] = None
    values: Dict[str, Any] = Field(default_factory=dict)
    errors: Dict[str, List[FieldError]] = Field(default_factory=dict)
    touched: List[str] = Field(default_factory=list)
    stagedDeletions: List[str] = Field(default_factory=list)


class Draft(BaseModel):
    formType: str
    clientId: str
    createdAt: datetime
    state: FormState


class CreateResult(BaseModel):
    id: str
    generatedFields: Dict[str, Any] = Field(default_factory=dict)


class SubmissionOutcome(BaseModel):
    status: Literal["saved", "blocked", "failed"]
    recordId: Optional[str] = None
    errors: Dict[str, List[FieldError]] = Field(default_factory=dict)
    failedDeletions: List[str] = Field(default_factory=list)
    generatedFields: Dict[str, Any] = Field(default_factory=dict)
    message: str = ""


class SessionIn(BaseModel):
    formType: str
    clientId: str = "default"
    recordId: Optional[str] = None
    values: Dict[str, Any] = Field(default_factory=dict)


class FieldUpdateIn(BaseModel):
    value: Any = None


class SessionOut(BaseModel):
    sessionId: str
    busy: bool = False
    restoredAt: Optional[datetime] = None
    state: FormState
