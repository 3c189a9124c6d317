from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Set, Union

from fleetforms.errors import TypeMismatch, UnknownFieldError
from fleetforms.schemas import FieldKind, FileRef, PendingFile, StoreSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldDef:
    id: str
    kind: FieldKind
    label: str = ""
    default: Any = None

    @property
    def title(self) -> str:
        return self.label or self.id


def is_blank(value: Any) -> bool:
    """None is the only absent value; empty strings and empty containers count too."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def type_matches(kind: FieldKind, value: Any) -> bool:
    if value is None:
        return True
    if kind in ("text", "time"):
        return isinstance(value, str)
    if kind == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == "date":
        return isinstance(value, date) and not isinstance(value, datetime)
    if kind == "boolean":
        return isinstance(value, bool)
    if kind == "file":
        return isinstance(value, (FileRef, PendingFile))
    if kind == "object":
        return isinstance(value, dict)
    if kind == "list":
        return isinstance(value, list)
    return False


def _parse_date(raw: str) -> date:
    # accepts plain dates as well as ISO datetimes coming from date pickers
    if "T" in raw:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    return date.fromisoformat(raw)


def coerce_value(field: FieldDef, raw: Any) -> Union[Any, TypeMismatch]:
    """Turn a raw JSON value into the typed value a field stores.

    Used at the UI boundary and when re-reading drafts. Blank input always
    becomes None.
    """
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return None

    kind = field.kind
    mismatch = TypeMismatch(field.id, kind, raw)

    if kind in ("text", "time"):
        if isinstance(raw, str):
            return raw
        if kind == "text" and isinstance(raw, int) and not isinstance(raw, bool):
            return str(raw)
        return mismatch

    if kind == "number":
        if isinstance(raw, bool):
            return mismatch
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str):
            try:
                raw = float(raw)
            except ValueError:
                return mismatch
        # inf/nan cannot be rounded or serialized
        if isinstance(raw, float) and math.isfinite(raw):
            return raw
        return mismatch

    if kind == "date":
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, date):
            return raw
        if isinstance(raw, str):
            try:
                return _parse_date(raw.strip())
            except ValueError:
                return mismatch
        return mismatch

    if kind == "boolean":
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.lower() in ("true", "false"):
            return raw.lower() == "true"
        return mismatch

    if kind == "file":
        if isinstance(raw, (FileRef, PendingFile)):
            return raw
        if isinstance(raw, dict) and raw.get("source", "persisted") == "persisted" and raw.get("url"):
            return FileRef.model_validate(raw)
        return mismatch

    if kind == "object":
        return copy.deepcopy(raw) if isinstance(raw, dict) else mismatch

    if kind == "list":
        return copy.deepcopy(raw) if isinstance(raw, list) else mismatch

    return mismatch


class FieldStore:
    """Current typed value of every declared field, plus touched/dirty flags."""

    def __init__(self, fields: Iterable[FieldDef]):
        self._fields: Dict[str, FieldDef] = {f.id: f for f in fields}
        self._values: Dict[str, Any] = {
            fid: copy.deepcopy(f.default) for fid, f in self._fields.items()
        }
        self._touched: Set[str] = set()
        self._dirty: Set[str] = set()

    def __contains__(self, field_id: str) -> bool:
        return field_id in self._fields

    def field(self, field_id: str) -> FieldDef:
        try:
            return self._fields[field_id]
        except KeyError:
            raise UnknownFieldError(field_id) from None

    def get(self, field_id: str) -> Any:
        self.field(field_id)
        return self._values[field_id]

    def set(self, field_id: str, value: Any, touch: bool = True) -> Union[List[str], TypeMismatch]:
        """Write a value.

        Returns the ids whose value changed (empty when the write was a
        no-op), or a TypeMismatch signal when the value does not fit the
        field's kind. A rejected write leaves the store untouched.
        """
        field = self.field(field_id)
        if not type_matches(field.kind, value):
            return TypeMismatch(field_id, field.kind, value)

        if touch:
            self._touched.add(field_id)
        if self._values[field_id] == value and type(self._values[field_id]) is type(value):
            return []

        self._values[field_id] = copy.deepcopy(value)
        self._dirty.add(field_id)
        return [field_id]

    def values(self) -> Dict[str, Any]:
        return dict(self._values)

    @property
    def touched(self) -> Set[str]:
        return set(self._touched)

    @property
    def dirty(self) -> Set[str]:
        return set(self._dirty)

    def mark_clean(self) -> None:
        self._dirty.clear()

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            values=copy.deepcopy(self._values),
            touched=sorted(self._touched),
        )

    def restore(self, snapshot: StoreSnapshot) -> None:
        values: Dict[str, Any] = {}
        for fid, f in self._fields.items():
            value = snapshot.values.get(fid, f.default)
            if not type_matches(f.kind, value):
                logger.warning(f"Dropping restored value for {fid}: not a {f.kind}")
                value = copy.deepcopy(f.default)
            values[fid] = copy.deepcopy(value)
        self._values = values
        self._touched = {fid for fid in snapshot.touched if fid in self._fields}
        self._dirty = set()
