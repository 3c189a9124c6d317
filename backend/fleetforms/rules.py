from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from fleetforms.fields import is_blank
from fleetforms.formulas import to_number
from fleetforms.schemas import ErrorKind, FieldError, Operator, RuleRight, RuleRightConstant, RuleRightField, Severity
from fleetforms.timecheck import TimeSequenceValidator

ErrorMap = Dict[str, List[FieldError]]
Predicate = Callable[[Mapping[str, Any]], bool]


@dataclass
class RuleContext:
    today: date
    expiry_warning_days: int = 30


def root_field(path: str) -> str:
    """'AdditionalContacts[1].Email' -> 'AdditionalContacts'"""
    return re.split(r"[.\[]", path, maxsplit=1)[0]


def _comparable(x: Any) -> Any:
    if isinstance(x, date):
        return x
    number = to_number(x)
    return x if number is None else number


def _compare(left: Any, op: str, right: Any) -> bool:
    left = _comparable(left)
    right = _comparable(right)

    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    return False


class Rule:
    """Base rule. ``targets`` are the fields whose error lists the rule owns;
    ``depends_on`` are the fields whose change re-runs it."""

    targets: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()

    def check(self, values: Mapping[str, Any], ctx: RuleContext) -> List[FieldError]:
        raise NotImplementedError


class Required(Rule):
    def __init__(self, field_id: str, message: str, when: Optional[Predicate] = None, depends_on: Sequence[str] = ()):
        self.field_id = field_id
        self.message = message
        self.when = when
        self.targets = (field_id,)
        self.depends_on = (field_id, *depends_on)

    def check(self, values, ctx):
        if self.when is not None and not self.when(values):
            return []
        if is_blank(values.get(self.field_id)):
            return [FieldError(field=self.field_id, kind="RequiredFieldError", message=self.message)]
        return []


class Pattern(Rule):
    """Format check on a text value; blank values are left to Required."""

    def __init__(self, field_id: str, pattern: str, message: str, digits_only: bool = False,
                 when: Optional[Predicate] = None, depends_on: Sequence[str] = ()):
        self.field_id = field_id
        self.regex = re.compile(pattern)
        self.message = message
        self.digits_only = digits_only
        self.when = when
        self.targets = (field_id,)
        self.depends_on = (field_id, *depends_on)

    def check(self, values, ctx):
        value = values.get(self.field_id)
        if is_blank(value) or (self.when is not None and not self.when(values)):
            return []
        text = str(value).strip()
        if self.digits_only:
            text = re.sub(r"\D", "", text)
        if not self.regex.match(text):
            return [FieldError(field=self.field_id, kind="FormatError", message=self.message)]
        return []


class Compare(Rule):
    """``left <operator> right`` where right is a constant or another field.

    Used for numeric ranges (RangeError) and for ordering between paired
    fields such as start/expiry dates (CrossFieldOrderError).
    """

    def __init__(self, left: str, operator: Operator, right: RuleRight, message: str,
                 kind: ErrorKind = "RangeError", when: Optional[Predicate] = None,
                 severity: Severity = "blocking", depends_on: Sequence[str] = ()):
        self.left = left
        self.operator = operator
        self.right = right
        self.message = message
        self.kind = kind
        self.when = when
        self.severity = severity
        self.targets = (left,)
        deps = [left, *depends_on]
        if isinstance(right, RuleRightField):
            deps.append(right.field)
        self.depends_on = tuple(deps)

    def _right_value(self, values):
        if isinstance(self.right, RuleRightField):
            return values.get(self.right.field)
        if isinstance(self.right, RuleRightConstant):
            return self.right.value
        return None

    def check(self, values, ctx):
        if self.when is not None and not self.when(values):
            return []
        left_val = values.get(self.left)
        right_val = self._right_value(values)
        if is_blank(left_val) or is_blank(right_val):
            return []

        ok = False
        try:
            ok = _compare(left_val, self.operator, right_val)
        except TypeError:
            ok = False

        if ok:
            return []
        return [FieldError(field=self.left, kind=self.kind, message=self.message, severity=self.severity)]


class Check(Rule):
    """Escape hatch for rules that do not fit the declarative shapes."""

    def __init__(self, targets: Sequence[str], depends_on: Sequence[str],
                 fn: Callable[[Mapping[str, Any], RuleContext], List[FieldError]]):
        self.targets = tuple(targets)
        self.depends_on = tuple({*targets, *depends_on})
        self.fn = fn

    def check(self, values, ctx):
        return self.fn(values, ctx)


class DuplicateRecords(Rule):
    """Flags repeated sub-records sharing the same composite key.

    Only the later occurrences are flagged. A key whose parts are all blank
    is never a duplicate.
    """

    def __init__(self, field_id: str, key_fields: Sequence[str], label: str = "Entry"):
        self.field_id = field_id
        self.key_fields = tuple(key_fields)
        self.label = label
        self.targets = (field_id,)
        self.depends_on = (field_id,)

    def check(self, values, ctx):
        records = values.get(self.field_id) or []
        seen: Set[Tuple[str, ...]] = set()
        errors = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                continue
            key = tuple(str(record.get(k) or "").strip() for k in self.key_fields)
            if not any(key):
                continue
            if key in seen:
                errors.append(FieldError(
                    field=f"{self.field_id}[{index}]",
                    kind="DuplicateRecordError",
                    message=f"{self.label} {index + 1}: This entry already exists. Please remove duplicate entries.",
                ))
            else:
                seen.add(key)
        return errors


class ExpiryNotice(Rule):
    """Advisory reminder for expiry dates that passed or fall inside the warning window."""

    def __init__(self, field_id: str, label: str):
        self.field_id = field_id
        self.label = label
        self.targets = (field_id,)
        self.depends_on = (field_id,)

    def check(self, values, ctx):
        expiry = values.get(self.field_id)
        if not isinstance(expiry, date):
            return []
        days_left = (expiry - ctx.today).days
        if days_left < 0:
            message = f"{self.label} has expired (on {expiry.isoformat()})"
        elif days_left <= ctx.expiry_warning_days:
            message = f"{self.label} expires in {days_left} day{'s' if days_left != 1 else ''} ({expiry.isoformat()})"
        else:
            return []
        return [FieldError(field=self.field_id, kind="RangeError", message=message, severity="advisory")]


class CheckpointOrder(Rule):
    def __init__(self, validator: TimeSequenceValidator):
        self.validator = validator
        self.targets = tuple(validator.fields)
        self.depends_on = tuple(validator.fields)

    def check(self, values, ctx):
        found = []
        for errors in self.validator.validate(values).values():
            found.extend(errors)
        return found


class ValidationEngine:
    def __init__(self, rules: Iterable[Rule], today: Callable[[], date] = date.today,
                 expiry_warning_days: int = 30):
        self.rules = list(rules)
        self.today = today
        self.expiry_warning_days = expiry_warning_days

    def _context(self) -> RuleContext:
        return RuleContext(today=self.today(), expiry_warning_days=self.expiry_warning_days)

    def rules_for(self, changed: Iterable[str]) -> List[Rule]:
        """Rules to re-run after ``changed`` moved.

        Every rule sharing a target with a triggered rule runs too, so a
        field's error list is always rebuilt from all of its rules.
        """
        changed = set(changed)
        triggered = [r for r in self.rules if changed.intersection(r.depends_on)]
        targets = {t for r in triggered for t in r.targets}
        return [r for r in self.rules if targets.intersection(r.targets)]

    def validate(self, values: Mapping[str, Any], changed: Optional[Iterable[str]] = None,
                 previous: Optional[ErrorMap] = None) -> ErrorMap:
        """Return the new error map.

        With ``changed`` omitted every rule runs and the result replaces
        ``previous`` entirely. Otherwise only the affected rules run and
        their targets' entries are replaced, never appended to.
        """
        if changed is None:
            rules = self.rules
            errors: ErrorMap = {}
        else:
            rules = self.rules_for(changed)
            targets = {t for r in rules for t in r.targets}
            errors = {
                path: list(found) for path, found in (previous or {}).items()
                if root_field(path) not in targets
            }

        ctx = self._context()
        for rule in rules:
            for error in rule.check(values, ctx):
                errors.setdefault(error.field, []).append(error)
        return errors


def has_blocking(errors: ErrorMap) -> bool:
    return any(e.severity == "blocking" for found in errors.values() for e in found)
