from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from fleetforms.fields import FieldDef, FieldStore
from fleetforms.graph import DependencyGraph, DerivedFieldSpec
from fleetforms.rules import CheckpointOrder, Rule, ValidationEngine
from fleetforms.timecheck import TimeCheckpointSpec, TimeSequenceValidator


@dataclass(frozen=True)
class LookupSpec:
    """A field filled asynchronously from a collaborator, seeded by other fields."""

    target: str
    seeds: Tuple[str, ...]
    seed_text: Callable[[Mapping[str, Any]], str]
    new_records_only: bool = True


@dataclass(frozen=True)
class Autofill:
    """Non-pure defaults (clock-based numbers and the like) applied after user edits."""

    triggers: Tuple[str, ...]
    fill: Callable[[Mapping[str, Any], datetime], Dict[str, Any]]


class FormDefinition:
    def __init__(
        self,
        form_type: str,
        resource: str,
        fields: Iterable[FieldDef],
        derived: Iterable[DerivedFieldSpec] = (),
        rules: Iterable[Rule] = (),
        checkpoints: Sequence[TimeCheckpointSpec] = (),
        lookups: Iterable[LookupSpec] = (),
        autofills: Iterable[Autofill] = (),
        server_generated: Iterable[str] = (),
    ):
        self.form_type = form_type
        self.resource = resource
        self.fields: Dict[str, FieldDef] = {f.id: f for f in fields}
        self.graph = DependencyGraph(derived, known_fields=self.fields)
        self.sequence: Optional[TimeSequenceValidator] = (
            TimeSequenceValidator(checkpoints) if checkpoints else None
        )
        self.rules: List[Rule] = list(rules)
        if self.sequence is not None:
            self.rules.append(CheckpointOrder(self.sequence))
        self.lookups = list(lookups)
        self.autofills = list(autofills)
        self.server_generated = set(server_generated)

    @property
    def file_fields(self) -> List[str]:
        return [fid for fid, f in self.fields.items() if f.kind == "file"]

    def new_store(self) -> FieldStore:
        return FieldStore(self.fields.values())

    def validation_engine(self, today: Callable[[], date] = date.today, expiry_warning_days: int = 30) -> ValidationEngine:
        return ValidationEngine(self.rules, today=today, expiry_warning_days=expiry_warning_days)
