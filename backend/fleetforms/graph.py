from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Set, Tuple

from fleetforms.errors import GraphCycleError, TypeMismatch
from fleetforms.fields import FieldStore, is_blank
from fleetforms.formulas import round2

logger = logging.getLogger(__name__)

Rounding = Literal["none", "2dp"]
# "all": blank when any source is blank. "any": blank only when every source
# is blank; blank sources reach the formula as None.
NullPolicy = Literal["all", "any"]


@dataclass(frozen=True)
class DerivedFieldSpec:
    id: str
    sources: Tuple[str, ...]
    formula: Callable[..., Any]
    rounding: Rounding = "none"
    nulls: NullPolicy = "all"


class DependencyGraph:
    """Static declaration of derived fields, topologically sorted once."""

    def __init__(self, specs: Iterable[DerivedFieldSpec], known_fields: Optional[Iterable[str]] = None):
        self._specs: Dict[str, DerivedFieldSpec] = {}
        for spec in specs:
            if spec.id in self._specs:
                raise ValueError(f"Derived field {spec.id} declared twice")
            self._specs[spec.id] = spec

        if known_fields is not None:
            known = set(known_fields)
            for spec in self._specs.values():
                missing = [s for s in (spec.id, *spec.sources) if s not in known]
                if missing:
                    raise ValueError(f"Derived field {spec.id} references undeclared fields: {missing}")

        self._forward: Dict[str, List[str]] = defaultdict(list)
        self._reverse: Dict[str, List[str]] = defaultdict(list)
        for spec in self._specs.values():
            for source in spec.sources:
                if spec.id not in self._forward[source]:
                    self._forward[source].append(spec.id)
                    self._reverse[spec.id].append(source)

        self._order = self._topological_sort()
        self._rank = {fid: i for i, fid in enumerate(self._order)}

    def _topological_sort(self) -> List[str]:
        in_degree = {
            fid: sum(1 for dep in self._reverse.get(fid, []) if dep in self._specs)
            for fid in self._specs
        }
        queue = deque(fid for fid in self._specs if in_degree[fid] == 0)
        result: List[str] = []

        while queue:
            current = queue.popleft()
            result.append(current)
            for dependent in self._forward.get(current, []):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(result) != len(self._specs):
            stuck = sorted(fid for fid in self._specs if fid not in result)
            logger.error(f"Derived fields form a cycle: {stuck}")
            raise GraphCycleError(f"Derived fields depend on themselves: {', '.join(stuck)}")
        return result

    @property
    def order(self) -> List[str]:
        return list(self._order)

    def spec(self, field_id: str) -> DerivedFieldSpec:
        return self._specs[field_id]

    def is_derived(self, field_id: str) -> bool:
        return field_id in self._specs

    def dependents_of(self, field_id: str) -> Set[str]:
        """All derived fields transitively reachable from field_id."""
        affected: Set[str] = set()
        to_visit = {field_id}
        while to_visit:
            next_level = set()
            for node in to_visit:
                for dep in self._forward.get(node, []):
                    if dep not in affected:
                        affected.add(dep)
                        next_level.add(dep)
            to_visit = next_level
        return affected

    def affected_order(self, field_ids: Iterable[str]) -> List[str]:
        affected: Set[str] = set()
        for fid in field_ids:
            affected |= self.dependents_of(fid)
        return sorted(affected, key=self._rank.__getitem__)


class RecomputeEngine:
    def __init__(self, graph: DependencyGraph, store: FieldStore):
        self.graph = graph
        self.store = store

    def evaluate(self, spec: DerivedFieldSpec) -> Any:
        values = [self.store.get(s) for s in spec.sources]
        blanks = [is_blank(v) for v in values]
        if spec.nulls == "all" and any(blanks):
            return None
        if spec.nulls == "any" and all(blanks):
            return None

        args = [None if blank else v for v, blank in zip(values, blanks)]
        result = spec.formula(*args)
        if result is None:
            return None
        if spec.rounding == "2dp":
            result = round2(result)
        return result

    def _write(self, spec: DerivedFieldSpec) -> bool:
        result = self.store.set(spec.id, self.evaluate(spec), touch=False)
        if isinstance(result, TypeMismatch):
            logger.error(f"Formula for {spec.id} produced an invalid value: {result.message}")
            return False
        return bool(result)

    def recompute(self, changed: Iterable[str]) -> List[str]:
        """Cascade a change through every dependent derived field.

        Each derived field is evaluated at most once per pass, after all of
        its sources. A field whose sources did not move in this pass is
        skipped. Returns the derived ids whose value changed.
        """
        changed = set(changed)
        computed: Set[str] = set()
        updated: List[str] = []

        for fid in self.graph.affected_order(changed):
            if fid in computed:
                continue
            computed.add(fid)
            spec = self.graph.spec(fid)
            if not changed.intersection(spec.sources):
                continue
            if self._write(spec):
                changed.add(fid)
                updated.append(fid)
        return updated

    def recompute_all(self) -> List[str]:
        updated = []
        for fid in self.graph.order:
            if self._write(self.graph.spec(fid)):
                updated.append(fid)
        return updated
