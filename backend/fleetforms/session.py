"""One open form: the owned FieldStore plus the engines that react to its edits."""
from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from fleetforms.client import RecordsAPI
from fleetforms.config import settings
from fleetforms.drafts import DraftPersistence
from fleetforms.errors import ReadOnlyFieldError, TypeMismatch
from fleetforms.fields import coerce_value
from fleetforms.forms.base import FormDefinition, LookupSpec
from fleetforms.graph import RecomputeEngine
from fleetforms.lookup import DebouncedLookup
from fleetforms.rules import ErrorMap
from fleetforms.schemas import FileRef, FormState, PendingFile, SubmissionOutcome
from fleetforms.submission import SubmissionCoordinator

logger = logging.getLogger(__name__)


class NotAFileField(ValueError):
    pass


class FormSession:
    def __init__(
        self,
        definition: FormDefinition,
        api: RecordsAPI,
        draft_store,
        client_id: str = "default",
        record_id: Optional[str] = None,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = datetime.now,
        draft_quiet_period: float = settings.DRAFT_QUIET_PERIOD,
        lookup_quiet_period: float = settings.LOOKUP_QUIET_PERIOD,
        expiry_warning_days: int = settings.EXPIRY_WARNING_DAYS,
    ):
        self.definition = definition
        self.api = api
        self.client_id = client_id
        self.record_id = record_id
        self.now = now
        self.busy = False

        self.store = definition.new_store()
        self.recompute = RecomputeEngine(definition.graph, self.store)
        self.validator = definition.validation_engine(today, expiry_warning_days)
        self.drafts = DraftPersistence(draft_store, definition.form_type, client_id, draft_quiet_period)
        self.coordinator = SubmissionCoordinator(definition, api, self.drafts, self.validator)
        self.errors: ErrorMap = {}
        self.staged_deletions: Set[str] = set()
        self.restored_at: Optional[datetime] = None

        self._lookups: Dict[str, DebouncedLookup] = {
            spec.target: DebouncedLookup(
                self._lookup_call(spec),
                self._lookup_apply(spec),
                quiet_period=lookup_quiet_period,
            )
            for spec in definition.lookups
        }

    @property
    def form_type(self) -> str:
        return self.definition.form_type

    # -- lifecycle ---------------------------------------------------------

    async def open(self, values: Optional[Mapping[str, Any]] = None) -> FormState:
        """Fresh forms pick up the saved draft; edits start from the record's values."""
        if self.record_id is None and not values:
            restored = await self.drafts.restore(self.definition.fields)
            if restored is not None:
                state, self.restored_at = restored
                self._load(state.values, touched=state.touched)
                self.staged_deletions = set(state.stagedDeletions) & set(self.definition.file_fields)
                return self.state()

        self._load(values or {})
        return self.state()

    def _load(self, values: Mapping[str, Any], touched: Iterable[str] = ()) -> None:
        for fid, raw in values.items():
            if fid not in self.store:
                logger.warning(f"Ignoring value for undeclared field {fid} of {self.form_type}")
                continue
            typed = coerce_value(self.store.field(fid), raw)
            if isinstance(typed, TypeMismatch):
                logger.warning(f"Ignoring value on open: {typed.message}")
                continue
            self.store.set(fid, typed, touch=False)
        for fid in touched:
            self.store.set(fid, self.store.get(fid))
        self.recompute.recompute_all()
        self.store.mark_clean()
        self.errors = self.validator.validate(self.store.values(), changed=self.store.touched, previous={})

    def cancel(self) -> None:
        """Stop pending timers. The saved draft is kept for the next open."""
        self.drafts.cancel()
        for lookup in self._lookups.values():
            lookup.cancel()

    async def close(self) -> None:
        """Save what is pending right away, then stop all timers."""
        await self.drafts.flush(self.state())
        self.cancel()

    async def discard_draft(self) -> None:
        await self.drafts.discard()

    # -- editing -----------------------------------------------------------

    def edit(self, field_id: str, raw: Any) -> Union[FormState, TypeMismatch]:
        field = self.store.field(field_id)
        if self.definition.graph.is_derived(field_id):
            raise ReadOnlyFieldError(f"{field.title} is calculated and cannot be edited")
        value = coerce_value(field, raw)
        if isinstance(value, TypeMismatch):
            return value

        previous = self.store.get(field_id)
        result = self.store.set(field_id, value)
        if isinstance(result, TypeMismatch):
            return result
        if isinstance(previous, PendingFile) and previous != value:
            self._remove_local_file(previous)
        if isinstance(value, FileRef) or value is None:
            self.staged_deletions.discard(field_id)

        self._after_change([field_id, *result])
        return self.state()

    def _after_change(self, changed: List[str]) -> None:
        changed = list(changed)
        changed += self._apply_autofills(changed)
        changed += self.recompute.recompute(changed)
        self.errors = self.validator.validate(self.store.values(), changed=changed, previous=self.errors)
        self._trigger_lookups(changed)
        self.drafts.schedule(self.state())

    def _apply_autofills(self, changed: List[str]) -> List[str]:
        filled: List[str] = []
        for autofill in self.definition.autofills:
            if not set(changed).intersection(autofill.triggers):
                continue
            for fid, value in autofill.fill(self.store.values(), self.now()).items():
                result = self.store.set(fid, value, touch=False)
                if isinstance(result, TypeMismatch):
                    logger.error(f"Autofill produced an invalid value: {result.message}")
                    continue
                filled.extend(result)
        return filled

    # -- lookups -----------------------------------------------------------

    def _lookup_call(self, spec: LookupSpec):
        async def call(seed_text: str) -> str:
            return await self.api.lookup_code(self.definition.resource, spec.target, seed_text)
        return call

    def _lookup_apply(self, spec: LookupSpec):
        def apply(code: str) -> None:
            result = self.store.set(spec.target, code, touch=False)
            if isinstance(result, TypeMismatch):
                logger.error(f"Lookup produced an invalid value: {result.message}")
                return
            if result:
                self._after_change(result)
        return apply

    def _trigger_lookups(self, changed: Iterable[str]) -> None:
        changed = set(changed)
        for spec in self.definition.lookups:
            if spec.new_records_only and self.record_id is not None:
                continue
            if changed.intersection(spec.seeds):
                self._lookups[spec.target].request(spec.seed_text(self.store.values()))

    async def settle(self) -> None:
        """Wait for in-flight lookups."""
        for lookup in self._lookups.values():
            await lookup.wait()

    # -- attachments -------------------------------------------------------

    def file_field(self, field_id: str):
        field = self.store.field(field_id)
        if field.kind != "file":
            raise NotAFileField(f"{field_id} is not a file field")
        return field

    def stage_deletion(self, field_id: str) -> FormState:
        """Persisted files are only marked; a pending local file is dropped at once."""
        self.file_field(field_id)
        value = self.store.get(field_id)
        if isinstance(value, PendingFile):
            self.edit(field_id, None)
        elif isinstance(value, FileRef):
            self.staged_deletions.add(field_id)
            self.drafts.schedule(self.state())
        return self.state()

    def unstage_deletion(self, field_id: str) -> FormState:
        self.file_field(field_id)
        if field_id in self.staged_deletions:
            self.staged_deletions.discard(field_id)
            self.drafts.schedule(self.state())
        return self.state()

    def attach_file(self, field_id: str, pending: PendingFile) -> Union[FormState, TypeMismatch]:
        self.file_field(field_id)
        return self.edit(field_id, pending)

    @staticmethod
    def _remove_local_file(pending: PendingFile) -> None:
        Path(pending.path).unlink(missing_ok=True)

    # -- validation and submit ----------------------------------------------

    def state(self) -> FormState:
        return FormState(
            formType=self.form_type,
            recordId=self.record_id,
            values=self.store.values(),
            errors=self.errors,
            touched=sorted(self.store.touched),
            stagedDeletions=sorted(self.staged_deletions),
        )

    def validate_all(self) -> FormState:
        self.errors = self.validator.validate(self.store.values())
        return self.state()

    async def submit(self) -> SubmissionOutcome:
        self.busy = True
        try:
            await self.settle()
            values = self.store.snapshot().values
            creating = self.record_id is None
            outcome = await self.coordinator.submit(values, self.record_id, self.staged_deletions)
        finally:
            self.busy = False

        self.errors = outcome.errors
        if outcome.status != "saved":
            return outcome

        self.drafts.cancel()
        for value in values.values():
            if isinstance(value, PendingFile):
                self._remove_local_file(value)
        if creating:
            self._reset(record_id=outcome.recordId, values={**values, **outcome.generatedFields})
        else:
            self._reset(record_id=None, values={})
        return outcome

    def _reset(self, record_id: Optional[str], values: Mapping[str, Any]) -> None:
        self.record_id = record_id
        self.staged_deletions = set()
        self.store = self.definition.new_store()
        self.recompute = RecomputeEngine(self.definition.graph, self.store)
        self._load({
            fid: value for fid, value in values.items() if not isinstance(value, PendingFile)
        })
