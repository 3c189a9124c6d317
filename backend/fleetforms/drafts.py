"""Debounced draft persistence, one slot per (client, form type)."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from fleetforms.errors import TypeMismatch
from fleetforms.fields import FieldDef, coerce_value
from fleetforms.schemas import Draft, FormState, PendingFile

logger = logging.getLogger(__name__)


def draft_key(client_id: str, form_type: str) -> str:
    return f"{client_id}:{form_type}"


class MemoryDraftStore:
    """Keeps drafts as JSON documents in a dict. Used by tests and single-process runs."""

    def __init__(self):
        self._docs: Dict[str, dict] = {}

    async def load(self, client_id: str, form_type: str) -> Optional[Draft]:
        doc = self._docs.get(draft_key(client_id, form_type))
        return Draft.model_validate(doc) if doc else None

    async def save(self, draft: Draft) -> None:
        self._docs[draft_key(draft.clientId, draft.formType)] = draft.model_dump(mode="json")

    async def delete(self, client_id: str, form_type: str) -> None:
        self._docs.pop(draft_key(client_id, form_type), None)


class MongoDraftStore:
    def __init__(self, collection=None):
        if collection is None:
            from fleetforms.database import drafts_collection as collection
        self.collection = collection

    async def load(self, client_id: str, form_type: str) -> Optional[Draft]:
        doc = await self.collection.find_one({"_id": draft_key(client_id, form_type)})
        if not doc:
            return None
        doc.pop("_id", None)
        return Draft.model_validate(doc)

    async def save(self, draft: Draft) -> None:
        doc = draft.model_dump(mode="json")
        doc["_id"] = draft_key(draft.clientId, draft.formType)
        await self.collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    async def delete(self, client_id: str, form_type: str) -> None:
        await self.collection.delete_one({"_id": draft_key(client_id, form_type)})


def storable_state(state: FormState) -> FormState:
    """Copy of ``state`` without local file handles, which do not survive a restart."""
    values = {
        fid: (None if isinstance(value, PendingFile) else value)
        for fid, value in state.values.items()
    }
    return state.model_copy(update={"values": values, "errors": {}}, deep=True)


def retype_values(fields: Mapping[str, FieldDef], raw: Mapping[str, Any]) -> Dict[str, Any]:
    values = {}
    for fid, value in raw.items():
        if fid not in fields:
            logger.warning(f"Ignoring draft value for undeclared field {fid}")
            continue
        typed = coerce_value(fields[fid], value)
        if isinstance(typed, TypeMismatch):
            logger.warning(f"Ignoring draft value: {typed.message}")
            continue
        values[fid] = typed
    return values


class DraftPersistence:
    def __init__(self, store, form_type: str, client_id: str, quiet_period: float = 1.0):
        self.store = store
        self.form_type = form_type
        self.client_id = client_id
        self.quiet_period = quiet_period
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, state: FormState) -> None:
        """Save ``state`` once no other edit arrives within the quiet period."""
        self.cancel()
        self._task = asyncio.create_task(self._save_later(storable_state(state)))

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def _save_later(self, state: FormState) -> None:
        await asyncio.sleep(self.quiet_period)
        await self.save(state)

    async def save(self, state: FormState) -> bool:
        """Write the draft now; store failures are logged, not raised."""
        draft = Draft(
            formType=self.form_type,
            clientId=self.client_id,
            createdAt=datetime.now(timezone.utc),
            state=storable_state(state),
        )
        try:
            await self.store.save(draft)
        except Exception as e:
            logger.error(f"Failed to save draft for {self.client_id}:{self.form_type}: {e}")
            return False
        logger.info(f"Saved draft for {self.client_id}:{self.form_type}")
        return True

    async def flush(self, state: FormState) -> None:
        if self.pending:
            self.cancel()
            await self.save(state)

    async def restore(self, fields: Mapping[str, FieldDef]) -> Optional[Tuple[FormState, datetime]]:
        """The saved state with values re-typed for ``fields``, plus when it was saved."""
        draft = await self.store.load(self.client_id, self.form_type)
        if draft is None:
            return None

        state = draft.state.model_copy(update={
            "values": retype_values(fields, draft.state.values),
            "touched": [fid for fid in draft.state.touched if fid in fields],
        })
        logger.info(f"Restored draft for {self.client_id}:{self.form_type} saved at {draft.createdAt.isoformat()}")
        return state, draft.createdAt

    async def discard(self) -> None:
        self.cancel()
        await self.store.delete(self.client_id, self.form_type)
        logger.info(f"Discarded draft for {self.client_id}:{self.form_type}")
