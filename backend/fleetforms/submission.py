from __future__ import annotations

import asyncio
import json
import logging
from datetime import date
from typing import Any, Iterable, List, Mapping, Optional

from fleetforms.client import Payload, RecordsAPI
from fleetforms.drafts import DraftPersistence
from fleetforms.errors import CollaboratorError
from fleetforms.fields import FieldDef
from fleetforms.forms.base import FormDefinition
from fleetforms.rules import ValidationEngine, has_blocking
from fleetforms.schemas import PendingFile, SubmissionOutcome

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def serialize_scalar(field: FieldDef, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def build_payload(
    definition: FormDefinition,
    values: Mapping[str, Any],
    creating: bool,
    delete_fields: Iterable[str] = (),
) -> Payload:
    """Scalars become flat strings, nested values JSON strings and pending
    files binary parts. Persisted file references are left out so the
    backend keeps them."""
    payload = Payload()
    for fid, field in definition.fields.items():
        if creating and fid in definition.server_generated:
            continue
        value = values.get(fid)
        if field.kind == "file":
            if isinstance(value, PendingFile):
                payload.files[fid] = value
        elif field.kind in ("object", "list"):
            payload.data[fid] = json.dumps(value, default=_json_default)
        else:
            payload.data[fid] = serialize_scalar(field, value)

    delete_fields = sorted(delete_fields)
    if delete_fields:
        payload.data["deleteFields"] = json.dumps(delete_fields)
    return payload


class SubmissionCoordinator:
    def __init__(self, definition: FormDefinition, api: RecordsAPI, drafts: DraftPersistence,
                 validator: ValidationEngine):
        self.definition = definition
        self.api = api
        self.drafts = drafts
        self.validator = validator

    async def _delete_one(self, record_id: str, field_id: str) -> Optional[str]:
        try:
            await self.api.delete_attachment(self.definition.resource, record_id, field_id)
        except Exception as e:  # each deletion fails on its own
            logger.error(f"Failed to delete attachment {field_id} of {record_id}: {e}")
            return field_id
        logger.info(f"Deleted attachment {field_id} of {record_id}")
        return None

    async def delete_attachments(self, record_id: str, field_ids: Iterable[str]) -> List[str]:
        """Delete every staged attachment concurrently; returns the ids that failed."""
        results = await asyncio.gather(*(self._delete_one(record_id, fid) for fid in field_ids))
        return [fid for fid in results if fid is not None]

    async def submit(self, values: Mapping[str, Any], record_id: Optional[str] = None,
                     staged_deletions: Iterable[str] = ()) -> SubmissionOutcome:
        errors = self.validator.validate(values)
        if has_blocking(errors):
            count = sum(1 for found in errors.values() for e in found if e.severity == "blocking")
            return SubmissionOutcome(
                status="blocked", recordId=record_id, errors=errors,
                message=f"Please fix {count} validation error{'s' if count != 1 else ''} before submitting",
            )

        staged = sorted(staged_deletions)
        failed: List[str] = []
        if record_id and staged:
            failed = await self.delete_attachments(record_id, staged)

        payload = build_payload(self.definition, values, creating=record_id is None, delete_fields=staged)
        generated = {}
        try:
            if record_id:
                await self.api.update_record(self.definition.resource, record_id, payload)
            else:
                result = await self.api.create_record(self.definition.resource, payload)
                record_id = result.id
                generated = {
                    k: v for k, v in result.generatedFields.items() if k in self.definition.server_generated
                }
        except CollaboratorError as e:
            logger.error(f"Submitting {self.definition.form_type} failed: {e}")
            return SubmissionOutcome(
                status="failed", recordId=record_id, errors=errors, failedDeletions=failed, message=str(e),
            )

        await self.drafts.discard()
        logger.info(f"Saved {self.definition.form_type} record {record_id}")
        return SubmissionOutcome(
            status="saved", recordId=record_id, errors=errors, failedDeletions=failed, generatedFields=generated,
        )
