"""Client for the external records API (create/update/delete-attachment/code lookup)."""
from __future__ import annotations

import asyncio
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

import requests

from fleetforms.config import settings
from fleetforms.errors import AttachmentDeletionError, CodeLookupError, SubmissionNetworkError
from fleetforms.lookup import abbreviate, next_code
from fleetforms.schemas import CreateResult, PendingFile

logger = logging.getLogger(__name__)


@dataclass
class Payload:
    """Multi-part body: flat string fields plus binary parts named after their field id."""

    data: Dict[str, str] = field(default_factory=dict)
    files: Dict[str, PendingFile] = field(default_factory=dict)


class RecordsAPI(Protocol):
    async def lookup_code(self, resource: str, code_field: str, seed_text: str) -> str: ...

    async def create_record(self, resource: str, payload: Payload) -> CreateResult: ...

    async def update_record(self, resource: str, record_id: str, payload: Payload) -> None: ...

    async def delete_attachment(self, resource: str, record_id: str, field_id: str) -> None: ...


def _records(body: Any) -> List[dict]:
    # list endpoints answer either a bare list or {"value": [...]}
    if isinstance(body, dict):
        body = body.get("value") or body.get("data") or []
    return [r for r in body if isinstance(r, dict)] if isinstance(body, list) else []


class HttpRecordsClient:
    """Blocking ``requests`` calls run in a worker thread so the event loop stays free."""

    def __init__(self, base_url: str = settings.RECORDS_API_URL, timeout: float = settings.REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, *parts: str) -> str:
        return "/".join([self.base_url, *parts])

    def _send(self, method: str, url: str, payload: Payload) -> requests.Response:
        with ExitStack() as stack:
            files = {
                fid: (f.filename, stack.enter_context(open(f.path, "rb")), f.contentType)
                for fid, f in payload.files.items()
            }
            return requests.request(method, url, data=payload.data, files=files or None, timeout=self.timeout)

    async def lookup_code(self, resource: str, code_field: str, seed_text: str) -> str:
        prefix = abbreviate(seed_text)
        try:
            response = await asyncio.to_thread(requests.get, self._url(resource), timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise CodeLookupError(f"Could not list {resource}: {e}") from e
        return next_code(prefix, (r.get(code_field) for r in _records(body)))

    async def create_record(self, resource: str, payload: Payload) -> CreateResult:
        try:
            response = await asyncio.to_thread(self._send, "POST", self._url(resource), payload)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, OSError, ValueError) as e:
            logger.error(f"Create on {resource} failed: {e}")
            raise SubmissionNetworkError(f"Create failed: {e}") from e

        if not isinstance(body, dict):
            raise SubmissionNetworkError(f"Create on {resource} returned an unexpected body")
        record = body["data"] if isinstance(body.get("data"), dict) else body
        record_id = record.get("id") or record.get("_id")
        if record_id is None:
            raise SubmissionNetworkError(f"Create on {resource} returned no id")
        generated = record.get("generatedFields") or {
            k: v for k, v in record.items() if k not in ("id", "_id")
        }
        return CreateResult(id=str(record_id), generatedFields=generated)

    async def update_record(self, resource: str, record_id: str, payload: Payload) -> None:
        try:
            response = await asyncio.to_thread(self._send, "PUT", self._url(resource, record_id), payload)
            response.raise_for_status()
        except (requests.RequestException, OSError) as e:
            logger.error(f"Update of {resource}/{record_id} failed: {e}")
            raise SubmissionNetworkError(f"Update failed: {e}") from e

    async def delete_attachment(self, resource: str, record_id: str, field_id: str) -> None:
        url = self._url(resource, record_id, "files", field_id)
        try:
            response = await asyncio.to_thread(requests.delete, url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise AttachmentDeletionError(field_id, str(e)) from e


def get_records_api() -> RecordsAPI:
    return HttpRecordsClient()
