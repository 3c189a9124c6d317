from fastapi import APIRouter, Depends, HTTPException
import logging
import uuid
from typing import Dict

from fleetforms.client import RecordsAPI, get_records_api
from fleetforms.config import settings
from fleetforms.drafts import MongoDraftStore
from fleetforms.errors import ReadOnlyFieldError, TypeMismatch, UnknownFieldError
from fleetforms.forms.registry import get_definition
from fleetforms.schemas import FieldUpdateIn, SessionIn, SessionOut
from fleetforms.session import FormSession, NotAFileField

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])

# open sessions, owned by the single event loop of this process
sessions: Dict[str, FormSession] = {}

_draft_store = None


def get_draft_store():
    global _draft_store
    if _draft_store is None:
        _draft_store = MongoDraftStore()
    return _draft_store


def get_session(session_id: str) -> FormSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def session_out(session_id: str, session: FormSession) -> SessionOut:
    return SessionOut(
        sessionId=session_id,
        busy=session.busy,
        restoredAt=session.restored_at,
        state=session.state(),
    )


def unknown_field(field_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Unknown field: {field_id}")


@router.post("", response_model=SessionOut)
async def open_session(
    payload: SessionIn,
    api: RecordsAPI = Depends(get_records_api),
    draft_store=Depends(get_draft_store),
):
    try:
        definition = get_definition(payload.formType)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown form type: {payload.formType}")

    session = FormSession(
        definition,
        api,
        draft_store,
        client_id=payload.clientId,
        record_id=payload.recordId,
        draft_quiet_period=settings.DRAFT_QUIET_PERIOD,
        lookup_quiet_period=settings.LOOKUP_QUIET_PERIOD,
        expiry_warning_days=settings.EXPIRY_WARNING_DAYS,
    )
    await session.open(payload.values)

    session_id = uuid.uuid4().hex
    sessions[session_id] = session
    logger.info(f"Opened {payload.formType} session {session_id} (record {payload.recordId})")
    return session_out(session_id, session)


@router.get("/{session_id}", response_model=SessionOut)
async def read_session(session_id: str):
    return session_out(session_id, get_session(session_id))


@router.put("/{session_id}/fields/{field_id}", response_model=SessionOut)
async def edit_field(session_id: str, field_id: str, update: FieldUpdateIn):
    session = get_session(session_id)
    try:
        result = session.edit(field_id, update.value)
    except UnknownFieldError:
        raise unknown_field(field_id)
    except ReadOnlyFieldError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if isinstance(result, TypeMismatch):
        raise HTTPException(status_code=422, detail=result.message)
    return session_out(session_id, session)


@router.post("/{session_id}/fields/{field_id}/deletion", response_model=SessionOut)
async def stage_deletion(session_id: str, field_id: str):
    session = get_session(session_id)
    try:
        session.stage_deletion(field_id)
    except UnknownFieldError:
        raise unknown_field(field_id)
    except NotAFileField as e:
        raise HTTPException(status_code=422, detail=str(e))
    return session_out(session_id, session)


@router.delete("/{session_id}/fields/{field_id}/deletion", response_model=SessionOut)
async def unstage_deletion(session_id: str, field_id: str):
    session = get_session(session_id)
    try:
        session.unstage_deletion(field_id)
    except UnknownFieldError:
        raise unknown_field(field_id)
    except NotAFileField as e:
        raise HTTPException(status_code=422, detail=str(e))
    return session_out(session_id, session)


@router.post("/{session_id}/validate", response_model=SessionOut)
async def validate_session(session_id: str):
    session = get_session(session_id)
    session.validate_all()
    return session_out(session_id, session)


@router.post("/{session_id}/submit")
async def submit_session(session_id: str):
    session = get_session(session_id)
    if session.busy:
        raise HTTPException(status_code=409, detail="Submission already in progress")

    outcome = await session.submit()
    if outcome.status == "blocked":
        raise HTTPException(status_code=400, detail=outcome.model_dump(mode="json"))
    if outcome.status == "failed":
        raise HTTPException(status_code=502, detail=outcome.model_dump(mode="json"))
    return {
        "outcome": outcome.model_dump(mode="json"),
        "session": session_out(session_id, session).model_dump(mode="json"),
    }


@router.delete("/{session_id}/draft")
async def discard_draft(session_id: str):
    session = get_session(session_id)
    await session.discard_draft()
    return {"status": "ok"}


@router.delete("/{session_id}")
async def close_session(session_id: str):
    session = get_session(session_id)
    await session.close()
    del sessions[session_id]
    logger.info(f"Closed session {session_id}")
    return {"status": "ok"}
