from fastapi import APIRouter, UploadFile, File, HTTPException
import logging
import uuid
from pathlib import Path

from fleetforms.config import settings
from fleetforms.errors import TypeMismatch, UnknownFieldError
from fleetforms.routers.sessions import get_session, session_out
from fleetforms.schemas import PendingFile, SessionOut
from fleetforms.session import NotAFileField

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["uploads"])

CHUNK_SIZE = 1024 * 1024  # 1MB chunks


def upload_dir() -> Path:
    path = Path(settings.UPLOAD_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


@router.post("/{session_id}/files/{field_id}", response_model=SessionOut)
async def upload_file(session_id: str, field_id: str, file: UploadFile = File(...)):
    """
    Spool a local file for a file field of the session.
    The file is sent to the records API with the next submit.
    """
    session = get_session(session_id)
    try:
        session.file_field(field_id)
    except UnknownFieldError:
        raise HTTPException(status_code=404, detail=f"Unknown field: {field_id}")
    except NotAFileField as e:
        raise HTTPException(status_code=422, detail=str(e))

    file_extension = Path(file.filename).suffix if file.filename else ""
    file_path = upload_dir() / f"{uuid.uuid4().hex}{file_extension}"

    max_size = settings.MAX_UPLOAD_SIZE
    total_size = 0
    try:
        with open(file_path, "wb") as buffer:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break

                total_size += len(chunk)
                if total_size > max_size:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File size exceeds maximum allowed size of {max_size / (1024*1024*1024):.2f}GB"
                    )
                buffer.write(chunk)
    except HTTPException:
        file_path.unlink(missing_ok=True)
        raise
    except OSError as e:
        file_path.unlink(missing_ok=True)
        logger.error(f"Spooling upload for {field_id} failed: {e}")
        raise HTTPException(status_code=500, detail=f"File upload failed: {str(e)}")

    pending = PendingFile(
        path=str(file_path),
        filename=file.filename or "unknown",
        contentType=file.content_type or "application/octet-stream",
        size=total_size,
    )
    result = session.attach_file(field_id, pending)
    if isinstance(result, TypeMismatch):
        file_path.unlink(missing_ok=True)
        raise HTTPException(status_code=422, detail=result.message)
    return session_out(session_id, session)
