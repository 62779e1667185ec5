from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from app.api.envelope import err, ok
from app.middleware.error_handler import full_error_message
from app.schemas.filesystem import WriteFileRequest
from app.services.filesystem_service import FilesystemService

router = APIRouter(prefix="/api/fs", tags=["filesystem"])


@router.get("/directory")
def list_directory(path: str = Query(...)):
    try:
        entries = FilesystemService().list_directory(path)
        return ok([entry.model_dump() for entry in entries])
    except ValueError as exc:
        return JSONResponse(status_code=400, content=err(str(exc)).model_dump())
    except Exception as exc:
        return JSONResponse(status_code=500, content=err(full_error_message(exc)).model_dump())


@router.get("/file")
def read_file(path: str = Query(...)):
    try:
        return ok(FilesystemService().read_file(path))
    except ValueError as exc:
        return JSONResponse(status_code=400, content=err(str(exc)).model_dump())
    except Exception as exc:
        return JSONResponse(status_code=500, content=err(full_error_message(exc)).model_dump())


@router.put("/file")
def write_file(request: WriteFileRequest):
    try:
        FilesystemService().write_file(request.path, request.content)
        return ok({"path": request.path, "written": True})
    except ValueError as exc:
        return JSONResponse(status_code=400, content=err(str(exc)).model_dump())
    except Exception as exc:
        return JSONResponse(status_code=500, content=err(full_error_message(exc)).model_dump())
