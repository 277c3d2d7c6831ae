import logging
from typing import Optional
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from src.core.config import settings
from src.core.exceptions import (
    ApiError,
    ConfigurationError,
    DecodeError,
    InvalidArgumentError,
    IOFailureError,
    OneDriveError,
    TransportError,
)
from src.clients.onedrive_client import OneDriveClient

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI()

# ---------- CLIENT ----------
def onedrive() -> OneDriveClient:
    return OneDriveClient.from_settings()

# ---------- ERRORS ----------
@app.exception_handler(OneDriveError)
async def onedrive_error(request: Request, exc: OneDriveError):
    if isinstance(exc, ConfigurationError):
        status = 500
    elif isinstance(exc, InvalidArgumentError):
        status = 400
    elif isinstance(exc, ApiError):
        status = exc.status_code or 502
    elif isinstance(exc, IOFailureError):
        status = 500
    elif isinstance(exc, (TransportError, DecodeError)):
        status = 502
    else:
        status = 500
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})

# ---------- DRIVES ----------
@app.get("/drives")
def drives(client: OneDriveClient = Depends(onedrive)):
    return client.list_drives()

@app.get("/drive")
def drive(drive_id: Optional[str] = None, client: OneDriveClient = Depends(onedrive)):
    return client.get_drive(drive_id)

@app.get("/drive/root")
def root(drive_id: Optional[str] = None, client: OneDriveClient = Depends(onedrive)):
    return client.get_drive_root(drive_id)

@app.get("/drive/children")
def root_children(client: OneDriveClient = Depends(onedrive)):
    return client.list_children()

@app.get("/drive/search")
def search(q: str, item_id: Optional[str] = None, client: OneDriveClient = Depends(onedrive)):
    return client.search(q, item_id)

# ---------- ITEMS ----------
@app.get("/drive/items/{item_id}")
def item(item_id: str, children: bool = False, client: OneDriveClient = Depends(onedrive)):
    return client.get_item(item_id, with_children=children)

@app.get("/drive/items/{item_id}/children")
def folder(item_id: str, client: OneDriveClient = Depends(onedrive)):
    return client.list_children(item_id)

@app.get("/drive/items/{item_id}/thumbnails")
def thumbnails(item_id: str, client: OneDriveClient = Depends(onedrive)):
    return client.list_thumbnails(item_id)

@app.get("/drive/items/{item_id}/content")
def content(item_id: str, client: OneDriveClient = Depends(onedrive)):
    chunks = client.stream_item(item_id)
    return StreamingResponse(chunks, media_type="application/octet-stream")
