"""
Stored artifact retrieval.

Identifiers are untrusted input: anything that is not a well-formed
content digest is answered with 404 before any path is built.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import FileResponse

from gateway.app.services.storage import ArtifactStore

router = APIRouter(tags=["Artifacts"])


@router.get(
    "/files/{identifier}",
    summary="Download a stored rendered document",
    response_class=FileResponse,
)
def get_file(identifier: str, request: Request) -> FileResponse:
    store: Optional[ArtifactStore] = request.app.state.store

    if store is None or not store.is_hash(identifier):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    if not store.exists(identifier):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    return FileResponse(
        store.path(identifier),
        media_type="application/octet-stream",
        headers={"Content-Disposition": 'attachment; filename="report.pdf"'},
    )
