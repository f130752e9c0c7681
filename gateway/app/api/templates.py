"""
Template catalog endpoints.

Administrative surface over the template catalog: register, remove and
list named templates. Rendering itself does not go through these routes;
``POST /render`` always takes an inline template upload.
"""

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse

from gateway.app.errors import InvalidRequest, StorageUnavailable
from gateway.app.registry.templates import TemplateCatalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/template", tags=["Templates"])


def _catalog(request: Request) -> TemplateCatalog:
    return request.app.state.catalog


# ---------------------------------------------------------------------------
# POST /template
# ---------------------------------------------------------------------------


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Register or replace a named template",
)
def add_template(
    request: Request,
    template: Annotated[Optional[UploadFile], File()] = None,
    fileId: Annotated[Optional[str], Form()] = None,
) -> Dict[str, Any]:
    if template is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No template file provided",
        )

    file_id = fileId or template.filename
    if not file_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="fileId is required",
        )

    try:
        _catalog(request).add(file_id, template.file.read())
    except InvalidRequest as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StorageUnavailable as exc:
        logger.exception("Failed to add template '%s'", file_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add template",
        ) from exc

    return {"message": "Template added successfully", "fileId": file_id}


# ---------------------------------------------------------------------------
# DELETE /template/{fileId}
# ---------------------------------------------------------------------------


@router.delete(
    "/{fileId}",
    summary="Remove a named template (idempotent)",
)
def remove_template(fileId: str, request: Request) -> Dict[str, Any]:
    try:
        _catalog(request).remove(fileId)
    except InvalidRequest as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StorageUnavailable as exc:
        logger.exception("Failed to remove template '%s'", fileId)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to remove template",
        ) from exc

    return {"message": "Template removed successfully", "fileId": fileId}


# ---------------------------------------------------------------------------
# GET /template
# ---------------------------------------------------------------------------


@router.get(
    "",
    summary="List registered templates",
)
def list_templates(request: Request) -> Any:
    """
    Return all templates currently present in the catalog directory.

    Only recognized document formats are listed; hidden files are skipped.
    """
    try:
        templates = _catalog(request).list()
    except StorageUnavailable:
        logger.exception("Failed to list templates")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Failed to list templates"},
        )

    return {
        "success": True,
        "data": [entry.model_dump(mode="json") for entry in templates],
        "count": len(templates),
    }
