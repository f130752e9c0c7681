"""
Document render endpoint.

Clients upload a template and a data payload; the gateway renders it and
delivers the result through exactly one primary channel:

    stored   STORAGE_PATH configured -> artifact persisted in the
             content-addressed store, 301 to /files/{identifier}
    direct   otherwise               -> 200 with the raw document bytes

An optional email directive additionally sends the document as an
attachment. Email failures are logged and never change the response.
"""

import logging
from typing import Annotated, Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import RedirectResponse, Response

from gateway.app.core.config import Settings
from gateway.app.errors import RenderFailed, StorageUnavailable
from gateway.app.services.pipeline import (
    RenderPipeline,
    build_render_request,
    spooled_upload,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Rendering"])


def header_safe_filename(name: str) -> str:
    """Strip characters that cannot appear in a response header value."""
    cleaned = (
        name.replace('"', "")
        .replace("\n", "")
        .replace("\r", "")
        .replace("/", "_")
        .replace("\\", "_")
    )
    return "".join(ch if ord(ch) < 256 else "_" for ch in cleaned) or "report"


# ---------------------------------------------------------------------------
# POST /render
# ---------------------------------------------------------------------------


@router.post(
    "/render",
    summary="Render a document from an uploaded template",
    response_class=Response,
    responses={
        200: {
            "content": {"application/octet-stream": {}},
            "description": "Rendered document (no artifact store configured)",
        },
        301: {"description": "Redirect to the stored artifact"},
        400: {"description": "No template uploaded"},
        500: {"description": "Rendering or storage failure"},
    },
)
def render_document(
    request: Request,
    background_tasks: BackgroundTasks,
    template: Annotated[Optional[UploadFile], File()] = None,
    fileId: Annotated[Optional[str], Form()] = None,
    data: Annotated[Optional[str], Form()] = None,
    options: Annotated[Optional[str], Form()] = None,
    formatters: Annotated[Optional[str], Form()] = None,
    email: Annotated[Optional[str], Form()] = None,
) -> Response:
    """
    Render the uploaded ``template`` with ``data``.

    ``data``, ``options`` and ``formatters`` are JSON-encoded form fields;
    malformed values degrade to empty ones instead of failing the request.
    ``fileId`` is accepted for form compatibility and ignored.
    """

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    if template is None or not template.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No template file provided",
        )

    settings: Settings = request.app.state.settings
    pipeline: RenderPipeline = request.app.state.pipeline

    # ------------------------------------------------------------------
    # Rendering pipeline
    # ------------------------------------------------------------------
    try:
        with spooled_upload(
            template.file,
            template.filename,
            settings.upload_dir,
        ) as template_path:
            render_request = build_render_request(
                template_path=template_path,
                original_filename=template.filename,
                data=data,
                options=options,
                formatters=formatters,
                email=email,
            )
            outcome = pipeline.handle(
                render_request,
                schedule=background_tasks.add_task,
            )

    except RenderFailed as exc:
        logger.exception("Rendering failed for template='%s'", template.filename)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc

    except StorageUnavailable as exc:
        logger.exception("Storage failure while rendering '%s'", template.filename)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc

    # ------------------------------------------------------------------
    # Delivery (mutually exclusive)
    # ------------------------------------------------------------------
    if outcome.stored:
        return RedirectResponse(
            url=f"/files/{outcome.artifact_id}",
            status_code=status.HTTP_301_MOVED_PERMANENTLY,
        )

    output_name = header_safe_filename(outcome.output_name)
    return Response(
        content=outcome.content,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename={output_name}",
            "Content-Transfer-Encoding": "binary",
            # Carbone-Report-Name is what existing Carbone clients read.
            "Carbone-Report-Name": output_name,
            "X-Report-Name": output_name,
        },
    )
