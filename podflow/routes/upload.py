from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from podflow.application import get_workflow_service
from podflow.routes.errors import call_service
from podflow.routes.security import require_session
from podflow.routes.workflows import workflow_payload

router = APIRouter(prefix="/upload", tags=["upload"], dependencies=[Depends(require_session)])


@router.post("")
async def request_upload(payload: dict) -> dict:
    """Hand out a presigned write URL plus the URL the file will be readable at."""
    filename = payload.get("filename")
    content_type = payload.get("contentType")
    if not filename or not content_type:
        raise HTTPException(status_code=400, detail="Missing required fields: filename and contentType")

    size = payload.get("size")
    if size is not None and not isinstance(size, int):
        raise HTTPException(status_code=400, detail="size must be an integer")

    service = get_workflow_service()
    destination = await call_service(service.request_upload, str(filename), str(content_type), size)
    body = {"writeUrl": destination.write_url, "readUrl": destination.read_url, "key": destination.key}
    if destination.warning:
        body["warning"] = destination.warning
    return body


@router.put("")
async def upload_body(
    request: Request,
    x_filename: str | None = Header(default=None),
    content_type: str | None = Header(default=None),
    workflow_id: str | None = Query(default=None, alias="workflowId"),
) -> dict:
    """Store the raw request body; with ``workflowId`` the upload is also recorded on the workflow."""
    if not x_filename or not content_type:
        raise HTTPException(status_code=400, detail="X-Filename and Content-Type headers are required")

    data = await request.body()
    service = get_workflow_service()
    stored = await call_service(service.store_upload, x_filename, data, content_type)
    body: dict = {"readUrl": stored.read_url, "key": stored.key}
    if stored.warning:
        body["warning"] = stored.warning
    if workflow_id:
        workflow = await call_service(
            service.record_upload,
            workflow_id,
            url=stored.read_url,
            filename=x_filename,
            size=len(data),
        )
        body["workflow"] = workflow_payload(workflow)
    return body
