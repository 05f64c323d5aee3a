from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from podflow.application import get_workflow_service
from podflow.routes.errors import call_service
from podflow.routes.security import require_callback_secret, require_session
from podflow.routes.workflows import workflow_payload

router = APIRouter(tags=["generation"])


@router.post("/generate", dependencies=[Depends(require_session)])
async def generate(payload: dict) -> dict:
    service = get_workflow_service()
    correlation_id = payload.get("correlationId")

    if not correlation_id:
        transcript_text = payload.get("transcriptText")
        if not transcript_text:
            raise HTTPException(status_code=400, detail="Missing transcriptText")
        content = await call_service(
            service.generate_content,
            str(transcript_text),
            episode_title=payload.get("episodeTitle"),
            metadata=payload.get("metadata"),
        )
        return content.model_dump()

    workflow = await call_service(
        service.dispatch_generation,
        str(correlation_id),
        episode_title=payload.get("episodeTitle"),
        metadata=payload.get("metadata"),
    )
    if workflow.generated_content is not None and workflow.generation and workflow.generation.status == "completed":
        return {**workflow.generated_content, "workflow": workflow_payload(workflow)}
    return {"status": "processing", "workflow": workflow_payload(workflow)}


@router.post("/generate-callback", dependencies=[Depends(require_callback_secret)])
async def generate_callback(payload: Any = Body(...)) -> dict:
    service = get_workflow_service()
    applied = await call_service(service.receive_generation_callback, payload)
    return {"success": True, "applied": applied}


@router.get("/content-status", dependencies=[Depends(require_session)])
async def content_status(workflow_id: str | None = Query(default=None, alias="workflowId")) -> dict:
    if not workflow_id:
        raise HTTPException(status_code=400, detail="Missing workflowId")
    service = get_workflow_service()
    return await call_service(service.content_status, workflow_id)
