from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from podflow.application import get_workflow_service
from podflow.core.stages import derive_stage
from podflow.domain import Workflow
from podflow.routes.errors import call_service
from podflow.routes.security import require_session

router = APIRouter(prefix="/workflows", tags=["workflows"], dependencies=[Depends(require_session)])

WATCH_KINDS = {"transcription", "generation"}


def workflow_payload(workflow: Workflow) -> dict[str, Any]:
    data = workflow.to_dict()
    data["stage"] = derive_stage(workflow)
    return data


@router.get("")
async def list_workflows() -> dict:
    service = get_workflow_service()
    items = await call_service(service.list_workflows)
    return {"items": [workflow_payload(item) for item in items]}


@router.post("", status_code=201)
async def create_workflow() -> dict:
    service = get_workflow_service()
    workflow = await call_service(service.create_workflow)
    return workflow_payload(workflow)


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: str) -> dict:
    service = get_workflow_service()
    workflow = await call_service(service.require_workflow, workflow_id)
    return workflow_payload(workflow)


@router.delete("/{workflow_id}")
async def delete_workflow(workflow_id: str, request: Request) -> dict:
    service = get_workflow_service()
    await call_service(service.delete_workflow, workflow_id)
    request.app.state.pollers.cancel_workflow(workflow_id)
    return {"deleted": workflow_id}


@router.post("/{workflow_id}/file")
async def record_file(workflow_id: str, payload: dict) -> dict:
    url = payload.get("url")
    filename = payload.get("filename")
    if not url or not filename:
        raise HTTPException(status_code=400, detail="url and filename are required")
    service = get_workflow_service()
    workflow = await call_service(
        service.record_upload,
        workflow_id,
        url=str(url),
        filename=str(filename),
        size=int(payload.get("size") or 0),
    )
    return workflow_payload(workflow)


@router.put("/{workflow_id}/transcript")
async def edit_transcript(workflow_id: str, payload: dict) -> dict:
    transcript = payload.get("transcript")
    if not isinstance(transcript, str):
        raise HTTPException(status_code=400, detail="transcript is required")
    service = get_workflow_service()
    workflow = await call_service(service.edit_transcript, workflow_id, transcript)
    return workflow_payload(workflow)


@router.post("/{workflow_id}/transcript/approve")
async def approve_transcript(workflow_id: str) -> dict:
    service = get_workflow_service()
    workflow = await call_service(service.approve_transcript, workflow_id)
    return workflow_payload(workflow)


@router.put("/{workflow_id}/selection")
async def select_content(workflow_id: str, payload: dict) -> dict:
    service = get_workflow_service()
    workflow = await call_service(
        service.select_content,
        workflow_id,
        seo_title=payload.get("seoTitle"),
        blog_post_markdown=payload.get("blogPostMarkdown"),
        show_notes_markdown=payload.get("showNotesMarkdown"),
    )
    return workflow_payload(workflow)


@router.post("/{workflow_id}/watch", status_code=202)
async def watch_workflow(
    workflow_id: str,
    payload: dict,
    request: Request,
    claims: dict = Depends(require_session),
) -> dict:
    kind = payload.get("kind")
    if kind not in WATCH_KINDS:
        raise HTTPException(status_code=400, detail="kind must be transcription or generation")
    service = get_workflow_service()
    await call_service(service.require_workflow, workflow_id)
    poller = request.app.state.pollers.start(claims["sid"], workflow_id, kind)
    return {"workflowId": workflow_id, "kind": kind, "attempts": poller.attempts}


@router.delete("/{workflow_id}/watch")
async def unwatch_workflow(
    workflow_id: str,
    request: Request,
    claims: dict = Depends(require_session),
) -> dict:
    cancelled = request.app.state.pollers.cancel(claims["sid"], workflow_id)
    return {"workflowId": workflow_id, "cancelled": cancelled}
