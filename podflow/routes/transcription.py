from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from podflow.application import get_workflow_service
from podflow.routes.errors import call_service
from podflow.routes.security import require_callback_secret, require_session
from podflow.routes.workflows import workflow_payload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transcription"])


@router.post("/transcribe", dependencies=[Depends(require_session)])
async def transcribe(payload: dict) -> dict:
    """Start transcription; answers with the transcript or the job id to wait on."""
    service = get_workflow_service()
    audio_url = payload.get("audioUrl")
    correlation_id = payload.get("correlationId")

    if not correlation_id:
        if not audio_url:
            raise HTTPException(status_code=400, detail="Missing audioUrl or correlationId")
        outcome = await call_service(
            service.transcribe_audio,
            str(audio_url),
            episode_title=payload.get("episodeTitle"),
            metadata=payload.get("metadata"),
        )
        if outcome.is_complete:
            return {"transcript": outcome.transcript}
        return {"jobId": outcome.job_id, "status": "processing"}

    workflow = await call_service(
        service.dispatch_transcription,
        str(correlation_id),
        audio_url=audio_url,
        episode_title=payload.get("episodeTitle"),
        metadata=payload.get("metadata"),
    )
    body = {"workflow": workflow_payload(workflow)}
    job = workflow.transcription
    if job is not None and job.status == "completed":
        body["transcript"] = workflow.transcript
    elif job is not None:
        body.update(jobId=job.job_id, status=job.status)
    return body


@router.get("/transcription-status", dependencies=[Depends(require_session)])
async def transcription_status(job_id: str | None = Query(default=None, alias="jobId")) -> dict:
    if not job_id:
        raise HTTPException(status_code=400, detail="Missing jobId parameter")
    service = get_workflow_service()
    status = await call_service(service.transcription_status, job_id)
    return status.model_dump(exclude_none=True)


@router.post("/transcribe-callback", dependencies=[Depends(require_callback_secret)])
async def transcribe_callback(payload: dict) -> dict:
    service = get_workflow_service()
    transcript = payload.get("transcript") or payload.get("transcript_text")
    applied = await call_service(
        service.receive_transcription_callback,
        job_id=payload.get("jobId") or payload.get("job_id"),
        correlation_id=payload.get("correlationId"),
        status=payload.get("status"),
        transcript=transcript,
        error=payload.get("error"),
    )
    return {"success": True, "applied": applied}
