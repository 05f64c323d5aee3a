from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError as PydanticValidationError

from podflow.application import get_workflow_service
from podflow.core.schema import PublishRequest
from podflow.routes.errors import call_service
from podflow.routes.security import require_session
from podflow.routes.workflows import workflow_payload

router = APIRouter(tags=["publish"])

# HTTP field -> PublishRequest field
FIELD_MAP = {
    "title": "title",
    "bodyMarkdown": "body_markdown",
    "primaryKeyword": "primary_keyword",
    "secondaryKeywords": "secondary_keywords",
    "category": "category",
    "tags": "tags",
    "publishImmediately": "publish_immediately",
}


@router.post("/publish", dependencies=[Depends(require_session)])
async def publish(payload: dict) -> dict:
    options = {field: payload[key] for key, field in FIELD_MAP.items() if payload.get(key) is not None}
    service = get_workflow_service()

    workflow_id = payload.get("workflowId")
    if workflow_id:
        workflow, outcome = await call_service(service.publish_workflow, str(workflow_id), options)
        return {
            "success": outcome.success,
            "postUrl": outcome.post_url,
            "postId": outcome.post_id,
            "workflow": workflow_payload(workflow),
        }

    try:
        request = PublishRequest(**options)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid publish fields: {exc.error_count()} error(s)") from exc
    outcome = await call_service(service.publish_content, request)
    return {"success": outcome.success, "postUrl": outcome.post_url, "postId": outcome.post_id}
