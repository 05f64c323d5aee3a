"""Application service layer for workflow orchestration.

Every stage action follows the same shape: read the record, check the stage
rules, talk to the external collaborator without holding the lock, then
re-read the record and apply the result only if it still makes sense. The
re-read is what lets a callback and a poll race on the same job: whichever
commits a terminal status first wins and the other becomes a no-op.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Literal, TypeVar

from pydantic import ValidationError as PydanticValidationError

from podflow.core import stages
from podflow.core.errors import (
    ConfigurationError,
    TransitionRejected,
    UpstreamError,
    ValidationError,
    WorkflowNotFound,
)
from podflow.core.schema import (
    GeneratedContent,
    PublishOutcome,
    PublishRequest,
    TranscriptionOutcome,
    TranscriptionStatus,
)
from podflow.core.settings import Settings
from podflow.domain import TranscriptionJob, UploadedFile, Workflow, new_token, utcnow
from podflow.infrastructure import (
    AutomationClient,
    InMemoryJobStore,
    InMemoryWorkflowRepository,
    JobStore,
    JsonFileWorkflowRepository,
    ObjectStorage,
    RedisJobStore,
    StoredObject,
    UploadDestination,
    WorkflowRepository,
)
from podflow.infrastructure.automation import (
    has_generation_sections,
    normalise_generated_content,
)
from podflow.infrastructure.storage import validate_media

logger = logging.getLogger(__name__)

T = TypeVar("T")
JobKind = Literal["transcription", "generation"]
PollOutcome = Literal["pending", "done"]

CALLBACK_STATUSES = frozenset({"processing", "completed", "failed"})


def _transcription_key(job_id: str) -> str:
    return f"transcription:{job_id}"


def _content_key(workflow_id: str) -> str:
    return f"content:{workflow_id}"


class WorkflowService:
    """Coordinates workflow use cases and the asynchronous job bridge."""

    def __init__(
        self,
        repository: WorkflowRepository,
        jobs: JobStore,
        automation: AutomationClient,
        storage: ObjectStorage,
    ) -> None:
        self._repository = repository
        self._jobs = jobs
        self._automation = automation
        self._storage = storage
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # workflow lifecycle
    # ------------------------------------------------------------------
    def create_workflow(self) -> Workflow:
        workflow = self._repository.create()
        logger.info("Created workflow %s", workflow.id)
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self._repository.get(workflow_id)

    def require_workflow(self, workflow_id: str) -> Workflow:
        workflow = self._repository.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        return workflow

    def list_workflows(self) -> list[Workflow]:
        return self._repository.list()

    def delete_workflow(self, workflow_id: str) -> None:
        with self._lock:
            self._repository.delete(workflow_id)
            self._jobs.delete(_content_key(workflow_id))
        logger.info("Deleted workflow %s", workflow_id)

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _mutate(self, workflow_id: str, action: Callable[[Workflow], T]) -> tuple[Workflow, T]:
        with self._lock:
            workflow = self.require_workflow(workflow_id)
            try:
                result = action(workflow)
            except TransitionRejected as exc:
                self._record_error(workflow_id, f"Action rejected: {exc.reason}")
                raise
            self._repository.save(workflow)
        return workflow, result

    def _record_error(self, workflow_id: str, message: str, details: dict[str, Any] | None = None) -> None:
        with self._lock:
            workflow = self._repository.get(workflow_id)
            if workflow is None:
                return
            stages.add_activity(workflow, "error", message, details)
            self._repository.save(workflow)

    def _load_transcription_job(self, job_id: str) -> TranscriptionJob | None:
        data = self._jobs.get(_transcription_key(job_id))
        return TranscriptionJob.from_dict(data) if data else None

    def _store_transcription_job(self, job: TranscriptionJob) -> None:
        """Keyed overwrite of the job slot; a terminal slot is never downgraded to processing."""

        existing = self._load_transcription_job(job.job_id)
        if existing is not None and existing.is_terminal and not job.is_terminal:
            return
        if existing is not None and job.workflow_id is None:
            job.workflow_id = existing.workflow_id
        job.updated_at = utcnow()
        self._jobs.put(_transcription_key(job.job_id), job.to_dict())

    # ------------------------------------------------------------------
    # upload
    # ------------------------------------------------------------------
    def request_upload(self, filename: str, content_type: str, size: int | None = None) -> UploadDestination:
        if not filename or not content_type:
            raise ValidationError("Missing required fields: filename and contentType")
        validate_media(filename, content_type, size)
        return self._storage.request_upload_destination(filename, content_type)

    def store_upload(self, filename: str, data: bytes, content_type: str) -> StoredObject:
        if not filename or not content_type:
            raise ValidationError("Missing required fields: filename and contentType")
        validate_media(filename, content_type, len(data))
        return self._storage.put_object(filename, data, content_type)

    def record_upload(self, workflow_id: str, *, url: str, filename: str, size: int) -> Workflow:
        if not url or not filename:
            raise ValidationError("Missing required fields: url and filename")
        uploaded = UploadedFile(url=url, filename=filename, size=int(size or 0))

        def action(workflow: Workflow) -> None:
            stages.apply_upload(workflow, uploaded)
            stages.add_activity(workflow, "upload", f"File uploaded: {filename}", {"size": uploaded.size})

        workflow, _ = self._mutate(workflow_id, action)
        logger.info("Workflow %s received upload %s (%d bytes)", workflow_id, filename, uploaded.size)
        return workflow

    def upload_file(self, workflow_id: str, filename: str, data: bytes, content_type: str) -> Workflow:
        """Obtain a write destination, transfer the bytes and record the readable location."""

        self.require_workflow(workflow_id)
        try:
            destination = self.request_upload(filename, content_type, len(data))
            self._storage.transfer_bytes(destination.write_url, data, content_type)
        except (UpstreamError, ConfigurationError, ValidationError) as exc:
            self._record_error(workflow_id, f"Upload failed: {exc}")
            raise
        return self.record_upload(workflow_id, url=destination.read_url, filename=filename, size=len(data))

    # ------------------------------------------------------------------
    # transcription
    # ------------------------------------------------------------------
    def dispatch_transcription(
        self,
        workflow_id: str,
        *,
        audio_url: str | None = None,
        episode_title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Workflow:
        """Send the uploaded media to the transcription webhook.

        The pending marker is saved under a local job id before the request
        goes out, so a result pushed by ``correlationId`` while the request is
        still in flight has a job to land on. The upstream id, when the
        service returns one, replaces the local id afterwards.
        """

        local_id = f"job-{new_token(12)}"
        with self._lock:
            workflow = self.require_workflow(workflow_id)
            previous = workflow.transcription
            uploaded = workflow.uploaded_file
            try:
                if uploaded is None:
                    raise TransitionRejected("a file must be uploaded before transcription")
                stages.begin_transcription(workflow, job_id=local_id)
            except TransitionRejected as exc:
                self._record_error(workflow_id, f"Transcription rejected: {exc.reason}")
                raise
            stages.add_activity(workflow, "transcribe", f"Transcribing {uploaded.filename}...", {"job_id": local_id})
            self._repository.save(workflow)
            self._store_transcription_job(TranscriptionJob(job_id=local_id, workflow_id=workflow_id))

        audio_url = audio_url or uploaded.url
        episode_title = episode_title or workflow.episode_title or uploaded.filename
        metadata = metadata or {"filename": uploaded.filename, "size": uploaded.size}

        logger.info("Dispatching transcription %s for workflow %s", local_id, workflow_id)
        try:
            outcome = self._automation.transcribe(
                audio_url,
                episode_title=episode_title,
                metadata=metadata,
                correlation_id=workflow_id,
            )
        except (UpstreamError, ConfigurationError) as exc:
            with self._lock:
                self._jobs.delete(_transcription_key(local_id))
                current = self._repository.get(workflow_id)
                if current is not None and current.transcription is not None and current.transcription.job_id == local_id:
                    if not current.transcription.is_terminal:
                        current.transcription = previous
                    stages.add_activity(current, "error", f"Transcription error: {exc}")
                    self._repository.save(current)
            raise

        with self._lock:
            workflow = self.require_workflow(workflow_id)
            job = workflow.transcription
            if job is None or job.job_id != local_id:
                logger.info("Workflow %s moved on while transcription %s was dispatched", workflow_id, local_id)
                return workflow

            job_id = outcome.job_id or local_id
            if job_id != local_id:
                self._adopt_upstream_job(local_id, job_id, workflow_id)
                job.job_id = job_id

            if job.is_terminal:
                logger.info("Workflow %s transcription %s settled before the dispatch returned", workflow_id, job_id)
            elif outcome.is_complete:
                if outcome.episode_title:
                    workflow.episode_title = outcome.episode_title
                self._apply_transcription_result(workflow, "completed", outcome.transcript, None, source="response")
                self._store_transcription_job(
                    TranscriptionJob(job_id=job_id, status="completed", transcript=outcome.transcript, workflow_id=workflow_id)
                )
            else:
                stages.mark_processing(job)
                early = self._load_transcription_job(job_id)
                if early is not None and early.is_terminal:
                    self._apply_transcription_result(
                        workflow, early.status, early.transcript, early.error, source="callback"
                    )
                logger.info("Workflow %s waiting on transcription job %s", workflow_id, job_id)
            self._repository.save(workflow)
        return workflow

    def _adopt_upstream_job(self, local_id: str, job_id: str, workflow_id: str) -> None:
        """Re-key the local job slot under the id the service assigned. Caller holds the lock."""

        local = self._load_transcription_job(local_id)
        self._jobs.delete(_transcription_key(local_id))
        if local is None:
            local = TranscriptionJob(job_id=job_id, workflow_id=workflow_id)
        local.job_id = job_id
        local.workflow_id = workflow_id
        self._store_transcription_job(local)

    def _apply_transcription_result(
        self,
        workflow: Workflow,
        status: str,
        transcript: str | None,
        error: str | None,
        *,
        source: str,
    ) -> None:
        job = workflow.transcription
        if status == "completed" and transcript:
            stages.record_transcript(workflow, transcript)
            stages.add_activity(workflow, "transcribe", "Transcript received", {"length": len(transcript), "source": source})
            logger.info("Workflow %s transcript received via %s (%d chars)", workflow.id, source, len(transcript))
        elif status == "failed" and job is not None:
            message = error or "transcription failed"
            stages.fail_job(job, message)
            stages.add_activity(workflow, "error", f"Transcription failed: {message}", {"source": source})
            logger.warning("Workflow %s transcription failed via %s: %s", workflow.id, source, message)

    def _commit_transcription(
        self,
        workflow_id: str | None,
        job_id: str,
        status: str,
        transcript: str | None,
        error: str | None,
        *,
        source: str,
    ) -> bool:
        """Apply a terminal status if the workflow still waits on ``job_id``. Caller holds the lock."""

        if workflow_id is None or status not in {"completed", "failed"}:
            return False
        workflow = self._repository.get(workflow_id)
        if workflow is None or workflow.transcription is None:
            return False
        if workflow.transcription.job_id != job_id or workflow.transcription.is_terminal:
            logger.debug("Ignoring %s result for job %s: workflow %s already settled", source, job_id, workflow_id)
            return False
        self._apply_transcription_result(workflow, status, transcript, error, source=source)
        self._repository.save(workflow)
        return True

    def receive_transcription_callback(
        self,
        *,
        job_id: str | None,
        correlation_id: str | None,
        status: str | None,
        transcript: str | None,
        error: str | None = None,
    ) -> bool:
        """Record a pushed result. Returns ``True`` when it changed the workflow."""

        if not job_id and not correlation_id:
            raise ValidationError("Missing jobId or correlationId")
        if status is None:
            status = "completed" if transcript else "processing"
        if status not in CALLBACK_STATUSES:
            raise ValidationError(f"Unknown status {status!r}")
        if status == "completed" and not (transcript or "").strip():
            raise ValidationError("Completed callback must carry a transcript")

        with self._lock:
            workflow_id = correlation_id
            if not job_id:
                workflow = self._repository.get(correlation_id or "")
                if workflow is None or workflow.transcription is None:
                    raise ValidationError("No transcription is known for this correlationId")
                job_id = workflow.transcription.job_id

            self._store_transcription_job(
                TranscriptionJob(
                    job_id=job_id,
                    status=status,  # type: ignore[arg-type]
                    transcript=transcript if status == "completed" else None,
                    error=error if status == "failed" else None,
                    workflow_id=workflow_id,
                )
            )
            if workflow_id is None:
                stored = self._load_transcription_job(job_id)
                workflow_id = stored.workflow_id if stored else None

            applied = self._commit_transcription(workflow_id, job_id, status, transcript, error, source="callback")

        logger.info("Transcription callback for job %s (%s), applied=%s", job_id, status, applied)
        return applied

    def transcription_status(self, job_id: str) -> TranscriptionStatus:
        if not job_id:
            raise ValidationError("Missing jobId parameter")
        job = self._load_transcription_job(job_id)
        if job is None:
            return TranscriptionStatus(status="processing")
        return TranscriptionStatus(status=job.status, transcript=job.transcript, error=job.error)

    def transcribe_audio(
        self,
        audio_url: str,
        *,
        episode_title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TranscriptionOutcome:
        """Stateless transcription; a deferred job is still registered so its status can be queried."""

        if not audio_url:
            raise ValidationError("Missing audioUrl")
        outcome = self._automation.transcribe(audio_url, episode_title=episode_title, metadata=metadata)
        if not outcome.is_complete:
            outcome.job_id = outcome.job_id or f"job-{new_token(12)}"
            with self._lock:
                self._store_transcription_job(TranscriptionJob(job_id=outcome.job_id))
        return outcome

    def poll_transcription(self, workflow_id: str) -> PollOutcome:
        """One poll tick against freshly read state."""

        workflow = self._repository.get(workflow_id)
        if workflow is None or workflow.transcription is None or workflow.transcription.is_terminal:
            return "done"
        job_id = workflow.transcription.job_id

        observed: TranscriptionStatus | None = None
        stored = self._load_transcription_job(job_id)
        if stored is not None and stored.is_terminal:
            observed = TranscriptionStatus(status=stored.status, transcript=stored.transcript, error=stored.error)
        elif self._automation.supports_status_queries:
            try:
                observed = self._automation.transcription_status(job_id)
            except UpstreamError as exc:
                logger.warning("Status query for job %s failed, will retry: %s", job_id, exc)
                return "pending"

        if observed is None or observed.status == "processing":
            return "pending"

        with self._lock:
            self._store_transcription_job(
                TranscriptionJob(
                    job_id=job_id,
                    status=observed.status,
                    transcript=observed.transcript,
                    error=observed.error,
                    workflow_id=workflow_id,
                )
            )
            self._commit_transcription(
                workflow_id, job_id, observed.status, observed.transcript, observed.error, source="poll"
            )
        return "done"

    # ------------------------------------------------------------------
    # transcript review
    # ------------------------------------------------------------------
    def edit_transcript(self, workflow_id: str, transcript: str) -> Workflow:
        workflow, _ = self._mutate(workflow_id, lambda wf: stages.edit_transcript(wf, transcript))
        return workflow

    def approve_transcript(self, workflow_id: str) -> Workflow:
        def action(workflow: Workflow) -> None:
            stages.approve_transcript(workflow)
            stages.add_activity(workflow, "transcribe", "Transcript approved")

        workflow, _ = self._mutate(workflow_id, action)
        return workflow

    # ------------------------------------------------------------------
    # content generation
    # ------------------------------------------------------------------
    def generate_content(
        self,
        transcript_text: str,
        *,
        episode_title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GeneratedContent:
        """Stateless generation used when the caller has no workflow to correlate with."""

        if not transcript_text or not transcript_text.strip():
            raise ValidationError("Missing transcript_text")
        content = self._automation.generate(
            transcript_text,
            episode_title=episode_title or "Untitled Episode",
            metadata=metadata,
        )
        if content is None:
            raise UpstreamError("generation", "service deferred a request that carried no correlation id")
        return content

    def dispatch_generation(
        self,
        workflow_id: str,
        *,
        episode_title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Workflow:
        job_id = f"gen-{new_token(12)}"
        with self._lock:
            workflow = self.require_workflow(workflow_id)
            previous = workflow.generation
            try:
                stages.begin_generation(workflow, job_id=job_id)
            except TransitionRejected as exc:
                self._record_error(workflow_id, f"Content generation rejected: {exc.reason}")
                raise
            stages.add_activity(workflow, "generate", "Generating content...", {"job_id": job_id})
            self._repository.save(workflow)
            self._jobs.delete(_content_key(workflow_id))

        transcript = workflow.transcript
        title = episode_title or workflow.episode_title or "Untitled Episode"
        metadata = metadata or {
            "transcript_length": len(transcript),
            "word_count": len(transcript.split()),
        }

        logger.info("Dispatching content generation %s for workflow %s", job_id, workflow_id)
        try:
            content = self._automation.generate(
                transcript,
                episode_title=title,
                metadata=metadata,
                correlation_id=workflow_id,
            )
        except (UpstreamError, ConfigurationError) as exc:
            with self._lock:
                current = self._repository.get(workflow_id)
                if current is not None and current.generation is not None and current.generation.job_id == job_id:
                    if not current.generation.is_terminal:
                        current.generation = previous
                    stages.add_activity(current, "error", f"Content generation failed: {exc}")
                    self._repository.save(current)
            raise

        with self._lock:
            workflow = self.require_workflow(workflow_id)
            job = workflow.generation
            if job is None or job.job_id != job_id:
                logger.info("Workflow %s moved on while generation %s was dispatched", workflow_id, job_id)
                return workflow
            if job.is_terminal:
                logger.info("Workflow %s generation %s settled before the dispatch returned", workflow_id, job_id)
            elif content is not None:
                self._apply_generation_result(workflow, content, None, source="response")
            else:
                stages.mark_processing(job)
                logger.info("Workflow %s waiting on content generation", workflow_id)
            self._repository.save(workflow)
        return workflow

    def _apply_generation_result(
        self,
        workflow: Workflow,
        content: GeneratedContent | None,
        error: str | None,
        *,
        source: str,
    ) -> None:
        if content is not None:
            stages.record_generated_content(workflow, content.model_dump())
            stages.add_activity(workflow, "generate", "Content generated", {"titles": len(content.titles), "source": source})
            logger.info("Workflow %s content generated via %s", workflow.id, source)
        elif workflow.generation is not None:
            message = error or "content generation failed"
            stages.fail_job(workflow.generation, message)
            stages.add_activity(workflow, "error", f"Content generation failed: {message}", {"source": source})
            logger.warning("Workflow %s content generation failed via %s: %s", workflow.id, source, message)

    def _apply_stored_generation(self, workflow: Workflow, stored: dict[str, Any], *, source: str) -> None:
        if stored.get("status") == "completed":
            content = GeneratedContent.model_validate(stored["content"])
            self._apply_generation_result(workflow, content, None, source=source)
        else:
            self._apply_generation_result(workflow, None, stored.get("error"), source=source)

    def _commit_generation(self, workflow_id: str, stored: dict[str, Any], *, source: str) -> bool:
        workflow = self._repository.get(workflow_id)
        if workflow is None or workflow.generation is None or workflow.generation.is_terminal:
            logger.debug("Ignoring %s generation result for workflow %s: already settled", source, workflow_id)
            return False
        self._apply_stored_generation(workflow, stored, source=source)
        self._repository.save(workflow)
        return True

    def receive_generation_callback(self, payload: Any) -> bool:
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, dict):
            raise ValidationError("Invalid response structure")
        correlation_id = payload.get("correlationId") or payload.get("workflowId")
        if not correlation_id:
            raise ValidationError("Missing correlationId")

        if payload.get("success") is False:
            stored: dict[str, Any] = {
                "workflow_id": correlation_id,
                "status": "failed",
                "error": str(payload.get("error") or "content generation failed"),
            }
        else:
            if not payload.get("success") or not has_generation_sections(payload):
                raise ValidationError("Invalid response structure: success, titles, blog_post and show_notes are required")
            try:
                content = normalise_generated_content(payload)
            except UpstreamError as exc:
                raise ValidationError(f"Invalid response structure: {exc.message}") from exc
            stored = {"workflow_id": correlation_id, "status": "completed", "content": content.model_dump()}

        with self._lock:
            self._jobs.put(_content_key(correlation_id), stored)
            applied = self._commit_generation(correlation_id, stored, source="callback")

        logger.info("Generation callback for workflow %s (%s), applied=%s", correlation_id, stored["status"], applied)
        return applied

    def poll_generation(self, workflow_id: str) -> PollOutcome:
        workflow = self._repository.get(workflow_id)
        if workflow is None or workflow.generation is None or workflow.generation.is_terminal:
            return "done"
        stored = self._jobs.get(_content_key(workflow_id))
        if stored is None:
            return "pending"
        with self._lock:
            self._commit_generation(workflow_id, stored, source="poll")
        return "done"

    def content_status(self, workflow_id: str) -> dict[str, Any]:
        if not workflow_id:
            raise ValidationError("Missing workflowId")
        workflow = self._repository.get(workflow_id)
        if workflow is not None and workflow.generation is not None:
            job = workflow.generation
            if job.status == "completed" and workflow.generated_content is not None:
                return {"status": "completed", "data": workflow.generated_content}
            if job.status in {"failed", "abandoned"}:
                return {"status": job.status, "error": job.error}
        stored = self._jobs.get(_content_key(workflow_id))
        if stored is not None:
            if stored.get("status") == "completed":
                return {"status": "completed", "data": stored["content"]}
            return {"status": "failed", "error": stored.get("error")}
        return {"status": "processing"}

    def select_content(
        self,
        workflow_id: str,
        *,
        seo_title: str | None = None,
        blog_post_markdown: str | None = None,
        show_notes_markdown: str | None = None,
    ) -> Workflow:
        workflow, _ = self._mutate(
            workflow_id,
            lambda wf: stages.select_content(
                wf,
                seo_title=seo_title,
                blog_post_markdown=blog_post_markdown,
                show_notes_markdown=show_notes_markdown,
            ),
        )
        return workflow

    # ------------------------------------------------------------------
    # abandonment
    # ------------------------------------------------------------------
    def abandon(self, workflow_id: str, kind: JobKind) -> bool:
        """Mark the job abandoned if, on a fresh read, it is still waiting."""

        with self._lock:
            workflow = self._repository.get(workflow_id)
            if workflow is None:
                return False
            job = workflow.transcription if kind == "transcription" else workflow.generation
            if job is None or job.is_terminal:
                return False
            stages.abandon_job(job)
            label = "Transcription" if kind == "transcription" else "Content generation"
            stages.add_activity(workflow, "error", f"{label} timed out; try again", {"job_id": job.job_id})
            self._repository.save(workflow)
        logger.warning("Workflow %s %s abandoned after poll budget ran out", workflow_id, kind)
        return True

    def poll(self, workflow_id: str, kind: JobKind) -> PollOutcome:
        if kind == "transcription":
            return self.poll_transcription(workflow_id)
        return self.poll_generation(workflow_id)

    # ------------------------------------------------------------------
    # publishing
    # ------------------------------------------------------------------
    @staticmethod
    def _validate_publish(request: PublishRequest) -> None:
        if not request.title.strip() or not request.body_markdown.strip():
            raise ValidationError("Missing required fields: title and bodyMarkdown")

    def publish_content(self, request: PublishRequest) -> PublishOutcome:
        self._validate_publish(request)
        return self._automation.publish(request)

    def _publish_defaults(self, workflow: Workflow, overrides: dict[str, Any]) -> PublishRequest:
        generated = workflow.generated_content or {}
        selected = workflow.selected_content
        titles = generated.get("titles") or []
        blog_post = generated.get("blog_post") or {}

        title = overrides.get("title") or (selected.seo_title if selected else None) or (titles[0] if titles else "")
        body = (
            overrides.get("body_markdown")
            or (selected.blog_post_markdown if selected else None)
            or blog_post.get("body")
            or ""
        )
        options = {key: value for key, value in overrides.items() if value is not None}
        options.update(title=title, body_markdown=body)
        options.setdefault("primary_keyword", blog_post.get("primary_keyword") or None)
        options.setdefault("secondary_keywords", blog_post.get("secondary_keywords") or [])
        try:
            return PublishRequest(**options)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid publish fields: {exc.error_count()} error(s)") from exc

    def publish_workflow(self, workflow_id: str, overrides: dict[str, Any] | None = None) -> tuple[Workflow, PublishOutcome]:
        with self._lock:
            workflow = self.require_workflow(workflow_id)
            request = self._publish_defaults(workflow, overrides or {})
            self._validate_publish(request)
            try:
                stages.begin_publish(workflow)
            except TransitionRejected as exc:
                self._record_error(workflow_id, f"Publish rejected: {exc.reason}")
                raise
            stages.add_activity(workflow, "publish", "Publishing content...", {"title": request.title})
            self._repository.save(workflow)

        try:
            outcome = self._automation.publish(request)
        except (UpstreamError, ConfigurationError) as exc:
            reason = exc.message if isinstance(exc, UpstreamError) else str(exc)
            with self._lock:
                workflow = self.require_workflow(workflow_id)
                stages.record_publish_failure(workflow, reason)
                stages.add_activity(workflow, "error", f"Publish failed: {reason}")
                self._repository.save(workflow)
            logger.warning("Workflow %s publish failed: %s", workflow_id, reason)
            raise

        with self._lock:
            workflow = self.require_workflow(workflow_id)
            stages.record_publish_success(workflow, outcome.post_url, outcome.post_id)
            stages.add_activity(workflow, "publish", "Published successfully!", {"post_url": outcome.post_url})
            self._repository.save(workflow)
        logger.info("Workflow %s published as %s", workflow_id, outcome.post_id or outcome.post_url)
        return workflow, outcome

    def close(self) -> None:
        self._automation.close()
        self._storage.close()

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._repository.reset()
        self._jobs.reset()


def build_workflow_service(settings: Settings) -> WorkflowService:
    """Wire backends from settings."""

    if settings.workflow_store == "file":
        if not settings.data_root:
            raise ConfigurationError("PODFLOW_DATA_ROOT must be set when PODFLOW_WORKFLOW_STORE=file")
        repository: WorkflowRepository = JsonFileWorkflowRepository(settings.data_root)
    else:
        repository = InMemoryWorkflowRepository()

    if settings.job_store == "redis":
        jobs: JobStore = RedisJobStore.from_url(settings.redis_url, ttl_seconds=settings.job_ttl_seconds)
    else:
        jobs = InMemoryJobStore(ttl_seconds=settings.job_ttl_seconds)

    return WorkflowService(
        repository,
        jobs,
        AutomationClient(settings.automation),
        ObjectStorage(settings.storage),
    )


_service: WorkflowService | None = None


def configure_workflow_service(service: WorkflowService) -> None:
    """Install the service used by the HTTP routes."""

    global _service
    _service = service


def get_workflow_service() -> WorkflowService:
    """Return the process-wide workflow service, building a default one on first use."""

    global _service
    if _service is None:
        _service = build_workflow_service(Settings.from_env())
    return _service


def reset_workflow_state() -> None:
    """Reset the stores (used in tests)."""

    if _service is not None:
        _service.reset()
