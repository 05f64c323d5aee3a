"""Infrastructure layer for workflow record persistence."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from podflow.domain import Workflow, new_workflow_id, utcnow

logger = logging.getLogger(__name__)


class WorkflowRepository(Protocol):
    """Persistence contract for workflow records.

    Records are replaced whole on ``save``; there is deliberately no partial
    update so that every mutation goes through the stage transition rules.
    """

    def create(self) -> Workflow: ...

    def get(self, workflow_id: str) -> Workflow | None: ...

    def save(self, workflow: Workflow) -> None: ...

    def list(self) -> list[Workflow]: ...

    def delete(self, workflow_id: str) -> None: ...

    def reset(self) -> None: ...


class InMemoryWorkflowRepository:
    """Process-local repository for fast iteration and tests."""

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}
        self._lock = threading.Lock()

    def create(self) -> Workflow:
        with self._lock:
            workflow_id = new_workflow_id()
            while workflow_id in self._records:
                workflow_id = new_workflow_id()
            workflow = Workflow(id=workflow_id)
            self._records[workflow_id] = workflow.to_dict()
        return workflow

    def get(self, workflow_id: str) -> Workflow | None:
        with self._lock:
            record = self._records.get(workflow_id)
        return Workflow.from_dict(record) if record is not None else None

    def save(self, workflow: Workflow) -> None:
        workflow.updated_at = utcnow()
        with self._lock:
            self._records[workflow.id] = workflow.to_dict()

    def list(self) -> list[Workflow]:
        with self._lock:
            records = list(self._records.values())
        return [Workflow.from_dict(record) for record in records]

    def delete(self, workflow_id: str) -> None:
        with self._lock:
            self._records.pop(workflow_id, None)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()


class JsonFileWorkflowRepository:
    """Keeps every workflow in a single JSON document on disk."""

    FILENAME = "workflows.json"

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / self.FILENAME
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _read_all(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}
        text = self._path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not hold a workflow mapping")
        return data

    def _write_all(self, records: dict[str, dict]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=".workflows-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(records, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def create(self) -> Workflow:
        with self._lock:
            records = self._read_all()
            workflow_id = new_workflow_id()
            while workflow_id in records:
                workflow_id = new_workflow_id()
            workflow = Workflow(id=workflow_id)
            records[workflow_id] = workflow.to_dict()
            self._write_all(records)
        logger.debug("Created workflow %s in %s", workflow.id, self._path)
        return workflow

    def get(self, workflow_id: str) -> Workflow | None:
        with self._lock:
            record = self._read_all().get(workflow_id)
        return Workflow.from_dict(record) if record is not None else None

    def save(self, workflow: Workflow) -> None:
        workflow.updated_at = utcnow()
        with self._lock:
            records = self._read_all()
            records[workflow.id] = workflow.to_dict()
            self._write_all(records)

    def list(self) -> list[Workflow]:
        with self._lock:
            records = self._read_all()
        return [Workflow.from_dict(record) for record in records.values()]

    def delete(self, workflow_id: str) -> None:
        with self._lock:
            records = self._read_all()
            if records.pop(workflow_id, None) is not None:
                self._write_all(records)

    def reset(self) -> None:
        with self._lock:
            self._write_all({})
