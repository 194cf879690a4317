"""Persisted progress markers for archive and restore.

Archive and restore touch several remote resources in sequence. Before
the first step a marker is written for the project; each completed step
advances its stage, and the marker is removed once the operation
finishes. A marker still present at startup means the process stopped
part-way, and the synchronizer resumes the operation from the stored
project snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from newsdesk.storage.models import Project, utcnow

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    ARCHIVE = "archive"
    RESTORE = "restore"


class ArchiveStage(str, Enum):
    STARTED = "started"
    JSON_COPIED = "json_copied"
    JSON_REMOVED = "json_removed"
    SHEET_COPIED = "sheet_copied"
    SHEET_REMOVED = "sheet_removed"


class RestoreStage(str, Enum):
    STARTED = "started"
    JSON_COPIED = "json_copied"
    SHEET_COPIED = "sheet_copied"
    JSON_REWRITTEN = "json_rewritten"
    ARCHIVE_REMOVED = "archive_removed"


class PendingOperation(BaseModel):
    project_id: str
    operation: Operation
    stage: str
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    project: Project | None = None
    archived_sheet_id: str | None = None
    restored_sheet_id: str | None = None


class OperationJournal:
    """One marker file per project with an archive or restore in flight."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def _path(self, project_id: str) -> Path:
        return self._directory / f"{project_id}.json"

    def _write(self, entry: PendingOperation) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(entry.project_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(entry.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def _read(self, project_id: str) -> PendingOperation | None:
        try:
            raw = self._path(project_id).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return PendingOperation.model_validate_json(raw)

    def _read_all(self) -> list[PendingOperation]:
        if not self._directory.exists():
            return []
        entries: list[PendingOperation] = []
        for path in sorted(self._directory.glob("*.json")):
            try:
                entries.append(PendingOperation.model_validate_json(path.read_text(encoding="utf-8")))
            except ValidationError as exc:
                logger.warning("Ignoring unreadable journal entry %s: %s", path.name, exc)
        return entries

    def _remove(self, project_id: str) -> None:
        self._path(project_id).unlink(missing_ok=True)

    async def begin(
        self, operation: Operation, project_id: str, project: Project | None = None
    ) -> PendingOperation:
        existing = await asyncio.to_thread(self._read, project_id)
        if existing is not None and existing.operation == operation:
            # Resuming: keep the original start time and any recorded ids
            return existing
        entry = PendingOperation(
            project_id=project_id,
            operation=operation,
            stage="started",
            project=project,
        )
        await asyncio.to_thread(self._write, entry)
        return entry

    async def advance(
        self, entry: PendingOperation, stage: str, **changes: object
    ) -> PendingOperation:
        updated = entry.model_copy(update={"stage": stage, "updated_at": utcnow(), **changes})
        await asyncio.to_thread(self._write, updated)
        return updated

    async def finish(self, project_id: str) -> None:
        await asyncio.to_thread(self._remove, project_id)

    async def get(self, project_id: str) -> PendingOperation | None:
        return await asyncio.to_thread(self._read, project_id)

    async def pending(self) -> list[PendingOperation]:
        return await asyncio.to_thread(self._read_all)
