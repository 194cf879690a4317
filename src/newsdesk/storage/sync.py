"""Unified project API over the remote store (authoritative) and the local store.

Each operation follows a named consistency policy:

``PREFER_REMOTE_FALLBACK_LOCAL``
    Try the remote store; if it fails, serve or write the local copy.
    Used by ``save`` and ``get``.

``REMOTE_ONLY``
    Only the remote store answers. A failure yields an empty result
    rather than possibly stale local data. Used by ``list``.

Archive and restore never fall back: their failures propagate, and the
operation journal records how far they got so ``initialize`` can resume
them.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

import httpx

from newsdesk.errors import (
    ArchivedProjectNotFoundError,
    ConfigurationError,
    GoogleApiError,
    MissingSheetError,
    NewsdeskError,
    ProjectNotFoundError,
    SchemaError,
)
from newsdesk.storage.journal import (
    Operation,
    OperationJournal,
    PendingOperation,
    RestoreStage,
)
from newsdesk.storage.local import LocalProjectStore
from newsdesk.storage.models import Project
from newsdesk.storage.remote import RemoteProjectStore

logger = logging.getLogger(__name__)

# Failures of the remote store that trigger a fallback. ConfigurationError
# always propagates.
REMOTE_FAILURES = (GoogleApiError, httpx.HTTPError, SchemaError)


class ConsistencyMode(str, Enum):
    PREFER_REMOTE_FALLBACK_LOCAL = "prefer_remote_fallback_local"
    REMOTE_ONLY = "remote_only"


@dataclass
class SaveResult:
    project: Project
    # False when the remote write failed and only the local copy was written
    durable: bool


class StorageSynchronizer:
    """Keeps the local and remote project stores consistent."""

    SAVE_MODE = ConsistencyMode.PREFER_REMOTE_FALLBACK_LOCAL
    GET_MODE = ConsistencyMode.PREFER_REMOTE_FALLBACK_LOCAL
    LIST_MODE = ConsistencyMode.REMOTE_ONLY

    def __init__(
        self,
        remote: RemoteProjectStore,
        local: LocalProjectStore,
        journal: OperationJournal,
    ) -> None:
        self._remote = remote
        self._local = local
        self._journal = journal
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @property
    def remote(self) -> RemoteProjectStore:
        return self._remote

    @property
    def local(self) -> LocalProjectStore:
        return self._local

    @asynccontextmanager
    async def _project_lock(self, project_id: str) -> AsyncIterator[None]:
        """Serialize operations on one project id.

        The lock is dropped once no task holds or waits for it.
        """
        lock = self._locks.setdefault(project_id, asyncio.Lock())
        self._lock_users[project_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[project_id] -= 1
            if not self._lock_users[project_id]:
                del self._lock_users[project_id]
                del self._locks[project_id]

    async def _mirror(self, project: Project) -> None:
        try:
            await self._local.save(project)
        except OSError as exc:
            logger.warning("Could not mirror project %s locally: %s", project.id, exc)

    # -- reads and writes ------------------------------------------------------

    async def save(self, project: Project) -> SaveResult:
        async with self._project_lock(project.id):
            try:
                await self._remote.save_active(project)
            except REMOTE_FAILURES as exc:
                logger.warning(
                    "Error saving project %s to remote storage, falling back to local: %s",
                    project.id,
                    exc,
                )
                await self._local.save(project)
                return SaveResult(project, durable=False)
            await self._mirror(project)
            return SaveResult(project, durable=True)

    async def get(self, project_id: str) -> Project | None:
        try:
            project = await self._remote.get_active(project_id)
        except REMOTE_FAILURES as exc:
            logger.warning(
                "Error getting project %s from remote storage, falling back to local: %s",
                project_id,
                exc,
            )
            return await self._local.get(project_id)
        if project is None:
            return await self._local.get(project_id)
        await self._mirror(project)
        return project

    async def list(self, *, strict: bool = False) -> list[Project]:
        """Active projects from the remote store, mirrored locally.

        A remote failure returns ``[]`` unless ``strict`` is set, in which
        case it is re-raised.
        """
        try:
            projects = await self._remote.list_active()
        except REMOTE_FAILURES as exc:
            if strict:
                raise
            logger.warning("Error listing projects from remote storage: %s", exc)
            return []
        for project in projects:
            await self._mirror(project)
        return projects

    async def list_archived(self) -> list[Project]:
        return await self._remote.list_archived()

    # -- startup reconciliation --------------------------------------------------

    async def initialize(self) -> list[Project]:
        """Resume interrupted operations, drop orphans, then merge local into remote.

        Remote projects are the baseline. Local projects the remote store
        has never seen are uploaded; local copies of projects that were
        just cleaned up as orphans, or that live in the archive, are
        removed instead.
        """
        logger.info("Initializing projects with remote sync")
        await self._resume_pending()
        pending = {entry.project_id for entry in await self._journal.pending()}

        try:
            removed = set(await self._remote.cleanup_orphans())
            remote_projects = await self._remote.list_active()
            archived = await self._remote.archived_ids()
        except REMOTE_FAILURES as exc:
            logger.error("Error during initial sync: %s", exc)
            return []

        merged = list(remote_projects)
        remote_ids = {p.id for p in remote_projects}
        for project in remote_projects:
            await self._mirror(project)

        for project in await self._local.list():
            if project.id in remote_ids or project.id in pending:
                continue
            if project.id in removed or project.id in archived:
                logger.info("Dropping stale local copy of project %s", project.id)
                await self._local.delete(project.id)
                continue
            logger.info("Uploading local project %s to remote storage", project.id)
            try:
                await self._remote.save_active(project)
            except REMOTE_FAILURES as exc:
                logger.warning("Could not upload local project %s: %s", project.id, exc)
                continue
            merged.append(project)

        logger.info("Sync complete: %d projects available", len(merged))
        return merged

    async def _resume_pending(self) -> None:
        for entry in await self._journal.pending():
            logger.info(
                "Resuming %s of project %s from stage %s",
                entry.operation.value,
                entry.project_id,
                entry.stage,
            )
            try:
                async with self._project_lock(entry.project_id):
                    if entry.operation == Operation.ARCHIVE:
                        await self._run_archive(entry)
                    else:
                        await self._run_restore(entry)
            except ConfigurationError:
                raise
            except ProjectNotFoundError:
                logger.warning(
                    "Project %s vanished during an interrupted archive, dropping marker",
                    entry.project_id,
                )
                await self._journal.finish(entry.project_id)
            except (NewsdeskError, httpx.HTTPError) as exc:
                logger.warning(
                    "Could not resume %s of project %s: %s",
                    entry.operation.value,
                    entry.project_id,
                    exc,
                )

    async def pending_operations(self) -> list[PendingOperation]:
        return await self._journal.pending()

    # -- archive / restore -------------------------------------------------------

    def _stage_recorder(self, entry: PendingOperation):
        current = entry

        async def record(stage: str, **details: object) -> None:
            nonlocal current
            current = await self._journal.advance(current, stage, **details)

        return record

    async def archive(self, project_id: str) -> None:
        async with self._project_lock(project_id):
            project = await self.get(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            entry = await self._journal.begin(Operation.ARCHIVE, project_id, project)
            await self._run_archive(entry)

    async def _run_archive(self, entry: PendingOperation) -> None:
        if entry.project is None:
            await self._journal.finish(entry.project_id)
            raise ProjectNotFoundError(entry.project_id)
        try:
            await self._remote.archive(
                entry.project,
                archived_sheet_id=entry.archived_sheet_id,
                on_stage=self._stage_recorder(entry),
            )
        except MissingSheetError:
            # JSON already archived, sheet gone: nothing left to retry
            logger.warning(
                "Project %s archived without its sheet %s, which no longer exists",
                entry.project_id,
                entry.project.sheet_id,
            )
            await self._finish_archive(entry.project_id)
            raise
        await self._finish_archive(entry.project_id)
        logger.info("Successfully archived project %s", entry.project_id)

    async def _finish_archive(self, project_id: str) -> None:
        try:
            if await self._local.delete(project_id):
                logger.info("Deleted local project file %s.json", project_id)
        except OSError as exc:
            logger.warning("Could not delete local file %s.json: %s", project_id, exc)
        await self._journal.finish(project_id)

    async def restore(self, project_id: str) -> Project:
        async with self._project_lock(project_id):
            entry = await self._journal.begin(Operation.RESTORE, project_id)
            return await self._run_restore(entry)

    async def _run_restore(self, entry: PendingOperation) -> Project:
        try:
            project = await self._remote.restore(
                entry.project_id,
                restored_sheet_id=entry.restored_sheet_id,
                on_stage=self._stage_recorder(entry),
            )
        except ArchivedProjectNotFoundError:
            await self._journal.finish(entry.project_id)
            if entry.stage not in (
                RestoreStage.JSON_REWRITTEN.value,
                RestoreStage.ARCHIVE_REMOVED.value,
            ):
                raise
            # The archived JSON is deleted last, so its absence here means
            # the interrupted restore had already completed.
            project = await self._remote.get_active(entry.project_id)
            if project is None:
                raise
            return project
        await self._journal.finish(entry.project_id)
        return project
