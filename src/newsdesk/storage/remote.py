"""Project documents and their spreadsheets in the remote drive.

Four fixed folders are involved: active sheets, active data (project
JSON), archive sheets and archive data. A project is active only while
its spreadsheet exists, is not trashed, and sits in the active sheets
folder; JSON documents whose sheet fails that check are orphans.

Archive and restore are written so that re-running them after an
interruption picks up where the previous attempt stopped: a JSON copy is
skipped when the destination already holds ``<id>.json``, a sheet copy
only when the id of the earlier copy was recorded, and deletes are
skipped when the source is already gone. Sheets are matched by id, since
two projects may share a name.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from newsdesk.config import FolderConfig
from newsdesk.errors import (
    ArchivedProjectNotFoundError,
    DriveNotFoundError,
    MissingSheetError,
    ProjectNotFoundError,
    SchemaError,
    VerificationError,
)
from newsdesk.google.drive import DriveClient, DriveFile
from newsdesk.storage.journal import ArchiveStage, RestoreStage
from newsdesk.storage.models import Project, document_name, project_id_from_name

logger = logging.getLogger(__name__)

# Called after each completed step of archive/restore with the stage name
# and any ids worth persisting for a resume.
StageCallback = Callable[..., Awaitable[None]]


async def _no_stage(stage: str, **details: object) -> None:
    return None


class RemoteProjectStore:
    """CRUD over project JSON documents and their paired spreadsheets."""

    def __init__(self, drive: DriveClient, folders: FolderConfig) -> None:
        self._drive = drive
        self._folders = folders

    @property
    def folders(self) -> FolderConfig:
        return self._folders

    # -- helpers -----------------------------------------------------------

    async def _find(self, folder: str, name: str) -> DriveFile | None:
        files = await self._drive.list(folder, name=name)
        return files[0] if files else None

    async def _load(self, file: DriveFile) -> Project | None:
        """Download and parse a document, skipping it if malformed."""
        raw = await self._drive.download(file.id)
        try:
            return Project.from_document(raw)
        except SchemaError as exc:
            logger.warning("Failed to parse project file %s: %s", file.name, exc)
            return None

    async def _json_files(self, folder: str) -> list[DriveFile]:
        files = await self._drive.list(folder, name_contains=".json", order_by="modifiedTime desc")
        return [f for f in files if project_id_from_name(f.name)]

    async def _metadata(self, file_id: str) -> DriveFile | None:
        try:
            return await self._drive.get_metadata(file_id)
        except DriveNotFoundError:
            return None

    async def _live_in(self, file_id: str | None, folder: str) -> DriveFile | None:
        """The file if it exists, is not trashed and sits in ``folder``."""
        if not file_id:
            return None
        file = await self._metadata(file_id)
        if file is None or file.trashed or not file.in_folder(folder):
            return None
        return file

    async def sheet_is_active(self, sheet_id: str) -> bool:
        """True when the sheet exists, is not trashed and is in the active folder.

        A missing sheet counts as inactive; any other failure propagates.
        """
        return await self._live_in(sheet_id, self._folders.active_sheets) is not None

    async def _copy_verified(self, file_id: str, name: str, folder: str) -> DriveFile:
        """Copy a file into ``folder`` and confirm that this copy landed there.

        Names are not unique, so the copy is matched by id.
        """
        copy = await self._drive.copy(file_id, name, folder)
        landed = await self._drive.list(folder, name=name)
        match = next((f for f in landed if f.id == copy.id), None)
        if match is None:
            raise VerificationError(f"Failed to verify copy of {name} to folder {folder}")
        logger.info("Verified copy of %s in folder %s (ID: %s)", name, folder, copy.id)
        return match

    # -- active projects ---------------------------------------------------

    async def list_active(self) -> list[Project]:
        """Every active project; orphans and malformed documents are left out."""
        files = await self._json_files(self._folders.active_data)

        async def load_verified(file: DriveFile) -> Project | None:
            project = await self._load(file)
            if project is None:
                return None
            if not await self.sheet_is_active(project.sheet_id):
                logger.debug("Project %s sheet not in active folder, skipping", project.id)
                return None
            return project

        loaded = await asyncio.gather(*(load_verified(f) for f in files))
        projects = [p for p in loaded if p is not None]
        logger.info("Loaded %d active projects from remote storage", len(projects))
        return projects

    async def get_active(self, project_id: str) -> Project | None:
        """The active project with this id, or None if absent or orphaned."""
        file = await self._find(self._folders.active_data, document_name(project_id))
        if file is None:
            return None
        project = Project.from_document(await self._drive.download(file.id))
        if not await self.sheet_is_active(project.sheet_id):
            logger.debug("Project %s sheet not in active folder, treating as absent", project_id)
            return None
        return project

    async def save_active(self, project: Project) -> None:
        name = project.filename
        content = project.to_document()
        existing = await self._find(self._folders.active_data, name)
        if existing is not None:
            await self._drive.update(existing.id, content)
            logger.info("Updated project %s in remote storage", project.id)
        else:
            await self._drive.create(name, self._folders.active_data, content)
            logger.info("Created project %s in remote storage", project.id)

    async def delete_active(self, project_id: str) -> bool:
        existing = await self._find(self._folders.active_data, document_name(project_id))
        if existing is None:
            return False
        await self._drive.delete(existing.id)
        logger.info("Deleted project %s from remote storage", project_id)
        return True

    async def cleanup_orphans(self) -> list[str]:
        """Delete active JSON documents whose sheet is missing or misplaced.

        Returns the ids of the removed documents.
        """
        removed: list[str] = []
        for file in await self._json_files(self._folders.active_data):
            project = await self._load(file)
            if project is None:
                continue
            if await self.sheet_is_active(project.sheet_id):
                continue
            logger.info(
                "Removing orphaned project file %s (sheet %s not in active folder)",
                file.name,
                project.sheet_id or "<none>",
            )
            await self._drive.delete(file.id)
            removed.append(project.id)
        logger.info("Cleaned up %d orphaned project files", len(removed))
        return removed

    # -- archive -----------------------------------------------------------

    async def list_archived(self) -> list[Project]:
        projects: list[Project] = []
        for file in await self._json_files(self._folders.archive_data):
            project = await self._load(file)
            if project is None:
                continue
            project.archived_at = (
                file.modified_time or file.created_time or datetime.now(timezone.utc)
            )
            projects.append(project)
        logger.info("Loaded %d archived projects from remote storage", len(projects))
        return projects

    async def archived_ids(self) -> set[str]:
        files = await self._json_files(self._folders.archive_data)
        return {project_id_from_name(f.name) for f in files}

    async def archive(
        self,
        project: Project,
        *,
        archived_sheet_id: str | None = None,
        on_stage: StageCallback = _no_stage,
    ) -> None:
        """Move the project JSON and its sheet into the archive folders.

        Each copy is verified in the destination before the original is
        deleted. ``archived_sheet_id`` is the sheet copy a previous attempt
        already made; without it the sheet is copied again, because sheet
        names do not identify a project. Raises ``ProjectNotFoundError``
        when neither the active nor the archived JSON exists.
        """
        folders = self._folders
        name = project.filename
        logger.info("Archiving project %s", project.id)

        original = await self._find(folders.active_data, name)
        archived = await self._find(folders.archive_data, name)
        if original is None and archived is None:
            raise ProjectNotFoundError(project.id)

        if original is not None:
            if archived is None:
                archived = await self._copy_verified(original.id, name, folders.archive_data)
            await on_stage(ArchiveStage.JSON_COPIED.value)
            await self._drive.delete(original.id)
            logger.info("Deleted original project file %s from active folder", name)
        await on_stage(ArchiveStage.JSON_REMOVED.value)

        if project.sheet_id:
            await self._archive_sheet(project, archived, archived_sheet_id, on_stage)

        logger.info("Successfully archived project %s", project.id)

    async def _archive_sheet(
        self,
        project: Project,
        archived_json: DriveFile,
        archived_sheet_id: str | None,
        on_stage: StageCallback,
    ) -> None:
        folders = self._folders
        archived_copy = await self._live_in(archived_sheet_id, folders.archive_sheets)
        sheet = await self._metadata(project.sheet_id)

        if sheet is None and archived_copy is None:
            raise MissingSheetError(
                f"Sheet {project.sheet_id} for project {project.id} not found", status_code=404
            )

        if archived_copy is None:
            archived_copy = await self._copy_verified(
                project.sheet_id, project.archived_sheet_name, folders.archive_sheets
            )
        await on_stage(ArchiveStage.SHEET_COPIED.value, archived_sheet_id=archived_copy.id)

        # The archived document points at the archived sheet
        archived_project = project.model_copy(update={"sheet_id": archived_copy.id})
        await self._drive.update(archived_json.id, archived_project.to_document())

        if sheet is not None:
            await self._drive.delete(project.sheet_id)
            logger.info("Deleted original sheet %s from active folder", project.sheet_id)
        await on_stage(ArchiveStage.SHEET_REMOVED.value)

    async def _archived_sheet(self, project: Project, *, by_name: bool) -> DriveFile | None:
        """The archived copy of an archived project's sheet.

        Documents archived by this store carry the copy's id. Older ones
        still point at the deleted active sheet and are matched by the
        ``<name> — Archived`` name when ``by_name`` is set, provided only
        one sheet has that name.
        """
        folders = self._folders
        sheet = await self._live_in(project.sheet_id, folders.archive_sheets)
        if sheet is not None or not by_name:
            return sheet
        matches = await self._drive.list(folders.archive_sheets, name=project.archived_sheet_name)
        if len(matches) > 1:
            raise VerificationError(
                f"{len(matches)} archived sheets are named {project.archived_sheet_name!r}; "
                f"cannot tell which belongs to project {project.id}"
            )
        return matches[0] if matches else None

    async def restore(
        self,
        project_id: str,
        *,
        restored_sheet_id: str | None = None,
        on_stage: StageCallback = _no_stage,
    ) -> Project:
        """Move an archived project back into the active folders.

        The sheet is copied back under its original name and gets a new id,
        which is written into the restored JSON. ``restored_sheet_id`` skips
        the sheet copy when a previous attempt already made it.
        """
        folders = self._folders
        name = document_name(project_id)
        logger.info("Restoring project %s from archive", project_id)

        archived = await self._find(folders.archive_data, name)
        if archived is None:
            raise ArchivedProjectNotFoundError(project_id)
        project = Project.from_document(await self._drive.download(archived.id))

        archived_sheet = None
        if project.sheet_id:
            archived_sheet = await self._archived_sheet(
                project, by_name=restored_sheet_id is None
            )

        active = await self._find(folders.active_data, name)
        if active is None:
            active = await self._copy_verified(archived.id, name, folders.active_data)
        await on_stage(RestoreStage.JSON_COPIED.value)

        if project.sheet_id:
            if restored_sheet_id is None and archived_sheet is not None:
                copy = await self._copy_verified(
                    archived_sheet.id, project.name, folders.active_sheets
                )
                restored_sheet_id = copy.id
            if restored_sheet_id is not None:
                project.sheet_id = restored_sheet_id
                await on_stage(RestoreStage.SHEET_COPIED.value, restored_sheet_id=restored_sheet_id)
            else:
                logger.warning("No archived sheet found for project %s", project_id)

        await self._drive.update(active.id, project.to_document())
        await on_stage(RestoreStage.JSON_REWRITTEN.value)

        # The archived JSON goes last: once it is gone the restore is complete
        if archived_sheet is not None:
            await self._drive.delete(archived_sheet.id)
            logger.info("Deleted archived sheet %s", archived_sheet.id)
        await self._drive.delete(archived.id)
        logger.info("Deleted archived project file %s", name)
        await on_stage(RestoreStage.ARCHIVE_REMOVED.value)

        logger.info("Successfully restored project %s", project_id)
        return project
