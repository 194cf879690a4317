"""Shared test fixtures."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from newsdesk.config import FolderConfig, Settings
from newsdesk.errors import DriveError, DriveNotFoundError
from newsdesk.google.drive import DriveFile
from newsdesk.storage.cache import ProjectCache
from newsdesk.storage.journal import OperationJournal
from newsdesk.storage.local import LocalProjectStore
from newsdesk.storage.models import Project
from newsdesk.storage.remote import RemoteProjectStore
from newsdesk.storage.sync import StorageSynchronizer

FOLDERS = FolderConfig(
    active_sheets="active-sheets",
    active_data="active-data",
    archive_sheets="archive-sheets",
    archive_data="archive-data",
)


@dataclass
class FakeFile:
    id: str
    name: str
    parents: list[str]
    content: str = ""
    trashed: bool = False
    created_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    modified_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_drive_file(self) -> DriveFile:
        return DriveFile(
            id=self.id,
            name=self.name,
            parents=list(self.parents),
            trashed=self.trashed,
            created_time=self.created_time,
            modified_time=self.modified_time,
            web_view_link=f"https://drive.example/{self.id}",
        )


class FakeDrive:
    """In-memory stand-in for ``DriveClient`` with fault injection.

    ``fail_all`` makes every call raise a 503 ``DriveError``; ``fail_on``
    does the same for the named methods only. Copies into a folder listed
    in ``lose_copies_to`` report success but never land, which is what a
    failed copy verification looks like.
    """

    def __init__(self) -> None:
        self.files: dict[str, FakeFile] = {}
        self.calls: list[str] = []
        self.fail_all = False
        self.fail_on: set[str] = set()
        self.lose_copies_to: set[str] = set()
        self._ids = itertools.count(1)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        if self.fail_all or method in self.fail_on:
            raise DriveError(f"{method} failed: backend unavailable", status_code=503)

    def _get(self, file_id: str) -> FakeFile:
        try:
            return self.files[file_id]
        except KeyError:
            raise DriveNotFoundError(f"File not found: {file_id}", status_code=404) from None

    def add(self, name: str, parent: str, content: str = "", *, trashed: bool = False) -> str:
        file_id = f"file-{next(self._ids)}"
        self.files[file_id] = FakeFile(file_id, name, [parent], content, trashed)
        return file_id

    def names_in(self, folder: str) -> list[str]:
        return sorted(f.name for f in self.files.values() if folder in f.parents and not f.trashed)

    def contents_in(self, folder: str) -> list[str]:
        return sorted(
            f.content for f in self.files.values() if folder in f.parents and not f.trashed
        )

    # -- DriveClient interface ----------------------------------------------

    async def list(self, parent, *, name=None, name_contains=None, order_by=None):
        self._enter("list")
        found = [
            f
            for f in self.files.values()
            if parent in f.parents
            and not f.trashed
            and (name is None or f.name == name)
            and (name_contains is None or name_contains in f.name)
        ]
        if order_by == "modifiedTime desc":
            found.sort(key=lambda f: f.modified_time, reverse=True)
        return [f.to_drive_file() for f in found]

    async def get_metadata(self, file_id):
        self._enter("get_metadata")
        return self._get(file_id).to_drive_file()

    async def download(self, file_id):
        self._enter("download")
        return self._get(file_id).content

    async def create(self, name, parent, content, mime_type="application/json"):
        self._enter("create")
        return self.files[self.add(name, parent, content)].to_drive_file()

    async def update(self, file_id, content, mime_type="application/json"):
        self._enter("update")
        file = self._get(file_id)
        file.content = content
        file.modified_time = datetime.now(timezone.utc) + timedelta(microseconds=1)

    async def copy(self, file_id, name, parent=None):
        self._enter("copy")
        source = self._get(file_id)
        folder = parent or source.parents[0]
        if folder in self.lose_copies_to:
            return DriveFile(id=f"lost-{next(self._ids)}", name=name, parents=[folder])
        return self.files[self.add(name, folder, source.content)].to_drive_file()

    async def delete(self, file_id):
        self._enter("delete")
        self._get(file_id)
        del self.files[file_id]

    async def share_with_anyone(self, file_id, role="reader"):
        self._enter("share_with_anyone")
        self._get(file_id)


def seed_project(
    drive: FakeDrive, project: Project, *, with_sheet: bool = True, sheet_content: str = ""
) -> Project:
    """Put ``project`` into the active folders, giving it a live sheet."""
    if with_sheet:
        project.sheet_id = drive.add(project.name, FOLDERS.active_sheets, sheet_content)
    drive.add(project.filename, FOLDERS.active_data, project.to_document())
    return project


def make_project(project_id: str = "climate-watch-abc123", name: str = "Climate Watch") -> Project:
    return Project(id=project_id, name=name, sheet_id="")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        data_dir=tmp_path / "projects",
        active_sheets_folder_id=FOLDERS.active_sheets,
        active_data_folder_id=FOLDERS.active_data,
        archive_sheets_folder_id=FOLDERS.archive_sheets,
        archive_data_folder_id=FOLDERS.archive_data,
        master_sheet_id="",
        runchat_api_token="test-token-not-real",
        runchat_flow_id="flow-123",
        event_registry_api_key="test-key-not-real",
        event_registry_request_delay=0.0,
    )


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def remote(drive: FakeDrive) -> RemoteProjectStore:
    return RemoteProjectStore(drive, FOLDERS)


@pytest.fixture
def local(settings: Settings) -> LocalProjectStore:
    return LocalProjectStore(settings.data_dir)


@pytest.fixture
def journal(settings: Settings) -> OperationJournal:
    return OperationJournal(settings.data_dir / ".journal")


@pytest.fixture
def synchronizer(
    remote: RemoteProjectStore, local: LocalProjectStore, journal: OperationJournal
) -> StorageSynchronizer:
    return StorageSynchronizer(remote, local, journal)


@pytest.fixture
def cache(synchronizer: StorageSynchronizer) -> ProjectCache:
    return ProjectCache(synchronizer)
