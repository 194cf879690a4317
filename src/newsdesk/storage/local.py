"""Flat-file project store used as a local cache and fallback.

Every project is one ``<id>.json`` file in a single directory. Writes go
through a temporary file and an atomic rename so a reader never sees a
half-written document.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from newsdesk.errors import SchemaError
from newsdesk.storage.models import Project, document_name

logger = logging.getLogger(__name__)


class LocalProjectStore:
    """Read and write project documents under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, project_id: str) -> Path:
        return self._directory / document_name(project_id)

    def _ensure_dir(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)

    # -- sync implementations, run in a worker thread ---------------------

    def _write(self, project: Project) -> Project:
        self._ensure_dir()
        path = self._path(project.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(project.to_document(), encoding="utf-8")
        os.replace(tmp, path)
        return project

    def _read(self, project_id: str) -> Project | None:
        try:
            raw = self._path(project_id).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return Project.from_document(raw)

    def _read_all(self) -> list[Project]:
        self._ensure_dir()
        projects: list[Project] = []
        for path in sorted(self._directory.glob("*.json")):
            try:
                projects.append(Project.from_document(path.read_text(encoding="utf-8")))
            except SchemaError as exc:
                logger.warning("Skipping malformed local project file %s: %s", path.name, exc)
        return projects

    def _remove(self, project_id: str) -> bool:
        try:
            self._path(project_id).unlink()
        except FileNotFoundError:
            return False
        return True

    # -- public async API ---------------------------------------------------

    async def save(self, project: Project) -> Project:
        return await asyncio.to_thread(self._write, project)

    async def get(self, project_id: str) -> Project | None:
        """Return the stored project, or None when no file exists."""
        return await asyncio.to_thread(self._read, project_id)

    async def list(self) -> list[Project]:
        return await asyncio.to_thread(self._read_all)

    async def delete(self, project_id: str) -> bool:
        """Remove the project file; returns False if it was already gone."""
        return await asyncio.to_thread(self._remove, project_id)
