"""In-process cache of the active and archived project lists."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from newsdesk.errors import ConfigurationError, NewsdeskError
from newsdesk.storage.models import Project, utcnow
from newsdesk.storage.sync import REMOTE_FAILURES, StorageSynchronizer

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


@dataclass(frozen=True)
class CacheState:
    projects: list[Project] = field(default_factory=list)
    archived_projects: list[Project] = field(default_factory=list)
    last_sync: datetime | None = None
    is_syncing: bool = False


@dataclass(frozen=True)
class SyncStatus:
    last_sync: datetime | None
    is_syncing: bool
    project_count: int
    archived_count: int


class ProjectCache:
    """Holds the last synchronized project lists for cheap repeated reads.

    Only one refresh runs at a time; a refresh requested while another is
    in flight returns immediately without doing anything. Listeners are
    called when a refresh starts and again when it ends, whether it
    succeeded or not.
    """

    def __init__(self, synchronizer: StorageSynchronizer) -> None:
        self._synchronizer = synchronizer
        self._state = CacheState()
        self._sync_lock = asyncio.Lock()
        self._listeners: set[Listener] = set()

    # -- reads ---------------------------------------------------------------

    def get_projects(self) -> list[Project]:
        return list(self._state.projects)

    def get_archived_projects(self) -> list[Project]:
        return list(self._state.archived_projects)

    def get_sync_status(self) -> SyncStatus:
        state = self._state
        return SyncStatus(
            last_sync=state.last_sync,
            is_syncing=state.is_syncing,
            project_count=len(state.projects),
            archived_count=len(state.archived_projects),
        )

    # -- refreshes -------------------------------------------------------------

    async def sync_all(self) -> bool:
        """Refresh both lists. Returns False if another refresh was running."""

        async def fetch() -> dict:
            projects, archived = await asyncio.gather(
                self._synchronizer.list(strict=True),
                self._synchronizer.list_archived(),
            )
            logger.info(
                "Sync complete: %d projects, %d archived", len(projects), len(archived)
            )
            return {"projects": projects, "archived_projects": archived}

        return await self._refresh("full", fetch)

    async def sync_projects(self) -> bool:
        """Refresh only the active list, e.g. after creating a project."""

        async def fetch() -> dict:
            projects = await self._synchronizer.list(strict=True)
            logger.info("Projects sync complete: %d projects", len(projects))
            return {"projects": projects}

        return await self._refresh("projects", fetch)

    async def sync_archived_projects(self) -> bool:
        """Refresh only the archived list."""

        async def fetch() -> dict:
            archived = await self._synchronizer.list_archived()
            logger.info("Archived projects sync complete: %d archived", len(archived))
            return {"archived_projects": archived}

        return await self._refresh("archived", fetch)

    async def _refresh(self, label: str, fetch) -> bool:
        # Checking and acquiring happen with no await in between, so no
        # other task can slip in on the same event loop.
        if self._sync_lock.locked():
            logger.info("Sync already in progress, skipping %s sync", label)
            return False

        async with self._sync_lock:
            self._state = replace(self._state, is_syncing=True)
            self._notify()
            changes: dict = {}
            try:
                changes = await fetch()
                changes["last_sync"] = utcnow()
            except ConfigurationError:
                raise
            except (*REMOTE_FAILURES, NewsdeskError) as exc:
                # Keep the stale lists
                logger.error("%s sync failed: %s", label.capitalize(), exc)
            finally:
                self._state = replace(self._state, **changes, is_syncing=False)
                self._notify()
        return True

    # -- listeners -------------------------------------------------------------

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Register ``callback``; the returned function unregisters it."""
        self._listeners.add(callback)

        def unsubscribe() -> None:
            self._listeners.discard(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Cache listener %r failed", callback)

    def clear(self) -> None:
        self._state = CacheState()
        self._notify()
