"""Project operations used by the CLI: create, mutate, analyze, archive, search.

Every mutation saves through the storage synchronizer and refreshes the
project cache the way the outer surfaces expect: creating a project
refreshes the active list, archive and restore refresh both lists.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx

from newsdesk.config import Settings
from newsdesk.errors import (
    ConfigurationError,
    GoogleApiError,
    InvalidInputError,
    ProjectNotFoundError,
    WorkflowError,
)
from newsdesk.google.client import GoogleAuth
from newsdesk.google.drive import DriveClient
from newsdesk.google.sheets import SheetsClient, a1_range, duplicate_master_sheet
from newsdesk.research.event_registry import (
    EventRegistryClient,
    SearchArticle,
    SearchParams,
    Source,
    format_for_sheet,
    parse_sources,
)
from newsdesk.storage.cache import ProjectCache
from newsdesk.storage.journal import OperationJournal
from newsdesk.storage.local import LocalProjectStore
from newsdesk.storage.models import (
    AnalysisRun,
    AnalysisStatus,
    Article,
    Project,
    RunStatus,
    make_slug,
    short_id,
    utcnow,
)
from newsdesk.storage.remote import RemoteProjectStore
from newsdesk.storage.sync import StorageSynchronizer
from newsdesk.workflow.runchat import RunchatClient

logger = logging.getLogger(__name__)

ANALYSIS_HEADERS = ["articleId", "title", "url", "analysis_preview"]
PREVIEW_LENGTH = 300


@dataclass
class SheetArticle:
    """A row of a project's Articles tab."""

    id: str
    row: int
    title: str
    status: str


def sheet_url(sheet_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{sheet_id}/edit"


def _preview(result: Any) -> str:
    text = result if isinstance(result, str) else json.dumps(result, default=str)
    return text[:PREVIEW_LENGTH]


class ProjectService:
    """Thin layer over the synchronizer and cache plus the external clients."""

    def __init__(
        self,
        settings: Settings,
        *,
        drive: DriveClient,
        sheets: SheetsClient,
        runchat: RunchatClient,
        search: EventRegistryClient,
        synchronizer: StorageSynchronizer | None = None,
        cache: ProjectCache | None = None,
    ) -> None:
        self._settings = settings
        self._drive = drive
        self._sheets = sheets
        self._runchat = runchat
        self._search = search
        self._synchronizer = synchronizer
        self._cache = cache

    # Storage is built on first use so commands that never touch projects
    # do not require the folder configuration.
    @property
    def synchronizer(self) -> StorageSynchronizer:
        if self._synchronizer is None:
            data_dir = self._settings.data_dir
            self._synchronizer = StorageSynchronizer(
                RemoteProjectStore(self._drive, self._settings.folders()),
                LocalProjectStore(data_dir),
                OperationJournal(data_dir / ".journal"),
            )
        return self._synchronizer

    @property
    def cache(self) -> ProjectCache:
        if self._cache is None:
            self._cache = ProjectCache(self.synchronizer)
        return self._cache

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self) -> list[Project]:
        projects = await self.synchronizer.initialize()
        await self.cache.sync_all()
        return projects

    async def manual_sync(self) -> bool:
        return await self.cache.sync_all()

    async def create_project(self, name: str) -> Project:
        name = name.strip()
        if not name:
            raise InvalidInputError("Project name is required")
        master_id = self._settings.master_sheet_id
        if not master_id:
            raise ConfigurationError("MASTER_SHEET_ID not set in env")

        folders = self.synchronizer.remote.folders
        created_at = utcnow()
        copy = await duplicate_master_sheet(
            self._drive,
            master_id,
            f"{name} — {created_at.isoformat()}",
            folders.active_sheets,
            share_public=self._settings.share_copies_public,
        )
        project = Project(
            id=make_slug(name),
            name=name,
            created_at=created_at,
            sheet_id=copy.id,
            sheet_url=copy.web_view_link or sheet_url(copy.id),
        )
        result = await self.synchronizer.save(project)
        if not result.durable:
            logger.warning("Project %s saved locally only", project.id)
        logger.info("Created project %s with sheet %s", project.id, copy.id)
        await self.cache.sync_projects()
        return project

    async def get_project(self, project_id: str) -> Project:
        project = await self.synchronizer.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def list_projects(self, *, refresh: bool = False) -> list[Project]:
        if refresh or self.cache.get_sync_status().last_sync is None:
            await self.cache.sync_projects()
        return self.cache.get_projects()

    async def list_archived(self, *, refresh: bool = False) -> list[Project]:
        if refresh or self.cache.get_sync_status().last_sync is None:
            await self.cache.sync_archived_projects()
        return self.cache.get_archived_projects()

    async def archive_project(self, project_id: str) -> None:
        await self.synchronizer.archive(project_id)
        await self.cache.sync_all()

    async def restore_project(self, project_id: str) -> Project:
        project = await self.synchronizer.restore(project_id)
        await self.cache.sync_all()
        return project

    # -- articles ----------------------------------------------------------

    async def add_article(
        self,
        project_id: str,
        title: str,
        *,
        url: str | None = None,
        source: str | None = None,
        content: str | None = None,
    ) -> Article:
        if not title or not title.strip():
            raise InvalidInputError("Article title is required")
        project = await self.get_project(project_id)
        article = Article.new(title.strip(), url=url, source=source, content=content)
        project.articles.append(article)
        await self.synchronizer.save(project)
        return article

    async def run_analysis(
        self,
        project_id: str,
        article_ids: list[str],
        *,
        instance_id: str | None = None,
    ) -> AnalysisRun:
        """Send the selected articles through the analysis workflow.

        The outcome is recorded on the project either way; a workflow
        failure is re-raised after the errored run has been saved.
        """
        if not article_ids:
            raise InvalidInputError("No articles selected")
        project = await self.get_project(project_id)
        selected = project.find_articles(article_ids)
        if not selected:
            raise InvalidInputError("None of the selected articles exist in this project")

        payload: dict[str, Any] = {
            "inputs": {
                "articles": [
                    a.model_dump(include={"id", "title", "url", "source", "content"})
                    for a in selected
                ]
            }
        }
        if instance_id:
            payload["runchat_instance_id"] = instance_id

        run = AnalysisRun(id=f"run-{short_id()}", article_ids=[a.id for a in selected])
        try:
            result = await self._runchat.run(self._settings.runchat_flow_id, payload)
        except WorkflowError as exc:
            run.status = RunStatus.ERROR
            run.result = {"error": str(exc)}
            for article in selected:
                article.analysis_status = AnalysisStatus.ERROR
            project.analysis_runs.append(run)
            await self.synchronizer.save(project)
            raise

        run.status = RunStatus.COMPLETE
        run.result = result
        for article in selected:
            article.analysis_status = AnalysisStatus.COMPLETE
            article.analysis_result = result
        run.result_sheet_range = await self._write_analysis_summary(project, selected, result)
        project.analysis_runs.append(run)
        await self.synchronizer.save(project)
        logger.info("Analysis run %s complete for %d articles", run.id, len(selected))
        return run

    async def _write_analysis_summary(
        self, project: Project, articles: list[Article], result: Any
    ) -> str | None:
        tab = self._settings.analysis_tab
        rows = [list(ANALYSIS_HEADERS)]
        rows.extend([a.id, a.title, a.url or "", _preview(result)] for a in articles)
        try:
            await self._sheets.ensure_tab(project.sheet_id, tab)
            return await self._sheets.append_rows(project.sheet_id, a1_range(tab), rows)
        except (GoogleApiError, httpx.HTTPError) as exc:
            logger.warning("Failed to write analysis to sheet %s: %s", project.sheet_id, exc)
            return None

    async def sheet_articles(self, project_id: str) -> list[SheetArticle]:
        """Articles listed in the project sheet, marked by analysis state."""
        project = await self.get_project(project_id)
        rows = await self._sheets.read_rows(
            project.sheet_id, a1_range(self._settings.articles_tab, "A:H")
        )
        analysed = {aid for run in project.analysis_runs for aid in run.article_ids}
        entries = []
        for number, row in enumerate(rows[1:], 1):
            article_id = f"article-{number}"
            entries.append(
                SheetArticle(
                    id=article_id,
                    row=number,
                    title=row[2] if len(row) > 2 and row[2] else "Untitled",
                    status="Analysed" if article_id in analysed else "Retrieved",
                )
            )
        return entries

    # -- search ------------------------------------------------------------

    async def search_articles(self, params: SearchParams) -> list[SearchArticle]:
        if not (params.search_terms or params.boolean_query or params.concepts):
            raise InvalidInputError("Provide search terms, a boolean query or concepts")
        return await self._search.fetch_articles(params)

    async def search_for_project(
        self,
        project_id: str,
        params: SearchParams,
        *,
        add_articles: bool = False,
        write_to_sheet: bool = False,
    ) -> list[SearchArticle]:
        """Search, record the query on the project and optionally keep the results."""
        project = await self.get_project(project_id)
        results = await self.search_articles(params)

        project.queries.append(params.describe())
        if add_articles:
            project.articles.extend(
                Article.new(
                    r.title,
                    url=r.url,
                    source=r.source_uri or "eventregistry",
                    content=r.body,
                )
                for r in results
            )
        await self.synchronizer.save(project)

        if write_to_sheet and results:
            await self.write_articles_to_sheet(project, results)
        return results

    async def write_articles_to_sheet(
        self, project: Project, articles: list[SearchArticle]
    ) -> str | None:
        """Append search results to the project's Articles tab."""
        tab = self._settings.articles_tab
        await self._sheets.ensure_tab(project.sheet_id, tab)
        existing = await self._sheets.read_rows(project.sheet_id, a1_range(tab, "A:A"))
        rows = format_for_sheet(
            articles,
            with_headers=not existing,
            start=max(len(existing), 1),
        )
        return await self._sheets.append_rows(project.sheet_id, a1_range(tab), rows)

    async def list_sources(self) -> tuple[list[Source], dict[str, list[str]]]:
        sheet_id = self._settings.event_registry_sources_sheet_id
        if not sheet_id:
            raise ConfigurationError("EVENT_REGISTRY_SOURCES_SHEET_ID not set in env")
        rows = await self._sheets.read_rows(sheet_id, self._settings.event_registry_sources_range)
        return parse_sources(rows)


@asynccontextmanager
async def open_service(settings: Settings) -> AsyncIterator[ProjectService]:
    """Build a service with its HTTP clients and close them afterwards."""
    async with httpx.AsyncClient(timeout=settings.http_timeout) as http:
        auth = GoogleAuth.from_settings(settings, http)
        runchat = RunchatClient(settings.runchat_api_token)
        search = EventRegistryClient(
            settings.event_registry_api_key,
            articles_per_page=settings.event_registry_articles_per_page,
            request_delay=settings.event_registry_request_delay,
            max_pages=settings.event_registry_max_pages,
            timeout=settings.http_timeout,
        )
        try:
            yield ProjectService(
                settings,
                drive=DriveClient(http, auth),
                sheets=SheetsClient(http, auth),
                runchat=runchat,
                search=search,
            )
        finally:
            await runchat.close()
            await search.close()

