"""CLI entry point for newsdesk."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """newsdesk: news research projects backed by Google Sheets.

    Commands that change projects reconcile storage first; run `sync` to
    do only that.
    """


# ---------------------------------------------------------------------------
# sync / status: startup reconciliation and cache state
# ---------------------------------------------------------------------------


@main.command()
def sync() -> None:
    """Resume interrupted operations, clean up orphans and merge local projects."""

    async def work(service):
        with console.status("[bold green]Syncing with Google Drive..."):
            projects = await service.initialize()
        return projects, service.cache.get_sync_status()

    projects, status = _run(work)
    console.print(
        f"[green]Synced[/green] {len(projects)} projects "
        f"({status.archived_count} archived)"
    )


@main.command()
def status() -> None:
    """Show interrupted archive/restore operations awaiting resume."""

    async def work(service):
        return await service.synchronizer.pending_operations()

    pending = _run(work)
    if not pending:
        console.print("[dim]No interrupted operations.[/dim]")
        return

    table = Table(title="Interrupted Operations")
    table.add_column("Project", width=36)
    table.add_column("Operation", width=10)
    table.add_column("Stage", width=16)
    table.add_column("Updated", width=20)
    for entry in pending:
        table.add_row(
            entry.project_id,
            entry.operation.value,
            entry.stage,
            entry.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    console.print("\n[dim]Run `newsdesk sync` to resume them.[/dim]")


# ---------------------------------------------------------------------------
# list / archived / show: reading projects
# ---------------------------------------------------------------------------


@main.command(name="list")
def list_projects() -> None:
    """List active projects."""

    async def work(service):
        return await service.list_projects(refresh=True)

    projects = _run(work)
    if not projects:
        console.print("[yellow]No active projects.[/yellow]")
        return

    table = Table(title="Active Projects")
    table.add_column("ID", width=36)
    table.add_column("Name", width=30)
    table.add_column("Articles", width=8, justify="right")
    table.add_column("Runs", width=5, justify="right")
    table.add_column("Created", width=12)
    for p in sorted(projects, key=lambda p: p.created_at, reverse=True):
        table.add_row(
            p.id,
            p.name[:30],
            str(len(p.articles)),
            str(len(p.analysis_runs)),
            p.created_at.strftime("%Y-%m-%d"),
        )
    console.print(table)


@main.command()
def archived() -> None:
    """List archived projects."""

    async def work(service):
        return await service.list_archived(refresh=True)

    projects = _run(work)
    if not projects:
        console.print("[yellow]No archived projects.[/yellow]")
        return

    table = Table(title="Archived Projects")
    table.add_column("ID", width=36)
    table.add_column("Name", width=30)
    table.add_column("Archived", width=12)
    for p in projects:
        table.add_row(
            p.id,
            p.name[:30],
            p.archived_at.strftime("%Y-%m-%d") if p.archived_at else "",
        )
    console.print(table)


@main.command()
@click.argument("project_id")
@click.option("--sheet", is_flag=True, help="Also list the articles in the project sheet")
def show(project_id: str, sheet: bool) -> None:
    """Show a project with its articles and analysis runs."""

    async def work(service):
        project = await service.get_project(project_id)
        rows = await service.sheet_articles(project_id) if sheet else []
        return project, rows

    project, sheet_rows = _run(work)

    console.print(
        Panel(
            f"[bold]{project.name}[/bold]\n{project.sheet_url or project.sheet_id}",
            subtitle=f"{project.id} | created {project.created_at:%Y-%m-%d}",
        )
    )
    if project.queries:
        console.print("[bold]Queries:[/bold]")
        for q in project.queries:
            console.print(f"  - {q}")

    if project.articles:
        table = Table(title="Articles")
        table.add_column("ID", width=24)
        table.add_column("Title", width=50)
        table.add_column("Status", width=12)
        for a in project.articles:
            table.add_row(a.id, a.title[:50], a.analysis_status.value)
        console.print(table)
    else:
        console.print("[dim]No articles yet.[/dim]")

    for run in project.analysis_runs:
        console.print(
            f"  {run.id}  {run.timestamp:%Y-%m-%d %H:%M}  {run.status.value}  "
            f"({len(run.article_ids)} articles)"
        )

    if sheet_rows:
        table = Table(title="Sheet Articles")
        table.add_column("Row", width=5, justify="right")
        table.add_column("Title", width=50)
        table.add_column("Status", width=10)
        for row in sheet_rows:
            table.add_row(str(row.row), row.title[:50], row.status)
        console.print(table)


# ---------------------------------------------------------------------------
# create / add-article: building up a project
# ---------------------------------------------------------------------------


@main.command()
@click.argument("name")
def create(name: str) -> None:
    """Create a project with a fresh copy of the master sheet."""

    async def work(service):
        with console.status("[bold green]Creating project..."):
            return await service.create_project(name)

    project = _run(work, startup=True)
    console.print(f"[green]Created[/green] {project.id}")
    console.print(f"[dim]Sheet: {project.sheet_url}[/dim]")


@main.command(name="add-article")
@click.argument("project_id")
@click.option("--title", "-t", required=True, help="Article title")
@click.option("--url", "-u", default=None, help="Article URL")
@click.option("--source", "-s", default=None, help="Source name (used in the article id)")
@click.option("--content", "-c", default=None, help="Article body text")
def add_article(
    project_id: str,
    title: str,
    url: str | None,
    source: str | None,
    content: str | None,
) -> None:
    """Add an article to a project by hand."""

    async def work(service):
        return await service.add_article(
            project_id, title, url=url, source=source, content=content
        )

    article = _run(work, startup=True)
    console.print(f"[green]Added[/green] {article.id}")


# ---------------------------------------------------------------------------
# search: Event Registry article search
# ---------------------------------------------------------------------------


@main.command()
@click.option("--term", "-t", "terms", multiple=True, help="Keyword to search for (repeatable)")
@click.option("--query", "-q", default=None, help='Boolean query, e.g. "solar AND storage"')
@click.option("--source", "-s", "sources", multiple=True, help="Source URL to restrict to (repeatable)")
@click.option("--concept", "-c", "concepts", multiple=True, help="Concept URI (repeatable)")
@click.option("--start", default=None, help="Start date (YYYY-MM-DD), default 7 days ago")
@click.option("--end", default=None, help="End date (YYYY-MM-DD), default today")
@click.option("--project", "-p", "project_id", default=None, help="Record the query on this project")
@click.option("--add", is_flag=True, help="Add the results to the project as articles")
@click.option("--to-sheet", is_flag=True, help="Append the results to the project sheet")
def search(
    terms: tuple[str, ...],
    query: str | None,
    sources: tuple[str, ...],
    concepts: tuple[str, ...],
    start: str | None,
    end: str | None,
    project_id: str | None,
    add: bool,
    to_sheet: bool,
) -> None:
    """Search news articles, optionally storing them on a project."""
    from newsdesk.research.event_registry import SearchParams

    if (add or to_sheet) and not project_id:
        console.print("[bold red]Error:[/bold red] --add and --to-sheet need --project.")
        raise SystemExit(1)

    today = date.today()
    params = SearchParams(
        start_date=start or (today - timedelta(days=7)).isoformat(),
        end_date=end or today.isoformat(),
        search_terms=list(terms),
        sources=list(sources),
        concepts=list(concepts),
        boolean_query=query,
    )

    async def work(service):
        with console.status("[bold green]Searching articles..."):
            if project_id:
                return await service.search_for_project(
                    project_id, params, add_articles=add, write_to_sheet=to_sheet
                )
            return await service.search_articles(params)

    results = _run(work)
    if not results:
        console.print("[yellow]No articles found.[/yellow]")
        return

    table = Table(title=f"{len(results)} Articles")
    table.add_column("Date", width=12)
    table.add_column("Source", width=20)
    table.add_column("Title", width=60)
    for r in results[:25]:
        table.add_row((r.published or "")[:10], (r.source_title or "")[:20], r.title[:60])
    console.print(table)
    if len(results) > 25:
        console.print(f"[dim]... and {len(results) - 25} more[/dim]")


@main.command()
def sources() -> None:
    """List the news sources available for filtering searches."""

    async def work(service):
        return await service.list_sources()

    found, facets = _run(work)
    table = Table(title=f"{len(found)} Sources")
    table.add_column("Title", width=30)
    table.add_column("URI", width=30)
    table.add_column("Country", width=16)
    table.add_column("Language", width=10)
    for s in found:
        table.add_row(s.title, s.uri, s.country, s.language)
    console.print(table)
    for key, values in facets.items():
        if values:
            console.print(f"[bold]{key.capitalize()}:[/bold] {', '.join(values)}")


# ---------------------------------------------------------------------------
# analyze: run the analysis workflow
# ---------------------------------------------------------------------------


@main.command()
@click.argument("project_id")
@click.argument("article_ids", nargs=-1, required=True)
@click.option("--instance", default=None, help="RunChat instance id to reuse")
def analyze(project_id: str, article_ids: tuple[str, ...], instance: str | None) -> None:
    """Run the analysis workflow over selected articles."""

    async def work(service):
        with console.status("[bold green]Running analysis workflow..."):
            return await service.run_analysis(
                project_id, list(article_ids), instance_id=instance
            )

    run = _run(work, startup=True)
    console.print(f"[green]Analysis complete[/green] ({run.id}, {len(run.article_ids)} articles)")
    if run.result_sheet_range:
        console.print(f"[dim]Summary written to {run.result_sheet_range}[/dim]")


# ---------------------------------------------------------------------------
# archive / restore: lifecycle
# ---------------------------------------------------------------------------


@main.command()
@click.argument("project_id")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
def archive(project_id: str, yes: bool) -> None:
    """Move a project and its sheet into the archive folders."""
    if not yes:
        click.confirm(f"Archive project {project_id}?", abort=True)

    async def work(service):
        with console.status("[bold green]Archiving..."):
            await service.archive_project(project_id)

    _run(work, startup=True)
    console.print(f"[green]Archived[/green] {project_id}")


@main.command()
@click.argument("project_id")
def restore(project_id: str) -> None:
    """Bring an archived project back with a fresh copy of its sheet."""

    async def work(service):
        with console.status("[bold green]Restoring..."):
            return await service.restore_project(project_id)

    project = _run(work, startup=True)
    console.print(f"[green]Restored[/green] {project.id} (sheet {project.sheet_id})")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(work, *, startup: bool = False):
    """Run ``work(service)`` in a fresh service session.

    With ``startup`` the session first reconciles storage the way
    ``newsdesk sync`` does. Known failures are printed and turned into
    exit status 1.
    """
    import httpx

    from newsdesk.config import get_settings
    from newsdesk.errors import NewsdeskError
    from newsdesk.log import configure_logging
    from newsdesk.projects.service import open_service

    settings = get_settings()
    configure_logging(settings.log_level)

    async def session():
        async with open_service(settings) as service:
            if startup:
                await service.initialize()
            return await work(service)

    try:
        return asyncio.run(session())
    except (NewsdeskError, httpx.HTTPError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise SystemExit(1)
