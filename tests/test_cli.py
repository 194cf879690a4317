"""Tests for the click command group."""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from newsdesk.cli import main
from newsdesk.config import Settings
from newsdesk.errors import ArchivedProjectNotFoundError, ConfigurationError
from newsdesk.research.event_registry import SearchArticle
from newsdesk.storage.models import AnalysisRun, Article, Project


@pytest.fixture
def service() -> MagicMock:
    service = MagicMock()
    service.initialize = AsyncMock(return_value=[])
    return service


@pytest.fixture
def runner(settings: Settings, service: MagicMock):
    """Invoke the CLI with settings and the service session patched out."""

    @asynccontextmanager
    async def fake_open_service(_settings):
        yield service

    with (
        patch("newsdesk.config.get_settings", return_value=settings),
        patch("newsdesk.projects.service.open_service", fake_open_service),
        patch("newsdesk.log.configure_logging"),
        patch("newsdesk.cli.console", Console(width=200)),
    ):
        yield CliRunner()


def _project(**kwargs) -> Project:
    return Project(id="climate-watch-abc123", name="Climate Watch", sheet_id="sheet-1", **kwargs)


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_list(runner: CliRunner, service: MagicMock) -> None:
    service.list_projects = AsyncMock(return_value=[_project()])

    result = runner.invoke(main, ["list"])

    assert result.exit_code == 0
    assert "climate-watch-abc123" in result.output
    service.list_projects.assert_awaited_once_with(refresh=True)


def test_list_empty(runner: CliRunner, service: MagicMock) -> None:
    service.list_projects = AsyncMock(return_value=[])
    result = runner.invoke(main, ["list"])
    assert "No active projects" in result.output


def test_create(runner: CliRunner, service: MagicMock) -> None:
    service.create_project = AsyncMock(return_value=_project(sheet_url="https://sheet/1"))

    result = runner.invoke(main, ["create", "Climate Watch"])

    assert result.exit_code == 0
    assert "Created" in result.output
    service.create_project.assert_awaited_once_with("Climate Watch")


def test_show(runner: CliRunner, service: MagicMock) -> None:
    project = _project(
        articles=[Article(id="manual-abcdefgh", title="Heatwave")],
        analysis_runs=[AnalysisRun(id="run-12345678", article_ids=["manual-abcdefgh"])],
        queries=["heat"],
    )
    service.get_project = AsyncMock(return_value=project)

    result = runner.invoke(main, ["show", project.id])

    assert result.exit_code == 0
    assert "Heatwave" in result.output
    assert "run-12345678" in result.output


def test_add_article(runner: CliRunner, service: MagicMock) -> None:
    service.add_article = AsyncMock(return_value=Article(id="bbc-abcdefgh", title="T"))

    result = runner.invoke(main, ["add-article", "p1", "--title", "T", "--source", "bbc"])

    assert result.exit_code == 0
    assert "bbc-abcdefgh" in result.output
    service.add_article.assert_awaited_once_with(
        "p1", "T", url=None, source="bbc", content=None
    )


def test_analyze(runner: CliRunner, service: MagicMock) -> None:
    service.run_analysis = AsyncMock(
        return_value=AnalysisRun(id="run-12345678", article_ids=["a", "b"])
    )

    result = runner.invoke(main, ["analyze", "p1", "a", "b", "--instance", "i-1"])

    assert result.exit_code == 0
    assert "2 articles" in result.output
    service.run_analysis.assert_awaited_once_with("p1", ["a", "b"], instance_id="i-1")


def test_archive_with_yes(runner: CliRunner, service: MagicMock) -> None:
    service.archive_project = AsyncMock(return_value=None)

    result = runner.invoke(main, ["archive", "p1", "--yes"])

    assert result.exit_code == 0
    service.archive_project.assert_awaited_once_with("p1")


def test_archive_declined(runner: CliRunner, service: MagicMock) -> None:
    service.archive_project = AsyncMock()

    result = runner.invoke(main, ["archive", "p1"], input="n\n")

    assert result.exit_code == 1
    service.archive_project.assert_not_awaited()


def test_restore_error_exits_1(runner: CliRunner, service: MagicMock) -> None:
    service.restore_project = AsyncMock(side_effect=ArchivedProjectNotFoundError("p1"))

    result = runner.invoke(main, ["restore", "p1"])

    assert result.exit_code == 1
    assert "Archived project file not found for project p1" in result.output


def test_configuration_error_exits_1(runner: CliRunner, service: MagicMock) -> None:
    service.list_projects = AsyncMock(side_effect=ConfigurationError("Missing remote folder configuration"))

    result = runner.invoke(main, ["list"])

    assert result.exit_code == 1
    assert "Missing remote folder configuration" in result.output


def test_search_for_project(runner: CliRunner, service: MagicMock) -> None:
    service.search_for_project = AsyncMock(
        return_value=[SearchArticle(uri="1", title="Floods", source_title="BBC")]
    )

    result = runner.invoke(
        main,
        ["search", "-t", "floods", "-t", "storms", "--start", "2025-01-01", "--project", "p1", "--add"],
    )

    assert result.exit_code == 0
    assert "Floods" in result.output
    project_id, params = service.search_for_project.await_args.args
    assert project_id == "p1"
    assert params.search_terms == ["floods", "storms"]
    assert params.start_date == "2025-01-01"
    assert service.search_for_project.await_args.kwargs == {
        "add_articles": True,
        "write_to_sheet": False,
    }


def test_search_add_needs_project(runner: CliRunner, service: MagicMock) -> None:
    result = runner.invoke(main, ["search", "-t", "x", "--add"])
    assert result.exit_code == 1
    assert "--project" in result.output


def test_status(runner: CliRunner, service: MagicMock) -> None:
    service.synchronizer.pending_operations = AsyncMock(return_value=[])
    result = runner.invoke(main, ["status"])
    assert result.exit_code == 0
    assert "No interrupted operations" in result.output


def test_mutating_commands_reconcile_first(runner: CliRunner, service: MagicMock) -> None:
    order: list[str] = []
    service.initialize = AsyncMock(side_effect=lambda: order.append("initialize") or [])
    service.create_project = AsyncMock(
        side_effect=lambda name: order.append("create") or _project()
    )

    result = runner.invoke(main, ["create", "Climate Watch"])

    assert result.exit_code == 0
    assert order == ["initialize", "create"]


def test_read_only_commands_skip_reconcile(runner: CliRunner, service: MagicMock) -> None:
    service.list_projects = AsyncMock(return_value=[])
    service.search_articles = AsyncMock(return_value=[])

    runner.invoke(main, ["list"])
    runner.invoke(main, ["search", "-t", "floods"])

    service.initialize.assert_not_awaited()
