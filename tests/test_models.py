"""Tests for the project document models and schema migration."""

from __future__ import annotations

import json
import re

import pytest

from newsdesk.errors import SchemaError
from newsdesk.storage.models import (
    SCHEMA_VERSION,
    AnalysisRun,
    AnalysisStatus,
    Article,
    Project,
    make_slug,
    migrate_document,
    project_id_from_name,
)


def _project() -> Project:
    project = Project(id="climate-watch-abc123", name="Climate Watch", sheet_id="sheet-1")
    project.articles.append(Article.new("Heatwave", url="https://example.com/a", source="bbc"))
    project.analysis_runs.append(AnalysisRun(id="run-1", article_ids=[project.articles[0].id]))
    project.queries.append("heat OR drought")
    return project


class TestDocument:
    def test_round_trip(self) -> None:
        project = _project()
        assert Project.from_document(project.to_document()) == project

    def test_uses_camel_case_keys(self) -> None:
        data = json.loads(_project().to_document())
        assert data["schemaVersion"] == SCHEMA_VERSION
        assert data["sheetId"] == "sheet-1"
        assert "analysisRuns" in data
        assert data["articles"][0]["analysisStatus"] == "pending"

    def test_archived_at_is_never_stored(self) -> None:
        project = _project()
        project.archived_at = project.created_at
        assert "archivedAt" not in json.loads(project.to_document())

    def test_invalid_json_raises_schema_error(self) -> None:
        with pytest.raises(SchemaError):
            Project.from_document("{not json")

    def test_non_object_raises_schema_error(self) -> None:
        with pytest.raises(SchemaError):
            Project.from_document("[1, 2]")

    def test_unknown_key_rejected(self) -> None:
        data = json.loads(_project().to_document())
        data["surprise"] = True
        with pytest.raises(SchemaError):
            Project.from_document(json.dumps(data))

    def test_newer_schema_rejected(self) -> None:
        data = json.loads(_project().to_document())
        data["schemaVersion"] = SCHEMA_VERSION + 1
        with pytest.raises(SchemaError, match="Unsupported"):
            Project.from_document(json.dumps(data))


class TestMigration:
    def test_legacy_document_is_migrated(self) -> None:
        legacy = {
            "id": "old-project-123abc",
            "name": "Old Project",
            "createdAt": "2024-03-01T10:00:00Z",
            "sheetId": "sheet-9",
            "articles": None,
            "sheetArticles": [{"id": "article-1"}],
            "archivedAt": "2024-05-01T00:00:00Z",
        }
        project = Project.from_document(json.dumps(legacy))
        assert project.schema_version == SCHEMA_VERSION
        assert project.queries == []
        assert project.articles == []
        assert project.analysis_runs == []
        assert project.meta == {}
        assert project.archived_at is None

    def test_current_version_untouched(self) -> None:
        data = {"schemaVersion": SCHEMA_VERSION, "id": "x"}
        assert migrate_document(data) is data


class TestIds:
    def test_slug_format(self) -> None:
        assert re.fullmatch(r"climate-watch-[0-9a-f]{6}", make_slug("Climate Watch"))

    def test_slug_strips_punctuation_and_truncates(self) -> None:
        slug = make_slug("  Héllo,   World!! " + "x" * 100)
        base, suffix = slug.rsplit("-", 1)
        assert base.startswith("hllo-world-")
        assert len(base) <= 60
        assert re.fullmatch(r"[0-9a-f]{6}", suffix)

    def test_article_id_uses_source(self) -> None:
        article = Article.new("Title", source="reuters")
        assert article.id.startswith("reuters-")
        assert len(article.id) == len("reuters-") + 8
        assert article.analysis_status == AnalysisStatus.PENDING
        assert article.analysis_result is None

    def test_article_id_defaults_to_manual(self) -> None:
        assert Article.new("Title").id.startswith("manual-")

    def test_project_id_from_name(self) -> None:
        assert project_id_from_name("abc.json") == "abc"
        assert project_id_from_name("notes.txt") is None

    def test_find_articles_keeps_project_order(self) -> None:
        project = _project()
        second = Article.new("Second")
        project.articles.append(second)
        found = project.find_articles([second.id, project.articles[0].id, "missing"])
        assert [a.id for a in found] == [project.articles[0].id, second.id]
