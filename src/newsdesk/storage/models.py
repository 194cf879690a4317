"""Project document models shared by the local and remote stores."""

from __future__ import annotations

import json
import re
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from newsdesk.errors import SchemaError

SCHEMA_VERSION = 1

# Keys older documents carried that are derived at read time and never stored
_LEGACY_DERIVED_KEYS = ("sheetArticles", "archivedAt")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"


class RunStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class Article(_Document):
    """An article collected into a project."""

    id: str
    title: str
    url: str | None = None
    source: str | None = None
    content: str | None = None
    retrieved_at: datetime = Field(default_factory=utcnow)
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_result: Any = None

    @classmethod
    def new(
        cls,
        title: str,
        *,
        url: str | None = None,
        source: str | None = None,
        content: str | None = None,
    ) -> Article:
        return cls(
            id=f"{source or 'manual'}-{short_id()}",
            title=title,
            url=url,
            source=source,
            content=content,
        )


class AnalysisRun(_Document):
    """One execution of the analysis workflow over a set of articles."""

    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    article_ids: list[str] = Field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    result: Any = None
    result_sheet_range: str | None = None


class Project(_Document):
    """A project record, stored as ``<id>.json`` locally and remotely."""

    schema_version: int = SCHEMA_VERSION
    id: str
    name: str
    created_at: datetime = Field(default_factory=utcnow)
    sheet_id: str
    sheet_url: str | None = None
    queries: list[str] = Field(default_factory=list)
    owner: str | None = None
    articles: list[Article] = Field(default_factory=list)
    analysis_runs: list[AnalysisRun] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)
    # Only set on records read from the archive listing
    archived_at: datetime | None = None

    @property
    def filename(self) -> str:
        return document_name(self.id)

    @property
    def archived_sheet_name(self) -> str:
        return f"{self.name} — Archived"

    def to_document(self) -> str:
        """Serialize for storage; ``archivedAt`` is never persisted."""
        return self.model_dump_json(by_alias=True, exclude={"archived_at"}, indent=2)

    @classmethod
    def from_document(cls, raw: str | bytes) -> Project:
        """Parse a stored document, migrating older schema versions."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SchemaError(f"Project document is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise SchemaError("Project document must be a JSON object")
        data = migrate_document(data)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise SchemaError(f"Project document does not match schema: {exc}") from exc

    def find_articles(self, article_ids: list[str]) -> list[Article]:
        wanted = set(article_ids)
        return [a for a in self.articles if a.id in wanted]


def migrate_document(data: dict[str, Any]) -> dict[str, Any]:
    """Bring a raw project document up to ``SCHEMA_VERSION``."""
    version = data.get("schemaVersion", 0)
    if not isinstance(version, int) or version > SCHEMA_VERSION:
        raise SchemaError(f"Unsupported project schema version: {version!r}")
    if version == SCHEMA_VERSION:
        return data

    migrated = {k: v for k, v in data.items() if k not in _LEGACY_DERIVED_KEYS}
    for key in ("queries", "articles", "analysisRuns"):
        if migrated.get(key) is None:
            migrated[key] = []
    if migrated.get("meta") is None:
        migrated["meta"] = {}
    migrated["schemaVersion"] = SCHEMA_VERSION
    return migrated


def document_name(project_id: str) -> str:
    return f"{project_id}.json"


def project_id_from_name(filename: str) -> str | None:
    if not filename.endswith(".json"):
        return None
    return filename[: -len(".json")]


def short_id(length: int = 8) -> str:
    """Random url-safe identifier of ``length`` characters."""
    return secrets.token_urlsafe(length)[:length]


def make_slug(name: str) -> str:
    """Derive a unique project id such as ``climate-watch-3f9a1c``."""
    base = re.sub(r"[^a-z0-9\s-]", "", name.lower()).strip()
    base = re.sub(r"\s+", "-", base)[:60]
    return f"{base}-{secrets.token_hex(3)}"
