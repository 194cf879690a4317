"""Article search against the Event Registry API."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from newsdesk.errors import ArticleSearchError, ConfigurationError

logger = logging.getLogger(__name__)

EVENT_REGISTRY_URL = "https://eventregistry.org/api/v1/article/getArticles"

SHEET_HEADERS = [
    "Article ID",
    "Article Source Outlet",
    "Article Title",
    "Article Author/s",
    "Article URLs",
    "Article Full Body Text",
    "Date the article was written",
    "Article Input Method",
]

INPUT_METHOD = "Event Registry"


@dataclass
class SearchParams:
    """What to search for and where."""

    start_date: str
    end_date: str
    search_terms: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    boolean_query: str | None = None

    def describe(self) -> str:
        """Human-readable form stored in a project's query history."""
        what = self.boolean_query or " OR ".join(self.search_terms)
        parts = [what]
        if self.concepts:
            parts.append("concepts: " + ", ".join(self.concepts))
        if self.sources:
            parts.append("sources: " + ", ".join(self.sources))
        parts.append(f"{self.start_date}..{self.end_date}")
        return " | ".join(parts)


@dataclass
class SearchArticle:
    """One article returned by the search API."""

    uri: str
    title: str
    url: str | None = None
    source_title: str | None = None
    source_uri: str | None = None
    authors: list[str] = field(default_factory=list)
    body: str | None = None
    published: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> SearchArticle:
        source = data.get("source") or {}
        authors = [
            a.get("name") or a.get("uri") or ""
            for a in data.get("authors") or []
            if isinstance(a, dict)
        ]
        return cls(
            uri=str(data.get("uri") or data.get("id") or ""),
            title=data.get("title") or "No Title",
            url=data.get("url"),
            source_title=source.get("title"),
            source_uri=source.get("uri"),
            authors=[a.strip() for a in authors if a and a.strip()],
            body=data.get("body") or data.get("summary"),
            published=data.get("dateTime") or data.get("date"),
        )

    def to_row(self, row_id: int) -> list[str]:
        return [
            str(row_id),
            self.source_title or "Unknown Source",
            self.title,
            ", ".join(self.authors) if self.authors else "No Author Available",
            self.url or "",
            self.body or "No content available",
            self.published or date.today().isoformat(),
            INPUT_METHOD,
        ]


@dataclass
class Source:
    title: str
    uri: str
    region: str = ""
    country: str = ""
    language: str = ""


def clean_source_url(source: str) -> str:
    """Normalize a source URL to the bare host form the API expects."""
    cleaned = source.strip().lower()
    cleaned = re.sub(r"^https?://", "", cleaned)
    cleaned = re.sub(r"^www\.", "", cleaned)
    return cleaned.rstrip("/")


def _keyword(term: str) -> dict[str, str]:
    return {"keyword": term, "keywordLoc": "body"}


def parse_boolean_query(query: str) -> dict[str, Any]:
    """Turn ``A AND B`` / ``A OR B`` into the API's nested condition format.

    Quotes are stripped. Mixed operators are not supported; a query with
    no operator becomes a single keyword condition.
    """
    cleaned = query.replace('"', "").strip()
    for operator, key in ((" AND ", "$and"), (" OR ", "$or")):
        if operator in cleaned:
            terms = [t.strip() for t in cleaned.split(operator) if t.strip()]
            if len(terms) > 1:
                return {key: [_keyword(t) for t in terms]}
    return _keyword(cleaned)


def build_request(params: SearchParams) -> dict[str, Any]:
    """Build the getArticles request body (without paging or api key)."""
    conditions: list[dict[str, Any]] = []

    if params.boolean_query:
        conditions.append(parse_boolean_query(params.boolean_query))
    elif len(params.search_terms) == 1:
        conditions.append(_keyword(params.search_terms[0]))
    elif params.search_terms:
        conditions.append({"$or": [_keyword(t) for t in params.search_terms]})

    if params.concepts:
        conditions.append({"$or": [{"conceptUri": c} for c in params.concepts]})

    if params.sources:
        conditions.append({"$or": [{"sourceUri": clean_source_url(s)} for s in params.sources]})

    conditions.append({"dateStart": params.start_date, "dateEnd": params.end_date})

    return {
        "query": {"$query": {"$and": conditions}},
        "$filter": {"dataType": ["news", "blog"]},
        "resultType": "articles",
        "articlesSortBy": "date",
    }


def format_for_sheet(
    articles: list[SearchArticle], *, with_headers: bool = True, start: int = 1
) -> list[list[str]]:
    """Rows in the Articles tab layout, numbered from ``start``."""
    rows = [article.to_row(i) for i, article in enumerate(articles, start)]
    return [list(SHEET_HEADERS), *rows] if with_headers else rows


def parse_sources(rows: list[list[str]]) -> tuple[list[Source], dict[str, list[str]]]:
    """Read sources-sheet rows (title, region, country, language, uri).

    Returns the sources plus sorted region/country/language facets.
    """
    sources: list[Source] = []
    facets: dict[str, set[str]] = {"regions": set(), "countries": set(), "languages": set()}
    for row in rows:
        cells = [(row[i] if i < len(row) else "").strip() for i in range(5)]
        title, region, country, language, uri = cells
        if not (title and uri):
            continue
        sources.append(Source(title, clean_source_url(uri), region, country, language))
        for key, value in (("regions", region), ("countries", country), ("languages", language)):
            if value:
                facets[key].add(value)
    return sources, {key: sorted(values) for key, values in facets.items()}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return False


class EventRegistryClient:
    """Paginated article search."""

    def __init__(
        self,
        api_key: str,
        *,
        articles_per_page: int = 100,
        request_delay: float = 1.0,
        max_pages: int = 50,
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._per_page = articles_per_page
        self._delay = request_delay
        self._max_pages = max_pages
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _fetch_page(self, body: dict[str, Any]) -> dict[str, Any]:
        resp = await self._client.post(EVENT_REGISTRY_URL, json=body)
        resp.raise_for_status()
        return resp.json()

    async def fetch_articles(self, params: SearchParams) -> list[SearchArticle]:
        """Fetch every page of results for ``params``."""
        if not self._api_key:
            raise ConfigurationError("EVENT_REGISTRY_API_KEY not set in env")

        request = build_request(params)
        articles: list[SearchArticle] = []
        page = 1
        while True:
            body = {
                **request,
                "articlesPage": page,
                "articlesCount": self._per_page,
                "apiKey": self._api_key,
            }
            try:
                data = await self._fetch_page(body)
            except (httpx.HTTPError, ValueError) as exc:
                raise ArticleSearchError(f"Error fetching page {page}: {exc}") from exc

            block = data.get("articles") or {}
            results = block.get("results") or []
            articles.extend(SearchArticle.from_api(r) for r in results)
            logger.info(
                "Fetched %d articles from page %d (%d so far)", len(results), page, len(articles)
            )

            more = len(results) == self._per_page and len(articles) < (block.get("totalResults") or 0)
            if not more:
                return articles
            if page >= self._max_pages:
                logger.warning("Stopping after %d pages; more results are available", page)
                return articles
            page += 1
            await asyncio.sleep(self._delay)

    async def close(self) -> None:
        await self._client.aclose()
