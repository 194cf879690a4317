"""Google Sheets helpers: template duplication, tab management, row I/O."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from newsdesk.errors import GoogleApiError, SheetsError
from newsdesk.google.client import GoogleApiClient, describe_error
from newsdesk.google.drive import DriveClient, DriveFile

logger = logging.getLogger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"


def a1_range(tab: str, cells: str = "A1") -> str:
    """Build an A1 range such as ``'Analysis'!A1`` for ``tab``."""
    escaped = tab.replace("'", "''")
    return f"'{escaped}'!{cells}"


class SheetsClient(GoogleApiClient):
    """Wrapper around the Sheets v4 ``spreadsheets`` endpoints."""

    def _error(self, resp: httpx.Response) -> GoogleApiError:
        return SheetsError(describe_error(resp), status_code=resp.status_code)

    def _values_url(self, spreadsheet_id: str, range_: str, suffix: str = "") -> str:
        return f"{SHEETS_API}/{spreadsheet_id}/values/{quote(range_, safe='')}{suffix}"

    async def ensure_tab(self, spreadsheet_id: str, title: str) -> int:
        """Return the tab id for ``title``, adding the tab if it does not exist."""
        resp = await self._request(
            "GET",
            f"{SHEETS_API}/{spreadsheet_id}",
            params={"fields": "sheets.properties"},
        )
        for sheet in resp.json().get("sheets", []):
            props = sheet.get("properties", {})
            if props.get("title") == title:
                return props["sheetId"]

        resp = await self._request(
            "POST",
            f"{SHEETS_API}/{spreadsheet_id}:batchUpdate",
            json={"requests": [{"addSheet": {"properties": {"title": title}}}]},
        )
        replies = resp.json().get("replies", [])
        logger.info("Added tab %r to spreadsheet %s", title, spreadsheet_id)
        return replies[0]["addSheet"]["properties"]["sheetId"]

    async def append_rows(
        self, spreadsheet_id: str, range_: str, rows: list[list[str]]
    ) -> str | None:
        """Append ``rows`` after the last filled row of ``range_``.

        Returns the range Google reports as updated.
        """
        resp = await self._request(
            "POST",
            self._values_url(spreadsheet_id, range_, ":append"),
            params={"valueInputOption": "RAW"},
            json={"values": rows},
        )
        logger.info("Wrote %d rows to %s", len(rows), range_)
        return resp.json().get("updates", {}).get("updatedRange")

    async def read_rows(self, spreadsheet_id: str, range_: str) -> list[list[str]]:
        resp = await self._request("GET", self._values_url(spreadsheet_id, range_))
        return resp.json().get("values", [])


async def duplicate_master_sheet(
    drive: DriveClient,
    master_id: str,
    title: str,
    parent: str,
    *,
    share_public: bool = False,
) -> DriveFile:
    """Copy the template spreadsheet into ``parent`` as ``title``."""
    logger.info("Creating new sheet copy %r from master sheet %s", title, master_id)
    copy = await drive.copy(master_id, title, parent)
    logger.info("Created sheet %s (ID: %s)", copy.name, copy.id)

    if share_public:
        try:
            await drive.share_with_anyone(copy.id)
            logger.info("Set public sharing for sheet %s", copy.id)
        except GoogleApiError as exc:
            logger.warning("Failed to update permissions on copy %s: %s", copy.id, exc)

    return copy
