"""Google Drive v3 client used as the remote object store."""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime

import httpx
from dateutil import parser as dateparser

from newsdesk.errors import DriveError, DriveNotFoundError, GoogleApiError
from newsdesk.google.client import GoogleApiClient, describe_error

DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
FILE_FIELDS = "id, name, parents, trashed, createdTime, modifiedTime, webViewLink"


@dataclass
class DriveFile:
    """Metadata for a single Drive file."""

    id: str
    name: str
    parents: list[str] = field(default_factory=list)
    trashed: bool = False
    created_time: datetime | None = None
    modified_time: datetime | None = None
    web_view_link: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> DriveFile:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            parents=list(data.get("parents") or []),
            trashed=bool(data.get("trashed", False)),
            created_time=_parse_time(data.get("createdTime")),
            modified_time=_parse_time(data.get("modifiedTime")),
            web_view_link=data.get("webViewLink"),
        )

    def in_folder(self, folder_id: str) -> bool:
        return folder_id in self.parents


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return dateparser.isoparse(value)
    except (ValueError, TypeError):
        return None


def _quote(value: str) -> str:
    """Escape a literal for use inside a Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_query(
    parent: str, *, name: str | None = None, name_contains: str | None = None
) -> str:
    clauses = [f"'{_quote(parent)}' in parents", "trashed = false"]
    if name is not None:
        clauses.append(f"name = '{_quote(name)}'")
    if name_contains is not None:
        clauses.append(f"name contains '{_quote(name_contains)}'")
    return " and ".join(clauses)


class DriveClient(GoogleApiClient):
    """Thin async wrapper over the Drive ``files`` endpoints."""

    def _error(self, resp: httpx.Response) -> GoogleApiError:
        if resp.status_code == 404:
            return DriveNotFoundError(describe_error(resp), status_code=404)
        return DriveError(describe_error(resp), status_code=resp.status_code)

    async def list(
        self,
        parent: str,
        *,
        name: str | None = None,
        name_contains: str | None = None,
        order_by: str | None = None,
    ) -> list[DriveFile]:
        """List non-trashed files directly inside ``parent``."""
        params: dict[str, str] = {
            "q": build_query(parent, name=name, name_contains=name_contains),
            "fields": f"nextPageToken, files({FILE_FIELDS})",
            "pageSize": "1000",
        }
        if order_by:
            params["orderBy"] = order_by

        files: list[DriveFile] = []
        while True:
            resp = await self._request("GET", f"{DRIVE_API}/files", params=params)
            data = resp.json()
            files.extend(DriveFile.from_api(f) for f in data.get("files", []))
            token = data.get("nextPageToken")
            if not token:
                return files
            params["pageToken"] = token

    async def get_metadata(self, file_id: str) -> DriveFile:
        resp = await self._request(
            "GET", f"{DRIVE_API}/files/{file_id}", params={"fields": FILE_FIELDS}
        )
        return DriveFile.from_api(resp.json())

    async def download(self, file_id: str) -> str:
        resp = await self._request("GET", f"{DRIVE_API}/files/{file_id}", params={"alt": "media"})
        return resp.text

    async def create(
        self,
        name: str,
        parent: str,
        content: str,
        mime_type: str = "application/json",
    ) -> DriveFile:
        boundary = f"newsdesk-{secrets.token_hex(8)}"
        metadata = json.dumps({"name": name, "parents": [parent]})
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{metadata}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {mime_type}\r\n\r\n"
            f"{content}\r\n"
            f"--{boundary}--\r\n"
        )
        resp = await self._request(
            "POST",
            f"{DRIVE_UPLOAD_API}/files",
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body.encode("utf-8"),
        )
        return DriveFile.from_api(resp.json())

    async def update(
        self, file_id: str, content: str, mime_type: str = "application/json"
    ) -> None:
        await self._request(
            "PATCH",
            f"{DRIVE_UPLOAD_API}/files/{file_id}",
            params={"uploadType": "media"},
            headers={"Content-Type": mime_type},
            content=content.encode("utf-8"),
        )

    async def copy(self, file_id: str, name: str, parent: str | None = None) -> DriveFile:
        body: dict = {"name": name}
        if parent:
            body["parents"] = [parent]
        resp = await self._request(
            "POST",
            f"{DRIVE_API}/files/{file_id}/copy",
            params={"fields": FILE_FIELDS},
            json=body,
        )
        return DriveFile.from_api(resp.json())

    async def delete(self, file_id: str) -> None:
        await self._request("DELETE", f"{DRIVE_API}/files/{file_id}")

    async def share_with_anyone(self, file_id: str, role: str = "reader") -> None:
        await self._request(
            "POST",
            f"{DRIVE_API}/files/{file_id}/permissions",
            json={"role": role, "type": "anyone"},
        )
