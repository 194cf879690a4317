"""RunChat API client for running the article analysis workflow."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from newsdesk.errors import ConfigurationError, WorkflowError

logger = logging.getLogger(__name__)

RUNCHAT_API_BASE = "https://runchat.app/api/v1"


class RunchatClient:
    """Wrapper around the RunChat flow-execution endpoint."""

    def __init__(self, token: str, *, timeout: float = 120.0) -> None:
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=RUNCHAT_API_BASE,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    async def run(self, flow_id: str, payload: dict[str, Any] | None = None) -> Any:
        """Run a published flow and return its parsed response.

        Args:
            flow_id: Published id of the flow.
            payload: Request body. Flows with published params expect
                ``{"inputs": {<paramId>: value}}``; webhook flows accept any JSON.

        Returns:
            The decoded JSON response, or the raw text if it is not JSON.
        """
        if not self._token:
            raise ConfigurationError("RUNCHAT_API_TOKEN not set in env")
        if not flow_id:
            raise ConfigurationError("RUNCHAT_FLOW_ID not set in env")

        logger.info("Running workflow %s", flow_id)
        try:
            resp = await self._client.post(
                f"/{quote(flow_id, safe='')}/run",
                json=payload or {},
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as exc:
            raise WorkflowError(f"RunChat request failed: {exc}") from exc

        text = resp.text
        try:
            parsed = json.loads(text) if text else None
        except json.JSONDecodeError:
            parsed = text

        if resp.is_error:
            message = json.dumps(parsed) if isinstance(parsed, (dict, list)) else str(parsed)
            raise WorkflowError(f"RunChat run failed ({resp.status_code}): {message}")
        return parsed

    async def close(self) -> None:
        await self._client.aclose()
