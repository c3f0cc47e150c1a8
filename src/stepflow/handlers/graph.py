"""Minimal Microsoft Graph client used by the SharePoint, OneDrive and cloud steps."""

from typing import Any
from urllib.parse import quote

import httpx
import structlog

from stepflow.config import GraphSettings

logger = structlog.get_logger(__name__)


def drive_path(folder_path: str | None) -> str:
    """
    Build the item segment for a drive-relative folder.

    ``None`` or ``/`` address the drive root.
    """
    folder = (folder_path or "").strip("/")
    if not folder:
        return "root"
    return f"root:/{quote(folder)}:"


class GraphClient:
    """Thin synchronous wrapper around httpx for the Graph v1.0 REST API."""

    def __init__(self, settings: GraphSettings, transport: httpx.BaseTransport | None = None):
        self.settings = settings
        self._client = httpx.Client(
            base_url=settings.base_url,
            headers={"Authorization": f"Bearer {settings.access_token}"},
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self._client.close()

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        Issue a GET and return the decoded body.

        :raises httpx.HTTPStatusError: On a non-2xx response
        """
        response = self._client.get(path, params=params)
        logger.debug("graph_request", method="GET", path=path, status=response.status_code)
        response.raise_for_status()
        return response.json()

    def get_values(self, path: str, params: dict[str, Any] | None = None) -> list[Any]:
        """GET a collection endpoint and return its ``value`` array."""
        return self.get(path, params=params).get("value", [])

    def put_content(self, path: str, content: bytes, content_type: str = "application/octet-stream") -> Any:
        """
        Upload raw bytes, e.g. to ``/me/drive/root:/reports/a.json:/content``.

        :raises httpx.HTTPStatusError: On a non-2xx response
        """
        response = self._client.put(path, content=content, headers={"Content-Type": content_type})
        logger.debug("graph_request", method="PUT", path=path, status=response.status_code)
        response.raise_for_status()
        return response.json()
