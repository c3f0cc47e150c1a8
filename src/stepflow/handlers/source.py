"""Source handlers: produce the data a workflow starts from."""

import contextlib
import csv
import io
import json
import sqlite3
from pathlib import Path
from typing import Any, Literal

import httpx
import msgspec
import structlog

from stepflow.config import GraphSettings
from stepflow.domain.errors import InvalidStepConfig, SourceUnavailable
from stepflow.domain.value_object import ExecutionContext, StepType
from stepflow.handlers.base import SourceHandler
from stepflow.handlers.graph import GraphClient, drive_path

__all__ = [
    "ManualInputSource",
    "LocalFileSource",
    "RestApiSource",
    "DatabaseSource",
    "SharePointSource",
    "OneDriveSource",
]

logger = structlog.get_logger(__name__)


class ManualInputSource(SourceHandler):
    """Returns a value typed into the editor."""

    step_type = StepType.SOURCE_MANUAL_INPUT

    class Options(msgspec.Struct, rename="camel"):
        value: Any = msgspec.UNSET
        data: Any = msgspec.UNSET
        default_value: Any = msgspec.UNSET

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if options.value is not msgspec.UNSET:
            return options.value
        if options.data is not msgspec.UNSET:
            # older editor builds stored the value as a JSON string under "data"
            if isinstance(options.data, str):
                try:
                    return json.loads(options.data)
                except json.JSONDecodeError as e:
                    raise InvalidStepConfig(f"'data' is not valid JSON: {e}", field="data") from None
            return options.data
        if options.default_value is not msgspec.UNSET:
            return options.default_value
        raise InvalidStepConfig("Manual input requires a 'value'", field="value")


class LocalFileSource(SourceHandler):
    """Reads a JSON, CSV or text file from the local filesystem."""

    step_type = StepType.SOURCE_FILE_LOCAL

    class Options(msgspec.Struct, rename="camel"):
        file_path: str
        file_type: Literal["json", "csv", "text"] | None = None
        encoding: str = "utf-8"
        delimiter: str = ","

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        path = Path(options.file_path)
        file_type = options.file_type or {".json": "json", ".csv": "csv"}.get(path.suffix.lower(), "text")
        content = path.read_text(encoding=options.encoding)
        logger.info("file_read", path=str(path), file_type=file_type, size=len(content))

        if file_type == "json":
            try:
                return json.loads(content)
            except json.JSONDecodeError as e:
                raise SourceUnavailable(f"Failed to parse {path}: {e}") from None
        if file_type == "csv":
            return list(csv.DictReader(io.StringIO(content), delimiter=options.delimiter))
        return {"content": content, "type": "text"}


class RestApiSource(SourceHandler):
    """Fetches data from an HTTP endpoint."""

    step_type = StepType.SOURCE_API_REST

    class Options(msgspec.Struct, rename="camel"):
        url: str
        method: str = "GET"
        headers: dict[str, str] = {}
        params: dict[str, Any] = {}
        body: Any = None
        timeout: float = 30000

    def __init__(self, transport: httpx.BaseTransport | None = None):
        self.transport = transport

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        method = options.method.upper()
        request: dict[str, Any] = {"headers": options.headers, "params": options.params or None}
        if options.body is not None and method in ("POST", "PUT", "PATCH"):
            if isinstance(options.body, str):
                request["content"] = options.body
            else:
                request["json"] = options.body

        with httpx.Client(timeout=options.timeout / 1000, transport=self.transport) as client:
            response = client.request(method, options.url, **request)
            logger.info("api_fetched", url=options.url, method=method, status=response.status_code)
            response.raise_for_status()

        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return {"content": response.text, "type": "text"}


class DatabaseSource(SourceHandler):
    """Runs a read-only query against a SQLite database file."""

    step_type = StepType.SOURCE_DATABASE

    class Options(msgspec.Struct, rename="camel"):
        database: str
        query: str
        parameters: list[Any] | dict[str, Any] = []

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> list[dict[str, Any]]:
        uri = f"{Path(options.database).resolve().as_uri()}?mode=ro"
        with contextlib.closing(sqlite3.connect(uri, uri=True)) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(options.query, options.parameters).fetchall()
        logger.info("database_queried", database=options.database, rows=len(rows))
        return [dict(row) for row in rows]


class _GraphSource(SourceHandler):
    def __init__(self, settings: GraphSettings | None = None, transport: httpx.BaseTransport | None = None):
        self.settings = settings if settings is not None else GraphSettings()
        self.transport = transport

    def client(self) -> GraphClient:
        if not self.settings.access_token:
            raise SourceUnavailable("Microsoft Graph access token is not configured")
        return GraphClient(self.settings, transport=self.transport)


def _require(value: str | None, field: str, operation: str) -> str:
    if not value:
        raise InvalidStepConfig(f"'{field}' is required for {operation}", field=field)
    return value


class SharePointSource(_GraphSource):
    """Lists sites, libraries, files and list items from SharePoint Online."""

    step_type = StepType.SOURCE_SHAREPOINT

    class Options(msgspec.Struct, rename="camel"):
        operation: Literal["list_sites", "list_document_libraries", "list_files", "get_list_items", "search_files"]
        site_id: str | None = None
        drive_id: str | None = None
        list_id: str | None = None
        folder_path: str | None = None
        query: str | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        op = options.operation
        with self.client() as graph:
            if op == "list_sites":
                return graph.get_values("/sites", params={"search": options.query or "*"})

            site = f"/sites/{_require(options.site_id, 'siteId', op)}"
            drive = f"/drives/{options.drive_id}" if options.drive_id else f"{site}/drive"
            if op == "list_document_libraries":
                return graph.get_values(f"{site}/drives")
            if op == "list_files":
                return graph.get_values(f"{drive}/{drive_path(options.folder_path)}/children")
            if op == "get_list_items":
                list_id = _require(options.list_id, "listId", op)
                items = graph.get_values(f"{site}/lists/{list_id}/items", params={"expand": "fields"})
                return [item.get("fields", item) for item in items]
            query = _require(options.query, "query", op)
            return graph.get_values(f"{drive}/root/search(q='{query}')")


class OneDriveSource(_GraphSource):
    """Reads the signed-in user's OneDrive."""

    step_type = StepType.SOURCE_ONEDRIVE

    class Options(msgspec.Struct, rename="camel"):
        operation: Literal["list_files", "get_drive_info", "search_files"]
        folder_path: str | None = None
        query: str | None = None

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        with self.client() as graph:
            if options.operation == "get_drive_info":
                return graph.get("/me/drive")
            if options.operation == "list_files":
                return graph.get_values(f"/me/drive/{drive_path(options.folder_path)}/children")
            query = _require(options.query, "query", options.operation)
            return graph.get_values(f"/me/drive/root/search(q='{query}')")
