import contextlib
import csv
import io
import json
import re
import smtplib
import sqlite3
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Callable, Literal
from urllib.parse import quote

import httpx
import msgspec
import structlog

from stepflow.config import GraphSettings, SmtpSettings
from stepflow.domain.errors import DestinationWriteError, InvalidInputData, InvalidStepConfig
from stepflow.domain.value_object import ExecutionContext, StepType
from stepflow.handlers.base import DestinationHandler, as_records
from stepflow.handlers.graph import GraphClient

__all__ = [
    "FileDestination",
    "ApiDestination",
    "DatabaseDestination",
    "EmailDestination",
    "CloudDestination",
]

logger = structlog.get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_csv(data: Any, header: bool = True) -> str:
    """
    Render records as CSV. Columns are the union of keys in first-seen order.

    :raises InvalidInputData: If any record is not an object
    """
    records = as_records(data)
    columns: list[str] = []
    for record in records:
        if not isinstance(record, dict):
            raise InvalidInputData("CSV output needs a list of records")
        columns.extend(k for k in record if k not in columns)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, lineterminator="\n")
    if header:
        writer.writeheader()
    writer.writerows(records)
    return buffer.getvalue()


def render(data: Any, fmt: str, header: bool = True) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2, default=str)
    if fmt == "csv":
        return to_csv(data, header=header)
    return data if isinstance(data, str) else json.dumps(data, default=str)


class FileDestination(DestinationHandler):
    """Writes the input to a local file."""

    step_type = StepType.DESTINATION_FILE

    class Options(msgspec.Struct, rename="camel"):
        file_path: str
        format: Literal["json", "csv", "text"] = "json"
        mode: Literal["overwrite", "append"] = "overwrite"
        encoding: str = "utf-8"

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        path = Path(options.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        appending = options.mode == "append" and path.exists() and path.stat().st_size > 0

        # appended CSV rows reuse the header already in the file
        content = render(input_data, options.format, header=not appending)
        if options.format != "csv":
            content += "\n"
        with path.open("a" if appending else "w", encoding=options.encoding) as fh:
            fh.write(content)

        logger.info("file_written", path=str(path), format=options.format, mode=options.mode, size=len(content))
        return {"path": str(path), "format": options.format, "mode": options.mode, "size": len(content)}


class ApiDestination(DestinationHandler):
    """Sends the input as a JSON body to an HTTP endpoint."""

    step_type = StepType.DESTINATION_API

    class Options(msgspec.Struct, rename="camel"):
        url: str
        method: Literal["POST", "PUT", "PATCH"] = "POST"
        headers: dict[str, str] = {}
        timeout: float = 30000

    def __init__(self, transport: httpx.BaseTransport | None = None):
        self.transport = transport

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        with httpx.Client(timeout=options.timeout / 1000, transport=self.transport) as client:
            response = client.request(options.method, options.url, json=input_data, headers=options.headers)
            logger.info("api_sent", url=options.url, method=options.method, status=response.status_code)
            response.raise_for_status()

        if "application/json" in response.headers.get("content-type", ""):
            body = response.json()
        else:
            body = response.text
        return {"status": response.status_code, "url": options.url, "response": body}


def _column_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bytes)):
        return value
    return json.dumps(value, default=str)


class DatabaseDestination(DestinationHandler):
    """Inserts records into a SQLite table, creating it if needed."""

    step_type = StepType.DESTINATION_DATABASE

    class Options(msgspec.Struct, rename="camel"):
        database: str
        table: str
        create_table: bool = True

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if not _IDENTIFIER.match(options.table):
            raise InvalidStepConfig(f"Invalid table name: {options.table!r}", field="table")
        records = as_records(input_data)
        if not all(isinstance(r, dict) for r in records):
            raise InvalidInputData("Database output needs a list of records")
        if not records:
            return {"table": options.table, "inserted": 0}

        columns: list[str] = []
        for record in records:
            columns.extend(k for k in record if k not in columns)
        bad = [c for c in columns if not _IDENTIFIER.match(c)]
        if bad:
            raise InvalidInputData(f"Invalid column names: {', '.join(bad)}")

        column_list = ", ".join(f'"{c}"' for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        rows = [tuple(_column_value(r.get(c)) for c in columns) for r in records]

        with contextlib.closing(sqlite3.connect(options.database)) as conn:
            with conn:
                if options.create_table:
                    conn.execute(f'CREATE TABLE IF NOT EXISTS "{options.table}" ({column_list})')
                conn.executemany(f'INSERT INTO "{options.table}" ({column_list}) VALUES ({placeholders})', rows)

        logger.info("rows_inserted", database=options.database, table=options.table, rows=len(rows))
        return {"table": options.table, "inserted": len(rows)}


class EmailDestination(DestinationHandler):
    """Sends a message over SMTP, optionally attaching the input as JSON."""

    step_type = StepType.DESTINATION_EMAIL

    class Options(msgspec.Struct, rename="camel"):
        to: list[str] | str
        subject: str
        body: str = ""
        cc: list[str] = []
        attach_data: bool = False
        attachment_name: str = "data.json"

    def __init__(self, settings: SmtpSettings | None = None, smtp_factory: Callable[..., smtplib.SMTP] | None = None):
        self.settings = settings if settings is not None else SmtpSettings()
        self.smtp_factory = smtp_factory or smtplib.SMTP

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        recipients = [options.to] if isinstance(options.to, str) else list(options.to)
        if not recipients:
            raise InvalidStepConfig("At least one recipient is required", field="to")
        if not self.settings.host:
            raise DestinationWriteError("SMTP host is not configured")

        message = EmailMessage()
        message["From"] = self.settings.sender
        message["To"] = ", ".join(recipients)
        if options.cc:
            message["Cc"] = ", ".join(options.cc)
        message["Subject"] = options.subject
        message.set_content(options.body)
        if options.attach_data:
            message.add_attachment(
                json.dumps(input_data, indent=2, default=str).encode("utf-8"),
                maintype="application",
                subtype="json",
                filename=options.attachment_name,
            )

        with self.smtp_factory(self.settings.host, self.settings.port) as smtp:
            if self.settings.use_tls:
                smtp.starttls()
            if self.settings.username:
                smtp.login(self.settings.username, self.settings.password or "")
            smtp.send_message(message)

        logger.info("email_sent", to=recipients, subject=options.subject, attached=options.attach_data)
        return {"sent": True, "to": recipients, "subject": options.subject}


class CloudDestination(DestinationHandler):
    """Uploads the input as a file to the user's OneDrive."""

    step_type = StepType.DESTINATION_CLOUD

    class Options(msgspec.Struct, rename="camel"):
        file_path: str
        format: Literal["json", "csv", "text"] = "json"

    def __init__(self, settings: GraphSettings | None = None, transport: httpx.BaseTransport | None = None):
        self.settings = settings if settings is not None else GraphSettings()
        self.transport = transport

    def run(self, options: Options, input_data: Any, context: ExecutionContext) -> Any:
        if not self.settings.access_token:
            raise DestinationWriteError("Microsoft Graph access token is not configured")
        target = options.file_path.strip("/")
        if not target:
            raise InvalidStepConfig("'filePath' must name a file", field="filePath")

        content_type = {"json": "application/json", "csv": "text/csv"}.get(options.format, "text/plain")
        content = render(input_data, options.format).encode("utf-8")
        with GraphClient(self.settings, transport=self.transport) as graph:
            item = graph.put_content(f"/me/drive/root:/{quote(target)}:/content", content, content_type)

        logger.info("cloud_uploaded", path=target, size=len(content))
        return {"id": item.get("id"), "name": item.get("name"), "webUrl": item.get("webUrl"), "size": len(content)}
