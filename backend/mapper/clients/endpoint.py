"""HTTP client for the spreadsheet-backed collection endpoint.

The endpoint (an Apps Script web app in production) answers either with a
JSON body carrying an explicit ``success`` flag or with an opaque HTML/text
body where only the status code means anything. Both are folded into one
``Outcome`` shape here so callers never inspect raw responses.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen
from uuid import uuid4

from ..db.database import get_db
from ..engines.entries.encoder import SubmissionRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
BODY_FORMATS = {"json", "multipart"}
USER_AGENT = "Island-Mapper/0.1"


class TransportError(RuntimeError):
    """Raised when a submission could not be delivered."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


@dataclass
class StructuredOutcome:
    ok: bool
    message: str | None = None
    info: dict[str, Any] = field(default_factory=dict)


@dataclass
class OpaqueOutcome:
    ok: bool
    status: int
    message: str | None = None

    @property
    def info(self) -> dict[str, Any]:
        return {"status": self.status}


Outcome = Union[StructuredOutcome, OpaqueOutcome]


def _is_success_status(status: int) -> bool:
    return 200 <= status < 300


def _parse_json_obj(body: bytes) -> dict[str, Any] | None:
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def interpret_response(status: int, body: bytes) -> Outcome:
    parsed = _parse_json_obj(body)
    if parsed is not None and "success" in parsed:
        ok = bool(parsed.get("success")) and _is_success_status(status)
        message = parsed.get("error") or parsed.get("message")
        info = {key: value for key, value in parsed.items() if key not in {"success", "error"}}
        return StructuredOutcome(ok=ok, message=str(message) if message else None, info=info)
    return OpaqueOutcome(ok=_is_success_status(status), status=status)


def _multipart_body(record: SubmissionRecord) -> tuple[bytes, str]:
    boundary = f"----IslandMapper{uuid4().hex}"
    lines: list[bytes] = []
    data = json.dumps(record.to_payload(include_attachments=False), ensure_ascii=True)
    lines.append(f"--{boundary}".encode())
    lines.append(b'Content-Disposition: form-data; name="data"')
    lines.append(b"Content-Type: application/json")
    lines.append(b"")
    lines.append(data.encode("utf-8"))
    for index, attachment in enumerate(record.attachments, start=1):
        lines.append(f"--{boundary}".encode())
        lines.append(
            f'Content-Disposition: form-data; name="photo_{index}"; filename="photo_{index}"'.encode()
        )
        lines.append(f"Content-Type: {attachment.mime_type}".encode())
        lines.append(b"")
        lines.append(base64.b64decode(attachment.data))
    lines.append(f"--{boundary}--".encode())
    lines.append(b"")
    return b"\r\n".join(lines), f"multipart/form-data; boundary={boundary}"


class EndpointClient:
    def __init__(
        self,
        endpoint_url: str,
        body_format: str = "json",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        if body_format not in BODY_FORMATS:
            raise ValueError(f"Unsupported body format: {body_format}")
        self.endpoint_url = endpoint_url
        self.body_format = body_format
        self.timeout = timeout

    def _build_request(self, record: SubmissionRecord) -> Request:
        if self.body_format == "multipart":
            body, content_type = _multipart_body(record)
        else:
            body = json.dumps(record.to_payload(), ensure_ascii=True).encode("utf-8")
            # text/plain keeps Apps Script from demanding a CORS preflight.
            content_type = "text/plain;charset=utf-8"
        return Request(
            self.endpoint_url,
            data=body,
            method="POST",
            headers={"Content-Type": content_type, "User-Agent": USER_AGENT},
        )

    def _post(self, record: SubmissionRecord) -> Outcome:
        request = self._build_request(record)
        try:
            with urlopen(request, timeout=self.timeout) as response:  # noqa: S310
                return interpret_response(response.status, response.read())
        except HTTPError as err:
            body = err.read() if err.fp is not None else b""
            parsed = _parse_json_obj(body)
            detail = parsed.get("error") if parsed else None
            raise TransportError(
                f"Endpoint returned HTTP {err.code}" + (f": {detail}" if detail else ""),
                status=err.code,
            ) from err
        except (URLError, TimeoutError, OSError) as err:
            raise TransportError(f"Endpoint unreachable: {err}") from err

    async def submit(self, record: SubmissionRecord) -> Outcome:
        outcome = await asyncio.to_thread(self._post, record)
        logger.info(
            "Endpoint answered for submission=%s ok=%s (%s)",
            record.submission_id,
            outcome.ok,
            type(outcome).__name__,
        )
        return outcome


def _read_settings() -> dict[str, Any]:
    conn: sqlite3.Connection | None = None
    try:
        conn = get_db()
        row = conn.execute(
            "SELECT endpoint_url, body_format FROM settings WHERE id = 1"
        ).fetchone()
        return dict(row) if row is not None else {}
    except sqlite3.Error:
        return {}
    finally:
        if conn is not None:
            conn.close()


def _resolve_endpoint_url(settings: dict[str, Any]) -> str | None:
    env_url = os.environ.get("MAPPER_ENDPOINT_URL", "").strip()
    if env_url:
        return env_url
    value = str(settings.get("endpoint_url") or "").strip()
    return value or None


def get_endpoint_client() -> Optional[EndpointClient]:
    """Return a client for the configured endpoint, or ``None``.

    The URL comes from ``MAPPER_ENDPOINT_URL`` or the settings table. Callers
    must treat ``None`` as "endpoint unavailable" and fall back to the queue.
    """
    settings = _read_settings()
    endpoint_url = _resolve_endpoint_url(settings)
    if not endpoint_url:
        logger.warning(
            "MAPPER_ENDPOINT_URL is not set; submissions will be queued locally. "
            "Set the endpoint in your environment or in Settings."
        )
        return None

    body_format = str(settings.get("body_format") or "json").strip().lower()
    if body_format not in BODY_FORMATS:
        logger.warning("Unknown body_format %r in settings, using json", body_format)
        body_format = "json"
    return EndpointClient(endpoint_url, body_format=body_format)
