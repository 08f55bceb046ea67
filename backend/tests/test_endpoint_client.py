import asyncio
import io
import json
import sys
from pathlib import Path
from urllib.error import HTTPError, URLError

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from mapper.clients import endpoint
from mapper.db import database
from mapper.db.schema import init_db
from mapper.engines.entries.encoder import encode_submission
from mapper.engines.entries.form_state import Attachment, FormState, GeoPoint


class _DummyResponse:
    def __init__(self, status: int, body: bytes):
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _record():
    state = FormState(
        location=GeoPoint(lat=4.1755, lon=73.5093, accuracy_m=12),
        category="streetlight",
        subcategory="streetlight",
        fields={"light_working": "no"},
        tags={"urgent"},
        attachments=[Attachment(content=b"jpegbytes", mime_type="image/jpeg")],
    )
    return encode_submission(state, app_version="1.0.0", language="en")


def test_interpret_structured_success():
    outcome = endpoint.interpret_response(200, b'{"success": true, "row_number": 7}')
    assert isinstance(outcome, endpoint.StructuredOutcome)
    assert outcome.ok is True
    assert outcome.info["row_number"] == 7


def test_interpret_structured_failure_keeps_error_message():
    outcome = endpoint.interpret_response(200, b'{"success": false, "error": "Missing required field: lat"}')
    assert outcome.ok is False
    assert outcome.message == "Missing required field: lat"


def test_interpret_opaque_body_uses_status():
    ok = endpoint.interpret_response(200, b"<html><body>Saved</body></html>")
    assert isinstance(ok, endpoint.OpaqueOutcome)
    assert ok.ok is True
    assert endpoint.interpret_response(302, b"Moved").ok is False


def test_interpret_json_without_success_flag_is_opaque():
    outcome = endpoint.interpret_response(200, b'["not", "an", "object"]')
    assert isinstance(outcome, endpoint.OpaqueOutcome)
    assert outcome.ok is True


def test_submit_treats_non_json_200_as_success(monkeypatch):
    sent = {}

    def fake_urlopen(request, timeout):
        sent["body"] = request.data
        sent["content_type"] = request.get_header("Content-type")
        return _DummyResponse(200, b"OK")

    monkeypatch.setattr(endpoint, "urlopen", fake_urlopen)
    record = _record()
    client = endpoint.EndpointClient("https://example.invalid/exec")
    outcome = asyncio.run(client.submit(record))

    assert outcome.ok is True
    assert sent["content_type"] == "text/plain;charset=utf-8"
    payload = json.loads(sent["body"].decode("utf-8"))
    assert payload["submission_id"] == record.submission_id
    assert payload["photos"][0]["mimeType"] == "image/jpeg"


def test_submit_raises_transport_error_on_http_error(monkeypatch):
    def fake_urlopen(request, timeout):
        raise HTTPError(request.full_url, 500, "Server Error", {}, io.BytesIO(b"<html>oops</html>"))

    monkeypatch.setattr(endpoint, "urlopen", fake_urlopen)
    client = endpoint.EndpointClient("https://example.invalid/exec")
    with pytest.raises(endpoint.TransportError) as excinfo:
        asyncio.run(client.submit(_record()))
    assert excinfo.value.status == 500


def test_submit_raises_transport_error_when_unreachable(monkeypatch):
    def fake_urlopen(request, timeout):
        raise URLError("Name or service not known")

    monkeypatch.setattr(endpoint, "urlopen", fake_urlopen)
    client = endpoint.EndpointClient("https://example.invalid/exec")
    with pytest.raises(endpoint.TransportError):
        asyncio.run(client.submit(_record()))


def test_submit_raises_transport_error_on_timeout(monkeypatch):
    def fake_urlopen(request, timeout):
        raise TimeoutError("timed out")

    monkeypatch.setattr(endpoint, "urlopen", fake_urlopen)
    client = endpoint.EndpointClient("https://example.invalid/exec")
    with pytest.raises(endpoint.TransportError):
        asyncio.run(client.submit(_record()))


def test_multipart_body_carries_data_part_and_photos(monkeypatch):
    sent = {}

    def fake_urlopen(request, timeout):
        sent["body"] = request.data
        sent["content_type"] = request.get_header("Content-type")
        return _DummyResponse(200, b'{"success": true}')

    monkeypatch.setattr(endpoint, "urlopen", fake_urlopen)
    record = _record()
    client = endpoint.EndpointClient("https://example.invalid/exec", body_format="multipart")
    outcome = asyncio.run(client.submit(record))

    assert outcome.ok is True
    assert sent["content_type"].startswith("multipart/form-data; boundary=")
    assert b'name="data"' in sent["body"]
    assert b'name="photo_1"' in sent["body"]
    assert b"jpegbytes" in sent["body"]
    assert record.submission_id.encode() in sent["body"]


def test_unknown_body_format_is_rejected():
    with pytest.raises(ValueError):
        endpoint.EndpointClient("https://example.invalid/exec", body_format="xml")


def test_get_endpoint_client_requires_configuration(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", tmp_path / "island_mapper.db")
    monkeypatch.delenv("MAPPER_ENDPOINT_URL", raising=False)
    init_db()
    assert endpoint.get_endpoint_client() is None


def test_get_endpoint_client_prefers_environment(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", tmp_path / "island_mapper.db")
    monkeypatch.setenv("MAPPER_ENDPOINT_URL", "https://script.example/exec")
    init_db()
    client = endpoint.get_endpoint_client()
    assert client is not None
    assert client.endpoint_url == "https://script.example/exec"
    assert client.body_format == "json"
