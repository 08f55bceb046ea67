from __future__ import annotations

import base64
import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .form_state import FormState, GeoPoint, NamedPlace, TableRow

TAG_SEPARATOR = ";"
ROW_SEPARATOR = "; "
BLANK_CELL = "N/A"
NAMED_PLACE_MARKER = "ISLAND_ENTRY"

# Sheet column order, minus photo_N_url which the endpoint fills in.
CANONICAL_FIELDS = (
    "submission_id",
    "submitted_at_iso",
    "app_version",
    "language",
    "lat",
    "lon",
    "gps_accuracy_m",
    "category",
    "subcategory",
    "tags",
    "title_or_name",
    "notes",
    "contact_name",
    "contact_phone",
    "contact_other",
    "price_item",
    "price_mvr",
    "in_stock",
    "med_item",
    "med_availability",
    "med_price_mvr",
    "insulin_cold_chain",
    "light_working",
    "lux_ground",
    "hazard_type",
    "access_features",
    "isp",
    "down_mbps",
    "up_mbps",
    "ping_ms",
    "data_price_mvr_gb",
    "sample_type",
    "ph",
    "tds_ppm",
    "smell",
    "color",
    "pm25",
    "pm10",
    "noise_db",
    "temp_c",
    "rh",
    "project_type",
    "progress_status",
    "contractor",
    "mode",
    "operator_name",
    "days_of_week",
    "submitter_nickname",
    "rapid_entry_data",
    "consent_confirmed",
    "ip_hash",
)

# Columns the encoder computes itself; never copied from dynamic fields.
_RESERVED_FIELDS = {
    "submission_id",
    "submitted_at_iso",
    "app_version",
    "language",
    "lat",
    "lon",
    "gps_accuracy_m",
    "category",
    "subcategory",
    "tags",
    "notes",
    "rapid_entry_data",
    "consent_confirmed",
    "ip_hash",
}


@dataclass(frozen=True)
class EncodedAttachment:
    mime_type: str
    data: str


@dataclass(frozen=True)
class SubmissionRecord:
    submission_id: str
    submitted_at: str
    fields: dict[str, Any] = field(default_factory=dict)
    attachments: tuple[EncodedAttachment, ...] = ()

    def to_payload(self, include_attachments: bool = True) -> dict[str, Any]:
        payload = dict(self.fields)
        if include_attachments:
            payload["photos"] = [
                {"mimeType": item.mime_type, "data": item.data} for item in self.attachments
            ]
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SubmissionRecord:
        photos = payload.get("photos")
        attachments: list[EncodedAttachment] = []
        if isinstance(photos, list):
            for item in photos:
                if not isinstance(item, dict):
                    continue
                attachments.append(
                    EncodedAttachment(
                        mime_type=str(item.get("mimeType") or ""),
                        data=str(item.get("data") or ""),
                    )
                )
        fields = {key: payload.get(key, "") for key in CANONICAL_FIELDS}
        return cls(
            submission_id=str(payload.get("submission_id") or ""),
            submitted_at=str(payload.get("submitted_at_iso") or ""),
            fields=fields,
            attachments=tuple(attachments),
        )


def _iso_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _scalar(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    return value


def _client_hash(user_agent: str, submitted_at: str) -> str:
    digest = hashlib.sha1(f"{user_agent}{submitted_at}".encode("utf-8")).hexdigest()
    return digest[:8]


def _cell(row: TableRow, index: int) -> str:
    if index < len(row.values):
        return row.values[index].strip()
    return ""


def _price_basket(rows: list[TableRow]) -> str:
    items = []
    for row in rows:
        price = _cell(row, 0)
        stock = _cell(row, 1)
        if not (price or stock):
            continue
        items.append(f"{row.item}:{price or BLANK_CELL}:{stock or BLANK_CELL}")
    return ROW_SEPARATOR.join(items)


def _pharmacy_stock(rows: list[TableRow]) -> str:
    items = []
    for row in rows:
        availability = _cell(row, 0)
        if availability:
            items.append(f"{row.item}:{availability}")
    return ROW_SEPARATOR.join(items)


def _accessibility_audit(rows: list[TableRow]) -> str:
    items = []
    for row in rows:
        checked = _cell(row, 0).lower() in {"yes", "true", "1", "on"}
        items.append(f"{row.item}:{'YES' if checked else 'NO'}")
    return ROW_SEPARATOR.join(items)


TABLE_SERIALIZERS = {
    "price_item": _price_basket,
    "pharmacy_stock": _pharmacy_stock,
    "accessibility_audit": _accessibility_audit,
}


def serialize_table(subcategory: str, rows: list[TableRow]) -> str:
    serializer = TABLE_SERIALIZERS.get(subcategory)
    if serializer is None:
        return ""
    return serializer(rows)


def _location_fields(state: FormState) -> dict[str, Any]:
    location = state.location
    if isinstance(location, GeoPoint):
        return {
            "lat": location.lat,
            "lon": location.lon,
            "gps_accuracy_m": _scalar(location.accuracy_m),
        }
    if isinstance(location, NamedPlace):
        return {"lat": location.name, "lon": NAMED_PLACE_MARKER, "gps_accuracy_m": ""}
    return {"lat": "", "lon": "", "gps_accuracy_m": ""}


def encode_attachments(state: FormState) -> tuple[EncodedAttachment, ...]:
    return tuple(
        EncodedAttachment(
            mime_type=item.mime_type,
            data=base64.b64encode(item.content).decode("ascii"),
        )
        for item in state.attachments
    )


def encode_submission(
    state: FormState,
    *,
    app_version: str = "",
    language: str = "",
    user_agent: str = "",
    now: datetime | None = None,
) -> SubmissionRecord:
    """Build the schema-stable record the endpoint expects.

    The state is assumed to be validated already. Every canonical column is
    present in the output; anything the current subcategory does not collect
    is an empty string. ``state`` is read, never modified.
    """
    submission_id = str(uuid.uuid4())
    submitted_at = _iso_utc(now or datetime.now(timezone.utc))

    fields: dict[str, Any] = {name: "" for name in CANONICAL_FIELDS}
    for name, value in state.fields.items():
        if name in fields and name not in _RESERVED_FIELDS:
            fields[name] = _scalar(value)

    fields.update(_location_fields(state))
    fields.update(
        {
            "submission_id": submission_id,
            "submitted_at_iso": submitted_at,
            "app_version": app_version,
            "language": language,
            "category": state.category,
            "subcategory": state.subcategory,
            "tags": TAG_SEPARATOR.join(sorted(tag for tag in state.tags if tag)),
            "notes": state.notes or "",
            "rapid_entry_data": serialize_table(state.subcategory, state.table_rows),
            "consent_confirmed": "yes",
            "ip_hash": _client_hash(user_agent, submitted_at),
        }
    )

    return SubmissionRecord(
        submission_id=submission_id,
        submitted_at=submitted_at,
        fields=fields,
        attachments=encode_attachments(state),
    )
