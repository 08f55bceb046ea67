from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 1000
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class GeoPoint:
    lat: float
    lon: float
    accuracy_m: float | None = None


@dataclass
class NamedPlace:
    name: str


Location = Union[GeoPoint, NamedPlace]


@dataclass
class TableRow:
    """One row of a one-pass table (price basket, pharmacy stock, checklist)."""

    item: str
    values: list[str] = field(default_factory=list)


@dataclass
class Attachment:
    content: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    filename: str = ""


@dataclass
class FormState:
    location: Location | None = None
    category: str = ""
    subcategory: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    tags: set[str] = field(default_factory=set)
    notes: str = ""
    table_rows: list[TableRow] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    def reset(self) -> None:
        defaults = FormState()
        self.location = defaults.location
        self.category = defaults.category
        self.subcategory = defaults.subcategory
        self.fields = defaults.fields
        self.tags = defaults.tags
        self.notes = defaults.notes
        self.table_rows = defaults.table_rows
        self.attachments = defaults.attachments

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": _location_to_dict(self.location),
            "category": self.category,
            "subcategory": self.subcategory,
            "fields": dict(self.fields),
            "tags": sorted(self.tags),
            "notes": self.notes,
            "table_rows": [{"item": row.item, "values": list(row.values)} for row in self.table_rows],
            "attachments": [
                {
                    "mime_type": item.mime_type,
                    "filename": item.filename,
                    "data": base64.b64encode(item.content).decode("ascii"),
                }
                for item in self.attachments
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormState:
        """Merge a stored snapshot onto a default state.

        Unknown keys are ignored and malformed values fall back to the default,
        so snapshots written by an older build still load.
        """
        state = cls()
        if not isinstance(data, dict):
            return state

        state.location = _location_from_dict(data.get("location"))
        state.category = _as_text(data.get("category"))
        state.subcategory = _as_text(data.get("subcategory"))

        raw_fields = data.get("fields")
        if isinstance(raw_fields, dict):
            state.fields = {
                str(key): value
                for key, value in raw_fields.items()
                if value is None or isinstance(value, (str, int, float, bool))
            }

        raw_tags = data.get("tags")
        if isinstance(raw_tags, (list, tuple, set)):
            state.tags = {str(tag) for tag in raw_tags if str(tag).strip()}

        state.notes = _as_text(data.get("notes"))[:NOTES_MAX_LENGTH]

        raw_rows = data.get("table_rows")
        if isinstance(raw_rows, list):
            for raw in raw_rows:
                if not isinstance(raw, dict) or not _as_text(raw.get("item")):
                    continue
                values = raw.get("values")
                state.table_rows.append(
                    TableRow(
                        item=_as_text(raw.get("item")),
                        values=[_as_text(v) for v in values] if isinstance(values, list) else [],
                    )
                )

        raw_attachments = data.get("attachments")
        if isinstance(raw_attachments, list):
            for raw in raw_attachments:
                attachment = _attachment_from_dict(raw)
                if attachment is not None:
                    state.attachments.append(attachment)
        return state


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _location_to_dict(location: Location | None) -> dict[str, Any] | None:
    if isinstance(location, GeoPoint):
        return {"lat": location.lat, "lon": location.lon, "accuracy_m": location.accuracy_m}
    if isinstance(location, NamedPlace):
        return {"place": location.name}
    return None


def _location_from_dict(raw: Any) -> Location | None:
    if not isinstance(raw, dict):
        return None
    place = _as_text(raw.get("place")).strip()
    if place:
        return NamedPlace(name=place)
    try:
        lat = float(raw["lat"])
        lon = float(raw["lon"])
    except (KeyError, TypeError, ValueError):
        return None
    accuracy = raw.get("accuracy_m")
    try:
        accuracy_m = float(accuracy) if accuracy is not None else None
    except (TypeError, ValueError):
        accuracy_m = None
    return GeoPoint(lat=lat, lon=lon, accuracy_m=accuracy_m)


def _attachment_from_dict(raw: Any) -> Attachment | None:
    if not isinstance(raw, dict):
        return None
    try:
        content = base64.b64decode(_as_text(raw.get("data")), validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Dropping undecodable attachment from stored draft")
        return None
    return Attachment(
        content=content,
        mime_type=_as_text(raw.get("mime_type")) or DEFAULT_MIME_TYPE,
        filename=_as_text(raw.get("filename")),
    )
