import mimetypes
from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..clients.endpoint import get_endpoint_client
from ..engines.entries.form_state import (
    NOTES_MAX_LENGTH,
    Attachment,
    FormState,
    GeoPoint,
    NamedPlace,
    TableRow,
)
from ..engines.entries.services import EntryServices, read_entry_settings
from ..engines.entries.submission_flow import DELIVERED, QUEUED, submit_entry

router = APIRouter(prefix="/entry", tags=["entry"])

MAX_PHOTO_BYTES = 10 * 1024 * 1024


class LocationPayload(BaseModel):
    lat: float | None = None
    lon: float | None = None
    accuracy_m: float | None = None
    place: str | None = None


class TableRowPayload(BaseModel):
    item: str
    values: list[str] = []


class UpdateEntryRequest(BaseModel):
    location: LocationPayload | None = None
    clear_location: bool = False
    category: str | None = None
    subcategory: str | None = None
    fields: dict[str, str | int | float | bool | None] | None = None
    tags: list[str] | None = None
    notes: str | None = None
    table_rows: list[TableRowPayload] | None = None


def entry_services(request: Request) -> EntryServices:
    services = getattr(request.app.state, "entries", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Entry services are not ready")
    return services


async def editable_entry(services: EntryServices = Depends(entry_services)) -> EntryServices:
    if services.submitting:
        raise HTTPException(status_code=409, detail="Entry is being submitted")
    return services


def _state_summary(state: FormState) -> dict[str, Any]:
    summary = state.to_dict()
    summary["attachments"] = [
        {
            "index": index,
            "mime_type": item.mime_type,
            "filename": item.filename,
            "size": len(item.content),
        }
        for index, item in enumerate(state.attachments)
    ]
    return summary


def _parse_location(payload: LocationPayload):
    place = (payload.place or "").strip()
    has_coordinates = payload.lat is not None or payload.lon is not None
    if place and has_coordinates:
        raise HTTPException(status_code=400, detail="Provide either coordinates or a place name, not both")
    if place:
        return NamedPlace(name=place)
    if payload.lat is None or payload.lon is None:
        raise HTTPException(status_code=400, detail="Both lat and lon are required")
    if not -90 <= payload.lat <= 90:
        raise HTTPException(status_code=400, detail="Invalid latitude value")
    if not -180 <= payload.lon <= 180:
        raise HTTPException(status_code=400, detail="Invalid longitude value")
    return GeoPoint(lat=payload.lat, lon=payload.lon, accuracy_m=payload.accuracy_m)


def _apply_update(state: FormState, payload: UpdateEntryRequest) -> None:
    if payload.clear_location:
        state.location = None
    elif payload.location is not None:
        state.location = _parse_location(payload.location)

    if payload.category is not None and payload.category != state.category:
        state.category = payload.category
        state.subcategory = ""
        state.fields = {}
        state.table_rows = []

    if payload.subcategory is not None and payload.subcategory != state.subcategory:
        state.subcategory = payload.subcategory
        state.fields = {}
        state.table_rows = []

    if payload.fields is not None:
        for name, value in payload.fields.items():
            if value is None or value == "":
                state.fields.pop(name, None)
            else:
                state.fields[name] = value

    if payload.tags is not None:
        state.tags = {tag.strip() for tag in payload.tags if tag.strip()}

    if payload.notes is not None:
        state.notes = payload.notes[:NOTES_MAX_LENGTH]

    if payload.table_rows is not None:
        state.table_rows = [
            TableRow(item=row.item.strip(), values=list(row.values))
            for row in payload.table_rows
            if row.item.strip()
        ]


@router.get("")
def get_entry(services: EntryServices = Depends(entry_services)):
    return _state_summary(services.state)


@router.patch("")
def update_entry(payload: UpdateEntryRequest, services: EntryServices = Depends(editable_entry)):
    _apply_update(services.state, payload)
    services.drafts.save(services.state)
    return _state_summary(services.state)


@router.post("/photos")
async def add_photo(
    file: UploadFile = File(...),
    services: EntryServices = Depends(editable_entry),
):
    max_photos = read_entry_settings()["max_photos"]
    if len(services.state.attachments) >= max_photos:
        raise HTTPException(status_code=400, detail=f"Maximum {max_photos} photos allowed")

    filename = file.filename or ""
    mime_type = file.content_type or mimetypes.guess_type(filename)[0] or ""
    if not mime_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image uploads are accepted")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > MAX_PHOTO_BYTES:
        raise HTTPException(status_code=400, detail="Photo is too large")

    services.state.attachments.append(Attachment(content=content, mime_type=mime_type, filename=filename))
    services.drafts.save(services.state)
    return _state_summary(services.state)


@router.delete("/photos/{index}")
def remove_photo(index: int, services: EntryServices = Depends(editable_entry)):
    if index < 0 or index >= len(services.state.attachments):
        raise HTTPException(status_code=404, detail="Photo not found")
    services.state.attachments.pop(index)
    services.drafts.save(services.state)
    return _state_summary(services.state)


@router.post("/new")
def start_new_entry(services: EntryServices = Depends(editable_entry)):
    services.drafts.clear(services.state)
    return _state_summary(services.state)


@router.post("/submit")
async def submit_current_entry(request: Request, services: EntryServices = Depends(entry_services)):
    settings = read_entry_settings()
    if services.submitting:
        raise HTTPException(status_code=409, detail="Entry is being submitted")
    services.submitting = True
    try:
        result = await submit_entry(
            services.state,
            drafts=services.drafts,
            queue=services.queue,
            client=get_endpoint_client(),
            app_version=settings["app_version"],
            language=settings["language"],
            user_agent=request.headers.get("user-agent", ""),
        )
    finally:
        services.submitting = False
    body = {
        "status": result.status,
        "submission_id": result.submission_id,
        "message": result.message,
    }
    if result.status == DELIVERED:
        return body
    if result.status == QUEUED:
        return JSONResponse(status_code=202, content=body)
    raise HTTPException(status_code=503, detail=result.message)
