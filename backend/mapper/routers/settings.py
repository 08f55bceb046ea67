from datetime import datetime
import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from ..clients.endpoint import BODY_FORMATS
from ..db.database import get_db

router = APIRouter(prefix="", tags=["settings"])


class UpdateSettingsRequest(BaseModel):
    endpoint_url: str | None = None
    body_format: str | None = None
    app_version: str | None = None
    language: str | None = None
    retry_interval_minutes: int | None = None
    max_pending_entries: int | None = None
    max_photos: int | None = None


def db_conn():
    conn = get_db()
    try:
        yield conn
    finally:
        conn.close()


def _ensure_settings_row(db: sqlite3.Connection) -> None:
    db.execute(
        """
        INSERT INTO settings (id)
        VALUES (1)
        ON CONFLICT(id) DO NOTHING
        """
    )
    db.commit()


def _get_settings_or_500(db: sqlite3.Connection) -> dict[str, Any]:
    _ensure_settings_row(db)
    row = db.execute("SELECT * FROM settings WHERE id = 1").fetchone()
    if row is None:
        raise HTTPException(status_code=500, detail="Settings row missing")
    return dict(row)


@router.get("/settings")
def get_settings(db: sqlite3.Connection = Depends(db_conn)):
    return _get_settings_or_500(db)


@router.put("/settings")
def update_settings(
    payload: UpdateSettingsRequest,
    request: Request,
    db: sqlite3.Connection = Depends(db_conn),
):
    updates: dict[str, Any] = {}

    if payload.endpoint_url is not None:
        url = payload.endpoint_url.strip()
        if url and not url.startswith(("http://", "https://")):
            raise HTTPException(status_code=400, detail="endpoint_url must be an http(s) URL")
        updates["endpoint_url"] = url or None

    if payload.body_format is not None:
        if payload.body_format not in BODY_FORMATS:
            raise HTTPException(status_code=400, detail="body_format is invalid")
        updates["body_format"] = payload.body_format

    if payload.app_version is not None:
        updates["app_version"] = payload.app_version.strip()

    if payload.language is not None:
        updates["language"] = payload.language.strip()

    if payload.retry_interval_minutes is not None:
        if payload.retry_interval_minutes < 1:
            raise HTTPException(status_code=400, detail="retry_interval_minutes must be >= 1")
        updates["retry_interval_minutes"] = payload.retry_interval_minutes

    if payload.max_pending_entries is not None:
        if payload.max_pending_entries < 1 or payload.max_pending_entries > 1000:
            raise HTTPException(status_code=400, detail="max_pending_entries must be between 1 and 1000")
        updates["max_pending_entries"] = payload.max_pending_entries

    if payload.max_photos is not None:
        if payload.max_photos < 1 or payload.max_photos > 10:
            raise HTTPException(status_code=400, detail="max_photos must be between 1 and 10")
        updates["max_photos"] = payload.max_photos

    if not updates:
        return _get_settings_or_500(db)

    updates["updated_at"] = datetime.utcnow().isoformat()
    assignments = ", ".join(f"{column} = ?" for column in updates.keys())
    values = list(updates.values())

    _ensure_settings_row(db)
    db.execute(
        f"UPDATE settings SET {assignments} WHERE id = 1",
        values,
    )
    db.commit()

    entries = getattr(request.app.state, "entries", None)
    if entries is not None and "max_pending_entries" in updates:
        entries.queue.max_entries = updates["max_pending_entries"]
    return _get_settings_or_500(db)
