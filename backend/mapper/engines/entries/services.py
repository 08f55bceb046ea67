import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from ...db.database import get_db
from ...db.kv_store import SqliteKeyValueStore
from .draft_store import DraftStore
from .fallback_queue import DEFAULT_MAX_ENTRIES, FallbackQueue
from .form_state import FormState
from .retry_sweeper import RetrySweeper, SweepReport

logger = logging.getLogger(__name__)

DEFAULT_APP_VERSION = "1.0.0"
DEFAULT_LANGUAGE = "en"
DEFAULT_MAX_PHOTOS = 5
DEFAULT_RETRY_INTERVAL_MINUTES = 15


@dataclass
class EntryServices:
    """Everything the entry endpoints and the retry scheduler share.

    ``state`` is the one in-progress entry on this device. Handlers mutate it
    in place and mirror every change into ``drafts``. ``submitting`` is set
    while a submission of ``state`` is in flight; edits are refused meanwhile.
    """

    drafts: DraftStore
    queue: FallbackQueue
    state: FormState = field(default_factory=FormState)
    sweep_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    submitting: bool = False

    async def sweep(self, client) -> SweepReport:
        async with self.sweep_lock:
            report = await RetrySweeper(self.queue, client).sweep_once()
            self.queue.repair()
            return report


def read_entry_settings(db_path: str | Path | None = None) -> dict[str, Any]:
    conn: sqlite3.Connection | None = None
    try:
        conn = get_db(db_path)
        row = conn.execute("SELECT * FROM settings WHERE id = 1").fetchone()
        settings = dict(row) if row is not None else {}
    except sqlite3.Error:
        logger.exception("Failed to read entry settings")
        settings = {}
    finally:
        if conn is not None:
            conn.close()

    return {
        "app_version": str(settings.get("app_version") or DEFAULT_APP_VERSION),
        "language": str(settings.get("language") or DEFAULT_LANGUAGE),
        "max_pending_entries": _positive_int(settings.get("max_pending_entries"), DEFAULT_MAX_ENTRIES),
        "max_photos": _positive_int(settings.get("max_photos"), DEFAULT_MAX_PHOTOS),
        "retry_interval_minutes": _positive_int(
            settings.get("retry_interval_minutes"), DEFAULT_RETRY_INTERVAL_MINUTES
        ),
    }


def _positive_int(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def build_entry_services(db_path: str | Path | None = None) -> EntryServices:
    storage = SqliteKeyValueStore(db_path)
    settings = read_entry_settings(db_path)
    drafts = DraftStore(storage)
    queue = FallbackQueue(storage, max_entries=settings["max_pending_entries"])
    queue.repair()

    state = drafts.load()
    if state is not None:
        logger.info("Draft restored (category=%s)", state.category or "-")
    return EntryServices(drafts=drafts, queue=queue, state=state or FormState())


def record_sweep_run(
    report: SweepReport,
    trigger: str,
    started_at: str,
    db_path: str | Path | None = None,
) -> str:
    run_id = f"sweep-{uuid4().hex[:10]}"
    conn: sqlite3.Connection | None = None
    try:
        conn = get_db(db_path)
        conn.execute(
            """
            INSERT INTO sweep_runs (id, started_at, completed_at, attempted, delivered, failed, skipped, trigger_source)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run_id,
                started_at,
                datetime.utcnow().isoformat(),
                report.attempted,
                report.delivered,
                report.failed,
                report.skipped,
                trigger,
            ),
        )
        conn.commit()
    except sqlite3.Error:
        logger.exception("Failed to record sweep run")
    finally:
        if conn is not None:
            conn.close()
    return run_id
