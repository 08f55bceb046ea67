from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ...db.kv_store import PersistenceError
from .encoder import SubmissionRecord

logger = logging.getLogger(__name__)

PENDING_INDEX_KEY = "mapping_app:pending"
PAYLOAD_KEY_PREFIX = "mapping_app:fallback:"
DEFAULT_MAX_ENTRIES = 200
PENDING_WARN_THRESHOLD = 50


@dataclass
class PendingEntry:
    record: SubmissionRecord
    stored_at: str


@dataclass
class RepairReport:
    dropped_ids: list[str]
    adopted_ids: list[str]


def _payload_key(submission_id: str) -> str:
    return f"{PAYLOAD_KEY_PREFIX}{submission_id}"


class FallbackQueue:
    """Durable FIFO of submissions that could not be delivered.

    The index (``PENDING_INDEX_KEY``) holds only ids; each payload, attachments
    included, lives under its own key. Writes are payload first, index second,
    so a failure in between leaves an unindexed payload that ``repair`` adopts.
    """

    def __init__(self, storage, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._storage = storage
        self.max_entries = max_entries

    def _read_index(self) -> list[str]:
        raw = self._storage.get(PENDING_INDEX_KEY)
        if raw is None:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Pending index is unreadable; treating queue as empty")
            return []
        if not isinstance(parsed, list):
            return []
        return [str(item) for item in parsed if item]

    def _write_index(self, ids: list[str]) -> None:
        self._storage.set(PENDING_INDEX_KEY, json.dumps(ids))

    def enqueue(self, record: SubmissionRecord) -> bool:
        try:
            pending = self._read_index()
            already_indexed = record.submission_id in pending
            if not already_indexed and len(pending) >= self.max_entries:
                logger.error(
                    "Fallback queue is full (%s entries); refusing submission=%s",
                    len(pending),
                    record.submission_id,
                )
                return False

            payload: dict[str, Any] = record.to_payload()
            payload["stored_at"] = datetime.now(timezone.utc).isoformat()
            self._storage.set(_payload_key(record.submission_id), json.dumps(payload, ensure_ascii=True))

            if not already_indexed:
                pending.append(record.submission_id)
                self._write_index(pending)
        except PersistenceError:
            logger.exception("Fallback storage failed for submission=%s", record.submission_id)
            return False

        if len(pending) >= PENDING_WARN_THRESHOLD:
            logger.warning("Fallback queue holds %s pending submissions", len(pending))
        logger.info("Submission saved to fallback storage: %s", record.submission_id)
        return True

    def list_pending(self) -> list[str]:
        try:
            return self._read_index()
        except PersistenceError:
            logger.exception("Failed to read pending index")
            return []

    def load(self, submission_id: str) -> PendingEntry | None:
        try:
            raw = self._storage.get(_payload_key(submission_id))
        except PersistenceError:
            logger.exception("Failed to read pending submission=%s", submission_id)
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Pending submission=%s is unreadable", submission_id)
            return None
        if not isinstance(payload, dict):
            return None
        return PendingEntry(
            record=SubmissionRecord.from_payload(payload),
            stored_at=str(payload.get("stored_at") or ""),
        )

    def remove(self, submission_id: str) -> bool:
        try:
            self._storage.remove(_payload_key(submission_id))
            pending = self._read_index()
            if submission_id in pending:
                self._write_index([item for item in pending if item != submission_id])
        except PersistenceError:
            logger.exception("Failed to remove pending submission=%s", submission_id)
            return False
        return True

    def repair(self) -> RepairReport:
        """Reconcile the index with the stored payloads.

        Index ids without a payload are dropped; payloads no index entry
        points to are appended to the index so they are retried.
        """
        report = RepairReport(dropped_ids=[], adopted_ids=[])
        try:
            pending = self._read_index()
            payload_ids = {
                key[len(PAYLOAD_KEY_PREFIX):] for key in self._storage.keys(PAYLOAD_KEY_PREFIX)
            }

            kept = [item for item in pending if item in payload_ids]
            report.dropped_ids = [item for item in pending if item not in payload_ids]
            report.adopted_ids = sorted(payload_ids - set(pending))
            if report.dropped_ids or report.adopted_ids:
                self._write_index(kept + report.adopted_ids)
        except PersistenceError:
            logger.exception("Fallback queue repair failed")
            return report

        if report.dropped_ids or report.adopted_ids:
            logger.warning(
                "Fallback queue repaired: dropped %s dangling ids, re-indexed %s payloads",
                len(report.dropped_ids),
                len(report.adopted_ids),
            )
        return report
