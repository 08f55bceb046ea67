from __future__ import annotations

import json
import logging
import time
from typing import Callable

from ...db.kv_store import PersistenceError
from .form_state import FormState

logger = logging.getLogger(__name__)

DRAFT_KEY = "mapping_app:draft"
DRAFT_TTL_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class DraftStore:
    """Single-slot persistence of the entry being composed.

    Drafting is a convenience: storage failures are logged and never reach
    the caller.
    """

    def __init__(self, storage, clock: Callable[[], int] = _now_ms):
        self._storage = storage
        self._clock = clock

    def save(self, state: FormState) -> bool:
        payload = state.to_dict()
        payload["timestamp"] = self._clock()
        try:
            self._storage.set(DRAFT_KEY, json.dumps(payload, ensure_ascii=True))
        except PersistenceError:
            logger.exception("Failed to save draft")
            return False
        return True

    def load(self, now_ms: int | None = None) -> FormState | None:
        try:
            raw = self._storage.get(DRAFT_KEY)
        except PersistenceError:
            logger.exception("Failed to load draft")
            return None
        if raw is None:
            return None

        try:
            draft = json.loads(raw)
            timestamp = int(draft["timestamp"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable draft")
            self._remove_slot()
            return None

        current = self._clock() if now_ms is None else now_ms
        if current - timestamp > DRAFT_TTL_MS:
            logger.info("Discarding stale draft saved at %s", timestamp)
            self._remove_slot()
            return None

        return FormState.from_dict(draft)

    def clear(self, state: FormState | None = None) -> None:
        self._remove_slot()
        if state is not None:
            state.reset()

    def _remove_slot(self) -> None:
        try:
            self._storage.remove(DRAFT_KEY)
        except PersistenceError:
            logger.exception("Failed to clear draft")
