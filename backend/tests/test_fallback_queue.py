import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from conftest import FailingStore
from mapper.engines.entries.encoder import encode_submission
from mapper.engines.entries.fallback_queue import (
    PAYLOAD_KEY_PREFIX,
    PENDING_INDEX_KEY,
    FallbackQueue,
)
from mapper.engines.entries.form_state import Attachment, FormState, GeoPoint


def _record(category: str = "streetlight"):
    state = FormState(
        location=GeoPoint(lat=4.17, lon=73.5, accuracy_m=8),
        category=category,
        subcategory=category,
        fields={"light_working": "yes"},
        tags={"urgent", "night"},
        attachments=[Attachment(content=b"imagebytes", mime_type="image/jpeg")],
    )
    return encode_submission(state, app_version="1.0.0", language="en")


def test_enqueue_makes_entry_listed_and_recoverable(kv_store):
    queue = FallbackQueue(kv_store)
    record = _record()

    assert queue.enqueue(record) is True
    assert queue.list_pending() == [record.submission_id]

    entry = queue.load(record.submission_id)
    assert entry is not None
    assert entry.record.fields == record.fields
    assert entry.record.attachments == record.attachments
    assert entry.stored_at


def test_pending_order_is_fifo(kv_store):
    queue = FallbackQueue(kv_store)
    records = [_record(), _record(), _record()]
    for record in records:
        queue.enqueue(record)
    assert queue.list_pending() == [record.submission_id for record in records]


def test_reenqueue_does_not_duplicate_index(kv_store):
    queue = FallbackQueue(kv_store)
    record = _record()
    queue.enqueue(record)
    queue.enqueue(record)
    assert queue.list_pending() == [record.submission_id]


def test_remove_deletes_payload_and_index_entry(kv_store):
    queue = FallbackQueue(kv_store)
    first, second = _record(), _record()
    queue.enqueue(first)
    queue.enqueue(second)

    assert queue.remove(first.submission_id) is True
    assert queue.list_pending() == [second.submission_id]
    assert queue.load(first.submission_id) is None
    assert kv_store.get(f"{PAYLOAD_KEY_PREFIX}{first.submission_id}") is None


def test_enqueue_reports_storage_failure():
    queue = FallbackQueue(FailingStore())
    assert queue.enqueue(_record()) is False


def test_enqueue_refuses_when_queue_is_full(kv_store):
    queue = FallbackQueue(kv_store, max_entries=2)
    assert queue.enqueue(_record()) is True
    assert queue.enqueue(_record()) is True
    assert queue.enqueue(_record()) is False
    assert len(queue.list_pending()) == 2


def test_unreadable_index_reads_as_empty(kv_store):
    kv_store.set(PENDING_INDEX_KEY, "not-json")
    assert FallbackQueue(kv_store).list_pending() == []


def test_index_write_failure_leaves_payload_that_repair_adopts(kv_store):
    record = _record()
    broken = FallbackQueue(FailingStore(kv_store, fail_on_keys=[PENDING_INDEX_KEY]))
    assert broken.enqueue(record) is False

    queue = FallbackQueue(kv_store)
    assert queue.list_pending() == []

    report = queue.repair()
    assert report.adopted_ids == [record.submission_id]
    assert queue.list_pending() == [record.submission_id]
    assert queue.load(record.submission_id) is not None


def test_repair_drops_ids_without_payload(kv_store):
    queue = FallbackQueue(kv_store)
    kept = _record()
    queue.enqueue(kept)
    kv_store.set(PENDING_INDEX_KEY, f'["ghost-id", "{kept.submission_id}"]')

    report = queue.repair()
    assert report.dropped_ids == ["ghost-id"]
    assert queue.list_pending() == [kept.submission_id]


def test_repair_is_noop_on_consistent_queue(kv_store):
    queue = FallbackQueue(kv_store)
    queue.enqueue(_record())
    report = queue.repair()
    assert report.dropped_ids == []
    assert report.adopted_ids == []
