"""Draft persistence, encoding and offline delivery of field entries."""

from .draft_store import DraftStore
from .encoder import SubmissionRecord, encode_submission
from .fallback_queue import FallbackQueue, PendingEntry
from .form_state import Attachment, FormState, GeoPoint, NamedPlace, TableRow

__all__ = [
    "Attachment",
    "DraftStore",
    "FallbackQueue",
    "FormState",
    "GeoPoint",
    "NamedPlace",
    "PendingEntry",
    "SubmissionRecord",
    "TableRow",
    "encode_submission",
]
