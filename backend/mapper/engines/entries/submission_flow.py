import logging
from dataclasses import dataclass

from ...clients.endpoint import TransportError
from .draft_store import DraftStore
from .encoder import encode_submission
from .fallback_queue import FallbackQueue
from .form_state import FormState

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
QUEUED = "queued"
FAILED = "failed"

QUEUED_MESSAGE = "Saved locally, will retry when the connection is back."
FAILED_MESSAGE = "Failed to submit data and could not save it locally. Please try again."


@dataclass
class SubmitResult:
    status: str
    submission_id: str
    message: str | None = None


def _clear_if_unchanged(state: FormState, drafts: DraftStore, snapshot: dict, submission_id: str) -> None:
    # Edits made while the record was in flight belong to the next entry.
    if state.to_dict() != snapshot:
        logger.warning("Entry changed while submission=%s was in flight; keeping draft", submission_id)
        return
    drafts.clear(state)


async def submit_entry(
    state: FormState,
    *,
    drafts: DraftStore,
    queue: FallbackQueue,
    client,
    app_version: str = "",
    language: str = "",
    user_agent: str = "",
) -> SubmitResult:
    """Encode ``state`` and deliver it, falling back to the local queue.

    ``client`` may be ``None`` when no endpoint is configured; the entry is
    queued in that case. The draft and ``state`` are cleared once the entry
    is either delivered or safely queued, and kept otherwise. Edits made to
    ``state`` while the record is in flight are never cleared.
    """
    record = encode_submission(
        state,
        app_version=app_version,
        language=language,
        user_agent=user_agent,
    )

    snapshot = state.to_dict()
    failure: str | None = None
    if client is None:
        failure = "no endpoint configured"
    else:
        try:
            outcome = await client.submit(record)
            if outcome.ok:
                _clear_if_unchanged(state, drafts, snapshot, record.submission_id)
                logger.info("Submission delivered: %s", record.submission_id)
                return SubmitResult(status=DELIVERED, submission_id=record.submission_id)
            failure = outcome.message or "endpoint reported failure"
        except TransportError as err:
            failure = str(err)

    logger.warning("Submission %s not delivered (%s); queueing", record.submission_id, failure)
    if queue.enqueue(record):
        _clear_if_unchanged(state, drafts, snapshot, record.submission_id)
        return SubmitResult(
            status=QUEUED,
            submission_id=record.submission_id,
            message=QUEUED_MESSAGE,
        )

    logger.error("Submission %s could not be delivered or queued", record.submission_id)
    return SubmitResult(
        status=FAILED,
        submission_id=record.submission_id,
        message=FAILED_MESSAGE,
    )
