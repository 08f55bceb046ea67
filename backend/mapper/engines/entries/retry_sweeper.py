import logging
from dataclasses import dataclass

from ...clients.endpoint import TransportError
from .fallback_queue import FallbackQueue

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    not_dequeued: int = 0
    remaining: int = 0


class RetrySweeper:
    """Replays queued submissions one at a time.

    The id list is snapshotted when the sweep starts; entries queued while it
    runs wait for the next sweep. A failure on one entry never stops the rest.
    """

    def __init__(self, queue: FallbackQueue, client):
        self._queue = queue
        self._client = client

    async def sweep_once(self) -> SweepReport:
        report = SweepReport()
        pending = list(self._queue.list_pending())
        if not pending:
            return report

        logger.info("Retrying %s pending submissions", len(pending))
        for submission_id in pending:
            entry = self._queue.load(submission_id)
            if entry is None:
                logger.warning("Skipping pending submission=%s: payload missing", submission_id)
                report.skipped += 1
                continue

            report.attempted += 1
            try:
                outcome = await self._client.submit(entry.record)
            except TransportError as err:
                logger.info("Retry failed for submission=%s: %s", submission_id, err)
                report.failed += 1
                continue
            except Exception:
                logger.exception("Unexpected error retrying submission=%s", submission_id)
                report.failed += 1
                continue

            if not outcome.ok:
                logger.info(
                    "Endpoint rejected submission=%s: %s",
                    submission_id,
                    outcome.message or "no message",
                )
                report.failed += 1
                continue

            report.delivered += 1
            if not self._queue.remove(submission_id):
                # Still indexed, so the next sweep will send it again.
                logger.error("Submission=%s delivered but could not be dequeued", submission_id)
                report.not_dequeued += 1
                continue
            logger.info("Successfully resubmitted: %s", submission_id)

        report.remaining = len(self._queue.list_pending())
        return report
