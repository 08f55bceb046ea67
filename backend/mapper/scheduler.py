import asyncio
import logging
import os
from datetime import datetime

from .clients.endpoint import get_endpoint_client
from .engines.entries.services import EntryServices, read_entry_settings, record_sweep_run

logger = logging.getLogger(__name__)

_scheduler_task: asyncio.Task | None = None


def _resolve_interval_minutes() -> int:
    env_value = os.environ.get("RETRY_INTERVAL_MINUTES")
    if env_value:
        try:
            parsed = int(env_value)
            if parsed > 0:
                return parsed
        except ValueError:
            logger.warning("Invalid RETRY_INTERVAL_MINUTES value: %s", env_value)
    return read_entry_settings()["retry_interval_minutes"]


async def run_sweep(services: EntryServices, trigger: str):
    """Sweep the fallback queue once; ``None`` when no endpoint is configured."""
    client = get_endpoint_client()
    if client is None:
        logger.info("Sweep skipped: no endpoint configured")
        return None
    started_at = datetime.utcnow().isoformat()
    report = await services.sweep(client)
    record_sweep_run(report, trigger, started_at)
    return report


async def _retry_scheduler_loop(services: EntryServices) -> None:
    while True:
        interval_minutes = _resolve_interval_minutes()

        if services.queue.list_pending():
            try:
                await run_sweep(services, "scheduler")
            except Exception:
                logger.exception("Scheduled retry sweep failed")

        await asyncio.sleep(interval_minutes * 60)


def start_retry_scheduler(services: EntryServices) -> None:
    global _scheduler_task
    if _scheduler_task and not _scheduler_task.done():
        return
    loop = asyncio.get_running_loop()
    _scheduler_task = loop.create_task(_retry_scheduler_loop(services))
    logger.info("Retry scheduler started")


async def stop_retry_scheduler() -> None:
    global _scheduler_task
    if _scheduler_task is None:
        return
    _scheduler_task.cancel()
    try:
        await _scheduler_task
    except asyncio.CancelledError:
        pass
    _scheduler_task = None
    logger.info("Retry scheduler stopped")
