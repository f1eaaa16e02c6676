"""Background scheduler that triggers due integration syncs."""

import asyncio
import logging

logger = logging.getLogger(__name__)


async def run_scheduler(app) -> None:
    """Periodically run every sync whose ``next_sync_at`` has passed.

    Runs are claimed through the persisted state transition, so several
    API processes may run this loop against one database.
    """
    settings = app.state.settings
    interval = settings.scheduler_poll_interval_seconds
    logger.info("Sync scheduler started (poll_interval=%ds)", interval)

    while True:
        try:
            await asyncio.sleep(interval)

            orchestrator = getattr(app.state, "orchestrator", None)
            if orchestrator is None:
                continue

            results = await orchestrator.run_due_syncs(settings.scheduler_batch_size)
            if results:
                failed = sum(1 for r in results if not r.success)
                logger.info("Scheduler ran %d syncs (%d failed)", len(results), failed)

        except asyncio.CancelledError:
            logger.info("Sync scheduler stopped")
            break
        except Exception as exc:
            logger.exception("Scheduler error: %s", exc)
