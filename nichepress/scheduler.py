"""
Sequential batch runner across niches.

Deciding *when* to run belongs to cron or a similar external trigger; this
module only runs the daily workflow for every niche, one after another,
with a pause in between. One niche failing never stops the loop.
"""

import asyncio
import logging
from typing import Optional

from .config import PacingConfig
from .models import BatchRunReport, NicheRunOutcome
from .pipeline import OrchestrationPipeline
from .rate_limiter import FixedIntervalGate

logger = logging.getLogger(__name__)


class NicheBatchRunner:
    """Run the daily workflow for all niches in the store"""

    def __init__(
        self,
        pipeline: OrchestrationPipeline,
        pacing: Optional[PacingConfig] = None,
        sleep=None,
    ):
        self.pipeline = pipeline
        self.pacing = pacing or PacingConfig()
        self._niche_gate = FixedIntervalGate(self.pacing.niche_delay, sleep=sleep)

    async def run_all(self, stop: Optional[asyncio.Event] = None) -> BatchRunReport:
        report = BatchRunReport()
        niches = self.pipeline.store.list_niches()

        if not niches:
            logger.warning("No niches found in store. Skipping daily workflow.")
            return report

        logger.info(f"=== Starting daily workflow for {len(niches)} niches ===")

        for index, niche in enumerate(niches):
            if stop is not None and stop.is_set():
                report.stopped_early = True
                break

            try:
                logger.info(f"Processing niche: {niche.name} (ID: {niche.id})")
                await self.pipeline.run_daily_workflow(niche.id, stop=stop)
                report.outcomes.append(NicheRunOutcome(niche_id=niche.id, niche_name=niche.name, success=True))
                logger.info(f"Successfully completed workflow for niche: {niche.name}")
            except Exception as e:
                logger.exception(f"Error processing niche: {niche.name}")
                report.outcomes.append(
                    NicheRunOutcome(niche_id=niche.id, niche_name=niche.name, success=False, error=str(e))
                )

            is_last = index == len(niches) - 1
            if not is_last and not await self._niche_gate.wait(stop):
                report.stopped_early = True
                break

        logger.info(
            f"=== Daily workflow finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed ==="
        )
        return report
