"""Tests for the sequential niche batch runner."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from nichepress import ExplorationLog, Niche, NicheBatchRunner, OrchestrationPipeline, WorkflowError


def _pipeline(store, failing=()):
    pipeline = MagicMock(spec=OrchestrationPipeline)
    pipeline.store = store

    async def run(niche_id, stop=None):
        if niche_id in failing:
            raise WorkflowError(niche_id, "LLM API returned HTTP 500")
        return ExplorationLog(niche_id=niche_id)

    pipeline.run_daily_workflow = AsyncMock(side_effect=run)
    return pipeline


class TestNicheBatchRunner:
    """Tests for NicheBatchRunner.run_all."""

    @pytest.mark.asyncio
    async def test_empty_store(self, store, fake_sleep):
        report = await NicheBatchRunner(_pipeline(store), sleep=fake_sleep).run_all()
        assert report.outcomes == []
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, store, fake_sleep):
        """One failing niche does not stop the others."""
        coffee = store.add_niche(Niche(name="coffee"))
        tea = store.add_niche(Niche(name="tea"))
        cocoa = store.add_niche(Niche(name="cocoa"))
        pipeline = _pipeline(store, failing={tea.id})

        report = await NicheBatchRunner(pipeline, sleep=fake_sleep).run_all()

        assert [(o.niche_name, o.success) for o in report.outcomes] == [
            ("coffee", True),
            ("tea", False),
            ("cocoa", True),
        ]
        assert "HTTP 500" in report.failed[0].error
        assert [c.args[0] for c in pipeline.run_daily_workflow.await_args_list] == [coffee.id, tea.id, cocoa.id]
        # Pause between niches only
        assert fake_sleep.calls == [5.0, 5.0]
        assert report.stopped_early is False

    @pytest.mark.asyncio
    async def test_stop_signal(self, store, fake_sleep):
        store.add_niche(Niche(name="coffee"))
        store.add_niche(Niche(name="tea"))
        stop = asyncio.Event()
        pipeline = _pipeline(store)

        async def run_then_stop(niche_id, stop=None):
            stop.set()
            return ExplorationLog(niche_id=niche_id)

        pipeline.run_daily_workflow.side_effect = run_then_stop

        report = await NicheBatchRunner(pipeline, sleep=fake_sleep).run_all(stop=stop)

        assert len(report.outcomes) == 1
        assert report.stopped_early is True
        assert fake_sleep.calls == []
