"""
Enrollment Tick Workflow - Agenda o execution loop em intervalo fixo.

Ticks nunca se sobrepõem: o próximo só é agendado depois que o anterior
termina. O histórico é renovado via continue_as_new a cada ticks_per_run.
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional
from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from dripflow.temporal.activities import run_tick_activity


@workflow.defn
class EnrollmentTickWorkflow:
    """
    Workflow de longa duração que dispara um tick por intervalo.

    Handles:
    - Intervalo entre ticks
    - Falha de um tick (registrada, o próximo tick segue normalmente)
    - Signal de parada
    """

    def __init__(self):
        self._stop_requested = False
        self._last_summary: Optional[Dict[str, Any]] = None
        self._ticks = 0

    @workflow.run
    async def run(self, interval_seconds: int, tick_timeout: int, ticks_per_run: int) -> Dict[str, Any]:
        workflow.logger.info(f"Starting EnrollmentTickWorkflow (interval={interval_seconds}s)")

        retry_policy = RetryPolicy(
            initial_interval=timedelta(seconds=5),
            maximum_interval=timedelta(seconds=30),
            maximum_attempts=2,
        )

        while not self._stop_requested:
            try:
                self._last_summary = await workflow.execute_activity(
                    run_tick_activity,
                    start_to_close_timeout=timedelta(seconds=tick_timeout),
                    retry_policy=retry_policy,
                )
            except Exception as e:
                # Enrollments não processados ficam prontos para o próximo tick
                workflow.logger.error(f"Tick failed: {e}")

            self._ticks += 1
            if self._ticks >= ticks_per_run:
                workflow.continue_as_new(args=[interval_seconds, tick_timeout, ticks_per_run])

            try:
                await workflow.wait_condition(
                    lambda: self._stop_requested,
                    timeout=timedelta(seconds=interval_seconds),
                )
            except asyncio.TimeoutError:
                pass

        workflow.logger.info(f"EnrollmentTickWorkflow stopped after {self._ticks} ticks")
        return {'ticks': self._ticks, 'last_summary': self._last_summary}

    @workflow.signal
    async def stop(self):
        self._stop_requested = True

    @workflow.query
    def last_summary(self) -> Optional[Dict[str, Any]]:
        return self._last_summary
