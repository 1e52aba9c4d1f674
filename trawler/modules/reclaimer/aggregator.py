"""
Outcome Aggregator
==================
Folds per-batch terminal results into one ClosureOutcome.

- Only CONFIRMED and ASSUMED_CONFIRMED batches add to the totals
- FAILED batches stay in the report with zero contribution
- Each batch is counted at most once (keyed by batch_id)
- One ProgressEvent per resolved batch

The aggregator is the single writer of the progress counter. Concurrent
confirmation tasks hand their results over an asyncio.Queue (see consume()).

Stats recording is fire-and-forget: it runs as a background task after the
outcome is built and its failure is only logged.
"""

import asyncio
from typing import AsyncIterator, Dict, Optional, Set

from trawler.modules.reclaimer.models import BatchResult, ClosureOutcome, ProgressEvent
from trawler.shared.infrastructure.stats_recorder import StatsRecorder
from trawler.shared.system.logging import Logger


class OutcomeAggregator:
    def __init__(self, total_count: int, recorder: Optional[StatsRecorder] = None, owner: str = ""):
        self.total_count = total_count
        self.recorder = recorder
        self.owner = owner

        self.closed_count = 0
        self.lamports_recovered = 0
        self._results: Dict[int, BatchResult] = {}
        self._stats_tasks: Set[asyncio.Task] = set()

    @property
    def resolved_batches(self) -> int:
        return len(self._results)

    def add(self, result: BatchResult) -> ProgressEvent:
        if result.batch_id in self._results:
            raise ValueError(f"Batch {result.batch_id} already resolved")

        self._results[result.batch_id] = result
        if result.status.counts_as_closed:
            self.closed_count += result.accounts_in_batch
            self.lamports_recovered += result.rent_lamports_in_batch

        Logger.info(
            f"[OUTCOME] Batch {result.batch_id}: {result.status.value} "
            f"({self.closed_count}/{self.total_count} closed)"
        )
        return ProgressEvent(closed_count=self.closed_count, total_count=self.total_count, result=result)

    async def consume(self, queue: asyncio.Queue, expected: int) -> AsyncIterator[ProgressEvent]:
        """Drain `expected` results from the queue, yielding progress for each."""
        for _ in range(expected):
            result = await queue.get()
            try:
                yield self.add(result)
            finally:
                queue.task_done()

    def finalize(self) -> ClosureOutcome:
        outcome = ClosureOutcome(
            total_accounts_closed=self.closed_count,
            total_lamports_recovered=self.lamports_recovered,
            batch_results=[self._results[k] for k in sorted(self._results)],
        )

        if outcome.failed_batches:
            Logger.warning(f"[OUTCOME] {len(outcome.failed_batches)} batch(es) failed")
        if outcome.assumed_batches:
            Logger.warning(f"[OUTCOME] {len(outcome.assumed_batches)} batch(es) assumed confirmed, reconcile later")
        Logger.success(
            f"[OUTCOME] Closed {outcome.total_accounts_closed} accounts, "
            f"recovered {outcome.total_sol_recovered:.6f} SOL"
        )

        self.record_stats(outcome)
        return outcome

    # =========================================================================
    # STATS (fire-and-forget)
    # =========================================================================

    def record_stats(self, outcome: ClosureOutcome) -> Optional[asyncio.Task]:
        if self.recorder is None or outcome.total_accounts_closed == 0:
            return None

        task = asyncio.get_running_loop().create_task(
            self.recorder.record(outcome.total_lamports_recovered, outcome.total_accounts_closed, self.owner)
        )
        self._stats_tasks.add(task)
        task.add_done_callback(self._on_stats_done)
        return task

    def _on_stats_done(self, task: asyncio.Task) -> None:
        self._stats_tasks.discard(task)
        if task.cancelled():
            Logger.warning("[STATS] Recording cancelled")
            return
        exc = task.exception()
        if exc is not None:
            Logger.warning(f"[STATS] Recording failed (ignored): {exc!r}")
        else:
            Logger.debug("[STATS] Recorded run totals")

    async def flush_stats(self, timeout: float = 5.0) -> None:
        """Give pending stats tasks a bounded chance to finish (used before the event loop closes)."""
        if not self._stats_tasks:
            return
        await asyncio.wait(set(self._stats_tasks), timeout=timeout)
