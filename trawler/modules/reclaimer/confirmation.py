"""
Confirmation Tracker
====================
Resolves each broadcast handle to a terminal BatchStatus.

State machine per batch:

    SUBMITTED --confirmed/finalized--> CONFIRMED
              --landed with error----> FAILED
              --R polls, no answer---> out-of-band check after grace period
                                         success        -> CONFIRMED
                                         error          -> FAILED
                                         no record      -> FAILED
                                         still unclear  -> ambiguity policy

Ambiguity policy (ReclaimConfig.OPTIMISTIC_ON_AMBIGUITY):
    True  -> ASSUMED_CONFIRMED (a broadcast-accepted tx usually lands)
    False -> FAILED (strict; the next scan shows the truth)

Every ambiguous resolution is logged with its signature so it can be
reconciled later. Rate limits and transient errors only drive backoff.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

from trawler.modules.reclaimer.cancellation import RunCancellation
from trawler.modules.reclaimer.config import ReclaimConfig
from trawler.modules.reclaimer.models import Batch, BatchResult, BatchStatus, SubmissionOutcome
from trawler.shared.errors import LedgerError, RateLimitedError
from trawler.shared.infrastructure.ledger_client import LedgerClient, SignatureState
from trawler.shared.system.logging import Logger


class ResolvedHandleCache:
    """Handles already resolved in this run; a cached handle is never polled again."""

    def __init__(self):
        self._results: Dict[str, BatchResult] = {}

    def get(self, handle: str) -> Optional[BatchResult]:
        return self._results.get(handle)

    def put(self, handle: str, result: BatchResult) -> None:
        self._results[handle] = result

    def __contains__(self, handle: str) -> bool:
        return handle in self._results

    def __len__(self) -> int:
        return len(self._results)


class ConfirmationTracker:
    def __init__(
        self,
        ledger: LedgerClient,
        config: Optional[ReclaimConfig] = None,
        cache: Optional[ResolvedHandleCache] = None,
        cancel: Optional[RunCancellation] = None,
    ):
        self.ledger = ledger
        self.config = config or ReclaimConfig()
        self.cache = cache if cache is not None else ResolvedHandleCache()
        self.cancel = cancel

    async def track_all(self, submissions: Sequence[SubmissionOutcome]) -> List[BatchResult]:
        return list(await asyncio.gather(*(self.track(s) for s in submissions)))

    async def track(self, submission: SubmissionOutcome) -> BatchResult:
        batch = submission.batch
        if not submission.submitted:
            return BatchResult.for_batch(
                batch, BatchStatus.FAILED, reason=f"submission failed: {submission.error!r}"
            )

        handle = submission.handle
        cached = self.cache.get(handle)
        if cached is not None:
            Logger.debug(f"[CONFIRM] Batch {batch.batch_id} handle already resolved: {cached.status.value}")
            return cached

        result = await self._resolve(batch, handle)
        self.cache.put(handle, result)
        return result

    async def _sleep(self, delay: float) -> bool:
        """True if the run was cancelled instead."""
        if self.cancel is not None:
            return await self.cancel.sleep(delay)
        await asyncio.sleep(delay)
        return False

    async def _resolve(self, batch: Batch, handle: str) -> BatchResult:
        last_seen = "no answer"

        for attempt, delay in enumerate(self.config.backoff_delays(), start=1):
            if await self._sleep(delay):
                return self._ambiguous(batch, handle, "cancelled while confirming")

            try:
                report = await self.ledger.poll_status(handle)
            except LedgerError as e:
                last_seen = "rate limited" if isinstance(e, RateLimitedError) else e.kind.value
                Logger.debug(f"[CONFIRM] Batch {batch.batch_id} poll {attempt}: {e!r}")
                continue

            if report.state.is_success:
                Logger.success(f"[CONFIRM] Batch {batch.batch_id} {report.state.value} ({batch.size} accounts)")
                return BatchResult.for_batch(batch, BatchStatus.CONFIRMED, handle=handle)
            if report.state is SignatureState.FAILED:
                Logger.error(f"[CONFIRM] Batch {batch.batch_id} failed on-chain: {report.error}")
                return BatchResult.for_batch(
                    batch, BatchStatus.FAILED, handle=handle, reason=f"transaction error: {report.error}"
                )
            last_seen = report.state.value

        Logger.warning(
            f"[CONFIRM] Batch {batch.batch_id} unresolved after {self.config.CONFIRM_MAX_ATTEMPTS} polls "
            f"({last_seen}), out-of-band check in {self.config.CONFIRM_GRACE_PERIOD_S}s"
        )
        if await self._sleep(self.config.CONFIRM_GRACE_PERIOD_S):
            return self._ambiguous(batch, handle, "cancelled before out-of-band check")

        report = await self.ledger.get_status_once(handle)
        if report.state.is_success:
            Logger.success(f"[CONFIRM] Batch {batch.batch_id} confirmed by out-of-band check")
            return BatchResult.for_batch(
                batch, BatchStatus.CONFIRMED, handle=handle, reason="confirmed by out-of-band check"
            )
        if report.state is SignatureState.FAILED:
            return BatchResult.for_batch(
                batch, BatchStatus.FAILED, handle=handle, reason=f"transaction error: {report.error}"
            )
        if report.state is SignatureState.NOT_FOUND:
            Logger.warning(f"[CONFIRM] Batch {batch.batch_id} unknown to the ledger: {handle}")
            return BatchResult.for_batch(
                batch, BatchStatus.FAILED, handle=handle, reason="ledger has no record of the transaction"
            )

        return self._ambiguous(batch, handle, f"out-of-band check inconclusive ({report.state.value})")

    def _ambiguous(self, batch: Batch, handle: str, why: str) -> BatchResult:
        if self.config.OPTIMISTIC_ON_AMBIGUITY:
            Logger.warning(
                f"[CONFIRM] Batch {batch.batch_id} ASSUMED confirmed ({why}); reconcile signature {handle}"
            )
            return BatchResult.for_batch(batch, BatchStatus.ASSUMED_CONFIRMED, handle=handle, reason=why)

        Logger.warning(f"[CONFIRM] Batch {batch.batch_id} counted as FAILED ({why}, strict mode); signature {handle}")
        return BatchResult.for_batch(batch, BatchStatus.FAILED, handle=handle, reason=why)
