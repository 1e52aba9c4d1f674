"""
Reclaim Engine - Pipeline Facade
================================
Wires the stages of one closing run together:

    scan -> (selection) -> plan -> build -> sign -> submit -> confirm -> aggregate

Usage:
    async with LedgerClient() as ledger:
        engine = ReclaimEngine(ledger, signer=KeypairSigner.from_env().as_variant())
        candidates = await engine.scan(owner)
        outcome = await engine.close(candidates, owner)

Failure model:
- Before submission (invalid owner, signing rejected, cancelled) the run
  raises and NOTHING has been broadcast.
- Once anything is broadcast the run always ends in a ClosureOutcome.

Cancellation: RunCancellation stops signing and confirmation polling, but
it cannot retract transactions already broadcast. The ledger may still
accept them, so re-scan (or reconcile()) after a cancelled run.
"""

import asyncio
from typing import AsyncIterator, Callable, List, Optional, Sequence, Union

from trawler.modules.reclaimer.aggregator import OutcomeAggregator
from trawler.modules.reclaimer.builder import TransactionBuilder
from trawler.modules.reclaimer.cancellation import RunCancellation
from trawler.modules.reclaimer.config import ReclaimConfig
from trawler.modules.reclaimer.confirmation import ConfirmationTracker, ResolvedHandleCache
from trawler.modules.reclaimer.models import (
    Batch,
    BatchResult,
    BatchStatus,
    CandidateAccount,
    CloseTransaction,
    ClosureOutcome,
    ProgressEvent,
    ScanReport,
    SubmissionOutcome,
)
from trawler.modules.reclaimer.planner import BatchPlanner
from trawler.modules.reclaimer.scanner import AccountScanner, validate_owner
from trawler.modules.reclaimer.signing import SigningCoordinator
from trawler.modules.reclaimer.submission import SubmissionManager
from trawler.shared.errors import BlockhashExpiredError, RunCancelledError
from trawler.shared.infrastructure.ledger_client import LedgerClient
from trawler.shared.infrastructure.signer import SignerVariant
from trawler.shared.infrastructure.stats_recorder import StatsRecorder
from trawler.shared.system.logging import Logger

RunEvent = Union[ProgressEvent, ClosureOutcome]


class _RunContext:
    """Per-run collaborators shared by the submit/track/rebuild coroutines."""

    def __init__(self, builder: TransactionBuilder, tracker: ConfirmationTracker,
                 queue: asyncio.Queue, cancel: RunCancellation):
        self.builder = builder
        self.tracker = tracker
        self.queue = queue
        self.cancel = cancel


class ReclaimEngine:
    def __init__(
        self,
        ledger: LedgerClient,
        signer: Optional[SignerVariant] = None,
        config: Optional[ReclaimConfig] = None,
        recorder: Optional[StatsRecorder] = None,
    ):
        self.ledger = ledger
        self.signer = signer
        self.config = config or ReclaimConfig()
        self.recorder = recorder

        self.scanner = AccountScanner(ledger, self.config)
        self.submitter = SubmissionManager(ledger)
        self._aggregators: List[OutcomeAggregator] = []

    # =========================================================================
    # DISCOVERY / PLANNING
    # =========================================================================

    async def scan_report(self, owner: str) -> ScanReport:
        return await self.scanner.scan(owner)

    async def scan(self, owner: str) -> List[CandidateAccount]:
        return (await self.scanner.scan(owner)).candidates

    def plan(self, selected: Sequence[CandidateAccount], capacity: Optional[int] = None) -> List[Batch]:
        return BatchPlanner(capacity if capacity is not None else self.config.ACCOUNTS_PER_TX).plan(list(selected))

    async def preview(self, batches: Sequence[Batch], owner: str) -> List[CloseTransaction]:
        """Dry run: compile the transactions without signing or broadcasting."""
        owner = validate_owner(owner)
        if not batches:
            return []
        snapshot = await self.ledger.get_recent_snapshot()
        return TransactionBuilder(owner).build(batches, snapshot)

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(
        self,
        batches: Sequence[Batch],
        owner: str,
        cancel: Optional[RunCancellation] = None,
    ) -> AsyncIterator[RunEvent]:
        """
        Execute one closing run.

        Yields a ProgressEvent per resolved batch, then exactly one
        ClosureOutcome. Raises SigningRejectedError / RunCancelledError
        before anything is broadcast. Cancelling after broadcast cannot
        undo what was sent.
        """
        if self.signer is None:
            raise ValueError("ReclaimEngine has no signer; use preview() for a dry run")

        owner = validate_owner(owner)
        cancel = cancel or RunCancellation()
        batches = list(batches)
        aggregator = OutcomeAggregator(sum(b.size for b in batches), self.recorder, owner)
        self._aggregators.append(aggregator)

        Logger.section(f"Closing {aggregator.total_count} accounts in {len(batches)} batches")
        if not batches:
            yield aggregator.finalize()
            return

        if cancel.cancelled:
            raise RunCancelledError(f"Run cancelled before building: {cancel.reason}")

        builder = TransactionBuilder(owner)
        snapshot = await self.ledger.get_recent_snapshot()
        transactions = builder.build(batches, snapshot)
        signed = await SigningCoordinator(self.signer).sign(transactions, cancel)

        # Point of no return: from here on the run always produces an outcome
        submissions = await self.submitter.submit_all(signed)

        ctx = _RunContext(
            builder=builder,
            tracker=ConfirmationTracker(self.ledger, self.config, ResolvedHandleCache(), cancel),
            queue=asyncio.Queue(),
            cancel=cancel,
        )
        driver = asyncio.create_task(self._dispatch(ctx, submissions, rebuild_round=1))
        try:
            async for event in aggregator.consume(ctx.queue, len(batches)):
                yield event
            await driver
        finally:
            if not driver.done():
                driver.cancel()

        yield aggregator.finalize()

    async def close(
        self,
        selected: Sequence[CandidateAccount],
        owner: str,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        cancel: Optional[RunCancellation] = None,
    ) -> ClosureOutcome:
        """plan() + run(), returning the final ClosureOutcome."""
        outcome = None
        async for event in self.run(self.plan(selected), owner, cancel):
            if isinstance(event, ClosureOutcome):
                outcome = event
            elif on_progress is not None:
                on_progress(event)
        return outcome

    async def reconcile(self, outcome: ClosureOutcome, owner: str) -> List[str]:
        """Addresses counted as closed in `outcome` that a fresh scan still finds open."""
        report = await self.scanner.scan(owner)
        still_open = {c.address for c in report.candidates} | {s.address for s in report.skipped}

        stale = [
            address
            for result in outcome.batch_results
            if result.status.counts_as_closed
            for address in result.addresses
            if address in still_open
        ]
        if stale:
            Logger.warning(f"[ENGINE] {len(stale)} accounts counted as closed are still open")
        else:
            Logger.success("[ENGINE] Reconciled: every counted account is closed")
        return stale

    async def flush(self, timeout: float = 5.0) -> None:
        """Wait (bounded) for background stats recording of finished runs."""
        for aggregator in self._aggregators:
            await aggregator.flush_stats(timeout)
        self._aggregators.clear()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _dispatch(self, ctx: _RunContext, submissions: List[SubmissionOutcome], rebuild_round: int) -> None:
        """Track broadcast batches and send blockhash-expired ones to a rebuild round."""
        expired = [s for s in submissions if isinstance(s.error, BlockhashExpiredError)]
        tracked = [s for s in submissions if not isinstance(s.error, BlockhashExpiredError)]

        work = [self._track_into(ctx, s) for s in tracked]
        if expired:
            work.append(self._rebuild(ctx, [s.batch for s in expired], rebuild_round))
        await asyncio.gather(*work)

    async def _track_into(self, ctx: _RunContext, submission: SubmissionOutcome) -> None:
        try:
            result = await ctx.tracker.track(submission)
        except Exception as e:
            Logger.error(f"[CONFIRM] Tracking batch {submission.batch.batch_id} crashed: {e!r}")
            result = self._resolve_by_policy(submission, f"tracking error: {e!r}")
        ctx.queue.put_nowait(result)

    def _resolve_by_policy(self, submission: SubmissionOutcome, reason: str) -> BatchResult:
        if not submission.submitted:
            return BatchResult.for_batch(submission.batch, BatchStatus.FAILED, reason=reason)
        status = BatchStatus.ASSUMED_CONFIRMED if self.config.OPTIMISTIC_ON_AMBIGUITY else BatchStatus.FAILED
        return BatchResult.for_batch(submission.batch, status, handle=submission.handle, reason=reason)

    async def _rebuild(self, ctx: _RunContext, batches: List[Batch], rebuild_round: int) -> None:
        """
        Rebuild, re-sign and re-submit batches whose blockhash expired.

        Those batches never reached the ledger, so a failure here resolves
        them to FAILED without any ambiguity.
        """
        ids = [b.batch_id for b in batches]
        reason = ""
        if ctx.cancel.cancelled:
            reason = "blockhash expired; run cancelled before rebuild"
        elif rebuild_round > self.config.MAX_REBUILDS:
            reason = "blockhash expired; rebuild limit reached"

        if not reason:
            Logger.warning(f"[BUILDER] Blockhash expired for batches {ids}, rebuilding (round {rebuild_round})")
            try:
                snapshot = await self.ledger.get_recent_snapshot()
                transactions = ctx.builder.build(batches, snapshot)
                signed = await SigningCoordinator(self.signer).sign(transactions, ctx.cancel)
            except Exception as e:
                Logger.error(f"[BUILDER] Rebuild of batches {ids} failed: {e!r}")
                reason = f"blockhash expired; rebuild failed: {e}"

        if reason:
            for batch in batches:
                ctx.queue.put_nowait(BatchResult.for_batch(batch, BatchStatus.FAILED, reason=reason))
            return

        submissions = await self.submitter.submit_all(signed)
        await self._dispatch(ctx, submissions, rebuild_round + 1)
