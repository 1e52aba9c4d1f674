"""
ReclaimEngine Unit Tests
========================
End-to-end runs over the fake ledger: scan -> plan -> sign -> submit ->
confirm -> aggregate.
"""

import dataclasses

import pytest

from tests.mocks import FakeLedgerClient, FakeSigner, status, token_account
from trawler.modules.reclaimer.cancellation import RunCancellation
from trawler.modules.reclaimer.config import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from trawler.modules.reclaimer.engine import ReclaimEngine
from trawler.modules.reclaimer.models import BatchStatus, ClosureOutcome, ProgressEvent
from trawler.shared.errors import (
    BlockhashExpiredError,
    InvalidAddressError,
    LedgerRejectedError,
    RunCancelledError,
    SigningRejectedError,
)
from trawler.shared.infrastructure.ledger_client import SignatureState
from trawler.shared.infrastructure.stats_recorder import InMemoryStatsRecorder

RENT = 2_039_280


def wallet_with(n_token: int, n_token_2022: int = 0) -> FakeLedgerClient:
    ledger = FakeLedgerClient()
    ledger.add_accounts(TOKEN_PROGRAM_ID, [token_account() for _ in range(n_token)])
    ledger.add_accounts(TOKEN_2022_PROGRAM_ID, [token_account(program=TOKEN_2022_PROGRAM_ID) for _ in range(n_token_2022)])
    return ledger


async def collect(engine, batches, owner, cancel=None):
    events = [e async for e in engine.run(batches, owner, cancel)]
    return [e for e in events if isinstance(e, ProgressEvent)], events[-1]


class TestRun:
    @pytest.mark.asyncio
    async def test_45_accounts_close_in_three_batches(self, fast_config):
        ledger = wallet_with(30, 15)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)

        candidates = await engine.scan(signer.pubkey)
        batches = engine.plan(candidates)
        progress, outcome = await collect(engine, batches, signer.pubkey)

        assert [b.size for b in batches] == [22, 22, 1]
        assert isinstance(outcome, ClosureOutcome)
        assert outcome.total_accounts_closed == 45
        assert outcome.total_lamports_recovered == 45 * RENT
        assert len(progress) == 3
        assert progress[-1].closed_count == 45
        assert all(p.total_count == 45 for p in progress)
        assert sorted(p.closed_count for p in progress) == [p.closed_count for p in progress]
        assert len(ledger.broadcasts) == 3
        assert ledger.snapshot_calls == 1

    @pytest.mark.asyncio
    async def test_rescan_after_run_finds_nothing(self, fast_config):
        ledger = wallet_with(5)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.sequential(), config=fast_config)

        outcome = await engine.close(await engine.scan(signer.pubkey), signer.pubkey)

        assert outcome.total_accounts_closed == 5
        assert await engine.scan(signer.pubkey) == []
        assert await engine.reconcile(outcome, signer.pubkey) == []

    @pytest.mark.asyncio
    async def test_signing_rejection_submits_nothing(self, fast_config):
        ledger = wallet_with(30)
        signer = FakeSigner()
        signer.reject_at = 1
        engine = ReclaimEngine(ledger, signer=signer.sequential(), config=fast_config)
        batches = engine.plan(await engine.scan(signer.pubkey))

        with pytest.raises(SigningRejectedError):
            await collect(engine, batches, signer.pubkey)

        assert ledger.broadcasts == []
        assert len(await engine.scan(signer.pubkey)) == 30

    @pytest.mark.asyncio
    async def test_cancel_before_run_submits_nothing(self, fast_config):
        ledger = wallet_with(3)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)
        cancel = RunCancellation()
        cancel.cancel()

        with pytest.raises(RunCancelledError):
            await collect(engine, engine.plan(await engine.scan(signer.pubkey)), signer.pubkey, cancel)

        assert ledger.broadcasts == []
        assert signer.sign_all_calls == 0

    @pytest.mark.asyncio
    async def test_failed_batch_excluded_from_totals(self, fast_config):
        ledger = wallet_with(3)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)
        batches = engine.plan(await engine.scan(signer.pubkey), capacity=1)
        failing = batches[1].accounts[0]

        async def poll_status(handle):
            tx = next(t for t in ledger.broadcasts if t.signature == handle)
            if tx.batch.accounts[0] == failing:
                return status(SignatureState.FAILED, "InvalidAccountData")
            return status(SignatureState.CONFIRMED)

        ledger.poll_status = poll_status
        _, outcome = await collect(engine, batches, signer.pubkey)

        assert outcome.total_accounts_closed == 2
        assert outcome.total_lamports_recovered == 2 * RENT
        assert [r.batch_id for r in outcome.failed_batches] == [1]
        assert len(outcome.batch_results) == 3

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_reported_not_raised(self, fast_config):
        ledger = wallet_with(2)
        ledger.broadcast_errors[0] = [LedgerRejectedError("sendTransaction: rejected")]
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)

        outcome = await engine.close(await engine.scan(signer.pubkey), signer.pubkey)

        assert outcome.total_accounts_closed == 0
        assert outcome.failed_batches[0].reason.startswith("submission failed")

    @pytest.mark.asyncio
    async def test_crashed_and_rejected_broadcasts_count_nothing(self, fast_config):
        ledger = wallet_with(2)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)
        batches = engine.plan(await engine.scan(signer.pubkey), capacity=1)
        ledger.broadcast_errors[0] = [LedgerRejectedError("sendTransaction: rejected")]
        ledger.broadcast_errors[1] = [AttributeError("'list' object has no attribute 'get'")]

        _, outcome = await collect(engine, batches, signer.pubkey)

        assert ledger.broadcasts == []
        assert outcome.total_accounts_closed == 0
        assert outcome.total_lamports_recovered == 0
        assert [r.status for r in outcome.batch_results] == [BatchStatus.FAILED] * 2
        assert all(r.reason.startswith("submission failed") for r in outcome.batch_results)

    @pytest.mark.asyncio
    async def test_zero_capacity_is_refused(self, fast_config):
        signer = FakeSigner()
        engine = ReclaimEngine(wallet_with(3), signer=signer.bulk(), config=fast_config)

        with pytest.raises(ValueError):
            engine.plan(await engine.scan(signer.pubkey), capacity=0)

    @pytest.mark.asyncio
    async def test_empty_selection_yields_empty_outcome(self, fast_config):
        signer = FakeSigner()
        engine = ReclaimEngine(FakeLedgerClient(), signer=signer.bulk(), config=fast_config)

        progress, outcome = await collect(engine, [], signer.pubkey)

        assert progress == []
        assert outcome.total_accounts_closed == 0

    @pytest.mark.asyncio
    async def test_invalid_owner_rejected_before_anything(self, fast_config):
        ledger = FakeLedgerClient()
        engine = ReclaimEngine(ledger, signer=FakeSigner().bulk(), config=fast_config)

        with pytest.raises(InvalidAddressError):
            await collect(engine, [], "bogus")

        assert ledger.snapshot_calls == 0

    @pytest.mark.asyncio
    async def test_run_without_signer_is_refused(self, fast_config):
        engine = ReclaimEngine(FakeLedgerClient(), config=fast_config)

        with pytest.raises(ValueError, match="no signer"):
            await collect(engine, [], FakeSigner().pubkey)


class TestBlockhashExpiry:
    @pytest.mark.asyncio
    async def test_expired_batch_is_rebuilt_and_confirmed(self, fast_config):
        ledger = wallet_with(3)
        ledger.broadcast_errors[0] = [BlockhashExpiredError("sendTransaction: Blockhash not found")]
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)

        outcome = await engine.close(await engine.scan(signer.pubkey), signer.pubkey, on_progress=None)
        batches = engine.plan(await engine.scan(signer.pubkey))

        assert outcome.total_accounts_closed == 3
        assert ledger.snapshot_calls == 2
        assert signer.sign_all_calls == 2
        assert batches == []

    @pytest.mark.asyncio
    async def test_rebuild_limit_fails_batch(self, fast_config):
        config = dataclasses.replace(fast_config, MAX_REBUILDS=0)
        ledger = wallet_with(2)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=config)
        batches = engine.plan(await engine.scan(signer.pubkey), capacity=1)
        ledger.broadcast_errors[0] = [BlockhashExpiredError("sendTransaction: Blockhash not found")]

        _, outcome = await collect(engine, batches, signer.pubkey)

        assert outcome.total_accounts_closed == 1
        assert outcome.failed_batches[0].batch_id == 0
        assert "rebuild limit" in outcome.failed_batches[0].reason

    @pytest.mark.asyncio
    async def test_rejection_during_rebuild_only_fails_those_batches(self, fast_config):
        ledger = wallet_with(2)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.sequential(), config=fast_config)
        batches = engine.plan(await engine.scan(signer.pubkey), capacity=1)
        ledger.broadcast_errors[1] = [BlockhashExpiredError("sendTransaction: Blockhash not found")]
        # two signatures in the first round, the third (rebuild) is refused
        signer.reject_at = 2

        _, outcome = await collect(engine, batches, signer.pubkey)

        assert outcome.total_accounts_closed == 1
        assert [r.batch_id for r in outcome.failed_batches] == [1]
        assert "rebuild failed" in outcome.failed_batches[0].reason


class TestStatsAndPreview:
    @pytest.mark.asyncio
    async def test_stats_recorded_after_run(self, fast_config):
        ledger = wallet_with(4)
        signer = FakeSigner()
        recorder = InMemoryStatsRecorder()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config, recorder=recorder)

        await engine.close(await engine.scan(signer.pubkey), signer.pubkey)
        await engine.flush()

        stats = await recorder.read()
        assert stats.total_accounts == 4
        assert stats.total_claims == 1

    @pytest.mark.asyncio
    async def test_preview_builds_without_signing_or_sending(self, fast_config):
        ledger = wallet_with(23)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, config=fast_config)

        report = await engine.scan_report(signer.pubkey)
        txs = await engine.preview(engine.plan(report.candidates), signer.pubkey)

        assert [len(tx.message.instructions) for tx in txs] == [22, 1]
        assert report.batch_count(fast_config.ACCOUNTS_PER_TX) == 2
        assert ledger.broadcasts == []

    @pytest.mark.asyncio
    async def test_reconcile_reports_accounts_still_open(self, fast_config):
        ledger = wallet_with(2)
        ledger.land_on_broadcast = False
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)

        outcome = await engine.close(await engine.scan(signer.pubkey), signer.pubkey)
        stale = await engine.reconcile(outcome, signer.pubkey)

        assert outcome.batch_results[0].status == BatchStatus.CONFIRMED
        assert sorted(stale) == sorted(outcome.batch_results[0].addresses)


class TestCancelWhileConfirming:
    """Cancelling after broadcast still ends in an outcome and stops polling."""

    def _cancel_on_first_poll(self, ledger, cancel):
        calls = {"before": 0, "after": 0}

        async def poll_status(handle):
            if cancel.cancelled:
                calls["after"] += 1
            else:
                calls["before"] += 1
                cancel.cancel("operator stopped the run")
            return status(SignatureState.PROCESSED)

        ledger.poll_status = poll_status
        return calls

    @pytest.mark.asyncio
    async def test_pending_batches_resolve_optimistically(self, fast_config):
        ledger = wallet_with(2)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=fast_config)
        batches = engine.plan(await engine.scan(signer.pubkey), capacity=1)
        cancel = RunCancellation()
        calls = self._cancel_on_first_poll(ledger, cancel)

        progress, outcome = await collect(engine, batches, signer.pubkey, cancel)

        assert isinstance(outcome, ClosureOutcome)
        assert len(progress) == 2
        assert len(ledger.broadcasts) == 2
        assert [r.status for r in outcome.batch_results] == [BatchStatus.ASSUMED_CONFIRMED] * 2
        assert all("cancelled" in r.reason for r in outcome.batch_results)
        assert outcome.total_accounts_closed == 2
        assert calls == {"before": 1, "after": 0}
        assert sum(ledger.oob_calls.values()) == 0

    @pytest.mark.asyncio
    async def test_pending_batches_fail_in_strict_mode(self, fast_config):
        strict = dataclasses.replace(fast_config, OPTIMISTIC_ON_AMBIGUITY=False)
        ledger = wallet_with(2)
        signer = FakeSigner()
        engine = ReclaimEngine(ledger, signer=signer.bulk(), config=strict)
        batches = engine.plan(await engine.scan(signer.pubkey), capacity=1)
        cancel = RunCancellation()
        calls = self._cancel_on_first_poll(ledger, cancel)

        _, outcome = await collect(engine, batches, signer.pubkey, cancel)

        assert [r.status for r in outcome.batch_results] == [BatchStatus.FAILED] * 2
        assert outcome.total_accounts_closed == 0
        assert calls["after"] == 0
        assert sum(ledger.oob_calls.values()) == 0
