"""
Submission Manager
==================
Broadcasts every signed transaction concurrently (fan-out, join-all).

Batches never share an account, so there is no ordering between them. A
failed broadcast, classified or not, is recorded on its own
SubmissionOutcome and never stops the sibling broadcasts. Only task
cancellation propagates.
"""

import asyncio
from typing import List, Sequence

from trawler.modules.reclaimer.models import SignedTransaction, SubmissionOutcome
from trawler.shared.errors import LedgerError, TransientLedgerError
from trawler.shared.infrastructure.ledger_client import LedgerClient
from trawler.shared.system.logging import Logger


class SubmissionManager:
    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def submit_all(self, signed: Sequence[SignedTransaction]) -> List[SubmissionOutcome]:
        if not signed:
            return []

        Logger.info(f"[SUBMIT] Broadcasting {len(signed)} transactions")
        outcomes = list(await asyncio.gather(*(self._submit_one(tx) for tx in signed)))

        sent = sum(1 for o in outcomes if o.submitted)
        if sent == len(outcomes):
            Logger.success(f"[SUBMIT] All {sent} transactions accepted for broadcast")
        else:
            Logger.warning(f"[SUBMIT] {sent}/{len(outcomes)} transactions accepted for broadcast")
        return outcomes

    async def _submit_one(self, tx: SignedTransaction) -> SubmissionOutcome:
        try:
            handle = await self.ledger.broadcast(tx)
        except LedgerError as e:
            Logger.error(f"[SUBMIT] Batch {tx.batch.batch_id} broadcast failed: {e!r}")
            return SubmissionOutcome(signed=tx, error=e)
        except Exception as e:
            error = TransientLedgerError(f"broadcast crashed: {e!r}", method="sendTransaction")
            Logger.error(f"[SUBMIT] Batch {tx.batch.batch_id} broadcast crashed: {e!r}")
            return SubmissionOutcome(signed=tx, error=error)

        Logger.debug(f"[SUBMIT] Batch {tx.batch.batch_id} -> {handle}")
        return SubmissionOutcome(signed=tx, handle=handle)
