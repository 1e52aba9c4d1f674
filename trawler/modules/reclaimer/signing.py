"""
Signing Coordinator
===================
Obtains signatures for every built transaction, or for none.

- BulkCapable signer: one sign_all call, response order must match
- SequentialOnly signer: one sign_one call per transaction, in order

Any rejection (or a cancellation observed while waiting on the signer)
aborts the whole pre-submission phase: no transaction is returned, so no
transaction can reach the network.
"""

from typing import List, Optional, Sequence

from trawler.modules.reclaimer.cancellation import RunCancellation
from trawler.modules.reclaimer.models import CloseTransaction, SignedTransaction
from trawler.shared.errors import RunCancelledError, SigningRejectedError
from trawler.shared.infrastructure.signer import BulkCapable, SignerVariant
from trawler.shared.system.logging import Logger


def _check_cancel(cancel: Optional[RunCancellation]) -> None:
    if cancel is not None and cancel.cancelled:
        raise RunCancelledError(f"Run cancelled during signing: {cancel.reason}")


class SigningCoordinator:
    def __init__(self, signer: SignerVariant):
        self.signer = signer

    async def sign(
        self,
        transactions: Sequence[CloseTransaction],
        cancel: Optional[RunCancellation] = None,
    ) -> List[SignedTransaction]:
        if not transactions:
            return []
        _check_cancel(cancel)

        try:
            if isinstance(self.signer, BulkCapable):
                Logger.info(f"[SIGNER] Requesting {len(transactions)} signatures in one call ({self.signer.name})")
                signed = await self.signer.sign_all(list(transactions))
                if len(signed) != len(transactions):
                    raise SigningRejectedError(
                        f"Signer returned {len(signed)} of {len(transactions)} transactions"
                    )
            else:
                Logger.info(f"[SIGNER] Signing {len(transactions)} transactions one by one ({self.signer.name})")
                signed = []
                for tx in transactions:
                    _check_cancel(cancel)
                    signed.append(await self.signer.sign_one(tx))
        except SigningRejectedError as e:
            Logger.warning(f"[SIGNER] Rejected, nothing will be submitted: {e}")
            raise

        _check_cancel(cancel)

        results = []
        for unsigned, tx in zip(transactions, signed):
            if bytes(tx.message) != bytes(unsigned.message):
                raise SigningRejectedError(
                    f"Signer returned a different transaction for batch {unsigned.batch_id}",
                    batch_id=unsigned.batch_id,
                )
            results.append(SignedTransaction(unsigned=unsigned, transaction=tx))

        Logger.success(f"[SIGNER] {len(results)} transactions signed")
        return results
