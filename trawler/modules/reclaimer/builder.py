"""
Transaction Builder
===================
Compiles one unsigned close transaction per batch.

All transactions of a run are compiled against ONE blockhash snapshot,
fetched by the caller before the loop. If broadcast is delayed past that
blockhash's validity window the affected transactions fail with
BlockhashExpiredError and are rebuilt from a fresh snapshot.

Each instruction is a token-program CloseAccount: the account's rent goes
to the owner, who is also the close authority and fee payer.
"""

from typing import List, Sequence

from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from spl.token.instructions import close_account
from spl.token.models import CloseAccountParams

from trawler.modules.reclaimer.config import PACKET_DATA_SIZE
from trawler.modules.reclaimer.models import Batch, CandidateAccount, CloseTransaction
from trawler.shared.infrastructure.ledger_client import BlockhashSnapshot
from trawler.shared.system.logging import Logger


def build_close_instruction(account: CandidateAccount, owner: Pubkey) -> Instruction:
    return close_account(
        CloseAccountParams(
            account=Pubkey.from_string(account.address),
            dest=owner,
            owner=owner,
            program_id=Pubkey.from_string(account.owning_program),
            signers=[],
        )
    )


def serialized_size(message: MessageV0) -> int:
    """Wire size of the transaction once its single signature is attached."""
    placeholder = VersionedTransaction.populate(message, [Signature.default()])
    return len(bytes(placeholder))


class TransactionBuilder:
    def __init__(self, owner: str):
        self.owner = owner
        self._owner_key = Pubkey.from_string(owner)

    def build_one(self, batch: Batch, snapshot: BlockhashSnapshot) -> CloseTransaction:
        instructions = [build_close_instruction(acc, self._owner_key) for acc in batch.accounts]
        message = MessageV0.try_compile(
            payer=self._owner_key,
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=snapshot.to_hash(),
        )

        size = serialized_size(message)
        if size > PACKET_DATA_SIZE:
            raise ValueError(
                f"Batch {batch.batch_id} compiles to {size} bytes (limit {PACKET_DATA_SIZE}); "
                f"lower ACCOUNTS_PER_TX"
            )

        return CloseTransaction(batch=batch, snapshot=snapshot, message=message)

    def build(self, batches: Sequence[Batch], snapshot: BlockhashSnapshot) -> List[CloseTransaction]:
        transactions = [self.build_one(batch, snapshot) for batch in batches]
        Logger.info(
            f"[BUILDER] Built {len(transactions)} transactions on blockhash {snapshot.blockhash[:12]}..."
        )
        return transactions
