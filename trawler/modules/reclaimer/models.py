"""
Reclaimer Data Model
====================
Value types passed between the pipeline stages.

    CandidateAccount -> Batch -> CloseTransaction -> SignedTransaction
        -> SubmissionOutcome -> BatchResult -> ClosureOutcome

Everything below ScanReport is scoped to a single run.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from solders.message import MessageV0
from solders.transaction import VersionedTransaction

from trawler.shared.errors import LedgerError
from trawler.shared.infrastructure.ledger_client import BlockhashSnapshot

LAMPORTS_PER_SOL = 1_000_000_000


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class CandidateAccount:
    """A zero-balance token account whose rent can be reclaimed."""
    address: str
    owning_program: str
    rent_lamports: int
    mint: str = ""
    closable: bool = True

    @property
    def rent_sol(self) -> float:
        return lamports_to_sol(self.rent_lamports)


@dataclass(frozen=True)
class SkippedAccount:
    """An empty account the scanner refused to offer, with the reason."""
    address: str
    owning_program: str
    reason: str


@dataclass
class ScanReport:
    owner: str
    candidates: List[CandidateAccount] = field(default_factory=list)
    total_accounts: int = 0
    skipped: List[SkippedAccount] = field(default_factory=list)

    @property
    def recoverable_lamports(self) -> int:
        return sum(c.rent_lamports for c in self.candidates)

    @property
    def recoverable_sol(self) -> float:
        return lamports_to_sol(self.recoverable_lamports)

    def batch_count(self, capacity: int) -> int:
        return math.ceil(len(self.candidates) / capacity) if capacity > 0 else 0


@dataclass(frozen=True)
class Batch:
    batch_id: int
    accounts: Tuple[CandidateAccount, ...]

    @property
    def size(self) -> int:
        return len(self.accounts)

    @property
    def rent_lamports(self) -> int:
        return sum(a.rent_lamports for a in self.accounts)

    @property
    def addresses(self) -> List[str]:
        return [a.address for a in self.accounts]


@dataclass(frozen=True)
class CloseTransaction:
    """Unsigned, compiled transaction closing every account of one batch."""
    batch: Batch
    snapshot: BlockhashSnapshot
    message: MessageV0

    @property
    def batch_id(self) -> int:
        return self.batch.batch_id

    @property
    def fee_payer(self) -> str:
        return str(self.message.account_keys[0])


@dataclass(frozen=True)
class SignedTransaction:
    unsigned: CloseTransaction
    transaction: VersionedTransaction

    @property
    def batch(self) -> Batch:
        return self.unsigned.batch

    @property
    def signature(self) -> str:
        return str(self.transaction.signatures[0])

    def serialize(self) -> bytes:
        return bytes(self.transaction)


@dataclass(frozen=True)
class SubmissionOutcome:
    """Broadcast result for one transaction: a handle, or the error that prevented one."""
    signed: SignedTransaction
    handle: Optional[str] = None
    error: Optional[LedgerError] = None

    @property
    def batch(self) -> Batch:
        return self.signed.batch

    @property
    def submitted(self) -> bool:
        return self.handle is not None


class BatchStatus(Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    ASSUMED_CONFIRMED = "assumed_confirmed"

    @property
    def counts_as_closed(self) -> bool:
        return self in (BatchStatus.CONFIRMED, BatchStatus.ASSUMED_CONFIRMED)


@dataclass(frozen=True)
class BatchResult:
    batch_id: int
    status: BatchStatus
    accounts_in_batch: int
    rent_lamports_in_batch: int
    handle: Optional[str] = None
    reason: str = ""
    addresses: Tuple[str, ...] = ()

    @classmethod
    def for_batch(cls, batch: Batch, status: BatchStatus, handle: Optional[str] = None, reason: str = "") -> "BatchResult":
        return cls(
            batch_id=batch.batch_id,
            status=status,
            accounts_in_batch=batch.size,
            rent_lamports_in_batch=batch.rent_lamports,
            handle=handle,
            reason=reason,
            addresses=tuple(batch.addresses),
        )


@dataclass(frozen=True)
class ProgressEvent:
    closed_count: int
    total_count: int
    result: Optional[BatchResult] = None


@dataclass
class ClosureOutcome:
    total_accounts_closed: int = 0
    total_lamports_recovered: int = 0
    batch_results: List[BatchResult] = field(default_factory=list)

    @property
    def total_sol_recovered(self) -> float:
        return lamports_to_sol(self.total_lamports_recovered)

    @property
    def failed_batches(self) -> List[BatchResult]:
        return [r for r in self.batch_results if r.status == BatchStatus.FAILED]

    @property
    def assumed_batches(self) -> List[BatchResult]:
        return [r for r in self.batch_results if r.status == BatchStatus.ASSUMED_CONFIRMED]

    def __repr__(self):
        return (
            f"ClosureOutcome(closed={self.total_accounts_closed}, "
            f"recovered={self.total_sol_recovered:.6f} SOL, "
            f"batches={len(self.batch_results)}, failed={len(self.failed_batches)})"
        )
