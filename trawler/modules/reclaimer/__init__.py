"""
Reclaimer Module
================
Closes zero-balance token accounts and reclaims their rent.

Components:
- AccountScanner: discovery across Token and Token-2022
- BatchPlanner: size-bounded partitioning
- TransactionBuilder: close-account transactions on one blockhash
- SigningCoordinator: bulk or sequential signing, all-or-nothing
- SubmissionManager: concurrent broadcast
- ConfirmationTracker: backoff polling with ambiguity resolution
- OutcomeAggregator: totals, progress and stats recording
- ReclaimEngine: facade wiring one run together
"""

from trawler.modules.reclaimer.aggregator import OutcomeAggregator
from trawler.modules.reclaimer.builder import TransactionBuilder
from trawler.modules.reclaimer.cancellation import RunCancellation
from trawler.modules.reclaimer.config import ReclaimConfig
from trawler.modules.reclaimer.confirmation import ConfirmationTracker, ResolvedHandleCache
from trawler.modules.reclaimer.engine import ReclaimEngine
from trawler.modules.reclaimer.models import (
    Batch,
    BatchResult,
    BatchStatus,
    CandidateAccount,
    ClosureOutcome,
    ProgressEvent,
    ScanReport,
)
from trawler.modules.reclaimer.planner import BatchPlanner
from trawler.modules.reclaimer.scanner import AccountScanner
from trawler.modules.reclaimer.signing import SigningCoordinator
from trawler.modules.reclaimer.submission import SubmissionManager

__all__ = [
    "AccountScanner",
    "Batch",
    "BatchPlanner",
    "BatchResult",
    "BatchStatus",
    "CandidateAccount",
    "ClosureOutcome",
    "ConfirmationTracker",
    "OutcomeAggregator",
    "ProgressEvent",
    "ReclaimConfig",
    "ReclaimEngine",
    "ResolvedHandleCache",
    "RunCancellation",
    "ScanReport",
    "SigningCoordinator",
    "SubmissionManager",
    "TransactionBuilder",
]
