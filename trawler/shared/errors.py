"""
Trawler Error Taxonomy
======================
Every failure the reclaim pipeline can raise or record.

Pre-submission errors (raised, abort the run with zero side effects):
- InvalidAddressError: owner address failed validation, before any query
- ScanError: a read query failed; caller may simply re-scan
- SigningRejectedError: the signer refused at least one transaction
- RunCancelledError: the run was cancelled before anything was broadcast

Ledger errors (classified once inside LedgerClient, carried as values by
the submission and confirmation stages):
- RateLimitedError: HTTP 429 / provider throttle, drives backoff
- TransientLedgerError: timeouts, connection failures, 5xx
- BlockhashExpiredError: the shared snapshot aged out, rebuild required
- LedgerRejectedError: a definitive rejection from the ledger
"""

from enum import Enum
from typing import Optional


class TrawlerError(Exception):
    """Base class for all trawler errors."""


class InvalidAddressError(TrawlerError):
    def __init__(self, address: str, reason: str = ""):
        self.address = address
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid wallet address {address!r}{detail}")


class ScanError(TrawlerError):
    """Read query failed. Re-scanning is idempotent, so no retry happens here."""

    def __init__(self, owner: str, cause: Optional[Exception] = None):
        self.owner = owner
        self.cause = cause
        super().__init__(f"Failed to fetch accounts for {owner}: {cause}")


class SigningRejectedError(TrawlerError):
    def __init__(self, message: str = "Signer rejected the transactions", batch_id: Optional[int] = None):
        self.batch_id = batch_id
        super().__init__(message)


class RunCancelledError(TrawlerError):
    """Cancellation observed before submission. Nothing was broadcast."""


# =============================================================================
# LEDGER ERRORS
# =============================================================================

class LedgerErrorKind(Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    BLOCKHASH_EXPIRED = "blockhash_expired"
    REJECTED = "rejected"


class LedgerError(TrawlerError):
    """A classified failure from the ledger RPC boundary."""

    kind: LedgerErrorKind = LedgerErrorKind.REJECTED

    def __init__(self, message: str, code: Optional[int] = None, method: str = ""):
        self.code = code
        self.method = method
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.kind in (LedgerErrorKind.RATE_LIMITED, LedgerErrorKind.TRANSIENT)

    def __repr__(self):
        return f"{type(self).__name__}(kind={self.kind.value}, code={self.code}, method={self.method!r})"


class RateLimitedError(LedgerError):
    kind = LedgerErrorKind.RATE_LIMITED


class TransientLedgerError(LedgerError):
    kind = LedgerErrorKind.TRANSIENT


class BlockhashExpiredError(LedgerError):
    kind = LedgerErrorKind.BLOCKHASH_EXPIRED


class LedgerRejectedError(LedgerError):
    kind = LedgerErrorKind.REJECTED
