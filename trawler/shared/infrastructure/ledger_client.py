"""
Ledger Client - Async Solana JSON-RPC
=====================================
The only component that talks to the network.

Every failure is classified exactly once, here, from the HTTP status and
the JSON-RPC error code/data, and raised as a typed LedgerError:

    HTTP 429 / code 429, -32429        -> RateLimitedError
    timeout, connection error, 5xx     -> TransientLedgerError
    node unhealthy / behind codes      -> TransientLedgerError
    preflight err == BlockhashNotFound -> BlockhashExpiredError
    anything else                      -> LedgerRejectedError

Callers never inspect error text.

Provider failover follows the RpcConnectionManager pattern: a list of
endpoints, per-provider health stats, and rotation to the next endpoint
after a transport-level failure.
"""

from __future__ import annotations

import base64
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from solders.hash import Hash

from trawler.config.settings import Settings
from trawler.shared.errors import (
    BlockhashExpiredError,
    LedgerError,
    LedgerRejectedError,
    RateLimitedError,
    TransientLedgerError,
)
from trawler.shared.system.logging import Logger

RATE_LIMIT_CODES = {429, -32429}
# -32004 block not available, -32005 node unhealthy, -32014 status not yet available,
# -32016 min context slot not reached, -32603 internal error
TRANSIENT_CODES = {-32004, -32005, -32014, -32016, -32603}


class SignatureState(Enum):
    """Ledger-reported state of a broadcast transaction."""
    NOT_FOUND = "not_found"      # ledger has no record (yet)
    PROCESSED = "processed"      # seen, not yet confirmed
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"            # landed with an error
    UNKNOWN = "unknown"          # the status query itself failed

    @property
    def is_success(self) -> bool:
        return self in (SignatureState.CONFIRMED, SignatureState.FINALIZED)


@dataclass(frozen=True)
class StatusReport:
    state: SignatureState
    error: Any = None
    slot: Optional[int] = None


@dataclass(frozen=True)
class BlockhashSnapshot:
    """Recent blockhash shared by every transaction of one run."""
    blockhash: str
    last_valid_block_height: int

    def to_hash(self) -> Hash:
        return Hash.from_string(self.blockhash)


@dataclass
class LedgerConfig:
    urls: List[str] = field(default_factory=Settings.rpc_urls)
    timeout_s: float = Settings.RPC_TIMEOUT_S
    commitment: str = "confirmed"
    preflight_commitment: str = "confirmed"
    max_send_retries: int = 3


@dataclass
class ProviderStats:
    success: int = 0
    errors: int = 0
    rate_limited: int = 0
    avg_latency_ms: float = 0.0
    last_error: str = ""


class LedgerClient:
    """
    Async JSON-RPC client exposing the five ledger operations the
    reclaimer needs.

    Usage:
        async with LedgerClient() as ledger:
            accounts = await ledger.list_accounts_by_owner(owner, program_id)
            snapshot = await ledger.get_recent_snapshot()
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or LedgerConfig()
        if not self.config.urls:
            raise ValueError("LedgerClient needs at least one RPC url")

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._ids = itertools.count(1)

        self.current_index = 0
        self.stats: Dict[str, ProviderStats] = {url: ProviderStats() for url in self.config.urls}

        Logger.debug(f"[RPC] Ledger client initialized with {len(self.config.urls)} providers")

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # =========================================================================
    # PROVIDERS
    # =========================================================================

    def get_active_url(self) -> str:
        return self.config.urls[self.current_index]

    def switch_provider(self, reason: str = "Unknown") -> None:
        """Force rotation to next provider."""
        if len(self.config.urls) < 2:
            return
        old_url = self.get_active_url()
        self.current_index = (self.current_index + 1) % len(self.config.urls)
        Logger.warning(f"[RPC] Switching provider: {old_url} -> {self.get_active_url()} ({reason})")

    def _record_success(self, url: str, latency_ms: float) -> None:
        s = self.stats[url]
        s.success += 1
        # Exponential moving average for latency
        s.avg_latency_ms = latency_ms if s.avg_latency_ms == 0 else 0.9 * s.avg_latency_ms + 0.1 * latency_ms

    def _record_error(self, url: str, error: LedgerError) -> None:
        s = self.stats[url]
        s.errors += 1
        s.last_error = str(error)
        if isinstance(error, RateLimitedError):
            s.rate_limited += 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_provider": self.get_active_url(),
            "providers": {url: vars(s).copy() for url, s in self.stats.items()},
        }

    # =========================================================================
    # TRANSPORT + CLASSIFICATION
    # =========================================================================

    async def _call(self, method: str, params: list) -> Any:
        url = self.get_active_url()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        start = time.time()

        try:
            response = await self._http.post(url, json=payload, timeout=self.config.timeout_s)
        except httpx.TransportError as e:
            error = TransientLedgerError(f"{method}: {type(e).__name__}: {e}", method=method)
            self._record_error(url, error)
            self.switch_provider(reason=f"Network error: {type(e).__name__}")
            raise error from e

        if response.status_code != 200:
            error = self._classify_http_status(method, response.status_code)
            self._record_error(url, error)
            raise error

        try:
            body = response.json()
        except ValueError as e:
            error = TransientLedgerError(f"{method}: malformed JSON response", method=method)
            self._record_error(url, error)
            raise error from e

        rpc_error = body.get("error")
        if rpc_error:
            error = self._classify_rpc_error(method, rpc_error)
            self._record_error(url, error)
            raise error

        self._record_success(url, (time.time() - start) * 1000)
        return body.get("result")

    @staticmethod
    def _classify_http_status(method: str, status_code: int) -> LedgerError:
        if status_code == 429:
            return RateLimitedError(f"{method}: HTTP 429", code=429, method=method)
        if status_code >= 500:
            return TransientLedgerError(f"{method}: HTTP {status_code}", code=status_code, method=method)
        return LedgerRejectedError(f"{method}: HTTP {status_code}", code=status_code, method=method)

    @staticmethod
    def _classify_rpc_error(method: str, rpc_error: Dict[str, Any]) -> LedgerError:
        code = rpc_error.get("code")
        message = f"{method}: {rpc_error.get('message', 'RPC error')}"
        data = rpc_error.get("data")

        if code in RATE_LIMIT_CODES:
            return RateLimitedError(message, code=code, method=method)
        if isinstance(data, dict) and data.get("err") == "BlockhashNotFound":
            return BlockhashExpiredError(message, code=code, method=method)
        if code in TRANSIENT_CODES:
            return TransientLedgerError(message, code=code, method=method)
        return LedgerRejectedError(message, code=code, method=method)

    # =========================================================================
    # LEDGER OPERATIONS
    # =========================================================================

    async def list_accounts_by_owner(self, owner: str, program_id: str) -> List[Dict[str, Any]]:
        """Raw jsonParsed token accounts of `owner` under one token program."""
        result = await self._call(
            "getTokenAccountsByOwner",
            [
                owner,
                {"programId": program_id},
                {"encoding": "jsonParsed", "commitment": self.config.commitment},
            ],
        )
        if not result:
            return []
        return list(result.get("value") or [])

    async def get_recent_snapshot(self) -> BlockhashSnapshot:
        result = await self._call("getLatestBlockhash", [{"commitment": self.config.commitment}])
        value = (result or {}).get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise TransientLedgerError("getLatestBlockhash: no blockhash in response", method="getLatestBlockhash")
        return BlockhashSnapshot(
            blockhash=blockhash,
            last_valid_block_height=int(value.get("lastValidBlockHeight", 0)),
        )

    async def broadcast(self, signed_tx: Any) -> str:
        """
        Send a signed transaction, returning its signature (the handle).

        `signed_tx` is anything exposing serialize() -> bytes.
        """
        encoded = base64.b64encode(signed_tx.serialize()).decode("ascii")
        result = await self._call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.config.preflight_commitment,
                    "maxRetries": self.config.max_send_retries,
                },
            ],
        )
        return str(result)

    async def poll_status(self, handle: str) -> StatusReport:
        """Status from the node's recent-status cache. Raises LedgerError."""
        result = await self._call("getSignatureStatuses", [[handle]])
        return self._parse_status(result)

    async def get_status_once(self, handle: str) -> StatusReport:
        """
        Out-of-band lookup including transaction history.

        Never raises: a failed lookup is reported as SignatureState.UNKNOWN.
        """
        try:
            result = await self._call(
                "getSignatureStatuses",
                [[handle], {"searchTransactionHistory": True}],
            )
        except LedgerError as e:
            Logger.debug(f"[RPC] Out-of-band status for {handle[:16]}... failed: {e!r}")
            return StatusReport(state=SignatureState.UNKNOWN, error=str(e))
        return self._parse_status(result)

    @staticmethod
    def _parse_status(result: Optional[Dict[str, Any]]) -> StatusReport:
        values = (result or {}).get("value") or [None]
        entry = values[0]
        if entry is None:
            return StatusReport(state=SignatureState.NOT_FOUND)

        slot = entry.get("slot")
        if entry.get("err") is not None:
            return StatusReport(state=SignatureState.FAILED, error=entry["err"], slot=slot)

        confirmation = entry.get("confirmationStatus")
        if confirmation == "finalized":
            return StatusReport(state=SignatureState.FINALIZED, slot=slot)
        if confirmation == "confirmed":
            return StatusReport(state=SignatureState.CONFIRMED, slot=slot)
        return StatusReport(state=SignatureState.PROCESSED, slot=slot)
