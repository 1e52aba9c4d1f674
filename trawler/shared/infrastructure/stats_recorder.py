"""
Fleet Stats Recorder
====================
Narrow record/read interface over the external platform-wide stats store.

    record(lamports_recovered, accounts_closed, owner)
    read() -> FleetStats

HttpStatsRecorder talks to the stats endpoint (POST/GET JSON, body
{solAmount, accountsClosed, wallet}). InMemoryStatsRecorder keeps the same
totals locally with the same validation, for tests and offline runs.

Recording is fire-and-forget from the reclaimer's point of view: a failure
here is logged by the caller and never changes a ClosureOutcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from trawler.config.settings import Settings

LAMPORTS_PER_SOL = 1_000_000_000


@dataclass
class FleetStats:
    total_sol: float = 0.0
    total_claims: int = 0
    total_accounts: int = 0

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "FleetStats":
        return cls(
            total_sol=float(data.get("totalSol") or 0),
            total_claims=int(data.get("totalClaims") or 0),
            total_accounts=int(data.get("totalAccounts") or 0),
        )


class StatsRecorder:
    """Interface for the external stats store."""

    async def record(self, lamports_recovered: int, accounts_closed: int, owner: str) -> FleetStats:
        raise NotImplementedError

    async def read(self) -> FleetStats:
        raise NotImplementedError


class InMemoryStatsRecorder(StatsRecorder):
    def __init__(self):
        self.stats = FleetStats()

    async def record(self, lamports_recovered: int, accounts_closed: int, owner: str) -> FleetStats:
        if lamports_recovered < 0:
            raise ValueError(f"Invalid amount: {lamports_recovered}")
        self.stats = FleetStats(
            total_sol=self.stats.total_sol + lamports_recovered / LAMPORTS_PER_SOL,
            total_claims=self.stats.total_claims + 1,
            total_accounts=self.stats.total_accounts + max(accounts_closed, 0),
        )
        return self.stats

    async def read(self) -> FleetStats:
        return self.stats


class HttpStatsRecorder(StatsRecorder):
    """
    Stats store behind an HTTP endpoint.

    Usage:
        recorder = HttpStatsRecorder("https://example.org/api/trawler-stats")
        await recorder.record(2_039_280, 1, owner)
        stats = await recorder.read()
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_s: float = Settings.STATS_TIMEOUT_S,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or Settings.STATS_URL
        if not self.url:
            raise ValueError("STATS_URL is not configured")
        self.timeout_s = timeout_s
        self._http = http_client

    async def _request(self, method: str, **kwargs) -> Dict[str, Any]:
        if self._http is not None:
            response = await self._http.request(method, self.url, timeout=self.timeout_s, **kwargs)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.request(method, self.url, timeout=self.timeout_s, **kwargs)
        response.raise_for_status()
        return response.json()

    async def record(self, lamports_recovered: int, accounts_closed: int, owner: str) -> FleetStats:
        payload = {
            "solAmount": lamports_recovered / LAMPORTS_PER_SOL,
            "accountsClosed": accounts_closed,
            "wallet": owner,
        }
        return FleetStats.from_payload(await self._request("POST", json=payload))

    async def read(self) -> FleetStats:
        return FleetStats.from_payload(await self._request("GET"))
