"""
Account Scanner - Discovery Engine
==================================
Finds the owner's token accounts that can be closed for their rent.

Workflow:
1. Validate the owner address (before any network call)
2. Query both token programs in parallel
3. Keep accounts whose raw token amount is exactly zero
4. Drop frozen accounts and Token-2022 accounts with withheld transfer fees

No caching: every scan re-derives ledger truth, so scanning again after a
run shows exactly what is still open.
"""

import asyncio
from typing import Any, Dict, List, Optional, Union

from solders.pubkey import Pubkey

from trawler.modules.reclaimer.config import ReclaimConfig
from trawler.modules.reclaimer.models import CandidateAccount, ScanReport, SkippedAccount
from trawler.shared.errors import InvalidAddressError, LedgerError, ScanError
from trawler.shared.infrastructure.ledger_client import LedgerClient
from trawler.shared.system.logging import Logger


def validate_owner(owner: str) -> str:
    """Return the canonical base58 form of `owner` or raise InvalidAddressError."""
    if not isinstance(owner, str) or not owner.strip():
        raise InvalidAddressError(str(owner), "empty address")
    try:
        return str(Pubkey.from_string(owner.strip()))
    except ValueError as e:
        raise InvalidAddressError(owner, str(e)) from e


def _withheld_amount(extensions: Optional[List[Dict[str, Any]]]) -> int:
    """Withheld transfer-fee amount carried by a Token-2022 account, 0 if none."""
    for ext in extensions or []:
        if ext.get("extension") == "transferFeeAmount":
            state = ext.get("state") or {}
            return int(state.get("withheldAmount") or 0)
    return 0


class AccountScanner:
    """
    Observational scanner over the two token programs.

    Usage:
        scanner = AccountScanner(ledger)
        report = await scanner.scan("7xKX...")
        report.candidates  # closable accounts
    """

    def __init__(self, ledger: LedgerClient, config: Optional[ReclaimConfig] = None):
        self.ledger = ledger
        self.config = config or ReclaimConfig()

    async def scan(self, owner: str) -> ScanReport:
        owner = validate_owner(owner)
        programs = list(self.config.PROGRAM_IDS)

        Logger.info(f"[SCANNER] Scanning {owner[:8]}... across {len(programs)} token programs")

        try:
            per_program = await asyncio.gather(
                *(self.ledger.list_accounts_by_owner(owner, program_id) for program_id in programs)
            )
        except LedgerError as e:
            Logger.error(f"[SCANNER] Account query failed: {e!r}")
            raise ScanError(owner, e) from e

        raw_accounts = [item for accounts in per_program for item in accounts]
        report = ScanReport(owner=owner, total_accounts=len(raw_accounts))

        for item in raw_accounts:
            verdict = self._classify(item)
            if isinstance(verdict, CandidateAccount):
                report.candidates.append(verdict)
            elif isinstance(verdict, SkippedAccount):
                report.skipped.append(verdict)
                Logger.debug(f"[SCANNER] Skipped {verdict.address[:8]}... ({verdict.reason})")

        if report.candidates:
            Logger.success(
                f"[SCANNER] {len(report.candidates)}/{report.total_accounts} accounts closable "
                f"({report.recoverable_sol:.5f} SOL recoverable)"
            )
        else:
            Logger.info(f"[SCANNER] No closable accounts ({report.total_accounts} scanned)")
        if report.skipped:
            Logger.warning(f"[SCANNER] {len(report.skipped)} empty accounts cannot be closed")

        return report

    @staticmethod
    def _classify(item: Dict[str, Any]) -> Union[CandidateAccount, SkippedAccount, None]:
        """Candidate, skipped-with-reason, or None for accounts still holding tokens."""
        address = item.get("pubkey", "")
        account = item.get("account") or {}
        program = account.get("owner", "")

        data = account.get("data")
        parsed = data.get("parsed") if isinstance(data, dict) else None
        info = (parsed or {}).get("info") or {}
        token_amount = info.get("tokenAmount")

        if token_amount is None or "amount" not in token_amount:
            return SkippedAccount(address, program, "unparsed account data")
        if int(token_amount["amount"]) != 0:
            return None

        if info.get("state") == "frozen":
            return SkippedAccount(address, program, "frozen")

        withheld = _withheld_amount(info.get("extensions"))
        if withheld > 0:
            return SkippedAccount(address, program, f"withheld transfer fees ({withheld})")

        return CandidateAccount(
            address=address,
            owning_program=program,
            rent_lamports=int(account.get("lamports", 0)),
            mint=info.get("mint", ""),
        )
