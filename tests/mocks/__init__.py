"""
Rent Trawler Test Mocks
=======================
Reusable fakes for isolated testing.
"""

from tests.mocks.mock_ledger import FakeLedgerClient, new_address, status, token_account
from tests.mocks.mock_signer import FakeSigner

__all__ = [
    "FakeLedgerClient",
    "FakeSigner",
    "new_address",
    "status",
    "token_account",
]
