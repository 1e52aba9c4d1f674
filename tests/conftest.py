"""
Rent Trawler Test Configuration
===============================
Shared fixtures for the test suite.
"""

import os
import sys
import tempfile

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep session logs out of the repo (read by Settings at import time)
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "trawler-test-logs"))


# ============================================================================
# SHARED FIXTURES
# ============================================================================

@pytest.fixture
def fast_config():
    """ReclaimConfig with zero backoff so confirmation tests run instantly."""
    from trawler.modules.reclaimer.config import ReclaimConfig

    return ReclaimConfig(
        CONFIRM_INITIAL_DELAY_S=0.0,
        CONFIRM_BACKOFF_MULTIPLIER=2.0,
        CONFIRM_MAX_ATTEMPTS=3,
        CONFIRM_GRACE_PERIOD_S=0.0,
    )


@pytest.fixture
def owner_signer():
    """A KeypairSigner with a fresh keypair; its pubkey is the wallet owner."""
    from tests.mocks.mock_signer import FakeSigner

    return FakeSigner()


@pytest.fixture
def fake_ledger():
    from tests.mocks.mock_ledger import FakeLedgerClient

    return FakeLedgerClient()
