"""
CLI Unit Tests
==============
Typer commands driven through CliRunner with the fake ledger.
"""

import pytest
from typer.testing import CliRunner

from tests.mocks import FakeLedgerClient, FakeSigner, token_account
from trawler.modules.reclaimer.cli import app
from trawler.modules.reclaimer.config import TOKEN_PROGRAM_ID, ReclaimConfig
from trawler.shared.errors import LedgerRejectedError

runner = CliRunner()


class _LedgerContext(FakeLedgerClient):
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None


@pytest.fixture
def cli_ledger(monkeypatch):
    ledger = _LedgerContext()
    ledger.add_accounts(TOKEN_PROGRAM_ID, [token_account() for _ in range(3)])
    monkeypatch.setattr("trawler.modules.reclaimer.cli.LedgerClient", lambda: ledger)
    return ledger


def test_scan_lists_candidates(cli_ledger):
    result = runner.invoke(app, ["scan", FakeSigner().pubkey])

    assert result.exit_code == 0
    assert "Closable: 3" in result.output


def test_scan_invalid_owner_exits_with_error(cli_ledger):
    result = runner.invoke(app, ["scan", "not-a-wallet"])

    assert result.exit_code == 1
    assert cli_ledger.list_calls == 0


def test_close_is_a_dry_run_by_default(cli_ledger):
    result = runner.invoke(app, ["close", FakeSigner().pubkey])

    assert result.exit_code == 0
    assert "DRY RUN" in result.output
    assert cli_ledger.broadcasts == []
    assert cli_ledger.snapshot_calls == 1


def test_close_without_owner_needs_a_key(cli_ledger, monkeypatch):
    monkeypatch.setattr("trawler.config.settings.Settings.SOLANA_PRIVATE_KEY", "")

    result = runner.invoke(app, ["close"])

    assert result.exit_code == 1
    assert "SOLANA_PRIVATE_KEY" in result.output


def test_stats_requires_url(monkeypatch):
    monkeypatch.setattr("trawler.config.settings.Settings.STATS_URL", "")

    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 1
    assert "STATS_URL" in result.output


def test_close_live_renders_results_and_flags_failures(cli_ledger, monkeypatch):
    signer = FakeSigner()
    cli_ledger.add_accounts(TOKEN_PROGRAM_ID, [token_account() for _ in range(20)])
    cli_ledger.broadcast_errors[0] = [LedgerRejectedError("sendTransaction: rejected")]
    monkeypatch.setattr("trawler.config.settings.Settings.SOLANA_PRIVATE_KEY", str(signer.inner.keypair))
    monkeypatch.setattr("trawler.config.settings.Settings.STATS_URL", "")
    monkeypatch.setattr(
        "trawler.modules.reclaimer.cli.ReclaimConfig",
        lambda **kw: ReclaimConfig(CONFIRM_INITIAL_DELAY_S=0.0, CONFIRM_GRACE_PERIOD_S=0.0, **kw),
    )

    result = runner.invoke(app, ["close", "--live", "--yes"])

    assert result.exit_code == 2
    assert "Batch Results" in result.output
    assert "Closed 1 accounts" in result.output
    assert [tx.batch.batch_id for tx in cli_ledger.broadcasts] == [1]
