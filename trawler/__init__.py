"""
Rent Trawler
============
Reclaims the rent locked in empty SPL token accounts owned by a wallet.

Packages:
- trawler.config: environment-driven settings
- trawler.shared: logging and ledger/signer/stats infrastructure
- trawler.modules.reclaimer: scan -> plan -> build -> sign -> submit -> confirm
"""

__version__ = "0.3.0"
