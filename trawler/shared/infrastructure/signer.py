"""
Signer Variants
===============
A signer is chosen ONCE, at construction, as one of two variants:

    BulkCapable(sign_one, sign_all)  -> one authorization call for all txs
    SequentialOnly(sign_one)         -> one authorization call per tx

The coordinator matches on the variant; nothing probes for a sign_all
attribute at call time.

Sign callables are async and receive transactions exposing `.message`
(a compiled MessageV0). They return signed VersionedTransactions, or raise
SigningRejectedError when the wallet/user refuses.

KeypairSigner wraps a local solders Keypair (SOLANA_PRIVATE_KEY) and is
bulk capable.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

import base58
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from trawler.config.settings import Settings
from trawler.shared.errors import SigningRejectedError
from trawler.shared.system.logging import Logger

SignOne = Callable[[Any], Awaitable[VersionedTransaction]]
SignAll = Callable[[List[Any]], Awaitable[List[VersionedTransaction]]]


@dataclass(frozen=True)
class BulkCapable:
    sign_one: SignOne
    sign_all: SignAll
    name: str = "bulk"


@dataclass(frozen=True)
class SequentialOnly:
    sign_one: SignOne
    name: str = "sequential"


SignerVariant = Union[BulkCapable, SequentialOnly]


class KeypairSigner:
    """
    Signs with a local keypair.

    Usage:
        signer = KeypairSigner.from_env()
        variant = signer.as_variant()          # BulkCapable
        variant = signer.as_variant(bulk=False)  # SequentialOnly
    """

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @classmethod
    def from_base58(cls, secret: str) -> "KeypairSigner":
        try:
            secret_bytes = base58.b58decode(secret.strip())
            return cls(Keypair.from_bytes(secret_bytes))
        except ValueError as e:
            raise ValueError(f"Invalid key format: {e}") from e

    @classmethod
    def from_env(cls, secret: Optional[str] = None) -> "KeypairSigner":
        secret = secret if secret is not None else Settings.SOLANA_PRIVATE_KEY
        if not secret:
            raise ValueError("SOLANA_PRIVATE_KEY is not set")
        return cls.from_base58(secret)

    @property
    def pubkey(self) -> str:
        return str(self.keypair.pubkey())

    async def sign_one(self, tx: Any) -> VersionedTransaction:
        payer = tx.message.account_keys[0]
        if payer != self.keypair.pubkey():
            raise SigningRejectedError(
                f"Fee payer {payer} does not match signer {self.pubkey}",
                batch_id=getattr(tx, "batch_id", None),
            )
        return VersionedTransaction(tx.message, [self.keypair])

    async def sign_all(self, txs: Sequence[Any]) -> List[VersionedTransaction]:
        signed = [await self.sign_one(tx) for tx in txs]
        Logger.debug(f"[SIGNER] Keypair signed {len(signed)} transactions")
        return signed

    def as_variant(self, bulk: bool = True) -> SignerVariant:
        if bulk:
            return BulkCapable(sign_one=self.sign_one, sign_all=self.sign_all, name="keypair")
        return SequentialOnly(sign_one=self.sign_one, name="keypair")
