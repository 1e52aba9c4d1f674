"""
Reclaimer Configuration
=======================
Capacity, backoff and ambiguity-policy tunables for a closing run.
"""

from dataclasses import dataclass

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

# Solana packet limit for a serialized transaction
PACKET_DATA_SIZE = 1232


@dataclass
class ReclaimConfig:
    """Configuration for a rent reclamation run."""

    # Programs holding token accounts (scanned in parallel)
    PROGRAM_IDS: tuple = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)

    # Capacity: close instructions per transaction. Each close adds one
    # 32-byte account key plus ~7 bytes of instruction, 22 keeps a mixed
    # Token/Token-2022 batch well under PACKET_DATA_SIZE.
    ACCOUNTS_PER_TX: int = 22

    # Confirmation backoff: wait D, then D*F, D*F^2 ... for R polls
    CONFIRM_INITIAL_DELAY_S: float = 1.0
    CONFIRM_BACKOFF_MULTIPLIER: float = 2.0
    CONFIRM_MAX_ATTEMPTS: int = 6
    # Pause before the single out-of-band status check
    CONFIRM_GRACE_PERIOD_S: float = 2.0

    # Ambiguity policy: True resolves an inconclusive batch to
    # ASSUMED_CONFIRMED, False (strict) resolves it to FAILED
    OPTIMISTIC_ON_AMBIGUITY: bool = True

    # Rounds of rebuild/re-sign/re-submit for batches whose blockhash expired
    MAX_REBUILDS: int = 1

    # Safety Guardrails
    DRY_RUN_DEFAULT: bool = True  # CLI never broadcasts unless --live

    def backoff_delays(self) -> list:
        """Delay before each poll attempt."""
        return [
            self.CONFIRM_INITIAL_DELAY_S * (self.CONFIRM_BACKOFF_MULTIPLIER ** i)
            for i in range(self.CONFIRM_MAX_ATTEMPTS)
        ]
