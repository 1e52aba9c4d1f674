import os
from dotenv import load_dotenv

# Load Environment Variables from project root .env
env_path = os.path.join(os.path.dirname(__file__), "../../.env")
load_dotenv(env_path)


def _split_urls(raw: str) -> list:
    return [u.strip() for u in raw.split(",") if u.strip()]


class Settings:
    # ═══════════════════════════════════════════════════════════════════
    # RENT TRAWLER CONFIGURATION (Environment-Based)
    # ═══════════════════════════════════════════════════════════════════

    # Console output (file logging is unaffected)
    SILENT_MODE = os.getenv("SILENT_MODE", "false").lower() in ("1", "true", "yes")

    # Paths
    LOG_DIR = os.getenv(
        "LOG_DIR",
        os.path.abspath(os.path.join(os.path.dirname(__file__), "../../logs")),
    )

    # --- RPC ---
    RPC_URL = os.getenv("RPC_URL", "https://api.mainnet-beta.solana.com")
    # Comma-separated list, tried in order after RPC_URL on transport errors
    RPC_FALLBACK_URLS = _split_urls(os.getenv("RPC_FALLBACK_URLS", ""))
    RPC_TIMEOUT_S = float(os.getenv("RPC_TIMEOUT_S", "10"))

    # --- Fleet Stats ---
    # Endpoint accepting POST {solAmount, accountsClosed, wallet} and GET totals
    STATS_URL = os.getenv("STATS_URL", "")
    STATS_TIMEOUT_S = float(os.getenv("STATS_TIMEOUT_S", "5"))

    # --- Wallet ---
    # Base58 secret key, only needed for `trawler close --live`
    SOLANA_PRIVATE_KEY = os.getenv("SOLANA_PRIVATE_KEY", "")

    @staticmethod
    def rpc_urls() -> list:
        """Primary RPC followed by fallbacks, deduplicated, order preserved."""
        urls = [Settings.RPC_URL] + list(Settings.RPC_FALLBACK_URLS)
        return list(dict.fromkeys([u for u in urls if u]))
