from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from arena.ledger.constants import BASE_RPC_URL, DEFAULT_DATA_DIR, PROGRAM_ID, ROLLUP_RPC_URL
from arena.services.txlog import journal_path


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_list(name: str) -> List[str]:
    return [x.strip() for x in os.getenv(name, "").split(",") if x.strip()]


@dataclass(frozen=True)
class TradingConfig:
    """Configuration container for the arena client."""

    # Execution paths
    rollup_rpc_url: str = ROLLUP_RPC_URL
    base_rpc_url: str = BASE_RPC_URL
    # Extra read endpoints for the base chain (rotation on 429 / RPC errors)
    base_rpc_fallbacks: List[str] = field(default_factory=list)
    commitment: str = "confirmed"

    # Program + competition
    program_id: str = str(PROGRAM_ID)
    competition_address: Optional[str] = None

    # Local state (session key + tx journal)
    data_dir: Path = DEFAULT_DATA_DIR
    txlog_enabled: bool = True

    # Absorbs fixed-point rounding on quote comparisons only
    balance_tolerance: Decimal = Decimal("0.005")

    # Airdrop balance polling
    airdrop_poll_attempts: int = 10
    airdrop_poll_delay: float = 3.0

    # Read retries per endpoint
    rpc_attempts: int = 2

    @property
    def session_store_path(self) -> Path:
        return self.data_dir / "session_wallet.json"

    @property
    def txlog_path(self) -> Optional[Path]:
        return journal_path(self.data_dir) if self.txlog_enabled else None

    @classmethod
    def from_env(cls) -> "TradingConfig":
        return cls(
            rollup_rpc_url=_env("ARENA_ROLLUP_RPC_URL", ROLLUP_RPC_URL),
            base_rpc_url=_env("ARENA_BASE_RPC_URL", BASE_RPC_URL),
            base_rpc_fallbacks=_env_list("ARENA_RPC_LIST"),
            commitment=_env("ARENA_COMMITMENT", "confirmed"),
            program_id=_env("ARENA_PROGRAM_ID", str(PROGRAM_ID)),
            competition_address=_env("ARENA_COMPETITION") or None,
            data_dir=Path(_env("ARENA_DATA_DIR", str(DEFAULT_DATA_DIR))).expanduser(),
            txlog_enabled=_as_bool(os.getenv("ARENA_TXLOG"), True),
            balance_tolerance=Decimal(_env("ARENA_BALANCE_TOLERANCE", "0.005")),
            airdrop_poll_attempts=max(1, int(_env("ARENA_AIRDROP_POLL_ATTEMPTS", "10"))),
            airdrop_poll_delay=float(_env("ARENA_AIRDROP_POLL_DELAY", "3.0")),
            rpc_attempts=max(1, int(_env("ARENA_RPC_ATTEMPTS", "2"))),
        )


def get_config(env_file: Optional[Path] = None) -> TradingConfig:
    """Load ``.env`` (nearest one above the working directory by default) and return a ``TradingConfig``."""

    load_dotenv(dotenv_path=env_file or find_dotenv(usecwd=True), override=False)
    return TradingConfig.from_env()
