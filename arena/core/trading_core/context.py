from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from arena.core.logging import log
from arena.core.trading_core.config import TradingConfig, get_config
from arena.ledger.constants import BASE_CHAIN, ROLLUP
from arena.ledger.pdas import competition_pda
from arena.ledger.rpc import LedgerRpc
from arena.services.signer_loader import SessionWalletStore, WalletSource, select_wallet


@dataclass
class TradingContext:
    """Everything one caller session needs, passed explicitly to the facade."""

    config: TradingConfig
    rollup: LedgerRpc
    base: LedgerRpc
    wallet: WalletSource
    program_id: Pubkey
    competition: Pubkey
    _tasks: Set["asyncio.Task[Any]"] = field(default_factory=set, repr=False)

    @property
    def paths(self) -> Dict[str, LedgerRpc]:
        return {ROLLUP: self.rollup, BASE_CHAIN: self.base}

    @property
    def owner(self) -> Pubkey:
        return self.wallet.public_key

    def spawn(self, coro) -> "asyncio.Task[Any]":
        """Run a background coroutine tied to this session."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.rollup.close()
        await self.base.close()

    @classmethod
    def create(cls,
               config: Optional[TradingConfig] = None,
               external_wallet: Any = None,
               local_keypair: Optional[Keypair] = None) -> "TradingContext":
        """
        Build a session:
          - RPC handles for both execution paths
          - wallet: connected external wallet first, else the persisted session key
          - competition address from config, else the program's competition PDA
        """
        cfg = config or get_config()
        program_id = Pubkey.from_string(cfg.program_id)

        if local_keypair is None and not _can_sign(external_wallet):
            local_keypair = SessionWalletStore(cfg.session_store_path).load_or_create()
        wallet = select_wallet(external_wallet, local_keypair)

        competition = (
            Pubkey.from_string(cfg.competition_address)
            if cfg.competition_address
            else competition_pda(program_id)
        )
        rollup = LedgerRpc(ROLLUP, [cfg.rollup_rpc_url], cfg.commitment, attempts_per_endpoint=cfg.rpc_attempts)
        base = LedgerRpc(BASE_CHAIN, [cfg.base_rpc_url, *cfg.base_rpc_fallbacks], cfg.commitment,
                         attempts_per_endpoint=cfg.rpc_attempts)
        log.info(f"Session ready: wallet={wallet.public_key} ({wallet.kind}) competition={competition}",
                 source="TradingContext")
        return cls(config=cfg, rollup=rollup, base=base, wallet=wallet, program_id=program_id, competition=competition)


def _can_sign(external: Any) -> bool:
    return external is not None and callable(getattr(external, "sign_transaction", None))
