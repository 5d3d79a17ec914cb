import os
import sys
from typing import Dict, List, Optional

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from arena.core.trading_core.config import TradingConfig
from arena.core.trading_core.context import TradingContext
from arena.core.trading_core.models import UserTradingAccount
from arena.ledger import codec
from arena.ledger.constants import PROGRAM_ID
from arena.ledger.pdas import competition_pda, user_account_pda
from arena.ledger.rpc import BlockReference, SignatureStatus
from arena.services import txlog
from arena.services.signer_loader import select_wallet


class FakeLedger:
    """In-memory stand-in for LedgerRpc; records every raw transaction sent."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.accounts: Dict[Pubkey, bytes] = {}
        self.balances: Dict[Pubkey, int] = {}
        self.sent: List[Transaction] = []
        self.send_error: Optional[Exception] = None
        self.confirm_status = SignatureStatus(slot=10, confirmation_status="confirmed")
        self.confirm_error: Optional[Exception] = None
        self.duplicate_status: Optional[SignatureStatus] = None
        self.status_lookups: List[str] = []
        self.airdrops: List[tuple] = []
        self.blockhash = Hash(bytes([7] * 32))
        self.closed = False

    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        return self.accounts.get(address)

    async def get_program_accounts(self, program_id: Pubkey, data_size: Optional[int] = None):
        return [(k, v) for k, v in self.accounts.items() if data_size is None or len(v) == data_size]

    async def get_latest_blockhash(self) -> BlockReference:
        return BlockReference(blockhash=self.blockhash, last_valid_block_height=100)

    async def send_raw_transaction(self, raw: bytes) -> Signature:
        tx = Transaction.from_bytes(raw)
        self.sent.append(tx)
        if self.send_error is not None:
            raise self.send_error
        return tx.signatures[0]

    async def confirm_transaction(self, signature: Signature, reference: BlockReference) -> SignatureStatus:
        if self.confirm_error is not None:
            raise self.confirm_error
        return self.confirm_status

    async def get_signature_status(self, signature: Signature) -> Optional[SignatureStatus]:
        self.status_lookups.append(str(signature))
        return self.duplicate_status

    async def get_balance(self, address: Pubkey) -> int:
        return self.balances.get(address, 0)

    async def request_airdrop(self, address: Pubkey, lamports: int) -> Signature:
        self.airdrops.append((address, lamports))
        return Signature.default()

    async def close(self) -> None:
        self.closed = True


def user_account_bytes(quote: str = "1000", base: str = "0", total_positions: int = 0, pair_index: int = 0) -> bytes:
    return UserTradingAccount(
        pair_index=pair_index,
        token_in_balance=codec.to_quote_units(quote),
        token_out_balance=codec.to_base_units(base),
        total_positions=total_positions,
        created_at=1_700_000_000,
    ).encode()


@pytest.fixture(autouse=True)
def _tmp_txlog(tmp_path, monkeypatch):
    monkeypatch.setattr(txlog, "TXLOG_FILE", tmp_path / "arena_txlog.jsonl")
    yield


@pytest.fixture
def keypair():
    return Keypair.from_seed(bytes(range(32)))


@pytest.fixture
def ledgers():
    return FakeLedger("rollup"), FakeLedger("base")


@pytest.fixture
def ctx(tmp_path, keypair, ledgers):
    rollup, base = ledgers
    return TradingContext(
        config=TradingConfig(data_dir=tmp_path, airdrop_poll_attempts=2, airdrop_poll_delay=0),
        rollup=rollup,
        base=base,
        wallet=select_wallet(local=keypair),
        program_id=PROGRAM_ID,
        competition=competition_pda(PROGRAM_ID),
    )


@pytest.fixture
def fund(ctx, keypair):
    """Seed a trading account for ``pair_index`` on the rollup."""

    def _fund(pair_index: int = 0, **kwargs) -> Pubkey:
        address = user_account_pda(keypair.pubkey(), pair_index)
        ctx.rollup.accounts[address] = user_account_bytes(pair_index=pair_index, **kwargs)
        return address

    return _fund
