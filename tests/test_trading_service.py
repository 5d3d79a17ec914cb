import asyncio
from decimal import Decimal

import pytest
from solders.keypair import Keypair

from arena.core.trading_core.errors import (
    AccountNotInitialized,
    InsufficientBalance,
    InvalidTradeParameters,
    NotPositionOwner,
    PositionAlreadyClosed,
    PositionNotFound,
    SubmissionError,
    UnknownTradingPair,
    ValidationError,
)
from arena.core.trading_core.models import (
    CompetitionRecord,
    Direction,
    ParticipantRecord,
    PositionRecord,
    PositionStatus,
)
from arena.core.trading_core.trading_service import TradingService
from arena.ledger import codec
from arena.ledger.constants import PROGRAM_ID, ROLLUP
from arena.ledger.pdas import participant_pda, position_pda, user_account_pda


@pytest.fixture
def svc(ctx):
    return TradingService(ctx)


def _sent_ix(ledger, index=-1):
    tx = ledger.sent[index]
    return tx, tx.message.instructions[0]


def _position(owner, pair_index=0, position_id=0, status=PositionStatus.ACTIVE):
    return PositionRecord(owner=owner, pair_index=pair_index, position_id=position_id, direction=Direction.LONG,
                          amount_token_out=1_000_000_000, entry_price=150_000_000, take_profit_price=0,
                          stop_loss_price=0, status=status, opened_at=1, closed_at=0)


# ---------------------------------------------------------------------------
# open_position
# ---------------------------------------------------------------------------

def test_open_long_sol(svc, ctx, ledgers, fund):
    rollup, base = ledgers
    fund(0, quote="1000.00", total_positions=4)

    sig = asyncio.run(svc.open_position("SOL", "long", 198.50, 500))

    tx, ix = _sent_ix(rollup)
    assert str(tx.signatures[0]) == sig
    assert not base.sent
    args = codec.decode_instruction(codec.IX_OPEN_POSITION, bytes(ix.data))
    assert args["pair_index"] == 0
    assert args["direction"] == int(Direction.LONG)
    assert args["amount_token_out"] == 2_518_891_687
    assert args["entry_price"] == 198_500_000
    assert args["position_id"] == 4
    assert args["take_profit_price"] == 0 and args["stop_loss_price"] == 0
    keys = tx.message.account_keys
    assert position_pda(ctx.owner, 0, 4) in keys
    assert ctx.competition in keys
    assert keys[tx.message.instructions[0].program_id_index] == PROGRAM_ID


def test_open_with_exits(svc, ledgers, fund):
    rollup, _ = ledgers
    fund(0, quote="1000")
    asyncio.run(svc.open_position("SOL", Direction.LONG, "198.50", "500", take_profit="210", stop_loss="190"))
    _, ix = _sent_ix(rollup)
    args = codec.decode_instruction(codec.IX_OPEN_POSITION, bytes(ix.data))
    assert args["take_profit_price"] == 210_000_000
    assert args["stop_loss_price"] == 190_000_000


def test_open_rejects_misplaced_exit(svc, ledgers, fund):
    rollup, _ = ledgers
    fund(0, quote="1000")
    with pytest.raises(InvalidTradeParameters):
        asyncio.run(svc.open_position("SOL", "short", 198.50, 500, take_profit=210))
    assert rollup.sent == []


def test_open_insufficient_balance_sends_nothing(svc, ledgers, fund):
    rollup, base = ledgers
    fund(0, quote="100.00")
    with pytest.raises(InsufficientBalance):
        asyncio.run(svc.open_position("SOL", "long", 198.50, "100.01"))
    assert rollup.sent == [] and base.sent == []


def test_open_short_needs_base_inventory(svc, ledgers, fund):
    fund(0, quote="1000", base="1")
    with pytest.raises(InsufficientBalance):
        asyncio.run(svc.open_position("SOL", "short", 198.50, 500))


def test_open_without_account(svc, ledgers):
    with pytest.raises(AccountNotInitialized):
        asyncio.run(svc.open_position("BTC", "long", 60000, 500))


def test_open_unknown_pair_and_bad_values(svc, fund):
    fund(0)
    with pytest.raises(UnknownTradingPair):
        asyncio.run(svc.open_position("DOGE", "long", 1, 1))
    with pytest.raises(InvalidTradeParameters):
        asyncio.run(svc.open_position("SOL", "sideways", 1, 1))
    with pytest.raises(InvalidTradeParameters):
        asyncio.run(svc.open_position("SOL", "long", 0, 1))


def test_open_falls_back_to_base(svc, ctx, ledgers, fund):
    rollup, base = ledgers
    fund(0, quote="1000")
    rollup.send_error = SubmissionError(ROLLUP, "rollup unavailable")
    sig = asyncio.run(svc.open_position("SOL", "long", 198.50, 500))
    assert len(rollup.sent) == 1
    assert len(base.sent) == 1
    assert str(base.sent[0].signatures[0]) == sig


# ---------------------------------------------------------------------------
# close / spot
# ---------------------------------------------------------------------------

def test_close_position(svc, ctx, ledgers, fund):
    rollup, _ = ledgers
    fund(0)
    address = position_pda(ctx.owner, 0, 2)
    rollup.accounts[address] = _position(ctx.owner, position_id=2).encode()

    asyncio.run(svc.close_position("SOL", 2, "201.25"))

    tx, ix = _sent_ix(rollup)
    assert codec.decode_instruction(codec.IX_CLOSE_POSITION, bytes(ix.data)) == {"exit_price": 201_250_000}
    assert address in tx.message.account_keys
    assert user_account_pda(ctx.owner, 0) in tx.message.account_keys


def test_close_missing_position(svc):
    with pytest.raises(PositionNotFound):
        asyncio.run(svc.close_position("SOL", 9, 100))


def test_close_someone_elses_position(svc, ctx, ledgers):
    rollup, _ = ledgers
    stranger = Keypair.from_seed(bytes([5] * 32)).pubkey()
    address = position_pda(stranger, 0, 0)
    rollup.accounts[address] = _position(stranger).encode()
    with pytest.raises(NotPositionOwner):
        asyncio.run(svc.close_direct_position(str(address), 100))
    assert rollup.sent == []


def test_close_already_closed(svc, ctx, ledgers):
    rollup, _ = ledgers
    address = position_pda(ctx.owner, 0, 0)
    rollup.accounts[address] = _position(ctx.owner, status=PositionStatus.CLOSED).encode()
    with pytest.raises(PositionAlreadyClosed):
        asyncio.run(svc.close_direct_position(address, 100))


def test_close_bad_address(svc):
    with pytest.raises(InvalidTradeParameters):
        asyncio.run(svc.close_direct_position("not-a-key", 100))


def test_buy_spot(svc, ledgers, fund):
    rollup, _ = ledgers
    fund(0, quote="500")
    asyncio.run(svc.buy_spot("SOL", "200", "2.5"))
    _, ix = _sent_ix(rollup)
    args = codec.decode_instruction(codec.IX_BUY_SPOT, bytes(ix.data))
    assert args == {"amount_token_out": 2_500_000_000, "price": 200_000_000}


def test_buy_boundary(svc, ledgers, fund):
    rollup, _ = ledgers
    fund(0, quote="50.00")
    asyncio.run(svc.buy_spot("SOL", "50", "1"))
    assert len(rollup.sent) == 1
    fund(0, quote="100.00")
    with pytest.raises(InsufficientBalance):
        asyncio.run(svc.buy_spot("SOL", "100.01", "1"))
    assert len(rollup.sent) == 1


def test_sell_spot_via_dispatch(svc, ledgers, fund):
    rollup, _ = ledgers
    fund(0, base="3")
    asyncio.run(svc.execute_spot_trade("SOL", "sell", "190", "3"))
    _, ix = _sent_ix(rollup)
    assert bytes(ix.data)[:8] == codec.anchor_sighash("sell_spot")
    with pytest.raises(InsufficientBalance):
        asyncio.run(svc.execute_spot_trade("SOL", "sell", "190", "3.5"))
    with pytest.raises(InvalidTradeParameters):
        asyncio.run(svc.execute_spot_trade("SOL", "hold", "190", "1"))


# ---------------------------------------------------------------------------
# accounts
# ---------------------------------------------------------------------------

def test_initialize_account_goes_to_base(svc, ctx, ledgers):
    rollup, base = ledgers
    asyncio.run(svc.initialize_account("ETH", "0.1", "10000"))
    assert rollup.sent == []
    tx, ix = _sent_ix(base)
    args = codec.decode_instruction(codec.IX_INITIALIZE_ACCOUNT, bytes(ix.data))
    assert args == {"pair_index": 2, "entry_fee": 100_000_000, "initial_balance": 10_000_000_000}
    assert user_account_pda(ctx.owner, 2) in tx.message.account_keys


def test_initialize_rejects_negative_fee(svc):
    with pytest.raises(InvalidTradeParameters):
        asyncio.run(svc.initialize_account("SOL", "-1", "100"))


@pytest.mark.parametrize("fee", ["abc", "nan", None])
def test_initialize_rejects_non_numeric_fee(svc, ledgers, fee):
    _, base = ledgers
    with pytest.raises(InvalidTradeParameters):
        asyncio.run(svc.initialize_account("SOL", fee, "100"))
    assert base.sent == []


def test_initialize_accepts_zero_fee(svc, ledgers):
    _, base = ledgers
    asyncio.run(svc.initialize_account("SOL", 0, "100"))
    _, ix = _sent_ix(base)
    assert codec.decode_instruction(codec.IX_INITIALIZE_ACCOUNT, bytes(ix.data))["entry_fee"] == 0


def test_account_status(svc, fund):
    fund(0)
    fund(3)
    status = asyncio.run(svc.get_account_status())
    assert status == {0: True, 1: False, 2: False, 3: True, 4: False}


def test_user_account_data(svc, fund):
    fund(1, quote="250.5")
    account = asyncio.run(svc.get_user_account_data("BTC"))
    assert account.token_in == Decimal("250.5")
    assert asyncio.run(svc.get_user_account_data("ETH")) is None


def test_fetch_positions(svc, ctx, ledgers):
    rollup, _ = ledgers
    stranger = Keypair.from_seed(bytes([6] * 32)).pubkey()
    rollup.accounts[position_pda(ctx.owner, 1, 0)] = _position(ctx.owner, 1, 0).encode()
    rollup.accounts[position_pda(ctx.owner, 0, 1)] = _position(ctx.owner, 0, 1, PositionStatus.CLOSED).encode()
    rollup.accounts[position_pda(stranger, 0, 0)] = _position(stranger).encode()

    positions = asyncio.run(svc.fetch_positions())
    assert [(p.record.pair_index, p.record.position_id) for p in positions] == [(0, 1), (1, 0)]
    active = asyncio.run(svc.fetch_positions(active_only=True))
    assert [p.address for p in active] == [position_pda(ctx.owner, 1, 0)]


def test_balance(svc, ctx, ledgers):
    _, base = ledgers
    base.balances[ctx.owner] = 1_500_000_000
    assert asyncio.run(svc.get_balance()) == Decimal("1.5")


# ---------------------------------------------------------------------------
# competition
# ---------------------------------------------------------------------------

def _competition(active=True):
    authority = Keypair.from_seed(bytes([8] * 32)).pubkey()
    return CompetitionRecord(authority=authority, start_time=0, end_time=10, total_participants=0,
                             prize_pool=0, is_active=active, name="Devnet Cup").encode()


def test_join_competition(svc, ctx, ledgers):
    rollup, base = ledgers
    base.accounts[ctx.competition] = _competition()
    asyncio.run(svc.join_competition())
    tx, ix = _sent_ix(base)
    assert bytes(ix.data) == codec.anchor_sighash("join_competition")
    assert participant_pda(ctx.competition, ctx.owner) in tx.message.account_keys
    assert rollup.sent == []


def test_join_inactive_or_missing_competition(svc, ctx, ledgers):
    _, base = ledgers
    with pytest.raises(ValidationError):
        asyncio.run(svc.join_competition())
    base.accounts[ctx.competition] = _competition(active=False)
    with pytest.raises(ValidationError):
        asyncio.run(svc.join_competition())
    assert base.sent == []


def _participant(owner, competition, pnl, trades=1, settled=False):
    return ParticipantRecord(owner=owner, competition=competition, total_pnl=pnl, total_trades=trades,
                             joined_at=0, settled=settled).encode()


def test_settle_requires_membership(svc, ctx, ledgers):
    _, base = ledgers
    with pytest.raises(ValidationError):
        asyncio.run(svc.settle_competition())
    base.accounts[participant_pda(ctx.competition, ctx.owner)] = _participant(ctx.owner, ctx.competition, 0)
    asyncio.run(svc.settle_competition())
    _, ix = _sent_ix(base)
    assert bytes(ix.data) == codec.anchor_sighash("settle_competition")


def test_leaderboard(svc, ctx, ledgers):
    _, base = ledgers
    a, b, c, d = (Keypair.from_seed(bytes([i] * 32)).pubkey() for i in (11, 12, 13, 14))
    other_comp = Keypair.from_seed(bytes([15] * 32)).pubkey()
    base.accounts[participant_pda(ctx.competition, a)] = _participant(a, ctx.competition, 5_000_000)
    base.accounts[participant_pda(ctx.competition, b)] = _participant(b, ctx.competition, -2_000_000)
    base.accounts[participant_pda(ctx.competition, c)] = _participant(c, ctx.competition, 40_000_000, settled=True)
    base.accounts[participant_pda(other_comp, d)] = _participant(d, other_comp, 99_000_000)

    board = asyncio.run(svc.fetch_leaderboard())
    assert [e.owner for e in board] == [c, a, b]
    assert [e.rank for e in board] == [1, 2, 3]
    assert board[0].total_pnl == Decimal("40")
    assert board[0].settled
    assert len(asyncio.run(svc.fetch_leaderboard(limit=2))) == 2


# ---------------------------------------------------------------------------
# airdrop
# ---------------------------------------------------------------------------

def test_airdrop(svc, ctx, ledgers):
    _, base = ledgers
    asyncio.run(svc.request_airdrop(2))
    assert base.airdrops == [(ctx.owner, 2_000_000_000)]


def test_wait_for_balance(svc, ctx, ledgers):
    _, base = ledgers
    assert asyncio.run(svc.wait_for_balance(attempts=2, delay=0)) is None
    base.balances[ctx.owner] = 1_000_000_000
    assert asyncio.run(svc.wait_for_balance(attempts=2, delay=0)) == Decimal("1")


def test_airdrop_poll_runs_in_background(svc, ctx, ledgers):
    _, base = ledgers

    async def scenario():
        await svc.request_airdrop(1, poll=True)
        assert len(ctx._tasks) == 1
        base.balances[ctx.owner] = 1_000_000_000
        return await asyncio.gather(*ctx._tasks)

    assert asyncio.run(scenario()) == [Decimal("1")]
