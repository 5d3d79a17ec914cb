"""Position / competition facade.

Every public coroutine either returns a transaction signature (or the data
it was asked to read) or raises one of the errors in
:mod:`arena.core.trading_core.errors`.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional, Union

from solders.pubkey import Pubkey

from arena.core.logging import log
from arena.core.trading_core import validator
from arena.core.trading_core.context import TradingContext
from arena.core.trading_core.errors import (
    AccountNotInitialized,
    InvalidTradeParameters,
    NotPositionOwner,
    PositionAlreadyClosed,
    PositionNotFound,
    RpcError,
    ValidationError,
)
from arena.core.trading_core.models import (
    CompetitionRecord,
    Direction,
    LeaderboardEntry,
    Position,
    Side,
    UserTradingAccount,
)
from arena.ledger import codec, instructions
from arena.ledger.constants import BASE_CHAIN, PAIR_SYMBOLS, ROLLUP
from arena.ledger.pdas import participant_pda, position_pda, user_account_pda
from arena.services.executor import TradeExecutor
from arena.services.state_reader import StateReader

Pair = Union[str, int]
SOURCE = "TradingService"


def _pubkey(value: Union[str, Pubkey]) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(str(value).strip())
    except ValueError as exc:
        raise InvalidTradeParameters(f"not a valid address: {value!r}") from exc


def _direction(value) -> Direction:
    try:
        return Direction.parse(value)
    except (KeyError, ValueError) as exc:
        raise InvalidTradeParameters(f"unknown direction: {value!r}") from exc


class TradingService:
    """Public trading operations for one wallet session."""

    def __init__(self, ctx: TradingContext) -> None:
        self.ctx = ctx
        # Trading accounts and positions live on the rollup; competition
        # bookkeeping is read from the base chain.
        self.reader = StateReader(ctx.rollup, ctx.competition, ctx.program_id)
        self.base_reader = StateReader(ctx.base, ctx.competition, ctx.program_id)
        self.executor = TradeExecutor(ctx.paths, ctx.wallet, journal=ctx.config.txlog_path)
        self.tolerance = ctx.config.balance_tolerance

    @property
    def owner(self) -> Pubkey:
        return self.ctx.owner

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _require_account(self, pair_index: int) -> UserTradingAccount:
        account = await self.reader.read_user_account(self.owner, pair_index)
        if account is None:
            raise AccountNotInitialized(self.owner, pair_index)
        return account

    def _optional_price(self, name: str, value) -> int:
        if value is None or value == 0:
            return 0
        return codec.to_price_units(validator.require_positive(name, value))

    @staticmethod
    def _check_exits(direction: Direction, price_units: int, tp_units: int, sl_units: int) -> None:
        if direction == Direction.LONG:
            if tp_units and tp_units <= price_units:
                raise InvalidTradeParameters("take profit must be above entry for a long")
            if sl_units and sl_units >= price_units:
                raise InvalidTradeParameters("stop loss must be below entry for a long")
        else:
            if tp_units and tp_units >= price_units:
                raise InvalidTradeParameters("take profit must be below entry for a short")
            if sl_units and sl_units <= price_units:
                raise InvalidTradeParameters("stop loss must be above entry for a short")

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    async def initialize_account(self, pair: Pair, fee: codec.Number, initial_balance: codec.Number) -> str:
        """Create the trading account for ``pair``; a no-op on the ledger if it exists."""
        pair_index = validator.resolve_pair(pair)
        entry_fee = codec.sol_to_lamports(validator.require_non_negative("fee", fee))
        balance_units = codec.to_quote_units(validator.require_positive("initial_balance", initial_balance))
        ix = instructions.initialize_account_ix(
            self.owner,
            user_account_pda(self.owner, pair_index, self.ctx.program_id),
            pair_index,
            entry_fee,
            balance_units,
            program_id=self.ctx.program_id,
        )
        log.info(f"Initializing {PAIR_SYMBOLS[pair_index]} account", source=SOURCE,
                 payload={"fee_lamports": entry_fee, "balance": str(initial_balance)})
        result = await self.executor.execute([ix], BASE_CHAIN, "initialize_account")
        return result.signature

    async def get_account_status(self) -> Dict[int, bool]:
        status: Dict[int, bool] = {}
        for pair_index in sorted(PAIR_SYMBOLS):
            status[pair_index] = await self.reader.read_user_account(self.owner, pair_index) is not None
        return status

    async def get_user_account_data(self, pair: Pair) -> Optional[UserTradingAccount]:
        return await self.reader.read_user_account(self.owner, validator.resolve_pair(pair))

    async def get_balance(self) -> Decimal:
        """Native SOL balance of the session wallet on the base chain."""
        return codec.lamports_to_sol(await self.ctx.base.get_balance(self.owner))

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------
    async def open_position(self,
                            pair: Pair,
                            direction,
                            price: codec.Number,
                            size: codec.Number,
                            take_profit: Optional[codec.Number] = None,
                            stop_loss: Optional[codec.Number] = None) -> str:
        """
        Open a position of ``size`` quote units at ``price``.

        Tries the rollup first and falls back to the base chain once.
        """
        pair_index = validator.resolve_pair(pair)
        side = _direction(direction)
        price_d = validator.require_positive("price", price)
        size_d = validator.require_positive("size", size)

        price_units = codec.to_price_units(price_d)
        margin_units = codec.to_quote_units(size_d)
        amount_units = codec.base_units_for_notional(size_d, price_d)
        if amount_units == 0 or price_units == 0:
            raise InvalidTradeParameters(f"size {size} at price {price} rounds to zero")
        tp_units = self._optional_price("take_profit", take_profit)
        sl_units = self._optional_price("stop_loss", stop_loss)
        self._check_exits(side, price_units, tp_units, sl_units)

        # position id = total_positions, read right before building the ix
        account = await self._require_account(pair_index)
        validator.check_open(account, side, margin_units, amount_units, self.tolerance)
        position_id = account.total_positions
        position = position_pda(self.owner, pair_index, position_id, self.ctx.program_id)

        ix = instructions.open_position_ix(
            self.owner,
            user_account_pda(self.owner, pair_index, self.ctx.program_id),
            position,
            self.ctx.competition,
            pair_index=pair_index,
            position_id=position_id,
            direction=side,
            amount_token_out=amount_units,
            entry_price=price_units,
            take_profit_price=tp_units,
            stop_loss_price=sl_units,
            program_id=self.ctx.program_id,
        )
        log.info("Opening position", source=SOURCE, payload={
            "pair": PAIR_SYMBOLS[pair_index], "direction": side.name, "price": str(price_d),
            "size": str(size_d), "position": str(position), "position_id": position_id,
        })
        result = await self.executor.execute_with_fallback([ix], "open_position", primary=ROLLUP, fallback=BASE_CHAIN)
        return result.signature

    async def close_position(self, pair: Pair, position_id: int, price: codec.Number) -> str:
        pair_index = validator.resolve_pair(pair)
        if int(position_id) < 0:
            raise InvalidTradeParameters(f"position id must not be negative, got {position_id}")
        address = position_pda(self.owner, pair_index, int(position_id), self.ctx.program_id)
        return await self.close_direct_position(address, price)

    async def close_direct_position(self, address: Union[str, Pubkey], price: codec.Number) -> str:
        position = _pubkey(address)
        exit_units = codec.to_price_units(validator.require_positive("price", price))
        record = await self.reader.read_position(position)
        if record is None:
            raise PositionNotFound(position)
        if record.owner != self.owner:
            raise NotPositionOwner(f"position {position} belongs to {record.owner}, not {self.owner}")
        if not record.is_active:
            raise PositionAlreadyClosed(f"position {position} is already closed")

        ix = instructions.close_position_ix(
            self.owner,
            user_account_pda(self.owner, record.pair_index, self.ctx.program_id),
            position,
            exit_units,
            program_id=self.ctx.program_id,
        )
        log.info(f"Closing position {position}", source=SOURCE, payload={"exit_price": str(price)})
        result = await self.executor.execute([ix], ROLLUP, "close_position")
        return result.signature

    async def fetch_positions(self, active_only: bool = False) -> List[Position]:
        positions = await self.reader.scan_positions(self.owner)
        if active_only:
            positions = [p for p in positions if p.record.is_active]
        return positions

    # ------------------------------------------------------------------
    # Spot
    # ------------------------------------------------------------------
    async def buy_spot(self, pair: Pair, price: codec.Number, amount: codec.Number) -> str:
        """Buy ``amount`` base units at ``price``."""
        pair_index = validator.resolve_pair(pair)
        price_units = codec.to_price_units(validator.require_positive("price", price))
        amount_units = codec.to_base_units(validator.require_positive("amount", amount))
        account = await self._require_account(pair_index)
        cost = validator.check_buy(account, amount_units, price_units, self.tolerance)
        return await self._spot(pair_index, True, amount_units, price_units, cost)

    async def sell_spot(self, pair: Pair, price: codec.Number, amount: codec.Number) -> str:
        """Sell ``amount`` base units at ``price``."""
        pair_index = validator.resolve_pair(pair)
        price_units = codec.to_price_units(validator.require_positive("price", price))
        amount_units = codec.to_base_units(validator.require_positive("amount", amount))
        account = await self._require_account(pair_index)
        validator.check_sell(account, amount_units)
        proceeds = codec.quote_units_for_base(amount_units, price_units)
        return await self._spot(pair_index, False, amount_units, price_units, proceeds)

    async def execute_spot_trade(self, pair: Pair, side, price: codec.Number, amount: codec.Number) -> str:
        try:
            parsed = Side.parse(side)
        except KeyError as exc:
            raise InvalidTradeParameters(f"unknown side: {side!r}") from exc
        if parsed == Side.BUY:
            return await self.buy_spot(pair, price, amount)
        return await self.sell_spot(pair, price, amount)

    async def _spot(self, pair_index: int, buy: bool, amount_units: int, price_units: int, quote_units: int) -> str:
        label = "buy_spot" if buy else "sell_spot"
        ix = instructions.spot_trade_ix(
            self.owner,
            user_account_pda(self.owner, pair_index, self.ctx.program_id),
            buy=buy,
            amount_token_out=amount_units,
            price=price_units,
            program_id=self.ctx.program_id,
        )
        log.info(f"{label} {PAIR_SYMBOLS[pair_index]}", source=SOURCE, payload={
            "amount": str(codec.from_base_units(amount_units)),
            "price": str(codec.from_price_units(price_units)),
            "quote": str(codec.from_quote_units(quote_units)),
        })
        result = await self.executor.execute([ix], ROLLUP, label)
        return result.signature

    # ------------------------------------------------------------------
    # Competition
    # ------------------------------------------------------------------
    async def fetch_competition_data(self) -> Optional[CompetitionRecord]:
        return await self.base_reader.read_competition()

    async def join_competition(self) -> str:
        competition = await self.base_reader.read_competition()
        if competition is None:
            raise ValidationError(f"competition {self.ctx.competition} does not exist")
        if not competition.is_active:
            raise ValidationError(f"competition '{competition.name}' is not active")
        if await self.base_reader.read_participant(self.owner) is not None:
            raise ValidationError(f"{self.owner} already joined '{competition.name}'")
        ix = instructions.join_competition_ix(
            self.owner,
            self.ctx.competition,
            participant_pda(self.ctx.competition, self.owner, self.ctx.program_id),
            program_id=self.ctx.program_id,
        )
        log.info(f"Joining competition '{competition.name}'", source=SOURCE)
        result = await self.executor.execute([ix], BASE_CHAIN, "join_competition")
        return result.signature

    async def settle_competition(self) -> str:
        participant = await self.base_reader.read_participant(self.owner)
        if participant is None:
            raise ValidationError(f"{self.owner} has not joined competition {self.ctx.competition}")
        if participant.settled:
            raise ValidationError(f"{self.owner} is already settled")
        ix = instructions.settle_competition_ix(
            self.owner,
            self.ctx.competition,
            participant_pda(self.ctx.competition, self.owner, self.ctx.program_id),
            program_id=self.ctx.program_id,
        )
        log.info("Settling competition", source=SOURCE, payload={"pnl": str(codec.from_quote_units(participant.total_pnl))})
        result = await self.executor.execute([ix], BASE_CHAIN, "settle_competition")
        return result.signature

    async def fetch_leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        participants = await self.base_reader.scan_participants()
        participants.sort(key=lambda p: (-p.total_pnl, str(p.owner)))
        if limit is not None:
            participants = participants[:limit]
        return [
            LeaderboardEntry(
                rank=i,
                owner=p.owner,
                total_pnl=codec.from_quote_units(p.total_pnl),
                total_trades=p.total_trades,
                settled=p.settled,
            )
            for i, p in enumerate(participants, start=1)
        ]

    # ------------------------------------------------------------------
    # Funding (devnet / test utility)
    # ------------------------------------------------------------------
    async def request_airdrop(self, amount: codec.Number = 1, poll: bool = False) -> str:
        lamports = codec.sol_to_lamports(validator.require_positive("amount", amount))
        baseline = await self.ctx.base.get_balance(self.owner) if poll else 0
        signature = await self.ctx.base.request_airdrop(self.owner, lamports)
        log.info(f"Airdrop requested: {signature}", source=SOURCE)
        if poll:
            self.ctx.spawn(self.wait_for_balance(above=baseline))
        return str(signature)

    async def wait_for_balance(self, above: int = 0,
                               attempts: Optional[int] = None,
                               delay: Optional[float] = None) -> Optional[Decimal]:
        """Poll the base-chain balance a bounded number of times."""
        attempts = attempts or self.ctx.config.airdrop_poll_attempts
        delay = self.ctx.config.airdrop_poll_delay if delay is None else delay
        for i in range(attempts):
            await asyncio.sleep(delay)
            try:
                lamports = await self.ctx.base.get_balance(self.owner)
            except RpcError as exc:
                log.warning(f"Balance poll {i + 1}/{attempts} failed: {exc}", source=SOURCE)
                continue
            if lamports > above:
                sol = codec.lamports_to_sol(lamports)
                log.success(f"Airdrop confirmed! Balance: {sol}", source=SOURCE)
                return sol
        log.warning(f"Balance unchanged after {attempts} checks", source=SOURCE)
        return None
