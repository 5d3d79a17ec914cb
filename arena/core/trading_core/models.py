from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal
from enum import IntEnum
from typing import Any, Dict, Optional

from solders.pubkey import Pubkey

from arena.core.trading_core.errors import MalformedAccount
from arena.ledger import codec
from arena.ledger.constants import PAIR_SYMBOLS


class Direction(IntEnum):
    LONG = 0
    SHORT = 1

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, Direction):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


class PositionStatus(IntEnum):
    ACTIVE = 0
    CLOSED = 1


class Side(IntEnum):
    BUY = 0
    SELL = 1

    @classmethod
    def parse(cls, value: Any) -> "Side":
        if isinstance(value, Side):
            return value
        return cls[str(value).strip().upper()]


@dataclass(frozen=True)
class UserTradingAccount:
    pair_index: int
    token_in_balance: int
    token_out_balance: int
    total_positions: int
    created_at: int

    @property
    def token_in(self) -> Decimal:
        """Quote-currency balance in whole units."""
        return codec.from_quote_units(self.token_in_balance)

    @property
    def token_out(self) -> Decimal:
        """Base-asset balance in whole units."""
        return codec.from_base_units(self.token_out_balance)

    @classmethod
    def decode(cls, data: bytes) -> "UserTradingAccount":
        return cls(**codec.decode_account(codec.USER_ACCOUNT, data))

    def encode(self) -> bytes:
        return codec.encode_account(codec.USER_ACCOUNT, _values(self))


@dataclass(frozen=True)
class PositionRecord:
    owner: Pubkey
    pair_index: int
    position_id: int
    direction: Direction
    amount_token_out: int
    entry_price: int
    take_profit_price: int
    stop_loss_price: int
    status: PositionStatus
    opened_at: int
    closed_at: int

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    @property
    def pair_symbol(self) -> Optional[str]:
        return PAIR_SYMBOLS.get(self.pair_index)

    @classmethod
    def decode(cls, data: bytes) -> "PositionRecord":
        values = codec.decode_account(codec.POSITION, data)
        try:
            values["direction"] = Direction(values["direction"])
            values["status"] = PositionStatus(values["status"])
        except ValueError as exc:
            raise MalformedAccount(f"Position: {exc}") from exc
        return cls(**values)

    def encode(self) -> bytes:
        values = _values(self)
        values["direction"] = int(self.direction)
        values["status"] = int(self.status)
        return codec.encode_account(codec.POSITION, values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": str(self.owner),
            "pair": self.pair_symbol,
            "position_id": self.position_id,
            "direction": self.direction.name,
            "amount": str(codec.from_base_units(self.amount_token_out)),
            "entry_price": str(codec.from_price_units(self.entry_price)),
            "take_profit": str(codec.from_price_units(self.take_profit_price)) if self.take_profit_price else None,
            "stop_loss": str(codec.from_price_units(self.stop_loss_price)) if self.stop_loss_price else None,
            "status": self.status.name,
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
        }


@dataclass(frozen=True)
class CompetitionRecord:
    authority: Pubkey
    start_time: int
    end_time: int
    total_participants: int
    prize_pool: int
    is_active: bool
    name: str

    @classmethod
    def decode(cls, data: bytes) -> "CompetitionRecord":
        return cls(**codec.decode_account(codec.COMPETITION, data))

    def encode(self) -> bytes:
        return codec.encode_account(codec.COMPETITION, _values(self))


@dataclass(frozen=True)
class ParticipantRecord:
    owner: Pubkey
    competition: Pubkey
    total_pnl: int
    total_trades: int
    joined_at: int
    settled: bool

    @classmethod
    def decode(cls, data: bytes) -> "ParticipantRecord":
        return cls(**codec.decode_account(codec.PARTICIPANT, data))

    def encode(self) -> bytes:
        return codec.encode_account(codec.PARTICIPANT, _values(self))


@dataclass(frozen=True)
class Position:
    """A decoded position together with the address it was read from."""

    address: Pubkey
    record: PositionRecord


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    owner: Pubkey
    total_pnl: Decimal
    total_trades: int
    settled: bool


def _values(record: Any) -> Dict[str, Any]:
    return {f.name: getattr(record, f.name) for f in fields(record)}
