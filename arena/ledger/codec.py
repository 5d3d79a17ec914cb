"""Binary layouts and fixed-point scales for the trading program.

Every account record starts with an 8-byte Anchor discriminator
(``sha256("account:<Name>")[:8]``) and every instruction payload with an
8-byte method selector (``sha256("global:<method>")[:8]``). The rest is
little-endian borsh, described once per record by a :class:`Layout`.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from functools import cached_property
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from borsh_construct import Bool, CStruct, I64, String, U8, U64
from construct import Adapter, Bytes, Construct, ConstructError, SizeofError
from solders.pubkey import Pubkey

from arena.core.trading_core.errors import EncodeError, MalformedAccount, MalformedInstruction
from arena.ledger.constants import BASE_DECIMALS, LAMPORTS_PER_SOL, PRICE_DECIMALS, QUOTE_DECIMALS

U64_MAX = 0xFFFF_FFFF_FFFF_FFFF
TAG_LEN = 8

Number = Union[int, float, str, Decimal]


# ---------------------------------------------------------------------------
# Selectors / discriminators
# ---------------------------------------------------------------------------

def anchor_sighash(method: str) -> bytes:
    return hashlib.sha256(f"global:{method}".encode()).digest()[:8]


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:8]


class _PubkeyAdapter(Adapter):
    def _decode(self, obj, context, path):
        return Pubkey.from_bytes(bytes(obj))

    def _encode(self, obj, context, path):
        return bytes(obj)


PUBKEY = _PubkeyAdapter(Bytes(32))


# ---------------------------------------------------------------------------
# Declarative layouts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Layout:
    """Ordered ``(field, borsh type)`` description of one record or payload."""

    name: str
    fields: Tuple[Tuple[str, Construct], ...]
    namespace: str = "account"  # "account" | "global"

    @property
    def tag(self) -> bytes:
        if self.namespace == "global":
            return anchor_sighash(self.name)
        return account_discriminator(self.name)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.fields)

    @cached_property
    def struct(self) -> CStruct:
        return CStruct(*(name / kind for name, kind in self.fields))

    @property
    def min_size(self) -> int:
        """Smallest buffer (tag included) that can hold this layout."""
        return TAG_LEN + sum(_min_width(kind) for _, kind in self.fields)

    @property
    def fixed_size(self) -> Optional[int]:
        """Exact size when every field is fixed-width, else ``None``."""
        try:
            return TAG_LEN + sum(kind.sizeof() for _, kind in self.fields)
        except SizeofError:
            return None


def _min_width(kind: Construct) -> int:
    try:
        return kind.sizeof()
    except SizeofError:
        # variable-length borsh fields carry a u32 length prefix
        return 4


def _build(layout: Layout, values: Mapping[str, Any]) -> bytes:
    missing = [n for n in layout.field_names if n not in values]
    if missing:
        raise EncodeError(f"{layout.name}: missing fields {missing}")
    try:
        return layout.struct.build({n: values[n] for n in layout.field_names})
    except (ConstructError, TypeError, ValueError, OverflowError) as exc:
        raise EncodeError(f"{layout.name}: cannot encode: {exc}") from exc


def _parse(layout: Layout, body: bytes, error_cls) -> Dict[str, Any]:
    try:
        parsed = layout.struct.parse(body)
    except (ConstructError, UnicodeDecodeError, ValueError) as exc:
        raise error_cls(f"{layout.name}: cannot decode: {exc}") from exc
    return {n: parsed[n] for n in layout.field_names}


def encode_account(layout: Layout, values: Mapping[str, Any]) -> bytes:
    return layout.tag + _build(layout, values)


def decode_account(layout: Layout, data: bytes) -> Dict[str, Any]:
    """Decode an account buffer; the leading 8-byte tag is skipped, not checked."""
    raw = bytes(data or b"")
    if len(raw) < layout.min_size:
        raise MalformedAccount(
            f"{layout.name}: buffer is {len(raw)} bytes, need at least {layout.min_size}"
        )
    return _parse(layout, raw[TAG_LEN:], MalformedAccount)


def encode_instruction(layout: Layout, values: Optional[Mapping[str, Any]] = None) -> bytes:
    return layout.tag + _build(layout, values or {})


def decode_instruction(layout: Layout, data: bytes) -> Dict[str, Any]:
    raw = bytes(data or b"")
    if len(raw) < layout.min_size:
        raise MalformedInstruction(
            f"{layout.name}: payload is {len(raw)} bytes, need at least {layout.min_size}"
        )
    if raw[:TAG_LEN] != layout.tag:
        raise MalformedInstruction(f"{layout.name}: selector mismatch ({raw[:TAG_LEN].hex()})")
    return _parse(layout, raw[TAG_LEN:], MalformedInstruction)


# ---- account records ----
USER_ACCOUNT = Layout("UserAccount", (
    ("pair_index", U8),
    ("token_in_balance", U64),
    ("token_out_balance", U64),
    ("total_positions", U64),
    ("created_at", I64),
))

POSITION = Layout("Position", (
    ("owner", PUBKEY),
    ("pair_index", U8),
    ("position_id", U64),
    ("direction", U8),
    ("amount_token_out", U64),
    ("entry_price", U64),
    ("take_profit_price", U64),
    ("stop_loss_price", U64),
    ("status", U8),
    ("opened_at", I64),
    ("closed_at", I64),
))

COMPETITION = Layout("Competition", (
    ("authority", PUBKEY),
    ("start_time", I64),
    ("end_time", I64),
    ("total_participants", U64),
    ("prize_pool", U64),
    ("is_active", Bool),
    ("name", String),
))

PARTICIPANT = Layout("Participant", (
    ("owner", PUBKEY),
    ("competition", PUBKEY),
    ("total_pnl", I64),
    ("total_trades", U64),
    ("joined_at", I64),
    ("settled", Bool),
))

# ---- instruction payloads ----
IX_INITIALIZE_ACCOUNT = Layout("initialize_account", (
    ("pair_index", U8),
    ("entry_fee", U64),
    ("initial_balance", U64),
), namespace="global")

IX_OPEN_POSITION = Layout("open_position", (
    ("pair_index", U8),
    ("position_id", U64),
    ("direction", U8),
    ("amount_token_out", U64),
    ("entry_price", U64),
    ("take_profit_price", U64),
    ("stop_loss_price", U64),
), namespace="global")

IX_CLOSE_POSITION = Layout("close_position", (
    ("exit_price", U64),
), namespace="global")

IX_BUY_SPOT = Layout("buy_spot", (
    ("amount_token_out", U64),
    ("price", U64),
), namespace="global")

IX_SELL_SPOT = Layout("sell_spot", (
    ("amount_token_out", U64),
    ("price", U64),
), namespace="global")

IX_JOIN_COMPETITION = Layout("join_competition", (), namespace="global")
IX_SETTLE_COMPETITION = Layout("settle_competition", (), namespace="global")


# ---------------------------------------------------------------------------
# Fixed-point scales
# ---------------------------------------------------------------------------

QUOTE_SCALE = 10 ** QUOTE_DECIMALS
BASE_SCALE = 10 ** BASE_DECIMALS
PRICE_SCALE = 10 ** PRICE_DECIMALS


def as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def _scale(value: Number, scale: int, what: str) -> int:
    units = int((as_decimal(value) * scale).to_integral_value(rounding=ROUND_FLOOR))
    if units < 0 or units > U64_MAX:
        raise EncodeError(f"{what} out of u64 range: {value}")
    return units


def to_quote_units(amount: Number) -> int:
    return _scale(amount, QUOTE_SCALE, "quote amount")


def to_base_units(amount: Number) -> int:
    return _scale(amount, BASE_SCALE, "base amount")


def to_price_units(price: Number) -> int:
    return _scale(price, PRICE_SCALE, "price")


def from_quote_units(units: int) -> Decimal:
    return Decimal(int(units)) / QUOTE_SCALE


def from_base_units(units: int) -> Decimal:
    return Decimal(int(units)) / BASE_SCALE


def from_price_units(units: int) -> Decimal:
    return Decimal(int(units)) / PRICE_SCALE


def base_units_for_notional(notional: Number, price: Number) -> int:
    """floor(notional / price * 10^9)"""
    px = as_decimal(price)
    if px <= 0:
        raise EncodeError(f"price must be positive: {price}")
    return _scale(as_decimal(notional) / px, BASE_SCALE, "base amount")


def quote_units_for_base(base_units: int, price_units: int) -> int:
    """Quote cost (6 dp) of ``base_units`` at ``price_units``, rounded up."""
    return -(-int(base_units) * int(price_units) // BASE_SCALE)


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(int(lamports)) / LAMPORTS_PER_SOL


def sol_to_lamports(sol: Number) -> int:
    return _scale(sol, LAMPORTS_PER_SOL, "SOL amount")
