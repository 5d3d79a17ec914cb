"""Affordability / inventory checks run before any instruction is built."""

from __future__ import annotations

from decimal import Decimal
from typing import Union

from arena.core.trading_core.errors import InsufficientBalance, InvalidTradeParameters, UnknownTradingPair
from arena.core.trading_core.models import Direction, UserTradingAccount
from arena.ledger import codec
from arena.ledger.constants import PAIR_SYMBOLS, TRADING_PAIRS

DEFAULT_TOLERANCE = Decimal("0.005")


def resolve_pair(pair: Union[str, int]) -> int:
    """Map a symbol ("SOL") or index (0) to a known pair index."""
    if isinstance(pair, bool):
        raise UnknownTradingPair(pair)
    if isinstance(pair, int):
        if pair in PAIR_SYMBOLS:
            return pair
        raise UnknownTradingPair(pair)
    key = str(pair).strip().upper()
    if key.endswith("-PERP"):
        key = key[: -len("-PERP")]
    if key not in TRADING_PAIRS:
        raise UnknownTradingPair(pair)
    return TRADING_PAIRS[key]


def _parse(name: str, value: codec.Number) -> Decimal:
    try:
        d = codec.as_decimal(value)
    except (ArithmeticError, ValueError, TypeError) as exc:
        raise InvalidTradeParameters(f"{name} is not a number: {value!r}") from exc
    if not d.is_finite():
        raise InvalidTradeParameters(f"{name} must be finite, got {value}")
    return d


def require_non_negative(name: str, value: codec.Number) -> Decimal:
    d = _parse(name, value)
    if d < 0:
        raise InvalidTradeParameters(f"{name} must not be negative, got {value}")
    return d


def require_positive(name: str, value: codec.Number) -> Decimal:
    d = _parse(name, value)
    if d <= 0:
        raise InvalidTradeParameters(f"{name} must be positive, got {value}")
    return d


def check_quote(account: UserTradingAccount, required_units: int, tolerance: Decimal = DEFAULT_TOLERANCE) -> None:
    """Required quote amount may exceed the balance by at most ``tolerance``."""
    slack = codec.to_quote_units(tolerance)
    if required_units > account.token_in_balance + slack:
        raise InsufficientBalance(
            codec.from_quote_units(required_units), account.token_in, asset="quote"
        )


def check_base(account: UserTradingAccount, required_units: int) -> None:
    if required_units > account.token_out_balance:
        raise InsufficientBalance(
            codec.from_base_units(required_units), account.token_out, asset="base"
        )


def check_buy(account: UserTradingAccount, amount_units: int, price_units: int,
              tolerance: Decimal = DEFAULT_TOLERANCE) -> int:
    """Return the quote cost of the buy after checking it is affordable."""
    cost = codec.quote_units_for_base(amount_units, price_units)
    check_quote(account, cost, tolerance)
    return cost


def check_sell(account: UserTradingAccount, amount_units: int) -> None:
    check_base(account, amount_units)


def check_open(account: UserTradingAccount, direction: Direction, margin_units: int, amount_units: int,
               tolerance: Decimal = DEFAULT_TOLERANCE) -> None:
    """Longs are margined in quote currency, shorts need base inventory."""
    if direction == Direction.LONG:
        check_quote(account, margin_units, tolerance)
    else:
        check_base(account, amount_units)
