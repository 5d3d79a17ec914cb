"""Custom exceptions for the arena trading core."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class ArenaError(RuntimeError):
    """Base class for every error raised by the arena client."""


# ---------------------------------------------------------------------------
# Local validation (never submitted)
# ---------------------------------------------------------------------------


class ValidationError(ArenaError):
    """Raised when an operation is rejected before anything is built."""


class InsufficientBalance(ValidationError):
    """Raised when the account cannot cover the requested trade."""

    def __init__(self, required: Decimal, available: Decimal, asset: str = "quote") -> None:
        super().__init__(
            f"Insufficient {asset} balance: required {required}, available {available}"
        )
        self.required = required
        self.available = available
        self.asset = asset


class UnknownTradingPair(ValidationError):
    def __init__(self, symbol: object) -> None:
        super().__init__(f"Unknown trading pair: {symbol}")
        self.symbol = symbol


class AccountNotInitialized(ValidationError):
    def __init__(self, owner: object, pair_index: int) -> None:
        super().__init__(f"Trading account for {owner} pair {pair_index} is not initialized")
        self.owner = owner
        self.pair_index = pair_index


class InvalidTradeParameters(ValidationError):
    pass


class PositionNotFound(ValidationError):
    def __init__(self, address: object) -> None:
        super().__init__(f"Position account {address} does not exist")
        self.address = address


class NotPositionOwner(ValidationError):
    pass


class PositionAlreadyClosed(ValidationError):
    pass


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


class SigningError(ArenaError):
    """Raised when no signature could be obtained."""


class SigningDenied(SigningError):
    pass


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class SubmissionError(ArenaError):
    """Raised when an execution path rejects or fails to land a transaction."""

    def __init__(self, path: str, message: str, signature: Optional[str] = None) -> None:
        super().__init__(f"[{path}] {message}")
        self.path = path
        self.message = message
        self.signature = signature


class TransactionRejected(SubmissionError):
    """The transaction landed but the program returned an error."""

    def __init__(self, path: str, message: str, signature: Optional[str] = None, err: object = None) -> None:
        super().__init__(path, message, signature)
        self.err = err


class DuplicateSubmission(SubmissionError):
    """The node reported the transaction as already processed."""


class AmbiguousDuplicate(ArenaError):
    """A broadcast transaction whose outcome could not be matched to a status.

    Raised when the node reports it as already processed, or when it was
    accepted but confirmation failed. Callers should re-read account state
    instead of retrying; the mutation may or may not have happened.
    """

    def __init__(self, path: str, signature: str, reason: str = "reported as already processed") -> None:
        super().__init__(
            f"[{path}] transaction {signature} {reason} "
            "but no signature status is available"
        )
        self.path = path
        self.signature = signature
        self.reason = reason


# ---------------------------------------------------------------------------
# Codec / network
# ---------------------------------------------------------------------------


class DecodeError(ArenaError):
    pass


class MalformedAccount(DecodeError):
    pass


class MalformedInstruction(DecodeError):
    pass


class EncodeError(ArenaError, ValueError):
    pass


class RpcError(ArenaError):
    pass


class InvalidSeed(ValueError):
    pass
