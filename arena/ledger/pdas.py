from __future__ import annotations
from typing import List, Sequence

from solders.pubkey import Pubkey

from arena.core.trading_core.errors import InvalidSeed
from arena.ledger.constants import (
    MAX_SEED_LEN,
    MAX_SEEDS,
    PROGRAM_ID,
    SEED_COMPETITION,
    SEED_PARTICIPANT,
    SEED_POSITION,
    SEED_USER_ACCOUNT,
)

__all__ = [
    "find_program_address",
    "u8_seed",
    "u64_seed",
    "user_account_pda",
    "position_pda",
    "competition_pda",
    "participant_pda",
]

# ---------------------------------------------------------------------------
# Core helper
# ---------------------------------------------------------------------------

def find_program_address(seeds: Sequence[bytes], program_id: Pubkey = PROGRAM_ID) -> Pubkey:
    """Return the canonical PDA for ``seeds`` (bump search handled by solders)."""
    if len(seeds) > MAX_SEEDS:
        raise InvalidSeed(f"too many seeds ({len(seeds)} > {MAX_SEEDS})")
    checked: List[bytes] = []
    for seed in seeds:
        if not isinstance(seed, (bytes, bytearray)):
            raise InvalidSeed(f"unsupported seed type: {type(seed).__name__}")
        if len(seed) > MAX_SEED_LEN:
            raise InvalidSeed(f"seed too long ({len(seed)}B > {MAX_SEED_LEN}B)")
        checked.append(bytes(seed))
    pda, _ = Pubkey.find_program_address(checked, program_id)
    return pda

# ---------------------------------------------------------------------------
# Numeric seeds (little-endian, fixed width)
# ---------------------------------------------------------------------------

def u8_seed(value: int) -> bytes:
    if not 0 <= int(value) <= 0xFF:
        raise InvalidSeed(f"u8 seed out of range: {value}")
    return int(value).to_bytes(1, "little")

def u64_seed(value: int) -> bytes:
    if not 0 <= int(value) <= 0xFFFF_FFFF_FFFF_FFFF:
        raise InvalidSeed(f"u64 seed out of range: {value}")
    return int(value).to_bytes(8, "little")

# ---------------------------------------------------------------------------
# Program accounts
# ---------------------------------------------------------------------------

def user_account_pda(owner: Pubkey, pair_index: int, program_id: Pubkey = PROGRAM_ID) -> Pubkey:
    """PDA(["user-account", owner, pair_index:u8])"""
    return find_program_address([SEED_USER_ACCOUNT, bytes(owner), u8_seed(pair_index)], program_id)

def position_pda(owner: Pubkey, pair_index: int, position_id: int, program_id: Pubkey = PROGRAM_ID) -> Pubkey:
    """
    PDA(["position", owner, pair_index:u8, position_id:u64le])

    ``position_id`` is the owning account's ``total_positions`` at the time the
    position is opened, so it has to be read right before building the ix.
    """
    return find_program_address(
        [SEED_POSITION, bytes(owner), u8_seed(pair_index), u64_seed(position_id)],
        program_id,
    )

def competition_pda(program_id: Pubkey = PROGRAM_ID) -> Pubkey:
    return find_program_address([SEED_COMPETITION], program_id)

def participant_pda(competition: Pubkey, owner: Pubkey, program_id: Pubkey = PROGRAM_ID) -> Pubkey:
    return find_program_address([SEED_PARTICIPANT, bytes(competition), bytes(owner)], program_id)
