"""Instruction builders for the trading program.

Each builder returns a ready ``solders`` instruction: selector + borsh args
from :mod:`arena.ledger.codec`, account metas in the order the program
expects them.
"""

from __future__ import annotations

from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from arena.ledger import codec
from arena.ledger.constants import PROGRAM_ID, SYSTEM_PROGRAM


def _meta(pubkey: Pubkey, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=writable)


def _ix(program_id: Pubkey, layout: codec.Layout, args: dict, metas: List[AccountMeta]) -> Instruction:
    return Instruction(program_id=program_id, accounts=metas, data=codec.encode_instruction(layout, args))


def initialize_account_ix(
    owner: Pubkey,
    user_account: Pubkey,
    pair_index: int,
    entry_fee: int,
    initial_balance: int,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    args = {"pair_index": pair_index, "entry_fee": entry_fee, "initial_balance": initial_balance}
    return _ix(program_id, codec.IX_INITIALIZE_ACCOUNT, args, [
        _meta(user_account, writable=True),
        _meta(owner, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM),
    ])


def open_position_ix(
    owner: Pubkey,
    user_account: Pubkey,
    position: Pubkey,
    competition: Pubkey,
    *,
    pair_index: int,
    position_id: int,
    direction: int,
    amount_token_out: int,
    entry_price: int,
    take_profit_price: int = 0,
    stop_loss_price: int = 0,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    args = {
        "pair_index": pair_index,
        "position_id": position_id,
        "direction": int(direction),
        "amount_token_out": amount_token_out,
        "entry_price": entry_price,
        "take_profit_price": take_profit_price,
        "stop_loss_price": stop_loss_price,
    }
    return _ix(program_id, codec.IX_OPEN_POSITION, args, [
        _meta(user_account, writable=True),
        _meta(position, writable=True),
        _meta(competition),
        _meta(owner, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM),
    ])


def close_position_ix(
    owner: Pubkey,
    user_account: Pubkey,
    position: Pubkey,
    exit_price: int,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    return _ix(program_id, codec.IX_CLOSE_POSITION, {"exit_price": exit_price}, [
        _meta(user_account, writable=True),
        _meta(position, writable=True),
        _meta(owner, signer=True),
    ])


def spot_trade_ix(
    owner: Pubkey,
    user_account: Pubkey,
    *,
    buy: bool,
    amount_token_out: int,
    price: int,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    layout = codec.IX_BUY_SPOT if buy else codec.IX_SELL_SPOT
    return _ix(program_id, layout, {"amount_token_out": amount_token_out, "price": price}, [
        _meta(user_account, writable=True),
        _meta(owner, signer=True),
    ])


def join_competition_ix(
    owner: Pubkey,
    competition: Pubkey,
    participant: Pubkey,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    return _ix(program_id, codec.IX_JOIN_COMPETITION, {}, [
        _meta(competition, writable=True),
        _meta(participant, writable=True),
        _meta(owner, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM),
    ])


def settle_competition_ix(
    owner: Pubkey,
    competition: Pubkey,
    participant: Pubkey,
    program_id: Pubkey = PROGRAM_ID,
) -> Instruction:
    return _ix(program_id, codec.IX_SETTLE_COMPETITION, {}, [
        _meta(competition, writable=True),
        _meta(participant, writable=True),
        _meta(owner, signer=True),
    ])
