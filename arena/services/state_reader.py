"""Fetch and decode the account state an operation has to validate against."""

from __future__ import annotations

from typing import List, Optional, Tuple

from solders.pubkey import Pubkey

from arena.core.logging import log
from arena.core.trading_core.models import (
    CompetitionRecord,
    ParticipantRecord,
    Position,
    PositionRecord,
    UserTradingAccount,
)
from arena.ledger import codec
from arena.ledger.constants import PROGRAM_ID
from arena.ledger.pdas import participant_pda, user_account_pda
from arena.ledger.rpc import LedgerRpc


class StateReader:
    """Reads program accounts from one execution path.

    ``None`` means the account does not exist. Network failures raise
    :class:`~arena.core.trading_core.errors.RpcError` and malformed bytes
    raise :class:`~arena.core.trading_core.errors.MalformedAccount`.
    """

    def __init__(self, rpc: LedgerRpc, competition: Pubkey, program_id: Pubkey = PROGRAM_ID) -> None:
        self.rpc = rpc
        self.competition = competition
        self.program_id = program_id

    async def read_user_account(self, owner: Pubkey, pair_index: int) -> Optional[UserTradingAccount]:
        address = user_account_pda(owner, pair_index, self.program_id)
        data = await self.rpc.get_account_info(address)
        if data is None:
            log.debug(f"No trading account at {address} (pair {pair_index})", source="StateReader")
            return None
        return UserTradingAccount.decode(data)

    async def read_position(self, address: Pubkey) -> Optional[PositionRecord]:
        data = await self.rpc.get_account_info(address)
        return None if data is None else PositionRecord.decode(data)

    async def read_competition(self) -> Optional[CompetitionRecord]:
        data = await self.rpc.get_account_info(self.competition)
        return None if data is None else CompetitionRecord.decode(data)

    async def read_participant(self, owner: Pubkey) -> Optional[ParticipantRecord]:
        data = await self.rpc.get_account_info(participant_pda(self.competition, owner, self.program_id))
        return None if data is None else ParticipantRecord.decode(data)

    # ------------------------------------------------------------------
    # Full program scans
    # ------------------------------------------------------------------
    # Linear in the number of program accounts of that size. Fine at
    # competition scale; the program offers no owner index to do better.
    async def _scan(self, size: int) -> List[Tuple[Pubkey, bytes]]:
        return await self.rpc.get_program_accounts(self.program_id, data_size=size)

    async def scan_positions(self, owner: Pubkey) -> List[Position]:
        out: List[Position] = []
        for address, data in await self._scan(codec.POSITION.fixed_size):
            record = PositionRecord.decode(data)
            if record.owner == owner:
                out.append(Position(address=address, record=record))
        out.sort(key=lambda p: (p.record.pair_index, p.record.position_id))
        return out

    async def scan_participants(self) -> List[ParticipantRecord]:
        out: List[ParticipantRecord] = []
        for _, data in await self._scan(codec.PARTICIPANT.fixed_size):
            record = ParticipantRecord.decode(data)
            if record.competition == self.competition:
                out.append(record)
        return out
