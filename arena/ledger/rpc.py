
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from arena.core.logging import log
from arena.core.trading_core.errors import DuplicateSubmission, RpcError, SubmissionError


@dataclass(frozen=True)
class BlockReference:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class SignatureStatus:
    slot: int
    confirmation_status: Optional[str]
    err: Any = None

    @property
    def ok(self) -> bool:
        return self.err is None


def is_rate_limit(exc: Exception) -> bool:
    s = repr(exc)
    return ("429" in s) or ("Too Many Requests" in s) or ("rate" in s.lower())


def is_already_processed(exc: Exception) -> bool:
    s = str(exc).lower()
    return ("already been processed" in s) or ("alreadyprocessed" in s)


def _status_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).rsplit(".", 1)[-1].lower()


def _to_status(raw: Any) -> SignatureStatus:
    return SignatureStatus(
        slot=int(getattr(raw, "slot", 0) or 0),
        confirmation_status=_status_name(getattr(raw, "confirmation_status", None)),
        err=getattr(raw, "err", None),
    )


async def rpc_call_with_rotation(op_factory: Callable[[str], Awaitable[Any]],
                                 endpoints: Sequence[str],
                                 start_idx: int = 0,
                                 attempts_per_endpoint: int = 2,
                                 sleep_base: float = 0.35) -> Tuple[int, Any]:
    if not endpoints: raise RpcError("No RPC endpoints")
    n = len(endpoints); idx = start_idx % n; last_exc = None
    for _ in range(n):
        url = endpoints[idx]
        for att in range(attempts_per_endpoint):
            try:
                return idx, await op_factory(url)
            except Exception as e:
                last_exc = e
                if is_rate_limit(e) or isinstance(e, SolanaRpcException):
                    log.warning(f"RPC @ {url} error {e!r} (attempt {att+1}/{attempts_per_endpoint})", source="rpc")
                    await asyncio.sleep(sleep_base * (2 ** att)); continue
                log.warning(f"RPC @ {url} non-429 error {e!r}; rotating", source="rpc")
                break
        idx = (idx + 1) % n
    raise RpcError(f"RPC rotation failed: {last_exc!r}") from last_exc


class LedgerRpc:
    """One execution path (rollup or base chain) behind a solana-py AsyncClient.

    Reads rotate across ``endpoints``; writes go to the current endpoint once.
    """

    def __init__(self,
                 name: str,
                 endpoints: Sequence[str],
                 commitment: str = "confirmed",
                 attempts_per_endpoint: int = 2,
                 sleep_base: float = 0.35,
                 confirm_sleep: float = 0.5) -> None:
        seen = set(); self.endpoints: List[str] = []
        for u in endpoints:
            if u and u not in seen:
                seen.add(u); self.endpoints.append(u)
        if not self.endpoints: raise RpcError(f"No RPC endpoints configured for {name}")
        self.name = name
        self.commitment = Commitment(commitment)
        self.attempts_per_endpoint = attempts_per_endpoint
        self.sleep_base = sleep_base
        self.confirm_sleep = confirm_sleep
        self._clients: Dict[str, AsyncClient] = {}
        self._idx = 0

    def __repr__(self) -> str:
        return f"LedgerRpc({self.name!r}, {self.endpoints!r})"

    def _client(self, url: str) -> AsyncClient:
        client = self._clients.get(url)
        if client is None:
            client = AsyncClient(url, commitment=self.commitment)
            self._clients[url] = client
        return client

    async def _read(self, op: Callable[[AsyncClient], Awaitable[Any]]) -> Any:
        idx, out = await rpc_call_with_rotation(
            lambda url: op(self._client(url)),
            endpoints=self.endpoints,
            start_idx=self._idx,
            attempts_per_endpoint=self.attempts_per_endpoint,
            sleep_base=self.sleep_base,
        )
        self._idx = idx
        return out

    # ---------- reads ----------
    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        async def op(c: AsyncClient):
            return (await c.get_account_info(address, commitment=self.commitment)).value
        value = await self._read(op)
        return None if value is None else bytes(value.data)

    async def get_program_accounts(self, program_id: Pubkey, data_size: Optional[int] = None) -> List[Tuple[Pubkey, bytes]]:
        filters = [data_size] if data_size is not None else None
        async def op(c: AsyncClient):
            resp = await c.get_program_accounts(program_id, commitment=self.commitment, encoding="base64", filters=filters)
            return resp.value
        items = await self._read(op)
        return [(it.pubkey, bytes(it.account.data)) for it in (items or [])]

    async def get_latest_blockhash(self) -> BlockReference:
        async def op(c: AsyncClient):
            return (await c.get_latest_blockhash(self.commitment)).value
        value = await self._read(op)
        return BlockReference(blockhash=value.blockhash, last_valid_block_height=int(value.last_valid_block_height))

    async def get_signature_status(self, signature: Signature) -> Optional[SignatureStatus]:
        async def op(c: AsyncClient):
            return (await c.get_signature_statuses([signature], search_transaction_history=True)).value
        values = await self._read(op)
        raw = values[0] if values else None
        return None if raw is None else _to_status(raw)

    async def get_balance(self, address: Pubkey) -> int:
        async def op(c: AsyncClient):
            return (await c.get_balance(address, commitment=self.commitment)).value
        return int(await self._read(op))

    # ---------- writes ----------
    async def send_raw_transaction(self, raw: bytes) -> Signature:
        url = self.endpoints[self._idx]
        try:
            resp = await self._client(url).send_raw_transaction(
                raw, opts=TxOpts(skip_preflight=False, preflight_commitment=self.commitment)
            )
        except Exception as exc:
            if is_already_processed(exc):
                raise DuplicateSubmission(self.name, str(exc)) from exc
            raise SubmissionError(self.name, f"send failed @ {url}: {exc!r}") from exc
        return resp.value

    async def confirm_transaction(self, signature: Signature, reference: BlockReference) -> SignatureStatus:
        url = self.endpoints[self._idx]
        try:
            resp = await self._client(url).confirm_transaction(
                signature,
                self.commitment,
                sleep_seconds=self.confirm_sleep,
                last_valid_block_height=reference.last_valid_block_height,
            )
        except Exception as exc:
            raise SubmissionError(self.name, f"confirmation failed: {exc!r}", str(signature)) from exc
        values = resp.value or []
        if not values or values[0] is None:
            raise SubmissionError(self.name, "confirmation returned no status", str(signature))
        return _to_status(values[0])

    async def request_airdrop(self, address: Pubkey, lamports: int) -> Signature:
        url = self.endpoints[self._idx]
        try:
            resp = await self._client(url).request_airdrop(address, lamports, self.commitment)
        except Exception as exc:
            raise RpcError(f"[{self.name}] airdrop failed @ {url}: {exc!r}") from exc
        return resp.value

    async def close(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for c in clients:
            await c.close()
