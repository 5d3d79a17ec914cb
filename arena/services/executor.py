"""Dual-path transaction executor.

    BUILDING -> SIGNED -> SUBMITTED -> CONFIRMED
                                    -> ALREADY_PROCESSED
                                    -> REJECTED

The blockhash is fetched from the target path right before signing. An
"already processed" report, or a confirmation that fails after the node
accepted the bytes, is resolved by looking up the status of the
transaction's own signature; when no status exists the outcome is surfaced
as :class:`AmbiguousDuplicate` and never retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from solders.instruction import Instruction
from solders.message import Message
from solders.signature import Signature
from solders.transaction import Transaction

from arena.core.logging import log
from arena.core.trading_core.errors import (
    AmbiguousDuplicate,
    DuplicateSubmission,
    RpcError,
    SigningDenied,
    SubmissionError,
    TransactionRejected,
)
from arena.ledger.constants import BASE_CHAIN, ROLLUP
from arena.ledger.rpc import LedgerRpc
from arena.services import txlog
from arena.services.signer_loader import WalletSource


class ExecutionState(str, Enum):
    BUILDING = "building"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    ALREADY_PROCESSED = "already_processed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ExecutionResult:
    signature: str
    path: str
    state: ExecutionState
    fallback_used: bool = False


class TradeExecutor:
    """Builds, signs, submits and confirms instructions on a chosen path.

    ``journal`` is the JSONL file outcomes are appended to; ``None`` turns
    journaling off.
    """

    def __init__(self, paths: Dict[str, LedgerRpc], wallet: WalletSource, journal: Optional[Path] = None) -> None:
        self.paths = paths
        self.wallet = wallet
        self.journal = journal

    def _rpc(self, path: str) -> LedgerRpc:
        try:
            return self.paths[path]
        except KeyError:
            raise SubmissionError(path, f"unknown execution path (have {sorted(self.paths)})") from None

    def _record(self, label: str, path: str, state: ExecutionState, signature: Optional[str], error: Optional[str] = None) -> None:
        if self.journal is None:
            return
        txlog.append({
            "operation": label,
            "path": path,
            "state": state,
            "signature": signature,
            "wallet": self.wallet.public_key,
            "error": error,
        }, path=self.journal)

    async def _sign(self, tx: Transaction) -> Transaction:
        try:
            signed = await self.wallet.sign_transaction(tx)
        except SigningDenied:
            raise
        except Exception as exc:
            raise SigningDenied(f"{self.wallet.kind} wallet refused to sign: {exc}") from exc
        if signed is None or not signed.signatures or signed.signatures[0] == Signature.default():
            raise SigningDenied(f"{self.wallet.kind} wallet returned an unsigned transaction")
        return signed

    async def execute(self, instructions: Sequence[Instruction], path: str, label: str = "transaction") -> ExecutionResult:
        """
        Run ``instructions`` on ``path``.

        Only failures up to and including the broadcast raise a plain
        :class:`SubmissionError`; once the node has accepted the bytes the
        outcome is a result, :class:`TransactionRejected` or
        :class:`AmbiguousDuplicate`.
        """
        rpc = self._rpc(path)
        timer = f"{label}@{path}"
        log.start_timer(timer)

        # BUILDING
        try:
            reference = await rpc.get_latest_blockhash()
        except RpcError as exc:
            raise SubmissionError(path, f"could not fetch blockhash: {exc}") from exc
        message = Message.new_with_blockhash(list(instructions), self.wallet.public_key, reference.blockhash)
        tx = Transaction.new_unsigned(message)

        # SIGNED
        signed = await self._sign(tx)
        signature = signed.signatures[0]
        sig = str(signature)
        log.debug(f"{label} signed: {sig}", source="TradeExecutor")

        # SUBMITTED
        try:
            await rpc.send_raw_transaction(bytes(signed))
        except DuplicateSubmission as exc:
            log.warning(f"{label} reported as already processed on {path}; checking {sig}", source="TradeExecutor")
            return await self._resolve_by_status(rpc, signature, path, label, exc,
                                                 reason="reported as already processed")
        except SubmissionError as exc:
            self._record(label, path, ExecutionState.REJECTED, sig, str(exc))
            raise

        try:
            status = await rpc.confirm_transaction(signature, reference)
        except SubmissionError as exc:
            # accepted by the node: never resubmit, ask for the outcome instead
            log.warning(f"{label} sent on {path} but not confirmed ({exc}); checking {sig}", source="TradeExecutor")
            return await self._resolve_by_status(rpc, signature, path, label, exc,
                                                 reason="was accepted but not confirmed")
        if not status.ok:
            self._record(label, path, ExecutionState.REJECTED, sig, str(status.err))
            raise TransactionRejected(path, f"{label} failed on-chain: {status.err}", sig, status.err)

        self._record(label, path, ExecutionState.CONFIRMED, sig)
        log.end_timer(timer, source="TradeExecutor")
        log.success(f"{label} confirmed on {path}: {sig}", source="TradeExecutor")
        return ExecutionResult(signature=sig, path=path, state=ExecutionState.CONFIRMED)

    async def _resolve_by_status(self, rpc: LedgerRpc, signature: Signature, path: str, label: str,
                                 cause: Exception, reason: str) -> ExecutionResult:
        sig = str(signature)
        try:
            status = await rpc.get_signature_status(signature)
        except RpcError as exc:
            log.warning(f"Status lookup for {sig} failed: {exc}", source="TradeExecutor")
            status = None
        if status is None:
            self._record(label, path, ExecutionState.REJECTED, sig, f"ambiguous: {reason}")
            raise AmbiguousDuplicate(path, sig, reason) from cause
        if not status.ok:
            self._record(label, path, ExecutionState.REJECTED, sig, str(status.err))
            raise TransactionRejected(path, f"{label} landed with error: {status.err}", sig, status.err)
        self._record(label, path, ExecutionState.ALREADY_PROCESSED, sig)
        log.success(f"{label} landed on {path} ({status.confirmation_status}): {sig}", source="TradeExecutor")
        return ExecutionResult(signature=sig, path=path, state=ExecutionState.ALREADY_PROCESSED)

    async def execute_with_fallback(self,
                                    instructions: Sequence[Instruction],
                                    label: str = "transaction",
                                    primary: str = ROLLUP,
                                    fallback: str = BASE_CHAIN) -> ExecutionResult:
        """Try ``primary`` once, then ``fallback`` once if ``primary`` never accepted the transaction."""
        ixs: List[Instruction] = list(instructions)
        try:
            return await self.execute(ixs, primary, label)
        except TransactionRejected:
            raise
        except SubmissionError as exc:
            log.warning(f"{label} failed on {primary}: {exc}; falling back to {fallback}", source="TradeExecutor")
        result = await self.execute(ixs, fallback, label)
        return ExecutionResult(signature=result.signature, path=result.path, state=result.state, fallback_used=True)
