# arena/services/signer_loader.py
from __future__ import annotations

import base64
import inspect
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from arena.core.logging import log
from arena.core.trading_core.errors import SigningDenied
from arena.ledger.constants import SESSION_WALLET_KEY

SECRET_ARRAY_KEYS = {"secretKey", "secret_key"}       # array[int] like id.json
PRIVATE_STRING_KEYS = {"privateKey", "private_key"}   # base64/base58 string

# Last successful load meta
SIGNER_INFO: Dict[str, str] = {"method": "unknown", "path": "", "note": ""}


# ---------------------------------------------------------------------
# Keypair parsing
# ---------------------------------------------------------------------
def _keypair_from_bytes(b: bytes) -> Optional[Keypair]:
    # 64 bytes must be secret + matching public half
    try:
        return Keypair.from_bytes(b) if len(b) == 64 else Keypair.from_seed(b)
    except ValueError:
        return None

def _mark(kp: Keypair, method: str, path: str, note: str = "") -> Keypair:
    SIGNER_INFO.update({"method": method, "path": path, "note": note, "pubkey": str(kp.pubkey())})
    return kp

def keypair_from_array(arr: Any) -> Optional[Keypair]:
    """Solana id.json layout: list of 32 or 64 ints."""
    if isinstance(arr, list) and len(arr) in (32, 64) and all(isinstance(x, int) and 0 <= x <= 255 for x in arr):
        return _keypair_from_bytes(bytes(arr))
    return None

def _try_json_array(raw: str, path: str):
    try:
        kp = keypair_from_array(json.loads(raw))
        if kp is not None:
            return _mark(kp, "json_array", path), None
        return None, "not a json array id.json"
    except ValueError as e:
        return None, f"json parse failed: {type(e).__name__}: {e}"

def _try_base64(raw: str, path: str):
    try:
        b = base64.b64decode(raw, validate=True)
    except ValueError as e:
        return None, f"base64 decode failed: {type(e).__name__}: {e}"
    kp = _keypair_from_bytes(b) if len(b) in (32, 64) else None
    if kp is not None:
        return _mark(kp, "base64", path), None
    return None, f"base64 payload ({len(b)} bytes) is not a 32/64-byte keypair"

def _try_base58(raw: str, path: str):
    try:
        b = base58.b58decode(raw.strip())
    except ValueError as e:
        return None, f"base58 decode failed: {type(e).__name__}: {e}"
    kp = _keypair_from_bytes(b) if len(b) in (32, 64) else None
    if kp is not None:
        return _mark(kp, "base58", path), None
    return None, f"base58 payload ({len(b)} bytes) is not a 32/64-byte keypair"

def _try_json_object(raw: str, path: str):
    try:
        obj = json.loads(raw)
    except ValueError as e:
        return None, f"json object parse failed: {type(e).__name__}: {e}"
    if not isinstance(obj, dict):
        return None, "json is not an object"
    for key in SECRET_ARRAY_KEYS:
        kp = keypair_from_array(obj.get(key))
        if kp is not None:
            return _mark(kp, f"json_object:{key}", path), None
    for sk in PRIVATE_STRING_KEYS:
        if isinstance(obj.get(sk), str):
            for fn in (_try_base64, _try_base58):
                kp, _ = fn(obj[sk].strip(), path)
                if kp is not None:
                    SIGNER_INFO["method"] = f"json_object:{sk}:{SIGNER_INFO['method']}"
                    return kp, None
            return None, f"{sk} is neither base64 nor base58 32/64 bytes"
    return None, "json object did not contain known keys"


def parse_signer_text(raw: str, path: str = "<memory>") -> Keypair:
    raw = raw.strip()
    errors: List[str] = []
    for fn in (
        _try_json_array,    # id.json
        _try_json_object,   # {"secretKey":[...]} / {"privateKey":"..."}
        _try_base64,        # base64 blob
        _try_base58,        # base58 blob (Phantom export)
    ):
        kp, err = fn(raw, path)
        if kp is not None:
            return kp
        errors.append(f"{fn.__name__}: {err}")
    raise ValueError(
        "Unsupported signer format. Use one of:\n"
        "- Solana id.json (array of 64 ints), or\n"
        "- base64 / base58 secret (32/64 bytes), or\n"
        "- JSON object with { secretKey:[...] } or { privateKey:\"...\" }.\n"
        + "\n".join(errors)
    )

def load_signer(path: str | Path) -> Keypair:
    p = Path(path).expanduser()
    if not p.exists():
        raise FileNotFoundError(f"Signer file not found: {p}")
    return parse_signer_text(p.read_text(encoding="utf-8"), str(p))

def signer_info() -> Dict[str, str]:
    return SIGNER_INFO.copy()


# ---------------------------------------------------------------------
# Session wallet persistence
# ---------------------------------------------------------------------
class SessionWalletStore:
    """
    Locally generated session key, persisted as a byte array under a fixed
    storage key in a small JSON file:

        {"arena_session_wallet": [12, 201, ...64 ints]}
    """

    def __init__(self, path: Path, key: str = SESSION_WALLET_KEY) -> None:
        self.path = Path(path)
        self.key = key

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except ValueError as e:
            log.warning(f"Session store unreadable ({e}); starting fresh", source="SessionWalletStore")
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Optional[Keypair]:
        stored = self._read().get(self.key)
        if stored is None:
            return None
        kp = keypair_from_array(stored)
        if kp is None:
            log.warning("Stored session wallet is malformed", source="SessionWalletStore")
        return kp

    def save(self, kp: Keypair) -> None:
        data = self._read()
        data[self.key] = list(bytes(kp))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def load_or_create(self) -> Keypair:
        kp = self.load()
        if kp is not None:
            log.info(f"Loaded session wallet: {kp.pubkey()}", source="SessionWalletStore")
            return kp
        kp = Keypair()
        self.save(kp)
        log.info(f"Created new session wallet: {kp.pubkey()}", source="SessionWalletStore")
        return kp


# ---------------------------------------------------------------------
# Wallet sources
# ---------------------------------------------------------------------
class LocalKeypairSigner:
    """Signer backed by a locally held keypair."""

    def __init__(self, keypair: Keypair) -> None:
        self.keypair = keypair

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        tx.partial_sign([self.keypair], tx.message.recent_blockhash)
        return tx

    async def sign_all_transactions(self, txs: Sequence[Transaction]) -> List[Transaction]:
        return [await self.sign_transaction(tx) for tx in txs]


EXTERNAL = "external"
LOCAL = "local"


@dataclass(frozen=True)
class WalletSource:
    """The wallet an operation signs with: a connected external wallet or the local key."""

    kind: str
    public_key: Pubkey
    signer: Any

    @property
    def can_sign(self) -> bool:
        return callable(getattr(self.signer, "sign_transaction", None))

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        if not self.can_sign:
            raise SigningDenied(f"{self.kind} wallet {self.public_key} cannot sign transactions")
        result = self.signer.sign_transaction(tx)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def sign_all_transactions(self, txs: Sequence[Transaction]) -> List[Transaction]:
        fn = getattr(self.signer, "sign_all_transactions", None)
        if not callable(fn):
            return [await self.sign_transaction(tx) for tx in txs]
        result = fn(list(txs))
        if inspect.isawaitable(result):
            result = await result
        return list(result)


def _external_public_key(external: Any) -> Optional[Pubkey]:
    if external is None:
        return None
    pk = getattr(external, "public_key", None)
    if pk is None:
        pk = getattr(external, "publicKey", None)
    if pk is None:
        return None
    return pk if isinstance(pk, Pubkey) else Pubkey.from_string(str(pk))


def select_wallet(external: Any = None, local: Optional[Keypair] = None) -> WalletSource:
    """
    Priority:
      1) connected external wallet that can sign
      2) locally held key
      3) external wallet with a public key only (reads work, signing is denied)
    """
    ext_pk = _external_public_key(external)
    if ext_pk is not None and callable(getattr(external, "sign_transaction", None)):
        return WalletSource(EXTERNAL, ext_pk, external)
    if local is not None:
        return WalletSource(LOCAL, local.pubkey(), LocalKeypairSigner(local))
    if ext_pk is not None:
        return WalletSource(EXTERNAL, ext_pk, external)
    raise SigningDenied("No wallet available: connect a wallet or create a session key")
