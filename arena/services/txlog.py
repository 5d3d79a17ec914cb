# arena/services/txlog.py
from __future__ import annotations

import json
import os
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from solders.pubkey import Pubkey
from solders.signature import Signature

from arena.ledger.constants import DEFAULT_DATA_DIR

TXLOG_NAME = "arena_txlog.jsonl"
TXLOG_DIR = Path(os.getenv("ARENA_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()
TXLOG_FILE = TXLOG_DIR / TXLOG_NAME


def journal_path(data_dir: Path) -> Path:
    """Journal file for a given data directory."""
    return Path(data_dir) / TXLOG_NAME


def _resolve(path: Optional[Path]) -> Path:
    return Path(path) if path is not None else TXLOG_FILE


def _ensure_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.touch()


def _jsonable(obj: Any) -> Any:
    """Convert objects (solders, dataclasses, enums, bytes…) to JSON-serializable primitives."""
    if isinstance(obj, (Signature, Pubkey)):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.name
    if is_dataclass(obj) and not isinstance(obj, type):
        return _jsonable(asdict(obj))
    if isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    if isinstance(obj, (int, float, str, bool)) or obj is None:
        return obj
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(x) for x in obj]
    return str(obj)


def append(entry: Dict[str, Any], path: Optional[Path] = None) -> None:
    """Append one entry to JSONL (atomic enough for our usage)."""
    target = _resolve(path)
    _ensure_file(target)
    if "ts" not in entry:
        entry["ts"] = datetime.now(timezone.utc).isoformat()
    line = json.dumps(_jsonable(entry), separators=(",", ":"))
    with open(target, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def read_last(limit: int = 50, path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Read last N entries."""
    try:
        with open(_resolve(path), "r", encoding="utf-8") as f:
            lines = [ln for ln in f.read().splitlines() if ln.strip()]
    except FileNotFoundError:
        return []
    out: List[Dict[str, Any]] = []
    for raw in lines[-limit:]:
        try:
            out.append(json.loads(raw))
        except ValueError:
            continue
    return out


def find_by_signature(sig: str, path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """Linear scan from end; fine for our typical log sizes."""
    try:
        with open(_resolve(path), "r", encoding="utf-8") as f:
            lines = f.readlines()
    except FileNotFoundError:
        return None
    for line in reversed(lines):
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if obj.get("signature") == sig:
            return obj
    return None
