"""
clientauth/audit.py

Tamper-evident audit log of authentication attempts.

We append one JSON object per line (JSONL). Each event is hash-chained:

  H_0 = "0"*64
  H_n = SHA3-256( bytes.fromhex(H_{n-1}) || canonical_json(event_without_hash_fields) )

Each line stores:
  - prev_hash: hex string (64 chars)
  - hash:      hex string (64 chars)

Properties:
- Any modification, deletion, or reordering of log lines breaks the chain.
- Chain state is persisted next to the log (<name>.state)
- Uses file locking (flock) to keep chain consistent under concurrency.

Tokens and challenges are recorded as SHA3-256 digests + lengths only.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union

GENESIS_HASH = "0" * 64  # 32 bytes hex


def _canonical_json_bytes(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _sha3_256_hex(data: bytes) -> str:
    return hashlib.sha3_256(data).hexdigest()


def build_event(
    *,
    result: str,
    reason: str,
    challenge: Optional[str] = None,
    token: Optional[str] = None,
    server: Optional[str] = None,
    client_domain: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Build an audit event. Keep this "boring" and stable.
    """
    out: Dict[str, Any] = {
        "ts": int(time.time()),
        "result": result,
        "reason": reason,
    }
    if server:
        out["server"] = server
    if client_domain:
        out["client_domain"] = client_domain

    if challenge is not None:
        out["challenge_sha3_256"] = _sha3_256_hex(challenge.encode("utf-8"))

    if token is not None:
        raw = token.encode("utf-8")
        out["token_len"] = len(raw)
        out["token_sha3_256"] = _sha3_256_hex(raw)

    out.update({k: v for k, v in extra.items() if v is not None})
    return out


class AuditLog:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.state_path = self.path.with_suffix(".state")
        self.lock_path = self.path.with_suffix(".lock")

    def _read_last_hash_unlocked(self) -> str:
        """
        Read last hash from the state file. Caller must hold lock.
        Returns GENESIS_HASH if state missing/empty.
        """
        if not self.state_path.exists():
            return GENESIS_HASH
        s = self.state_path.read_text(encoding="utf-8").strip()
        if len(s) != 64:
            return GENESIS_HASH
        try:
            bytes.fromhex(s)
        except ValueError:
            return GENESIS_HASH
        return s.lower()

    def append(self, event: Dict[str, Any]) -> str:
        """
        Append one event with hash chaining. Returns the new chain head.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Lock a dedicated file so it works even if log/state don't exist yet.
        with open(self.lock_path, "a+", encoding="utf-8") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                prev_hash = self._read_last_hash_unlocked()

                # Never allow callers to inject their own chain fields.
                e = dict(event)
                e.pop("prev_hash", None)
                e.pop("hash", None)

                next_hash = _sha3_256_hex(bytes.fromhex(prev_hash) + _canonical_json_bytes(e))

                stored = dict(e)
                stored["prev_hash"] = prev_hash
                stored["hash"] = next_hash

                with open(self.path, "ab") as f:
                    f.write(_canonical_json_bytes(stored) + b"\n")
                    f.flush()
                    os.fsync(f.fileno())

                self.state_path.write_text(next_hash + "\n", encoding="utf-8")
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

        return next_hash

    def verify_chain(self) -> bool:
        """
        Verify the hash chain of the log file.
        Returns True if valid (or empty), False otherwise.
        """
        if not self.path.exists():
            return True

        prev = GENESIS_HASH
        with open(self.path, "rb") as f:
            for raw_line in f:
                raw_line = raw_line.strip()
                if not raw_line:
                    continue
                try:
                    obj = json.loads(raw_line.decode("utf-8"))
                except (UnicodeDecodeError, ValueError):
                    return False
                if not isinstance(obj, dict):
                    return False

                if obj.get("prev_hash") != prev:
                    return False

                obj2 = dict(obj)
                line_hash = obj2.pop("hash", None)
                obj2.pop("prev_hash", None)

                expect = _sha3_256_hex(bytes.fromhex(prev) + _canonical_json_bytes(obj2))
                if expect != line_hash:
                    return False

                prev = line_hash

        return True
