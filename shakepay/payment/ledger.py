"""Payment ledger: one JSONL line per payment outcome.

Entries are appended to ``{data_dir}/payments.jsonl`` and read back, newest
first, by the transaction-history route.  A failed write is logged and never
interrupts the payment flow.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_DEFAULT_MAX_ENTRIES = 50


class PaymentLedger:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(
        self,
        *,
        session_id: str,
        outcome: str,
        amount: float | None,
        recipient: str = "",
        wallet_address: str = "",
        tx_id: str = "",
        status: str = "",
        reason: str = "",
        quote: str | None = None,
        confidence: float | None = None,
        backend: str = "",
        trace_id: str = "",
    ) -> dict[str, Any]:
        """Append one outcome (``complete``, ``failed`` or ``blocked``)."""
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "outcome": outcome,
            "amount": amount,
            "recipient": recipient,
            "wallet_address": wallet_address,
            "tx_id": tx_id,
            "status": status,
            "reason": reason,
            "quote": quote,
            "confidence": confidence,
            "backend": backend,
            "trace_id": trace_id,
        }
        try:
            with self._lock:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
            logger.debug("[Ledger] Recorded %s for %s", outcome, session_id)
        except OSError as exc:
            logger.warning("[Ledger] Failed to record %s for %s: %s", outcome, session_id, exc)
        return entry

    def recent(self, limit: int = _DEFAULT_MAX_ENTRIES) -> list[dict[str, Any]]:
        """Return up to *limit* entries, newest first; unreadable lines are skipped."""
        if limit <= 0 or not self._path.exists():
            return []
        try:
            with self._lock:
                lines = self._path.read_text(encoding="utf-8").strip().splitlines()
        except OSError as exc:
            logger.warning("[Ledger] Failed to read %s: %s", self._path, exc)
            return []

        entries: list[dict[str, Any]] = []
        for raw in reversed(lines):
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(entry, dict):
                entries.append(entry)
            if len(entries) >= limit:
                break
        return entries
