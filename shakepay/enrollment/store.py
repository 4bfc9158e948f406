"""Enrollment store: pre-registered payees kept in a JSON file.

The file holds ``{"people": [...]}`` where each record carries an id, a name,
a wallet address and a list of base64 reference photos.  Sessions never read
the file directly: they take an immutable ``snapshot()`` at connect time so an
enrollment change mid-session cannot alter who a running session may pay.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shakepay.utils import generate_candidate_id

logger = logging.getLogger(__name__)

WALLET_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class Candidate:
    """One enrolled person eligible to receive a payment."""

    id: str
    name: str
    wallet_address: str
    reference_images: tuple[str, ...] = field(default=(), repr=False)
    created_at: str = ""

    def to_public_dict(self) -> dict[str, Any]:
        """Serializable view without image payloads."""
        return {
            "id": self.id,
            "name": self.name,
            "walletAddress": self.wallet_address,
            "photoCount": len(self.reference_images),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Candidate":
        return cls(
            id=str(record.get("id", "")),
            name=str(record.get("name", "")),
            wallet_address=str(record.get("wallet") or record.get("wallet_address") or ""),
            reference_images=tuple(record.get("photos", []) or []),
            created_at=str(record.get("createdAt", "")),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "wallet": self.wallet_address,
            "photos": list(self.reference_images),
            "photoCount": len(self.reference_images),
            "createdAt": self.created_at,
        }


def match_candidate(candidates: tuple[Candidate, ...], description: str) -> Candidate | None:
    """Return the candidate whose name appears as whole words in *description*.

    Matching is case-insensitive.  When several names match ("Ann" and
    "Ann Lee"), the longest one wins.  No fallback candidate is returned when
    nothing matches.
    """
    if not description:
        return None
    best: Candidate | None = None
    for candidate in candidates:
        name = candidate.name.strip()
        if not name or not re.search(rf"\b{re.escape(name)}\b", description, re.IGNORECASE):
            continue
        if best is None or len(name) > len(best.name.strip()):
            best = candidate
    return best


class EnrollmentStore:
    """JSON-file backed store of enrolled candidates."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[Candidate, ...]:
        """Return an immutable copy of every enrolled candidate."""
        with self._lock:
            return tuple(Candidate.from_record(r) for r in self._read())

    def get(self, candidate_id: str) -> Candidate | None:
        return next((c for c in self.snapshot() if c.id == candidate_id), None)

    # ------------------------------------------------------------------
    # Write side (REST enrollment only)
    # ------------------------------------------------------------------

    def create(self, name: str, wallet_address: str, photos: list[str]) -> Candidate:
        if not WALLET_ADDRESS_RE.match(wallet_address):
            raise ValueError(f"invalid wallet address: {wallet_address!r}")
        candidate = Candidate(
            id=generate_candidate_id(),
            name=name.strip(),
            wallet_address=wallet_address,
            reference_images=tuple(photos),
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            records = self._read()
            records.append(candidate.to_record())
            self._write(records)
        logger.info("[Enrollment] Enrolled %s (%s)", candidate.name, candidate.id)
        return candidate

    def delete(self, candidate_id: str) -> bool:
        with self._lock:
            records = self._read()
            kept = [r for r in records if r.get("id") != candidate_id]
            if len(kept) == len(records):
                return False
            self._write(kept)
        logger.info("[Enrollment] Removed %s", candidate_id)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("[Enrollment] Failed to read %s: %s", self._path, exc)
            return []
        people = data.get("people", []) if isinstance(data, dict) else []
        return [p for p in people if isinstance(p, dict)]

    def _write(self, records: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps({"people": records}, indent=2), encoding="utf-8")
        tmp.replace(self._path)
