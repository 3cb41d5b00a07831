"""
Privacy Swap Persistence

Pluggable stores for the deposit ledger and swap records. Records are kept
as flat JSON collections, overwritten by key.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Deposit, SwapRequest


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
    os.replace(tmp_path, path)


def _read_json(path: Path) -> Any:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def _is_stale(request: SwapRequest, cutoff: datetime) -> bool:
    return request.is_terminal and request.created_at < cutoff


class DepositStore(ABC):
    """Storage backend for the deposit ledger."""

    @abstractmethod
    def load(self) -> List[Deposit]:
        """Return every stored deposit."""

    @abstractmethod
    def save(self, deposits: List[Deposit]) -> None:
        """Replace the stored collection with `deposits`."""


class SwapStore(ABC):
    """Storage backend for swap request snapshots."""

    @abstractmethod
    def load(self) -> List[SwapRequest]:
        """Return every stored swap request."""

    @abstractmethod
    def save(self, request: SwapRequest) -> None:
        """Insert or overwrite the record for `request.id`."""


class JsonFileDepositStore(DepositStore):
    """Deposits in a single JSON array file."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)

    def load(self) -> List[Deposit]:
        raw = _read_json(self.path)
        if raw is None:
            return []

        # Older files grouped deposits by owner address
        if isinstance(raw, dict):
            records = [item for group in raw.values() for item in (group or [])]
            self.logger.warning(
                "Converted owner-keyed deposit file %s to a flat list (%d records)",
                self.path,
                len(records),
            )
        elif isinstance(raw, list):
            records = raw
        else:
            self.logger.warning("Unrecognised deposit file format in %s, ignoring", self.path)
            return []

        return [Deposit.from_dict(item) for item in records]

    def save(self, deposits: List[Deposit]) -> None:
        _write_json(self.path, [d.to_dict() for d in deposits])


class JsonFileSwapStore(SwapStore):
    """Swap request snapshots in a single JSON array file."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)
        self._records: Optional[Dict[str, Dict[str, Any]]] = None

    def _ensure_loaded(self) -> Dict[str, Dict[str, Any]]:
        if self._records is None:
            raw = _read_json(self.path) or []
            self._records = {item["id"]: item for item in raw}
        return self._records

    def load(self) -> List[SwapRequest]:
        return [SwapRequest.from_dict(item) for item in self._ensure_loaded().values()]

    def save(self, request: SwapRequest) -> None:
        records = self._ensure_loaded()
        records[request.id] = request.to_dict()
        _write_json(self.path, list(records.values()))

    def prune(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Drop finished swap records created longer than `max_age` ago. In-flight swaps are kept."""
        cutoff = (now or datetime.now(timezone.utc)) - max_age
        records = self._ensure_loaded()
        stale = [
            swap_id
            for swap_id, item in records.items()
            if _is_stale(SwapRequest.from_dict(item), cutoff)
        ]
        for swap_id in stale:
            del records[swap_id]
        if stale:
            _write_json(self.path, list(records.values()))
            self.logger.info("Pruned %d swap records older than %s", len(stale), max_age)
        return len(stale)
