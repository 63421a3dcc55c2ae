"""Persisted set of job IDs already applied to (union-only JSON array)."""
from __future__ import annotations

import fcntl
import json
import os
from pathlib import Path
from typing import Iterable

from crewapply.config import DATA_DIR
from crewapply.log import get_logger

log = get_logger(__name__)

LEDGER_PATH: Path = DATA_DIR / "applied-jobs.json"


class LedgerError(RuntimeError):
    """The ledger file exists but cannot be read as a JSON array of IDs."""


def _lock(f, exclusive: bool = True) -> None:
    """Advisory file lock (Unix fcntl)."""
    try:
        op = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        fcntl.flock(f.fileno(), op)
    except (OSError, AttributeError):
        pass


def _unlock(f) -> None:
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (OSError, AttributeError):
        pass


class AppliedJobLedger:
    def __init__(self, path: Path | str = LEDGER_PATH) -> None:
        self.path = Path(path)

    def _read(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise LedgerError(f"Cannot read ledger {self.path}: {e}") from e
        if not isinstance(data, list):
            raise LedgerError(f"Ledger {self.path} is not a JSON array")
        return [str(x) for x in data]

    def load(self) -> set[str]:
        ids = set(self._read())
        log.debug("Ledger has %d applied job IDs", len(ids))
        return ids

    def merge(self, ids: Iterable[str]) -> int:
        """Union *ids* into the file; returns how many were new.

        Existing entries are never dropped. A corrupt file raises LedgerError
        and is left untouched.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.path.with_name(self.path.name + ".lock")
        with open(lock_path, "w", encoding="utf-8") as lock:
            _lock(lock)
            try:
                existing = self._read()
                known = set(existing)
                added = []
                for job_id in ids:
                    if job_id not in known:
                        known.add(job_id)
                        added.append(job_id)
                if not added:
                    return 0
                tmp = self.path.with_name(self.path.name + ".tmp")
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(existing + added, f, indent=2)
                os.replace(tmp, self.path)
            finally:
                _unlock(lock)
        log.info("Ledger updated: +%d (total %d) → %s", len(added), len(existing) + len(added), self.path.name)
        return len(added)
