"""Hand canonical jobs to long-term storage (local JSONL or the CRUD API)."""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

import requests

from crewapply.config import DATA_DIR
from crewapply.log import get_logger
from crewapply.models import CanonicalJob
from crewapply.retry import retry

log = get_logger(__name__)


class IngestStatus(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    ERROR = "error"


class JobSink(ABC):
    @abstractmethod
    def ingest(self, job: CanonicalJob) -> IngestStatus:
        pass


class JsonLinesSink(JobSink):
    """Append-only ``jobs.jsonl``; IDs already in the file count as duplicates."""

    def __init__(self, path: Path | str = DATA_DIR / "jobs.jsonl") -> None:
        self.path = Path(path)
        self._known: set[str] | None = None

    def _load_known(self) -> set[str]:
        known: set[str] = set()
        if not self.path.exists():
            return known
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    known.add(json.loads(line)["id"])
                except (ValueError, KeyError, TypeError):
                    log.debug("Skipping malformed line in %s", self.path.name)
        return known

    def ingest(self, job: CanonicalJob) -> IngestStatus:
        if self._known is None:
            self._known = self._load_known()
        if job.id in self._known:
            return IngestStatus.DUPLICATE
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(job.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            log.error("Could not write %s to %s: %s", job.id, self.path, e)
            return IngestStatus.ERROR
        self._known.add(job.id)
        return IngestStatus.CREATED


class HttpJobSink(JobSink):
    """POST each job to the jobs API. 2xx means created, 409 means duplicate."""

    def __init__(self, url: str, token: str = "", timeout: float = 15.0) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    @retry(max_attempts=3, base_delay=2.0, retryable=(requests.ConnectionError, requests.Timeout))
    def _post(self, payload: dict) -> requests.Response:
        return requests.post(self.url, json=payload, headers=self.headers, timeout=self.timeout)

    def ingest(self, job: CanonicalJob) -> IngestStatus:
        try:
            r = self._post(job.to_dict())
        except requests.RequestException as e:
            log.error("Sink request failed for %s: %s", job.id, str(e)[:150])
            return IngestStatus.ERROR
        if r.status_code == 409:
            return IngestStatus.DUPLICATE
        if 200 <= r.status_code < 300:
            return IngestStatus.CREATED
        log.warning("Sink rejected %s: HTTP %d", job.id, r.status_code)
        return IngestStatus.ERROR


def sink_from_config(url: str = "", token: str = "") -> JobSink:
    if url:
        log.info("Using HTTP job sink → %s", url)
        return HttpJobSink(url, token)
    return JsonLinesSink()
