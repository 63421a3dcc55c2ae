"""Run application attempts one after another in a single browser session."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from crewapply.browser import BrowserSession
from crewapply.form_filler import FormAutoFiller
from crewapply.log import get_logger
from crewapply.models import ApplicationResult, ApplyOutcome, CanonicalJob
from crewapply.rate_limiter import RateLimiter

log = get_logger(__name__)


@dataclass(frozen=True)
class BatchSummary:
    total: int
    successful: int
    failed: int
    confirmed: int
    inferred: int
    results: tuple[ApplicationResult, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "confirmed": self.confirmed,
            "inferred": self.inferred,
            "results": [r.to_dict() for r in self.results],
        }


class BatchApplicationProcessor:
    """Sequential by construction: one session, one form at a time."""

    def __init__(
        self,
        filler: FormAutoFiller,
        *,
        session_factory: Callable[..., Any] = BrowserSession,
        rate_limiter: RateLimiter | None = None,
        application_delay: float = 5.0,
        headless: bool = True,
        timeout_ms: int = 30_000,
    ) -> None:
        self.filler = filler
        self.session_factory = session_factory
        self.rate_limiter = rate_limiter or RateLimiter()
        self.application_delay = application_delay
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.results: list[ApplicationResult] = []

    def _failure(self, job: CanonicalJob, message: str) -> ApplicationResult:
        return ApplicationResult(
            job_id=job.id, outcome=ApplyOutcome.FAILURE, message=message,
            job_title=job.title, url=job.url,
        )

    async def process(self, jobs: Iterable[CanonicalJob], custom_message: str = "") -> list[ApplicationResult]:
        jobs = list(jobs)
        log.info("Processing %d job applications...", len(jobs))
        if not jobs:
            return []

        session = self.session_factory(headless=self.headless, proxy=None, timeout_ms=self.timeout_ms)
        try:
            page = await session.open()
        except Exception as e:
            message = f"Browser session failed: {str(e)[:150]}"
            log.error(message)
            await session.close()
            batch = [self._failure(job, message) for job in jobs]
            self.results.extend(batch)
            return batch

        batch: list[ApplicationResult] = []
        try:
            for index, job in enumerate(jobs):
                log.info("Processing application %d/%d: %s", index + 1, len(jobs), job.title)
                try:
                    result = await self.filler.apply(page, job, custom_message)
                except Exception as e:
                    log.error("Failed to apply for %s: %s", job.title, e)
                    result = self._failure(job, str(e)[:200] or type(e).__name__)
                batch.append(result)
                self.results.append(result)
                mark = "✓" if result.success else "✗"
                log.info("  %s %s", mark, result.message)
                if index < len(jobs) - 1:
                    await self.rate_limiter.delay(self.application_delay)
        finally:
            await session.close()
        return batch

    def summary(self) -> BatchSummary:
        confirmed = sum(1 for r in self.results if r.outcome is ApplyOutcome.SUCCESS)
        inferred = sum(1 for r in self.results if r.outcome is ApplyOutcome.AMBIGUOUS)
        return BatchSummary(
            total=len(self.results),
            successful=confirmed + inferred,
            failed=len(self.results) - confirmed - inferred,
            confirmed=confirmed,
            inferred=inferred,
            results=tuple(self.results),
        )
