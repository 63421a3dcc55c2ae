from __future__ import annotations

import pytest

from crewapply.batch import BatchApplicationProcessor
from crewapply.browser import SessionError
from crewapply.models import ApplicationResult, ApplyOutcome
from crewapply.rate_limiter import RateLimiter
from tests.fakes import FakePage, SessionFactory


class ScriptedFiller:
    """Returns a preset outcome per job title; raises for ``boom``."""

    def __init__(self, outcomes: dict[str, ApplyOutcome]) -> None:
        self.outcomes = outcomes
        self.pages: list[FakePage] = []

    async def apply(self, page, job, custom_message=""):
        self.pages.append(page)
        if job.title == "boom":
            raise RuntimeError("page crashed")
        return ApplicationResult(job_id=job.id, outcome=self.outcomes[job.title], message=job.title)


class RecordingLimiter(RateLimiter):
    def __init__(self) -> None:
        super().__init__()
        self.delays: list[float] = []

    async def delay(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def jobs(make_job):
    return [
        make_job("Chef", url="https://x/1"),
        make_job("boom", url="https://x/2"),
        make_job("Bosun", url="https://x/3"),
        make_job("Deckhand", url="https://x/4"),
    ]


OUTCOMES = {
    "Chef": ApplyOutcome.SUCCESS,
    "Bosun": ApplyOutcome.AMBIGUOUS,
    "Deckhand": ApplyOutcome.FAILURE,
}


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_batch(jobs):
    page = FakePage()
    factory = SessionFactory(page)
    filler = ScriptedFiller(OUTCOMES)
    limiter = RecordingLimiter()
    processor = BatchApplicationProcessor(
        filler, session_factory=factory, rate_limiter=limiter, application_delay=5.0,
    )

    results = await processor.process(jobs)

    assert [r.job_id for r in results] == [j.id for j in jobs]
    assert results[1].outcome is ApplyOutcome.FAILURE
    assert results[1].message == "page crashed"
    assert results[1].job_title == "boom"
    assert all(p is page for p in filler.pages)
    assert len(factory.sessions) == 1
    assert factory.sessions[0].closed == 1
    assert limiter.delays == [5.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_summary_counts(jobs):
    processor = BatchApplicationProcessor(
        ScriptedFiller(OUTCOMES), session_factory=SessionFactory(), rate_limiter=RecordingLimiter(),
    )
    await processor.process(jobs)
    summary = processor.summary()

    assert (summary.total, summary.successful, summary.failed) == (4, 2, 2)
    assert (summary.confirmed, summary.inferred) == (1, 1)
    assert summary.to_dict()["results"][0]["success"] is True


@pytest.mark.asyncio
async def test_session_open_failure_fails_every_job(jobs):
    factory = SessionFactory(error=SessionError("chromium missing"))
    filler = ScriptedFiller(OUTCOMES)
    processor = BatchApplicationProcessor(filler, session_factory=factory, rate_limiter=RecordingLimiter())

    results = await processor.process(jobs)

    assert len(results) == 4
    assert all(r.outcome is ApplyOutcome.FAILURE for r in results)
    assert all(r.message == "Browser session failed: chromium missing" for r in results)
    assert filler.pages == []
    assert factory.sessions[0].closed == 1


@pytest.mark.asyncio
async def test_empty_batch_opens_no_session():
    factory = SessionFactory()
    processor = BatchApplicationProcessor(ScriptedFiller({}), session_factory=factory)
    assert await processor.process([]) == []
    assert factory.sessions == []
    assert processor.summary().total == 0
