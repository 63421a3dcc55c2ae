from __future__ import annotations

import asyncio
import json

import pytest

from crewapply.agent import filter_jobs, run_async, scrape_all
from crewapply.browser import SessionError
from crewapply.config import JobCriteria, RateLimitSettings, RunConfig, ScrapeSettings, SiteSettings
from crewapply.form_filler import YACREW
from crewapply.ledger import AppliedJobLedger
from crewapply.sink import JsonLinesSink
from crewapply.sources import YaCrewAdapter, YotspotAdapter
from crewapply.sources.yacrew import YACREW_RULES
from tests.fakes import FakeElement, FakePage, SessionFactory

FAST = ScrapeSettings(page_delay=0, settle_ms=0, retries=1)
UNLIMITED = RateLimitSettings(requests_per_minute=6000, burst_size=10, application_delay=0)
CONFIG = RunConfig(scraping=FAST, rate_limit=UNLIMITED)


def listing_page() -> FakePage:
    page = FakePage()
    cards = []
    for n, title in enumerate(["Chef", "Deckhand"], start=1):
        cards.append(FakeElement(title, children={
            ".job-title, .listing-title, h2": [FakeElement(title)],
            ".job-location, .location": [FakeElement("Palma, Spain")],
            "a": [FakeElement(tag="a", attrs={"href": f"/jobs/{n}"})],
        }))
    page.set(YACREW_RULES.job_card, *cards)
    return page


def apply_page() -> FakePage:
    page = FakePage()
    page.set(YACREW.submit, FakeElement(tag="button"))
    page.set(".success-message", FakeElement("Application received"))
    return page


def yacrew(tmp_path, page=None, **site) -> YaCrewAdapter:
    return YaCrewAdapter(
        SiteSettings("yacrew", max_pages=1, **site), FAST, UNLIMITED,
        session_factory=SessionFactory(page or listing_page()), output_dir=tmp_path,
    )


def broken_yotspot(tmp_path) -> YotspotAdapter:
    return YotspotAdapter(
        SiteSettings("yotspot"), FAST, UNLIMITED,
        session_factory=SessionFactory(error=SessionError("chromium crashed")), output_dir=tmp_path,
    )


def run_kwargs(tmp_path, **extra):
    return dict(
        sink=JsonLinesSink(tmp_path / "jobs.jsonl"),
        ledger=AppliedJobLedger(tmp_path / "applied-jobs.json"),
        reports_dir=tmp_path / "reports",
        screenshot_dir=tmp_path / "shots",
        **extra,
    )


@pytest.mark.asyncio
async def test_failed_source_does_not_sink_the_run(tmp_path):
    adapters = [broken_yotspot(tmp_path), yacrew(tmp_path)]

    outcome = await run_async(CONFIG, adapters=adapters, **run_kwargs(tmp_path))

    assert [j.title for j in outcome.jobs] == ["Chef", "Deckhand"]
    assert outcome.failed_sources == ["yotspot"]
    assert outcome.report.by_source == {"yotspot": 0, "yacrew": 2}
    assert outcome.report.by_region == {"mediterranean": 2}
    assert outcome.ingest["created"] == 2
    assert outcome.results == []
    saved = json.loads(outcome.report_path.read_text(encoding="utf-8"))
    assert saved["failed_sources"] == ["yotspot"]
    assert (tmp_path / "reports" / outcome.report_path.name.replace(".json", ".md")).exists()


@pytest.mark.asyncio
async def test_applied_jobs_are_excluded_on_the_next_run(tmp_path, profile):
    config = RunConfig(scraping=FAST, rate_limit=UNLIMITED, auto_apply=True, max_applications=1)
    ledger_path = tmp_path / "applied-jobs.json"

    first = await run_async(
        config, profile, adapters=[yacrew(tmp_path)],
        session_factory=SessionFactory(apply_page()), **run_kwargs(tmp_path),
    )
    assert first.summary.successful == 1
    assert first.ledger_added == 1
    chef_id = first.jobs[0].id
    assert json.loads(ledger_path.read_text()) == [chef_id]

    second = await run_async(
        config, profile, adapters=[yacrew(tmp_path)],
        session_factory=SessionFactory(apply_page()), **run_kwargs(tmp_path),
    )
    assert [j.title for j in second.candidates] == ["Deckhand"]
    assert second.ingest["duplicate"] == 2
    assert json.loads(ledger_path.read_text()) == [chef_id, second.jobs[1].id]


@pytest.mark.asyncio
async def test_corrupt_ledger_is_reported_and_left_alone(tmp_path, profile):
    ledger_path = tmp_path / "applied-jobs.json"
    ledger_path.write_text("{not json", encoding="utf-8")
    config = RunConfig(scraping=FAST, rate_limit=UNLIMITED, auto_apply=True, max_applications=1)

    outcome = await run_async(
        config, profile, adapters=[yacrew(tmp_path)],
        session_factory=SessionFactory(apply_page()), **run_kwargs(tmp_path),
    )

    assert len(outcome.candidates) == 2
    assert any(e.startswith("ledger:") for e in outcome.errors)
    assert ledger_path.read_text(encoding="utf-8") == "{not json"


@pytest.mark.asyncio
async def test_malformed_profile_file_skips_applications(tmp_path, monkeypatch):
    bad = tmp_path / "profile.yaml"
    bad.write_text("first_name: [unclosed\n", encoding="utf-8")
    monkeypatch.setenv("PROFILE_PATH", str(bad))
    config = RunConfig(scraping=FAST, rate_limit=UNLIMITED, auto_apply=True)

    outcome = await run_async(config, adapters=[yacrew(tmp_path)], **run_kwargs(tmp_path))

    assert len(outcome.jobs) == 2
    assert outcome.results == []
    assert any(e.startswith("profile:") for e in outcome.errors)
    assert outcome.report_path.exists()


class HangingYaCrew(YaCrewAdapter):
    async def advance(self) -> bool:
        await asyncio.sleep(3600)
        return False


@pytest.mark.asyncio
async def test_timeout_keeps_partial_results(tmp_path):
    slow = HangingYaCrew(
        SiteSettings("yacrew", max_pages=5), FAST, UNLIMITED,
        session_factory=SessionFactory(listing_page()), output_dir=tmp_path,
    )

    result = await scrape_all([slow], timeout=0.2)

    assert result.timed_out == ["yacrew"]
    assert result.failed == []
    assert [j.title for j in result.jobs] == ["Chef", "Deckhand"]
    assert slow.session is None


@pytest.mark.asyncio
async def test_scrape_all_keeps_adapter_order_and_dedupes(tmp_path):
    shared = listing_page()
    result = await scrape_all([yacrew(tmp_path, shared), yacrew(tmp_path, shared)])
    assert [j.title for j in result.jobs] == ["Chef", "Deckhand"]


def test_filter_jobs_combines_criteria(make_job):
    chef = make_job("Chef", url="https://x/1", location="Antibes, France",
                    salary="€5,000 per month", vessel_type="motor yacht")
    deck = make_job("Deckhand", url="https://x/2", location="Fort Lauderdale, USA",
                    salary="$3,000 per month")
    stew = make_job("Stewardess", url="https://x/3", location="Antibes, France")
    jobs = [chef, deck, stew]

    assert filter_jobs(jobs) == jobs
    assert filter_jobs(jobs, JobCriteria(roles=("chef", "deck"))) == [chef, deck]
    assert filter_jobs(jobs, JobCriteria(locations=("antibes",))) == [chef, stew]
    assert filter_jobs(jobs, JobCriteria(min_salary=4000)) == [chef]
    assert filter_jobs(jobs, JobCriteria(vessel_types=("Motor",))) == [chef]
    assert filter_jobs(jobs, JobCriteria(locations=("antibes",)), applied_ids={chef.id}) == [stew]
