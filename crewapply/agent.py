"""
Crew job agent: one full run.

Runs: scrape all sites concurrently → ingest → filter → (optional) auto-apply
→ ledger update → run report. Each phase is isolated so a late failure never
discards what earlier phases gathered.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from crewapply.batch import BatchApplicationProcessor, BatchSummary
from crewapply.browser import BrowserSession
from crewapply.config import (
    REPORTS_DIR,
    SCREENSHOT_DIR,
    JobCriteria,
    RunConfig,
    SearchFilters,
    ensure_dirs,
    load_profile,
    load_run_config,
)
from crewapply.cover_letter import text_generator_from_env
from crewapply.form_filler import FormAutoFiller
from crewapply.ledger import AppliedJobLedger, LedgerError
from crewapply.log import get_logger
from crewapply.models import ApplicantProfile, ApplicationResult, CanonicalJob
from crewapply.normalizer import deduplicate_jobs
from crewapply.proxy import ProxyRotator
from crewapply.rate_limiter import RateLimiter
from crewapply.report import RunReport, build_run_report, write_run_report
from crewapply.sink import IngestStatus, JobSink, sink_from_config
from crewapply.sources import SiteAdapter, get_adapters

log = get_logger(__name__)


@dataclass
class RunOutcome:
    jobs: list[CanonicalJob] = field(default_factory=list)
    candidates: list[CanonicalJob] = field(default_factory=list)
    results: list[ApplicationResult] = field(default_factory=list)
    summary: BatchSummary | None = None
    ingest: dict[str, int] = field(default_factory=dict)
    failed_sources: list[str] = field(default_factory=list)
    timed_out_sources: list[str] = field(default_factory=list)
    ledger_added: int = 0
    report: RunReport | None = None
    report_path: Path | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class ScrapeResult:
    jobs: list[CanonicalJob]
    failed: list[str]
    timed_out: list[str]


def _contains_any(text: str, needles: Iterable[str]) -> bool:
    low = (text or "").lower()
    return any(n.lower() in low for n in needles)


def filter_jobs(
    jobs: list[CanonicalJob],
    criteria: JobCriteria | None = None,
    applied_ids: Iterable[str] = (),
) -> list[CanonicalJob]:
    """Apply the active criteria (AND), then drop already-applied IDs. Order is kept."""
    criteria = criteria or JobCriteria()
    applied = set(applied_ids)
    kept: list[CanonicalJob] = []
    for job in jobs:
        if criteria.roles and not (
            _contains_any(job.role, criteria.roles) or _contains_any(job.title, criteria.roles)
        ):
            continue
        if criteria.locations and not (
            job.location and _contains_any(job.location.raw, criteria.locations)
        ):
            continue
        if criteria.min_salary is not None and not (
            job.salary and (job.salary.min >= criteria.min_salary or job.salary.max >= criteria.min_salary)
        ):
            continue
        if criteria.vessel_types and not (
            job.vessel and job.vessel.type and _contains_any(job.vessel.type, criteria.vessel_types)
        ):
            continue
        if job.id in applied:
            continue
        kept.append(job)
    log.info("Filtered to %d jobs (from %d)", len(kept), len(jobs))
    return kept


async def scrape_all(
    adapters: list[SiteAdapter],
    filters: SearchFilters | None = None,
    timeout: float | None = None,
) -> ScrapeResult:
    """One task per adapter; failures become empty results, timeouts keep partials."""
    if not adapters:
        return ScrapeResult([], [], [])

    tasks = [asyncio.create_task(a.scrape(filters), name=f"scrape-{a.name}") for a in adapters]
    log.info("Scraping %d source(s) concurrently...", len(tasks))
    _, pending = await asyncio.wait(tasks, timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    collected: list[CanonicalJob] = []
    failed: list[str] = []
    timed_out: list[str] = []
    for adapter, task in zip(adapters, tasks):
        if task in pending or task.cancelled():
            partial = adapter.partial_results()
            log.warning("[%s] Timed out, keeping %d partial jobs", adapter.name, len(partial))
            timed_out.append(adapter.name)
            collected.extend(partial)
            continue
        exc = task.exception()
        if exc is not None:
            log.error("[%s] Scraping failed: %s", adapter.name, exc)
            failed.append(adapter.name)
            continue
        jobs = task.result()
        log.info("[%s] %d jobs scraped", adapter.name, len(jobs))
        collected.extend(jobs)

    jobs = deduplicate_jobs(collected)
    log.info("Total jobs scraped: %d", len(jobs))
    return ScrapeResult(jobs, failed, timed_out)


async def _ingest(sink: JobSink, jobs: list[CanonicalJob]) -> dict[str, int]:
    counts: Counter[str] = Counter({s.value: 0 for s in IngestStatus})
    for job in jobs:
        try:
            status = await asyncio.to_thread(sink.ingest, job)
        except Exception as e:
            log.error("Sink failed for %s: %s", job.id, e)
            status = IngestStatus.ERROR
        counts[status.value] += 1
    return dict(counts)


def _build_rotator(config: RunConfig) -> ProxyRotator | None:
    if not config.proxy.enabled:
        return None
    rotator = ProxyRotator(config.proxy.routes, probe_timeout=config.proxy.probe_timeout)
    if not config.proxy.routes:
        log.warning("Proxy rotation enabled but PROXY_LIST is empty")
    return rotator


async def run_async(
    config: RunConfig,
    profile: ApplicantProfile | None = None,
    *,
    adapters: list[SiteAdapter] | None = None,
    rotator: ProxyRotator | None = None,
    sink: JobSink | None = None,
    ledger: AppliedJobLedger | None = None,
    session_factory: Callable[..., Any] = BrowserSession,
    reports_dir: Path = REPORTS_DIR,
    screenshot_dir: Path = SCREENSHOT_DIR,
    text_generator: Callable[[str], str] | None = None,
) -> RunOutcome:
    log.info("=== Crew job run starting ===")
    outcome = RunOutcome()
    ledger = ledger or AppliedJobLedger()

    applied_ids: set[str] = set()
    try:
        applied_ids = ledger.load()
    except LedgerError as e:
        log.error("%s; continuing without exclusions", e)
        outcome.errors.append(f"ledger: {e}")

    # 1. Scrape
    if adapters is None:
        rotator = rotator or _build_rotator(config)
        if rotator is not None and config.proxy.test_on_start:
            await rotator.test_all(config.proxy.test_url)
        adapters = get_adapters(config, rotator, session_factory=session_factory)
    try:
        scraped = await scrape_all(adapters, config.search, config.scraping.run_timeout)
        outcome.jobs = scraped.jobs
        outcome.failed_sources = scraped.failed
        outcome.timed_out_sources = scraped.timed_out
    except Exception as e:
        log.error("Scrape phase failed: %s", e)
        outcome.errors.append(f"scrape: {e}")

    # 2. Ingest
    try:
        sink = sink or sink_from_config(config.sink_url, config.sink_token)
        outcome.ingest = await _ingest(sink, outcome.jobs)
        log.info("Ingest: %s", outcome.ingest)
    except Exception as e:
        log.error("Ingest phase failed: %s", e)
        outcome.errors.append(f"ingest: {e}")

    # 3. Filter
    outcome.candidates = filter_jobs(outcome.jobs, config.criteria, applied_ids)

    # 4. Apply
    if config.auto_apply:
        to_apply = outcome.candidates[: max(0, config.max_applications)]
        if profile is None:
            try:
                profile = load_profile()
            except (OSError, ValueError) as e:
                log.error("No applicant profile (%s); skipping applications", e)
                outcome.errors.append(f"profile: {e}")
        if profile is not None and to_apply:
            log.info("Applying to %d jobs...", len(to_apply))
            if text_generator is None and config.use_text_generation:
                text_generator = text_generator_from_env()
            limiter = RateLimiter(config.rate_limit.requests_per_minute, config.rate_limit.burst_size)
            filler = FormAutoFiller(
                profile,
                rate_limiter=limiter,
                screenshot_dir=screenshot_dir,
                text_generator=text_generator,
                settle_ms=config.scraping.settle_ms,
            )
            processor = BatchApplicationProcessor(
                filler,
                session_factory=session_factory,
                rate_limiter=limiter,
                application_delay=config.rate_limit.application_delay,
                headless=config.scraping.headless,
                timeout_ms=config.scraping.timeout_ms,
            )
            try:
                outcome.results = await processor.process(to_apply, config.custom_message)
            except Exception as e:
                log.error("Apply phase failed: %s", e)
                outcome.errors.append(f"apply: {e}")
            outcome.summary = processor.summary()
            log.info(
                "Applications complete: %d successful (%d confirmed, %d inferred), %d failed",
                outcome.summary.successful, outcome.summary.confirmed,
                outcome.summary.inferred, outcome.summary.failed,
            )
        elif profile is not None:
            log.info("No jobs to apply for")

    # 5. Ledger
    successful = [r.job_id for r in outcome.results if r.success]
    if successful:
        try:
            outcome.ledger_added = ledger.merge(successful)
        except (LedgerError, OSError) as e:
            log.error("Ledger update failed: %s", e)
            outcome.errors.append(f"ledger: {e}")

    # 6. Report
    try:
        outcome.report = build_run_report(
            outcome.jobs,
            sources=[a.name for a in adapters],
            candidates=len(outcome.candidates),
            summary=outcome.summary,
            ingest=outcome.ingest,
            failed_sources=outcome.failed_sources,
            timed_out_sources=outcome.timed_out_sources,
        )
        outcome.report_path = write_run_report(outcome.report, reports_dir)
    except OSError as e:
        log.error("Report write failed: %s", e)
        outcome.errors.append(f"report: {e}")

    log.info("=== Crew job run complete ===")
    return outcome


def run(config: RunConfig | None = None, **kwargs: Any) -> RunOutcome:
    ensure_dirs()
    return asyncio.run(run_async(config or load_run_config(), **kwargs))
