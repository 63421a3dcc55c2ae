"""Shared browser-driven scrape session for a single listing site."""
from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlencode, urljoin

from playwright.async_api import Error as PlaywrightError

from crewapply.browser import BrowserSession
from crewapply.config import DATA_DIR, RateLimitSettings, ScrapeSettings, SearchFilters, SiteSettings
from crewapply.log import get_logger
from crewapply.models import CanonicalJob, RawRecord, Source
from crewapply.normalizer import normalize_batch
from crewapply.proxy import ProxyRotator
from crewapply.rate_limiter import RateLimiter
from crewapply.retry import retry

log = get_logger(__name__)

_EMAIL_INPUT = 'input[type="email"], input[name="email"], #email'
_PASSWORD_INPUT = 'input[type="password"], input[name="password"], #password'
_LOGIN_SUBMIT = 'button[type="submit"], input[type="submit"], .login-btn'


class AdapterState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    LOGGING_IN = "logging_in"
    SEARCHING = "searching"
    PAGINATING = "paginating"
    EXTRACTING = "extracting"
    SAVED = "saved"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class SiteRules:
    """Structural selectors for one site. Built once at import, never mutated."""

    version: int
    base_url: str
    login_url: str
    jobs_url: str
    job_card: str
    # (raw record key, selector within the card)
    fields: tuple[tuple[str, str], ...]
    link: str = "a"
    next_page: str = ""
    load_more: str = ""
    # (SearchFilters attribute, query parameter name)
    query_params: tuple[tuple[str, str], ...] = ()
    login_email: str = _EMAIL_INPUT
    login_password: str = _PASSWORD_INPUT
    login_submit: str = _LOGIN_SUBMIT
    login_success_markers: tuple[str, ...] = ("dashboard", "profile")
    # Login also counts as successful once the URL no longer contains this.
    login_page_marker: str = ""
    detail_fields: tuple[tuple[str, str], ...] = ()
    detail_lists: tuple[tuple[str, str], ...] = ()
    # (raw record key, selector, attribute) read off the first match
    detail_attributes: tuple[tuple[str, str, str], ...] = ()


SessionFactory = Callable[..., Any]


class SiteAdapter(ABC):
    """Drives one browser session through login, search and pagination.

    Subclasses supply ``source``, ``rules`` and ``advance``; ``refine`` and
    ``_unseen`` are optional hooks for site-specific card handling.
    """

    source: Source
    rules: SiteRules

    def __init__(
        self,
        settings: SiteSettings,
        scraping: ScrapeSettings | None = None,
        rate_limit: RateLimitSettings | None = None,
        *,
        rotator: ProxyRotator | None = None,
        session_factory: SessionFactory = BrowserSession,
        output_dir: Path = DATA_DIR,
    ) -> None:
        self.settings = settings
        self.scraping = scraping or ScrapeSettings()
        rate_limit = rate_limit or RateLimitSettings()
        self.rate_limiter = RateLimiter(rate_limit.requests_per_minute, rate_limit.burst_size)
        self.rotator = rotator
        self.session_factory = session_factory
        self.output_dir = Path(output_dir)
        self.state = AdapterState.IDLE
        self.session: Any = None
        self.proxy: str | None = None
        self._raw: list[RawRecord] = []
        self._scraped_at = datetime.now(timezone.utc)

    @property
    def name(self) -> str:
        return self.source.value

    @property
    def page(self) -> Any:
        if self.session is None or self.session.page is None:
            raise RuntimeError(f"[{self.name}] session is not open")
        return self.session.page

    # -- lifecycle -----------------------------------------------------------

    async def initialize(self) -> None:
        self.state = AdapterState.INITIALIZING
        log.info("[%s] Initializing scraper...", self.name)
        if self.rotator is not None and self.settings.use_proxy:
            self.proxy = self.rotator.next()
        self.session = self.session_factory(
            headless=self.scraping.headless,
            proxy=self.proxy,
            timeout_ms=self.scraping.timeout_ms,
        )
        try:
            await self.session.open()
        except Exception:
            if self.proxy and self.rotator is not None:
                self.rotator.mark_failed(self.proxy)
            raise
        log.info("[%s] Scraper initialized", self.name)

    async def login(self) -> bool:
        creds = self.settings.credentials
        if not creds.present:
            log.warning("[%s] Credentials not configured, proceeding without login", self.name)
            return False

        self.state = AdapterState.LOGGING_IN
        r = self.rules
        page = self.page
        try:
            log.info("[%s] Logging in...", self.name)
            await self.rate_limiter.execute(page.goto, r.login_url, wait_until="domcontentloaded")
            await page.wait_for_selector(r.login_email, timeout=5000)
            await page.fill(r.login_email, creds.email)
            await page.fill(r.login_password, creds.password)
            await page.click(r.login_submit)
            await page.wait_for_load_state("domcontentloaded")
        except PlaywrightError as e:
            log.error("[%s] Error during login: %s", self.name, str(e)[:150])
            return False

        url = page.url.lower()
        if any(marker in url for marker in r.login_success_markers) or (
            r.login_page_marker and r.login_page_marker not in url
        ):
            log.info("[%s] Successfully logged in", self.name)
            return True
        log.error("[%s] Login failed, continuing unauthenticated", self.name)
        return False

    def build_search_url(self, filters: SearchFilters | None = None) -> str:
        params = []
        if filters is not None:
            for attr, param in self.rules.query_params:
                value = getattr(filters, attr, None)
                if value:
                    params.append((param, value))
        if not params:
            return self.rules.jobs_url
        return f"{self.rules.jobs_url}?{urlencode(params)}"

    async def search(self, filters: SearchFilters | None = None) -> None:
        self.state = AdapterState.SEARCHING
        url = self.build_search_url(filters)
        log.info("[%s] Navigating to: %s", self.name, url)
        await self.rate_limiter.execute(self.page.goto, url, wait_until="domcontentloaded")
        await self.page.wait_for_timeout(self.scraping.settle_ms)

    # -- extraction ----------------------------------------------------------

    def refine(self, record: RawRecord, card_text: str) -> RawRecord:
        return record

    def _unseen(self, cards: list[Any]) -> list[Any]:
        return cards

    async def _text(self, root: Any, selector: str) -> str | None:
        el = await root.query_selector(selector)
        if el is None:
            return None
        text = (await el.inner_text()).strip()
        return text or None

    async def _attribute(self, root: Any, selector: str, attribute: str) -> str | None:
        el = await root.query_selector(selector)
        if el is None:
            return None
        value = (await el.get_attribute(attribute) or "").strip()
        if value.lower().startswith("mailto:"):
            value = value[len("mailto:"):].split("?", 1)[0]
        return value or None

    async def _extract_card(self, card: Any) -> RawRecord:
        record: RawRecord = {}
        for key, selector in self.rules.fields:
            value = await self._text(card, selector)
            if value is not None:
                record[key] = value
        link = await card.query_selector(self.rules.link)
        href = await link.get_attribute("href") if link is not None else None
        record["url"] = urljoin(self.page.url, href) if href else self.page.url
        return self.refine(record, await card.inner_text())

    async def collect_page(self) -> list[RawRecord]:
        self.state = AdapterState.EXTRACTING
        cards = self._unseen(await self.page.query_selector_all(self.rules.job_card))
        records: list[RawRecord] = []
        for i, card in enumerate(cards):
            try:
                records.append(await self._extract_card(card))
            except Exception as e:
                log.debug("[%s] Skipping card %d: %s", self.name, i, e)
        self._raw.extend(records)
        return records

    @abstractmethod
    async def advance(self) -> bool:
        """Move to more content; True only if new cards are now rendered."""

    async def fetch_details(self, url: str) -> RawRecord:
        """Visit a detail page and pull the long-form fields."""
        page = self.page
        details: RawRecord = {}
        try:
            await self.rate_limiter.execute(page.goto, url, wait_until="domcontentloaded")
            await page.wait_for_timeout(self.scraping.settle_ms)
            for key, selector in self.rules.detail_fields:
                value = await self._text(page, selector)
                if value:
                    details[key] = value
            for key, selector in self.rules.detail_lists:
                items = []
                for el in await page.query_selector_all(selector):
                    text = (await el.inner_text()).strip()
                    if text:
                        items.append(text)
                if items:
                    details[key] = items
            for key, selector, attribute in self.rules.detail_attributes:
                value = await self._attribute(page, selector, attribute)
                if value:
                    details[key] = value
        except PlaywrightError as e:
            log.error("[%s] Error scraping job details for %s: %s", self.name, url, str(e)[:150])
        return details

    async def _paginate(self) -> None:
        max_pages = max(1, self.settings.max_pages)
        pages = 0
        while True:
            found = await self.collect_page()
            pages += 1
            log.info("[%s] Found %d jobs on page %d", self.name, len(found), pages)
            if pages >= max_pages:
                log.info("[%s] Reached max pages (%d)", self.name, max_pages)
                return

            self.state = AdapterState.PAGINATING
            await self.rate_limiter.delay(self.scraping.page_delay)
            if await self.advance():
                continue
            # One more attempt before giving up; content may still be loading.
            log.debug("[%s] No progress after advance, trying once more", self.name)
            await self.rate_limiter.delay(self.scraping.page_delay)
            if not await self.advance():
                log.info("[%s] No more content after %d pages", self.name, pages)
                return

    async def _enrich(self) -> None:
        for record in self._raw:
            url = record.get("url")
            if not url:
                continue
            details = await self.fetch_details(url)
            record.update(details)

    def _save(self, jobs: list[CanonicalJob]) -> Path | None:
        path = self.output_dir / f"{self.name}-jobs-{self._scraped_at.date().isoformat()}.json"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump([j.to_dict() for j in jobs], f, indent=2, ensure_ascii=False)
        except OSError as e:
            log.error("[%s] Could not save jobs to %s: %s", self.name, path, e)
            return None
        log.info("[%s] Saved %d jobs to %s", self.name, len(jobs), path)
        return path

    async def scrape(self, filters: SearchFilters | None = None) -> list[CanonicalJob]:
        """Run one full session and return the normalized, deduplicated jobs.

        The session is always closed, including on failure or cancellation.
        """
        self._raw = []
        self._scraped_at = datetime.now(timezone.utc)
        navigate = retry(
            max_attempts=self.scraping.retries,
            base_delay=1.0,
            retryable=(PlaywrightError,),
        )(self.search)
        try:
            await self.initialize()
            await self.login()
            await navigate(filters)
            await self._paginate()
            if self.settings.fetch_details:
                await self._enrich()
            jobs = normalize_batch(self._raw, self.source, self._scraped_at)
            log.info("[%s] Total unique jobs scraped: %d", self.name, len(jobs))
            self._save(jobs)
            self.state = AdapterState.SAVED
            return jobs
        except (Exception, asyncio.CancelledError):
            self.state = AdapterState.FAILED
            raise
        finally:
            await self.close()

    def partial_results(self) -> list[CanonicalJob]:
        """Normalize whatever was collected before a failure or cancellation."""
        return normalize_batch(list(self._raw), self.source, self._scraped_at)

    async def close(self) -> None:
        session, self.session = self.session, None
        if session is not None:
            await session.close()
            log.info("[%s] Scraper closed", self.name)
        if self.state is not AdapterState.FAILED:
            self.state = AdapterState.CLOSED
