from __future__ import annotations

import json

import pytest
from playwright.async_api import Error as PlaywrightError

from crewapply.browser import SessionError
from crewapply.config import (
    Credentials,
    ProxySettings,
    RateLimitSettings,
    RunConfig,
    ScrapeSettings,
    SearchFilters,
    SiteSettings,
)
from crewapply.proxy import ProxyRotator
from crewapply.sources import AdapterState, YaCrewAdapter, YotspotAdapter, get_adapters
from crewapply.sources.yacrew import YACREW_RULES
from crewapply.sources.yotspot import YOTSPOT_RULES
from tests.fakes import FakeElement, FakePage, SessionFactory

FAST = ScrapeSettings(page_delay=0, settle_ms=0, retries=2)
UNLIMITED = RateLimitSettings(requests_per_minute=6000, burst_size=10)

YOTSPOT_TITLE = ".job-title, h2, h3"
YOTSPOT_LOCATION = ".location, .job-location"
YACREW_TITLE = ".job-title, .listing-title, h2"


def yotspot_card(title: str, href: str, location: str = "Antibes, France") -> FakeElement:
    return FakeElement(
        f"{title}\n{location}",
        children={
            YOTSPOT_TITLE: [FakeElement(title)],
            YOTSPOT_LOCATION: [FakeElement(location)],
            "a": [FakeElement(tag="a", attrs={"href": href})],
        },
    )


def yacrew_card(title: str, href: str, extra: str = "") -> FakeElement:
    return FakeElement(
        f"{title} {extra}".strip(),
        children={
            YACREW_TITLE: [FakeElement(title)],
            "a": [FakeElement(tag="a", attrs={"href": href})],
        },
    )


def make_yotspot(page, tmp_path, **site):
    factory = SessionFactory(page)
    adapter = YotspotAdapter(
        SiteSettings("yotspot", **site), FAST, UNLIMITED,
        session_factory=factory, output_dir=tmp_path,
    )
    return adapter, factory


def make_yacrew(page, tmp_path, **site):
    factory = SessionFactory(page)
    adapter = YaCrewAdapter(
        SiteSettings("yacrew", **site), FAST, UNLIMITED,
        session_factory=factory, output_dir=tmp_path,
    )
    return adapter, factory


def two_page_yotspot() -> FakePage:
    page = FakePage()
    page.set(YOTSPOT_RULES.job_card,
             yotspot_card("Deckhand on M/Y Aurora", "/jobs/1"),
             yotspot_card("Chef", "/jobs/2"))

    def next_page() -> None:
        page.set(YOTSPOT_RULES.job_card, yotspot_card("Bosun on S/Y Wind, Palma", "/jobs/3"))
        page.set(YOTSPOT_RULES.next_page, FakeElement(attrs={"class": "next disabled"}))

    page.set(YOTSPOT_RULES.next_page, FakeElement(on_click=next_page))
    return page


@pytest.mark.asyncio
async def test_yotspot_follows_next_until_disabled(tmp_path):
    page = two_page_yotspot()
    adapter, factory = make_yotspot(page, tmp_path)

    jobs = await adapter.scrape()

    assert [j.title for j in jobs] == ["Deckhand on M/Y Aurora", "Chef", "Bosun on S/Y Wind, Palma"]
    assert jobs[0].url == "https://www.yotspot.com/jobs/1"
    assert jobs[0].vessel.name == "M/Y Aurora"
    assert jobs[0].location.region == "mediterranean"
    assert jobs[2].vessel.name == "S/Y Wind"
    assert all(j.source == "yotspot" for j in jobs)
    assert adapter.state is AdapterState.CLOSED
    assert factory.sessions[0].closed == 1


@pytest.mark.asyncio
async def test_scrape_saves_snapshot_file(tmp_path):
    adapter, _ = make_yotspot(two_page_yotspot(), tmp_path)
    jobs = await adapter.scrape()

    files = list(tmp_path.glob("yotspot-jobs-*.json"))
    assert len(files) == 1
    saved = json.loads(files[0].read_text(encoding="utf-8"))
    assert [s["id"] for s in saved] == [j.id for j in jobs]


@pytest.mark.asyncio
async def test_max_pages_stops_before_advancing(tmp_path):
    page = two_page_yotspot()
    adapter, _ = make_yotspot(page, tmp_path, max_pages=1)

    jobs = await adapter.scrape()

    assert len(jobs) == 2
    assert (await page.query_selector(YOTSPOT_RULES.next_page)).clicks == 0


@pytest.mark.asyncio
async def test_missing_credentials_skips_login(tmp_path):
    page = two_page_yotspot()
    adapter, _ = make_yotspot(page, tmp_path, max_pages=1)
    await adapter.scrape()
    assert page.visited == ["https://www.yotspot.com/jobs"]
    assert page.filled == {}


@pytest.mark.asyncio
async def test_search_url_carries_filters(tmp_path):
    page = two_page_yotspot()
    adapter, _ = make_yotspot(page, tmp_path, max_pages=1)
    await adapter.scrape(SearchFilters(role="Chief Stew", location="Antibes"))
    assert page.visited == ["https://www.yotspot.com/jobs?position=Chief+Stew&location=Antibes"]


@pytest.mark.asyncio
async def test_search_navigation_is_retried(tmp_path):
    page = two_page_yotspot()
    page.goto_errors = [PlaywrightError("net::ERR_CONNECTION_RESET")]
    adapter, _ = make_yotspot(page, tmp_path, max_pages=1)

    jobs = await adapter.scrape()

    assert len(jobs) == 2
    assert page.visited == ["https://www.yotspot.com/jobs"] * 2


@pytest.mark.asyncio
async def test_navigation_failure_after_retries_fails_adapter(tmp_path):
    page = two_page_yotspot()
    page.goto_errors = [PlaywrightError("timeout"), PlaywrightError("timeout")]
    adapter, factory = make_yotspot(page, tmp_path)

    with pytest.raises(PlaywrightError):
        await adapter.scrape()
    assert adapter.state is AdapterState.FAILED
    assert factory.sessions[0].closed == 1


@pytest.mark.asyncio
async def test_session_open_failure_marks_proxy(tmp_path):
    rotator = ProxyRotator(["http://p1:8000", "http://p2:8000"])
    factory = SessionFactory(error=SessionError("browser crashed"))
    adapter = YotspotAdapter(
        SiteSettings("yotspot"), FAST, UNLIMITED,
        rotator=rotator, session_factory=factory, output_dir=tmp_path,
    )

    with pytest.raises(SessionError):
        await adapter.scrape()

    assert adapter.state is AdapterState.FAILED
    assert factory.sessions[0].kwargs["proxy"] == "http://p1:8000"
    assert rotator.failed == {"http://p1:8000"}
    assert list(tmp_path.iterdir()) == []


class LoginPage(FakePage):
    async def click(self, selector, **kwargs):
        await super().click(selector, **kwargs)
        self.url = "https://www.yotspot.com/dashboard"


@pytest.mark.asyncio
async def test_login_fills_credentials(tmp_path):
    page = LoginPage()
    adapter, _ = make_yotspot(
        page, tmp_path, credentials=Credentials("crew@example.com", "hunter2"),
    )
    adapter.session = SessionFactory(page)()
    await adapter.session.open()

    assert await adapter.login() is True
    assert page.visited == ["https://www.yotspot.com/login"]
    assert page.filled[YOTSPOT_RULES.login_email] == "crew@example.com"
    assert page.filled[YOTSPOT_RULES.login_password] == "hunter2"
    assert page.clicked == [YOTSPOT_RULES.login_submit]


@pytest.mark.asyncio
async def test_yacrew_login_still_on_login_page_fails(tmp_path):
    page = FakePage()
    adapter, _ = make_yacrew(page, tmp_path, credentials=Credentials("crew@example.com", "hunter2"))
    adapter.session = SessionFactory(page)()
    await adapter.session.open()

    assert await adapter.login() is False


@pytest.mark.asyncio
async def test_yacrew_load_more_collects_only_new_cards(tmp_path):
    page = FakePage()
    first = [yacrew_card("Chef", "/jobs/1", "45m M/Y"), yacrew_card("Deckhand", "/jobs/2")]
    more = [yacrew_card("Stewardess", "/jobs/3"), yacrew_card("Engineer", "/jobs/4", "60 m")]
    page.set(YACREW_RULES.job_card, *first)
    clicks = []

    def load_more() -> None:
        clicks.append(1)
        if len(clicks) == 1:
            page.set(YACREW_RULES.job_card, *first, *more)

    page.set(YACREW_RULES.load_more, FakeElement(on_click=load_more))
    adapter, _ = make_yacrew(page, tmp_path)

    jobs = await adapter.scrape()

    assert [j.title for j in jobs] == ["Chef", "Deckhand", "Stewardess", "Engineer"]
    assert jobs[0].vessel.length.value == 45
    assert jobs[3].vessel.length.value == 60
    assert jobs[1].vessel is None
    # one growth, then a no-progress advance and its single retry
    assert len(clicks) == 3


@pytest.mark.asyncio
async def test_yacrew_retry_after_slow_load_more_keeps_paginating(tmp_path):
    page = FakePage()
    first = [yacrew_card("Chef", "/jobs/1"), yacrew_card("Deckhand", "/jobs/2")]
    more = [yacrew_card("Stewardess", "/jobs/3"), yacrew_card("Engineer", "/jobs/4")]
    page.set(YACREW_RULES.job_card, *first)
    clicks = []

    def load_more() -> None:
        clicks.append(1)
        # the first click renders nothing yet; the retry brings the next batch
        if len(clicks) == 2:
            page.set(YACREW_RULES.job_card, *first, *more)

    page.set(YACREW_RULES.load_more, FakeElement(on_click=load_more))
    adapter, _ = make_yacrew(page, tmp_path, max_pages=5)

    jobs = await adapter.scrape()

    assert [j.title for j in jobs] == ["Chef", "Deckhand", "Stewardess", "Engineer"]
    assert len(clicks) == 4


@pytest.mark.asyncio
async def test_yacrew_scrolls_without_button(tmp_path):
    page = FakePage()
    first = [yacrew_card("Chef", "/jobs/1")]
    page.set(YACREW_RULES.job_card, *first)

    def grow() -> None:
        if page.scrolls == 1:
            page.set(YACREW_RULES.job_card, *first, yacrew_card("Bosun", "/jobs/2"))

    page.on_scroll = grow
    adapter, _ = make_yacrew(page, tmp_path)

    jobs = await adapter.scrape()

    assert [j.title for j in jobs] == ["Chef", "Bosun"]
    assert page.scrolls == 3


@pytest.mark.asyncio
async def test_unreadable_card_is_skipped(tmp_path):
    page = FakePage()
    page.set(
        YACREW_RULES.job_card,
        yacrew_card("Chef", "/jobs/1"),
        FakeElement(error=PlaywrightError("element detached")),
        yacrew_card("Deckhand", "/jobs/2"),
    )
    adapter, _ = make_yacrew(page, tmp_path, max_pages=1)

    jobs = await adapter.scrape()

    assert [j.title for j in jobs] == ["Chef", "Deckhand"]


@pytest.mark.asyncio
async def test_fetch_details_enriches_records(tmp_path):
    page = FakePage()
    page.set(YACREW_RULES.job_card, yacrew_card("Chef", "/jobs/1"))
    page.set(".job-description, .description, .job-details", FakeElement("Busy charter galley."))
    page.set(".requirements li, .qualifications li, .skills li",
             FakeElement("STCW Basic"), FakeElement("Food Hygiene Level 2"))
    page.set('a[href^="mailto:"]', FakeElement(tag="a", attrs={"href": "mailto:crew@yacht.com?subject=Chef"}))
    adapter, _ = make_yacrew(page, tmp_path, max_pages=1, fetch_details=True)

    jobs = await adapter.scrape()

    assert page.visited == ["https://www.yacrew.com/jobs", "https://www.yacrew.com/jobs/1"]
    assert jobs[0].description == "Busy charter galley."
    assert jobs[0].requirements == ["STCW Basic", "Food Hygiene Level 2"]
    assert jobs[0].contact_email == "crew@yacht.com"


@pytest.mark.asyncio
async def test_partial_results_survive_failure(tmp_path):
    page = FakePage()
    page.set(YACREW_RULES.job_card, yacrew_card("Chef", "/jobs/1"))

    class Exploding(YaCrewAdapter):
        async def advance(self) -> bool:
            raise RuntimeError("page crashed")

    adapter = Exploding(
        SiteSettings("yacrew"), FAST, UNLIMITED,
        session_factory=SessionFactory(page), output_dir=tmp_path,
    )
    with pytest.raises(RuntimeError):
        await adapter.scrape()

    assert [j.title for j in adapter.partial_results()] == ["Chef"]


def test_get_adapters_follows_config_order(tmp_path):
    config = RunConfig(
        sites=(SiteSettings("yacrew"), SiteSettings("yotspot", enabled=False), SiteSettings("unknown")),
        proxy=ProxySettings(enabled=False),
    )
    rotator = ProxyRotator(["http://p1:8000"])
    adapters = get_adapters(config, rotator, output_dir=tmp_path)

    assert [a.name for a in adapters] == ["yacrew"]
    assert adapters[0].rotator is None


def test_get_adapters_shares_rotator_when_enabled(tmp_path):
    config = RunConfig(proxy=ProxySettings(enabled=True, routes=("http://p1:8000",)))
    rotator = ProxyRotator(config.proxy.routes)
    adapters = get_adapters(config, rotator, output_dir=tmp_path)

    assert [a.name for a in adapters] == ["yotspot", "yacrew"]
    assert all(a.rotator is rotator for a in adapters)
