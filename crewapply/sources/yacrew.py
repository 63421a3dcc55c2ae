"""YaCrew: a single growing list extended by "load more" or scrolling."""
from __future__ import annotations

import re
from typing import Any

from playwright.async_api import Error as PlaywrightError

from crewapply.log import get_logger
from crewapply.models import RawRecord, Source
from crewapply.sources.base import SiteAdapter, SiteRules

log = get_logger(__name__)

YACREW_RULES = SiteRules(
    version=1,
    base_url="https://www.yacrew.com",
    login_url="https://www.yacrew.com/login",
    jobs_url="https://www.yacrew.com/jobs",
    job_card=".job-item, .listing-item, [data-listing]",
    fields=(
        ("title", ".job-title, .listing-title, h2"),
        ("position", ".position-title, .role"),
        ("vessel_name", ".vessel, .yacht-name, .boat-name"),
        ("vessel_type", ".vessel-type, .yacht-type"),
        ("location", ".job-location, .location"),
        ("salary", ".salary, .pay-range"),
        ("description", ".job-desc, .description"),
        ("posted_date", ".posted, .date"),
        ("employment_type", ".employment-type, .contract-type"),
    ),
    load_more=".load-more, .show-more",
    query_params=(("role", "position"), ("location", "location"), ("vessel_type", "vessel")),
    login_email='input[type="email"], input[name="email"], #email, input[placeholder*="email" i]',
    login_password='input[type="password"], input[name="password"], #password, input[placeholder*="password" i]',
    login_page_marker="login",
    detail_fields=(
        ("description", ".job-description, .description, .job-details"),
        ("company", ".company-name, .employer-name, .yacht-name"),
        ("start_date", ".start-date, .commencement"),
    ),
    detail_lists=(
        ("requirements", ".requirements li, .qualifications li, .skills li"),
        ("benefits", ".benefits li, .perks li"),
    ),
    detail_attributes=(("contact_email", 'a[href^="mailto:"]', "href"),),
)

_LENGTH_IN_CARD = re.compile(r"(\d+)\s*m\b", re.I)


class YaCrewAdapter(SiteAdapter):
    source = Source.YACREW
    rules = YACREW_RULES

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._seen_cards = 0

    async def initialize(self) -> None:
        self._seen_cards = 0
        await super().initialize()

    def _unseen(self, cards: list[Any]) -> list[Any]:
        # The list only ever grows, so earlier cards are a prefix.
        fresh = cards[self._seen_cards:]
        self._seen_cards = len(cards)
        return fresh

    def refine(self, record: RawRecord, card_text: str) -> RawRecord:
        if not record.get("vessel_length"):
            m = _LENGTH_IN_CARD.search(card_text or "")
            if m:
                record["vessel_length"] = f"{m.group(1)}m"
        return record

    async def _card_count(self) -> int:
        return len(await self.page.query_selector_all(self.rules.job_card))

    async def advance(self) -> bool:
        page = self.page
        try:
            before = await self._card_count()
            button = await page.query_selector(self.rules.load_more)
            if button is not None and await button.is_visible():
                await self.rate_limiter.acquire()
                await button.click()
            else:
                await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            await page.wait_for_timeout(self.scraping.settle_ms)
            after = await self._card_count()
        except PlaywrightError as e:
            log.debug("[%s] No more jobs to load: %s", self.name, str(e)[:150])
            return False
        if after > before:
            log.debug("[%s] Card count grew %d -> %d", self.name, before, after)
            return True
        return False
