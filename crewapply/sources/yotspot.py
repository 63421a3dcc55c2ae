"""Yotspot: numbered result pages behind an explicit "next" control."""
from __future__ import annotations

import re

from playwright.async_api import Error as PlaywrightError

from crewapply.log import get_logger
from crewapply.models import RawRecord, Source
from crewapply.sources.base import SiteAdapter, SiteRules

log = get_logger(__name__)

YOTSPOT_RULES = SiteRules(
    version=1,
    base_url="https://www.yotspot.com",
    login_url="https://www.yotspot.com/login",
    jobs_url="https://www.yotspot.com/jobs",
    job_card=".job-card, .job-listing, [data-job-id]",
    fields=(
        ("title", ".job-title, h2, h3"),
        ("position", ".position, .job-position"),
        ("vessel_name", ".vessel-name, .yacht-name"),
        ("location", ".location, .job-location"),
        ("salary", ".salary, .job-salary"),
        ("description", ".description, .job-description"),
        ("posted_date", ".posted-date, .date-posted"),
    ),
    next_page='.pagination .next, .next-page, [rel="next"]',
    query_params=(("role", "position"), ("location", "location"), ("vessel_type", "vessel_type")),
    detail_fields=(
        ("description", ".job-description, .description, [data-description]"),
        ("company", ".company-name, .employer-name"),
    ),
    detail_lists=(
        ("requirements", ".requirements li, .qualifications li"),
        ("benefits", ".benefits li"),
    ),
    detail_attributes=(("contact_email", 'a[href^="mailto:"]', "href"),),
)

# "Chief Stew on M/Y Serenity, Antibes" -> "M/Y Serenity"
_VESSEL_IN_TITLE = re.compile(r"\bon\s+([^,]+)", re.I)


class YotspotAdapter(SiteAdapter):
    source = Source.YOTSPOT
    rules = YOTSPOT_RULES

    def refine(self, record: RawRecord, card_text: str) -> RawRecord:
        if not record.get("vessel_name"):
            m = _VESSEL_IN_TITLE.search(record.get("title", ""))
            if m:
                record["vessel_name"] = m.group(1).strip()
        return record

    async def advance(self) -> bool:
        page = self.page
        try:
            button = await page.query_selector(self.rules.next_page)
            if button is None:
                return False
            classes = await button.get_attribute("class") or ""
            if await button.is_disabled() or "disabled" in classes.split():
                return False
            await self.rate_limiter.acquire()
            await button.click()
            await page.wait_for_load_state("domcontentloaded")
            await page.wait_for_timeout(self.scraping.settle_ms)
            cards = await page.query_selector_all(self.rules.job_card)
        except PlaywrightError as e:
            log.debug("[%s] No next page: %s", self.name, str(e)[:150])
            return False
        return len(cards) > 0
