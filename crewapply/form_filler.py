"""
Fill and submit job application forms from an applicant profile.

Known sites get a fixed selector table (a ``Dialect``); anything else goes
through heuristic label -> placeholder -> name-attribute matching. Submission
outcome is read off the resulting page and is tri-state: confirmed success,
explicit error, or "likely submitted" when the page shows neither.
"""
from __future__ import annotations

import asyncio
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from playwright.async_api import Error as PlaywrightError

from crewapply.config import SCREENSHOT_DIR
from crewapply.cover_letter import TextGenerator, format_experience, generate_cover_letter
from crewapply.log import get_logger
from crewapply.models import ApplicantProfile, ApplicationResult, ApplyOutcome, CanonicalJob
from crewapply.rate_limiter import RateLimiter

log = get_logger(__name__)

SUCCESS_SELECTORS: tuple[str, ...] = (
    ".success-message",
    ".alert-success",
    '[data-success="true"]',
    "text=Success",
    "text=Application submitted",
    "text=Thank you",
)
ERROR_SELECTORS: tuple[str, ...] = (
    ".error-message",
    ".alert-error",
    ".field-error",
    "text=Error",
    "text=Required",
)


def _q(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


_REGEX_SPECIAL = re.compile(r"([.*+?^${}()|\[\]\\])")


def label_pattern(pattern: str) -> str:
    """Regex for label text that starts with *pattern* as whole words.

    "address" matches "Address *" but not "Email address". A label that wraps
    its control also carries the control's text, so only the start is anchored.
    """
    words = [_REGEX_SPECIAL.sub(r"\\\1", w) for w in pattern.split()]
    return r"^\s*" + r"\s+".join(words) + r"(?![\w-])"


def label_selector(pattern: str) -> str:
    return f'label:text-matches("{_q(label_pattern(pattern))}", "i")'


# ---------------------------------------------------------------------------
# Matching strategies
# ---------------------------------------------------------------------------

class FieldMatcher(ABC):
    name: str = ""

    @abstractmethod
    async def try_match(self, page: Any, pattern: str) -> Any | None:
        """Return an element handle for *pattern*, or None."""


class LabelMatcher(FieldMatcher):
    name = "label"

    async def try_match(self, page: Any, pattern: str) -> Any | None:
        label = await page.query_selector(label_selector(pattern))
        if label is None:
            return None
        target = await label.get_attribute("for")
        if target:
            return await page.query_selector(f'[id="{_q(target)}"]')
        return await label.query_selector("input, select, textarea")


class PlaceholderMatcher(FieldMatcher):
    name = "placeholder"

    async def try_match(self, page: Any, pattern: str) -> Any | None:
        p = _q(pattern)
        return await page.query_selector(
            f'input[placeholder*="{p}" i], textarea[placeholder*="{p}" i]'
        )


class NameAttributeMatcher(FieldMatcher):
    name = "name"

    async def try_match(self, page: Any, pattern: str) -> Any | None:
        p = _q("".join(pattern.split()))
        return await page.query_selector(
            f'input[name*="{p}" i], select[name*="{p}" i], textarea[name*="{p}" i]'
        )


MATCHERS: tuple[FieldMatcher, ...] = (LabelMatcher(), PlaceholderMatcher(), NameAttributeMatcher())

# (label patterns, value key), tried in order.
GENERIC_MAPPINGS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("first name", "firstname", "first_name"), "first_name"),
    (("last name", "lastname", "last_name", "surname"), "last_name"),
    (("email", "e-mail"), "email"),
    (("phone", "telephone", "mobile", "cell"), "phone"),
    (("address",), "address"),
    (("city",), "city"),
    (("country",), "country"),
    (("nationality",), "nationality"),
    (("position", "role", "job title"), "current_position"),
    (("experience", "years"), "years_experience"),
    (("message", "cover letter", "coverletter"), "cover_letter"),
    (("salary", "expectation", "pay"), "salary_expectation"),
    (("available", "start date", "commencement"), "available_from"),
)


# ---------------------------------------------------------------------------
# Dialects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Dialect:
    name: str
    version: int
    url_marker: str = ""
    marker_selector: str = ""
    # (selector, value key); empty means heuristic matching
    fields: tuple[tuple[str, str], ...] = ()
    # (profile attribute, checkbox name hint)
    checkbox_groups: tuple[tuple[str, str], ...] = (
        ("certifications", "certification"),
        ("languages", "language"),
    )
    cv_inputs: tuple[str, ...] = ()
    certificate_inputs: tuple[str, ...] = ()
    submit: str = 'button[type="submit"], input[type="submit"]'


GENERIC = Dialect(
    name="generic",
    version=1,
    cv_inputs=(
        'input[type="file"][name*="cv" i]',
        'input[type="file"][name*="resume" i]',
        'input[type="file"]',
    ),
    certificate_inputs=('input[type="file"][name*="certificate" i]',),
    submit='button[type="submit"], input[type="submit"], .apply, .submit',
)

YOTSPOT = Dialect(
    name="yotspot",
    version=1,
    url_marker="yotspot.com",
    marker_selector='.yotspot-form, [data-platform="yotspot"]',
    fields=(
        ('input[name="first_name"], input[id="firstName"], input[placeholder*="First" i]', "first_name"),
        ('input[name="last_name"], input[id="lastName"], input[placeholder*="Last" i]', "last_name"),
        ('input[name="email"], input[type="email"], input[id="email"]', "email"),
        ('input[name="phone"], input[type="tel"], input[id="phone"]', "phone"),
        ('input[name="nationality"], select[name="nationality"], input[id="nationality"]', "nationality"),
        ('textarea[name="message"], textarea[name="cover_letter"], textarea[id="message"]', "cover_letter"),
        ('textarea[name="experience"], textarea[id="experience"]', "experience_summary"),
    ),
    cv_inputs=('input[type="file"][name*="cv" i]', 'input[type="file"][name*="resume" i]'),
    certificate_inputs=('input[type="file"][name*="certificate" i]',),
    submit='button[type="submit"], .apply-btn, input[type="submit"]',
)

YACREW = Dialect(
    name="yacrew",
    version=1,
    url_marker="yacrew.com",
    marker_selector='.yacrew-form, [data-platform="yacrew"]',
    fields=(
        ('input[name="firstName"], input[id="first-name"]', "first_name"),
        ('input[name="lastName"], input[id="last-name"]', "last_name"),
        ('input[name="email"], input[type="email"]', "email"),
        ('input[name="phone"], input[type="tel"]', "phone"),
        ('input[name="currentPosition"], input[id="position"]', "current_position"),
        ('select[name="yearsExperience"], input[name="experience"]', "years_experience"),
        ('textarea[name="coverLetter"], textarea[name="message"]', "cover_letter"),
        ('textarea[name="availability"], input[name="availableFrom"]', "available_from"),
    ),
    cv_inputs=('input[type="file"][accept*=".pdf"]', 'input[name*="cv"]'),
    submit='button[type="submit"], .submit-application, .btn-apply',
)

KNOWN_DIALECTS: tuple[Dialect, ...] = (YOTSPOT, YACREW)


# ---------------------------------------------------------------------------
# Filler
# ---------------------------------------------------------------------------

class FormAutoFiller:
    def __init__(
        self,
        profile: ApplicantProfile,
        *,
        rate_limiter: RateLimiter | None = None,
        screenshot_dir: Path = SCREENSHOT_DIR,
        text_generator: TextGenerator | None = None,
        settle_ms: int = 2_000,
    ) -> None:
        self.profile = profile
        self.rate_limiter = rate_limiter
        self.screenshot_dir = Path(screenshot_dir)
        self.text_generator = text_generator
        self.settle_ms = settle_ms

    async def detect_dialect(self, page: Any) -> Dialect:
        url = (page.url or "").lower()
        for dialect in KNOWN_DIALECTS:
            if dialect.url_marker and dialect.url_marker in url:
                return dialect
        for dialect in KNOWN_DIALECTS:
            if dialect.marker_selector and await page.query_selector(dialect.marker_selector) is not None:
                return dialect
        return GENERIC

    def _values(self, cover_letter: str) -> dict[str, str]:
        p = self.profile
        return {
            "first_name": p.first_name,
            "last_name": p.last_name,
            "email": p.email,
            "phone": p.phone,
            "address": p.address,
            "city": p.city,
            "country": p.country,
            "nationality": p.nationality,
            "current_position": p.current_position,
            "years_experience": p.years_experience,
            "salary_expectation": p.salary_expectation,
            "available_from": p.available_from,
            "cover_letter": cover_letter,
            "experience_summary": format_experience(p),
        }

    async def fill_handle(self, handle: Any, value: str) -> bool:
        try:
            tag = str(await handle.evaluate("el => el.tagName")).lower()
            if tag == "select":
                try:
                    await handle.select_option(label=value)
                except PlaywrightError:
                    await handle.select_option(value=value)
            else:
                await handle.fill(value)
        except PlaywrightError as e:
            log.debug("Could not fill field: %s", str(e)[:120])
            return False
        return True

    async def fill_selector(self, page: Any, selector: str, value: str) -> bool:
        handle = await page.query_selector(selector)
        if handle is None:
            return False
        ok = await self.fill_handle(handle, value)
        if ok:
            log.debug("Filled field %s", selector)
        return ok

    async def _already_filled(self, handle: Any, filled: list[Any]) -> bool:
        if not filled:
            return False
        try:
            return bool(await handle.evaluate("(el, seen) => seen.includes(el)", filled))
        except PlaywrightError:
            return False

    async def fill_by_patterns(
        self, page: Any, patterns: tuple[str, ...], value: str, filled: list[Any] | None = None,
    ) -> str | None:
        """Try each matcher across all patterns; returns the matcher name that filled.

        Controls in *filled* are skipped and the newly filled one is appended,
        so one input is never claimed by two profile fields.
        """
        for matcher in MATCHERS:
            for pattern in patterns:
                handle = await matcher.try_match(page, pattern)
                if handle is None:
                    continue
                if filled is not None and await self._already_filled(handle, filled):
                    continue
                if await self.fill_handle(handle, value):
                    if filled is not None:
                        filled.append(handle)
                    return matcher.name
        return None

    async def select_checkboxes(self, page: Any, items: tuple[str, ...], category: str) -> int:
        """Check every option matching *items*; already-checked boxes are left alone."""
        checked = 0
        for item in items:
            it = _q(item)
            selectors = (
                f'input[type="checkbox"][value="{it}" i]',
                f'input[type="checkbox"][name*="{category}" i][value*="{it}" i]',
                f'label:has-text("{it}") input[type="checkbox"]',
            )
            for selector in selectors:
                try:
                    box = await page.query_selector(selector)
                    if box is None:
                        continue
                    if not await box.is_checked():
                        await box.check()
                        checked += 1
                        log.debug("Selected checkbox: %s", item)
                    break
                except PlaywrightError as e:
                    log.debug("Checkbox %r not selectable via %s: %s", item, selector, str(e)[:120])
        return checked

    async def upload(self, page: Any, selectors: tuple[str, ...], path: str) -> bool:
        for selector in selectors:
            handle = await page.query_selector(selector)
            if handle is None:
                continue
            try:
                await handle.set_input_files(path)
            except (PlaywrightError, OSError) as e:
                log.warning("Failed to upload file %s: %s", path, str(e)[:150])
                return False
            log.info("Uploaded file: %s", path)
            return True
        log.debug("No file input found for %s", path)
        return False

    async def snapshot(self, page: Any, job: CanonicalJob, prefix: str) -> str | None:
        path = self.screenshot_dir / f"{prefix}-{job.id}-{int(time.time() * 1000)}.png"
        try:
            self.screenshot_dir.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
        except (PlaywrightError, OSError) as e:
            log.error("Failed to take screenshot: %s", str(e)[:150])
            return None
        log.info("Screenshot saved: %s", path)
        return str(path)

    async def _fill(self, page: Any, dialect: Dialect, values: dict[str, str]) -> int:
        filled = 0
        if dialect.fields:
            for selector, key in dialect.fields:
                value = values.get(key)
                if value and await self.fill_selector(page, selector, value):
                    filled += 1
        else:
            handles: list[Any] = []
            for patterns, key in GENERIC_MAPPINGS:
                value = values.get(key)
                if not value:
                    continue
                via = await self.fill_by_patterns(page, patterns, value, handles)
                if via:
                    filled += 1
                    log.debug("Filled %s via %s", key, via)
        for attr, category in dialect.checkbox_groups:
            items = getattr(self.profile, attr, ())
            if items:
                await self.select_checkboxes(page, items, category)
        return filled

    async def _attach(self, page: Any, dialect: Dialect) -> None:
        if self.profile.cv_path and dialect.cv_inputs:
            await self.upload(page, dialect.cv_inputs, self.profile.cv_path)
        if self.profile.certificates and dialect.certificate_inputs:
            await self.upload(page, dialect.certificate_inputs, self.profile.certificates[0])

    async def _submit(self, page: Any, job: CanonicalJob, dialect: Dialect) -> ApplicationResult:
        def result(outcome: ApplyOutcome, message: str, snap: str | None = None) -> ApplicationResult:
            return ApplicationResult(
                job_id=job.id, outcome=outcome, message=message, job_title=job.title,
                url=job.url, dialect=dialect.name, snapshot_path=snap,
            )

        button = await page.query_selector(dialect.submit)
        if button is None:
            log.warning("Submit button not found for %s", job.title)
            return result(ApplyOutcome.FAILURE, "Submit button not found")

        snap = await self.snapshot(page, job, "before-submit")
        await button.click()
        await page.wait_for_timeout(self.settle_ms)

        for selector in SUCCESS_SELECTORS:
            if await page.query_selector(selector) is not None:
                log.info("Form submitted successfully")
                return result(ApplyOutcome.SUCCESS, "Application submitted", snap)

        for selector in ERROR_SELECTORS:
            el = await page.query_selector(selector)
            if el is not None:
                text = " ".join((await el.inner_text()).split()) or selector
                log.error("Form submission error: %s", text)
                return result(ApplyOutcome.FAILURE, f"Form submission error: {text}", snap)

        return result(ApplyOutcome.AMBIGUOUS, "Form likely submitted", snap)

    async def apply(self, page: Any, job: CanonicalJob, custom_message: str = "") -> ApplicationResult:
        if not job.url:
            return ApplicationResult(
                job_id=job.id, outcome=ApplyOutcome.FAILURE, message="No URL for this job",
                job_title=job.title,
            )

        log.info("Applying to job: %s (%s)", job.title, job.url)
        dialect = GENERIC
        try:
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            await page.goto(job.url, wait_until="domcontentloaded")
            await page.wait_for_timeout(self.settle_ms)

            dialect = await self.detect_dialect(page)
            log.info("Detected form type: %s", dialect.name)

            letter = await asyncio.to_thread(
                generate_cover_letter, job, self.profile,
                custom_message=custom_message, text_generator=self.text_generator,
            )
            filled = await self._fill(page, dialect, self._values(letter))
            log.debug("Filled %d fields on %s form", filled, dialect.name)
            await self._attach(page, dialect)
            return await self._submit(page, job, dialect)
        except Exception as e:
            message = str(e).split("\n")[0][:200] or type(e).__name__
            log.error("Error applying to %s: %s", job.title, message)
            snap = await self.snapshot(page, job, "error")
            return ApplicationResult(
                job_id=job.id, outcome=ApplyOutcome.FAILURE, message=message,
                job_title=job.title, url=job.url, dialect=dialect.name, snapshot_path=snap,
            )
