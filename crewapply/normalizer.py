"""Map raw listing records into CanonicalJob and drop in-batch duplicates.

Every classifier below is an ordered tuple of ``(pattern, label)`` pairs where
the first match wins. Append new rules at the end and bump the matching
``*_RULES_VERSION`` so earlier matches never change.
"""
from __future__ import annotations

import calendar
import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from crewapply.log import get_logger
from crewapply.models import (
    CanonicalJob,
    Contract,
    ContractDuration,
    Location,
    RawRecord,
    Salary,
    Source,
    Vessel,
    VesselLength,
)

log = get_logger(__name__)

ROLE_RULES_VERSION = 1
ROLE_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"captain|master|skipper", re.I), "Captain"),
    (re.compile(r"chef|cook|culinary|galley", re.I), "Chef"),
    (re.compile(r"stewardess|steward|interior", re.I), "Steward/Stewardess"),
    (re.compile(r"engineer|\beto\b", re.I), "Engineer"),
    (re.compile(r"deckhand|deck", re.I), "Deckhand"),
    (re.compile(r"bosun", re.I), "Bosun"),
    (re.compile(r"first officer|1st officer", re.I), "First Officer"),
    (re.compile(r"\bmate\b", re.I), "Mate"),
)

VESSEL_RULES_VERSION = 1
VESSEL_TYPE_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"motor yacht|m/y", re.I), "Motor Yacht"),
    (re.compile(r"sailing yacht|s/y|\bsail", re.I), "Sailing Yacht"),
    (re.compile(r"superyacht|super yacht", re.I), "Superyacht"),
    (re.compile(r"mega yacht|megayacht", re.I), "Megayacht"),
    (re.compile(r"catamaran|\bcat\b", re.I), "Catamaran"),
)

REGION_RULES_VERSION = 1
REGION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bmed\b|mediterranean|france|italy|spain|greece|monaco", re.I), "mediterranean"),
    (re.compile(r"caribbean|bahamas|\bbvi\b|antigua|st\.?\s*martin", re.I), "caribbean"),
    (re.compile(r"\busa\b|united states|florida|california", re.I), "usa"),
    (re.compile(r"dubai|\buae\b|qatar|oman", re.I), "middle_east"),
    (re.compile(r"asia|thailand|singapore|hong kong", re.I), "asia"),
)

COUNTRIES: tuple[str, ...] = (
    "USA", "UK", "France", "Italy", "Spain", "Greece", "Monaco",
    "Turkey", "Croatia", "Montenegro", "Dubai", "UAE", "Qatar",
    "Bahamas", "BVI", "Antigua", "St. Martin",
)

# Checked in this order; "$" before "USD" etc. only matters for mixed text.
CURRENCY_MARKERS: tuple[tuple[str, str], ...] = (
    ("$", "USD"), ("€", "EUR"), ("£", "GBP"),
    ("USD", "USD"), ("EUR", "EUR"), ("GBP", "GBP"),
)

_AMOUNT = r"(\d[\d,]*(?:\.\d+)?)"
_RANGE_RE = re.compile(_AMOUNT + r"\s*(?:-|–|to)\s*(?:[$€£]|USD|EUR|GBP)?\s*" + _AMOUNT, re.I)
_SINGLE_RE = re.compile(_AMOUNT)
_PERIOD_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"monthly|month|pcm", re.I), "month"),
    (re.compile(r"yearly|year|annum|\bpa\b", re.I), "year"),
    (re.compile(r"week", re.I), "week"),
    (re.compile(r"\bday|daily", re.I), "day"),
)

_LENGTH_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(m|meters?|metres?|ft|feet)\b", re.I)
_LEADING_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_LIST_SPLIT_RE = re.compile(r"[,;•\n]+")
_DURATION_RE = re.compile(r"(\d+)\s*(month|year|week)s?\b", re.I)
_RELATIVE_RE = re.compile(r"(\d+)\s*(day|week|month)s?\s*ago", re.I)

_DATE_FORMATS = (
    "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y",
    "%d %B %Y", "%d %b %Y", "%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%b %d %Y",
)


def clean_text(text: Any) -> str:
    if not text:
        return ""
    return " ".join(str(text).split())


def make_fingerprint(source: str, title: str, url: str | None, scraped_at: datetime) -> str:
    salt = url or scraped_at.isoformat()
    digest = hashlib.sha256(f"{source}-{title}-{salt}".encode("utf-8")).hexdigest()
    return digest[:16]


def _first_match(text: str, rules: Iterable[tuple[re.Pattern[str], str]]) -> str | None:
    for pattern, label in rules:
        if pattern.search(text):
            return label
    return None


def parse_role(text: str | None) -> str:
    text = clean_text(text)
    if not text:
        return "Unknown"
    return _first_match(text, ROLE_RULES) or " ".join(text.split(" ")[:3])


def parse_vessel_type(text: str | None) -> str | None:
    text = clean_text(text)
    if not text:
        return None
    return _first_match(text, VESSEL_TYPE_RULES) or text


def parse_vessel_length(text: Any) -> VesselLength | None:
    text = clean_text(text)
    if not text:
        return None
    m = _LENGTH_RE.search(text)
    if m:
        unit = "m" if m.group(2).lower().startswith("m") else "ft"
        return VesselLength(float(m.group(1)), unit)
    m = _LEADING_NUMBER_RE.search(text)
    if m:
        return VesselLength(float(m.group(0)), "m")
    return None


def parse_vessel(raw: RawRecord) -> Vessel | None:
    vessel = Vessel(
        name=clean_text(raw.get("vessel_name")) or None,
        type=parse_vessel_type(raw.get("vessel_type")),
        length=parse_vessel_length(raw.get("vessel_length")),
        flag=clean_text(raw.get("vessel_flag")) or None,
    )
    if vessel == Vessel():
        return None
    return vessel


def extract_country(text: str) -> str | None:
    low = text.lower()
    for country in COUNTRIES:
        if re.search(r"(?<![a-z])" + re.escape(country.lower()) + r"(?![a-z])", low):
            return country
    return None


def parse_location(text: str | None) -> Location | None:
    cleaned = clean_text(text)
    if not cleaned:
        return None
    return Location(
        raw=cleaned,
        region=_first_match(cleaned, REGION_RULES) or "Unknown",
        country=extract_country(cleaned),
    )


def _amount(text: str) -> float:
    return float(text.replace(",", ""))


def parse_salary(text: str | None) -> Salary | None:
    cleaned = clean_text(text)
    if not cleaned:
        return None

    currency = "USD"
    for marker, code in CURRENCY_MARKERS:
        if marker in cleaned:
            currency = code
            break

    rng = _RANGE_RE.search(cleaned)
    if rng:
        low, high = _amount(rng.group(1)), _amount(rng.group(2))
    else:
        single = _SINGLE_RE.search(cleaned)
        if not single:
            return None
        low = high = _amount(single.group(1))

    period = _first_match(cleaned, _PERIOD_RULES) or "month"
    return Salary(min=low, max=high, currency=currency, period=period, raw=cleaned)


def _split_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = _LIST_SPLIT_RE.split(str(value))
    return [clean_text(item) for item in items]


def parse_requirements(value: Any) -> list[str]:
    return [r for r in _split_list(value) if len(r) > 3]


def parse_benefits(value: Any) -> list[str]:
    return [b for b in _split_list(value) if b]


def _months_back(when: datetime, months: int) -> datetime:
    month_index = when.month - 1 - months
    year = when.year + month_index // 12
    month = month_index % 12 + 1
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


def parse_date(text: Any, now: datetime) -> datetime | None:
    """Resolve a relative or absolute date phrase against *now*.

    Naive absolute dates are taken as UTC. Anything unparseable gives None.
    """
    cleaned = clean_text(text)
    if not cleaned:
        return None
    low = cleaned.lower()

    if low in ("today", "just now", "new"):
        return now
    if low == "yesterday":
        return now - timedelta(days=1)

    rel = _RELATIVE_RE.search(low)
    if rel:
        n, unit = int(rel.group(1)), rel.group(2)
        if unit == "day":
            return now - timedelta(days=n)
        if unit == "week":
            return now - timedelta(weeks=n)
        return _months_back(now, n)

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(cleaned, fmt)
            except ValueError:
                continue
            break
    if parsed is None:
        log.debug("Unparseable date %r", cleaned)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_contract(raw: RawRecord, now: datetime) -> Contract | None:
    text = clean_text(raw.get("employment_type") or raw.get("contract"))
    description = clean_text(raw.get("description"))
    if re.search(r"permanent|full[-\s]?time", text, re.I):
        kind = "Permanent"
    elif re.search(r"temporary|contract|seasonal|rotation", text, re.I):
        kind = "Temporary"
    else:
        kind = "Unknown"

    duration = None
    m = _DURATION_RE.search(description)
    if m:
        duration = ContractDuration(int(m.group(1)), m.group(2).lower())

    contract = Contract(type=kind, duration=duration, start_date=parse_date(raw.get("start_date"), now))
    if contract == Contract():
        return None
    return contract


def normalize(
    raw: RawRecord, source: Source | str, scraped_at: datetime | None = None
) -> CanonicalJob | None:
    """Build a CanonicalJob from *raw*, or return None when it fails validation.

    Output depends only on *raw*, *source* and *scraped_at*; pass the same
    ``scraped_at`` to get identical jobs.
    """
    scraped_at = scraped_at or datetime.now(timezone.utc)
    source_name = source.value if isinstance(source, Source) else clean_text(source)
    title = clean_text(raw.get("title"))

    missing = [name for name, value in (("title", title), ("source", source_name)) if not value]
    if missing:
        log.warning("Job validation failed, missing: %s", ", ".join(missing))
        return None

    url = clean_text(raw.get("url"))
    return CanonicalJob(
        id=make_fingerprint(source_name, title, url or None, scraped_at),
        source=source_name,
        title=title,
        role=parse_role(raw.get("position") or title),
        scraped_at=scraped_at,
        description=clean_text(raw.get("description")),
        company=clean_text(raw.get("company")),
        contact_email=clean_text(raw.get("contact_email")),
        url=url,
        vessel=parse_vessel(raw),
        location=parse_location(raw.get("location")),
        salary=parse_salary(raw.get("salary")),
        contract=parse_contract(raw, scraped_at),
        requirements=parse_requirements(raw.get("requirements")),
        benefits=parse_benefits(raw.get("benefits")),
        posted_at=parse_date(raw.get("posted_date"), scraped_at),
        expires_at=parse_date(raw.get("expires_at"), scraped_at),
    )


def deduplicate_jobs(jobs: Iterable[CanonicalJob]) -> list[CanonicalJob]:
    seen: set[str] = set()
    unique: list[CanonicalJob] = []
    for job in jobs:
        if job.id in seen:
            continue
        seen.add(job.id)
        unique.append(job)
    return unique


def normalize_batch(
    raws: Iterable[RawRecord], source: Source | str, scraped_at: datetime | None = None
) -> list[CanonicalJob]:
    scraped_at = scraped_at or datetime.now(timezone.utc)
    jobs = [job for job in (normalize(r, source, scraped_at) for r in raws) if job is not None]
    unique = deduplicate_jobs(jobs)
    if len(unique) < len(jobs):
        log.debug("Dropped %d duplicate listings from %s batch", len(jobs) - len(unique), source)
    return unique
