from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

# Keep test runs from writing logs/crewapply_*.log in the project tree.
os.environ.setdefault("CREWAPPLY_NO_LOG_FILE", "1")

from crewapply.models import ApplicantProfile  # noqa: E402
from crewapply.normalizer import normalize  # noqa: E402


SCRAPED_AT = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scraped_at() -> datetime:
    return SCRAPED_AT


@pytest.fixture
def profile() -> ApplicantProfile:
    return ApplicantProfile(
        first_name="Alex",
        last_name="Morgan",
        email="alex@example.com",
        phone="+33 6 12 34 56 78",
        nationality="British",
        current_position="Lead Deckhand",
        years_experience="4",
        certifications=("STCW", "ENG1"),
        languages=("English", "French"),
        available_from="July",
    )


@pytest.fixture
def make_job():
    def _make(title: str = "Deckhand on M/Y Aurora", url: str = "https://www.yotspot.com/jobs/1", **raw):
        source = raw.pop("source", "yotspot")
        job = normalize({"title": title, "url": url, **raw}, source, SCRAPED_AT)
        assert job is not None
        return job
    return _make
