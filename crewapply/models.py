"""Data models for scraped jobs, applicant profiles and application outcomes."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Untyped key/value bag pulled straight off a listing page.
RawRecord = dict[str, Any]


class Source(str, Enum):
    YOTSPOT = "yotspot"
    YACREW = "yacrew"


@dataclass(frozen=True)
class VesselLength:
    value: float
    unit: str  # "m" or "ft"


@dataclass(frozen=True)
class Vessel:
    name: str | None = None
    type: str | None = None
    length: VesselLength | None = None
    flag: str | None = None


@dataclass(frozen=True)
class Location:
    raw: str
    region: str = "Unknown"
    country: str | None = None


@dataclass(frozen=True)
class Salary:
    min: float
    max: float
    currency: str = "USD"
    period: str = "month"
    raw: str = ""


@dataclass(frozen=True)
class ContractDuration:
    value: int
    unit: str


@dataclass(frozen=True)
class Contract:
    type: str = "Unknown"
    duration: ContractDuration | None = None
    start_date: datetime | None = None


@dataclass
class CanonicalJob:
    id: str
    source: str
    title: str
    role: str
    scraped_at: datetime
    description: str = ""
    company: str = ""
    contact_email: str = ""
    url: str = ""
    vessel: Vessel | None = None
    location: Location | None = None
    salary: Salary | None = None
    contract: Contract | None = None
    requirements: list[str] = field(default_factory=list)
    benefits: list[str] = field(default_factory=list)
    posted_at: datetime | None = None
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class ApplicantProfile:
    """Applicant data supplied by the account service; read-only during a run."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    country: str = ""
    nationality: str = ""
    date_of_birth: str = ""

    current_position: str = ""
    years_experience: str = ""
    certifications: tuple[str, ...] = ()
    languages: tuple[str, ...] = ()
    skills: tuple[str, ...] = ()

    cv_path: str = ""
    cover_letter_path: str = ""
    passport_path: str = ""
    certificates: tuple[str, ...] = ()

    available_from: str = ""
    preferred_positions: tuple[str, ...] = ()
    preferred_locations: tuple[str, ...] = ()
    salary_expectation: str = ""

    cover_letter_template: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ApplyOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    # Neither a success nor an error indicator was found after submitting.
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class ApplicationResult:
    job_id: str
    outcome: ApplyOutcome
    message: str
    job_title: str = ""
    url: str = ""
    dialect: str = ""
    snapshot_path: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.outcome is not ApplyOutcome.FAILURE

    def to_dict(self) -> dict[str, Any]:
        data = _jsonable(asdict(self))
        data["success"] = self.success
        return data


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
