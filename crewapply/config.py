"""Load run configuration, applicant profile and env overrides."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from crewapply.log import get_logger
from crewapply.models import ApplicantProfile

log = get_logger(__name__)

load_dotenv()

PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = PROJECT_ROOT / "config"
RUN_CONFIG_PATH: Path = CONFIG_DIR / "run.yaml"
PROFILE_PATH: Path = CONFIG_DIR / "profile.yaml"
REPORTS_DIR: Path = PROJECT_ROOT / "reports"
DATA_DIR: Path = PROJECT_ROOT / "data"
SCREENSHOT_DIR: Path = DATA_DIR / "screenshots"

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Credentials:
    email: str = ""
    password: str = ""

    @property
    def present(self) -> bool:
        return bool(self.email and self.password)


@dataclass(frozen=True)
class SiteSettings:
    name: str
    enabled: bool = True
    credentials: Credentials = field(default_factory=Credentials)
    max_pages: int = 5
    use_proxy: bool = True
    fetch_details: bool = False


@dataclass(frozen=True)
class ScrapeSettings:
    headless: bool = True
    timeout_ms: int = 30_000
    retries: int = 3
    page_delay: float = 2.0
    settle_ms: int = 2_000
    run_timeout: float | None = 900.0


@dataclass(frozen=True)
class RateLimitSettings:
    requests_per_minute: float = 10.0
    burst_size: int = 3
    application_delay: float = 5.0


@dataclass(frozen=True)
class ProxySettings:
    enabled: bool = False
    routes: tuple[str, ...] = ()
    test_url: str = "https://httpbin.org/ip"
    probe_timeout: float = 10.0
    test_on_start: bool = False


@dataclass(frozen=True)
class SearchFilters:
    """Query parameters handed to each site's search page."""

    role: str | None = None
    location: str | None = None
    vessel_type: str | None = None


@dataclass(frozen=True)
class JobCriteria:
    """Post-scrape filters, combined with AND."""

    roles: tuple[str, ...] = ()
    locations: tuple[str, ...] = ()
    min_salary: float | None = None
    vessel_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunConfig:
    sites: tuple[SiteSettings, ...] = (SiteSettings("yotspot"), SiteSettings("yacrew"))
    auto_apply: bool = False
    max_applications: int = 5
    custom_message: str = ""
    use_text_generation: bool = False
    search: SearchFilters = field(default_factory=SearchFilters)
    criteria: JobCriteria = field(default_factory=JobCriteria)
    scraping: ScrapeSettings = field(default_factory=ScrapeSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    proxy: ProxySettings = field(default_factory=ProxySettings)
    sink_url: str = ""
    sink_token: str = ""

    @property
    def enabled_sites(self) -> tuple[SiteSettings, ...]:
        return tuple(s for s in self.sites if s.enabled)

    def site(self, name: str) -> SiteSettings | None:
        for s in self.sites:
            if s.name == name:
                return s
        return None


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _env_bool(key: str, default: bool) -> bool:
    raw = get_env(key)
    if not raw:
        return default
    return raw.lower() in _TRUTHY


def _env_number(key: str, default: Any, cast=float) -> Any:
    raw = get_env(key)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        log.warning("Ignoring %s=%r (not a number)", key, raw)
        return default


def ensure_dirs() -> None:
    for d in (REPORTS_DIR, DATA_DIR, SCREENSHOT_DIR):
        d.mkdir(parents=True, exist_ok=True)


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"{path.name}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: expected a mapping at top level")
    return data


def _tuple(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    if isinstance(value, (list, tuple, set)):
        return tuple(str(v) for v in value)
    # A lone scalar (e.g. `certifications: 5`) is a one-item list.
    return (str(value),)


def _build_site(name: str, data: dict[str, Any]) -> SiteSettings:
    creds = data.get("credentials") or {}
    prefix = name.upper()
    return SiteSettings(
        name=name,
        enabled=bool(data.get("enabled", True)),
        credentials=Credentials(
            email=get_env(f"{prefix}_EMAIL") or str(creds.get("email", "") or ""),
            password=get_env(f"{prefix}_PASSWORD") or str(creds.get("password", "") or ""),
        ),
        max_pages=int(data.get("max_pages", 5)),
        use_proxy=bool(data.get("use_proxy", True)),
        fetch_details=bool(data.get("fetch_details", False)),
    )


def load_run_config(path: Path | str | None = None) -> RunConfig:
    """Build a RunConfig from YAML (if present) with environment overrides on top."""
    path = Path(path) if path else RUN_CONFIG_PATH
    data: dict[str, Any] = {}
    if path.exists():
        data = _read_yaml(path)
        log.debug("Loaded run config from %s", path)
    else:
        log.info("No run config at %s, using defaults", path)

    site_data = data.get("sites") or {"yotspot": {}, "yacrew": {}}
    sites = tuple(_build_site(name, entry or {}) for name, entry in site_data.items())

    scrape = data.get("scraping") or {}
    scraping = ScrapeSettings(
        headless=_env_bool("HEADLESS", bool(scrape.get("headless", True))),
        timeout_ms=_env_number("SCRAPE_TIMEOUT", int(scrape.get("timeout_ms", 30_000)), int),
        retries=_env_number("MAX_RETRIES", int(scrape.get("retries", 3)), int),
        page_delay=_env_number("RATE_LIMIT_DELAY", float(scrape.get("page_delay_ms", 2000))) / 1000,
        settle_ms=int(scrape.get("settle_ms", 2_000)),
        run_timeout=_env_number("RUN_TIMEOUT", scrape.get("run_timeout", 900.0), float),
    )

    rl = data.get("rate_limit") or {}
    rate_limit = RateLimitSettings(
        requests_per_minute=_env_number("REQUESTS_PER_MINUTE", float(rl.get("requests_per_minute", 10))),
        burst_size=_env_number("BURST_SIZE", int(rl.get("burst_size", 3)), int),
        application_delay=_env_number("APPLICATION_DELAY", float(rl.get("application_delay", 5.0))),
    )

    px = data.get("proxy") or {}
    proxy = ProxySettings(
        enabled=_env_bool("USE_PROXY_ROTATION", bool(px.get("enabled", False))),
        routes=_tuple(get_env("PROXY_LIST") or px.get("routes")),
        test_url=get_env("PROXY_TEST_URL") or px.get("test_url", "https://httpbin.org/ip"),
        probe_timeout=float(px.get("probe_timeout", 10.0)),
        test_on_start=bool(px.get("test_on_start", False)),
    )

    search = data.get("search") or {}
    crit = data.get("criteria") or {}
    min_salary = crit.get("min_salary")

    return RunConfig(
        sites=sites,
        auto_apply=_env_bool("AUTO_APPLY", bool(data.get("auto_apply", False))),
        max_applications=_env_number("MAX_APPLICATIONS", int(data.get("max_applications", 5)), int),
        custom_message=str(data.get("custom_message", "") or ""),
        use_text_generation=bool(data.get("use_text_generation", False)),
        search=SearchFilters(
            role=get_env("FILTER_POSITION") or search.get("role"),
            location=get_env("FILTER_LOCATION") or search.get("location"),
            vessel_type=search.get("vessel_type"),
        ),
        criteria=JobCriteria(
            roles=_tuple(crit.get("roles")),
            locations=_tuple(crit.get("locations")),
            min_salary=float(min_salary) if min_salary is not None else None,
            vessel_types=_tuple(crit.get("vessel_types")),
        ),
        scraping=scraping,
        rate_limit=rate_limit,
        proxy=proxy,
        sink_url=get_env("SINK_URL") or str(data.get("sink_url", "") or ""),
        sink_token=get_env("SINK_TOKEN"),
    )


def with_sites_disabled(config: RunConfig, names: set[str]) -> RunConfig:
    """Return a copy of *config* with the named sites switched off."""
    sites = tuple(replace(s, enabled=False) if s.name in names else s for s in config.sites)
    return replace(config, sites=sites)


_PROFILE_TUPLES = (
    "certifications", "languages", "skills", "certificates",
    "preferred_positions", "preferred_locations",
)


def profile_from_dict(data: dict[str, Any]) -> ApplicantProfile:
    known = set(ApplicantProfile.__dataclass_fields__)
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            log.debug("Ignoring unknown profile key %r", key)
            continue
        if key in _PROFILE_TUPLES:
            kwargs[key] = _tuple(value)
        else:
            kwargs[key] = "" if value is None else str(value)
    return ApplicantProfile(**kwargs)


def load_profile(path: Path | str | None = None) -> ApplicantProfile:
    """Read the applicant profile (YAML or JSON, both parse with safe_load)."""
    path = Path(path or get_env("PROFILE_PATH") or PROFILE_PATH)
    return profile_from_dict(_read_yaml(path))
