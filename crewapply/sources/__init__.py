from pathlib import Path

from .base import AdapterState, SiteAdapter, SiteRules
from .yacrew import YaCrewAdapter
from .yotspot import YotspotAdapter

from crewapply.browser import BrowserSession
from crewapply.config import DATA_DIR, RunConfig
from crewapply.log import get_logger
from crewapply.proxy import ProxyRotator

log = get_logger(__name__)

__all__ = [
    "AdapterState", "SiteAdapter", "SiteRules",
    "YotspotAdapter", "YaCrewAdapter", "ADAPTERS", "get_adapters",
]

ADAPTERS: dict[str, type[SiteAdapter]] = {
    "yotspot": YotspotAdapter,
    "yacrew": YaCrewAdapter,
}


def get_adapters(
    config: RunConfig,
    rotator: ProxyRotator | None = None,
    *,
    session_factory=BrowserSession,
    output_dir: Path = DATA_DIR,
) -> list[SiteAdapter]:
    """One adapter per enabled site, in configuration order."""
    adapters: list[SiteAdapter] = []
    for site in config.enabled_sites:
        cls = ADAPTERS.get(site.name)
        if cls is None:
            log.warning("No adapter for site %r, skipping", site.name)
            continue
        adapters.append(cls(
            site,
            config.scraping,
            config.rate_limit,
            rotator=rotator if config.proxy.enabled else None,
            session_factory=session_factory,
            output_dir=output_dir,
        ))
        log.info("Registered source: %s", site.name)
    return adapters
