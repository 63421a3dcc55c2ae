#!/usr/bin/env python3
"""Entry point: scrape crew job boards and optionally auto-apply."""
from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from crewapply.config import ensure_dirs, load_profile, load_run_config, with_sites_disabled
from crewapply.log import configure_logging, get_logger

log = get_logger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Scrape yacht crew jobs and auto-apply.")
    p.add_argument("--config", help="run config YAML (default: config/run.yaml)")
    p.add_argument("--profile", help="applicant profile YAML/JSON (default: config/profile.yaml)")
    p.add_argument("--no-yotspot", action="store_true", help="skip Yotspot")
    p.add_argument("--no-yacrew", action="store_true", help="skip YaCrew")
    p.add_argument("--apply", action="store_true", help="submit applications for matching jobs")
    p.add_argument("--max-applications", type=int, help="cap on applications this run")
    p.add_argument("--timeout", type=float, help="run-level scrape timeout in seconds")
    p.add_argument("--test-proxies", action="store_true", help="probe every proxy and exit")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging on the console")
    return p.parse_args(argv)


def _test_proxies(config) -> int:
    from crewapply.proxy import ProxyRotator

    rotator = ProxyRotator(config.proxy.routes, probe_timeout=config.proxy.probe_timeout)
    if not rotator.routes:
        log.error("No proxies configured (set PROXY_LIST)")
        return 1
    working = asyncio.run(rotator.test_all(config.proxy.test_url))
    for route, health in rotator.health.items():
        if health.reachable:
            log.info("  ✓ %s  %.2fs  ip=%s", route, health.latency or 0.0, health.ip)
        else:
            log.warning("  ✗ %s  %s", route, health.error)
    return 0 if working else 1


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        configure_logging("DEBUG")
    config = load_run_config(args.config)

    if args.test_proxies:
        return _test_proxies(config)

    disabled = {name for name, off in (("yotspot", args.no_yotspot), ("yacrew", args.no_yacrew)) if off}
    if disabled:
        config = with_sites_disabled(config, disabled)
    if args.apply:
        config = replace(config, auto_apply=True)
    if args.max_applications is not None:
        config = replace(config, max_applications=args.max_applications)
    if args.timeout is not None:
        config = replace(config, scraping=replace(config.scraping, run_timeout=args.timeout))

    profile = None
    if config.auto_apply:
        try:
            profile = load_profile(args.profile)
        except (OSError, ValueError) as e:
            log.error("Could not load applicant profile: %s", e)
            log.error("Copy config/profile.example.yaml to config/profile.yaml and fill it in.")
            return 1

    ensure_dirs()
    from crewapply.agent import run_async

    result = asyncio.run(run_async(config, profile))
    log.info("Run complete.")
    log.info("  Jobs scraped: %d", len(result.jobs))
    log.info("  Candidates after filtering: %d", len(result.candidates))
    if result.summary:
        log.info(
            "  Applications: %d successful / %d attempted",
            result.summary.successful, result.summary.total,
        )
    if result.failed_sources:
        log.info("  Failed sources: %s", ", ".join(result.failed_sources))
    if result.report_path:
        log.info("  Report: %s", result.report_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
