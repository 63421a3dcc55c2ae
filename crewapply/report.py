"""Build and write the per-run report (JSON plus a markdown summary)."""
from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from crewapply.batch import BatchSummary
from crewapply.config import REPORTS_DIR
from crewapply.log import get_logger
from crewapply.models import ApplyOutcome, CanonicalJob

log = get_logger(__name__)


@dataclass(frozen=True)
class RunReport:
    generated_at: datetime
    total_jobs: int
    candidates: int
    by_source: Mapping[str, int]
    by_role: Mapping[str, int]
    by_region: Mapping[str, int]
    attempted: int = 0
    successful: int = 0
    failed: int = 0
    confirmed: int = 0
    inferred: int = 0
    ingest: Mapping[str, int] = field(default_factory=dict)
    failed_sources: tuple[str, ...] = ()
    timed_out_sources: tuple[str, ...] = ()
    results: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "total_jobs": self.total_jobs,
            "candidates": self.candidates,
            "by_source": dict(self.by_source),
            "by_role": dict(self.by_role),
            "by_region": dict(self.by_region),
            "applications": {
                "attempted": self.attempted,
                "successful": self.successful,
                "failed": self.failed,
                "confirmed": self.confirmed,
                "inferred": self.inferred,
            },
            "ingest": dict(self.ingest),
            "failed_sources": list(self.failed_sources),
            "timed_out_sources": list(self.timed_out_sources),
            "results": list(self.results),
        }


def _counts(values: Iterable[str]) -> dict[str, int]:
    return dict(Counter(values).most_common())


def build_run_report(
    jobs: list[CanonicalJob],
    *,
    sources: Iterable[str] = (),
    candidates: int = 0,
    summary: BatchSummary | None = None,
    ingest: Mapping[str, int] | None = None,
    failed_sources: Iterable[str] = (),
    timed_out_sources: Iterable[str] = (),
    generated_at: datetime | None = None,
) -> RunReport:
    # Every enabled source appears, even with zero jobs.
    by_source = {name: 0 for name in sources}
    for job in jobs:
        by_source[job.source] = by_source.get(job.source, 0) + 1

    return RunReport(
        generated_at=generated_at or datetime.now(timezone.utc),
        total_jobs=len(jobs),
        candidates=candidates,
        by_source=by_source,
        by_role=_counts(job.role for job in jobs),
        by_region=_counts(job.location.region if job.location else "Unknown" for job in jobs),
        attempted=summary.total if summary else 0,
        successful=summary.successful if summary else 0,
        failed=summary.failed if summary else 0,
        confirmed=summary.confirmed if summary else 0,
        inferred=summary.inferred if summary else 0,
        ingest=dict(ingest or {}),
        failed_sources=tuple(failed_sources),
        timed_out_sources=tuple(timed_out_sources),
        results=tuple(r.to_dict() for r in summary.results) if summary else (),
    )


def _table(title: str, counts: Mapping[str, int]) -> list[str]:
    lines = [f"## {title}", "", "| Name | Jobs |", "|------|-----:|"]
    for name, n in counts.items():
        lines.append(f"| {name} | {n} |")
    lines.append("")
    return lines


def render_markdown(report: RunReport) -> str:
    date = report.generated_at.strftime("%Y-%m-%d")
    lines: list[str] = [f"# Crew Job Run: {date}", ""]
    lines.append(
        f"**{report.total_jobs}** jobs scraped | **{report.candidates}** candidates | "
        f"**{report.successful}/{report.attempted}** applications submitted"
    )
    lines.append("")
    if report.failed_sources or report.timed_out_sources:
        for name in report.failed_sources:
            lines.append(f"- ⚠️ `{name}` failed")
        for name in report.timed_out_sources:
            lines.append(f"- ⏱️ `{name}` timed out (partial results)")
        lines.append("")

    lines += _table("By Source", report.by_source)
    lines += _table("By Role", report.by_role)
    lines += _table("By Region", report.by_region)

    if report.results:
        lines.append("## Applications")
        lines.append("")
        for r in report.results:
            outcome = r.get("outcome")
            badge = "✅" if outcome == ApplyOutcome.SUCCESS.value else (
                "❔" if outcome == ApplyOutcome.AMBIGUOUS.value else "❌"
            )
            lines.append(f"- {badge} **{r.get('job_title', '')}**: {r.get('message', '')}")
        lines.append("")

    if report.ingest:
        lines.append("## Ingest")
        lines.append("")
        lines.append(", ".join(f"{k}: {v}" for k, v in report.ingest.items()))
        lines.append("")
    return "\n".join(lines)


def write_run_report(report: RunReport, directory: Path = REPORTS_DIR) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    date = report.generated_at.strftime("%Y-%m-%d")
    path = directory / f"report-{date}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)
    (directory / f"report-{date}.md").write_text(render_markdown(report), encoding="utf-8")
    log.info("Report written → %s", path)
    return path
