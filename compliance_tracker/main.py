"""
Compliance Requirements Tracker — Main Entry Point

Summarize a CSV file of requirements (CLI):
    python -m compliance_tracker.main requirements.csv

Run as an API server (for the dashboard frontend):
    python -m compliance_tracker.main --serve
    # or: uvicorn compliance_tracker.api:app --reload --port 8000

Or import and run programmatically:
    from compliance_tracker.main import run
    store = run("path/to/requirements.csv")
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from compliance_tracker.config import get_settings
from compliance_tracker.models.schemas import ImportReport
from compliance_tracker.persistence.slice_repository import InMemorySliceRepository
from compliance_tracker.store.store import DashboardStore
from compliance_tracker.utils.logger import setup_logging


def run(file_path: str = "") -> DashboardStore:
    """Import a CSV into a throwaway in-memory store and log a summary."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("  COMPLIANCE REQUIREMENTS TRACKER")
    logger.info(f"  Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    store = DashboardStore(InMemorySliceRepository(), settings=settings)
    report = ImportReport()
    if file_path:
        text = Path(file_path).read_text(encoding="utf-8-sig")
        report = store.import_csv(text)

    _print_summary(store, report)
    return store


def _print_summary(store: DashboardStore, report: ImportReport) -> None:
    """Print a human-readable summary of the imported collection."""
    logger = logging.getLogger(__name__)
    aggregates = store.view().aggregates
    overall = aggregates.overall

    logger.info("")
    logger.info("-" * 60)
    logger.info("  IMPORT SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Admitted:       {report.admitted_count}")
    logger.info(f"  Rejected:       {len(report.errors)}")
    for error in report.errors:
        logger.info(f"    row {error.row}: {error.reason}")

    logger.info(f"  Requirements:   {overall.total_requirements}")
    logger.info(f"  Avg value:      {overall.avg_business_value}")
    logger.info(f"  Avg maturity:   {overall.avg_maturity_score}")
    logger.info(f"  Total cost:     ${overall.total_cost:,.2f}")
    logger.info(f"  Opportunities:  {aggregates.improvement_opportunities}")
    logger.info("-" * 60)

    logger.info("  Status distribution:")
    for bucket in aggregates.status_distribution:
        logger.info(f"    {bucket.status.value:<12} {bucket.count:>5}  {bucket.percentage:>5}%")
    logger.info("  Maturity distribution:")
    for bucket in aggregates.maturity_distribution:
        logger.info(f"    {bucket.level.value:<12} {bucket.count:>5}  {bucket.percentage:>5}%")
    logger.info("")


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the FastAPI server (for frontend communication)."""
    import uvicorn

    setup_logging(get_settings().log_level)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run("compliance_tracker.api:app", host=host, port=port, reload=True)


def cli(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    if "--serve" in args:
        serve()
    else:
        run(args[0] if args else "")


if __name__ == "__main__":
    cli()
