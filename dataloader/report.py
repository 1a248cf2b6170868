"""
Run report — aggregate counts plus per-file results, exportable as JSON.

Secrets in the database configuration are masked by ``SecretStr`` when the
report is serialised.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from dataloader import config
from dataloader.models import (
    Classification,
    DatabaseConfig,
    IngestionDetail,
    IngestionStatus,
    QualityMetrics,
    WireModel,
)
from dataloader.store import FileStore

logger = logging.getLogger(__name__)


class ReportSummary(WireModel):
    total_files: int = 0
    selected_files: int = 0
    successful_ingestions: int = 0
    failed_ingestions: int = 0
    pending_ingestions: int = 0
    structured_files: int = 0
    semi_structured_files: int = 0
    unstructured_files: int = 0


class FileResult(WireModel):
    name: str
    classification: Optional[Classification] = None
    quality_metrics: Optional[QualityMetrics] = None
    ingestion_status: Optional[IngestionStatus] = None
    ingestion_details: list[IngestionDetail] = Field(default_factory=list)
    error: Optional[str] = None


class Report(WireModel):
    summary: ReportSummary
    database_config: DatabaseConfig
    files: list[FileResult] = Field(default_factory=list)
    timestamp: str = ""


def build_report(store: FileStore, db_config: DatabaseConfig) -> Report:
    """Snapshot the run: totals over processed files, details for selected ones."""
    processed = store.filter(lambda r: r.processed)
    selected = store.ready_for_ingest()
    succeeded = [r for r in selected if r.ingestion_status == "success"]

    def _count(status: str) -> int:
        return sum(1 for r in selected if r.ingestion_status == status)

    def _classified(cls: str) -> int:
        return sum(1 for r in succeeded if r.classification == cls)

    summary = ReportSummary(
        total_files=len(processed),
        selected_files=len(selected),
        successful_ingestions=len(succeeded),
        failed_ingestions=_count("failed"),
        pending_ingestions=_count("pending"),
        structured_files=_classified("Structured"),
        semi_structured_files=_classified("Semi-Structured"),
        unstructured_files=_classified("Unstructured"),
    )
    files = [
        FileResult(
            name=r.name,
            classification=r.classification,
            quality_metrics=r.quality_metrics,
            ingestion_status=r.ingestion_status,
            ingestion_details=r.ingestion_details or [],
            error=r.error,
        )
        for r in selected
    ]
    return Report(
        summary=summary,
        database_config=db_config,
        files=files,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def default_report_name(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"data-loader-report-{when.strftime('%Y-%m-%d')}.json"


def export_json(report: Report, path: Optional[str] = None) -> str:
    """Write *report* as indented JSON; returns the path written."""
    if path is None:
        path = os.path.join(config.REPORT_DIR, default_report_name())
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(report.model_dump_json(by_alias=True, indent=2))
    logger.info("Report written to %s", path)
    return path
