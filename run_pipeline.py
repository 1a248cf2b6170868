#!/usr/bin/env python3
"""
CLI pipeline runner — takes a folder through upload, analysis, curation and
ingestion, retrying failed files, then writes the JSON report.

Usage:
    python run_pipeline.py --dir ./data
    python run_pipeline.py --dir ./data --exclude-classification Unstructured --max-retries 3
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dataloader import config
from dataloader.client import BatchClient, check_service
from dataloader.controller import AmbiguousNameError, PipelineController
from dataloader.gate import Stage
from dataloader.models import CLASSIFICATIONS
from dataloader.report import export_json
from dataloader.retry import failed_subset
from dataloader.selection import format_size

logger = logging.getLogger("run_pipeline")


# ── Stage helpers ────────────────────────────────────────────────────────────

async def _run_with_retries(ctl: PipelineController, stage: Stage, first, max_retries: int) -> None:
    """Run a stage's batch, then retry its failed subset up to *max_retries* times."""
    run = await first()
    if not run.ok:
        logger.error("  [%s] batch failed: %s", stage.name, run.error)
    attempt = 0
    while attempt < max_retries and _has_failures(ctl, stage):
        attempt += 1
        logger.info("  [%s] retry %d/%d", stage.name, attempt, max_retries)
        run = await ctl.retry(stage)
        if not run.ok:
            logger.error("  [%s] retry failed: %s", stage.name, run.error)


def _has_failures(ctl: PipelineController, stage: Stage) -> bool:
    return bool(failed_subset(stage, ctl.store))


def _advance(ctl: PipelineController) -> bool:
    if ctl.advance():
        return True
    logger.error("Cannot leave %s: %s", ctl.stage.title, ctl.blocking_reason())
    return False


async def run_pipeline(
    ctl: PipelineController,
    directory: str,
    exclude: list[str],
    max_retries: int,
) -> bool:
    """Drive *ctl* from selection to summary. Returns False if it stopped early."""
    ctl.select_directory(directory)
    logger.info("Found %d file(s) in %s", len(ctl.store), directory)
    for r in ctl.store:
        logger.info("    %s (%s, %s)", r.path, r.type, format_size(r.size))
    if not _advance(ctl):
        return False

    logger.info("[UPLOAD] Uploading %d file(s)...", len(ctl.store.selected()))
    try:
        await _run_with_retries(ctl, Stage.UPLOAD, ctl.upload, max_retries)
    except AmbiguousNameError as e:
        logger.error("[UPLOAD] %s", e)
        return False
    if not _advance(ctl):
        return False

    logger.info("[PROCESS] Analysing %d file(s)...", len(ctl.store.selected()))
    await _run_with_retries(ctl, Stage.PROCESSING, ctl.process, max_retries)
    for r in ctl.store.selected():
        logger.info("    %-40s %s", r.name, r.classification or f"error: {r.error}")
    if not _advance(ctl):
        return False

    for cls in exclude:
        dropped = ctl.deselect_classification(cls)
        if dropped:
            logger.info("[CURATE] Deselected %d %s file(s)", len(dropped), cls)
    if not _advance(ctl):
        return False

    logger.info("[INGEST] Ingesting %d file(s)...", len(ctl.store.ready_for_ingest()))
    await _run_with_retries(ctl, Stage.INGESTION, ctl.ingest, max_retries)
    for r in ctl.store.ready_for_ingest():
        if r.ingestion_status == "failed":
            logger.warning("    %-40s FAILED: %s", r.name, r.error)
        else:
            logger.info("    %-40s %s", r.name, r.ingestion_status)
    return _advance(ctl)


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the data loader pipeline over a folder")
    parser.add_argument("--dir", required=True, help="Folder containing the files to load")
    parser.add_argument("--api-url", default=config.API_URL, help="Base URL of the pipeline services")
    parser.add_argument(
        "--exclude-classification", action="append", default=[], choices=CLASSIFICATIONS,
        help="Deselect files with this classification before ingestion (repeatable)",
    )
    parser.add_argument(
        "--max-retries", type=int, default=config.MAX_RETRIES,
        help=f"Retries per stage for failed files (default {config.MAX_RETRIES})",
    )
    parser.add_argument("--report", default=None, help="Report path (default: REPORT_DIR/data-loader-report-<date>.json)")
    parser.add_argument(
        "--skip-checks", action="store_true",
        help="Skip the service connectivity check",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if not os.path.isdir(args.dir):
        logger.error("Not a directory: %s", args.dir)
        return 1

    if not args.skip_checks:
        logger.info("[CHECK] Pipeline services at %s ...", args.api_url)
        if not asyncio.run(check_service(args.api_url)):
            logger.error("[CHECK] Services unreachable. Use --skip-checks to bypass.")
            return 1

    ctl = PipelineController(client=BatchClient(base_url=args.api_url))
    finished = asyncio.run(
        run_pipeline(ctl, args.dir, args.exclude_classification, args.max_retries)
    )

    report = ctl.report()
    path = export_json(report, args.report)

    s = report.summary
    logger.info("=" * 60)
    logger.info("INGEST SUMMARY")
    logger.info(f"  Processed:  {s.total_files}")
    logger.info(f"  Selected:   {s.selected_files}")
    logger.info(f"  Succeeded:  {s.successful_ingestions}")
    logger.info(f"  Failed:     {s.failed_ingestions}")
    logger.info(f"  Report:     {path}")
    logger.info("=" * 60)

    if not finished and ctl.last_error:
        logger.error("Stopped at %s: %s", ctl.stage.title, ctl.last_error)
    return 0 if s.successful_ingestions > 0 else 1


if __name__ == "__main__":
    sys.exit(main())
