"""
Result reconciler — merges batch outcomes back into a FileStore.

    FileStore + outcome list (+ batch scope)
      → match outcomes to records (echoed id, else exact name)
      → apply per-record success / failure fields
      → new FileStore snapshot

Every function here is pure: it returns a new store and leaves its input
alone, so applying the same outcomes twice gives the same store as applying
them once. Records without a matching outcome are returned unchanged.
"""

import logging
from typing import Any, Callable, Iterable, Optional, Sequence

from pydantic import TypeAdapter

from dataloader.models import (
    AnalysisOutcome,
    FileRecord,
    IngestionDetail,
    IngestOutcome,
    UploadOutcome,
)
from dataloader.store import FileStore

logger = logging.getLogger(__name__)

BATCH_FAILURE_MESSAGE = "API connection failed"
INGEST_FAILURE_MESSAGE = "Ingestion failed"
ANALYSIS_FAILURE_MESSAGE = "Analysis failed"

_DETAILS_ADAPTER = TypeAdapter(list[IngestionDetail])

_ANALYSIS_RESET = {
    "processed": False,
    "quality_metrics": None,
    "classification": None,
    "analysis": None,
    "error": None,
}


# ── detail shape normalisation ────────────────────────────────────────────────

def normalize_details(raw: Any) -> list:
    """
    Turn an ingestion detail payload into an ordered list of detail entries.

    Accepted shapes: ``None`` (→ ``[]``), a single tagged object (has a
    ``type`` key), a list of tagged objects, or a mapping of name → tagged
    object (values taken in mapping order).
    """
    if raw is None:
        return []
    if isinstance(raw, dict):
        entries = [raw] if "type" in raw else list(raw.values())
    elif isinstance(raw, (list, tuple)):
        entries = list(raw)
    else:
        raise ValueError(f"Unsupported ingestion detail payload: {type(raw).__name__}")
    return _DETAILS_ADAPTER.validate_python(entries)


# ── matching ──────────────────────────────────────────────────────────────────

def match_outcomes(
    store: FileStore,
    outcomes: Sequence,
    scope: Optional[Iterable[str]] = None,
) -> dict[str, Any]:
    """
    Map record id → outcome for every outcome that identifies exactly one
    in-scope record. Later outcomes for the same record win.
    """
    allowed = None if scope is None else set(scope)
    candidates = [r for r in store if allowed is None or r.id in allowed]
    by_id = {r.id: r for r in candidates}
    by_name: dict[str, list[FileRecord]] = {}
    for r in candidates:
        by_name.setdefault(r.name, []).append(r)

    matched: dict[str, Any] = {}
    for outcome in outcomes:
        if outcome.file_id and outcome.file_id in by_id:
            matched[outcome.file_id] = outcome
            continue
        hits = by_name.get(outcome.file_name, [])
        if len(hits) == 1:
            matched[hits[0].id] = outcome
        elif len(hits) > 1:
            logger.warning(
                "Outcome for %r matches %d files; skipped as ambiguous",
                outcome.file_name, len(hits),
            )
        else:
            logger.debug("Outcome for %r matches no file in this batch", outcome.file_name)
    return matched


def _apply(
    store: FileStore,
    outcomes: Sequence,
    scope: Optional[Iterable[str]],
    merge: Callable[[FileRecord, Any], FileRecord],
) -> FileStore:
    matched = match_outcomes(store, outcomes, scope)
    if not matched:
        return store
    return store.update(lambda r: merge(r, matched[r.id]), ids=matched.keys())


# ── per-operation reconciliation ─────────────────────────────────────────────

def _merge_upload(record: FileRecord, outcome: UploadOutcome) -> FileRecord:
    return record.model_copy(update={"uploaded": True, "path": outcome.path, "error": None})


def _merge_analysis(record: FileRecord, outcome: AnalysisOutcome) -> FileRecord:
    if outcome.error or outcome.quality_metrics is None or outcome.classification is None:
        return record.model_copy(update={
            **_ANALYSIS_RESET,
            "error": outcome.error or ANALYSIS_FAILURE_MESSAGE,
        })
    return record.model_copy(update={
        "processed": True,
        "quality_metrics": outcome.quality_metrics,
        "classification": outcome.classification,
        "analysis": outcome.analysis,
        "error": None,
    })


def _merge_ingest(record: FileRecord, outcome: IngestOutcome) -> FileRecord:
    if outcome.status == "success":
        error = None
    else:
        error = outcome.error or INGEST_FAILURE_MESSAGE
    try:
        details = normalize_details(outcome.ingestion_details)
    except ValueError as e:
        logger.warning("Unreadable ingestion details for %r: %s", record.name, e)
        details = []
    return record.model_copy(update={
        "ingestion_status": outcome.status,
        "ingestion_details": details,
        "error": error,
    })


def reconcile_upload(
    store: FileStore,
    outcomes: Sequence[UploadOutcome],
    scope: Optional[Iterable[str]] = None,
) -> FileStore:
    """Mark matched records uploaded and adopt the server-assigned path."""
    return _apply(store, outcomes, scope, _merge_upload)


def reconcile_analysis(
    store: FileStore,
    outcomes: Sequence[AnalysisOutcome],
    scope: Optional[Iterable[str]] = None,
) -> FileStore:
    """Fill quality metrics, classification and analysis for matched records."""
    return _apply(store, outcomes, scope, _merge_analysis)


def reconcile_ingest(
    store: FileStore,
    outcomes: Sequence[IngestOutcome],
    scope: Optional[Iterable[str]] = None,
) -> FileStore:
    """Set ingestion status, normalised details and error for matched records."""
    return _apply(store, outcomes, scope, _merge_ingest)


# ── named state transitions ──────────────────────────────────────────────────

def mark_pending(store: FileStore, ids: Iterable[str]) -> FileStore:
    """Start of an ingest batch: clear previous results for *ids*."""
    return store.update(
        lambda r: r.model_copy(update={
            "ingestion_status": "pending",
            "ingestion_details": None,
            "error": None,
        }),
        ids=ids,
    )


def release_pending(store: FileStore, before: FileStore, ids: Iterable[str]) -> FileStore:
    """
    End of an ingest batch: records in *ids* still ``pending`` got no outcome,
    so they go back to their state in *before*.
    """
    unanswered = [i for i in ids if (r := store.get(i)) is not None and r.ingestion_status == "pending"]
    if not unanswered:
        return store
    return store.update(lambda r: before.get(r.id) or r, ids=unanswered)


def mark_batch_failed(
    store: FileStore,
    ids: Iterable[str],
    operation: str,
    message: str = BATCH_FAILURE_MESSAGE,
) -> FileStore:
    """
    Batch-fatal failure: every record in *ids* gets *message*.

    Upload and analysis failures leave the flow flags as they were; an ingest
    failure also sets the status to ``failed``.
    """
    update: dict[str, Any] = {"error": message}
    if operation == "ingest":
        update["ingestion_status"] = "failed"
    return store.update(lambda r: r.model_copy(update=update), ids=ids)


def reset_processing(store: FileStore, ids: Optional[Iterable[str]] = None) -> FileStore:
    """Clear ``processed``, every analysis field and any stale error together."""
    return store.update(lambda r: r.model_copy(update=dict(_ANALYSIS_RESET)), ids=ids)


def reset_upload(store: FileStore) -> FileStore:
    """Explicit return to selection: forget upload state on every record."""
    return store.update(
        lambda r: r.model_copy(update={"uploaded": False, "path": r.relative_path})
    )
