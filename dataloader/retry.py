"""
Batch execution and retry of failed subsets.

``run_batch`` is the single path every stage uses to send records to a remote
service and fold the answer back into the store; the retry coordinator feeds
it only the records whose last outcome was a failure.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from dataloader.client import BatchClient, BatchError, Operation
from dataloader.gate import Stage
from dataloader.models import DatabaseConfig, FileRecord
from dataloader.reconciler import (
    BATCH_FAILURE_MESSAGE,
    mark_batch_failed,
    mark_pending,
    reconcile_analysis,
    reconcile_ingest,
    reconcile_upload,
    release_pending,
    reset_processing,
)
from dataloader.store import FileStore

logger = logging.getLogger(__name__)

STAGE_OPERATIONS = {
    Stage.UPLOAD: Operation.UPLOAD,
    Stage.PROCESSING: Operation.ANALYZE,
    Stage.INGESTION: Operation.INGEST,
}


@dataclass
class BatchRun:
    """Result of one batch: the new store plus the batch-level error, if any."""

    stage: Stage
    store: FileStore
    submitted: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def operation_for(stage: Stage) -> Operation:
    try:
        return STAGE_OPERATIONS[Stage(stage)]
    except KeyError:
        raise ValueError(f"Stage {Stage(stage).name} has no batch operation") from None


async def run_batch(
    client: BatchClient,
    stage: Stage,
    store: FileStore,
    records: Sequence[FileRecord],
    db_config: Optional[DatabaseConfig] = None,
) -> BatchRun:
    """
    Submit *records* for *stage* and reconcile the outcomes into *store*.

    Processing clears the analysis fields of the batch first. Ingestion marks
    the batch pending, and any record the service did not answer for is put
    back as it was. A batch-fatal error marks every submitted record failed
    and is reported on the returned :class:`BatchRun`, never raised.
    """
    operation = operation_for(stage)
    ids = [r.id for r in records]
    before = store
    if not ids:
        logger.info("No files to submit for %s", operation.value)
        return BatchRun(stage=Stage(stage), store=store)

    if operation is Operation.ANALYZE:
        store = reset_processing(store, ids)
    elif operation is Operation.INGEST:
        if db_config is None:
            raise ValueError("Ingestion requires a database configuration")
        store = mark_pending(store, ids)

    # Manifest reflects the prepared state of each record
    batch = [store.get(i) for i in ids]

    try:
        if operation is Operation.UPLOAD:
            outcomes = await client.upload(batch)
            store = reconcile_upload(store, outcomes, scope=ids)
        elif operation is Operation.ANALYZE:
            outcomes = await client.analyze(batch)
            store = reconcile_analysis(store, outcomes, scope=ids)
        else:
            outcomes = await client.ingest(batch, db_config)
            store = reconcile_ingest(store, outcomes, scope=ids)
            store = release_pending(store, before, ids)
    except BatchError as e:
        logger.error("%s batch of %d file(s) failed: %s", operation.value, len(ids), e)
        store = mark_batch_failed(store, ids, operation.value, BATCH_FAILURE_MESSAGE)
        return BatchRun(stage=Stage(stage), store=store, submitted=ids, error=str(e))

    return BatchRun(stage=Stage(stage), store=store, submitted=ids)


# ── retry ─────────────────────────────────────────────────────────────────────

def failed_subset(stage: Stage, store: FileStore) -> list[FileRecord]:
    """
    Records eligible for resubmission at *stage*.

    Upload and processing retry every selected record that has not reached
    the stage's flag yet; ingestion retries selected records whose status is
    ``failed``.
    """
    stage = Stage(stage)
    if stage == Stage.UPLOAD:
        return store.filter(lambda r: r.selected and not r.uploaded)
    if stage == Stage.PROCESSING:
        return store.filter(lambda r: r.selected and not r.processed)
    if stage == Stage.INGESTION:
        return store.filter(lambda r: r.selected and r.ingestion_status == "failed")
    raise ValueError(f"Stage {stage.name} has nothing to retry")


class RetryCoordinator:
    def __init__(self, client: BatchClient):
        self.client = client

    async def retry(
        self,
        stage: Stage,
        store: FileStore,
        db_config: Optional[DatabaseConfig] = None,
    ) -> BatchRun:
        """Resubmit only the failed subset; an empty subset is a no-op."""
        subset = failed_subset(stage, store)
        if not subset:
            logger.info("Nothing to retry for %s", Stage(stage).name.lower())
            return BatchRun(stage=Stage(stage), store=store)
        logger.info("Retrying %d failed file(s) for %s", len(subset), Stage(stage).name.lower())
        return await run_batch(self.client, stage, store, subset, db_config)
