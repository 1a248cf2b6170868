"""
Pipeline controller — sole owner of the stage index, the FileStore snapshot
and the database configuration for one run.

All record changes go through the named operations below; a batch swaps in a
whole new store once its response has been reconciled.
"""

import logging
from typing import Iterable, Optional

from dataloader.client import BatchClient
from dataloader.gate import Stage, blocking_reason, can_advance
from dataloader.models import DatabaseConfig
from dataloader.reconciler import reset_processing, reset_upload
from dataloader.report import Report, build_report
from dataloader.retry import BatchRun, RetryCoordinator, run_batch
from dataloader.selection import duplicate_names, records_from_directory, records_from_paths
from dataloader.store import FileStore

logger = logging.getLogger(__name__)


class OperationInProgress(RuntimeError):
    """A batch is already in flight; the new request is rejected, not queued."""


class AmbiguousNameError(ValueError):
    """Selected files share a name, so remote outcomes could not be matched."""


class StageMismatch(RuntimeError):
    """A batch operation was triggered outside the stage it belongs to."""


class PipelineController:
    def __init__(
        self,
        client: Optional[BatchClient] = None,
        db_config: Optional[DatabaseConfig] = None,
    ):
        self.client = client or BatchClient()
        self.retries = RetryCoordinator(self.client)
        self.db_config = db_config or DatabaseConfig.from_env()
        self.stage = Stage.SELECTION
        self.store = FileStore()
        self.last_error: Optional[str] = None
        self._in_flight: set[Stage] = set()

    # ── state ────────────────────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return bool(self._in_flight)

    def can_advance(self) -> bool:
        return can_advance(self.stage, self.store)

    def blocking_reason(self) -> Optional[str]:
        return blocking_reason(self.stage, self.store)

    def _ensure_idle(self) -> None:
        if self._in_flight:
            stages = ", ".join(s.name.lower() for s in sorted(self._in_flight))
            raise OperationInProgress(f"A batch is already running ({stages})")

    # ── stage transitions ────────────────────────────────────────────────────

    def advance(self) -> bool:
        """Move to the next stage if the gate allows it."""
        self._ensure_idle()
        if not self.can_advance():
            logger.info("Cannot leave %s: %s", self.stage.name.lower(), self.blocking_reason())
            return False
        self.stage = Stage(self.stage + 1)
        logger.info("Advanced to stage %d (%s)", self.stage, self.stage.title)
        return True

    def retreat(self) -> bool:
        """Go back one stage, resetting the flags owned by the stage returned to."""
        self._ensure_idle()
        if self.stage == Stage.SELECTION:
            return False
        self.stage = Stage(self.stage - 1)
        if self.stage == Stage.SELECTION:
            self.store = reset_upload(self.store)
        self.last_error = None
        logger.info("Returned to stage %d (%s)", self.stage, self.stage.title)
        return True

    # ── selection & curation ─────────────────────────────────────────────────

    def select_files(self, paths: Iterable[str], root: Optional[str] = None) -> FileStore:
        """Replace the run's files with a fresh selection and restart at stage 1."""
        self._ensure_idle()
        self.store = self.store.replace(records_from_paths(paths, root=root))
        self.stage = Stage.SELECTION
        self.last_error = None
        logger.info("Selected %d file(s)", len(self.store))
        return self.store

    def select_directory(self, directory: str, extensions: Optional[Iterable[str]] = None) -> FileStore:
        self._ensure_idle()
        self.store = self.store.replace(records_from_directory(directory, extensions))
        self.stage = Stage.SELECTION
        self.last_error = None
        logger.info("Selected %d file(s) from %s", len(self.store), directory)
        return self.store

    def clear(self) -> None:
        self._ensure_idle()
        self.store = FileStore()
        self.stage = Stage.SELECTION
        self.last_error = None

    def set_selected(self, ids: Iterable[str], selected: bool) -> FileStore:
        self._ensure_idle()
        ids = list(ids)
        unknown = [i for i in ids if i not in self.store]
        if unknown:
            raise KeyError(f"Unknown file id(s): {', '.join(unknown)}")
        self.store = self.store.update(lambda r: r.model_copy(update={"selected": selected}), ids=ids)
        return self.store

    def select_all(self, selected: bool = True) -> FileStore:
        return self.set_selected(self.store.ids, selected)

    def deselect_classification(self, classification: str) -> list[str]:
        """Curation helper: deselect every file with *classification*."""
        ids = [r.id for r in self.store if r.selected and r.classification == classification]
        if ids:
            self.set_selected(ids, False)
        return ids

    def set_database_config(self, db_config: DatabaseConfig) -> None:
        self._ensure_idle()
        self.db_config = db_config

    # ── batch operations ─────────────────────────────────────────────────────

    async def upload(self) -> BatchRun:
        """Upload selected files that are not on the server yet."""
        self._ensure_ready(Stage.UPLOAD)
        pending = self.store.filter(lambda r: r.selected and not r.uploaded)
        return await self._run(Stage.UPLOAD, pending)

    async def process(self) -> BatchRun:
        """(Re)run analysis on every selected file."""
        self._ensure_ready(Stage.PROCESSING)
        return await self._run(Stage.PROCESSING, self.store.selected())

    def reset_processing(self) -> FileStore:
        self._ensure_ready(Stage.PROCESSING)
        self.store = reset_processing(self.store)
        self.last_error = None
        return self.store

    async def ingest(self) -> BatchRun:
        """Ingest every selected, processed file into the configured targets."""
        self._ensure_ready(Stage.INGESTION)
        return await self._run(Stage.INGESTION, self.store.ready_for_ingest())

    async def retry(self, stage: Optional[Stage] = None) -> BatchRun:
        """Resubmit the failed subset of *stage*, which must be the current stage."""
        stage = Stage(stage) if stage is not None else self.stage
        self._ensure_ready(stage)
        return await self._guarded(stage, self.retries.retry(stage, self.store, self.db_config))

    def _ensure_ready(self, stage: Stage) -> None:
        """Reject a batch for *stage* unless the run is idle and sitting at it."""
        self._ensure_idle()
        if stage != self.stage:
            raise StageMismatch(
                f"Cannot run a {stage.name.lower()} batch during {self.stage.name.lower()}"
            )
        if stage == Stage.UPLOAD:
            dupes = duplicate_names(self.store.selected())
            if dupes:
                raise AmbiguousNameError(
                    f"Selected files share a name: {', '.join(dupes)}. Deselect all but one."
                )

    async def _run(self, stage: Stage, records) -> BatchRun:
        return await self._guarded(
            stage, run_batch(self.client, stage, self.store, list(records), self.db_config)
        )

    async def _guarded(self, stage: Stage, batch) -> BatchRun:
        # Callers check readiness synchronously just before this, with no await
        # in between, so no other trigger can slip in
        self._in_flight.add(stage)
        try:
            run = await batch
        finally:
            self._in_flight.discard(stage)
        self.store = run.store
        self.last_error = run.error
        return run

    # ── report ───────────────────────────────────────────────────────────────

    def report(self) -> Report:
        return build_report(self.store, self.db_config)
