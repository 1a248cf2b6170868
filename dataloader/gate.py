"""
Stage gate — decides whether the pipeline may leave its current stage.

Predicates are pure functions of the FileStore; nothing here mutates records.
"""

from enum import IntEnum
from typing import Callable

from dataloader.store import FileStore


class Stage(IntEnum):
    SELECTION = 1
    UPLOAD = 2
    PROCESSING = 3
    CURATION = 4
    INGESTION = 5
    SUMMARY = 6

    @property
    def title(self) -> str:
        return _TITLES[self]


_TITLES = {
    Stage.SELECTION: "Folder Selection",
    Stage.UPLOAD: "Upload Files",
    Stage.PROCESSING: "File Processing",
    Stage.CURATION: "File Selection",
    Stage.INGESTION: "Ingestion",
    Stage.SUMMARY: "Summary",
}


def _any_selected(store: FileStore) -> bool:
    return any(r.selected for r in store)


def _all_selected_uploaded(store: FileStore) -> bool:
    return all(r.uploaded for r in store.selected())


def _all_selected_processed(store: FileStore) -> bool:
    return all(r.processed for r in store.selected())


def _any_ingested(store: FileStore) -> bool:
    return any(r.ingestion_status == "success" for r in store.selected())


_PREDICATES: dict[Stage, Callable[[FileStore], bool]] = {
    Stage.SELECTION: _any_selected,
    Stage.UPLOAD: _all_selected_uploaded,
    Stage.PROCESSING: _all_selected_processed,
    Stage.CURATION: _any_selected,
    Stage.INGESTION: _any_ingested,
}


def can_advance(stage: Stage, store: FileStore) -> bool:
    """True if the stage's exit predicate holds. The last stage never advances."""
    predicate = _PREDICATES.get(Stage(stage))
    return predicate(store) if predicate else False


def blocking_reason(stage: Stage, store: FileStore) -> str | None:
    """Human-readable explanation of why :func:`can_advance` is False."""
    if can_advance(stage, store):
        return None
    stage = Stage(stage)
    if stage in (Stage.SELECTION, Stage.CURATION):
        return "No files are selected."
    if stage == Stage.UPLOAD:
        n = sum(1 for r in store.selected() if not r.uploaded)
        return f"{n} selected file(s) not uploaded yet."
    if stage == Stage.PROCESSING:
        n = sum(1 for r in store.selected() if not r.processed)
        return f"{n} selected file(s) not processed yet."
    if stage == Stage.INGESTION:
        return "No selected file has been ingested successfully."
    return "Summary is the last stage."
