"""
FileStore — the ordered, immutable collection of FileRecords for one run.

Every mutating operation returns a new store; views are computed on each call
and never cached.
"""

from typing import Callable, Iterable, Iterator, Optional

from dataloader.models import FileRecord


class FileStore:
    __slots__ = ("_records", "_index")

    def __init__(self, records: Iterable[FileRecord] = ()):
        records = tuple(records)
        index: dict[str, int] = {}
        for pos, record in enumerate(records):
            if record.id in index:
                raise ValueError(f"Duplicate file id in store: {record.id}")
            index[record.id] = pos
        self._records = records
        self._index = index

    # ── bulk operations ──────────────────────────────────────────────────────

    def replace(self, records: Iterable[FileRecord]) -> "FileStore":
        """Return a store holding *records* in their given order."""
        return FileStore(records)

    def update(
        self,
        transform: Callable[[FileRecord], FileRecord],
        ids: Optional[Iterable[str]] = None,
    ) -> "FileStore":
        """
        Apply *transform* to every record, or only to those whose id is in
        *ids*. Untouched records are carried over as the same objects.
        """
        scope = None if ids is None else set(ids)
        return FileStore(
            transform(r) if scope is None or r.id in scope else r
            for r in self._records
        )

    # ── views ────────────────────────────────────────────────────────────────

    def get(self, file_id: str) -> Optional[FileRecord]:
        pos = self._index.get(file_id)
        return self._records[pos] if pos is not None else None

    def by_name(self, name: str) -> list[FileRecord]:
        return [r for r in self._records if r.name == name]

    def filter(self, predicate: Callable[[FileRecord], bool]) -> list[FileRecord]:
        return [r for r in self._records if predicate(r)]

    def selected(self) -> list[FileRecord]:
        return self.filter(lambda r: r.selected)

    def ready_for_ingest(self) -> list[FileRecord]:
        """Selected records that finished processing."""
        return self.filter(lambda r: r.selected and r.processed)

    def with_status(self, status: Optional[str], selected_only: bool = False) -> list[FileRecord]:
        return self.filter(
            lambda r: r.ingestion_status == status and (r.selected or not selected_only)
        )

    @property
    def ids(self) -> list[str]:
        return [r.id for r in self._records]

    # ── container protocol ───────────────────────────────────────────────────

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileStore):
            return NotImplemented
        return self._records == other._records

    __hash__ = None

    def __repr__(self) -> str:
        return f"FileStore({len(self._records)} records)"
