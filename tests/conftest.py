"""
Shared fixtures: on-disk sample folders and a fake batch client that stands in
for the remote upload / analysis / ingestion services.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dataloader.client import BatchError
from dataloader.models import AnalysisOutcome, FileRecord, IngestOutcome, QualityMetrics, UploadOutcome


STRUCTURED_DETAILS = {
    "type": "structured",
    "tables": [{
        "tableName": "sales",
        "schema": [{"name": "id", "type": "INTEGER", "primary": True}, {"name": "amount", "type": "REAL"}],
        "rowsInserted": 120,
        "sqlCommands": ["CREATE TABLE sales (id INTEGER PRIMARY KEY, amount REAL)"],
    }],
}

UNSTRUCTURED_DETAILS = {
    "type": "unstructured",
    "collection": "documents",
    "chunksCreated": 14,
    "embeddingsGenerated": 14,
    "chunkingMethod": "recursive",
    "embeddingModel": "text-embedding-3-small",
}


class FakeBatchClient:
    """
    In-memory BatchClient.

    ``classifications`` maps file name → classification (default Structured),
    ``ingest_failures`` maps file name → how many ingest attempts fail before
    one succeeds, ``fatal`` names operations that fail batch-wide.
    """

    def __init__(self, classifications=None, ingest_failures=None, fatal=()):
        self.calls: list[tuple[str, list[str]]] = []
        self.classifications = dict(classifications or {})
        self.ingest_failures = dict(ingest_failures or {})
        self.fatal = set(fatal)

    def _record(self, operation, records):
        self.calls.append((operation, [r.name for r in records]))
        if operation in self.fatal:
            raise BatchError(f"{operation} request failed: connection refused")

    async def upload(self, records):
        self._record("upload", records)
        return [UploadOutcome(file_name=r.name, path=f"/srv/uploads/{r.name}") for r in records]

    async def analyze(self, records):
        self._record("analyze", records)
        return [
            AnalysisOutcome(
                file_name=r.name,
                quality_metrics=QualityMetrics(parse_accuracy=3, complexity=2),
                classification=self.classifications.get(r.name, "Structured"),
            )
            for r in records
        ]

    async def ingest(self, records, db_config):
        self._record("ingest", records)
        outcomes = []
        for r in records:
            if self.ingest_failures.get(r.name, 0) > 0:
                self.ingest_failures[r.name] -= 1
                outcomes.append(IngestOutcome(
                    file_name=r.name, status="failed", error="Target database rejected the rows",
                ))
                continue
            details = UNSTRUCTURED_DETAILS if r.classification == "Unstructured" else STRUCTURED_DETAILS
            outcomes.append(IngestOutcome(file_name=r.name, status="success", ingestion_details=details))
        return outcomes

    def names(self, operation):
        """File names submitted per call of *operation*, in call order."""
        return [names for op, names in self.calls if op == operation]


def make_record(name, **fields):
    fields.setdefault("id", f"id-{name}")
    fields.setdefault("path", f"data/{name}")
    fields.setdefault("relative_path", fields["path"])
    fields.setdefault("size", 100)
    fields.setdefault("type", name.rsplit(".", 1)[-1] if "." in name else "unknown")
    return FileRecord(name=name, **fields)


@pytest.fixture
def fake_client():
    return FakeBatchClient()


@pytest.fixture
def sample_dir(tmp_path):
    """A folder with two spreadsheets-as-CSV and one text document."""
    folder = tmp_path / "data"
    folder.mkdir()
    (folder / "sales.csv").write_text("id,amount\n1,10.5\n2,20.0\n")
    (folder / "customers.csv").write_text("id,name\n1,Ada\n2,Grace\n")
    (folder / "notes.txt").write_text("Quarterly notes. Revenue grew in every region.")
    return str(folder)
