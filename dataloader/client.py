"""
Batch operation client — one HTTP request per upload / analyze / ingest batch.

Each call is one multipart request carrying a JSON manifest of the records
(``file_details``) and, for upload and analyze, one ``files`` part per record.
The client never touches the FileStore; turning outcomes into record state is
the reconciler's job.
"""

import json
import logging
import mimetypes
from contextlib import ExitStack
from enum import Enum
from typing import Any, Optional, Sequence

import httpx
from pydantic import TypeAdapter, ValidationError

from dataloader import config
from dataloader.models import (
    AnalysisOutcome,
    DatabaseConfig,
    FileRecord,
    IngestOutcome,
    UploadOutcome,
)

logger = logging.getLogger(__name__)


class BatchError(Exception):
    """The whole batch failed; no outcome can be attributed to a single file."""


class Operation(str, Enum):
    UPLOAD = "upload"
    ANALYZE = "analyze"
    INGEST = "ingest"


# Envelope keys the services wrap their per-file lists in
_ENVELOPE_KEYS = ("files", "results")

_ADAPTERS: dict[Operation, TypeAdapter] = {
    Operation.UPLOAD: TypeAdapter(list[UploadOutcome]),
    Operation.ANALYZE: TypeAdapter(list[AnalysisOutcome]),
    Operation.INGEST: TypeAdapter(list[IngestOutcome]),
}


def build_manifest(records: Sequence[FileRecord]) -> str:
    """Serialise the records' current metadata as the ``file_details`` field."""
    return json.dumps([r.model_dump(mode="json", by_alias=True) for r in records])


class BatchClient:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or config.API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.REQUEST_TIMEOUT
        self.endpoints = {
            Operation.UPLOAD: config.UPLOAD_ENDPOINT,
            Operation.ANALYZE: config.PROCESS_ENDPOINT,
            Operation.INGEST: config.INGEST_ENDPOINT,
        }

    async def upload(self, records: Sequence[FileRecord]) -> list[UploadOutcome]:
        return await self._submit(Operation.UPLOAD, records)

    async def analyze(self, records: Sequence[FileRecord]) -> list[AnalysisOutcome]:
        return await self._submit(Operation.ANALYZE, records)

    async def ingest(
        self,
        records: Sequence[FileRecord],
        db_config: DatabaseConfig,
    ) -> list[IngestOutcome]:
        # Files were uploaded in an earlier stage; only metadata is sent
        return await self._submit(
            Operation.INGEST,
            records,
            extra_fields={"db_config": json.dumps(db_config.to_wire())},
            send_files=False,
        )

    async def _submit(
        self,
        operation: Operation,
        records: Sequence[FileRecord],
        extra_fields: Optional[dict[str, str]] = None,
        send_files: bool = True,
    ) -> list:
        """
        Issue exactly one request for *records* and return validated outcomes.

        Raises
        ------
        BatchError
            Transport failure, non-2xx status, unreadable local file, or a
            response body that is not a valid outcome list.
        """
        records = list(records)
        if not records:
            logger.warning("Empty %s batch, nothing submitted", operation.value)
            return []

        url = f"{self.base_url}{self.endpoints[operation]}"
        data = {"file_details": build_manifest(records), **(extra_fields or {})}
        logger.info("Submitting %s batch of %d file(s) to %s", operation.value, len(records), url)

        with ExitStack() as stack:
            if send_files:
                files = _open_payloads(stack, records)
            else:
                # Fields go out as parts so the body is still multipart
                files = [(key, (None, value, "application/json")) for key, value in data.items()]
                data = None
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(url, data=data, files=files)
            except httpx.HTTPError as e:
                raise BatchError(f"{operation.value} request failed: {e}") from e

        if resp.is_error:
            raise BatchError(_error_detail(resp))

        try:
            body = resp.json()
        except ValueError as e:
            raise BatchError(f"{operation.value} response is not valid JSON") from e

        entries = _unwrap(body)
        if entries is None:
            raise BatchError(f"{operation.value} response has no outcome list")
        try:
            outcomes = _ADAPTERS[operation].validate_python(entries)
        except ValidationError as e:
            raise BatchError(
                f"{operation.value} response is malformed ({e.error_count()} invalid field(s))"
            ) from e

        logger.info("%s batch returned %d outcome(s)", operation.value, len(outcomes))
        return outcomes


async def check_service(base_url: Optional[str] = None) -> bool:
    """Return True if the pipeline service answers at all (any non-5xx)."""
    url = (base_url or config.API_URL).rstrip("/") + "/"
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(url)
            return resp.status_code < 500
    except httpx.HTTPError:
        return False


# ── private helpers ───────────────────────────────────────────────────────────

def _open_payloads(stack: ExitStack, records: Sequence[FileRecord]) -> list[tuple]:
    files = []
    for r in records:
        if not r.source_path:
            raise BatchError(f"No local payload for {r.name}")
        try:
            fh = stack.enter_context(open(r.source_path, "rb"))
        except OSError as e:
            raise BatchError(f"Could not read {r.name}: {e}") from e
        mime = mimetypes.guess_type(r.name)[0] or "application/octet-stream"
        files.append(("files", (r.name, fh, mime)))
    return files


def _unwrap(body: Any) -> Optional[list]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in _ENVELOPE_KEYS:
            if isinstance(body.get(key), list):
                return body[key]
    return None


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"Server error: {resp.status_code}"
