"""
Tests for dataloader.controller — the stage machine driving a whole run.
"""

import asyncio

import pytest

from conftest import FakeBatchClient
from dataloader.controller import (
    AmbiguousNameError,
    OperationInProgress,
    PipelineController,
    StageMismatch,
)
from dataloader.gate import Stage
from dataloader.models import DatabaseConfig
from dataloader.reconciler import BATCH_FAILURE_MESSAGE


def _controller(client):
    return PipelineController(client=client, db_config=DatabaseConfig())


async def _to_curation(ctl, directory):
    ctl.select_directory(directory)
    assert ctl.advance()
    await ctl.upload()
    assert ctl.advance()
    await ctl.process()
    assert ctl.advance()
    assert ctl.stage == Stage.CURATION


@pytest.mark.asyncio
async def test_full_run_with_curation_and_retry(sample_dir):
    """Two structured files and one document; the document is curated out and
    one ingestion failure is recovered by a retry."""
    client = FakeBatchClient(
        classifications={"notes.txt": "Unstructured"},
        ingest_failures={"customers.csv": 1},
    )
    ctl = _controller(client)
    await _to_curation(ctl, sample_dir)

    assert ctl.deselect_classification("Unstructured") == [ctl.store.by_name("notes.txt")[0].id]
    assert ctl.advance()

    run = await ctl.ingest()
    assert run.ok
    assert sorted(client.names("ingest")[0]) == ["customers.csv", "sales.csv"]
    assert len(ctl.store.with_status("success", selected_only=True)) == 1
    assert len(ctl.store.with_status("failed", selected_only=True)) == 1
    # One success is enough to move on
    assert ctl.can_advance()

    run = await ctl.retry()
    assert client.names("ingest")[1] == ["customers.csv"]
    assert len(ctl.store.with_status("success", selected_only=True)) == 2
    assert ctl.store.with_status("failed", selected_only=True) == []
    assert ctl.advance()
    assert ctl.stage == Stage.SUMMARY
    assert not ctl.advance()

    summary = ctl.report().summary
    assert summary.total_files == 3
    assert summary.selected_files == 2
    assert summary.successful_ingestions == 2
    assert summary.failed_ingestions == 0
    assert summary.structured_files == 2


@pytest.mark.asyncio
async def test_gate_blocks_until_upload_completes(sample_dir):
    ctl = _controller(FakeBatchClient(fatal={"upload"}))
    ctl.select_directory(sample_dir)
    assert ctl.advance()

    run = await ctl.upload()
    assert not run.ok
    assert ctl.last_error == run.error
    assert all(r.error == BATCH_FAILURE_MESSAGE for r in ctl.store)
    assert not ctl.advance()
    assert ctl.stage == Stage.UPLOAD
    assert "not uploaded" in ctl.blocking_reason()


@pytest.mark.asyncio
async def test_upload_skips_files_already_uploaded(sample_dir):
    client = FakeBatchClient()
    ctl = _controller(client)
    ctl.select_directory(sample_dir)
    ctl.advance()
    await ctl.upload()
    await ctl.upload()
    assert len(client.names("upload")) == 1


@pytest.mark.asyncio
async def test_deselected_files_never_submitted(sample_dir):
    client = FakeBatchClient()
    ctl = _controller(client)
    ctl.select_directory(sample_dir)
    notes = ctl.store.by_name("notes.txt")[0]
    ctl.set_selected([notes.id], False)
    ctl.advance()
    await ctl.upload()
    assert "notes.txt" not in client.names("upload")[0]
    # Gate only looks at selected files
    assert ctl.can_advance()


@pytest.mark.asyncio
async def test_concurrent_batch_rejected(sample_dir):
    release = asyncio.Event()

    class SlowClient(FakeBatchClient):
        async def upload(self, records):
            await release.wait()
            return await super().upload(records)

    client = SlowClient()
    ctl = _controller(client)
    ctl.select_directory(sample_dir)
    ctl.advance()

    first = asyncio.create_task(ctl.upload())
    await asyncio.sleep(0)
    assert ctl.busy

    with pytest.raises(OperationInProgress):
        await ctl.upload()
    with pytest.raises(OperationInProgress):
        await ctl.retry()
    with pytest.raises(OperationInProgress):
        ctl.advance()
    with pytest.raises(OperationInProgress):
        ctl.set_selected(ctl.store.ids, False)

    release.set()
    run = await first
    assert run.ok
    assert not ctl.busy
    assert len(client.names("upload")) == 1
    assert all(r.uploaded for r in ctl.store)


@pytest.mark.asyncio
async def test_duplicate_names_refused_before_upload(tmp_path):
    for folder in ("q1", "q2"):
        (tmp_path / folder).mkdir()
        (tmp_path / folder / "report.csv").write_text("a,b\n1,2\n")
    client = FakeBatchClient()
    ctl = _controller(client)
    ctl.select_directory(str(tmp_path))
    ctl.advance()

    with pytest.raises(AmbiguousNameError):
        await ctl.upload()
    assert client.calls == []

    ctl.set_selected([ctl.store.ids[1]], False)
    run = await ctl.upload()
    assert run.ok
    assert client.names("upload") == [["report.csv"]]


@pytest.mark.asyncio
async def test_retreat_to_selection_resets_upload(sample_dir):
    ctl = _controller(FakeBatchClient())
    ctl.select_directory(sample_dir)
    ctl.advance()
    await ctl.upload()
    assert all(r.path.startswith("/srv/uploads/") for r in ctl.store)

    assert ctl.retreat()
    assert ctl.stage == Stage.SELECTION
    assert not any(r.uploaded for r in ctl.store)
    assert all(r.path == r.relative_path for r in ctl.store)
    assert not ctl.retreat()


@pytest.mark.asyncio
async def test_reprocessing_clears_previous_analysis(sample_dir):
    client = FakeBatchClient()
    ctl = _controller(client)
    ctl.select_directory(sample_dir)
    ctl.advance()
    await ctl.upload()
    ctl.advance()
    await ctl.process()
    assert all(r.processed for r in ctl.store)

    ctl.reset_processing()
    assert not any(r.processed or r.classification for r in ctl.store)
    assert not ctl.can_advance()

    await ctl.process()
    assert len(client.names("analyze")) == 2
    assert ctl.can_advance()


def test_set_selected_unknown_id():
    ctl = _controller(FakeBatchClient())
    with pytest.raises(KeyError):
        ctl.set_selected(["nope"], False)


def test_empty_selection_cannot_advance():
    ctl = _controller(FakeBatchClient())
    assert not ctl.advance()
    assert ctl.blocking_reason() == "No files are selected."


def test_select_restarts_run(sample_dir):
    ctl = _controller(FakeBatchClient())
    ctl.select_directory(sample_dir)
    ctl.advance()
    ctl.select_files([f"{sample_dir}/sales.csv"], root=sample_dir)
    assert ctl.stage == Stage.SELECTION
    assert [r.name for r in ctl.store] == ["sales.csv"]
    ctl.clear()
    assert len(ctl.store) == 0


@pytest.mark.asyncio
async def test_retry_refuses_duplicate_names(tmp_path):
    for folder in ("q1", "q2"):
        (tmp_path / folder).mkdir()
        (tmp_path / folder / "x.csv").write_text("a,b\n1,2\n")
    client = FakeBatchClient()
    ctl = _controller(client)
    ctl.select_directory(str(tmp_path))
    ctl.advance()

    with pytest.raises(AmbiguousNameError):
        await ctl.retry(Stage.UPLOAD)
    assert client.calls == []
    assert not ctl.busy


@pytest.mark.asyncio
async def test_batch_operations_bound_to_their_stage(sample_dir):
    client = FakeBatchClient()
    ctl = _controller(client)
    ctl.select_directory(sample_dir)

    with pytest.raises(StageMismatch):
        await ctl.upload()
    ctl.advance()
    with pytest.raises(StageMismatch):
        await ctl.process()
    with pytest.raises(StageMismatch):
        ctl.reset_processing()
    with pytest.raises(StageMismatch):
        await ctl.ingest()
    with pytest.raises(StageMismatch):
        await ctl.retry(Stage.INGESTION)
    assert client.calls == []
    assert not ctl.busy


@pytest.mark.asyncio
async def test_processing_after_summary_rejected(sample_dir):
    client = FakeBatchClient()
    ctl = _controller(client)
    await _to_curation(ctl, sample_dir)
    ctl.advance()
    await ctl.ingest()
    assert ctl.advance()
    assert ctl.stage == Stage.SUMMARY
    before = ctl.store
    calls = len(client.calls)

    with pytest.raises(StageMismatch):
        await ctl.process()
    with pytest.raises(StageMismatch):
        await ctl.retry(Stage.PROCESSING)
    assert len(client.calls) == calls
    assert ctl.store is before
    assert ctl.report().summary.total_files == 3
