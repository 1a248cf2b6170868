"""
FastAPI application — HTTP control surface for one in-memory pipeline run.

    GET  /pipeline                  current stage, gate and files
    POST /pipeline/select           choose files (directory or explicit paths)
    POST /pipeline/selection        toggle `selected` on files
    PUT  /pipeline/database-config  ingestion targets
    POST /pipeline/{upload,process,ingest,retry}
    POST /pipeline/{advance,retreat,clear}
    GET  /pipeline/report           aggregated report

Remote analysis and ingestion happen in the services behind BatchClient; this
app only drives the pipeline controller.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from api.models import (
    BatchResponse,
    PipelineState,
    RetryRequest,
    SelectionRequest,
    SelectRequest,
    TransitionResponse,
)
from dataloader import config
from dataloader.client import BatchClient
from dataloader.controller import (
    AmbiguousNameError,
    OperationInProgress,
    PipelineController,
    StageMismatch,
)
from dataloader.gate import Stage
from dataloader.models import DatabaseConfig
from dataloader.report import Report
from dataloader.retry import BatchRun

logger = logging.getLogger(__name__)

# ── Globals ──────────────────────────────────────────────────────────────────
_controller: PipelineController | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _controller
    _controller = PipelineController(client=BatchClient())
    logger.info("Pipeline controller initialised (services at %s).", config.API_URL)
    yield
    _controller = None


app = FastAPI(
    title="Data Loader Pipeline",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _ctl() -> PipelineController:
    if _controller is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialised.")
    return _controller


def _state(ctl: PipelineController) -> PipelineState:
    store = ctl.store
    selected = store.selected()
    return PipelineState(
        stage=int(ctl.stage),
        stage_title=ctl.stage.title,
        can_advance=ctl.can_advance(),
        blocking_reason=ctl.blocking_reason(),
        busy=ctl.busy,
        last_error=ctl.last_error,
        counts={
            "total": len(store),
            "selected": len(selected),
            "uploaded": sum(1 for r in selected if r.uploaded),
            "processed": sum(1 for r in selected if r.processed),
            "success": len(store.with_status("success", selected_only=True)),
            "failed": len(store.with_status("failed", selected_only=True)),
            "pending": len(store.with_status("pending", selected_only=True)),
        },
        files=list(store),
    )


def _batch_response(ctl: PipelineController, run: BatchRun) -> BatchResponse:
    return BatchResponse(
        stage=int(run.stage),
        submitted=len(run.submitted),
        error=run.error,
        state=_state(ctl),
    )


async def _run(ctl: PipelineController, operation) -> BatchResponse:
    try:
        run = await operation()
    except (OperationInProgress, StageMismatch) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except AmbiguousNameError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not run.ok:
        raise HTTPException(status_code=502, detail=run.error)
    return _batch_response(ctl, run)


def _guard(fn, *args):
    try:
        return fn(*args)
    except (OperationInProgress, StageMismatch) as e:
        raise HTTPException(status_code=409, detail=str(e))


# ── GET /pipeline ────────────────────────────────────────────────────────────

@app.get("/pipeline", response_model=PipelineState)
async def get_pipeline():
    return _state(_ctl())


# ── Selection & curation ─────────────────────────────────────────────────────

@app.post("/pipeline/select", response_model=PipelineState)
async def select_files(request: SelectRequest):
    """Replace the run's files with a directory scan or an explicit path list."""
    ctl = _ctl()
    try:
        if request.directory:
            _guard(ctl.select_directory, request.directory, request.extensions or None)
        elif request.paths:
            _guard(ctl.select_files, request.paths, request.root)
        else:
            raise HTTPException(status_code=422, detail="Provide a directory or a list of paths.")
    except OSError as e:
        raise HTTPException(status_code=400, detail=f"Cannot read selection: {e}")
    return _state(ctl)


@app.post("/pipeline/selection", response_model=PipelineState)
async def update_selection(request: SelectionRequest):
    ctl = _ctl()
    try:
        if request.all:
            _guard(ctl.select_all, request.selected)
        else:
            _guard(ctl.set_selected, request.ids, request.selected)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))
    return _state(ctl)


@app.put("/pipeline/database-config", response_model=DatabaseConfig)
async def put_database_config(db_config: DatabaseConfig):
    ctl = _ctl()
    _guard(ctl.set_database_config, db_config)
    return ctl.db_config


@app.get("/pipeline/database-config", response_model=DatabaseConfig)
async def get_database_config():
    return _ctl().db_config


# ── Batch operations ─────────────────────────────────────────────────────────

@app.post("/pipeline/upload", response_model=BatchResponse)
async def upload():
    ctl = _ctl()
    return await _run(ctl, ctl.upload)


@app.post("/pipeline/process", response_model=BatchResponse)
async def process():
    ctl = _ctl()
    return await _run(ctl, ctl.process)


@app.post("/pipeline/process/reset", response_model=PipelineState)
async def reset_processing():
    ctl = _ctl()
    _guard(ctl.reset_processing)
    return _state(ctl)


@app.post("/pipeline/ingest", response_model=BatchResponse)
async def ingest():
    ctl = _ctl()
    return await _run(ctl, ctl.ingest)


@app.post("/pipeline/retry", response_model=BatchResponse)
async def retry(request: RetryRequest):
    ctl = _ctl()
    try:
        stage = Stage(request.stage) if request.stage is not None else None
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown stage {request.stage}.")
    try:
        return await _run(ctl, lambda: ctl.retry(stage))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ── Stage transitions ────────────────────────────────────────────────────────

@app.post("/pipeline/advance", response_model=TransitionResponse)
async def advance():
    """Gate violations are not errors: `moved` is simply false."""
    ctl = _ctl()
    moved = _guard(ctl.advance)
    return TransitionResponse(moved=moved, state=_state(ctl))


@app.post("/pipeline/retreat", response_model=TransitionResponse)
async def retreat():
    ctl = _ctl()
    moved = _guard(ctl.retreat)
    return TransitionResponse(moved=moved, state=_state(ctl))


@app.post("/pipeline/clear", response_model=PipelineState)
async def clear():
    ctl = _ctl()
    _guard(ctl.clear)
    return _state(ctl)


# ── GET /pipeline/report ─────────────────────────────────────────────────────

@app.get("/pipeline/report", response_model=Report)
async def get_report():
    return _ctl().report()


# ── GET /health ──────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "ok", "services_url": config.API_URL}
