"""
API request / response models for FastAPI.
"""

from pydantic import BaseModel, Field
from typing import Optional

from dataloader.models import FileRecord


class SelectRequest(BaseModel):
    directory: Optional[str] = None
    paths: list[str] = Field(default_factory=list)
    root: Optional[str] = None
    extensions: list[str] = Field(default_factory=list)


class SelectionRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)
    selected: bool = True
    all: bool = False


class RetryRequest(BaseModel):
    stage: Optional[int] = None


class PipelineState(BaseModel):
    stage: int
    stage_title: str
    can_advance: bool
    blocking_reason: Optional[str] = None
    busy: bool = False
    last_error: Optional[str] = None
    counts: dict[str, int] = Field(default_factory=dict)
    files: list[FileRecord] = Field(default_factory=list)


class BatchResponse(BaseModel):
    stage: int
    submitted: int = 0
    error: Optional[str] = None
    state: PipelineState


class TransitionResponse(BaseModel):
    moved: bool
    state: PipelineState
