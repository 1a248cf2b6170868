"""
Pydantic models shared across the pipeline.

Wire-facing models use camelCase aliases (the remote services speak
camelCase) and accept snake_case field names for construction in code.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel

from dataloader import config

Classification = Literal["Structured", "Semi-Structured", "Unstructured"]
IngestionStatus = Literal["pending", "success", "failed"]

CLASSIFICATIONS: tuple[str, ...] = ("Structured", "Semi-Structured", "Unstructured")


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Analysis results ─────────────────────────────────────────────────────────

class QualityMetrics(WireModel):
    """Ordinal scores in the 0–3 range (0 = poor, 3 = excellent / easy)."""

    parse_accuracy: float = Field(ge=0, le=3)
    completeness: Optional[float] = Field(default=None, ge=0, le=3)
    complexity: float = Field(ge=0, le=3)


class AnalysisData(BaseModel):
    # The analysis service replies in snake_case and may add fields over time
    model_config = ConfigDict(extra="allow")

    file_name: Optional[str] = None
    content_type: Optional[str] = None
    domain: Optional[str] = None
    subdomain: Optional[str] = None
    intents: Optional[Union[str, list[str]]] = None
    publishing_authority: Optional[str] = None
    published_date: Optional[str] = None
    period_of_reference: Optional[str] = None
    brief_summary: Optional[str] = None
    document_size: Optional[str] = None
    extra_fields: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


# ── Ingestion details (tagged by ``type``) ───────────────────────────────────

class ColumnSchema(WireModel):
    name: str
    type: str
    primary: Optional[bool] = None


class TableDetails(WireModel):
    table_name: str
    columns: list[ColumnSchema] = Field(
        default_factory=list,
        validation_alias=AliasChoices("schema", "schema_details", "columns"),
        serialization_alias="schema",
    )
    rows_inserted: int = 0
    sql_commands: list[str] = Field(default_factory=list)
    file_selector_prompt: Optional[str] = None


class _DetailBase(WireModel):
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class StructuredDetails(_DetailBase):
    type: Literal["structured"] = "structured"
    tables: list[TableDetails] = Field(default_factory=list)


class StructuredPart(WireModel):
    table_name: str
    rows_inserted: int = 0


class UnstructuredPart(WireModel):
    collection: str
    chunks_created: int = 0
    embeddings_generated: int = 0


class SemiStructuredDetails(_DetailBase):
    type: Literal["semi-structured"] = "semi-structured"
    structured_data: StructuredPart
    unstructured_data: UnstructuredPart


class UnstructuredDetails(_DetailBase):
    type: Literal["unstructured"] = "unstructured"
    collection: str
    chunks_created: int = 0
    embeddings_generated: int = 0
    chunking_method: str = ""
    embedding_model: str = ""


IngestionDetail = Annotated[
    Union[StructuredDetails, SemiStructuredDetails, UnstructuredDetails],
    Field(discriminator="type"),
]


# ── Database targets ─────────────────────────────────────────────────────────

class StructuredTarget(WireModel):
    type: Literal["postgresql", "mysql"] = "postgresql"
    host: str = "localhost"
    port: int = 5432
    database: str = "dataloader"
    username: str = "postgres"
    password: SecretStr = SecretStr("")


class UnstructuredTarget(WireModel):
    type: Literal["milvus", "qdrant"] = "milvus"
    host: str = "localhost"
    port: int = 19530
    collection: str = "documents"
    api_key: Optional[SecretStr] = None


class DatabaseConfig(WireModel):
    structured: StructuredTarget = Field(default_factory=StructuredTarget)
    unstructured: UnstructuredTarget = Field(default_factory=UnstructuredTarget)

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Build the default targets from environment configuration."""
        return cls(
            structured=StructuredTarget(
                type=config.STRUCTURED_DB_TYPE,
                host=config.STRUCTURED_DB_HOST,
                port=config.STRUCTURED_DB_PORT,
                database=config.STRUCTURED_DB_NAME,
                username=config.STRUCTURED_DB_USER,
                password=SecretStr(config.STRUCTURED_DB_PASSWORD),
            ),
            unstructured=UnstructuredTarget(
                type=config.VECTOR_DB_TYPE,
                host=config.VECTOR_DB_HOST,
                port=config.VECTOR_DB_PORT,
                collection=config.VECTOR_DB_COLLECTION,
                api_key=SecretStr(config.VECTOR_DB_API_KEY) if config.VECTOR_DB_API_KEY else None,
            ),
        )

    def to_wire(self) -> dict:
        """Serialise for the ingest service, revealing the secret values."""
        data = self.model_dump(mode="json", by_alias=True)
        data["structured"]["password"] = self.structured.password.get_secret_value()
        if self.unstructured.api_key is not None:
            data["unstructured"]["apiKey"] = self.unstructured.api_key.get_secret_value()
        return data


# ── Per-file record ──────────────────────────────────────────────────────────

class FileRecord(WireModel):
    """
    State of one selected file across every pipeline stage.

    Records are frozen: every change goes through ``model_copy(update=...)``
    inside a named reconciler operation, so a store snapshot never changes
    under a reader.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    path: str
    relative_path: str
    size: int = 0
    type: str = "unknown"
    source_path: Optional[str] = Field(default=None, exclude=True)

    selected: bool = True
    uploaded: bool = False
    processed: bool = False

    quality_metrics: Optional[QualityMetrics] = None
    classification: Optional[Classification] = None
    analysis: Optional[AnalysisData] = None
    ingestion_status: Optional[IngestionStatus] = None
    ingestion_details: Optional[list[IngestionDetail]] = None
    error: Optional[str] = None


# ── Batch outcomes returned by the remote services ──────────────────────────

class _Outcome(WireModel):
    file_name: str = Field(validation_alias=AliasChoices("fileName", "file_name", "name"))
    # Only present when the service echoes the internal record id
    file_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("fileId", "file_id", "id"))


class UploadOutcome(_Outcome):
    path: str = Field(validation_alias=AliasChoices("path", "serverAssignedPath", "server_path"))


class AnalysisOutcome(_Outcome):
    quality_metrics: Optional[QualityMetrics] = None
    classification: Optional[Classification] = None
    analysis: Optional[AnalysisData] = None
    error: Optional[str] = None


class IngestOutcome(_Outcome):
    file_size: Optional[int] = None
    status: Literal["success", "failed"]
    # Raw shape varies by ingestion kind; normalised by the reconciler
    ingestion_details: Any = None
    error: Optional[str] = None
