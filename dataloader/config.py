"""
Central configuration — reads environment variables and provides defaults.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ── Remote pipeline services ─────────────────────────────────────────────────
API_URL: str = os.getenv("DATALOADER_API_URL", "http://localhost:8000").rstrip("/")
UPLOAD_ENDPOINT: str = os.getenv("UPLOAD_ENDPOINT", "/upload-files/")
PROCESS_ENDPOINT: str = os.getenv("PROCESS_ENDPOINT", "/process-files")
INGEST_ENDPOINT: str = os.getenv("INGEST_ENDPOINT", "/ingest/")

# No timeout unless the deployment asks for one
_timeout = os.getenv("REQUEST_TIMEOUT", "")
REQUEST_TIMEOUT: float | None = float(_timeout) if _timeout else None

# ── Default structured (relational) target ───────────────────────────────────
STRUCTURED_DB_TYPE: str = os.getenv("STRUCTURED_DB_TYPE", "postgresql")
STRUCTURED_DB_HOST: str = os.getenv("STRUCTURED_DB_HOST", "localhost")
STRUCTURED_DB_PORT: int = int(os.getenv("STRUCTURED_DB_PORT", "5432"))
STRUCTURED_DB_NAME: str = os.getenv("STRUCTURED_DB_NAME", "dataloader")
STRUCTURED_DB_USER: str = os.getenv("STRUCTURED_DB_USER", "postgres")
STRUCTURED_DB_PASSWORD: str = os.getenv("STRUCTURED_DB_PASSWORD", "")

# ── Default unstructured (vector) target ─────────────────────────────────────
VECTOR_DB_TYPE: str = os.getenv("VECTOR_DB_TYPE", "milvus")
VECTOR_DB_HOST: str = os.getenv("VECTOR_DB_HOST", "localhost")
VECTOR_DB_PORT: int = int(os.getenv("VECTOR_DB_PORT", "19530"))
VECTOR_DB_COLLECTION: str = os.getenv("VECTOR_DB_COLLECTION", "documents")
VECTOR_DB_API_KEY: str = os.getenv("VECTOR_DB_API_KEY", "")

# ── Reports ───────────────────────────────────────────────────────────────────
REPORT_DIR: str = os.getenv("REPORT_DIR", "reports")

# ── CLI ───────────────────────────────────────────────────────────────────────
MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "2"))
