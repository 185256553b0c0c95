"""
Configuration module for the notes consistency service.
Loads environment variables and provides centralized config access.
"""

from pathlib import Path
from typing import Dict, Optional
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from functools import lru_cache

# ============================================================
# Centralized Data Paths
# ============================================================
# All persisted data lives under <project>/data/ for easy backup/deletion.
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite document store
SQLITE_DB_PATH = DATA_DIR / "app.db"

# Attachment blobs, one sub-directory per owner
ATTACHMENTS_DIR = DATA_DIR / "attachments"


class PlanLimits(BaseModel):
    """Per-plan policy row: attachment cap and revision retention."""
    attachmentSizeMB: int
    revisionRetentionCount: int


DEFAULT_PLAN_LIMITS: Dict[str, PlanLimits] = {
    "free": PlanLimits(attachmentSizeMB=10, revisionRetentionCount=3),
    "pro": PlanLimits(attachmentSizeMB=50, revisionRetentionCount=10),
    "org": PlanLimits(attachmentSizeMB=100, revisionRetentionCount=10),
}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ============================================================
    # Document Store
    # ============================================================
    database_path: str = str(SQLITE_DB_PATH)

    # Collection names. The pivot and attachment collections can be
    # pointed elsewhere; leaving attachments_collection unset runs the
    # attachment manager in embedded-only mode.
    notes_collection: str = "notes"
    tags_collection: str = "tags"
    note_tags_collection: str = "note_tags"
    revisions_collection: str = "note_revisions"
    collaborators_collection: str = "collaborators"
    subscriptions_collection: str = "subscriptions"
    attachments_collection: Optional[str] = None

    # Store's per-query id-list limit ($in chunking)
    query_id_chunk_size: int = 100

    # ============================================================
    # JWT Authentication (tokens minted by the external provider)
    # ============================================================
    jwt_secret_key: str = "your-super-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"

    # ============================================================
    # Attachments & Signed Download URLs
    # ============================================================
    # No secret means signed URLs are disabled, not an error.
    attachment_url_signing_secret: Optional[str] = None
    attachment_url_ttl_seconds: int = 300
    attachments_bucket_dir: Optional[str] = str(ATTACHMENTS_DIR)

    # Download proxy rate limit (per client IP)
    download_rate_limit_requests: int = 30
    download_rate_limit_window_seconds: int = 60

    # ============================================================
    # Reads, Revisions & Plans
    # ============================================================
    default_page_size: int = 50
    max_page_size: int = 200
    max_diff_chars: int = 8000
    plan_limits: Dict[str, PlanLimits] = DEFAULT_PLAN_LIMITS

    # Unset keeps reconciliation manual (maintenance endpoints only)
    reconcile_interval_seconds: Optional[int] = None

    # ============================================================
    # Server Configuration
    # ============================================================
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # ============================================================
    # CORS Configuration
    # ============================================================
    # Comma-separated origins.
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse the comma-separated CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reloading env vars on every call.
    """
    return Settings()
