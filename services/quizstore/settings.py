# services/quizstore/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
from typing import Dict, List
from pathlib import Path

MIB = 1024 * 1024


class Settings(BaseSettings):
    # Storage settings
    # Primary backend is SQLite (async). Set PRIMARY_ENABLED=false to run
    # on the flat JSON fallback only.
    db_url: str = "sqlite+aiosqlite:///data/quizstore.db"
    primary_enabled: bool = True
    data_dir: str = "data"

    # Flat key-value fallback behaves like browser localStorage: small quota.
    fallback_quota_bytes: int = 5 * MIB

    # ===== Capacity limits =====
    total_capacity_bytes: int = 500 * MIB
    max_image_bytes: int = 10 * MIB
    max_audio_bytes: int = 20 * MIB
    max_video_bytes: int = 100 * MIB

    # Snapshot is flagged "near limit" above this percentage
    near_limit_pct: float = Field(default=80.0, ge=0, le=100)

    # ===== Auto-save =====
    autosave_debounce_seconds: float = 30.0
    autosave_max_retries: int = 3
    autosave_retry_delay_seconds: float = 5.0
    autosave_saved_display_seconds: float = 2.0
    autosave_error_display_seconds: float = 5.0

    # ===== Drafts =====
    draft_max_age_days: int = 30

    # ===== Synchronization =====
    sync_status_reset_seconds: float = 2.0
    # How long a just-deleted id refuses new drafts
    deleted_tombstone_ttl_seconds: float = 300.0
    # Display-only usage snapshots may be this stale
    usage_display_ttl_seconds: float = 5.0
    broadcast_channel: str = "quizstore-quiz-events"

    # CORS settings
    allowed_origins: str = "http://localhost:5173,http://localhost:3000"

    log_level: str = "INFO"

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )

    def attachment_limits(self) -> Dict[str, int]:
        """Per-type attachment ceilings keyed by mime class."""
        return {
            "image": self.max_image_bytes,
            "audio": self.max_audio_bytes,
            "video": self.max_video_bytes,
        }

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
