from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from typing import Optional, Literal


BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = f"sqlite:///{BASE_DIR}/data/db/timewellspent.db"

    # Server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Remote store (Supabase: PostgREST + GoTrue)
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    sync_redirect_url: str = "timewellspent://auth"
    sync_auth_storage_key: str = "tws-remote-auth"

    # Sync Engine
    sync_interval_seconds: int = 300                    # 5 minutes
    sync_chunk_size: int = 500                          # rows per upsert request
    sync_http_timeout_seconds: float = 30.0
    sync_rollup_lookback_days: int = 7                  # first rollup pass
    sync_cursor_strategy: Literal["wall_clock", "watermark"] = "wall_clock"
    sync_cursor_skew_seconds: int = 5                   # watermark mode only

    # Housekeeping
    sync_housekeeping_interval_hours: int = 24
    sync_rollup_retention_days: int = 45
    sync_consumption_retention_days: int = 180

    def model_post_init(self, __context):
        if self.database_url == f"sqlite:///{BASE_DIR}/data/db/timewellspent.db":
            (BASE_DIR / "data" / "db").mkdir(parents=True, exist_ok=True)


settings = Settings()
