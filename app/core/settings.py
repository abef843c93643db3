from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(default="sqlite+pysqlite:///./dev.db", validation_alias="DATABASE_URL")
    db_auto_create: bool = Field(default=True, validation_alias="DB_AUTO_CREATE")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    media_root: str = Field(default="./storage/media", validation_alias="MEDIA_ROOT")
    media_url_prefix: str = Field(default="/media", validation_alias="MEDIA_URL_PREFIX")
    cors_allow_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        validation_alias="CORS_ALLOW_ORIGINS",
    )

    storage_backend: str = Field(default="local", validation_alias="STORAGE_BACKEND")
    supabase_url: str | None = Field(default=None, validation_alias="SUPABASE_URL")
    supabase_service_role_key: str | None = Field(default=None, validation_alias="SUPABASE_SERVICE_ROLE_KEY")

    storage_bucket: str = Field(default="scanned-rooms", validation_alias="SUPABASE_STORAGE_BUCKET_SCANNED_ROOMS")
    storage_ios_prefix: str = Field(default="ios-uploads", validation_alias="SUPABASE_STORAGE_IOS_PREFIX")
    storage_json_prefix: str = Field(default="ios-metadata", validation_alias="SUPABASE_STORAGE_JSON_PREFIX")
    storage_glb_prefix: str = Field(default="processed-glb", validation_alias="SUPABASE_STORAGE_GLB_PREFIX")
    storage_signed_url_expires: int = Field(default=3600, validation_alias="SUPABASE_STORAGE_SIGNED_URL_EXPIRES")
    storage_bucket_file_size_limit: int = Field(
        default=50 * 1024 * 1024,
        validation_alias="SUPABASE_STORAGE_BUCKET_FILE_SIZE_LIMIT",
    )

    conversion_max_file_size: int = Field(default=50 * 1024 * 1024, validation_alias="CONVERSION_MAX_FILE_SIZE")
    conversion_enable_fallback: bool = Field(default=True, validation_alias="CONVERSION_ENABLE_FALLBACK")
    export_wait_seconds_max: float = Field(default=240.0, validation_alias="EXPORT_WAIT_SECONDS_MAX")

    realtime_notify_enabled: bool = Field(default=False, validation_alias="REALTIME_NOTIFY_ENABLED")
    realtime_notify_rpc: str = Field(default="notify_export_ready", validation_alias="REALTIME_NOTIFY_RPC")

    cron_secret: str | None = Field(default=None, validation_alias="CRON_SECRET")

    @property
    def storage_public_base_url(self) -> str | None:
        """Base that public object URLs are derived from, or None when unknown."""
        if self.storage_backend == "supabase":
            if not self.supabase_url:
                return None
            return f"{self.supabase_url.rstrip('/')}/storage/v1/object/public"
        return f"{self.media_url_prefix.rstrip('/')}/buckets"


settings = Settings()
