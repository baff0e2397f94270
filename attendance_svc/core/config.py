from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    # Auth (bearer tokens are issued elsewhere, we only verify them)
    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # Attendance tokens
    public_app_url: str | None = Field(default=None, alias="PUBLIC_APP_URL")
    attendance_token_ttl_seconds: int = Field(default=900, alias="ATTENDANCE_TOKEN_TTL_SECONDS")
    token_retention_hours: int = Field(default=24, alias="TOKEN_RETENTION_HOURS")
    token_purge_interval_sec: int = Field(default=3600, alias="TOKEN_PURGE_INTERVAL_SEC")

    # QR rendering
    qr_default_size: int = Field(default=220, alias="QR_DEFAULT_SIZE")
    qr_max_version: int = Field(default=40, alias="QR_MAX_VERSION")
    qr_foreground: str = Field("#0f172a", alias="QR_FOREGROUND")
    qr_background: str = Field("white", alias="QR_BACKGROUND")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=30, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_attendance: str = Field("attendance.signed", alias="NATS_SUBJECT_ATTENDANCE")
    enable_nats_events: bool = Field(default=True, alias="ENABLE_NATS_EVENTS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    def attendance_url(self, token: str) -> str:
        """Short-form confirmation address encoded into the QR code."""
        path = f"/a/{token}"
        if self.public_app_url:
            return self.public_app_url.rstrip("/") + path
        return path

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
