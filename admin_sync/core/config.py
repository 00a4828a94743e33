import os
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Настройки приложения
    PROJECT_NAME: str = "Studio Admin Sync"
    DEBUG: bool = False

    # Настройки базы данных
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "studio"

    @property
    def database_url(self) -> str:
        """Асинхронный URL для подключения к базе данных."""
        # Используем DATABASE_URL из env если задан, иначе строим из компонентов
        env_db_url = os.getenv("DATABASE_URL")
        if env_db_url:
            return env_db_url
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Административная система (получатель событий)
    ADMIN_SYNC_URL: str | None = Field(default=None)
    ADMIN_SYNC_SECRET: str | None = Field(default=None)
    ADMIN_SYNC_TIMEOUT_SECONDS: float = 10.0
    ALLOW_CRON: bool = False

    # Opportunistic flush on inbound requests
    OUTBOX_FLUSH_ENABLED: bool = True
    OUTBOX_FLUSH_INTERVAL_MS: int = 30_000
    OUTBOX_FLUSH_BATCH: int = 5

    # Scheduled drain
    OUTBOX_DRAIN_BATCH: int = 25
    OUTBOX_SCHEDULER_ENABLED: bool = True
    OUTBOX_POLL_SECONDS: int = 60
    OUTBOX_LOCK_TIMEOUT_SECONDS: int = 600
    SCHEDULER_TIMEZONE: str = "UTC"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def admin_sync_configured(self) -> bool:
        return bool(self.ADMIN_SYNC_URL and self.ADMIN_SYNC_SECRET)


settings = Settings()
