from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service
    service_port: int = 17010
    service_host: str = "0.0.0.0"  # nosec B104

    # CORS
    cors_origins: str = "http://localhost:17000"

    # Database
    database_url: str = "sqlite+aiosqlite:///./music.db"

    # App metadata
    app_name: str = "telegram-music-relay"
    app_version: str = "0.1.0"

    # Telegram
    telegram_bot_token: str = ""  # Empty = ingestion and streaming refuse to start
    telegram_channel_id: int | None = None
    telegram_api_base: str = "https://api.telegram.org"

    # Update poller
    poll_timeout_seconds: int = 30
    poll_retry_delay_seconds: float = 5.0

    # Range prober / historical scanner
    probe_start: int = 100
    scan_batch_size: int = 20
    scan_flush_threshold: int = 50
    scan_retry_attempts: int = 3
    scan_retry_delay_seconds: float = 1.0
    check_timeout_seconds: float = 15.0

    # Streaming proxy
    proxy_connect_timeout_seconds: float = 10.0
    proxy_read_timeout_seconds: float = 30.0
    stream_cache_max_age: int = 86400

    # Playback client
    stream_base_url: str = "http://localhost:17010"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
