"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Built once per process and handed to every component by reference.
    Instances are frozen so a running lookup never sees configuration change.
    """

    # EPG sources
    epg_url: Optional[str] = None
    epg_url_backup: Optional[str] = None

    # Memory cache / fetch settings
    cache_ttl: int = 3600                                  # seconds
    fetch_timeout: int = 20000                             # milliseconds
    max_source_size_bytes: int = 150 * 1024 * 1024
    max_memory_cache_chars: int = 40 * 1024 * 1024         # ~80MB of text
    error_cooldown_ms: int = 2 * 60 * 1000
    memory_cache_capacity: int = 5

    # Persistent cache settings
    cache_enabled: bool = True
    cache_directory: Path = Path("./cache")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Display / logging
    display_timezone: str = "Asia/Shanghai"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        frozen = True

    @property
    def is_configured(self) -> bool:
        """True when a primary EPG source is set."""
        return bool(self.epg_url)

    @property
    def fetch_timeout_seconds(self) -> float:
        return self.fetch_timeout / 1000.0

    @property
    def error_cooldown_seconds(self) -> float:
        return self.error_cooldown_ms / 1000.0


settings = Settings()
