"""Application configuration."""

import platform
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./data/nasbox.db"

    # Encryption of stored server passwords (validated at startup by EncryptionService)
    encryption_key: Optional[str] = None

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # Scheduling
    time_zone: str = "UTC"
    scheduler_enabled: bool = True

    # Local media
    media_root: str = "./media"
    device_label: str = platform.node() or "nasbox"

    # SMB transport
    smb_port: int = 445
    smb_connection_timeout_seconds: int = 30
    smb_transfer_timeout_seconds: int = 300

    # Discovery
    discovery_concurrency: int = 16
    discovery_probe_timeout_ms: int = 350
    discovery_hostnames: List[str] = [
        "samba.local",
        "nas.local",
        "fileserver.local",
        "storage.local",
        "homeserver.local",
    ]


settings = Settings()
