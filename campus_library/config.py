import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Storage settings
    # Empty means a per-process temp file, see database.default_store_path()
    data_file: Optional[str] = os.getenv("LIBRARY_DB_FILE")

    # Dashboard refresh (seconds); the mobile screens polled once a second
    refresh_interval: float = float(os.getenv("REFRESH_INTERVAL", "1.0"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Campus Library Ledger")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")


settings = Settings()
