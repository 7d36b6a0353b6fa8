"""
Application Configuration
Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from typing import List
from pathlib import Path

# Anchored to the backend directory so the API server and the CLI share one
# database whatever their working directory
DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = f"sqlite:///{(DATA_DIR / 'pricey.db').as_posix()}"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    api_debug: bool = False
    cors_origins: List[str] = ["*"]

    # Scraper Configuration
    scraper_headless: bool = True
    scraper_max_retries: int = 2  # 3 attempts total, one per browser family
    scraper_navigation_timeout: float = 15.0  # seconds, first attempt
    scraper_navigation_timeout_step: float = 10.0  # added per attempt index
    scraper_human_delay_min: float = 4.0
    scraper_human_delay_max: float = 6.0
    scraper_verbose: bool = False

    # Retry Configuration (seconds)
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff_multiplier: float = 2.0
    retry_jitter: bool = True

    # Retailer Resolver
    retailer_cache_ttl: float = 300.0  # 5 minutes

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Paths
    @property
    def log_dir(self) -> Path:
        """Get the log directory path."""
        return Path(__file__).parent.parent.parent / "logs"

    @property
    def log_file(self) -> Path:
        """Get the log file path."""
        return self.log_dir / "pricey.log"

    @property
    def data_dir(self) -> Path:
        """Get the data directory path."""
        return DATA_DIR

    class Config:
        # Only load .env if it exists to avoid permission errors
        env_file = ".env" if Path(".env").exists() else None
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


# Global settings instance
settings = Settings()
