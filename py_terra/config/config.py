from pathlib import Path
from typing import Optional

from dotenv import dotenv_values
from pydantic import Field
from pydantic_settings import BaseSettings

import os

# Explicitly load .env for local/dev environments only if values are missing from the environment
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_file = BASE_DIR / ".env"

if env_file.exists():
    file_env = dotenv_values(env_file)
    missing_keys = {k: v for k, v in file_env.items() if k not in os.environ and v is not None}
    for k, v in missing_keys.items():
        os.environ[k] = v


class Settings(BaseSettings):
    """Application settings pulled from environment variables."""

    # Database Configuration
    db_host: str = Field(default="localhost", description="Database host")
    db_port: int = Field(default=5432, description="Database port")
    db_name: str = Field(default="py_terra", description="Database name")
    db_user: str = Field(default="postgres", description="Database user")
    db_password: str = Field(default="password", description="Database password")
    database_url_override: Optional[str] = Field(
        default=None, description="Full SQLAlchemy URL, takes precedence over the db_* fields"
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")
    db_lock_timeout_ms: int = Field(
        default=5000, description="Row lock wait limit per run transaction (PostgreSQL only)"
    )

    @property
    def database_url(self) -> str:
        """Construct full database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    debug: bool = Field(default=False, description="Enable debug mode")
    allowed_origins: str = Field(default="*", description="CORS allowed origins, comma separated")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (json or console)")

    # Tile grid
    tile_precision: int = Field(default=7, ge=1, le=12, description="Geohash length of a tile id (~150m at 7)")
    tile_scan_step_deg: float = Field(
        default=0.0015, gt=0, description="Upper bound for the candidate scan step in degrees"
    )
    tile_scan_margin_deg: float = Field(
        default=0.002, ge=0, description="Margin added around a geometry's bounding box before scanning"
    )

    # Run ingest
    buffer_meters: float = Field(default=50.0, gt=0, description="Half-width of the claimed corridor")
    max_conflict_retries: int = Field(
        default=5, ge=0, description="Compare-and-swap retries per tile before giving up"
    )
    run_list_limit: int = Field(default=500, description="Max runs returned by listing endpoints")
    territory_list_limit: int = Field(default=2000, description="Max territories returned by listing endpoints")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Instantiate singleton settings object
settings = Settings()
