# backend/pickbridge/core/settings.py
"""
pickbridge - Configuration Management with pydantic-settings

- Loads from environment and root .env
- Validates and normalizes values
- Cached singleton via get_settings()
"""
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Calculate path to .env in project root (4 levels up from this file)
# backend/pickbridge/core/settings.py -> <repo>/.env
_ENV_FILE = Path(__file__).resolve().parent.parent.parent.parent / ".env"

DEFAULT_AMBIGUOUS_QTY_PATTERNS = [
    "no quantities are reserved nor done",
    "you need to supply a lot/serial number",
    "set the quantities",
    "quantities to process",
]


class Settings(BaseSettings):
    """
    Application settings with validation.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Application Settings
    # ===================
    PROJECT_NAME: str = "pickbridge"
    VERSION: str = "0.3.0"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Deployment environment")

    # ===================
    # Database Settings
    # ===================
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: int = Field(default=5432, description="PostgreSQL port")
    DB_NAME: str = Field(default="pickbridge", description="Database name")
    DB_USER: str = Field(default="postgres", description="Database user")
    DB_PASSWORD: str = Field(default="postgres", description="Database password")
    DATABASE_URL: Optional[str] = Field(
        default=None, description="Full database URL (overrides DB_* settings)"
    )

    @property
    def database_url(self) -> str:
        """Build PostgreSQL database URL from components or use explicit URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # ===================
    # Odoo (JSON-RPC)
    # ===================
    ODOO_URL: str = Field(default="", description="Odoo base URL, without /jsonrpc")
    ODOO_DB: str = Field(default="", description="Odoo database name")
    ODOO_LOGIN: str = Field(default="", description="Odoo user login")
    ODOO_API_KEY: str = Field(default="", description="Odoo password or API key")
    ODOO_TIMEOUT_SECONDS: float = Field(default=30.0, description="Per-call timeout")

    @field_validator("ODOO_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    # ===================
    # Fulfillment Engine
    # ===================
    ODOO_AUTOCONFIRM_ON_PUSH: bool = Field(
        default=False, description="Confirm draft sale orders before pushing prepared quantities"
    )
    ODOO_CREATE_BACKORDER: bool = Field(
        default=True, description="Default backorder policy when a shipment is partial"
    )
    ODOO_AMBIGUOUS_QTY_PATTERNS: Annotated[List[str], NoDecode] = Field(
        default=DEFAULT_AMBIGUOUS_QTY_PATTERNS,
        description="Substrings of Odoo validation errors that trigger a forced backorder retry",
    )

    @field_validator("ODOO_AMBIGUOUS_QTY_PATTERNS", mode="before")
    @classmethod
    def parse_patterns(cls, v):
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    DEFAULT_LABEL_FORMAT: str = Field(default="PDF", description="PDF or ZPL")

    @field_validator("DEFAULT_LABEL_FORMAT")
    @classmethod
    def validate_label_format(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("PDF", "ZPL"):
            raise ValueError("DEFAULT_LABEL_FORMAT must be PDF or ZPL")
        return v

    SYNC_BATCH_LIMIT: int = Field(default=500, description="Default page size for batch imports")
    SYNC_DEFAULT_STATES: Annotated[List[str], NoDecode] = Field(
        default=["draft", "sent", "sale", "done"],
        description="sale.order states imported by default",
    )
    PICKING_DEFAULT_STATES: Annotated[List[str], NoDecode] = Field(
        default=["draft", "waiting", "confirmed", "assigned", "done", "cancel"],
        description="stock.picking states imported by default",
    )

    @field_validator("SYNC_DEFAULT_STATES", "PICKING_DEFAULT_STATES", mode="before")
    @classmethod
    def parse_states(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    # ===================
    # Logging
    # ===================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text
    LOG_FILE: Optional[str] = None

    @property
    def odoo_configured(self) -> bool:
        return bool(self.ODOO_URL and self.ODOO_DB and self.ODOO_LOGIN and self.ODOO_API_KEY)

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings loader (cached)."""
    return Settings()


settings = get_settings()
