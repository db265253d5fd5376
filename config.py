"""RayScan Inspections — Configuration Management.

Strictly-typed configuration system using pydantic-settings.
All settings are loaded from environment variables with validation.

Sections:
    - LogSettings: log level and renderer
    - StoreSettings: record store backend and owner scoping
    - ImportSettings: spreadsheet header detection
    - ReportSettings: report payload constants
    - TemplateSettings: location of the report templates
    - ExtractionSettings: AI field-extraction provider
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogSettings(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: Log output format (json for production, text for development).
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    format: Literal["json", "text"] = Field(
        default="text",
        description="Log format (json for production)",
    )


class StoreSettings(BaseSettings):
    """Record store configuration.

    Attributes:
        backend: Which record store adapter to build.
        sqlite_path: Database file for the sqlite backend.
        owner_id: Owner scope for every stored entity.
    """

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: Literal["memory", "sqlite"] = Field(default="sqlite", description="Store backend")
    sqlite_path: str = Field(default="data/rayscan.db", description="SQLite database path")
    owner_id: str = Field(default="local", min_length=1, description="Owner scope")


class ImportSettings(BaseSettings):
    """Spreadsheet import configuration.

    Attributes:
        header_marker: Cell text identifying the header row.
        header_scan_rows: How many leading rows are searched for the marker.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    header_marker: str = Field(default="Inspection Number", description="Header row marker")
    header_scan_rows: int = Field(default=20, ge=1, le=500, description="Header scan window")


class ReportSettings(BaseSettings):
    """Report payload configuration.

    Attributes:
        inspector: Inspector tag stamped on every report.
        date_format: strftime format of the report date.
    """

    model_config = SettingsConfigDict(
        env_prefix="REPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    inspector: str = Field(default="RH", description="Inspector tag")
    date_format: str = Field(default="%m/%d/%Y", description="Report date format")


class TemplateSettings(BaseSettings):
    """Report template configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TEMPLATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    directory: str = Field(default="templates", description="Directory holding .docx templates")


class ExtractionSettings(BaseSettings):
    """AI field-extraction configuration.

    Attributes:
        api_key: Provider API key (SecretStr, optional; scans are refused without it).
        model: Vision-capable model name.
        base_url: Optional override for a compatible endpoint.
    """

    model_config = SettingsConfigDict(
        env_prefix="EXTRACTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: SecretStr | None = Field(default=None, description="Provider API key")
    model: str = Field(default="gpt-4o-mini", description="Model name")
    base_url: str | None = Field(default=None, description="Endpoint override")

    @field_validator("api_key", mode="before")
    @classmethod
    def blank_key_is_none(cls, v: str | None) -> str | None:
        """Treat an empty key as not configured."""
        if isinstance(v, str) and v.strip() == "":
            return None
        return v

    @property
    def configured(self) -> bool:
        return self.api_key is not None


class Settings(BaseSettings):
    """Root application settings aggregating all configuration sections.

    Use get_settings() to obtain a cached singleton instance.

    Example:
        >>> settings = get_settings()
        >>> settings.importer.header_marker
        'Inspection Number'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(default="RayScan Inspections", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )

    log: LogSettings = Field(default_factory=LogSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    importer: ImportSettings = Field(default_factory=ImportSettings)
    report: ReportSettings = Field(default_factory=ReportSettings)
    templates: TemplateSettings = Field(default_factory=TemplateSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Production must persist somewhere durable and log quietly."""
        if self.environment == "production":
            if self.store.backend == "memory":
                raise ValueError("The memory store is not allowed in production")
            if self.log.level == "DEBUG":
                raise ValueError("DEBUG log level is not allowed in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()
