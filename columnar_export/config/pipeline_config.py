"""Configuration management for columnar export runs.

Provides typed configuration classes that load values from environment
variables. Command line flags override whatever the environment provides.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from columnar_export.ingestion.models import Compression, OutputFormat, PaginationMode

_TRUE_VALUES = ("1", "true", "yes", "y", "on")


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class DatabaseConfig:
    """Source database connection configuration."""

    url: str = ""
    host: str = ""
    port: int = 3306
    user: str = ""
    password: str = ""
    database: str = ""
    driver: str = "mysql+mysqlconnector"

    def __post_init__(self):
        self.url = self.url or os.environ.get("DATABASE_URL", "")
        self.host = self.host or os.environ.get("MYSQL_HOST", "localhost")
        self.port = int(os.environ.get("MYSQL_PORT", str(self.port)))
        self.user = self.user or os.environ.get("MYSQL_USER", "root")
        self.password = self.password or os.environ.get("MYSQL_PASSWORD", "")
        self.database = self.database or os.environ.get("MYSQL_DATABASE", "")

    @property
    def connection_string(self) -> str:
        if self.url:
            return self.url
        return f"{self.driver}://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class ExportConfig:
    """Output and scheduling settings shared by every export unit."""

    output_dir: str = ""
    compression: str = ""
    output_format: str = ""
    chunk_size: int = 50000
    max_concurrency: int = 4
    overwrite: bool = True
    pagination: str = ""
    key_column: Optional[str] = None
    retries: int = 0

    def __post_init__(self):
        self.output_dir = self.output_dir or os.environ.get("EXPORT_OUTPUT_DIR", "./orc_output")
        self.compression = self.compression or os.environ.get("EXPORT_COMPRESSION", Compression.FAST.value)
        self.output_format = self.output_format or os.environ.get("EXPORT_FORMAT", OutputFormat.ORC.value)
        self.chunk_size = int(os.environ.get("EXPORT_CHUNK_SIZE", str(self.chunk_size)))
        self.max_concurrency = int(os.environ.get("EXPORT_MAX_CONCURRENCY", str(self.max_concurrency)))
        self.pagination = self.pagination or os.environ.get("EXPORT_PAGINATION", PaginationMode.AUTO.value)
        self.key_column = self.key_column or os.environ.get("EXPORT_KEY_COLUMN") or None


@dataclass
class CsvConfig:
    """Delimited file reading options."""

    delimiter: str = ""
    has_header: bool = True
    infer_schema: bool = True
    pattern: str = "*.csv"
    encoding: str = "utf-8"

    def __post_init__(self):
        self.delimiter = self.delimiter or os.environ.get("CSV_DELIMITER", ",")
        self.has_header = _env_bool("CSV_HAS_HEADER", self.has_header)
        self.infer_schema = _env_bool("CSV_INFER_SCHEMA", self.infer_schema)


@dataclass
class PipelineConfig:
    """Top-level configuration combining all sub-configs."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    csv: CsvConfig = field(default_factory=CsvConfig)
    log_level: str = ""

    def __post_init__(self):
        self.log_level = self.log_level or os.environ.get("EXPORT_LOG_LEVEL", "INFO")

    def validate(self) -> list:
        """Validate configuration parameters.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if not self.export.output_dir:
            errors.append("Output directory is required")
        if self.export.chunk_size < 1:
            errors.append("Chunk size must be a positive integer")
        if self.export.max_concurrency < 1:
            errors.append("Max concurrency must be a positive integer")
        if self.export.retries < 0:
            errors.append("Retries cannot be negative")
        try:
            Compression.from_name(self.export.compression)
        except ValueError as exc:
            errors.append(str(exc))
        try:
            OutputFormat(self.export.output_format.lower())
        except ValueError:
            errors.append(f"Unsupported output format '{self.export.output_format}'")
        try:
            PaginationMode(self.export.pagination.lower())
        except ValueError:
            errors.append(f"Unsupported pagination mode '{self.export.pagination}'")
        if not self.csv.delimiter:
            errors.append("CSV delimiter cannot be empty")

        return errors


def get_config() -> PipelineConfig:
    """Create and validate the pipeline configuration.

    Returns:
        Validated PipelineConfig instance.

    Raises:
        ValueError: If the configuration is invalid.
    """
    config = PipelineConfig()
    errors = config.validate()
    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")
    return config
