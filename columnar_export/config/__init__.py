"""Configuration for export runs."""

from columnar_export.config.pipeline_config import CsvConfig, DatabaseConfig, ExportConfig, PipelineConfig, get_config

__all__ = [
    "CsvConfig",
    "DatabaseConfig",
    "ExportConfig",
    "PipelineConfig",
    "get_config",
]
