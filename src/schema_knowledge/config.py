"""
Configuration Management for the Schema Knowledge Engine
Uses Pydantic for validation and type safety
"""
from __future__ import annotations

import os
from enum import Enum
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .utils.errors import ConfigurationError

ENV_PREFIX = "SCHEMA_ENGINE_"


class LogLevel(str, Enum):
    """Log levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageBackend(str, Enum):
    """Snapshot storage backends"""
    MEMORY = "memory"
    FILE = "file"


class StorageFormat(str, Enum):
    """On-disk snapshot formats"""
    YAML = "yaml"
    JSON = "json"


class CompressionConfig(BaseModel):
    """Options for projecting a snapshot into a prompt-sized schema"""
    max_tables: int = Field(default=20, ge=1)
    max_columns_per_table: int = Field(default=20, ge=1)
    prioritize_referenced_tables: bool = True
    include_relationships: bool = True
    max_tokens: Optional[int] = Field(default=4000, ge=1)
    chars_per_token: int = Field(default=4, ge=1)
    column_reduction_factor: float = Field(default=0.7, gt=0.0, lt=1.0)
    min_relationships: int = Field(default=5, ge=0)


class LearningConfig(BaseModel):
    """Learning-from-query configuration"""
    max_sample_rows: int = Field(default=10, ge=1, le=1000)
    examples_per_inference: int = Field(default=5, ge=0, le=100)
    max_examples: int = Field(default=10, ge=0, le=100)


class ExtractionConfig(BaseModel):
    """Schema extraction and freshness configuration"""
    max_age_hours: float = Field(default=24.0, gt=0)
    include_column_descriptions: bool = True
    extract_relationships: bool = True
    tables_to_include: Optional[List[str]] = None
    # 1 keeps only tables_to_include; each level adds tables one foreign key away
    max_depth: int = Field(default=1, ge=1)
    include_sample_data: bool = False

    @property
    def max_age_seconds(self) -> float:
        return self.max_age_hours * 3600


class StorageConfig(BaseModel):
    """Snapshot persistence configuration"""
    backend: StorageBackend = StorageBackend.MEMORY
    directory: Optional[str] = None
    format: StorageFormat = StorageFormat.YAML


class EngineConfig(BaseModel):
    """Main engine configuration"""
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: LogLevel = LogLevel.INFO
    log_json: bool = False

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineConfig":
        """Create configuration from environment variables"""
        load_dotenv(dotenv_path)

        def env(key: str, default: Optional[str] = None) -> Optional[str]:
            return os.getenv(f"{ENV_PREFIX}{key}", default)

        try:
            compression = CompressionConfig(
                max_tables=int(env("MAX_TABLES", "20")),
                max_columns_per_table=int(env("MAX_COLUMNS_PER_TABLE", "20")),
                max_tokens=int(env("MAX_TOKENS", "4000")),
                include_relationships=env("INCLUDE_RELATIONSHIPS", "true").lower() == "true",
            )
            learning = LearningConfig(
                max_sample_rows=int(env("MAX_SAMPLE_ROWS", "10")),
                max_examples=int(env("MAX_EXAMPLES", "10")),
            )
            extraction = ExtractionConfig(
                max_age_hours=float(env("MAX_AGE_HOURS", "24")),
                max_depth=int(env("MAX_DEPTH", "1")),
                include_sample_data=env("INCLUDE_SAMPLE_DATA", "false").lower() == "true",
            )
            storage = StorageConfig(
                backend=StorageBackend(env("STORAGE_BACKEND", "memory")),
                directory=env("STORAGE_DIR"),
                format=StorageFormat(env("STORAGE_FORMAT", "yaml")),
            )
            return cls(
                compression=compression,
                learning=learning,
                extraction=extraction,
                storage=storage,
                log_level=LogLevel(env("LOG_LEVEL", "INFO").upper()),
                log_json=env("LOG_JSON", "false").lower() == "true",
            )
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid engine configuration: {e}",
                original_error=e,
            ) from e


_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def set_config(config: EngineConfig) -> None:
    """Set the global configuration instance"""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance"""
    global _config
    _config = None
