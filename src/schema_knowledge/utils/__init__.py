"""
Utilities Package for the Schema Knowledge Engine
"""
from .logging import (
    setup_logging,
    get_logger,
    set_correlation_id,
    get_correlation_id,
    get_database_id,
    log_context,
    log_operation,
)

from .errors import (
    ErrorSeverity,
    ErrorCategory,
    ErrorContext,
    SchemaEngineError,
    ExtractionError,
    ReferenceExtractionError,
    TypeInferenceError,
    PersistenceError,
    NotFoundError,
    SnapshotNotFoundError,
    TableNotFoundError,
    BuilderStateError,
    ConfigurationError,
    classify_storage_error,
)

from .metrics import (
    MetricsCollector,
    get_metrics_collector,
    counter,
    gauge,
    histogram,
    timer,
    time_operation,
    SchemaEngineMetrics,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "get_database_id",
    "log_context",
    "log_operation",
    # Errors
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorContext",
    "SchemaEngineError",
    "ExtractionError",
    "ReferenceExtractionError",
    "TypeInferenceError",
    "PersistenceError",
    "NotFoundError",
    "SnapshotNotFoundError",
    "TableNotFoundError",
    "BuilderStateError",
    "ConfigurationError",
    "classify_storage_error",
    # Metrics
    "MetricsCollector",
    "get_metrics_collector",
    "counter",
    "gauge",
    "histogram",
    "timer",
    "time_operation",
    "SchemaEngineMetrics",
]
