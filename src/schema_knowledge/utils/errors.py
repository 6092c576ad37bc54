"""
Error Handling Module for the Schema Knowledge Engine
Defines the typed error taxonomy surfaced to callers of the engine
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime


class ErrorSeverity(str, Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification"""
    EXTRACTION = "extraction"
    PARSE = "parse"
    PERSISTENCE = "persistence"
    NOT_FOUND = "not_found"
    STATE = "state"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Additional context for errors"""
    database_id: Optional[str] = None
    table_name: Optional[str] = None
    column_name: Optional[str] = None
    operation: Optional[str] = None
    sql_query: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "database_id": self.database_id,
            "table_name": self.table_name,
            "column_name": self.column_name,
            "operation": self.operation,
            "sql_query": self.sql_query,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class SchemaEngineError(Exception):
    """Base exception for the schema knowledge engine"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        recoverable: bool = True,
        suggestions: Optional[List[str]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.recoverable = recoverable
        self.suggestions = suggestions or []
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
            "context": self.context.to_dict(),
            "original_error": str(self.original_error) if self.original_error else None,
        }

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.message}"


class ExtractionError(SchemaEngineError):
    """The extraction collaborator could not observe the schema"""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.EXTRACTION,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            recoverable=True,
            suggestions=[
                "Make sure the database browser page is open",
                "Retry extraction with force_refresh=True",
            ],
            original_error=original_error
        )


class ReferenceExtractionError(SchemaEngineError):
    """Heuristic SQL reference extraction failed"""

    def __init__(
        self,
        message: str,
        sql_query: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        if context and sql_query:
            context.sql_query = sql_query

        super().__init__(
            message=message,
            category=ErrorCategory.PARSE,
            severity=ErrorSeverity.LOW,
            context=context,
            recoverable=True,
            original_error=original_error
        )
        self.sql_query = sql_query


class TypeInferenceError(SchemaEngineError):
    """Sampled values could not be classified"""

    def __init__(
        self,
        message: str,
        column_name: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.PARSE,
            severity=ErrorSeverity.LOW,
            context=context,
            recoverable=True,
            original_error=original_error
        )
        self.column_name = column_name


class PersistenceError(SchemaEngineError):
    """Storage collaborator failure"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        suggestions = ["Retry the operation", "Check the snapshot storage backend"]
        if operation:
            suggestions.append(f"Review the '{operation}' storage operation")

        super().__init__(
            message=message,
            category=ErrorCategory.PERSISTENCE,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=True,
            suggestions=suggestions,
            original_error=original_error
        )
        self.operation = operation


class NotFoundError(SchemaEngineError):
    """A requested snapshot, table or column does not exist"""

    def __init__(
        self,
        message: str,
        entity_type: str = "entity",
        entity_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        suggestions = []
        if entity_id:
            suggestions.append(f"Check if {entity_type} '{entity_id}' exists")

        super().__init__(
            message=message,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.LOW,
            context=context,
            recoverable=True,
            suggestions=suggestions,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class SnapshotNotFoundError(NotFoundError):
    """No snapshot stored for a database id"""

    def __init__(self, database_id: str, context: Optional[ErrorContext] = None):
        super().__init__(
            message=f"Schema for database {database_id} not found",
            entity_type="snapshot",
            entity_id=database_id,
            context=context or ErrorContext(database_id=database_id),
        )
        self.database_id = database_id


class TableNotFoundError(NotFoundError):
    """No table with the given id or name in a snapshot"""

    def __init__(
        self,
        table: str,
        database_id: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=f"Table {table} not found" + (f" in database {database_id}" if database_id else ""),
            entity_type="table",
            entity_id=table,
            context=context or ErrorContext(database_id=database_id, table_name=table),
        )


class BuilderStateError(SchemaEngineError):
    """Operation attempted on a builder in the wrong lifecycle state"""

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            recoverable=True,
            suggestions=["Call initialize() before using the builder"],
        )
        self.state = state


class ConfigurationError(SchemaEngineError):
    """Configuration errors"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        original_error: Optional[Exception] = None
    ):
        suggestions = ["Review configuration settings"]
        if config_key:
            suggestions.append(f"Check configuration for key: {config_key}")

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            context=context,
            recoverable=False,
            suggestions=suggestions,
            original_error=original_error
        )
        self.config_key = config_key


def classify_storage_error(
    error: Exception,
    operation: str,
    database_id: Optional[str] = None,
) -> SchemaEngineError:
    """Wrap a raw storage backend error into a PersistenceError"""
    if isinstance(error, SchemaEngineError):
        return error

    return PersistenceError(
        message=f"Failed to {operation.replace('_', ' ')}: {error}",
        operation=operation,
        context=ErrorContext(database_id=database_id, operation=operation),
        original_error=error,
    )
