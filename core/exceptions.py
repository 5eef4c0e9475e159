"""
Custom exceptions for the extraction service with structured error context.

Every exception carries a message, a context dict and the original
exception (if any), so failures can be logged and stored on the
extraction run without losing detail.

Exception Hierarchy:
    ExtractionServiceError (base)
    ├── CatalogError                  (startup-fatal)
    │   ├── DuplicateNameError
    │   ├── MalformedTemplateError
    │   └── SchemaValidationError
    ├── NotFoundError                 (caller error)
    ├── CatalogNotReadyError
    ├── WatermarkError
    │   ├── StaleWatermarkError
    │   └── WatermarkTypeError
    ├── SourceConnectionError         (retryable)
    ├── RecordMappingError            (non-retryable)
    ├── SinkError                     (retryable)
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ExtractionServiceError(Exception):
    """
    Base exception for all extraction-service errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (query name, values, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ExtractionServiceError):
    """
    Mixin for errors where the next trigger may succeed.

    Use this for transient errors like:
    - Connection pool exhaustion / checkout timeout
    - Source database unreachable
    - Sink unavailable or timing out
    """
    pass


class NonRetryableError(ExtractionServiceError):
    """
    Mixin for errors that will repeat until configuration or data changes.

    Use this for permanent errors like:
    - Malformed templates
    - Unknown change markers
    - Schema mismatches
    """
    pass


# ============================================================================
# Catalog Errors
# ============================================================================

class CatalogError(NonRetryableError):
    """
    Base exception for catalog load failures. Fatal at startup.

    Context should include:
        - query_name: Name of the offending template
    """
    pass


class DuplicateNameError(CatalogError):
    """Two definitions share the same query name."""
    pass


class MalformedTemplateError(CatalogError):
    """
    A template's declarations are inconsistent.

    Context should include:
        - query_name: Name of the template
        - undeclared: Placeholders without a declared parameter
        - unused: Declared parameters without a placeholder
    """
    pass


class SchemaValidationError(CatalogError):
    """
    The source rejected the dry-run prepare or lacks a referenced column.

    Context should include:
        - query_name: Name of the template
        - missing_columns: Referenced columns absent from the result
    """
    pass


# ============================================================================
# Lookup Errors
# ============================================================================

class NotFoundError(ExtractionServiceError):
    """Unknown query name or run id."""
    pass


class CatalogNotReadyError(ExtractionServiceError):
    """The catalog has not finished validating; nothing may run yet."""
    pass


# ============================================================================
# Watermark Errors
# ============================================================================

class WatermarkError(ExtractionServiceError):
    """
    Base exception for watermark store failures.

    Context should include:
        - query_name: Name of the query
        - stored_value: Currently stored watermark
        - new_value: Value that was being committed
    """
    pass


class StaleWatermarkError(WatermarkError):
    """A commit would move the watermark backwards."""
    pass


class WatermarkTypeError(WatermarkError):
    """Stored and committed values use different cursor types."""
    pass


# ============================================================================
# Run Errors
# ============================================================================

class SourceConnectionError(RetryableError):
    """
    The source database could not be reached or the pool timed out.

    Context should include:
        - query_name: Name of the query being run
        - pool_timeout: Configured checkout timeout
    """
    pass


class RecordMappingError(NonRetryableError):
    """
    A source row could not be mapped to an extracted record.

    Context should include:
        - query_name: Name of the query
        - column: Column that failed
        - value: Offending value
    """
    pass


class SinkError(RetryableError):
    """
    The sink did not acknowledge a batch.

    Context should include:
        - query_name: Name of the query
        - batch_size: Number of records in the batch
        - status_code: HTTP status code (HTTP sink only)
    """
    pass
