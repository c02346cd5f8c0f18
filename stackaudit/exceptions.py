"""Custom exceptions for StackAudit.

Provides structured error handling with categorized exceptions
and standardized error response format.
"""

from typing import Optional, Dict, Any


class StackAuditException(Exception):
    """Base exception for all StackAudit errors.

    Provides structured error response format with:
    - error_code: Machine-readable error identifier
    - message: Human-readable error description
    - details: Optional additional context
    """

    error_code: str = "STACKAUDIT_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Return structured error response dict."""
        response = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response


# ============ Validation Errors (4xx) ============


class ValidationError(StackAuditException):
    """Input validation failed."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class DocumentTooLargeError(ValidationError):
    """Submitted document exceeds the accepted request size."""

    error_code = "DOCUMENT_TOO_LARGE"
    status_code = 413

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Document of {size} bytes exceeds limit of {limit} bytes", details={"size": size, "limit": limit}
        )


# ============ Catalog Errors ============


class CatalogParseError(StackAuditException):
    """A signature file is malformed. Fatal at startup."""

    error_code = "CATALOG_PARSE_ERROR"

    def __init__(self, source: str, reason: str):
        super().__init__(f"Invalid signature catalog {source}: {reason}", details={"source": source, "reason": reason})
        self.source = source
        self.reason = reason


# ============ Analyzer Errors ============


class AnalyzerError(StackAuditException):
    """Base class for AI analyzer failures.

    These never escape the adapter; they are folded into a failed
    AnalyzerResult so the pattern findings still get reported.
    """

    error_code = "ANALYZER_ERROR"
    status_code = 502
    # short label used by metrics and the report's analyzerError field
    kind: str = "error"


class AnalyzerTimeout(AnalyzerError):
    error_code = "ANALYZER_TIMEOUT"
    status_code = 504
    kind = "timeout"

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Analyzer did not answer within {timeout_seconds}s", details={"timeout_seconds": timeout_seconds}
        )


class AnalyzerProtocolError(AnalyzerError):
    """Response could not be parsed into the expected shape."""

    error_code = "ANALYZER_PROTOCOL_ERROR"
    kind = "protocol"


class AnalyzerQuotaError(AnalyzerError):
    """Missing credentials, rejected credentials or rate limited."""

    error_code = "ANALYZER_QUOTA_ERROR"
    status_code = 503
    kind = "quota"


class AnalyzerCancelled(AnalyzerError):
    """The call's cancel token fired (caller gave up or the deadline passed)."""

    error_code = "ANALYZER_CANCELLED"
    status_code = 499
    kind = "cancelled"

    def __init__(self, message: str = "Analyzer call cancelled"):
        super().__init__(message)


# ============ Engine Errors ============


class AnalysisCancelled(StackAuditException):
    """Caller withdrew interest before the analysis completed."""

    error_code = "ANALYSIS_CANCELLED"
    status_code = 499

    def __init__(self, stage: str = "unknown"):
        super().__init__(f"Analysis cancelled during {stage}", details={"stage": stage})
        self.stage = stage


# ============ Utility Functions ============


def error_response(exception: StackAuditException) -> tuple:
    """Create Flask JSON response from exception.

    Returns:
        Tuple of (response_dict, status_code) ready for jsonify
    """
    return exception.to_dict(), exception.status_code


def make_error_response(
    error_code: str, message: str, status_code: int = 500, details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create structured error response dict without exception.

    Useful for creating error responses directly in routes.
    """
    response = {
        "error": True,
        "error_code": error_code,
        "message": message,
    }
    if details:
        response["details"] = details
    return response
