"""
spacesync Centralized Error Handling

Records failures from the window manager backends, the synchronizer and the
HTTP surface. Failures here are never fatal: each one is logged, counted and
kept in a bounded in-memory log. Nothing is retried automatically.
"""

import time
import logging
import secrets
import threading
import traceback
import functools
from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass, asdict
from enum import Enum
from datetime import datetime
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    BACKEND_ABSENT = "backend_absent"
    QUERY_FAILURE = "query_failure"
    CHANNEL_SETUP_FAILURE = "channel_setup_failure"
    COMMAND_FAILURE = "command_failure"
    API = "api"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorDetails:
    """Detailed error information"""
    error_id: str
    timestamp: float
    category: ErrorCategory
    severity: ErrorSeverity
    component: str
    function: str
    message: str
    details: Dict[str, Any]
    stack_trace: Optional[str] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        data = asdict(self)
        data['category'] = self.category.value
        data['severity'] = self.severity.value
        data['timestamp_iso'] = datetime.fromtimestamp(self.timestamp).isoformat()
        return data


class ErrorHandler:
    """Centralized error recording"""

    def __init__(self, max_log_size: int = 1000):
        self.error_log: List[ErrorDetails] = []
        self.max_log_size = max_log_size
        self.error_counts: Dict[str, int] = {}
        self._lock = threading.Lock()
        logger.info("Error handler initialized")

    def handle_error(self, error: Exception, component: str, function: str,
                     category: ErrorCategory = ErrorCategory.UNKNOWN,
                     severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                     request_id: str = None,
                     additional_details: Dict[str, Any] = None) -> ErrorDetails:
        """Log and record an error"""
        details = dict(additional_details or {})
        if getattr(error, 'error_code', None):
            details.setdefault('error_code', error.error_code)

        stack_trace = None
        if error.__traceback__ is not None:
            stack_trace = ''.join(traceback.format_exception(type(error), error, error.__traceback__))

        error_details = ErrorDetails(
            error_id=secrets.token_urlsafe(16),
            timestamp=time.time(),
            category=category,
            severity=severity,
            component=component,
            function=function,
            message=str(error),
            details=details,
            stack_trace=stack_trace,
            request_id=request_id
        )

        self._log_error(error_details)

        with self._lock:
            key = f"{category.value}:{component}"
            self.error_counts[key] = self.error_counts.get(key, 0) + 1

            self.error_log.append(error_details)
            if len(self.error_log) > self.max_log_size:
                self.error_log = self.error_log[-self.max_log_size:]

        return error_details

    def _log_error(self, error_details: ErrorDetails):
        """Log error with appropriate level"""
        log_message = (f"[{error_details.error_id}] {error_details.category.value} "
                       f"{error_details.component}.{error_details.function}: {error_details.message}")

        if error_details.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message)
        elif error_details.severity == ErrorSeverity.HIGH:
            logger.error(log_message)
        elif error_details.severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message)
        else:
            logger.info(log_message)

        if error_details.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]:
            if error_details.stack_trace:
                logger.debug(f"Stack trace for {error_details.error_id}:\n{error_details.stack_trace}")

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics"""
        with self._lock:
            errors = list(self.error_log)
            error_counts = dict(self.error_counts)

        category_counts = {}
        severity_counts = {}
        component_counts = {}
        recent_errors = 0
        recent_cutoff = time.time() - 3600  # Last hour

        for error in errors:
            category_counts[error.category.value] = category_counts.get(error.category.value, 0) + 1
            severity_counts[error.severity.value] = severity_counts.get(error.severity.value, 0) + 1
            component_counts[error.component] = component_counts.get(error.component, 0) + 1
            if error.timestamp > recent_cutoff:
                recent_errors += 1

        return {
            'total_errors': len(errors),
            'recent_errors': recent_errors,
            'category_counts': category_counts,
            'severity_counts': severity_counts,
            'component_counts': component_counts,
            'error_counts': error_counts
        }

    def get_recent_errors(self, limit: int = 50,
                          category: ErrorCategory = None) -> List[ErrorDetails]:
        """Get recent errors, newest first"""
        with self._lock:
            errors = list(self.error_log)
        if category is not None:
            errors = [e for e in errors if e.category == category]
        return sorted(errors, key=lambda x: x.timestamp, reverse=True)[:limit]

    def clear_error_log(self) -> int:
        """Clear error log and return count of cleared errors"""
        with self._lock:
            count = len(self.error_log)
            self.error_log.clear()
            self.error_counts.clear()
        logger.info(f"Cleared {count} errors from log")
        return count


def error_handler_decorator(component: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                            severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                            reraise: bool = True):
    """Decorator for automatic error handling"""
    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                get_error_handler().handle_error(
                    error=e,
                    component=component,
                    function=func.__name__,
                    category=category,
                    severity=severity
                )
                if reraise:
                    raise
                return None

        return wrapper
    return decorator


def api_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI handler for exceptions escaping the route functions"""
    severity = ErrorSeverity.HIGH
    status_code = 500
    message = "Internal server error"
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        message = exc.detail
        severity = ErrorSeverity.HIGH if exc.status_code >= 500 else ErrorSeverity.LOW

    error_details = get_error_handler().handle_error(
        error=exc,
        component="api",
        function=request.url.path,
        category=ErrorCategory.API,
        severity=severity,
        request_id=request.headers.get('x-request-id')
    )

    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "error_id": error_details.error_id,
            "timestamp": error_details.timestamp
        }
    )


# Global error handler instance
_error_handler = None


def get_error_handler() -> ErrorHandler:
    """Get global error handler instance"""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler


class ErrorContext:
    """Context manager for handling errors in code blocks"""

    def __init__(self, component: str, function: str,
                 category: ErrorCategory = ErrorCategory.UNKNOWN,
                 severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                 reraise: bool = True,
                 additional_details: Dict[str, Any] = None):
        self.component = component
        self.function = function
        self.category = category
        self.severity = severity
        self.reraise = reraise
        self.additional_details = additional_details
        self.error_details = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, Exception):
            self.error_details = get_error_handler().handle_error(
                error=exc_val,
                component=self.component,
                function=self.function,
                category=self.category,
                severity=self.severity,
                additional_details=self.additional_details
            )

            if not self.reraise:
                return True  # Suppress the exception

        return False
