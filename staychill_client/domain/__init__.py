"""
Cross-cutting domain helpers: error classification and the error reporter.
"""

from .error_classification import ClassifiedError, ErrorKind, classify, truncate_message
from .error_reporter import NetworkErrorReporter, NetworkErrorState

__all__ = [
    "ClassifiedError",
    "ErrorKind",
    "classify",
    "truncate_message",
    "NetworkErrorReporter",
    "NetworkErrorState",
]
