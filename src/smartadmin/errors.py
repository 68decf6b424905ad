"""
SmartAdmin error types.

There is no duplicate-write error: an insert whose message id already
exists is reported as ``False`` by the mirror.
"""

from typing import Any, Optional


class SmartAdminError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class InvalidInputError(SmartAdminError):
    def __init__(self, message: str, code: str = "invalid_input"):
        super().__init__(code, message)


class SourceUnavailableError(SmartAdminError):
    def __init__(self, source: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("source_unavailable", message, {"source": source, **(details or {})})
        self.source = source


class MalformedRecordError(SmartAdminError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("malformed_record", message, details)


class ConnectionError(SmartAdminError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)
