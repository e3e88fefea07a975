"""Custom exceptions for the tracker engine"""

from typing import Optional


class TrackerEngineError(Exception):
    """Base exception for all tracker engine errors"""
    pass


class ValidationError(TrackerEngineError):
    """Schema or input validation failed"""
    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class DuplicateKeyError(TrackerEngineError):
    """A unique key (row id, slug, alias) is already taken"""
    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.key = key


class NotFoundError(TrackerEngineError):
    """Tracker, row, alias or update does not exist"""
    def __init__(self, message: str, resource: str = None):
        super().__init__(message)
        self.resource = resource


class AuthorizationError(TrackerEngineError):
    """Caller is not authenticated or does not own the resource"""
    pass


class SizeLimitError(TrackerEngineError):
    """Request exceeds a configured size limit"""
    def __init__(self, message: str, limit: int = None):
        super().__init__(message)
        self.limit = limit


class MalformedInputError(TrackerEngineError):
    """Input that cannot be coerced or parsed"""
    pass


class VersionConflictError(TrackerEngineError):
    """Row changed since it was read"""
    def __init__(self, message: str, expected: int = None, actual: int = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class DatabaseError(TrackerEngineError):
    """Database operation error"""
    pass
