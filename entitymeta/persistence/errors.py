"""
Persistence Errors - Entity Metadata Failure Taxonomy

🚨 Uniform Failures Across Backends:
Every backend adapter and provider raises the same small set of errors so that
calling code can react to "not found" or "ambiguous" without knowing which
storage system is active. Each error carries an HTTP-like status.
"""

from typing import Any, Optional


class EntityMetadataError(Exception):
    """Base exception for entity metadata operations"""
    status: int = 500

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        if status is not None:
            self.status = status


class EntityNotFoundError(EntityMetadataError):
    """Raised when no record exists for the requested identifier"""
    status = 404


class AmbiguousEntityError(EntityMetadataError):
    """Raised when an identifier that should be unique matches several records"""
    status = 409


class EntityAlreadyExistsError(EntityMetadataError):
    """Raised when inserting a record whose identifier is already stored"""
    status = 409


class ConfigurationError(EntityMetadataError):
    """Raised when mappings, queries or backend settings are missing or inconsistent"""
    status = 500


class DataIntegrityError(EntityMetadataError):
    """Raised when stored columns cannot be decoded back into field values"""
    status = 500


class BackendError(EntityMetadataError):
    """Wraps a failure raised by the underlying storage library"""
    status = 502

    def __init__(self, message: str, entity_type: Any = None, operation: Optional[str] = None):
        super().__init__(message)
        self.entity_type = entity_type
        self.operation = operation


__all__ = [
    'EntityMetadataError',
    'EntityNotFoundError',
    'AmbiguousEntityError',
    'EntityAlreadyExistsError',
    'ConfigurationError',
    'DataIntegrityError',
    'BackendError',
]
