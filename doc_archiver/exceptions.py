"""
Custom exception hierarchy for the document archiver.

This module defines specific exception types so the pipeline can tell
per-file failures (which degrade) apart from capability failures (which
stop a sync before it starts).
"""


class ArchiverError(Exception):
    """Base exception for all archiver errors."""
    pass


class ExtractionError(ArchiverError):
    """Raised when file content cannot be read or parsed."""
    pass


class ClassificationError(ArchiverError):
    """Base class for classifier failures."""
    pass


class ClassificationTransportError(ClassificationError):
    """Raised when the external classifier call fails (network, auth, timeout)."""
    pass


class ClassificationParseError(ClassificationError):
    """Raised when the classifier response is not usable structured data."""
    pass


class UnsupportedCapabilityError(ArchiverError):
    """Raised when a root cannot be connected as a directory."""
    pass


class PersistenceError(ArchiverError):
    """Raised when the durable store cannot be read or written."""
    pass


class SyncInProgressError(ArchiverError):
    """Raised when a sync is requested while another batch is running."""
    pass
