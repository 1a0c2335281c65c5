"""
Custom exception hierarchy for the backup auditor.

Per-file problems (FileHashError, FileOperationError) are recovered inside
the reconciliation loop. Everything else is fatal to the run and carries
enough type information for the CLI to choose an exit status.
"""


class BackupAuditorError(Exception):
    """Base exception for all backup auditor errors."""
    pass


class FileHashError(BackupAuditorError):
    """Raised when a file cannot be fully read for checksumming."""
    pass


class FileOperationError(BackupAuditorError):
    """Raised when a file copy fails."""
    pass


class StoreError(BackupAuditorError):
    """Raised when the index database cannot be reached or queried."""
    pass


class ConfigError(BackupAuditorError):
    """Raised when a root directory or the reference is missing or invalid."""
    pass


class ReportError(BackupAuditorError):
    """Raised when the report destination cannot be created."""
    pass
