"""Failure code constants for tripline verification.

These constants prevent stringly-typed failure reasons and let callers
tell a missing file from drifted content from a corrupt baseline.
"""

from enum import Enum


class FailureCode(str, Enum):
    """Verification failure codes."""

    # Built-in checks (run before any configured check)
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_MUTATION = "FILE_MUTATION"  # Recorded as a file, now a directory
    DIR_MUTATION = "DIR_MUTATION"  # Recorded as a directory, now a file

    # Configured checks
    CHECK_FAILED = "CHECK_FAILED"
    UNKNOWN_CHECK = "UNKNOWN_CHECK"
    DATA_CORRUPT = "DATA_CORRUPT"
    IO_ERROR = "IO_ERROR"
