"""Exception hierarchy for tripline.

Four families, matching how callers react to them:

- UsageError: bad input detected before anything is touched.
- StoreError: transaction discipline violated (programming errors).
- DataError: record level problems, recoverable per caller policy.
- SignatureError: the stored baselines cannot be proven untampered.

CheckFailedError is not a failure of the operation; the engine catches it
and counts it as one failed check.
"""

from typing import Optional

from tripline.codes import FailureCode


class TriplineError(Exception):
    """Base class for all tripline errors."""
    pass


# Usage errors

class UsageError(TriplineError):
    pass


class ReservedFilesetError(UsageError):
    """Raised for fileset names in the internal namespace (or empty or undecodable names)."""

    def __init__(self, fileset: str, unencodable: bool = False):
        self.fileset = fileset
        if not fileset:
            message = "fileset name must not be empty"
        elif unencodable:
            message = f"fileset {fileset!r}: name must be valid UTF-8"
        else:
            message = f"fileset {fileset!r}: underscore prefix reserved for internal use"
        super().__init__(message)


class UnknownCheckError(UsageError):
    def __init__(self, check: str, is_dir: bool = False):
        self.check = check
        kind = "directory" if is_dir else "file"
        super().__init__(f"unknown {kind} check {check!r}")


# Store discipline errors

class StoreError(TriplineError):
    pass


class NestedTransactionError(StoreError):
    def __init__(self):
        super().__init__("nested transaction")


class TransactionRequiredError(StoreError):
    def __init__(self):
        super().__init__("transaction required")


class WriteTransactionRequiredError(StoreError):
    def __init__(self):
        super().__init__("write transaction required")


class TransactionForbiddenError(StoreError):
    def __init__(self):
        super().__init__("transaction forbidden")


# Data errors

class DataError(TriplineError):
    pass


class RecordExistsError(DataError):
    def __init__(self, path: str, fileset: str):
        self.path = path
        self.fileset = fileset
        super().__init__(f"record exists: {path!r} in fileset {fileset!r}")


class PathNotFoundError(DataError):
    def __init__(self, path: str, fileset: str):
        self.path = path
        self.fileset = fileset
        super().__init__(f"path {path!r} does not exist in fileset {fileset!r}")


class UnknownFilesetError(DataError):
    def __init__(self, fileset: str):
        self.fileset = fileset
        super().__init__(f"unknown fileset {fileset!r}")


class FilesetExistsError(DataError):
    def __init__(self, fileset: str):
        self.fileset = fileset
        super().__init__(f"fileset {fileset!r} already exists")


class CorruptRecordError(DataError):
    def __init__(self, path: str, detail: str):
        self.path = path
        super().__init__(f"corrupt record {path!r}: {detail}")


class AddFileError(DataError):
    """Raised when a path cannot be added; wraps the underlying cause."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"add file {path!r}: {cause}")


class CheckPreparationError(DataError):
    def __init__(self, path: str, check: str, cause: Exception):
        self.path = path
        self.check = check
        self.cause = cause
        super().__init__(f"file {path!r} check {check!r}: {cause}")


# Signature errors

class SignatureError(TriplineError):
    pass


class SignatureExistsError(SignatureError):
    def __init__(self, fileset: str):
        self.fileset = fileset
        super().__init__(f"fileset signature {fileset!r} exists")


class NoSignatureError(SignatureError):
    """No signature for the fileset.

    Deliberately covers both "never signed" and "signature removed": the
    store cannot tell the two apart.
    """

    def __init__(self, fileset: str, any_signatures: bool = True):
        self.fileset = fileset
        if any_signatures:
            message = f"no signature for fileset {fileset!r}, not added or tampered"
        else:
            message = "no signatures, none added or tampered"
        super().__init__(message)


class WrongPasswordError(SignatureError):
    def __init__(self, fileset: str, detail: Optional[str] = None):
        self.fileset = fileset
        message = f"fileset {fileset!r}: wrong password or tampered"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ContentsChangedError(SignatureError):
    def __init__(self, fileset: str):
        self.fileset = fileset
        super().__init__(f"fileset {fileset!r}: contents changed or tampered")


# Per-check verification failure

class CheckFailedError(TriplineError):
    """A single check did not pass. Counted by the engine, never fatal."""

    def __init__(self, reason: str, code: FailureCode = FailureCode.CHECK_FAILED):
        self.reason = reason
        self.code = code
        super().__init__(reason)
