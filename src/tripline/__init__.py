"""tripline: file integrity baselines with tamper-evident filesets."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("tripline")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from tripline.api import (
    open_store,
    add_files,
    delete_files,
    verify_files,
    list_records,
    delete_fileset,
    copy_fileset,
    list_filesets,
    sign_fileset,
    verify_fileset_signature,
)
from tripline.codes import FailureCode
from tripline.errors import TriplineError

__all__ = [
    "__version__",
    "open_store",
    "add_files",
    "delete_files",
    "verify_files",
    "list_records",
    "delete_fileset",
    "copy_fileset",
    "list_filesets",
    "sign_fileset",
    "verify_fileset_signature",
    "FailureCode",
    "TriplineError",
]
