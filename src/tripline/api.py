"""Public API for tripline.

One function per command. Each takes an open RecordStore with an active
transaction (read-write for the mutating ones); opening the store and
committing or rolling back is the caller's job:

    with open_store() as store:
        with store.transaction(write=True):
            add_files(store, ["/etc"], "etc")
"""

import os
from pathlib import Path
from typing import List, Optional, Sequence, Union

from tripline._internal.crypto import DEFAULT_KDF_ITERATIONS
from tripline.config import Settings
from tripline.kernel.check_registry import (
    DEFAULT_DIR_CHECKS,
    DEFAULT_FILE_CHECKS,
    CheckRegistry,
)
from tripline.kernel.engine import AddResult, RecordEngine, VerifyReport
from tripline.kernel.record import Entry
from tripline.kernel.signature import SignatureEngine
from tripline.kernel.store import RecordStore


def open_store(path: Optional[Union[str, os.PathLike]] = None) -> RecordStore:
    """Open (or create) the database, by default at the configured location."""
    if path is None:
        path = Settings.from_env().db_path
    return RecordStore(Path(path))


def add_files(
    store: RecordStore,
    paths: Sequence[str],
    fileset: str,
    recursive: bool = True,
    overwrite: bool = False,
    skip: bool = False,
    file_checks: str = DEFAULT_FILE_CHECKS,
    dir_checks: str = DEFAULT_DIR_CHECKS,
    registry: Optional[CheckRegistry] = None,
) -> AddResult:
    """Record the baseline of files and directories into a fileset (created if absent)."""
    return RecordEngine(store, registry).add(
        paths, fileset, recursive=recursive, overwrite=overwrite, skip=skip,
        file_checks=file_checks, dir_checks=dir_checks,
    )


def delete_files(store: RecordStore, paths: Sequence[str], fileset: str) -> int:
    """Delete paths and everything recorded below them. Returns the number deleted."""
    return RecordEngine(store).delete(paths, fileset)


def verify_files(
    store: RecordStore,
    paths: Sequence[str],
    fileset: str,
    registry: Optional[CheckRegistry] = None,
) -> VerifyReport:
    """Verify paths (or the whole fileset when `paths` is empty).

    The number of failed checks is `report.failure_count`.
    """
    return RecordEngine(store, registry).verify(paths, fileset)


def list_records(store: RecordStore, fileset: str) -> List[Entry]:
    return RecordEngine(store).list_records(fileset)


def delete_fileset(store: RecordStore, fileset: str) -> None:
    RecordEngine(store).delete_fileset(fileset)


def copy_fileset(store: RecordStore, src: str, dst: str) -> None:
    RecordEngine(store).copy_fileset(src, dst)


def list_filesets(store: RecordStore) -> List[str]:
    return RecordEngine(store).list_filesets()


def sign_fileset(
    store: RecordStore,
    fileset: str,
    password: str,
    overwrite: bool = False,
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
) -> None:
    """Sign the current contents of a fileset with a password."""
    SignatureEngine(store, kdf_iterations).sign(fileset, password, overwrite=overwrite)


def verify_fileset_signature(store: RecordStore, fileset: str, password: str) -> None:
    """Raise a SignatureError unless the fileset matches its signature."""
    SignatureEngine(store).verify(fileset, password)
