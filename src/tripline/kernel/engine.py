"""Record engine: add, verify and delete paths in a fileset.

The engine walks the filesystem, asks the check registry for plugins and
talks to the record store. Verification never stops early: every entry and
every check is examined and each failing check is counted once, so a single
drifted file can contribute several failures.

Symbolic links are opaque leaves. Paths are examined with lstat, links are
never followed and never descended into, so the recursive walk cannot
cycle.
"""

import logging
import os
import stat
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from tripline.codes import FailureCode
from tripline.errors import (
    AddFileError,
    CheckFailedError,
    CheckPreparationError,
    CorruptRecordError,
    RecordExistsError,
)
from tripline.kernel.check_registry import (
    DEFAULT_DIR_CHECKS,
    DEFAULT_FILE_CHECKS,
    CheckRegistry,
    default_registry,
)
from tripline.kernel.record import BaselineRecord, Entry, display_path
from tripline.kernel.store import RecordStore, check_user_fileset

logger = logging.getLogger(__name__)

# Pseudo check name for the checks every entry gets (existence, kind)
BASIC_CHECK = "basic"


class AddResult(BaseModel):
    """Paths stored by add(), and paths left alone because they were present."""
    added: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)


class VerificationFailure(BaseModel):
    """One failed check on one entry."""
    path: str
    check: str
    code: FailureCode
    reason: str

    def __str__(self) -> str:
        return f"{display_path(self.path)}:{self.check}:{self.reason}"


class VerifyReport(BaseModel):
    """Outcome of a verify pass."""
    entries: int = 0  # Number of stored entries examined
    failures: List[VerificationFailure] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures


class RecordEngine:
    """Builds baselines, verifies them, and manages the fileset records."""

    def __init__(self, store: RecordStore, registry: Optional[CheckRegistry] = None):
        self.store = store
        self.registry = registry if registry is not None else default_registry()

    # add

    def add(
        self,
        paths: Sequence[str],
        fileset: str,
        recursive: bool = True,
        overwrite: bool = False,
        skip: bool = False,
        file_checks: str = DEFAULT_FILE_CHECKS,
        dir_checks: str = DEFAULT_DIR_CHECKS,
    ) -> AddResult:
        """Record the baseline of `paths` into `fileset`.

        The fileset name and both check lists are validated before any
        filesystem or store work. Directories are descended depth-first when
        `recursive` is set.

        Raises:
            ReservedFilesetError: Bad fileset name.
            UnknownCheckError: Unknown name in a check list.
            AddFileError: A path cannot be stated, or it is already recorded
                and neither `overwrite` nor `skip` is set.
            CheckPreparationError: A check could not capture its baseline.
        """
        check_user_fileset(fileset)
        parsed_file_checks = self.registry.parse_check_list(file_checks, is_dir=False)
        parsed_dir_checks = self.registry.parse_check_list(dir_checks, is_dir=True)

        result = AddResult()
        for path in paths:
            self._add_path(
                os.path.abspath(path), fileset, recursive, overwrite, skip,
                parsed_file_checks, parsed_dir_checks, result,
            )
        return result

    def _add_path(
        self,
        path: str,
        fileset: str,
        recursive: bool,
        overwrite: bool,
        skip: bool,
        file_checks: List[str],
        dir_checks: List[str],
        result: AddResult,
    ) -> None:
        try:
            st = os.lstat(path)
        except OSError as e:
            raise AddFileError(path, e)

        record = self.build_record(path, st, file_checks, dir_checks)
        try:
            self.store.add_record(path, record, fileset, overwrite=overwrite)
            result.added.append(path)
        except RecordExistsError as e:
            if not skip:
                raise AddFileError(path, e)
            logger.info("skip %s", display_path(path))
            result.skipped.append(path)

        if record.is_dir and recursive:
            try:
                children = sorted(os.listdir(path))
            except OSError as e:
                raise AddFileError(path, e)
            for child in children:
                self._add_path(
                    os.path.join(path, child), fileset, recursive, overwrite, skip,
                    file_checks, dir_checks, result,
                )

    def build_record(
        self,
        path: str,
        st: os.stat_result,
        file_checks: List[str],
        dir_checks: List[str],
    ) -> BaselineRecord:
        """Run every configured check's prepare step for one path."""
        is_dir = stat.S_ISDIR(st.st_mode)
        checks = dir_checks if is_dir else file_checks
        data = {}
        for name in checks:
            check = self.registry.get(name, is_dir)
            try:
                data[name] = check.prepare_check(path, st)
            except OSError as e:
                raise CheckPreparationError(path, name, e)
        return BaselineRecord(is_dir=is_dir, checks=list(checks), data=data)

    # verify

    def verify(self, paths: Sequence[str], fileset: str) -> VerifyReport:
        """Compare stored baselines with the current filesystem state.

        With no `paths`, every entry of the fileset is verified. Otherwise
        each path selects the entries whose key starts with its absolute
        form, i.e. the path and everything recorded below it.

        Raises:
            ReservedFilesetError: Bad fileset name.
            UnknownFilesetError: The fileset does not exist.
        """
        check_user_fileset(fileset)
        report = VerifyReport()
        if not paths:
            self._verify_prefix("", fileset, report)
        else:
            for path in paths:
                self._verify_prefix(os.path.abspath(path), fileset, report)
        return report

    def _verify_prefix(self, prefix: str, fileset: str, report: VerifyReport) -> None:
        items = self.store.query_raw(fileset, prefix)
        # A misspelled path matches nothing; the count makes that visible.
        if prefix:
            logger.info("%d entries with prefix %r", len(items), prefix)
        else:
            logger.info("%d entries", len(items))

        report.entries += len(items)
        for path, value in items:
            for failure in self.verify_entry(path, value):
                logger.warning("%s", failure)
                report.failures.append(failure)

    def verify_entry(self, path: str, value: bytes) -> List[VerificationFailure]:
        """All failures of one stored entry (empty when it is intact)."""
        try:
            record = BaselineRecord.from_json_bytes(path, value)
        except CorruptRecordError as e:
            return [VerificationFailure(
                path=path, check=BASIC_CHECK, code=FailureCode.DATA_CORRUPT, reason=str(e),
            )]

        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return [VerificationFailure(
                path=path, check=BASIC_CHECK, code=FailureCode.FILE_NOT_FOUND, reason="file not found",
            )]
        except OSError as e:
            return [VerificationFailure(
                path=path, check=BASIC_CHECK, code=FailureCode.IO_ERROR, reason=str(e),
            )]

        is_dir = stat.S_ISDIR(st.st_mode)
        if is_dir != record.is_dir:
            if is_dir:
                code, reason = FailureCode.FILE_MUTATION, "file mutation"
            else:
                code, reason = FailureCode.DIR_MUTATION, "dir mutation"
            return [VerificationFailure(path=path, check=BASIC_CHECK, code=code, reason=reason)]

        failures = []
        for name in record.checks:
            check = self.registry.get(name, record.is_dir)
            if check is None:
                failures.append(VerificationFailure(
                    path=path, check=name, code=FailureCode.UNKNOWN_CHECK, reason="unknown check",
                ))
                continue
            try:
                check.execute_check(path, record.data.get(name), st)
            except CheckFailedError as e:
                failures.append(VerificationFailure(path=path, check=name, code=e.code, reason=e.reason))
        return failures

    # delete / pass-throughs

    def delete(self, paths: Sequence[str], fileset: str) -> int:
        """Delete each path and everything recorded below it. Missing entries are ignored.

        Returns:
            Number of records deleted.
        """
        check_user_fileset(fileset)
        deleted = 0
        for path in paths:
            prefix = os.path.abspath(path)
            for key, _ in self.store.query_raw(fileset, prefix):
                self.store.delete_record(key, fileset, skip_missing=True)
                deleted += 1
        return deleted

    def list_records(self, fileset: str) -> List[Entry]:
        check_user_fileset(fileset)
        return self.store.list_records(fileset)

    def list_filesets(self) -> List[str]:
        return self.store.list_filesets()

    def delete_fileset(self, fileset: str) -> None:
        check_user_fileset(fileset)
        self.store.delete_fileset(fileset)

    def copy_fileset(self, src: str, dst: str) -> None:
        check_user_fileset(src)
        check_user_fileset(dst)
        self.store.copy_fileset(src, dst)
