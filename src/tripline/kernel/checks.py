"""Check plugins: one per recorded attribute.

A check captures a baseline value when a path is added (prepare_check) and
compares that value against the current state when the path is verified
(execute_check). Baselines come back from the store as plain JSON, possibly
hand-edited or tampered, so every check validates the stored value against
its declared shape first and reports DATA_CORRUPT instead of crashing.
"""

import grp
import hashlib
import os
import pwd
import re
import stat
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import StrictStr, TypeAdapter, ValidationError

from tripline.codes import FailureCode
from tripline.errors import CheckFailedError
from tripline.kernel.record import Ownership


class Check(ABC):
    """Base class for check plugins."""

    name: ClassVar[str]
    baseline_adapter: ClassVar[TypeAdapter] = TypeAdapter(StrictStr)

    def load_baseline(self, data: Any) -> Any:
        """Validate a stored baseline value against this check's shape.

        Raises:
            CheckFailedError: With DATA_CORRUPT if the value has the wrong shape.
        """
        try:
            return self.baseline_adapter.validate_python(data)
        except ValidationError:
            raise CheckFailedError("data corrupt", FailureCode.DATA_CORRUPT)

    @abstractmethod
    def prepare_check(self, path: str, st: os.stat_result) -> Any:
        """Capture the baseline value for `path` (JSON-compatible)."""

    @abstractmethod
    def execute_check(self, path: str, baseline: Any, st: os.stat_result) -> None:
        """Compare a stored baseline to the current state.

        Raises:
            CheckFailedError: If the path drifted or the baseline is corrupt.
        """


class NoCheck(Check):
    """Records nothing and always passes. Starting point for new checks."""

    name = "nocheck"
    baseline_adapter = TypeAdapter(Any)

    def prepare_check(self, path, st):
        return None

    def execute_check(self, path, baseline, st):
        return None


# Decimal int64 with an optional sign; no spaces or digit separators
_SIZE_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MAX = 2 ** 63 - 1


class SizeCheck(Check):
    name = "size"

    def prepare_check(self, path, st):
        # Kept as a string so large sizes survive any JSON reader.
        return str(st.st_size)

    def execute_check(self, path, baseline, st):
        recorded = self.load_baseline(baseline)
        if _SIZE_PATTERN.fullmatch(recorded) is None:
            raise CheckFailedError("size was not recorded", FailureCode.DATA_CORRUPT)
        recorded_size = int(recorded)
        if not -_INT64_MAX - 1 <= recorded_size <= _INT64_MAX:
            raise CheckFailedError("size was not recorded", FailureCode.DATA_CORRUPT)
        if recorded_size != st.st_size:
            raise CheckFailedError(f"expected {recorded_size} actual {st.st_size}")


_MTIME_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})\.(\d{9})Z$")
_MTIME_SECONDS_FORMAT = "%Y-%m-%dT%H:%M:%S"


def format_mtime(st: os.stat_result) -> str:
    """Format the modification time as UTC RFC 3339 with nanoseconds.

    Fixed width: the fraction always has nine digits, so two timestamps are
    equal exactly when their strings are.
    """
    seconds, nanos = divmod(st.st_mtime_ns, 1_000_000_000)
    stamp = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return f"{stamp.strftime(_MTIME_SECONDS_FORMAT)}.{nanos:09d}Z"


def _display_mtime(formatted: str) -> str:
    # Drop the fraction to keep failure messages short.
    match = _MTIME_PATTERN.match(formatted)
    return f"{match.group(1)}Z" if match else formatted


class ModTimeCheck(Check):
    name = "modtime"

    def prepare_check(self, path, st):
        return format_mtime(st)

    def execute_check(self, path, baseline, st):
        recorded = self.load_baseline(baseline)
        match = _MTIME_PATTERN.match(recorded)
        if match is None:
            raise CheckFailedError("modtime not recorded", FailureCode.DATA_CORRUPT)
        try:
            datetime.strptime(match.group(1), _MTIME_SECONDS_FORMAT)
        except ValueError:
            raise CheckFailedError("modtime not recorded", FailureCode.DATA_CORRUPT)

        actual = format_mtime(st)
        if actual != recorded:
            raise CheckFailedError(
                f"expected '{_display_mtime(recorded)}' actual '{_display_mtime(actual)}'"
            )


class OwnerCache:
    """Caches uid/gid to name lookups.

    Owned by one OwnershipCheck, so a rename of a user or group is picked up
    by the next engine instead of living for the whole process.
    Unresolvable ids fall back to their decimal form.
    """

    def __init__(self):
        self._users: Dict[int, str] = {}
        self._groups: Dict[int, str] = {}

    def user_name(self, uid: int) -> str:
        if uid not in self._users:
            try:
                self._users[uid] = pwd.getpwuid(uid).pw_name
            except KeyError:
                self._users[uid] = str(uid)
        return self._users[uid]

    def group_name(self, gid: int) -> str:
        if gid not in self._groups:
            try:
                self._groups[gid] = grp.getgrgid(gid).gr_name
            except KeyError:
                self._groups[gid] = str(gid)
        return self._groups[gid]

    def clear(self) -> None:
        self._users.clear()
        self._groups.clear()

    def __len__(self) -> int:
        return len(self._users) + len(self._groups)


class OwnershipCheck(Check):
    name = "ownership"
    baseline_adapter = TypeAdapter(Ownership)

    def __init__(self, cache: Optional[OwnerCache] = None):
        self.cache = cache if cache is not None else OwnerCache()

    def owner_of(self, st: os.stat_result) -> Ownership:
        return Ownership(
            user=self.cache.user_name(st.st_uid),
            group=self.cache.group_name(st.st_gid),
        )

    def prepare_check(self, path, st):
        return self.owner_of(st).model_dump(by_alias=True)

    def execute_check(self, path, baseline, st):
        expected = self.load_baseline(baseline)
        actual = self.owner_of(st)
        if expected != actual:
            raise CheckFailedError(f"expected {expected} actual {actual}")


class PermissionsCheck(Check):
    name = "permissions"

    def prepare_check(self, path, st):
        # Stored as text, e.g. "-rw-r--r--"
        return stat.filemode(st.st_mode)

    def execute_check(self, path, baseline, st):
        expected = self.load_baseline(baseline)
        actual = stat.filemode(st.st_mode)
        if expected != actual:
            raise CheckFailedError(f"expected {expected} actual {actual}")


_READ_CHUNK = 1024 * 1024


def sha256_of(path: str, st: os.stat_result) -> str:
    """Hex SHA-256 of a path's content.

    Symbolic links are not followed: their content is the link target.
    Special files (fifos, sockets, devices) have no readable content and
    hash as empty.
    """
    h = hashlib.sha256()
    if stat.S_ISLNK(st.st_mode):
        h.update(os.fsencode(os.readlink(path)))
    elif stat.S_ISREG(st.st_mode):
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
                h.update(chunk)
    return h.hexdigest()


class Sha256Check(Check):
    name = "sha256"

    def prepare_check(self, path, st):
        return sha256_of(path, st)

    def execute_check(self, path, baseline, st):
        expected = self.load_baseline(baseline)
        try:
            actual = sha256_of(path, st)
        except OSError as e:
            raise CheckFailedError(f"calculate sha256: {e.strerror or e}", FailureCode.IO_ERROR)
        if expected != actual:
            raise CheckFailedError(f"expected {expected} actual {actual}")


def list_children(path: str) -> List[str]:
    return sorted(os.listdir(path))


class ChildCheck(Check):
    """Directory membership: the names of the immediate children."""

    name = "child"
    baseline_adapter = TypeAdapter(List[StrictStr])

    def prepare_check(self, path, st):
        return list_children(path)

    def execute_check(self, path, baseline, st):
        expected = set(self.load_baseline(baseline))
        try:
            actual = set(list_children(path))
        except OSError as e:
            raise CheckFailedError(f"list children: {e.strerror or e}", FailureCode.IO_ERROR)

        problems = [f"new child {name!r}" for name in sorted(actual - expected)]
        problems.extend(f"removed child {name!r}" for name in sorted(expected - actual))
        if problems:
            raise CheckFailedError(",".join(problems))
