"""Record store: transactional key-value collections on top of SQLite.

One database file holds every fileset. Each fileset maps an absolute path
to the canonical JSON bytes of a BaselineRecord. Signatures live in their
own table (SignatureStore) and never share a namespace with user filesets.

Transaction discipline is enforced here, in process: at most one open
transaction per handle, every operation except close() needs one, and
mutations need a write transaction. Exclusion between processes is left to
SQLite's file locking (write transactions take the lock up front with
BEGIN IMMEDIATE).

Keys are stored as BLOBs holding the filesystem bytes of the path
(os.fsencode), so names that are not valid UTF-8 are kept exactly. BLOBs
compare with memcmp: iteration in key order is byte order, the order the
signature digest is defined over.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from tripline.errors import (
    FilesetExistsError,
    NestedTransactionError,
    PathNotFoundError,
    RecordExistsError,
    ReservedFilesetError,
    TransactionForbiddenError,
    TransactionRequiredError,
    UnknownFilesetError,
    WriteTransactionRequiredError,
)
from tripline.kernel.record import BaselineRecord, Entry

logger = logging.getLogger(__name__)

# Fileset names starting with this prefix are reserved for internal use.
RESERVED_PREFIX = "_"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS filesets (
    name TEXT PRIMARY KEY
) WITHOUT ROWID;
CREATE TABLE IF NOT EXISTS records (
    fileset TEXT NOT NULL,
    path BLOB NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (fileset, path)
) WITHOUT ROWID;
CREATE TABLE IF NOT EXISTS signatures (
    fileset TEXT PRIMARY KEY,
    signature BLOB NOT NULL
) WITHOUT ROWID;
"""


def is_reserved_fileset(name: str) -> bool:
    return name.startswith(RESERVED_PREFIX)


def check_user_fileset(name: str) -> str:
    """Reject empty or reserved names, and names that are not valid UTF-8.

    Command line arguments can carry undecodable bytes as surrogates.

    Raises:
        ReservedFilesetError: If `name` cannot be used as a user fileset.
    """
    if not name or is_reserved_fileset(name):
        raise ReservedFilesetError(name)
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        raise ReservedFilesetError(name, unencodable=True)
    return name


class RecordStore:
    """Transactional store of filesets in a single SQLite file."""

    def __init__(self, db_path: Union[str, os.PathLike]):
        self.db_path = Path(db_path)
        created = not self.db_path.exists()
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            str(self.db_path), isolation_level=None
        )
        if created:
            # Baselines can reveal file layout and ownership: owner only.
            os.chmod(self.db_path, 0o600)
        self._conn.executescript(_SCHEMA)
        # None: no transaction. True/False: write/read transaction open.
        self._write: Optional[bool] = None
        self.signatures = SignatureStore(self)
        logger.debug("opened store %s", self.db_path)

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._write is not None:
            self.rollback()
        self.close()

    # Transactions

    @property
    def in_transaction(self) -> bool:
        return self._write is not None

    @property
    def writable(self) -> bool:
        return bool(self._write)

    def begin(self, write: bool = False) -> None:
        """Open a read-only or read-write transaction.

        Raises:
            NestedTransactionError: If a transaction is already open.
        """
        if self._write is not None:
            raise NestedTransactionError()
        self._connection().execute("BEGIN IMMEDIATE" if write else "BEGIN")
        self._write = write

    def commit(self) -> None:
        """Commit the open transaction. The handle is free afterwards, even on failure."""
        self._require_transaction()
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise
        finally:
            self._write = None

    def rollback(self) -> None:
        """Discard the open transaction. The handle is free afterwards, even on failure."""
        self._require_transaction()
        try:
            self._conn.execute("ROLLBACK")
        finally:
            self._write = None

    @contextmanager
    def transaction(self, write: bool = False) -> Iterator["RecordStore"]:
        """Run a block in a transaction.

        A write transaction commits when the block succeeds; any exception
        rolls back and propagates. Read transactions always roll back.
        """
        self.begin(write)
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        if write:
            self.commit()
        else:
            self.rollback()

    def close(self) -> None:
        """Close the database.

        Raises:
            TransactionForbiddenError: If a transaction is still open.
        """
        if self._write is not None:
            raise TransactionForbiddenError()
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("store is closed")
        return self._conn

    def _require_transaction(self) -> sqlite3.Connection:
        if self._write is None:
            raise TransactionRequiredError()
        return self._connection()

    def _require_write(self) -> sqlite3.Connection:
        conn = self._require_transaction()
        if not self._write:
            raise WriteTransactionRequiredError()
        return conn

    # Filesets

    def fileset_exists(self, fileset: str) -> bool:
        conn = self._require_transaction()
        row = conn.execute("SELECT 1 FROM filesets WHERE name = ?", (fileset,)).fetchone()
        return row is not None

    def _require_fileset(self, fileset: str) -> sqlite3.Connection:
        if not self.fileset_exists(fileset):
            raise UnknownFilesetError(fileset)
        return self._conn

    def list_filesets(self) -> List[str]:
        """Names of all user filesets, sorted. Reserved names are never listed."""
        conn = self._require_transaction()
        rows = conn.execute("SELECT name FROM filesets ORDER BY name").fetchall()
        return [name for (name,) in rows if not is_reserved_fileset(name)]

    def delete_fileset(self, fileset: str) -> None:
        """Delete a fileset and every record in it."""
        conn = self._require_write()
        check_user_fileset(fileset)
        self._require_fileset(fileset)
        conn.execute("DELETE FROM records WHERE fileset = ?", (fileset,))
        conn.execute("DELETE FROM filesets WHERE name = ?", (fileset,))

    def copy_fileset(self, src: str, dst: str) -> None:
        """Copy every key/value pair of `src` into a new fileset `dst`.

        Values are copied byte for byte, records are not decoded.

        Raises:
            UnknownFilesetError: If `src` does not exist.
            FilesetExistsError: If `dst` already exists.
        """
        conn = self._require_write()
        check_user_fileset(src)
        check_user_fileset(dst)
        self._require_fileset(src)
        if self.fileset_exists(dst):
            raise FilesetExistsError(dst)
        conn.execute("INSERT INTO filesets (name) VALUES (?)", (dst,))
        conn.execute(
            "INSERT INTO records (fileset, path, value) "
            "SELECT ?, path, value FROM records WHERE fileset = ?",
            (dst, src),
        )

    # Records

    def has_record(self, path: str, fileset: str) -> bool:
        """Check whether `fileset` holds a record for `path`.

        Raises:
            UnknownFilesetError: If the fileset does not exist.
        """
        self._require_transaction()
        check_user_fileset(fileset)
        conn = self._require_fileset(fileset)
        row = conn.execute(
            "SELECT 1 FROM records WHERE fileset = ? AND path = ?", (fileset, os.fsencode(path))
        ).fetchone()
        return row is not None

    def add_record(self, path: str, record: BaselineRecord, fileset: str, overwrite: bool = False) -> None:
        """Store a record, creating the fileset if needed.

        Raises:
            RecordExistsError: If `path` is present and `overwrite` is false.
        """
        conn = self._require_write()
        check_user_fileset(fileset)
        value = record.to_json_bytes()
        conn.execute("INSERT OR IGNORE INTO filesets (name) VALUES (?)", (fileset,))
        exists = conn.execute(
            "SELECT 1 FROM records WHERE fileset = ? AND path = ?", (fileset, os.fsencode(path))
        ).fetchone()
        if exists is not None and not overwrite:
            raise RecordExistsError(path, fileset)
        conn.execute(
            "INSERT OR REPLACE INTO records (fileset, path, value) VALUES (?, ?, ?)",
            (fileset, os.fsencode(path), value),
        )

    def delete_record(self, path: str, fileset: str, skip_missing: bool = False) -> None:
        """Delete one record.

        With `skip_missing`, a missing record (or fileset) is not an error.

        Raises:
            UnknownFilesetError: If the fileset does not exist.
            PathNotFoundError: If the record does not exist.
        """
        conn = self._require_write()
        check_user_fileset(fileset)
        if not self.fileset_exists(fileset):
            if skip_missing:
                return
            raise UnknownFilesetError(fileset)
        cursor = conn.execute(
            "DELETE FROM records WHERE fileset = ? AND path = ?", (fileset, os.fsencode(path))
        )
        if cursor.rowcount == 0 and not skip_missing:
            raise PathNotFoundError(path, fileset)

    def query_raw(self, fileset: str, prefix: str = "") -> List[Tuple[str, bytes]]:
        """Raw (path, value bytes) pairs whose path starts with `prefix`, in key order.

        An empty prefix matches every record.

        Raises:
            UnknownFilesetError: If the fileset does not exist.
        """
        self._require_transaction()
        check_user_fileset(fileset)
        conn = self._require_fileset(fileset)
        key_prefix = os.fsencode(prefix)
        cursor = conn.execute(
            "SELECT path, value FROM records WHERE fileset = ? AND path >= ? ORDER BY path",
            (fileset, key_prefix),
        )
        result = []
        for key, value in cursor:
            # Keys sharing the prefix are contiguous in key order.
            if not key.startswith(key_prefix):
                break
            result.append((os.fsdecode(key), bytes(value)))
        return result

    def query_records(self, fileset: str, prefix: str) -> List[Entry]:
        """Decoded entries whose path starts with `prefix`, in key order.

        Raises:
            UnknownFilesetError: If the fileset does not exist.
            CorruptRecordError: If a stored value cannot be decoded.
        """
        return [
            Entry(path=path, record=BaselineRecord.from_json_bytes(path, value))
            for path, value in self.query_raw(fileset, prefix)
        ]

    def list_records(self, fileset: str) -> List[Entry]:
        return self.query_records(fileset, "")


class SignatureStore:
    """Per-fileset signature blobs, kept apart from user filesets.

    Shares the transaction of its RecordStore.
    """

    def __init__(self, store: RecordStore):
        self._store = store

    def get(self, fileset: str) -> Optional[bytes]:
        conn = self._store._require_transaction()
        row = conn.execute(
            "SELECT signature FROM signatures WHERE fileset = ?", (fileset,)
        ).fetchone()
        return bytes(row[0]) if row is not None else None

    def put(self, fileset: str, signature: bytes) -> None:
        conn = self._store._require_write()
        conn.execute(
            "INSERT OR REPLACE INTO signatures (fileset, signature) VALUES (?, ?)",
            (fileset, signature),
        )

    def delete(self, fileset: str) -> bool:
        conn = self._store._require_write()
        cursor = conn.execute("DELETE FROM signatures WHERE fileset = ?", (fileset,))
        return cursor.rowcount > 0

    def is_empty(self) -> bool:
        conn = self._store._require_transaction()
        return conn.execute("SELECT 1 FROM signatures LIMIT 1").fetchone() is None

    def names(self) -> List[str]:
        conn = self._store._require_transaction()
        return [name for (name,) in conn.execute("SELECT fileset FROM signatures ORDER BY fileset")]
