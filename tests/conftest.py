"""Pytest configuration for tests.

No sys.path hacks - tests should import from installed tripline package.
"""

import os
import sqlite3
from pathlib import Path

import pytest

from tripline.kernel.store import RecordStore

# Low iteration count keeps signing tests fast; the blob records it anyway.
TEST_KDF_ITERATIONS = 1000


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tripline.db"


@pytest.fixture
def store(db_path: Path):
    """An open store without a transaction. Left-over transactions are rolled back."""
    s = RecordStore(db_path)
    yield s
    if s.in_transaction:
        s.rollback()
    s.close()


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """A small directory tree:

        data/
          a.txt
          b.txt
          sub/
            c.txt
    """
    root = tmp_path / "data"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha\n")
    (root / "b.txt").write_bytes(b"bravo\n")
    (root / "sub" / "c.txt").write_bytes(b"charlie\n")
    return root


def tamper(db_path: Path, fileset: str, path: str, value: bytes) -> None:
    """Rewrite one stored value behind the store's back, like an attacker would."""
    conn = sqlite3.connect(str(db_path))
    try:
        with conn:
            cursor = conn.execute(
                "UPDATE records SET value = ? WHERE fileset = ? AND path = ?",
                (value, fileset, os.fsencode(path)),
            )
            assert cursor.rowcount == 1
    finally:
        conn.close()


def bump_mtime(path: Path, seconds: int = 10) -> None:
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))
