# Core Module - SQLite helpers
#
# Vault metadata, encrypted records and sync handles share one SQLite file.
# Each call opens a short-lived connection: WAL mode, a busy timeout, and
# the parent directory created on first use.

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open a vault database connection with WAL mode and a busy timeout."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


@contextmanager
def transaction(
    db_path: Union[str, Path],
    lock: Optional[threading.Lock] = None,
) -> Iterator[sqlite3.Connection]:
    """
    Run a block in one transaction: commit on success, roll back on error.

    Writers pass their lock so whole-collection rewrites never interleave.
    """
    if lock is not None:
        lock.acquire()
    try:
        conn = connect(db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
    finally:
        if lock is not None:
            lock.release()
