import os
import sqlite3
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from dotenv import load_dotenv

# Make sure .env is loaded before LIBRARY_DB_FILE is read below.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file. LIBRARY_DB_FILE overrides it; Library(db_file=...) overrides both.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE", "lending.db")


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database with rows addressable by column name."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block as one write transaction: commit on success, roll back on any error."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def create_tables(conn: sqlite3.Connection) -> None:
    """Create the lending tables if they don't exist."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            isbn TEXT,
            location TEXT,
            total_copies INTEGER NOT NULL CHECK(total_copies > 0),
            available_copies INTEGER NOT NULL
                CHECK(available_copies >= 0 AND available_copies <= total_copies),
            status TEXT NOT NULL,
            publication_date TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT,
            version INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS borrowers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT,
            version INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS loans (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL REFERENCES books(id),
            borrower_id TEXT NOT NULL REFERENCES borrowers(id),
            start TEXT NOT NULL,
            committed_end TEXT NOT NULL,
            status TEXT NOT NULL,
            returned_at TEXT,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT,
            version INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS penalties (
            id TEXT PRIMARY KEY,
            borrower_id TEXT NOT NULL REFERENCES borrowers(id),
            loan_id TEXT REFERENCES loans(id),
            amount TEXT NOT NULL,
            start TEXT NOT NULL,
            "end" TEXT NOT NULL,
            reason TEXT NOT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT,
            version INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_loans_borrower ON loans(borrower_id, status);
        CREATE INDEX IF NOT EXISTS idx_loans_book ON loans(book_id, status);
        CREATE INDEX IF NOT EXISTS idx_penalties_borrower ON penalties(borrower_id, active);
    """)


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database file, creating tables if needed."""
    conn = get_db_connection(db_file)
    try:
        create_tables(conn)
        logger.info(f"Database ready: {db_file or DATABASE_FILE}")
    finally:
        conn.close()
