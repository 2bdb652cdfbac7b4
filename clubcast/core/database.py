import os
import sqlite3
from contextlib import contextmanager


class Database:
    # Seconds a connection waits on a locked database before raising
    BUSY_TIMEOUT = 30

    @staticmethod
    def connect(path):
        conn = sqlite3.connect(path, timeout=Database.BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @staticmethod
    def ensure_parent_dir(path):
        """Create the directory holding a database file if needed"""
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    @staticmethod
    @contextmanager
    def session(path):
        """
        Open a connection, commit on success, roll back on error, always close.
        """
        conn = Database.connect(path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    @contextmanager
    def immediate(path):
        """
        Run a block inside BEGIN IMMEDIATE.

        The write lock is taken up front, so concurrent writers on the same
        file are serialised for the whole block instead of racing between a
        read and the following write.
        """
        conn = sqlite3.connect(path, timeout=Database.BUSY_TIMEOUT, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    @staticmethod
    def init_schema(path, statements):
        """Execute a list of CREATE TABLE / CREATE INDEX statements"""
        Database.ensure_parent_dir(path)
        with Database.session(path) as conn:
            for statement in statements:
                conn.execute(statement)
