"""
Centralized logging service for Clubcast.
Provides structured logging with database storage and easy integration.
"""

import json
import logging
import traceback
from datetime import datetime
from flask import request, has_request_context
from .database import Database
from .config import get_config_value

console = logging.getLogger(__name__)


class LoggingService:
    """Centralized logging service for application-wide logging"""

    @staticmethod
    def _db_path():
        return get_config_value('ANALYTICS_DB')

    @staticmethod
    def _ensure_logs_table():
        """Ensure the app_logs table exists"""
        try:
            Database.init_schema(LoggingService._db_path(), [
                """
                CREATE TABLE IF NOT EXISTS app_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    source TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details TEXT,
                    ip_address TEXT,
                    request_path TEXT,
                    user_id TEXT
                )
                """,
                "CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON app_logs(timestamp DESC)",
                "CREATE INDEX IF NOT EXISTS idx_logs_source ON app_logs(source)",
            ])
        except Exception as e:
            console.warning(f"Failed to ensure logs table: {e}")

    @staticmethod
    def _get_request_context():
        """Extract request context information"""
        if not has_request_context():
            return None, None

        try:
            ip_address = request.headers.get('X-Forwarded-For', request.remote_addr)
            if ip_address and ',' in ip_address:
                ip_address = ip_address.split(',')[0].strip()
            return ip_address, request.path
        except Exception:
            return None, None

    @staticmethod
    def log(level, source, message, details=None, user_id=None):
        """
        Log a message to the database

        Args:
            level (str): Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            source (str): Source component (mailing, quota, email, etc.)
            message (str): Main log message
            details (str/dict): Additional details (will be JSON-encoded if dict)
            user_id (str): Optional user identifier
        """
        try:
            LoggingService._ensure_logs_table()
            ip_address, request_path = LoggingService._get_request_context()

            if isinstance(details, dict):
                details = json.dumps(details, indent=2, default=str)

            timestamp = datetime.now().isoformat()

            with Database.session(LoggingService._db_path()) as conn:
                conn.execute("""
                    INSERT INTO app_logs
                    (timestamp, level, source, message, details, ip_address, request_path, user_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    timestamp, level.upper(), source, message, details,
                    ip_address, request_path, user_id
                ))

        except Exception as e:
            # Fallback to console logging if database fails
            level_no = logging.getLevelName(level.upper())
            if not isinstance(level_no, int):
                level_no = logging.INFO
            console.log(level_no, f"[{source}] {message} {details or ''}")
            console.warning(f"Logging service error: {e}")

    @staticmethod
    def error(source, message, details=None, user_id=None):
        """Log error message"""
        LoggingService.log('ERROR', source, message, details, user_id)

    @staticmethod
    def log_error_with_traceback(source, error, details=None, user_id=None):
        """Log error with full traceback"""
        error_details = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc()
        }
        if details:
            error_details['additional_details'] = details

        LoggingService.error(source, f"Exception occurred: {type(error).__name__}", error_details, user_id)

    @staticmethod
    def recent(source=None, level=None, limit=50):
        """Return the newest log rows, optionally filtered by source and level"""
        try:
            LoggingService._ensure_logs_table()
            clauses, params = [], []
            if source:
                clauses.append("source = ?")
                params.append(source)
            if level:
                clauses.append("level = ?")
                params.append(level.upper())
            where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
            params.append(limit)

            with Database.session(LoggingService._db_path()) as conn:
                rows = conn.execute(
                    f"SELECT * FROM app_logs {where} ORDER BY id DESC LIMIT ?", params
                ).fetchall()
                return [dict(row) for row in rows]
        except Exception as e:
            console.error(f"Failed to read logs: {e}")
            return []


def db_log(level, source, message, details=None, user_id=None):
    """Write to the persistent app_logs table; never raises"""
    LoggingService.log(level, source, message, details, user_id)
