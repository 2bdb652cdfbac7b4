"""
Clubcast Core
=============

Core utilities and shared functionality for Clubcast modules.
"""

from .config import Config, get_config_value
from .database import Database
from .logging_service import LoggingService, db_log

__all__ = ['Config', 'get_config_value', 'Database', 'LoggingService', 'db_log']
