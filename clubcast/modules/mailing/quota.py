"""
Quota Ledger
============

Monthly campaign allowance for sponsor placements.

Each (principal, month) pair owns one row in quota_windows. A reservation
is a single conditional UPDATE inside a BEGIN IMMEDIATE transaction, so
concurrent requests for the same sender can never push ``used`` past the
tier limit. Rows from past months are kept for audit and never rewritten.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo

from clubcast.core import Database, get_config_value

logger = logging.getLogger(__name__)


class QuotaTier(str, Enum):
    PLATINUM = 'Platinum'
    GOLD = 'Gold'
    SILVER = 'Silver'
    BRONZE = 'Bronze'
    PARTNER = 'Partner'


TIER_LIMITS = {
    QuotaTier.PLATINUM: 4,
    QuotaTier.GOLD: 3,
    QuotaTier.SILVER: 2,
    QuotaTier.BRONZE: 1,
    QuotaTier.PARTNER: 1,
}

# Sponsor levels are also stored under their French names
TIER_ALIASES = {
    'platinum': QuotaTier.PLATINUM,
    'platine': QuotaTier.PLATINUM,
    'gold': QuotaTier.GOLD,
    'or': QuotaTier.GOLD,
    'silver': QuotaTier.SILVER,
    'argent': QuotaTier.SILVER,
    'bronze': QuotaTier.BRONZE,
    'partner': QuotaTier.PARTNER,
    'partenaire': QuotaTier.PARTNER,
}

QUOTA_SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS quota_windows (
        principal_id TEXT NOT NULL,
        period_start TEXT NOT NULL,
        used INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (principal_id, period_start)
    )
    ''',
]


def parse_tier(value):
    """QuotaTier for a stored level name, or None if it is not a known tier"""
    if isinstance(value, QuotaTier):
        return value
    if not isinstance(value, str):
        return None
    return TIER_ALIASES.get(value.strip().lower())


def limit_for(tier):
    """Monthly allowance for a tier; unknown tiers get 0"""
    parsed = parse_tier(tier)
    if parsed is None:
        return 0
    return TIER_LIMITS[parsed]


def localize(now=None, tz_name=None):
    """``now`` as an aware datetime in the quota time zone; naive values are read as local time"""
    tz = ZoneInfo(tz_name or get_config_value('QUOTA_TIMEZONE', 'UTC'))
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def period_start(now=None, tz_name=None):
    """First instant of the calendar month containing ``now`` in the quota time zone"""
    return localize(now, tz_name).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class ReservationResult:
    allowed: bool
    used: int
    limit: int
    remaining: int

    def to_dict(self):
        return asdict(self)


class QuotaLedger:
    """Per-sender monthly counters with an atomic check-and-reserve"""

    def __init__(self, db_path=None, tz_name=None):
        self.db_path = db_path or get_config_value('MAILING_DB', 'mailing.db')
        self.tz_name = tz_name or get_config_value('QUOTA_TIMEZONE', 'UTC')
        Database.init_schema(self.db_path, QUOTA_SCHEMA)

    def _period_key(self, now):
        return period_start(now, self.tz_name).isoformat()

    def reserve(self, principal_id, tier, now=None):
        """
        Consume one campaign from the sender's current window if any is left.

        Returns a ReservationResult; ``allowed`` is False when the window is
        already full. The counter is only ever incremented, never refunded.
        """
        limit = limit_for(tier)
        period = self._period_key(now)
        stamp = datetime.now().isoformat()

        with Database.immediate(self.db_path) as conn:
            conn.execute('''
                INSERT OR IGNORE INTO quota_windows (principal_id, period_start, used, created_at, updated_at)
                VALUES (?, ?, 0, ?, ?)
            ''', (principal_id, period, stamp, stamp))

            cursor = conn.execute('''
                UPDATE quota_windows
                SET used = used + 1, updated_at = ?
                WHERE principal_id = ? AND period_start = ? AND used < ?
            ''', (stamp, principal_id, period, limit))
            allowed = cursor.rowcount == 1

            row = conn.execute(
                'SELECT used FROM quota_windows WHERE principal_id = ? AND period_start = ?',
                (principal_id, period)
            ).fetchone()
            used = row['used']

        result = ReservationResult(allowed, used, limit, max(0, limit - used))
        if allowed:
            logger.info(f"Quota reserved for {principal_id} ({period}): {used}/{limit}")
        else:
            logger.info(f"Quota denied for {principal_id} ({period}): {used}/{limit}")
        return result

    def status(self, principal_id, tier, now=None):
        """Current window usage without reserving anything"""
        limit = limit_for(tier)
        period = self._period_key(now)
        with Database.session(self.db_path) as conn:
            row = conn.execute(
                'SELECT used FROM quota_windows WHERE principal_id = ? AND period_start = ?',
                (principal_id, period)
            ).fetchone()
        used = row['used'] if row else 0
        return ReservationResult(used < limit, used, limit, max(0, limit - used))

    def history(self, principal_id):
        """All windows for a sender, newest first"""
        with Database.session(self.db_path) as conn:
            rows = conn.execute('''
                SELECT principal_id, period_start, used, created_at, updated_at
                FROM quota_windows
                WHERE principal_id = ?
                ORDER BY period_start DESC
            ''', (principal_id,)).fetchall()
            return [dict(row) for row in rows]
