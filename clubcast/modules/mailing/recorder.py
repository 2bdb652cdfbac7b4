"""
Campaign Recorder
=================

Append-only audit trail of dispatched campaigns. Rows are written once
and never updated; the only other write is deletion by the original
sender, which does not give any quota back.
"""

import logging
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from typing import Optional

from clubcast.core import Database, get_config_value
from .errors import CampaignNotFound, NotCampaignOwner
from .principal import AssociationAdmin, ClubAdmin
from .quota import period_start

logger = logging.getLogger(__name__)

CAMPAIGNS_SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS campaigns (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        principal_id TEXT NOT NULL,
        role TEXT NOT NULL,
        consent_basis TEXT NOT NULL,
        scope_kind TEXT NOT NULL,
        scope_id TEXT NOT NULL,
        association_id TEXT,
        sponsor_tier TEXT,
        recipient_count INTEGER NOT NULL,
        direct_count INTEGER NOT NULL DEFAULT 0,
        follower_count INTEGER NOT NULL DEFAULT 0,
        subject_preview TEXT NOT NULL DEFAULT '',
        message_preview TEXT NOT NULL DEFAULT '',
        sent_at TEXT NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_campaigns_principal_sent ON campaigns(principal_id, sent_at)',
    'CREATE INDEX IF NOT EXISTS idx_campaigns_scope ON campaigns(scope_kind, scope_id)',
    'CREATE INDEX IF NOT EXISTS idx_campaigns_association ON campaigns(association_id, sent_at)',
]

_COLUMNS = (
    'principal_id', 'role', 'consent_basis', 'scope_kind', 'scope_id', 'association_id',
    'sponsor_tier', 'recipient_count', 'direct_count', 'follower_count', 'subject_preview',
    'message_preview', 'sent_at',
)


@dataclass(frozen=True)
class Campaign:
    principal_id: str
    role: str
    consent_basis: str
    scope_kind: str
    scope_id: str
    recipient_count: int
    direct_count: int
    follower_count: int
    subject_preview: str
    message_preview: str
    sent_at: str
    sponsor_tier: Optional[str] = None
    association_id: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self):
        d = asdict(self)
        return {
            'id': d['id'],
            'principalId': d['principal_id'],
            'role': d['role'],
            'consentBasis': d['consent_basis'],
            'scopeKind': d['scope_kind'],
            'scopeId': d['scope_id'],
            'associationId': d['association_id'],
            'sponsorTier': d['sponsor_tier'],
            'recipientCount': d['recipient_count'],
            'directCount': d['direct_count'],
            'followerCount': d['follower_count'],
            'subjectPreview': d['subject_preview'],
            'messagePreview': d['message_preview'],
            'sentAt': d['sent_at'],
        }


def _row_to_campaign(row):
    return Campaign(**{key: row[key] for key in _COLUMNS + ('id',)})


class CampaignRecorder:
    """Persist, list and delete campaign records"""

    def __init__(self, db_path=None):
        self.db_path = db_path or get_config_value('MAILING_DB', 'mailing.db')
        Database.init_schema(self.db_path, CAMPAIGNS_SCHEMA)

    def persist(self, campaign):
        """Insert a new campaign and return its id. Existing rows are never rewritten."""
        if campaign.id is not None:
            raise ValueError(f'Campaign {campaign.id} is already recorded')

        values = [getattr(campaign, key) for key in _COLUMNS]
        with Database.session(self.db_path) as conn:
            cursor = conn.execute(
                f"INSERT INTO campaigns ({', '.join(_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
                values
            )
            campaign_id = cursor.lastrowid

        logger.info(f"Recorded campaign {campaign_id} for {campaign.principal_id} "
                    f"({campaign.recipient_count} recipients)")
        return campaign_id

    def get(self, campaign_id):
        with Database.session(self.db_path) as conn:
            row = conn.execute('SELECT * FROM campaigns WHERE id = ?', (campaign_id,)).fetchone()
            return _row_to_campaign(row) if row else None

    def list_for(self, principal):
        """
        Campaigns visible to a principal, newest first.

        Association admins see every campaign sent inside their association,
        club and sponsor campaigns included; club admins see their club's;
        sponsors only what they sent themselves.
        """
        if isinstance(principal, AssociationAdmin):
            where, params = 'association_id = ?', (principal.association_id,)
        elif isinstance(principal, ClubAdmin):
            where, params = 'scope_kind = ? AND scope_id = ?', ('club', principal.club_id)
        else:
            where, params = 'principal_id = ?', (principal.id,)

        with Database.session(self.db_path) as conn:
            rows = conn.execute(
                f'SELECT * FROM campaigns WHERE {where} ORDER BY sent_at DESC, id DESC',
                params
            ).fetchall()
            return [_row_to_campaign(row) for row in rows]

    def delete_for(self, campaign_id, requester):
        """Delete a campaign; only the principal who sent it may do so"""
        requester_id = getattr(requester, 'id', requester)

        with Database.session(self.db_path) as conn:
            row = conn.execute(
                'SELECT principal_id FROM campaigns WHERE id = ?', (campaign_id,)
            ).fetchone()
            if row is None:
                raise CampaignNotFound(f'Campaign {campaign_id} not found', campaign_id=campaign_id)
            if row['principal_id'] != requester_id:
                raise NotCampaignOwner(
                    'Only the sender of a campaign can delete it', campaign_id=campaign_id
                )
            conn.execute('DELETE FROM campaigns WHERE id = ?', (campaign_id,))

        logger.info(f"Campaign {campaign_id} deleted by {requester_id}")

    def stats_for(self, principal, now=None, months=6):
        """Dashboard figures over the campaigns visible to a principal"""
        campaigns = self.list_for(principal)
        month_start = period_start(now)
        tz = month_start.tzinfo

        def local_month(campaign):
            sent = datetime.fromisoformat(campaign.sent_at)
            if sent.tzinfo is None:
                sent = sent.replace(tzinfo=timezone.utc)
            return sent.astimezone(tz).strftime('%Y-%m')

        by_role = {}
        for campaign in campaigns:
            by_role[campaign.role] = by_role.get(campaign.role, 0) + 1

        month_keys = []
        year, month = month_start.year, month_start.month
        for _ in range(months):
            month_keys.append(f'{year:04d}-{month:02d}')
            month -= 1
            if month == 0:
                year, month = year - 1, 12
        month_keys.reverse()

        by_month = {key: {'month': key, 'count': 0, 'recipients': 0} for key in month_keys}
        for campaign in campaigns:
            bucket = by_month.get(local_month(campaign))
            if bucket is not None:
                bucket['count'] += 1
                bucket['recipients'] += campaign.recipient_count

        total_recipients = sum(c.recipient_count for c in campaigns)
        current_key = month_keys[-1]

        return {
            'totalCampaigns': len(campaigns),
            'totalRecipients': total_recipients,
            'campaignsThisMonth': by_month[current_key]['count'],
            'averageRecipients': round(total_recipients / len(campaigns)) if campaigns else 0,
            'byRole': by_role,
            'byMonth': [by_month[key] for key in month_keys],
        }


def stamp(campaign, campaign_id):
    """Copy of a campaign carrying its database id"""
    return replace(campaign, id=campaign_id)
