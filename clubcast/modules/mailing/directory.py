"""
Mailing Directory
=================

Read access to the membership data the mailing engine depends on:

- ScopeCatalog: associations, clubs, direct members and club followers
- ConsentStore: per-person email consent flags, one per consent basis
- SponsorDirectory: sponsor placements and their tier

Tables live in MAILING_DB. The write helpers at the bottom exist for the
admin CRUD screens and for seeding; the engine itself only reads.
"""

import logging

from clubcast.core import Database, get_config_value
from .errors import ScopeNotFound
from .principal import (
    AssociationAdmin, ClubAdmin, SponsorPlacement, ConsentBasis
)

logger = logging.getLogger(__name__)

# Profile roles counted as direct club members
DIRECT_CLUB_ROLES = ('Member', 'ClubAdmin')
# Profile roles counted as club followers
FOLLOWER_ROLES = ('Supporter',)

CONSENT_COLUMNS = {
    ConsentBasis.ASSOCIATION: 'email_consent_association',
    ConsentBasis.CLUB: 'email_consent_clubs',
    ConsentBasis.SPONSOR: 'email_consent_sponsors',
}

# sqlite default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds
_CHUNK = 500

DIRECTORY_SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS associations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT ''
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS clubs (
        id TEXT PRIMARY KEY,
        association_id TEXT,
        name TEXT NOT NULL DEFAULT ''
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        email TEXT,
        first_name TEXT,
        last_name TEXT,
        role TEXT NOT NULL DEFAULT 'Member',
        association_id TEXT,
        club_id TEXT,
        email_consent_association BOOLEAN DEFAULT 0,
        email_consent_clubs BOOLEAN DEFAULT 0,
        email_consent_sponsors BOOLEAN DEFAULT 0
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS club_followers (
        user_id TEXT NOT NULL,
        club_id TEXT NOT NULL,
        PRIMARY KEY (user_id, club_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS sponsors (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        name TEXT NOT NULL DEFAULT '',
        level TEXT,
        club_id TEXT,
        association_id TEXT
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_profiles_association ON profiles(association_id)',
    'CREATE INDEX IF NOT EXISTS idx_profiles_club ON profiles(club_id)',
    'CREATE INDEX IF NOT EXISTS idx_club_followers_club ON club_followers(club_id)',
    'CREATE INDEX IF NOT EXISTS idx_sponsors_user ON sponsors(user_id)',
]


def get_db_path():
    """Get the mailing database path from config or environment"""
    return get_config_value('MAILING_DB', 'mailing.db')


def init_directory_db(db_path=None):
    """Create the directory tables in MAILING_DB"""
    Database.init_schema(db_path or get_db_path(), DIRECTORY_SCHEMA)


def normalize_role(role):
    """'Club Admin' and 'ClubAdmin' are the same role"""
    return ''.join((role or '').split())


def _chunks(items):
    items = list(items)
    for i in range(0, len(items), _CHUNK):
        yield items[i:i + _CHUNK]


def _placeholders(values):
    return ', '.join('?' for _ in values)


class ScopeCatalog:
    """Membership sets for associations and clubs"""

    def __init__(self, db_path=None):
        self.db_path = db_path or get_db_path()

    def _exists(self, conn, table, row_id):
        row = conn.execute(f'SELECT 1 FROM {table} WHERE id = ?', (row_id,)).fetchone()
        return row is not None

    def require(self, kind, scope_id):
        """Raise ScopeNotFound unless the association/club exists"""
        table = {'association': 'associations', 'club': 'clubs'}.get(kind)
        if table is None:
            raise ScopeNotFound(f'Unknown scope kind: {kind}', scope_kind=kind)
        with Database.session(self.db_path) as conn:
            if not self._exists(conn, table, scope_id):
                raise ScopeNotFound(
                    f'{kind.capitalize()} {scope_id} no longer exists',
                    scope_kind=kind, scope_id=scope_id,
                )

    def direct_members(self, kind, scope_id):
        """Person ids directly attached to an association or a club"""
        self.require(kind, scope_id)
        with Database.session(self.db_path) as conn:
            if kind == 'association':
                rows = conn.execute(
                    'SELECT id FROM profiles WHERE association_id = ? ORDER BY id',
                    (scope_id,)
                ).fetchall()
                return [row['id'] for row in rows]

            rows = conn.execute(
                'SELECT id, role FROM profiles WHERE club_id = ? ORDER BY id',
                (scope_id,)
            ).fetchall()
            return [row['id'] for row in rows if normalize_role(row['role']) in DIRECT_CLUB_ROLES]

    def followers(self, club_id):
        """Person ids following a club with a follower-type role"""
        self.require('club', club_id)
        with Database.session(self.db_path) as conn:
            rows = conn.execute('''
                SELECT p.id, p.role
                FROM club_followers f
                JOIN profiles p ON p.id = f.user_id
                WHERE f.club_id = ?
                ORDER BY p.id
            ''', (club_id,)).fetchall()
            return [row['id'] for row in rows if normalize_role(row['role']) in FOLLOWER_ROLES]

    def association_for(self, kind, scope_id):
        """Association an association/club scope belongs to (None for an unattached club)"""
        if kind == 'association':
            return scope_id
        with Database.session(self.db_path) as conn:
            row = conn.execute('SELECT association_id FROM clubs WHERE id = ?', (scope_id,)).fetchone()
            return row['association_id'] if row else None

    def email_addresses(self, person_ids):
        """Map person id -> email for the given people (missing emails are skipped)"""
        addresses = {}
        with Database.session(self.db_path) as conn:
            for chunk in _chunks(person_ids):
                rows = conn.execute(
                    f'SELECT id, email FROM profiles WHERE id IN ({_placeholders(chunk)})',
                    chunk
                ).fetchall()
                for row in rows:
                    if row['email']:
                        addresses[row['id']] = row['email']
        return addresses


class ConsentStore:
    """Read-only access to per-person consent flags"""

    def __init__(self, db_path=None):
        self.db_path = db_path or get_db_path()

    def get_consent(self, person_id, basis):
        column = CONSENT_COLUMNS[ConsentBasis(basis)]
        with Database.session(self.db_path) as conn:
            row = conn.execute(f'SELECT {column} FROM profiles WHERE id = ?', (person_id,)).fetchone()
            return bool(row and row[0])

    def consenting(self, person_ids, basis):
        """Subset of person_ids whose flag for this basis is true"""
        column = CONSENT_COLUMNS[ConsentBasis(basis)]
        granted = set()
        with Database.session(self.db_path) as conn:
            for chunk in _chunks(person_ids):
                rows = conn.execute(
                    f'SELECT id FROM profiles WHERE id IN ({_placeholders(chunk)}) AND {column} = 1',
                    chunk
                ).fetchall()
                granted.update(row['id'] for row in rows)
        return granted


class SponsorDirectory:
    """Sponsor placements and tier lookup"""

    def __init__(self, db_path=None):
        self.db_path = db_path or get_db_path()

    def get(self, sponsor_id):
        with Database.session(self.db_path) as conn:
            row = conn.execute('SELECT * FROM sponsors WHERE id = ?', (sponsor_id,)).fetchone()
            return dict(row) if row else None

    def for_user(self, user_id):
        with Database.session(self.db_path) as conn:
            row = conn.execute(
                'SELECT * FROM sponsors WHERE user_id = ? ORDER BY id LIMIT 1', (user_id,)
            ).fetchone()
            return dict(row) if row else None

    def tier_of(self, sponsor_id):
        """Raw placement level of a sponsor; raises ScopeNotFound if it is gone"""
        sponsor = self.get(sponsor_id)
        if sponsor is None:
            raise ScopeNotFound(
                f'Sponsor placement {sponsor_id} no longer exists',
                scope_kind='sponsor', scope_id=sponsor_id,
            )
        return sponsor['level']


def get_profile(user_id, db_path=None):
    with Database.session(db_path or get_db_path()) as conn:
        row = conn.execute('SELECT * FROM profiles WHERE id = ?', (user_id,)).fetchone()
        return dict(row) if row else None


def principal_for_user(user_id, db_path=None):
    """
    Build the sending principal for an authenticated user.

    Role and scope come from the stored profile (and sponsor placement),
    never from anything the client sent. Returns None for users who are
    not allowed to send campaigns.
    """
    profile = get_profile(user_id, db_path)
    if not profile:
        return None

    role = normalize_role(profile['role'])
    if role in ('SuperAdmin', 'AssociationAdmin'):
        return AssociationAdmin(id=profile['id'], association_id=profile['association_id'])
    if role == 'ClubAdmin':
        return ClubAdmin(
            id=profile['id'],
            club_id=profile['club_id'],
            association_id=profile['association_id'],
        )
    if role == 'Sponsor':
        sponsor = SponsorDirectory(db_path).for_user(user_id)
        if not sponsor:
            logger.info(f"User {user_id} has the Sponsor role but no sponsor placement")
            return None
        return SponsorPlacement(
            id=profile['id'],
            sponsor_id=sponsor['id'],
            tier=sponsor['level'],
            club_id=sponsor['club_id'],
            association_id=sponsor['association_id'],
        )
    return None


# ===================
# WRITE HELPERS
# ===================

def save_association(association_id, name='', db_path=None):
    with Database.session(db_path or get_db_path()) as conn:
        conn.execute(
            'INSERT OR REPLACE INTO associations (id, name) VALUES (?, ?)',
            (association_id, name)
        )


def save_club(club_id, association_id=None, name='', db_path=None):
    with Database.session(db_path or get_db_path()) as conn:
        conn.execute(
            'INSERT OR REPLACE INTO clubs (id, association_id, name) VALUES (?, ?, ?)',
            (club_id, association_id, name)
        )


def delete_club(club_id, db_path=None):
    with Database.session(db_path or get_db_path()) as conn:
        conn.execute('DELETE FROM club_followers WHERE club_id = ?', (club_id,))
        conn.execute('DELETE FROM clubs WHERE id = ?', (club_id,))


def save_profile(profile_id, email=None, role='Member', association_id=None, club_id=None,
                 consent_association=False, consent_clubs=False, consent_sponsors=False,
                 first_name=None, last_name=None, db_path=None):
    with Database.session(db_path or get_db_path()) as conn:
        conn.execute('''
            INSERT OR REPLACE INTO profiles
            (id, email, first_name, last_name, role, association_id, club_id,
             email_consent_association, email_consent_clubs, email_consent_sponsors)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            profile_id, email, first_name, last_name, role, association_id, club_id,
            bool(consent_association), bool(consent_clubs), bool(consent_sponsors)
        ))


def follow_club(user_id, club_id, db_path=None):
    with Database.session(db_path or get_db_path()) as conn:
        conn.execute(
            'INSERT OR IGNORE INTO club_followers (user_id, club_id) VALUES (?, ?)',
            (user_id, club_id)
        )


def save_sponsor(sponsor_id, user_id, level, club_id=None, association_id=None, name='', db_path=None):
    with Database.session(db_path or get_db_path()) as conn:
        conn.execute('''
            INSERT OR REPLACE INTO sponsors (id, user_id, name, level, club_id, association_id)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (sponsor_id, user_id, name, level, club_id, association_id))
