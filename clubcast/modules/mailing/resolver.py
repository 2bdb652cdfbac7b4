"""
Recipient Resolver
==================

Turns a principal into the set of people it may email:

- AssociationAdmin: consenting members of the association
- ClubAdmin: consenting direct members of the club plus consenting followers
- SponsorPlacement (club): same union as ClubAdmin, gated on sponsor consent
- SponsorPlacement (association): consenting members of the association,
  all counted as direct

Each person appears once. Someone who is both a direct member and a
follower is reported as direct.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from .directory import ScopeCatalog, ConsentStore, SponsorDirectory
from .errors import InvalidPrincipal, ScopeNotFound
from .principal import (
    AssociationAdmin, ClubAdmin, SponsorPlacement, PlacementType, MembershipKind,
    consent_basis_for, validate_principal
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipientCandidate:
    person_id: str
    membership_kind: MembershipKind
    consent_granted: bool = True


@dataclass(frozen=True)
class RecipientSet:
    candidates: Tuple[RecipientCandidate, ...] = ()

    @property
    def total(self) -> int:
        return len(self.candidates)

    @property
    def direct_count(self) -> int:
        return sum(1 for c in self.candidates if c.membership_kind is MembershipKind.DIRECT)

    @property
    def follower_count(self) -> int:
        return sum(1 for c in self.candidates if c.membership_kind is MembershipKind.FOLLOWER)

    @property
    def person_ids(self):
        return [c.person_id for c in self.candidates]

    def to_dict(self):
        return {
            'total': self.total,
            'directCount': self.direct_count,
            'followerCount': self.follower_count,
        }


class RecipientResolver:
    """Resolve a principal to its deduplicated, consent-filtered audience"""

    def __init__(self, catalog=None, consent=None, sponsors=None, db_path=None):
        self.catalog = catalog or ScopeCatalog(db_path)
        self.consent = consent or ConsentStore(db_path)
        self.sponsors = sponsors or SponsorDirectory(db_path)

    def resolve(self, principal) -> RecipientSet:
        validate_principal(principal)
        basis = consent_basis_for(principal)

        if isinstance(principal, AssociationAdmin):
            recipients = self._association_audience(principal.association_id, basis)
        elif isinstance(principal, ClubAdmin):
            recipients = self._club_audience(principal.club_id, basis)
        elif isinstance(principal, SponsorPlacement):
            recipients = self._sponsor_audience(principal, basis)
        else:
            raise InvalidPrincipal(f'No resolution strategy for {type(principal).__name__}')

        logger.debug(f"Resolved {principal.role.value} {principal.id}: {recipients.to_dict()}")
        return recipients

    def _sponsor_audience(self, principal, basis):
        if self.sponsors.get(principal.sponsor_id) is None:
            raise ScopeNotFound(
                f'Sponsor placement {principal.sponsor_id} no longer exists',
                scope_kind='sponsor', scope_id=principal.sponsor_id,
            )
        if principal.placement_type is PlacementType.CLUB:
            return self._club_audience(principal.club_id, basis)
        return self._association_audience(principal.association_id, basis)

    def _association_audience(self, association_id, basis):
        members = self.catalog.direct_members('association', association_id)
        granted = self.consent.consenting(members, basis)
        return self._build(members, [], granted)

    def _club_audience(self, club_id, basis):
        members = self.catalog.direct_members('club', club_id)
        followers = self.catalog.followers(club_id)
        granted = self.consent.consenting(set(members) | set(followers), basis)
        return self._build(members, followers, granted)

    @staticmethod
    def _build(direct_ids, follower_ids, granted):
        seen = set()
        candidates = []
        for person_id in sorted(direct_ids):
            if person_id in granted and person_id not in seen:
                seen.add(person_id)
                candidates.append(RecipientCandidate(person_id, MembershipKind.DIRECT))
        for person_id in sorted(follower_ids):
            if person_id in granted and person_id not in seen:
                seen.add(person_id)
                candidates.append(RecipientCandidate(person_id, MembershipKind.FOLLOWER))
        return RecipientSet(tuple(candidates))
