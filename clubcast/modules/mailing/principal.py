"""
Principals
==========

The sending authority behind a campaign. There are exactly three kinds,
each a frozen dataclass; the consent basis is a fixed function of the kind
and is never taken from request input.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import InvalidPrincipal


class Role(str, Enum):
    ASSOCIATION_ADMIN = 'AssociationAdmin'
    CLUB_ADMIN = 'ClubAdmin'
    SPONSOR_PLACEMENT = 'SponsorPlacement'


class PlacementType(str, Enum):
    CLUB = 'club'
    ASSOCIATION = 'association'


class ConsentBasis(str, Enum):
    ASSOCIATION = 'AssociationConsent'
    CLUB = 'ClubConsent'
    SPONSOR = 'SponsorConsent'


class MembershipKind(str, Enum):
    DIRECT = 'DirectMember'
    FOLLOWER = 'Follower'


@dataclass(frozen=True)
class AssociationAdmin:
    id: str
    association_id: str

    role = Role.ASSOCIATION_ADMIN

    @property
    def scope(self):
        return ('association', self.association_id)


@dataclass(frozen=True)
class ClubAdmin:
    id: str
    club_id: str
    association_id: Optional[str] = None

    role = Role.CLUB_ADMIN

    @property
    def scope(self):
        return ('club', self.club_id)


@dataclass(frozen=True)
class SponsorPlacement:
    id: str
    sponsor_id: str
    tier: Optional[str]
    club_id: Optional[str] = None
    association_id: Optional[str] = None

    role = Role.SPONSOR_PLACEMENT

    @property
    def placement_type(self):
        """club or association; raises InvalidPrincipal unless exactly one id is set"""
        if bool(self.club_id) == bool(self.association_id):
            raise InvalidPrincipal(
                f'Sponsor placement {self.sponsor_id} must target exactly one of club or association',
                sponsor_id=self.sponsor_id,
            )
        return PlacementType.CLUB if self.club_id else PlacementType.ASSOCIATION

    @property
    def scope(self):
        if self.placement_type is PlacementType.CLUB:
            return ('club', self.club_id)
        return ('association', self.association_id)


PRINCIPAL_TYPES = (AssociationAdmin, ClubAdmin, SponsorPlacement)

_CONSENT_BY_ROLE = {
    Role.ASSOCIATION_ADMIN: ConsentBasis.ASSOCIATION,
    Role.CLUB_ADMIN: ConsentBasis.CLUB,
    Role.SPONSOR_PLACEMENT: ConsentBasis.SPONSOR,
}


def consent_basis_for(principal):
    """Consent flag that governs who this principal may email"""
    return _CONSENT_BY_ROLE[validate_principal(principal).role]


def validate_principal(principal):
    """Return the principal unchanged, or raise InvalidPrincipal if malformed"""
    if not isinstance(principal, PRINCIPAL_TYPES):
        raise InvalidPrincipal(f'Unsupported principal type: {type(principal).__name__}')
    if not principal.id:
        raise InvalidPrincipal('Principal has no identity')
    # Evaluating the scope runs the per-kind invariants
    kind, scope_id = principal.scope
    if not scope_id:
        raise InvalidPrincipal(f'{principal.role.value} principal has no {kind} scope')
    return principal
