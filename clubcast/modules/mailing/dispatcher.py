"""
Campaign Dispatcher
===================

One campaign send, start to finish:

    Validating -> Resolving -> QuotaChecking -> Delivering -> Recording -> Completed

Any step may reject; the MailingError raised carries the state it was
raised in. Rules that matter:

- zero recipients is rejected before the quota ledger is touched
- only sponsor placements go through QuotaChecking
- a reserved quota unit is spent even if delivery then fails
- if the campaign row cannot be written after delivery succeeded the
  send still completes; the gap is logged for manual reconciliation
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from clubcast.core import db_log, get_config_value
from .delivery import EmailDelivery, DeliveryReceipt
from .directory import ScopeCatalog, SponsorDirectory
from .errors import (
    MailingError, InvalidInput, InvalidPrincipal, NoRecipients, QuotaExceeded,
    DeliveryFailed, RecordingInconsistency
)
from .principal import PRINCIPAL_TYPES, SponsorPlacement, consent_basis_for, validate_principal
from .quota import QuotaLedger, ReservationResult, localize
from .recorder import CampaignRecorder, Campaign, stamp
from .renderer import sender_label
from .resolver import RecipientResolver, RecipientSet

logger = logging.getLogger(__name__)


class DispatchState(str, Enum):
    VALIDATING = 'Validating'
    RESOLVING = 'Resolving'
    QUOTA_CHECKING = 'QuotaChecking'
    DELIVERING = 'Delivering'
    RECORDING = 'Recording'
    COMPLETED = 'Completed'


@dataclass(frozen=True)
class DispatchOutcome:
    state: DispatchState
    campaign: Campaign
    recipients: RecipientSet
    receipt: DeliveryReceipt
    reservation: Optional[ReservationResult] = None
    recorded: bool = True

    def to_dict(self):
        # The client is told the send succeeded either way; recording gaps are operational
        data = {
            'state': self.state.value,
            'campaign': self.campaign.to_dict(),
            'recipients': self.recipients.to_dict(),
            'delivery': self.receipt.to_dict(),
        }
        if self.reservation is not None:
            data['quota'] = self.reservation.to_dict()
        return data


class CampaignDispatcher:
    """Orchestrates validation, resolution, quota, delivery and recording"""

    def __init__(self, resolver=None, ledger=None, delivery=None, recorder=None,
                 sponsors=None, catalog=None, db_path=None):
        self.resolver = resolver or RecipientResolver(db_path=db_path)
        self.ledger = ledger or QuotaLedger(db_path)
        self.delivery = delivery or EmailDelivery(db_path=db_path)
        self.recorder = recorder or CampaignRecorder(db_path)
        self.sponsors = sponsors or SponsorDirectory(db_path)
        self.catalog = catalog or ScopeCatalog(db_path)

    def _validate(self, principal, subject, body):
        """
        Trimmed (subject, body).

        Anything that is not a principal is InvalidInput; a principal that
        breaks its own invariant is InvalidPrincipal.
        """
        if principal is None or not isinstance(principal, PRINCIPAL_TYPES):
            raise InvalidInput('A sending principal is required')
        validate_principal(principal)

        subject = (subject or '').strip() if isinstance(subject, str) else ''
        body = (body or '').strip() if isinstance(body, str) else ''
        max_subject = int(get_config_value('SUBJECT_MAX_LENGTH', 100))
        max_body = int(get_config_value('BODY_MAX_LENGTH', 5000))

        if not subject:
            raise InvalidInput('Subject is required', field='subject')
        if not body:
            raise InvalidInput('Message body is required', field='body')
        if len(subject) > max_subject:
            raise InvalidInput(f'Subject must be at most {max_subject} characters', field='subject')
        if len(body) > max_body:
            raise InvalidInput(f'Message body must be at most {max_body} characters', field='body')
        return subject, body

    def dispatch(self, principal, subject, body, now=None):
        """
        Send one campaign on behalf of ``principal``.

        Returns a DispatchOutcome in state Completed, or raises the
        MailingError that rejected it.
        """
        state = DispatchState.VALIDATING
        reservation = None
        tier = None
        try:
            subject, body = self._validate(principal, subject, body)

            state = DispatchState.RESOLVING
            recipients = self.resolver.resolve(principal)
            if recipients.total == 0:
                raise NoRecipients('No member has consented to receive this campaign', **recipients.to_dict())

            if isinstance(principal, SponsorPlacement):
                state = DispatchState.QUOTA_CHECKING
                tier = self.sponsors.tier_of(principal.sponsor_id)
                reservation = self.ledger.reserve(principal.id, tier, now)
                if not reservation.allowed:
                    raise QuotaExceeded(reservation)

            state = DispatchState.DELIVERING
            try:
                receipt = self.delivery.send(recipients, subject, body, source=sender_label(principal))
            except MailingError:
                raise
            except Exception as e:
                raise DeliveryFailed(f'Delivery error: {e}', state=state) from e

        except MailingError as e:
            if e.state is None:
                e.state = state
            self._log_rejection(principal, e, reservation)
            raise

        state = DispatchState.RECORDING
        campaign = self._build_campaign(principal, subject, body, recipients, tier, now)
        recorded = True
        try:
            campaign = stamp(campaign, self.recorder.persist(campaign))
        except Exception as e:
            recorded = False
            self._log_inconsistency(campaign, receipt, e)

        logger.info(f"Campaign dispatched by {principal.id}: {recipients.to_dict()}, "
                    f"{receipt.accepted} accepted, {receipt.failed} failed")
        db_log('info', 'mailing', 'Campaign dispatched', {
            'campaign_id': campaign.id,
            'principal_id': principal.id,
            'role': principal.role.value,
            'recipients': recipients.to_dict(),
            'accepted': receipt.accepted,
            'failed': receipt.failed,
        }, user_id=principal.id)

        return DispatchOutcome(
            state=DispatchState.COMPLETED,
            campaign=campaign,
            recipients=recipients,
            receipt=receipt,
            reservation=reservation,
            recorded=recorded,
        )

    def _build_campaign(self, principal, subject, body, recipients, tier, now):
        preview = int(get_config_value('PREVIEW_LENGTH', 100))
        scope_kind, scope_id = principal.scope
        sent_at = localize(now) if now else datetime.now(timezone.utc)
        return Campaign(
            principal_id=principal.id,
            role=principal.role.value,
            consent_basis=consent_basis_for(principal).value,
            scope_kind=scope_kind,
            scope_id=scope_id,
            recipient_count=recipients.total,
            direct_count=recipients.direct_count,
            follower_count=recipients.follower_count,
            subject_preview=subject[:preview],
            message_preview=body[:preview],
            sent_at=sent_at.astimezone(timezone.utc).isoformat(),
            sponsor_tier=tier,
            association_id=self._association_of(principal),
        )

    def _association_of(self, principal):
        kind, scope_id = principal.scope
        try:
            association_id = self.catalog.association_for(kind, scope_id)
        except Exception as e:
            logger.warning(f"Could not look up the association of {kind} {scope_id}: {e}")
            association_id = None
        return association_id or getattr(principal, 'association_id', None)

    def _log_rejection(self, principal, error, reservation):
        details = {
            'reason': error.reason,
            'state': error.state.value if error.state else None,
            'message': error.message,
        }
        details.update(error.details)
        if reservation is not None:
            details['quota'] = reservation.to_dict()
        principal_id = getattr(principal, 'id', None)

        if isinstance(error, InvalidPrincipal):
            logger.error(f"Invalid principal reached the dispatcher: {error.message}")
            db_log('error', 'mailing', 'Invalid principal', details, user_id=principal_id)
        elif isinstance(error, DeliveryFailed):
            logger.warning(f"Delivery failed for {principal_id}, quota unit not refunded: {error.message}")
            db_log('warning', 'mailing', 'Campaign delivery failed', details, user_id=principal_id)
        else:
            logger.info(f"Campaign rejected for {principal_id}: {error.reason}")
            db_log('info', 'mailing', f'Campaign rejected: {error.reason}', details, user_id=principal_id)

    def _log_inconsistency(self, campaign, receipt, cause):
        error = RecordingInconsistency(
            f'Campaign delivered but not recorded: {cause}', state=DispatchState.RECORDING
        )
        logger.critical(f"{error.message} (principal {campaign.principal_id})")
        db_log('critical', 'mailing', 'Recording inconsistency', {
            'reason': error.reason,
            'error': str(cause),
            'campaign': campaign.to_dict(),
            'delivery': receipt.to_dict(),
        }, user_id=campaign.principal_id)
