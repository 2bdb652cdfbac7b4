"""
Mailing Errors
==============

Every rejection the mailing engine can produce. Routes turn these into
JSON responses with ``to_dict()`` and ``http_status``.
"""


class MailingError(Exception):
    """Base class for mailing engine failures"""

    reason = 'MailingError'
    http_status = 500
    # False means the detail is for operators only; clients get a generic message
    user_facing = True

    def __init__(self, message=None, state=None, **details):
        super().__init__(message or self.reason)
        self.message = message or self.reason
        self.state = state
        self.details = details

    def to_dict(self):
        if not self.user_facing:
            return {'error': 'InternalError', 'message': 'Something went wrong, please try again later'}
        payload = {'error': self.reason, 'message': self.message}
        payload.update(self.details)
        return payload


class InvalidInput(MailingError):
    reason = 'InvalidInput'
    http_status = 400


class ScopeNotFound(MailingError):
    reason = 'ScopeNotFound'
    http_status = 404


class InvalidPrincipal(MailingError):
    reason = 'InvalidPrincipal'
    http_status = 500
    user_facing = False


class NoRecipients(MailingError):
    reason = 'NoRecipients'
    http_status = 422


class QuotaExceeded(MailingError):
    reason = 'QuotaExceeded'
    http_status = 429

    def __init__(self, reservation, state=None):
        super().__init__(
            f'Monthly campaign quota reached ({reservation.used}/{reservation.limit})',
            state=state,
            used=reservation.used,
            limit=reservation.limit,
            remaining=reservation.remaining,
        )
        self.reservation = reservation


class DeliveryFailed(MailingError):
    reason = 'DeliveryFailed'
    http_status = 502


class RecordingInconsistency(MailingError):
    """Message was delivered but the campaign row could not be written"""
    reason = 'RecordingInconsistency'
    user_facing = False


class CampaignNotFound(MailingError):
    reason = 'CampaignNotFound'
    http_status = 404


class NotCampaignOwner(MailingError):
    reason = 'NotCampaignOwner'
    http_status = 403
