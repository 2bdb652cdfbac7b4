"""
Mailing Routes
==============

JSON API for the mailing screen. Every route acts for the principal of
the signed-in user (session['user_id']); role and scope are looked up
server side and anything the client sends about them is ignored.

- POST   /dispatch          -- send a campaign {subject, body}
- GET    /recipients        -- recipient breakdown for the current sender
- GET    /quota             -- monthly quota status (sponsors only)
- GET    /campaigns         -- campaigns visible to the current sender
- GET    /stats             -- dashboard statistics
- DELETE /campaigns/<id>    -- delete one of your own campaigns
"""

import logging
from functools import wraps

from flask import request, jsonify, session, current_app

from clubcast.core import db_log, LoggingService
from . import mailing_bp
from .directory import principal_for_user, SponsorDirectory
from .dispatcher import CampaignDispatcher
from .errors import MailingError
from .principal import SponsorPlacement
from .quota import QuotaLedger
from .recorder import CampaignRecorder
from .resolver import RecipientResolver

logger = logging.getLogger(__name__)


def login_required(f):
    """Decorator to require a signed-in user"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'error': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def _current_principal():
    return principal_for_user(session['user_id'])


def _get_delivery():
    """Delivery collaborator registered on the extension (None means email delivery)"""
    ext = current_app.extensions.get('clubcast')
    return getattr(ext, 'delivery', None)


def _error_response(error):
    return jsonify(error.to_dict()), error.http_status


def _unexpected(context, error):
    logger.error(f"Error {context}: {error}")
    LoggingService.log_error_with_traceback('mailing', error, {'context': context}, session.get('user_id'))
    return jsonify({'error': 'InternalError', 'message': 'Something went wrong, please try again later'}), 500


def _not_a_sender():
    return jsonify({'error': 'Forbidden', 'message': 'Your account cannot send campaigns'}), 403


# ===================
# SEND
# ===================

@mailing_bp.route('/dispatch', methods=['POST'])
@login_required
def dispatch():
    """Send a campaign for the signed-in principal"""
    principal = _current_principal()
    if principal is None:
        return _not_a_sender()

    data = request.get_json(silent=True) or {}
    subject = data.get('subject')
    body = data.get('body', data.get('message'))

    try:
        outcome = CampaignDispatcher(delivery=_get_delivery()).dispatch(principal, subject, body)
        return jsonify(outcome.to_dict()), 201
    except MailingError as e:
        return _error_response(e)
    except Exception as e:
        return _unexpected('dispatching campaign', e)


# ===================
# READ
# ===================

@mailing_bp.route('/recipients')
@login_required
def recipients():
    """Recipient breakdown the next campaign would reach"""
    principal = _current_principal()
    if principal is None:
        return _not_a_sender()

    try:
        return jsonify(RecipientResolver().resolve(principal).to_dict()), 200
    except MailingError as e:
        return _error_response(e)
    except Exception as e:
        return _unexpected('resolving recipients', e)


@mailing_bp.route('/quota')
@login_required
def quota():
    """Monthly campaign quota; only sponsor placements are limited"""
    principal = _current_principal()
    if principal is None:
        return _not_a_sender()
    if not isinstance(principal, SponsorPlacement):
        return jsonify({'unlimited': True}), 200

    try:
        tier = SponsorDirectory().tier_of(principal.sponsor_id)
        status = QuotaLedger().status(principal.id, tier)
        payload = status.to_dict()
        payload.update({'unlimited': False, 'tier': tier})
        return jsonify(payload), 200
    except MailingError as e:
        return _error_response(e)
    except Exception as e:
        return _unexpected('reading quota', e)


@mailing_bp.route('/campaigns')
@login_required
def campaign_list():
    """Campaigns visible to the signed-in principal, newest first"""
    principal = _current_principal()
    if principal is None:
        return _not_a_sender()

    try:
        campaigns = CampaignRecorder().list_for(principal)
        return jsonify({'campaigns': [c.to_dict() for c in campaigns]}), 200
    except Exception as e:
        return _unexpected('listing campaigns', e)


@mailing_bp.route('/stats')
@login_required
def stats():
    """Dashboard statistics"""
    principal = _current_principal()
    if principal is None:
        return _not_a_sender()

    try:
        return jsonify(CampaignRecorder().stats_for(principal)), 200
    except Exception as e:
        return _unexpected('computing campaign stats', e)


# ===================
# DELETE
# ===================

@mailing_bp.route('/campaigns/<int:campaign_id>', methods=['DELETE'])
@login_required
def delete(campaign_id):
    """Delete a campaign sent by the signed-in user; quota is not given back"""
    principal = _current_principal()
    if principal is None:
        return _not_a_sender()

    try:
        CampaignRecorder().delete_for(campaign_id, principal)
        db_log('info', 'mailing', 'Campaign deleted', {'id': campaign_id}, user_id=principal.id)
        return jsonify({'message': 'Campaign deleted'}), 200
    except MailingError as e:
        return _error_response(e)
    except Exception as e:
        return _unexpected('deleting campaign', e)
