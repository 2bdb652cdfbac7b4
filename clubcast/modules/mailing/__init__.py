"""
Mailing Module
==============

Provides:
- Consent-filtered recipient resolution per sending principal
- Monthly campaign quota for sponsor placements (atomic reservation)
- Campaign dispatch through the email service
- Append-only campaign audit trail, listing, stats and owner-only deletion
"""

from flask import Blueprint

mailing_bp = Blueprint(
    'mailing',
    __name__,
    url_prefix='/api/mailing'
)

from . import routes
