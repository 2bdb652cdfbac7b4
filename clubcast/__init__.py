"""
Clubcast - Campaign mailing for association portals
===================================================

A Flask extension that lets association admins, club admins and sponsor
placements email the members who consented to hear from them, with a
monthly campaign quota for sponsors.

Usage:
    from flask import Flask
    from clubcast import Clubcast

    app = Flask(__name__)
    Clubcast(app)   # registers /api/mailing/*
"""

__version__ = '0.1.0'

import os
import logging

from .core import Config

logger = logging.getLogger(__name__)

# Keys copied from Config into app.config when the host app leaves them unset
_DEFAULT_KEYS = (
    'EMAIL_PROVIDER', 'EMAIL_ADDRESS', 'EMAIL_PASSWORD', 'EMAIL_HOST', 'EMAIL_PORT',
    'EMAIL_BRAND_NAME', 'RESEND_API_KEY', 'AWS_REGION', 'QUOTA_TIMEZONE',
    'SUBJECT_MAX_LENGTH', 'BODY_MAX_LENGTH', 'PREVIEW_LENGTH', 'DELIVERY_TIMEOUT',
)


class Clubcast:
    """
    Flask extension wiring the mailing engine into an app.

    Config dict options:
        delivery: object with send(recipients, subject, body, source='')
                  used instead of the email service (e.g. a queue adapter)
        features: {'mailing': bool}
    """

    def __init__(self, app=None, config=None):
        self._config = config or {}
        self._registered = []
        self.delivery = None
        if app is not None:
            self.init_app(app, config)

    def init_app(self, app, config=None):
        if config is not None:
            self._config = config
        self.delivery = self._config.get('delivery')

        self._apply_defaults(app)
        self._setup_database_dir(app)
        self._init_email(app)
        self._init_databases(app)
        self._register_blueprints(app)

        app.extensions['clubcast'] = self
        logger.info(f"Clubcast initialised with modules: {self._registered}")

    def _apply_defaults(self, app):
        db_dir = app.config.get('DB_DIR') or Config.DB_DIR
        app.config['DB_DIR'] = db_dir
        app.config.setdefault('MAILING_DB', os.path.join(db_dir, 'mailing.db'))
        app.config.setdefault('ANALYTICS_DB', os.path.join(db_dir, 'analytics_log.db'))
        for key in _DEFAULT_KEYS:
            app.config.setdefault(key, getattr(Config, key))

    def _setup_database_dir(self, app):
        os.makedirs(app.config['DB_DIR'], exist_ok=True)
        for key in ('MAILING_DB', 'ANALYTICS_DB'):
            parent = os.path.dirname(app.config[key])
            if parent:
                os.makedirs(parent, exist_ok=True)

    def _init_email(self, app):
        from .modules.email import email_service
        email_service.init_app(app)

    def _init_databases(self, app):
        from .modules.mailing.directory import init_directory_db
        from .modules.mailing.quota import QuotaLedger
        from .modules.mailing.recorder import CampaignRecorder

        with app.app_context():
            init_directory_db()
            QuotaLedger()
            CampaignRecorder()

    def _register_blueprints(self, app):
        features = self._config.get('features', {})
        if features.get('mailing', True):
            from .modules.mailing import mailing_bp
            if 'mailing' not in app.blueprints:
                app.register_blueprint(mailing_bp)
            self._registered.append('mailing')

    def get_registered_modules(self):
        return list(self._registered)


__all__ = ['Clubcast', 'Config']
