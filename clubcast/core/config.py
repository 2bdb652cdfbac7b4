import os
from dotenv import load_dotenv

load_dotenv(override=True)

class Config:
    """
    Base configuration for the Clubcast framework.
    Projects should provide database paths via environment variables.
    """
    # Get DB_DIR from environment, or use a default if not set
    DB_DIR = os.getenv('DB_DIR', os.path.join(os.getcwd(), 'databases'))

    # Email settings
    EMAIL_PROVIDER = os.getenv('EMAIL_PROVIDER', 'resend')
    EMAIL_ADDRESS = os.getenv("EMAIL_ADDRESS", "no-reply@clubcast.local")
    EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD")
    EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
    EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
    EMAIL_BRAND_NAME = os.getenv('EMAIL_BRAND_NAME', 'Clubcast')

    # Resend API settings
    RESEND_API_KEY = os.getenv('RESEND_API_KEY') or os.getenv('RESEND')
    AWS_REGION = os.getenv('AWS_REGION', 'eu-west-1')

    # Database paths - use environment variables or fallback to DB_DIR
    MAILING_DB = os.getenv('MAILING_DB', os.path.join(DB_DIR, "mailing.db"))
    ANALYTICS_DB = os.getenv('ANALYTICS_DB', os.path.join(DB_DIR, "analytics_log.db"))

    # Mailing engine
    # Monthly quota windows start at midnight on the 1st in this zone
    QUOTA_TIMEZONE = os.getenv('QUOTA_TIMEZONE', 'Europe/Paris')
    SUBJECT_MAX_LENGTH = int(os.getenv('SUBJECT_MAX_LENGTH', '100'))
    BODY_MAX_LENGTH = int(os.getenv('BODY_MAX_LENGTH', '5000'))
    PREVIEW_LENGTH = int(os.getenv('PREVIEW_LENGTH', '100'))
    DELIVERY_TIMEOUT = float(os.getenv('DELIVERY_TIMEOUT', '30'))


def get_config_value(key, default=None):
    """Resolve a setting: Flask app config, then Config, then default (3-tier pattern)"""
    try:
        from flask import current_app
        val = current_app.config.get(key)
        if val is not None:
            return val
    except RuntimeError:
        pass
    val = getattr(Config, key, None)
    return val if val is not None else default
