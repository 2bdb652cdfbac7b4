"""
Email Module
============

Outbound email transport (Resend, Amazon SES or SMTP) used to deliver
mailing campaigns.
"""

from .email_service import EmailService, email_service, is_valid_email

__all__ = ['EmailService', 'email_service', 'is_valid_email']
