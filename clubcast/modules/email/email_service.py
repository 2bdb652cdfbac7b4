"""
Email Service Module
====================

Configurable email transport supporting Resend, Amazon SES, and SMTP.
Provider is selected via EMAIL_PROVIDER config ('resend', 'ses', or 'smtp').
Every attempt is logged to the email_logs table in MAILING_DB.
"""

import re
import logging
import time
from typing import List, Optional, Tuple

from clubcast.core import Database, get_config_value

# Rejects consecutive dots, leading/trailing dots in local part
_VALID_EMAIL = re.compile(r'^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$')

logger = logging.getLogger(__name__)

# Try to import resend - it's optional
try:
    import resend
    RESEND_AVAILABLE = True
except ImportError:
    RESEND_AVAILABLE = False
    logger.info("resend package not installed.")

# Try to import boto3 for SES - it's optional
try:
    import boto3
    from botocore.exceptions import ClientError
    BOTO3_AVAILABLE = True
except ImportError:
    BOTO3_AVAILABLE = False
    logger.info("boto3 package not installed.")


def is_valid_email(address):
    return bool(address) and _VALID_EMAIL.match(address) is not None


class EmailService:
    """
    Configurable email service supporting Resend, Amazon SES, and SMTP.

    Configuration (set in Flask app.config):
        EMAIL_PROVIDER: 'resend' (default), 'ses', or 'smtp'
        RESEND_API_KEY: Your Resend API key (required if provider is 'resend')
        AWS_REGION: AWS region for SES (default: 'eu-west-1')
        EMAIL_HOST / EMAIL_PORT / EMAIL_PASSWORD: SMTP settings
        EMAIL_ADDRESS: Sender email address
        EMAIL_BRAND_NAME: Brand name shown in campaign emails
        EMAIL_SEND_INTERVAL: Seconds to wait between two sends (default: 0.6)
        MAILING_DB: Path to SQLite database for email logs
    """

    def __init__(self, app=None):
        self.provider = 'resend'
        self.api_key = None
        self.ses_client = None
        self.sender_email = None
        self.brand_name = 'Clubcast'
        self.send_interval = 0.6
        self.db_path = None
        self.smtp_host = None
        self.smtp_port = None
        self.smtp_password = None

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Initialize email service with Flask app configuration"""
        self.provider = (app.config.get('EMAIL_PROVIDER') or 'resend').lower()
        logger.info(f"=== INITIALIZING EMAIL SERVICE (provider: {self.provider}) ===")

        self.sender_email = app.config.get('EMAIL_ADDRESS')
        self.brand_name = app.config.get('EMAIL_BRAND_NAME', 'Clubcast')
        self.send_interval = float(app.config.get('EMAIL_SEND_INTERVAL', 0.6))
        self.db_path = app.config.get('MAILING_DB')

        logger.info(f"Sender email: {self.sender_email}")

        if self.provider == 'ses':
            self._init_ses(app)
        elif self.provider == 'smtp':
            self._init_smtp(app)
        else:
            self._init_resend(app)

    @property
    def from_header(self):
        """Sender shown to members, e.g. 'Ligue <no-reply@ligue.fr>'"""
        if self.brand_name:
            return f"{self.brand_name} <{self.sender_email}>"
        return self.sender_email

    @property
    def is_configured(self):
        """True when the selected provider has what it needs to send"""
        if not self.sender_email:
            return False
        if self.provider == 'ses':
            return self.ses_client is not None
        if self.provider == 'smtp':
            return bool(self.smtp_password)
        return RESEND_AVAILABLE and bool(self.api_key)

    def _init_resend(self, app):
        """Initialize Resend provider"""
        self.api_key = app.config.get('RESEND_API_KEY')

        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured - email sending disabled")
            return

        if not RESEND_AVAILABLE:
            logger.error("resend package not installed")
            return

        resend.api_key = self.api_key
        logger.info("Resend API client initialized successfully")

    def _init_ses(self, app):
        """Initialize Amazon SES provider"""
        if not BOTO3_AVAILABLE:
            logger.error("boto3 package not installed - SES email sending disabled")
            return

        aws_region = app.config.get('AWS_REGION', 'eu-west-1')
        try:
            self.ses_client = boto3.client('ses', region_name=aws_region)
            logger.info(f"SES client initialized successfully (region: {aws_region})")
        except Exception as e:
            logger.error(f"Failed to initialize SES client: {e}")

    def _init_smtp(self, app):
        """Initialize SMTP provider"""
        self.smtp_host = app.config.get('EMAIL_HOST', 'smtp.gmail.com')
        self.smtp_port = int(app.config.get('EMAIL_PORT', 587))
        self.smtp_password = app.config.get('EMAIL_PASSWORD')

        if not self.smtp_password:
            logger.warning("EMAIL_PASSWORD not configured - SMTP email sending disabled")
            return

        logger.info(f"SMTP configured: {self.smtp_host}:{self.smtp_port}")

    def _get_db_path(self):
        return self.db_path or get_config_value('MAILING_DB', 'mailing.db')

    def _log_email(self, recipient: str, subject: str, status: str,
                   error_message: str = None):
        """Log email attempt to database"""
        try:
            db_path = self._get_db_path()
            Database.init_schema(db_path, ["""
                CREATE TABLE IF NOT EXISTS email_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    recipient TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    provider TEXT,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    sent_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """])
            with Database.session(db_path) as conn:
                conn.execute("""
                    INSERT INTO email_logs (recipient, subject, provider, status, error_message)
                    VALUES (?, ?, ?, ?, ?)
                """, (recipient, subject, self.provider, status, error_message))
        except Exception as e:
            logger.error(f"Failed to log email to database: {e}")

    def send_bulk(self, to: List[str], subject: str, html_body: str,
                  text_body: Optional[str] = None) -> Tuple[int, int]:
        """
        Send the same message to each recipient individually.

        Returns:
            (sent_count, failed_count). Invalid addresses count as failed.
        """
        sent_count = 0
        failed_count = 0

        valid_recipients = []
        for addr in to:
            if is_valid_email(addr):
                valid_recipients.append(addr)
            else:
                logger.warning(f"Skipping invalid email address: {addr}")
                failed_count += 1

        for i, recipient in enumerate(valid_recipients):
            try:
                if self.provider == 'ses':
                    success = self._send_via_ses(recipient, subject, html_body, text_body)
                elif self.provider == 'smtp':
                    success = self._send_via_smtp(recipient, subject, html_body, text_body)
                else:
                    success = self._send_via_resend(recipient, subject, html_body, text_body)

                if success:
                    self._log_email(recipient, subject, 'sent')
                    sent_count += 1
                else:
                    self._log_email(recipient, subject, 'failed', 'Provider returned failure')
                    failed_count += 1

            except Exception as send_error:
                logger.error(f"Error sending to {recipient}: {send_error}")
                self._log_email(recipient, subject, 'failed', str(send_error))
                failed_count += 1

            # Provider rate limit
            if self.send_interval and i < len(valid_recipients) - 1:
                time.sleep(self.send_interval)

        if failed_count > 0:
            logger.warning(f"Email send completed with errors: {sent_count} sent, {failed_count} failed")
        else:
            logger.info(f"Email sent successfully to {sent_count} recipients: {subject}")

        return sent_count, failed_count

    def _send_via_resend(self, recipient: str, subject: str, html_body: str,
                         text_body: Optional[str] = None) -> bool:
        """Send a single email via Resend API"""
        if not RESEND_AVAILABLE:
            logger.error("resend package not installed")
            return False

        if not self.api_key:
            logger.error("Resend API key not configured")
            return False

        email_params = {
            "from": self.from_header,
            "to": recipient,
            "subject": subject,
            "html": html_body
        }
        if text_body:
            email_params["text"] = text_body

        r = resend.Emails.send(email_params)

        if r and r.get('id'):
            logger.debug(f"Email sent successfully to: {recipient}, ID: {r['id']}")
            return True
        logger.error(f"Resend error for {recipient}: {r}")
        return False

    def _send_via_ses(self, recipient: str, subject: str, html_body: str,
                      text_body: Optional[str] = None) -> bool:
        """Send a single email via Amazon SES"""
        if not BOTO3_AVAILABLE:
            logger.error("boto3 package not installed")
            return False

        if not self.ses_client:
            logger.error("SES client not initialized")
            return False

        body = {'Html': {'Charset': 'UTF-8', 'Data': html_body}}
        if text_body:
            body['Text'] = {'Charset': 'UTF-8', 'Data': text_body}

        try:
            response = self.ses_client.send_email(
                Source=self.from_header,
                Destination={'ToAddresses': [recipient]},
                Message={
                    'Subject': {'Charset': 'UTF-8', 'Data': subject},
                    'Body': body,
                },
            )
            logger.debug(f"Email sent successfully to: {recipient}, MessageId: {response.get('MessageId', '')}")
            return True
        except ClientError as e:
            logger.error(f"SES error for {recipient}: {e.response['Error']['Message']}")
            return False

    def _send_via_smtp(self, recipient: str, subject: str, html_body: str,
                       text_body: Optional[str] = None) -> bool:
        """Send a single email via SMTP"""
        import smtplib
        from email.mime.text import MIMEText
        from email.mime.multipart import MIMEMultipart

        if not self.smtp_password:
            logger.error("SMTP password not configured")
            return False

        msg = MIMEMultipart('alternative')
        msg['From'] = self.from_header
        msg['To'] = recipient
        msg['Subject'] = subject

        if text_body:
            msg.attach(MIMEText(text_body, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_body, 'html', 'utf-8'))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.sender_email, self.smtp_password)
                server.send_message(msg)

            logger.debug(f"SMTP email sent to {recipient}")
            return True
        except Exception as e:
            logger.error(f"SMTP error for {recipient}: {e}")
            return False


email_service = EmailService()
