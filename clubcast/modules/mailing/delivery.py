"""
Campaign Delivery
=================

Hands a resolved recipient set to the email transport. From the engine's
point of view delivery is opaque: it either returns a DeliveryReceipt or
raises DeliveryFailed. Once started, a send is never cancelled; a call
that overruns DELIVERY_TIMEOUT is reported as failed while the transport
keeps going in the background.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, asdict

from flask import current_app, has_app_context

from clubcast.core import get_config_value
from .directory import ScopeCatalog
from .errors import DeliveryFailed
from .renderer import render_message, render_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryReceipt:
    accepted: int
    failed: int
    provider: str

    def to_dict(self):
        return asdict(self)


def _get_email_service():
    """Get the framework email service"""
    from clubcast.modules.email import email_service
    return email_service


class EmailDelivery:
    """Delivery collaborator backed by EmailService"""

    def __init__(self, service=None, catalog=None, timeout=None, db_path=None):
        self.service = service or _get_email_service()
        self.catalog = catalog or ScopeCatalog(db_path)
        self.timeout = timeout if timeout is not None else float(get_config_value('DELIVERY_TIMEOUT', 30))

    def send(self, recipients, subject, body, source=''):
        if not self.service.is_configured:
            raise DeliveryFailed('Email service not configured')

        addresses = list(self.catalog.email_addresses(recipients.person_ids).values())
        if not addresses:
            raise DeliveryFailed('None of the recipients has an email address')

        html = render_message(subject, body, source)
        text = render_text(subject, body, source)

        app = current_app._get_current_object() if has_app_context() else None

        def _run():
            if app is None:
                return self.service.send_bulk(addresses, subject, html, text)
            with app.app_context():
                return self.service.send_bulk(addresses, subject, html, text)

        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(_run)
            sent, failed = future.result(timeout=self.timeout)
        except FuturesTimeout:
            raise DeliveryFailed(f'Delivery did not complete within {self.timeout:g}s')
        except Exception as e:
            logger.error(f"Email transport raised: {e}")
            raise DeliveryFailed(f'Email transport error: {e}')
        finally:
            executor.shutdown(wait=False)

        if sent == 0:
            raise DeliveryFailed(f'No message was accepted ({failed} failed)', failed=failed)

        return DeliveryReceipt(sent, failed, self.service.provider)
