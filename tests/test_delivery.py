"""
Email delivery adapter and campaign rendering.
"""

import threading
from unittest.mock import MagicMock

import pytest

from clubcast.modules.mailing.delivery import EmailDelivery
from clubcast.modules.mailing.errors import DeliveryFailed
from clubcast.modules.mailing.principal import AssociationAdmin, ClubAdmin, SponsorPlacement, MembershipKind
from clubcast.modules.mailing.renderer import render_message, render_text, sender_label
from clubcast.modules.mailing.resolver import RecipientSet, RecipientCandidate

RECIPIENTS = RecipientSet((
    RecipientCandidate('p1', MembershipKind.DIRECT),
    RecipientCandidate('p2', MembershipKind.FOLLOWER),
))


class FakeCatalog:
    def __init__(self, addresses):
        self.addresses = addresses

    def email_addresses(self, person_ids):
        return {pid: self.addresses[pid] for pid in person_ids if pid in self.addresses}


def make_service(sent=2, failed=0, configured=True):
    service = MagicMock()
    service.is_configured = configured
    service.provider = 'resend'
    service.send_bulk.return_value = (sent, failed)
    return service


@pytest.fixture
def catalog():
    return FakeCatalog({'p1': 'p1@example.com', 'p2': 'p2@example.com'})


# ---------------------------------------------------------------------------
# EmailDelivery
# ---------------------------------------------------------------------------

def test_send_returns_receipt(ctx, catalog):
    service = make_service(sent=2)
    delivery = EmailDelivery(service=service, catalog=catalog, timeout=5)

    receipt = delivery.send(RECIPIENTS, 'Subject', 'Body', source='Club')

    assert receipt.to_dict() == {'accepted': 2, 'failed': 0, 'provider': 'resend'}
    to, subject, html, text = service.send_bulk.call_args[0]
    assert sorted(to) == ['p1@example.com', 'p2@example.com']
    assert subject == 'Subject'
    assert 'Body' in html
    assert text.endswith('Club')


def test_partial_failure_still_succeeds(ctx, catalog):
    delivery = EmailDelivery(service=make_service(sent=1, failed=1), catalog=catalog, timeout=5)

    receipt = delivery.send(RECIPIENTS, 'Subject', 'Body')

    assert (receipt.accepted, receipt.failed) == (1, 1)


def test_unconfigured_service_fails(ctx, catalog):
    delivery = EmailDelivery(service=make_service(configured=False), catalog=catalog, timeout=5)

    with pytest.raises(DeliveryFailed):
        delivery.send(RECIPIENTS, 'Subject', 'Body')


def test_recipients_without_address_fail(ctx):
    service = make_service()
    delivery = EmailDelivery(service=service, catalog=FakeCatalog({}), timeout=5)

    with pytest.raises(DeliveryFailed):
        delivery.send(RECIPIENTS, 'Subject', 'Body')
    service.send_bulk.assert_not_called()


def test_nothing_accepted_is_a_failure(ctx, catalog):
    delivery = EmailDelivery(service=make_service(sent=0, failed=2), catalog=catalog, timeout=5)

    with pytest.raises(DeliveryFailed) as exc:
        delivery.send(RECIPIENTS, 'Subject', 'Body')
    assert exc.value.details['failed'] == 2


def test_transport_exception_becomes_delivery_failed(ctx, catalog):
    service = make_service()
    service.send_bulk.side_effect = ConnectionError('refused')
    delivery = EmailDelivery(service=service, catalog=catalog, timeout=5)

    with pytest.raises(DeliveryFailed) as exc:
        delivery.send(RECIPIENTS, 'Subject', 'Body')
    assert 'refused' in exc.value.message


def test_slow_transport_times_out(ctx, catalog):
    release = threading.Event()
    service = make_service()
    service.send_bulk.side_effect = lambda *args: (release.wait(5), (2, 0))[1]
    delivery = EmailDelivery(service=service, catalog=catalog, timeout=0.05)

    try:
        with pytest.raises(DeliveryFailed) as exc:
            delivery.send(RECIPIENTS, 'Subject', 'Body')
        assert 'did not complete' in exc.value.message
    finally:
        release.set()


def test_timeout_defaults_to_config(ctx, catalog):
    ctx.config['DELIVERY_TIMEOUT'] = 12
    delivery = EmailDelivery(service=make_service(), catalog=catalog)

    assert delivery.timeout == 12.0


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def test_sender_label():
    assert sender_label(AssociationAdmin('u', 'A')) == 'Association'
    assert sender_label(ClubAdmin('u', 'C')) == 'Club'
    assert sender_label(SponsorPlacement('u', 's', 'Gold', club_id='C')) == 'Sponsor Gold'
    assert sender_label(SponsorPlacement('u', 's', None, club_id='C')) == 'Sponsor'


def test_render_message_escapes_and_splits_paragraphs(ctx):
    html = render_message('Hello <team>', 'Line one\n\n**Bold** <script>x</script>\nLine three', 'Club')

    assert html.count('<p style="font-size:15px') == 3
    assert '&lt;script&gt;' in html
    assert '<script>' not in html
    assert '<strong>Bold</strong>' in html
    assert 'Hello &lt;team&gt;' in html
    assert 'Club &middot;' in html


def test_render_message_uses_configured_style(ctx):
    ctx.config['EMAIL_STYLE'] = {'header_bg': '#123456'}
    ctx.config['EMAIL_BRAND_NAME'] = 'Ligue'

    html = render_message('Subject', 'Body', 'Association')

    assert 'background:#123456' in html
    assert 'Ligue' in html


def test_render_text():
    assert render_text('Subject', 'Body', 'Club') == 'Subject\n\nBody\n\n-- \nClub'
