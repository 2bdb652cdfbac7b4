"""
Campaign dispatch: the Validating -> ... -> Completed state machine and
its partial-failure rules.
"""

import threading
from datetime import datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

from clubcast.core import LoggingService
from clubcast.modules.mailing.directory import (
    save_association, save_club, save_profile, follow_club, save_sponsor
)
from clubcast.modules.mailing.dispatcher import CampaignDispatcher, DispatchState
from clubcast.modules.mailing.errors import (
    InvalidInput, InvalidPrincipal, NoRecipients, QuotaExceeded, DeliveryFailed, ScopeNotFound
)
from clubcast.modules.mailing.principal import AssociationAdmin, ClubAdmin, SponsorPlacement
from clubcast.modules.mailing.quota import QuotaLedger
from clubcast.modules.mailing.recorder import CampaignRecorder

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=ZoneInfo("Europe/Paris"))

BRONZE = SponsorPlacement('sponsor-user', 's1', 'Bronze', club_id='C')


@pytest.fixture
def world(ctx, db_path):
    save_association('A', db_path=db_path)
    save_club('C', association_id='A', db_path=db_path)
    for person in ('m1', 'm2'):
        save_profile(person, email=f'{person}@example.com', role='Member', association_id='A',
                     club_id='C', consent_association=True, consent_clubs=True,
                     consent_sponsors=True, db_path=db_path)
    save_profile('f1', email='f1@example.com', role='Supporter', association_id='A',
                 consent_clubs=True, consent_sponsors=True, db_path=db_path)
    follow_club('f1', 'C', db_path=db_path)
    save_sponsor('s1', 'sponsor-user', 'Bronze', club_id='C', db_path=db_path)
    return db_path


@pytest.fixture
def dispatcher(world, delivery):
    return CampaignDispatcher(delivery=delivery, db_path=world)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_club_admin_dispatch_completes_and_records(dispatcher, delivery, world):
    outcome = dispatcher.dispatch(ClubAdmin('admin', 'C', 'A'), '  Training moved  ', 'See you at 7pm', now=NOW)

    assert outcome.state is DispatchState.COMPLETED
    assert outcome.recorded is True
    assert outcome.reservation is None
    assert outcome.campaign.id is not None
    assert outcome.campaign.recipient_count == 3
    assert outcome.campaign.direct_count == 2
    assert outcome.campaign.follower_count == 1
    assert outcome.campaign.consent_basis == 'ClubConsent'
    assert outcome.campaign.subject_preview == 'Training moved'
    assert outcome.campaign.scope_kind == 'club'

    assert len(delivery.calls) == 1
    assert delivery.calls[0]['source'] == 'Club'
    assert sorted(delivery.calls[0]['person_ids']) == ['f1', 'm1', 'm2']

    stored = CampaignRecorder(world).get(outcome.campaign.id)
    assert stored == outcome.campaign


def test_admins_are_never_quota_limited(dispatcher, world):
    ledger = MagicMock(wraps=QuotaLedger(world))
    dispatcher.ledger = ledger

    for _ in range(6):
        dispatcher.dispatch(AssociationAdmin('boss', 'A'), 'News', 'Body', now=NOW)

    ledger.reserve.assert_not_called()


def test_sponsor_dispatch_reports_quota(dispatcher, delivery):
    outcome = dispatcher.dispatch(BRONZE, 'Offer', '10% off', now=NOW)

    assert outcome.reservation.to_dict() == {'allowed': True, 'used': 1, 'limit': 1, 'remaining': 0}
    assert outcome.campaign.sponsor_tier == 'Bronze'
    assert outcome.campaign.consent_basis == 'SponsorConsent'
    assert outcome.to_dict()['quota']['remaining'] == 0
    assert delivery.calls[0]['source'] == 'Sponsor Bronze'


def test_preview_is_truncated(dispatcher, ctx):
    ctx.config['PREVIEW_LENGTH'] = 10
    outcome = dispatcher.dispatch(ClubAdmin('admin', 'C'), 'A' * 50, 'B' * 500, now=NOW)

    assert outcome.campaign.subject_preview == 'A' * 10
    assert outcome.campaign.message_preview == 'B' * 10


# ---------------------------------------------------------------------------
# Validating
# ---------------------------------------------------------------------------

@pytest.mark.parametrize('subject, body', [
    ('', 'body'), ('   ', 'body'), ('subject', ''), ('subject', '\n\t'), (None, 'body'), ('subject', 42),
])
def test_blank_subject_or_body_is_invalid_input(dispatcher, delivery, subject, body):
    with pytest.raises(InvalidInput) as exc:
        dispatcher.dispatch(ClubAdmin('admin', 'C'), subject, body, now=NOW)

    assert exc.value.state is DispatchState.VALIDATING
    assert delivery.calls == []


def test_overlong_subject_is_invalid_input(dispatcher):
    with pytest.raises(InvalidInput) as exc:
        dispatcher.dispatch(ClubAdmin('admin', 'C'), 'x' * 101, 'body', now=NOW)
    assert exc.value.details['field'] == 'subject'


def test_overlong_body_is_invalid_input(dispatcher):
    with pytest.raises(InvalidInput) as exc:
        dispatcher.dispatch(ClubAdmin('admin', 'C'), 'subject', 'x' * 5001, now=NOW)
    assert exc.value.details['field'] == 'body'


def test_missing_principal_is_invalid_input(dispatcher):
    with pytest.raises(InvalidInput):
        dispatcher.dispatch(None, 'subject', 'body', now=NOW)


def test_malformed_sponsor_is_invalid_principal(dispatcher, world):
    principal = SponsorPlacement('sponsor-user', 's1', 'Bronze', club_id='C', association_id='A')

    with pytest.raises(InvalidPrincipal) as exc:
        dispatcher.dispatch(principal, 'subject', 'body', now=NOW)

    assert exc.value.state is DispatchState.VALIDATING
    assert exc.value.user_facing is False
    logged = LoggingService.recent(source='mailing', level='error')
    assert logged and logged[0]['message'] == 'Invalid principal'


# ---------------------------------------------------------------------------
# Resolving
# ---------------------------------------------------------------------------

def test_no_recipients_never_touches_the_ledger(dispatcher, world, delivery):
    save_club('EMPTY', association_id='A', db_path=world)
    save_sponsor('s-empty', 'sponsor-user', 'Bronze', club_id='EMPTY', db_path=world)
    ledger = MagicMock(wraps=QuotaLedger(world))
    dispatcher.ledger = ledger

    with pytest.raises(NoRecipients) as exc:
        dispatcher.dispatch(SponsorPlacement('sponsor-user', 's-empty', 'Bronze', club_id='EMPTY'),
                            'subject', 'body', now=NOW)

    assert exc.value.state is DispatchState.RESOLVING
    ledger.reserve.assert_not_called()
    assert delivery.calls == []
    assert QuotaLedger(world).history('sponsor-user') == []


def test_missing_scope_is_scope_not_found(dispatcher):
    with pytest.raises(ScopeNotFound) as exc:
        dispatcher.dispatch(ClubAdmin('admin', 'NOPE'), 'subject', 'body', now=NOW)
    assert exc.value.state is DispatchState.RESOLVING


# ---------------------------------------------------------------------------
# QuotaChecking
# ---------------------------------------------------------------------------

def test_second_bronze_campaign_is_quota_exceeded(dispatcher, delivery):
    dispatcher.dispatch(BRONZE, 'first', 'body', now=NOW)

    with pytest.raises(QuotaExceeded) as exc:
        dispatcher.dispatch(BRONZE, 'second', 'body', now=NOW)

    assert exc.value.state is DispatchState.QUOTA_CHECKING
    assert exc.value.to_dict()['remaining'] == 0
    assert len(delivery.calls) == 1
    # Denials are expected outcomes, logged at INFO
    logged = LoggingService.recent(source='mailing', level='info')
    assert any(entry['message'] == 'Campaign rejected: QuotaExceeded' for entry in logged)


def test_tier_is_read_from_sponsor_directory(dispatcher, world):
    # The principal claims Platinum but the stored placement is Bronze
    claimed = SponsorPlacement('sponsor-user', 's1', 'Platinum', club_id='C')
    dispatcher.dispatch(claimed, 'first', 'body', now=NOW)

    with pytest.raises(QuotaExceeded):
        dispatcher.dispatch(claimed, 'second', 'body', now=NOW)


def test_unknown_stored_tier_denies_dispatch(dispatcher, world):
    save_sponsor('s1', 'sponsor-user', 'Diamond', club_id='C', db_path=world)

    with pytest.raises(QuotaExceeded) as exc:
        dispatcher.dispatch(BRONZE, 'subject', 'body', now=NOW)
    assert exc.value.details['limit'] == 0


# ---------------------------------------------------------------------------
# Delivering
# ---------------------------------------------------------------------------

def test_delivery_failure_consumes_quota(dispatcher, delivery, world):
    delivery.fail_with = 'provider down'

    with pytest.raises(DeliveryFailed) as exc:
        dispatcher.dispatch(BRONZE, 'subject', 'body', now=NOW)

    assert exc.value.state is DispatchState.DELIVERING
    assert QuotaLedger(world).status('sponsor-user', 'Bronze', NOW).used == 1
    assert CampaignRecorder(world).list_for(BRONZE) == []

    delivery.fail_with = None
    with pytest.raises(QuotaExceeded):
        dispatcher.dispatch(BRONZE, 'retry', 'body', now=NOW)

    logged = LoggingService.recent(source='mailing', level='warning')
    assert logged and logged[0]['message'] == 'Campaign delivery failed'


def test_unexpected_delivery_error_becomes_delivery_failed(dispatcher, delivery, world):
    delivery.fail_with = TimeoutError('provider timed out')

    with pytest.raises(DeliveryFailed) as exc:
        dispatcher.dispatch(BRONZE, 'subject', 'body', now=NOW)

    assert exc.value.state is DispatchState.DELIVERING
    assert 'provider timed out' in exc.value.message
    assert isinstance(exc.value.__cause__, TimeoutError)
    assert QuotaLedger(world).status('sponsor-user', 'Bronze', NOW).used == 1
    logged = LoggingService.recent(source='mailing', level='warning')
    assert logged and logged[0]['message'] == 'Campaign delivery failed'


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------

def test_recording_failure_is_logged_not_raised(dispatcher, delivery):
    recorder = MagicMock()
    recorder.persist.side_effect = RuntimeError('disk full')
    dispatcher.recorder = recorder

    outcome = dispatcher.dispatch(ClubAdmin('admin', 'C'), 'subject', 'body', now=NOW)

    assert outcome.state is DispatchState.COMPLETED
    assert outcome.recorded is False
    assert outcome.campaign.id is None
    assert len(delivery.calls) == 1
    logged = LoggingService.recent(source='mailing', level='critical')
    assert logged and logged[0]['message'] == 'Recording inconsistency'
    assert 'disk full' in logged[0]['details']


# ---------------------------------------------------------------------------
# Concurrency -- two overlapping Bronze sends, exactly one completes
# ---------------------------------------------------------------------------

def test_concurrent_bronze_dispatch_only_one_completes(app, world, delivery):
    barrier = threading.Barrier(2)
    completed = []
    rejected = []
    unexpected = []
    lock = threading.Lock()

    def send(n):
        with app.app_context():
            dispatcher = CampaignDispatcher(delivery=delivery, db_path=world)
            barrier.wait()
            try:
                outcome = dispatcher.dispatch(BRONZE, f'Offer {n}', 'body', now=NOW)
                with lock:
                    completed.append(outcome)
            except QuotaExceeded as e:
                with lock:
                    rejected.append(e)
            except Exception as e:
                with lock:
                    unexpected.append(e)

    threads = [threading.Thread(target=send, args=(n,)) for n in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert unexpected == []
    assert len(completed) == 1
    assert len(rejected) == 1
    assert completed[0].state is DispatchState.COMPLETED
    assert len(delivery.calls) == 1
    assert len(CampaignRecorder(world).list_for(BRONZE)) == 1


# ---------------------------------------------------------------------------
# Campaign fields
# ---------------------------------------------------------------------------

def test_club_campaign_records_its_association(dispatcher, world):
    outcome = dispatcher.dispatch(ClubAdmin('admin', 'C'), 'subject', 'body', now=NOW)

    assert outcome.campaign.association_id == 'A'
    listed = CampaignRecorder(world).list_for(AssociationAdmin('boss', 'A'))
    assert [c.id for c in listed] == [outcome.campaign.id]


def test_naive_now_is_read_in_quota_timezone(dispatcher):
    outcome = dispatcher.dispatch(ClubAdmin('admin', 'C'), 'subject', 'body',
                                  now=datetime(2024, 6, 10, 12, 0))

    # Noon in Paris during summer time
    assert outcome.campaign.sent_at == '2024-06-10T10:00:00+00:00'
