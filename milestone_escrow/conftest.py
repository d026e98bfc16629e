"""
Shared fixtures for the escrow engine tests.

Services are wired with a fixed clock, the in-process gateway and an
in-memory notification sink so every test controls time, money movement and
delivery explicitly.
"""
from datetime import datetime, timezone

import pytest

from disputes.services import DisputeService
from escrow.services import LedgerService
from milestone_escrow.clock import FixedClock
from notifications.sinks import InMemoryNotificationSink
from payments.gateways import LocalGateway
from projects.services import MilestoneService, ProjectService

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

BUDGET = 500_000
MILESTONE_AMOUNT = 100_000


@pytest.fixture
def payer(django_user_model):
    return django_user_model.objects.create_user(
        email='payer@example.com', password='secret', first_name='Pat', last_name='Payer', user_type='client',
    )


@pytest.fixture
def payee(django_user_model):
    return django_user_model.objects.create_user(
        email='payee@example.com', password='secret', first_name='Lee', last_name='Payee',
        user_type='freelancer', payout_account_id='acct_payee',
    )


@pytest.fixture
def outsider(django_user_model):
    return django_user_model.objects.create_user(
        email='outsider@example.com', password='secret', first_name='Olly', last_name='Outsider',
    )


@pytest.fixture
def moderator(django_user_model):
    return django_user_model.objects.create_user(
        email='moderator@example.com', password='secret', first_name='Mo', last_name='Derator', is_staff=True,
    )


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def gateway():
    return LocalGateway()


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest.fixture
def ledger(gateway, clock, sink):
    return LedgerService(gateway=gateway, clock=clock, sink=sink)


@pytest.fixture
def project_service(clock, sink):
    return ProjectService(clock=clock, sink=sink)


@pytest.fixture
def milestone_service(ledger, clock, sink):
    return MilestoneService(ledger=ledger, clock=clock, sink=sink)


@pytest.fixture
def dispute_service(ledger, milestone_service, clock, sink):
    return DisputeService(ledger=ledger, milestone_service=milestone_service, clock=clock, sink=sink)


@pytest.fixture
def project(db, project_service, payer, payee):
    return project_service.create_project(payer, 'Website rebuild', BUDGET, payee=payee)


@pytest.fixture
def funded_project(project, ledger):
    ledger.deposit(project.pk, BUDGET)
    project.refresh_from_db()
    return project


@pytest.fixture
def milestone(project_service, funded_project, payer):
    return project_service.add_milestone(funded_project.pk, payer, 'Landing page', MILESTONE_AMOUNT)


@pytest.fixture
def submitted_milestone(milestone_service, milestone, payee):
    milestone_service.start(milestone.pk, payee)
    return milestone_service.submit(
        milestone.pk, payee,
        notes='First cut',
        deliverables=[{'name': 'site.zip', 'url': 'https://files.example.com/site.zip'}],
    )


@pytest.fixture
def open_dispute(milestone_service, submitted_milestone, payee):
    return milestone_service.raise_dispute(submitted_milestone.pk, payee, 'Payer is unresponsive')


@pytest.fixture
def mediated_dispute(dispute_service, open_dispute, payee, moderator):
    dispute_service.pay_fee(open_dispute.pk, payee)
    return dispute_service.assign_mediator(open_dispute.pk, moderator, moderator)
