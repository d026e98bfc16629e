import pytest
from rest_framework.exceptions import ValidationError

from conftest import BUDGET, MILESTONE_AMOUNT
from disputes.exceptions import DisputeAlreadyOpen
from disputes.models import Dispute
from escrow.ledger import Balance
from escrow.models import Transaction
from milestone_escrow.exceptions import InvalidTransition, NotAuthorized, PaymentGatewayError
from notifications.models import LifecycleEvent
from projects.exceptions import BudgetExceeded, RevisionLimitExceeded
from projects.models import Milestone
from projects.serializers import ProjectSerializer

pytestmark = pytest.mark.django_db


def releases(milestone):
    return Transaction.objects.filter(milestone=milestone, transaction_type=Transaction.MILESTONE_RELEASE)


class TestProjectService:
    def test_draft_project_is_accepted_by_payee(self, project_service, payer, payee):
        project = project_service.create_project(payer, 'Logo', 20_000, grace_period_days=3)
        assert project.status == 'draft'
        assert project.currency == 'USD'
        assert project.max_revisions == 3

        project_service.accept_project(project.pk, payee)

        project = project_service.get_project(project.pk)
        assert (project.status, project.payee) == ('active', payee)
        with pytest.raises(InvalidTransition):
            project_service.accept_project(project.pk, payee)

    def test_payer_cannot_be_payee(self, project_service, payer):
        project = project_service.create_project(payer, 'Logo', 20_000)
        with pytest.raises(NotAuthorized):
            project_service.accept_project(project.pk, payer)

    def test_milestones_fit_in_budget(self, project_service, project, payer, payee):
        first = project_service.add_milestone(project.pk, payer, 'Design', 300_000)
        second = project_service.add_milestone(project.pk, payer, 'Build', 200_000)
        assert (first.position, second.position) == (1, 2)

        with pytest.raises(BudgetExceeded):
            project_service.add_milestone(project.pk, payer, 'Extra', 1)
        with pytest.raises(NotAuthorized):
            project_service.add_milestone(project.pk, payee, 'Sneaky', 1)

    def test_project_serializer_embeds_milestones(self, project_service, milestone):
        data = ProjectSerializer(project_service.get_project(milestone.project_id)).data
        assert data['budget'] == BUDGET
        assert [m['title'] for m in data['milestones']] == ['Landing page']


class TestApproval:
    def test_payer_approval_releases_funds_once(self, milestone_service, ledger, submitted_milestone, payer):
        milestone = milestone_service.approve(submitted_milestone.pk, payer, feedback='Looks good')

        assert milestone.status == Milestone.APPROVED
        assert milestone.approved_at is not None
        assert ledger.get_balance(milestone.project_id) == Balance(
            held=BUDGET - MILESTONE_AMOUNT, released=MILESTONE_AMOUNT, refunded=0, total=BUDGET,
        )

        with pytest.raises(InvalidTransition):
            milestone_service.approve(milestone.pk, payer)
        assert releases(milestone).count() == 1

    @pytest.mark.parametrize('steps', [0, 1])
    def test_approve_unreachable_before_submission(self, milestone_service, milestone, payer, payee, steps):
        if steps:
            milestone_service.start(milestone.pk, payee)
        with pytest.raises(InvalidTransition):
            milestone_service.approve(milestone.pk, payer)
        assert not releases(milestone).exists()

    def test_ledger_failure_rolls_back_approval(self, milestone_service, ledger, gateway, submitted_milestone, payer):
        events_before = LifecycleEvent.objects.count()
        gateway.fail_on('payout')

        with pytest.raises(PaymentGatewayError):
            milestone_service.approve(submitted_milestone.pk, payer)

        submitted_milestone.refresh_from_db()
        assert submitted_milestone.status == Milestone.SUBMITTED
        assert ledger.get_balance(submitted_milestone.project_id).held == BUDGET
        assert LifecycleEvent.objects.count() == events_before

        milestone_service.approve(submitted_milestone.pk, payer)
        assert releases(submitted_milestone).count() == 1

    def test_submission_stores_deliverables_and_deadline(self, submitted_milestone, clock):
        assert submitted_milestone.deliverables == [{'name': 'site.zip', 'url': 'https://files.example.com/site.zip'}]
        assert submitted_milestone.submitted_at == clock.now()
        assert (submitted_milestone.auto_approval_deadline - clock.now()).days == 7

    def test_bad_deliverables_are_rejected(self, milestone_service, milestone, payee):
        milestone_service.start(milestone.pk, payee)
        with pytest.raises(ValidationError):
            milestone_service.submit(milestone.pk, payee, deliverables=[{'name': 'x', 'url': 'not a url'}])
        milestone.refresh_from_db()
        assert milestone.status == Milestone.IN_PROGRESS


class TestRevisions:
    def test_revision_limit(self, milestone_service, submitted_milestone, payer, payee):
        milestone_id = submitted_milestone.pk
        for _ in range(3):
            milestone_service.request_revision(milestone_id, payer, notes='Please adjust')
            milestone_service.resume_work(milestone_id, payee)
            milestone_service.submit(milestone_id, payee, notes='Adjusted')

        with pytest.raises(RevisionLimitExceeded):
            milestone_service.request_revision(milestone_id, payer, notes='One more')

        milestone = milestone_service.get_milestone(milestone_id)
        assert milestone.revision_count == 3
        assert milestone.status == Milestone.SUBMITTED
        assert [entry['revision'] for entry in milestone.revision_history] == [1, 2, 3]

    def test_payee_cannot_request_revision(self, milestone_service, submitted_milestone, payee):
        with pytest.raises(NotAuthorized):
            milestone_service.request_revision(submitted_milestone.pk, payee)


class TestDisputesAndCancellation:
    def test_raise_dispute_suspends_milestone(self, milestone_service, submitted_milestone, payer, payee):
        dispute = milestone_service.raise_dispute(
            submitted_milestone.pk, payer, 'Work is incomplete',
            evidence=[{'files': ['https://files.example.com/diff.png'], 'description': 'Missing pages'}],
        )

        assert dispute.status == Dispute.PENDING_FEE
        assert dispute.fee_amount == 2_500
        assert dispute.evidence.count() == 1
        milestone = milestone_service.get_milestone(submitted_milestone.pk)
        assert milestone.status == Milestone.DISPUTED

        with pytest.raises(DisputeAlreadyOpen):
            milestone_service.raise_dispute(submitted_milestone.pk, payee, 'Me too')
        with pytest.raises(InvalidTransition):
            milestone_service.approve(submitted_milestone.pk, payer)

    def test_revision_and_dispute_race_first_commit_wins(self, milestone_service, submitted_milestone, payer, payee):
        milestone_service.request_revision(submitted_milestone.pk, payer)
        with pytest.raises(InvalidTransition):
            milestone_service.raise_dispute(submitted_milestone.pk, payee, 'Too late')
        assert not Dispute.objects.exists()

    def test_cancel_refunds_milestone_amount(self, milestone_service, ledger, milestone, payer):
        cancelled = milestone_service.cancel(milestone.pk, payer, reason='No longer needed')

        assert cancelled.status == Milestone.CANCELLED
        assert cancelled.cancelled_at is not None
        balance = ledger.get_balance(milestone.project_id)
        assert (balance.held, balance.refunded) == (BUDGET - MILESTONE_AMOUNT, MILESTONE_AMOUNT)
        refund = Transaction.objects.get(transaction_type=Transaction.REFUND)
        assert refund.milestone_id == milestone.pk

    def test_payee_cannot_cancel(self, milestone_service, milestone, payee):
        with pytest.raises(NotAuthorized):
            milestone_service.cancel(milestone.pk, payee)


class TestEventFeed:
    def test_transitions_are_recorded_in_order(self, milestone_service, submitted_milestone, payer):
        milestone_service.approve(submitted_milestone.pk, payer)

        events = LifecycleEvent.objects.filter(entity_type='milestone', entity_id=submitted_milestone.pk)
        assert [event.event_type for event in events] == [
            'milestone.started', 'milestone.submitted', 'milestone.approved',
        ]
        approved = events.last()
        assert (approved.old_status, approved.new_status) == ('submitted', 'approved')
        assert approved.actor == f"user:{payer.pk}"
        assert LifecycleEvent.objects.filter(event_type='escrow.milestone_release').count() == 1
