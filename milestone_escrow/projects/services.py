import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Max, Sum

from accounts.roles import is_system, role_for
from disputes.exceptions import DisputeAlreadyOpen
from disputes.models import Dispute, DisputeEvidence
from disputes.serializers import EvidenceSerializer
from escrow.services import LedgerService
from milestone_escrow.clock import SystemClock
from milestone_escrow.exceptions import InvalidTransition, NotAuthorized
from notifications.events import record_transition
from . import transitions
from .exceptions import BudgetExceeded
from .models import Milestone, Project
from .serializers import DeliverableSerializer

logger = logging.getLogger(__name__)


class ProjectService:
    def __init__(self, clock=None, sink=None):
        self.clock = clock or SystemClock()
        self.sink = sink

    def create_project(self, payer, title, budget, description='', currency=None,
                       grace_period_days=None, max_revisions=None, payee=None):
        if is_system(payer):
            raise NotAuthorized('Projects are created by a paying user.')
        if payee is not None and payee.pk == payer.pk:
            raise NotAuthorized('Payer and payee must be different users.')

        fields = {
            'payer': payer,
            'payee': payee,
            'title': title,
            'description': description,
            'budget': budget,
            'status': 'active' if payee else 'draft',
        }
        if currency:
            fields['currency'] = currency
        if grace_period_days is not None:
            fields['grace_period_days'] = grace_period_days
        if max_revisions is not None:
            fields['max_revisions'] = max_revisions

        project = Project.objects.create(**fields)
        logger.info(f"Project {project.pk} created by {payer} with budget {budget}")
        return project

    def accept_project(self, project_id, payee):
        with transaction.atomic():
            project = Project.objects.select_for_update().get(pk=project_id)
            if project.status != 'draft':
                raise InvalidTransition('project', project.status, 'accept')
            if payee.pk == project.payer_id:
                raise NotAuthorized('The payer cannot accept their own project.')
            project.payee = payee
            project.status = 'active'
            project.save()
        logger.info(f"Project {project.pk} accepted by {payee}")
        return project

    def add_milestone(self, project_id, actor, title, amount, description='', deadline=None):
        with transaction.atomic():
            project = Project.objects.select_for_update().get(pk=project_id)
            if is_system(actor) or actor.pk != project.payer_id:
                raise NotAuthorized('Only the payer can add milestones.')
            if project.status in ('completed', 'cancelled'):
                raise InvalidTransition('project', project.status, 'add a milestone to')

            milestones = project.milestones.exclude(status=Milestone.CANCELLED)
            planned = milestones.aggregate(total=Sum('amount'))['total'] or 0
            if planned + amount > project.budget:
                raise BudgetExceeded(
                    f"Milestones would total {planned + amount}, above the budget of {project.budget}."
                )

            position = (project.milestones.aggregate(last=Max('position'))['last'] or 0) + 1
            milestone = Milestone.objects.create(
                project=project,
                position=position,
                title=title,
                description=description,
                amount=amount,
                deadline=deadline,
            )
        return milestone

    def get_project(self, project_id):
        return (
            Project.objects.select_related('payer', 'payee')
            .prefetch_related('milestones')
            .get(pk=project_id)
        )


class MilestoneService:
    """
    Entry point for every milestone transition.

    Each call locks the milestone row, runs the pure transition, performs the
    resulting ledger movements and records the event in one atomic block.
    """

    def __init__(self, ledger=None, clock=None, sink=None):
        self.clock = clock or SystemClock()
        self.sink = sink
        self.ledger = ledger or LedgerService(clock=self.clock, sink=sink)

    def get_milestone(self, milestone_id):
        return Milestone.objects.select_related('project', 'project__payer', 'project__payee').get(pk=milestone_id)

    def start(self, milestone_id, actor):
        return self._transition(milestone_id, actor, transitions.start)

    def submit(self, milestone_id, actor, notes='', deliverables=()):
        serializer = DeliverableSerializer(data=list(deliverables), many=True)
        serializer.is_valid(raise_exception=True)
        items = [dict(item) for item in serializer.validated_data]
        return self._transition(
            milestone_id, actor, transitions.submit,
            now=self.clock.now(), notes=notes, deliverables=items,
        )

    def approve(self, milestone_id, actor, feedback=None):
        return self._transition(
            milestone_id, actor, transitions.approve,
            now=self.clock.now(), feedback=feedback,
        )

    def request_revision(self, milestone_id, actor, notes=''):
        return self._transition(
            milestone_id, actor, transitions.request_revision,
            now=self.clock.now(), notes=notes,
        )

    def resume_work(self, milestone_id, actor):
        return self._transition(milestone_id, actor, transitions.resume_work)

    def cancel(self, milestone_id, actor, reason=''):
        with transaction.atomic():
            milestone = self.lock(milestone_id)
            held = min(
                self.ledger.get_balance(milestone.project_id).held,
                self.ledger.unsettled_amount(milestone),
            )
            outcome = transitions.cancel(
                transitions.MilestoneSnapshot.from_model(milestone),
                role_for(actor, milestone.project),
                now=self.clock.now(), reason=reason, held=held,
            )
            self._apply(milestone, outcome, actor)
        return milestone

    def raise_dispute(self, milestone_id, actor, reason, evidence=()):
        """Open a dispute on the milestone; returns the new Dispute awaiting its fee."""
        serializer = EvidenceSerializer(data=list(evidence), many=True)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            milestone = self.lock(milestone_id)
            if Dispute.objects.filter(milestone=milestone).exclude(status=Dispute.RESOLVED).exists():
                raise DisputeAlreadyOpen()

            role = role_for(actor, milestone.project)
            outcome = transitions.raise_dispute(transitions.MilestoneSnapshot.from_model(milestone), role)
            self._apply(milestone, outcome, actor)

            dispute = Dispute.objects.create(
                milestone=milestone,
                raised_by=actor,
                reason=reason,
                fee_amount=settings.DISPUTE_FEE_AMOUNT,
            )
            for item in serializer.validated_data:
                DisputeEvidence.objects.create(
                    dispute=dispute,
                    submitted_by=actor,
                    files=item['files'],
                    description=item.get('description', ''),
                )
            record_transition(
                entity_type='dispute',
                entity_id=dispute.pk,
                event_type='dispute.opened',
                new_status=dispute.status,
                actor=actor,
                payload={
                    'milestone_id': milestone.pk,
                    'raised_by_role': role,
                    'fee_amount': dispute.fee_amount,
                    'evidence_count': len(serializer.validated_data),
                },
                occurred_at=self.clock.now(),
                sink=self.sink,
            )

        logger.info(f"Dispute {dispute.pk} raised on milestone {milestone.pk} by {actor}")
        return dispute

    def resume_from_dispute(self, milestone, status, actor):
        """Leave DISPUTED once the dispute is settled. The caller holds the milestone lock."""
        outcome = transitions.resume_from_dispute(
            transitions.MilestoneSnapshot.from_model(milestone), status, now=self.clock.now(),
        )
        self._apply(milestone, outcome, actor)
        return milestone

    def lock(self, milestone_id):
        return (
            Milestone.objects.select_for_update(of=('self',))
            .select_related('project', 'project__payer', 'project__payee')
            .get(pk=milestone_id)
        )

    def _transition(self, milestone_id, actor, transition, **kwargs):
        with transaction.atomic():
            milestone = self.lock(milestone_id)
            outcome = transition(
                transitions.MilestoneSnapshot.from_model(milestone),
                role_for(actor, milestone.project),
                **kwargs,
            )
            self._apply(milestone, outcome, actor)
        return milestone

    def _apply(self, milestone, outcome, actor):
        for effect in outcome.effects:
            if effect.kind == transitions.RELEASE:
                self.ledger.release(milestone, effect.amount, actor=actor)
            elif effect.kind == transitions.REFUND:
                self.ledger.refund(milestone.project_id, effect.amount, effect.reason, milestone=milestone, actor=actor)

        outcome.snapshot.write_to(milestone)
        milestone.save()
        record_transition(
            entity_type='milestone',
            entity_id=milestone.pk,
            event_type=outcome.event_type,
            old_status=outcome.old_status,
            new_status=milestone.status,
            actor=actor,
            payload=outcome.payload,
            occurred_at=self.clock.now(),
            sink=self.sink,
        )
        logger.info(f"Milestone {milestone.pk}: {outcome.old_status} -> {milestone.status} ({outcome.event_type})")
