import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction

from accounts.roles import is_moderator, is_system
from escrow.services import LedgerService
from milestone_escrow.clock import SystemClock
from notifications.events import record_transition
from projects.services import MilestoneService
from . import workflow
from .models import Dispute, DisputeEvidence, DisputeMessage
from .serializers import AnalysisSerializer, EvidenceSerializer, ResolutionSerializer

logger = logging.getLogger(__name__)


def is_participant(actor, dispute):
    if actor is None or is_system(actor):
        return False
    project = dispute.milestone.project
    return actor.pk in (project.payer_id, project.payee_id)


class DisputeService:
    """
    Drives a dispute from fee payment to a binding resolution.

    Locks are taken dispute first, then milestone, then escrow account.
    """

    def __init__(self, ledger=None, milestone_service=None, clock=None, sink=None):
        self.clock = clock or SystemClock()
        self.sink = sink
        self.ledger = ledger or LedgerService(clock=self.clock, sink=sink)
        self.milestones = milestone_service or MilestoneService(ledger=self.ledger, clock=self.clock, sink=sink)

    def get_dispute(self, dispute_id):
        return (
            Dispute.objects.select_related('milestone', 'milestone__project', 'raised_by', 'mediator', 'arbitrator')
            .prefetch_related('evidence', 'messages')
            .get(pk=dispute_id)
        )

    def pay_fee(self, dispute_id, actor, payment_method=None):
        with transaction.atomic():
            dispute = self._lock(dispute_id)
            old_status = dispute.status
            new_status = workflow.pay_fee(dispute.status, not is_system(actor) and actor.pk == dispute.raised_by_id)
            self.ledger.record_fee(
                dispute.milestone.project, actor, dispute.fee_amount,
                dispute=dispute, payment_method=payment_method,
            )
            dispute.fee_paid_at = self.clock.now()
            self._move(dispute, old_status, new_status, 'dispute.fee_paid', actor, fee_amount=dispute.fee_amount)
        return dispute

    def attach_analysis(self, dispute_id, confidence_score, key_issues, recommended_resolution, reasoning):
        serializer = AnalysisSerializer(data={
            'confidence_score': confidence_score,
            'key_issues': list(key_issues),
            'recommended_resolution': recommended_resolution,
            'reasoning': reasoning,
        })
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            dispute = self._lock(dispute_id)
            workflow.attach_analysis(dispute.status)
            dispute.analysis = dict(serializer.validated_data)
            self._move(
                dispute, dispute.status, dispute.status, 'dispute.analysis_attached', None,
                recommended_resolution=recommended_resolution,
            )
        return dispute

    def begin_self_resolution(self, dispute_id, actor):
        with transaction.atomic():
            dispute = self._lock(dispute_id)
            old_status = dispute.status
            new_status = workflow.begin_self_resolution(dispute.status, is_participant(actor, dispute))
            self._move(dispute, old_status, new_status, 'dispute.self_resolution_started', actor)
        return dispute

    def submit_evidence(self, dispute_id, actor, files, description=''):
        serializer = EvidenceSerializer(data={'files': list(files), 'description': description})
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            dispute = self._lock(dispute_id)
            workflow.record_evidence(dispute.status, is_participant(actor, dispute))
            evidence = DisputeEvidence.objects.create(
                dispute=dispute,
                submitted_by=actor,
                files=serializer.validated_data['files'],
                description=serializer.validated_data['description'],
            )
            summary = f"Submitted evidence ({len(evidence.files)} file(s))."
            if evidence.description:
                summary = f"{summary} {evidence.description}"
            DisputeMessage.objects.create(dispute=dispute, sender=actor, message=summary)
            self._event(dispute, dispute.status, 'dispute.evidence_submitted', actor, evidence_id=evidence.pk)
        return evidence

    def add_message(self, dispute_id, actor, message):
        with transaction.atomic():
            dispute = self._lock(dispute_id)
            neutral = dispute.active_neutral
            may_speak = is_participant(actor, dispute) or is_moderator(actor) or (
                neutral is not None and not is_system(actor) and actor.pk == neutral.pk
            )
            workflow.post_message(dispute.status, may_speak)
            entry = DisputeMessage.objects.create(dispute=dispute, sender=actor, message=message)
        return entry

    def assign_mediator(self, dispute_id, actor, mediator):
        with transaction.atomic():
            dispute = self._lock(dispute_id)
            old_status = dispute.status
            new_status = workflow.assign_mediator(dispute.status, is_moderator(actor))
            dispute.mediator = mediator
            dispute.mediation_started_at = self.clock.now()
            self._move(dispute, old_status, new_status, 'dispute.mediator_assigned', actor, mediator_id=mediator.pk)
        return dispute

    def assign_arbitrator(self, dispute_id, actor, arbitrator):
        with transaction.atomic():
            dispute = self._lock(dispute_id)
            old_status = dispute.status
            new_status = workflow.assign_arbitrator(dispute.status, is_moderator(actor))
            dispute.arbitrator = arbitrator
            dispute.mediator = None
            self._move(dispute, old_status, new_status, 'dispute.arbitrator_assigned', actor, arbitrator_id=arbitrator.pk)
        return dispute

    def escalate(self, dispute_id, actor, reason):
        with transaction.atomic():
            dispute = self._lock(dispute_id)
            old_status = dispute.status
            is_mediator = not is_system(actor) and actor.pk == dispute.mediator_id
            new_status = workflow.escalate(
                dispute.status,
                is_participant(actor, dispute) or is_mediator or is_moderator(actor),
            )
            dispute.escalation_reason = reason
            self._move(dispute, old_status, new_status, 'dispute.escalated', actor)
        return dispute

    def evaluate_escalation(self, dispute_id, actor):
        """
        Send a stalled mediation to arbitration. Returns ``(dispute, escalated)``;
        disputes outside mediation are left as they are.
        """
        with transaction.atomic():
            dispute = self._lock(dispute_id)
            is_mediator = not is_system(actor) and actor.pk == dispute.mediator_id
            workflow.require(is_moderator(actor) or is_mediator, 'Only staff or the mediator can evaluate escalation.')

            started = dispute.mediation_started_at
            reason = workflow.stalled_mediation(
                dispute.status,
                self.clock.now() - started if started else None,
                dispute.messages.count(),
                timedelta(hours=settings.DISPUTE_MEDIATION_TIMEOUT_HOURS),
                settings.DISPUTE_MEDIATION_MESSAGE_LIMIT,
            )
            if reason is None:
                return dispute, False

            old_status = dispute.status
            dispute.escalation_reason = reason
            self._move(
                dispute, old_status, workflow.escalate(old_status, True), 'dispute.escalated', actor,
                automatic=True,
            )

        logger.info(f"Dispute {dispute.pk} escalated after evaluation by {actor}: {reason}")
        return dispute, True

    def resolve(self, dispute_id, actor, decision, amount_to_payee, amount_to_payer, reasoning):
        serializer = ResolutionSerializer(data={
            'decision': decision,
            'amount_to_payee': amount_to_payee,
            'amount_to_payer': amount_to_payer,
            'reasoning': reasoning,
        })
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            dispute = self._lock(dispute_id)
            neutral = dispute.active_neutral
            may_decide = is_moderator(actor) or (
                neutral is not None and not is_system(actor) and actor.pk == neutral.pk
            )
            old_status = dispute.status
            new_status = workflow.resolve(dispute.status, may_decide)

            milestone = self.milestones.lock(dispute.milestone_id)
            dispute.milestone = milestone
            workflow.validate_resolution(
                data['decision'], data['amount_to_payee'], data['amount_to_payer'], milestone.amount,
            )

            self.ledger.split_on_dispute_resolution(
                dispute, data['amount_to_payee'], data['amount_to_payer'], actor=actor,
            )

            dispute.decision = data['decision']
            dispute.amount_to_payee = data['amount_to_payee']
            dispute.amount_to_payer = data['amount_to_payer']
            dispute.resolution_reasoning = data['reasoning']
            dispute.resolved_by = actor
            dispute.resolved_at = self.clock.now()
            self._move(
                dispute, old_status, new_status, 'dispute.resolved', actor,
                decision=dispute.decision,
                amount_to_payee=dispute.amount_to_payee,
                amount_to_payer=dispute.amount_to_payer,
            )

            self.milestones.resume_from_dispute(
                milestone,
                workflow.milestone_outcome(dispute.amount_to_payee, dispute.amount_to_payer),
                actor,
            )

        logger.info(
            f"Dispute {dispute.pk} resolved by {actor}: {dispute.decision} "
            f"({dispute.amount_to_payee} to payee, {dispute.amount_to_payer} to payer)"
        )
        return dispute

    def _lock(self, dispute_id):
        return (
            Dispute.objects.select_for_update(of=('self',))
            .select_related('milestone', 'milestone__project')
            .get(pk=dispute_id)
        )

    def _move(self, dispute, old_status, new_status, event_type, actor, **payload):
        dispute.status = new_status
        dispute.save()
        self._event(dispute, old_status, event_type, actor, **payload)

    def _event(self, dispute, old_status, event_type, actor, **payload):
        record_transition(
            entity_type='dispute',
            entity_id=dispute.pk,
            event_type=event_type,
            old_status=old_status,
            new_status=dispute.status,
            actor=actor,
            payload={'milestone_id': dispute.milestone_id, **payload},
            occurred_at=self.clock.now(),
            sink=self.sink,
        )
