from django.conf import settings
from django.db import models
from django.db.models import Q
from auditlog.registry import auditlog

User = settings.AUTH_USER_MODEL


class Dispute(models.Model):
    PENDING_FEE = 'pending_fee'
    PENDING_REVIEW = 'pending_review'
    SELF_RESOLUTION = 'self_resolution'
    IN_MEDIATION = 'in_mediation'
    IN_ARBITRATION = 'in_arbitration'
    ESCALATED = 'escalated'
    RESOLVED = 'resolved'

    STATUS_CHOICES = (
        (PENDING_FEE, 'Pending Fee'),
        (PENDING_REVIEW, 'Pending Review'),
        (SELF_RESOLUTION, 'Self Resolution'),
        (IN_MEDIATION, 'In Mediation'),
        (IN_ARBITRATION, 'In Arbitration'),
        (ESCALATED, 'Escalated'),
        (RESOLVED, 'Resolved'),
    )

    RELEASE_TO_PAYEE = 'release_to_payee'
    SPLIT = 'split'
    REFUND_TO_PAYER = 'refund_to_payer'

    DECISION_CHOICES = (
        (RELEASE_TO_PAYEE, 'Release to Payee'),
        (SPLIT, 'Split'),
        (REFUND_TO_PAYER, 'Refund to Payer'),
    )

    milestone = models.ForeignKey('projects.Milestone', on_delete=models.PROTECT, related_name='disputes')
    raised_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='disputes')
    reason = models.TextField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING_FEE)

    fee_amount = models.PositiveBigIntegerField(default=0)
    fee_paid_at = models.DateTimeField(null=True, blank=True)

    # Advisory only; never read by resolution
    analysis = models.JSONField(null=True, blank=True)

    mediator = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name='mediated_disputes')
    mediation_started_at = models.DateTimeField(null=True, blank=True)
    arbitrator = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name='arbitrated_disputes')
    escalation_reason = models.TextField(blank=True)

    decision = models.CharField(max_length=20, choices=DECISION_CHOICES, blank=True)
    amount_to_payee = models.PositiveBigIntegerField(null=True, blank=True)
    amount_to_payer = models.PositiveBigIntegerField(null=True, blank=True)
    resolution_reasoning = models.TextField(blank=True)
    resolved_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name='resolved_disputes')
    resolved_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['milestone'],
                condition=~Q(status='resolved'),
                name='one_open_dispute_per_milestone',
            ),
        ]

    def __str__(self):
        return f"Dispute #{self.pk} on {self.milestone} by {self.raised_by} ({self.status})"

    @property
    def project(self):
        return self.milestone.project

    @property
    def active_neutral(self):
        if self.status == self.IN_MEDIATION:
            return self.mediator
        if self.status == self.IN_ARBITRATION:
            return self.arbitrator
        return None


class DisputeEvidence(models.Model):
    dispute = models.ForeignKey(Dispute, on_delete=models.PROTECT, related_name='evidence')
    submitted_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='dispute_evidence')
    files = models.JSONField(default=list)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']


class DisputeMessage(models.Model):
    dispute = models.ForeignKey(Dispute, on_delete=models.PROTECT, related_name='messages')
    sender = models.ForeignKey(User, on_delete=models.PROTECT)
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']


auditlog.register(Dispute)
