from django.conf import settings
from django.db import models
from django.db.models import F, Q
from auditlog.registry import auditlog

from .exceptions import TransactionImmutable
from .ledger import Balance, FUNDED, NOT_DEPOSITED, PARTIALLY_FUNDED, funding_status


class EscrowAccount(models.Model):
    STATUS_CHOICES = (
        (NOT_DEPOSITED, 'Not Deposited'),
        (PARTIALLY_FUNDED, 'Partially Funded'),
        (FUNDED, 'Funded'),
    )

    project = models.OneToOneField('projects.Project', on_delete=models.PROTECT, related_name='escrow')
    currency = models.CharField(max_length=3)
    total_amount = models.PositiveBigIntegerField(default=0)
    held_amount = models.PositiveBigIntegerField(default=0)
    released_amount = models.PositiveBigIntegerField(default=0)
    refunded_amount = models.PositiveBigIntegerField(default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=NOT_DEPOSITED)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=Q(total_amount=F('held_amount') + F('released_amount') + F('refunded_amount')),
                name='escrow_balances_add_up',
            ),
        ]

    def __str__(self):
        return f"Escrow for {self.project.title} ({self.held_amount} held of {self.total_amount})"

    @property
    def balance(self):
        return Balance.of(self)

    def apply(self, balance, budget):
        self.total_amount = balance.total
        self.held_amount = balance.held
        self.released_amount = balance.released
        self.refunded_amount = balance.refunded
        self.status = funding_status(balance, budget)


class Transaction(models.Model):
    DEPOSIT = 'deposit'
    MILESTONE_RELEASE = 'milestone_release'
    DISPUTE_PAYMENT = 'dispute_payment'
    DISPUTE_REFUND = 'dispute_refund'
    REFUND = 'refund'
    FEE = 'fee'
    WITHDRAWAL = 'withdrawal'

    TYPE_CHOICES = (
        (DEPOSIT, 'Deposit'),
        (MILESTONE_RELEASE, 'Milestone Release'),
        (DISPUTE_PAYMENT, 'Dispute Payment'),
        (DISPUTE_REFUND, 'Dispute Refund'),
        (REFUND, 'Refund'),
        (FEE, 'Fee'),
        (WITHDRAWAL, 'Withdrawal'),
    )

    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'

    STATUS_CHOICES = (
        (PENDING, 'Pending'),
        (COMPLETED, 'Completed'),
        (FAILED, 'Failed'),
    )

    project = models.ForeignKey('projects.Project', on_delete=models.PROTECT, related_name='transactions')
    # Null when the movement failed before the escrow account existed
    escrow = models.ForeignKey(EscrowAccount, on_delete=models.PROTECT, null=True, blank=True, related_name='transactions')
    milestone = models.ForeignKey('projects.Milestone', on_delete=models.PROTECT, null=True, blank=True, related_name='transactions')
    dispute = models.ForeignKey('disputes.Dispute', on_delete=models.PROTECT, null=True, blank=True, related_name='transactions')
    transaction_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    amount = models.PositiveBigIntegerField()
    net_amount = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3)
    # Null party means the escrow itself
    source_party = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name='outgoing_transactions')
    destination_party = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, null=True, blank=True, related_name='incoming_transactions')
    fee_breakdown = models.JSONField(default=dict)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    gateway_reference = models.CharField(max_length=255, blank=True)
    # Refunds only: the deposit charge this refund is drawn from
    charge_reference = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    failure_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.get_transaction_type_display()} {self.amount} {self.currency} ({self.status})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise TransactionImmutable()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise TransactionImmutable()


auditlog.register(EscrowAccount)
