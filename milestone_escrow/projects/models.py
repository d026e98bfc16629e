from django.conf import settings
from django.db import models
from auditlog.registry import auditlog

from .exceptions import BudgetLocked, MilestoneLocked

User = settings.AUTH_USER_MODEL


def default_currency():
    return settings.DEFAULT_CURRENCY


def default_grace_period_days():
    return settings.AUTO_APPROVAL_GRACE_DAYS


def default_max_revisions():
    return settings.DEFAULT_MAX_REVISIONS


class Project(models.Model):
    STATUS_CHOICES = (
        ('draft', 'Draft'),
        ('active', 'Active'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    )

    payer = models.ForeignKey(User, related_name='paying_projects', on_delete=models.PROTECT)
    payee = models.ForeignKey(User, related_name='earning_projects', on_delete=models.PROTECT, null=True, blank=True)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    currency = models.CharField(max_length=3, default=default_currency)
    budget = models.PositiveBigIntegerField()
    grace_period_days = models.PositiveSmallIntegerField(default=default_grace_period_days)
    max_revisions = models.PositiveSmallIntegerField(default=default_max_revisions)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.title} ({self.payer} -> {self.payee})"

    @property
    def has_deposit(self):
        return self.transactions.filter(transaction_type='deposit', status='completed').exists()

    def save(self, *args, **kwargs):
        if self.pk is not None:
            stored = Project.objects.filter(pk=self.pk).values_list('budget', flat=True).first()
            if stored is not None and stored != self.budget and self.has_deposit:
                raise BudgetLocked()
        super().save(*args, **kwargs)


class Milestone(models.Model):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    PARTIALLY_APPROVED = 'partially_approved'
    REVISION_REQUESTED = 'revision_requested'
    DISPUTED = 'disputed'
    CANCELLED = 'cancelled'

    STATUS_CHOICES = (
        (PENDING, 'Pending'),
        (IN_PROGRESS, 'In Progress'),
        (SUBMITTED, 'Submitted'),
        (APPROVED, 'Approved'),
        (PARTIALLY_APPROVED, 'Partially Approved'),
        (REVISION_REQUESTED, 'Revision Requested'),
        (DISPUTED, 'Disputed'),
        (CANCELLED, 'Cancelled'),
    )

    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name="milestones")
    position = models.PositiveIntegerField()
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    amount = models.PositiveBigIntegerField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    deadline = models.DateTimeField(null=True, blank=True)

    submission_notes = models.TextField(blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    deliverables = models.JSONField(default=list, blank=True)
    revision_count = models.PositiveSmallIntegerField(default=0)
    revision_history = models.JSONField(default=list, blank=True)

    auto_approval_deadline = models.DateTimeField(null=True, blank=True)
    auto_approval_warning_sent = models.BooleanField(default=False)
    approved_at = models.DateTimeField(null=True, blank=True)
    auto_approved = models.BooleanField(default=False)
    feedback = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['project_id', 'position']
        constraints = [
            models.UniqueConstraint(fields=['project', 'position'], name='unique_milestone_position'),
        ]
        indexes = [
            models.Index(fields=['status', 'auto_approval_deadline']),
        ]

    def __str__(self):
        return f"{self.project.title} #{self.position}: {self.title} ({self.status})"

    def delete(self, *args, **kwargs):
        if self.project.has_deposit:
            raise MilestoneLocked()
        return super().delete(*args, **kwargs)


auditlog.register(Milestone)
