from django.db import models


class LifecycleEvent(models.Model):
    """One committed state change of a milestone, dispute or escrow account."""
    ENTITY_CHOICES = (
        ('milestone', 'Milestone'),
        ('dispute', 'Dispute'),
        ('escrow', 'Escrow Account'),
    )

    entity_type = models.CharField(max_length=20, choices=ENTITY_CHOICES)
    entity_id = models.PositiveBigIntegerField()
    event_type = models.CharField(max_length=100)
    old_status = models.CharField(max_length=30, blank=True)
    new_status = models.CharField(max_length=30, blank=True)
    actor = models.CharField(max_length=50)
    payload = models.JSONField(default=dict)
    occurred_at = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['occurred_at', 'id']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id']),
        ]

    def __str__(self):
        return f"{self.event_type} {self.entity_type}#{self.entity_id} ({self.old_status} -> {self.new_status})"
