from rest_framework import serializers

from .models import LifecycleEvent


class LifecycleEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = LifecycleEvent
        fields = (
            "id",
            "entity_type",
            "entity_id",
            "event_type",
            "old_status",
            "new_status",
            "actor",
            "payload",
            "occurred_at",
        )
        read_only_fields = fields
