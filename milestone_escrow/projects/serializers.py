from rest_framework import serializers
from django.contrib.auth import get_user_model

from .models import Project, Milestone


User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for lightweight user references.

    Fields (all read-only): id, first_name, last_name, email.
    Used when embedding payer/payee details in project payloads.
    """
    class Meta:
        model = User
        fields = ['id', 'first_name', 'last_name', 'email']
        read_only_fields = fields


class DeliverableSerializer(serializers.Serializer):
    """
    One delivered artefact attached to a milestone submission.

    Fields:
        - name: display name of the file or link
        - url: where the payer can review it
    """
    name = serializers.CharField(max_length=255)
    url = serializers.URLField(max_length=2000)


class MilestoneSerializer(serializers.ModelSerializer):
    """
    Serializer outlining milestone progress, review window and revisions.

    All fields are read-only; state changes go through MilestoneService.
    """
    project_id = serializers.IntegerField(source='project.id', read_only=True)
    deliverables = DeliverableSerializer(many=True, read_only=True)

    class Meta:
        model = Milestone
        fields = [
            'id', 'project_id', 'position', 'title', 'description', 'amount', 'status', 'deadline',
            'submission_notes', 'submitted_at', 'deliverables', 'revision_count', 'revision_history',
            'auto_approval_deadline', 'auto_approval_warning_sent', 'approved_at', 'auto_approved',
            'feedback', 'cancelled_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class ProjectSerializer(serializers.ModelSerializer):
    """
    Serializer for a project with its payer, payee and milestones.
    """
    payer = UserSerializer(read_only=True)
    payee = UserSerializer(read_only=True)
    milestones = MilestoneSerializer(many=True, read_only=True)

    class Meta:
        model = Project
        fields = [
            'id', 'title', 'description', 'currency', 'budget', 'grace_period_days', 'max_revisions',
            'status', 'payer', 'payee', 'milestones', 'created_at', 'updated_at',
        ]
        read_only_fields = fields
