from rest_framework import serializers

from .models import Dispute, DisputeEvidence, DisputeMessage


class EvidenceSerializer(serializers.Serializer):
    """
    Evidence supplied by a participant: links to uploaded files and an explanation.
    """
    files = serializers.ListField(child=serializers.URLField(max_length=2000), allow_empty=False)
    description = serializers.CharField(required=False, allow_blank=True, default='')


class ResolutionSerializer(serializers.Serializer):
    """
    Input for a neutral settling a dispute. Amounts are minor units.
    Whether they add up to the milestone amount is checked by the workflow.
    """
    decision = serializers.ChoiceField(choices=Dispute.DECISION_CHOICES)
    amount_to_payee = serializers.IntegerField(min_value=0)
    amount_to_payer = serializers.IntegerField(min_value=0)
    reasoning = serializers.CharField(allow_blank=False)


class AnalysisSerializer(serializers.Serializer):
    """
    Advisory assessment attached while a dispute awaits review.
    """
    confidence_score = serializers.FloatField(min_value=0.0, max_value=1.0)
    key_issues = serializers.ListField(child=serializers.CharField(), allow_empty=True)
    recommended_resolution = serializers.ChoiceField(choices=Dispute.DECISION_CHOICES)
    reasoning = serializers.CharField(allow_blank=True)


class DisputeEvidenceSerializer(serializers.ModelSerializer):
    submitted_by = serializers.StringRelatedField()

    class Meta:
        model = DisputeEvidence
        fields = ['id', 'submitted_by', 'files', 'description', 'created_at']
        read_only_fields = fields


class DisputeMessageSerializer(serializers.ModelSerializer):
    """
    Serializer for listing dispute messages.
    """
    sender = serializers.StringRelatedField()

    class Meta:
        model = DisputeMessage
        fields = ['id', 'sender', 'message', 'created_at']
        read_only_fields = fields


class DisputeDetailSerializer(serializers.ModelSerializer):
    """
    Serializer for retrieving a single dispute with its evidence and messages.
    """
    milestone_id = serializers.IntegerField(source='milestone.id', read_only=True)
    raised_by = serializers.StringRelatedField()
    mediator = serializers.StringRelatedField()
    arbitrator = serializers.StringRelatedField()
    resolved_by = serializers.StringRelatedField()
    evidence = DisputeEvidenceSerializer(many=True, read_only=True)
    messages = DisputeMessageSerializer(many=True, read_only=True)

    class Meta:
        model = Dispute
        fields = [
            'id', 'milestone_id', 'raised_by', 'reason', 'status', 'fee_amount', 'fee_paid_at',
            'analysis', 'mediator', 'mediation_started_at', 'arbitrator', 'escalation_reason', 'decision',
            'amount_to_payee', 'amount_to_payer', 'resolution_reasoning', 'resolved_by',
            'resolved_at', 'evidence', 'messages', 'created_at', 'updated_at',
        ]
        read_only_fields = fields
