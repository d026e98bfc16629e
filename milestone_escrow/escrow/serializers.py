from rest_framework import serializers

from .models import EscrowAccount, Transaction


class BalanceSerializer(serializers.Serializer):
    held = serializers.IntegerField(read_only=True)
    released = serializers.IntegerField(read_only=True)
    refunded = serializers.IntegerField(read_only=True)
    total = serializers.IntegerField(read_only=True)


class EscrowAccountSerializer(serializers.ModelSerializer):
    project_id = serializers.IntegerField(source="project.id", read_only=True)
    project_title = serializers.CharField(source="project.title", read_only=True)
    budget = serializers.IntegerField(source="project.budget", read_only=True)

    class Meta:
        model = EscrowAccount
        fields = (
            "id",
            "project_id",
            "project_title",
            "budget",
            "currency",
            "total_amount",
            "held_amount",
            "released_amount",
            "refunded_amount",
            "status",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class TransactionSerializer(serializers.ModelSerializer):
    milestone_id = serializers.IntegerField(source="milestone.id", read_only=True, default=None)
    dispute_id = serializers.IntegerField(source="dispute.id", read_only=True, default=None)

    class Meta:
        model = Transaction
        fields = (
            "id",
            "project",
            "milestone_id",
            "dispute_id",
            "transaction_type",
            "amount",
            "net_amount",
            "currency",
            "source_party",
            "destination_party",
            "fee_breakdown",
            "status",
            "gateway_reference",
            "charge_reference",
            "description",
            "failure_reason",
            "created_at",
        )
        read_only_fields = fields


class DepositSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)
    payment_method = serializers.CharField(required=False, allow_blank=True, max_length=255)
