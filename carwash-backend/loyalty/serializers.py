# loyalty/serializers.py

from rest_framework import serializers

from .models import AdjustDirection, LoyaltyProgram, WalletTransaction


class LoyaltyProgramSerializer(serializers.ModelSerializer):
    class Meta:
        model = LoyaltyProgram
        fields = [
            "id",
            "tenant",
            "name",
            "description",
            "is_active",
            "points_per_currency",
            "currency_per_point",
            "min_points_redeem",
            "expiration_days",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class WalletTransactionCreateSerializer(serializers.Serializer):
    """
    Shape check for POST /loyalty/transactions. Business rules (sign,
    balance, minimum redemption) are enforced by loyalty.services.
    """
    customer_id = serializers.IntegerField()
    transaction_type = serializers.ChoiceField(
        choices=[
            WalletTransaction.EARN,
            WalletTransaction.REDEEM,
            WalletTransaction.ADJUST,
        ]
    )
    points = serializers.IntegerField()
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    direction = serializers.ChoiceField(
        choices=AdjustDirection.choices, required=False, allow_null=True, default=None
    )
