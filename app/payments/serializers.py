"""
DRF serializers for payments app.

This module provides serializers for:
- Escrow session creation requests
- Endpoint responses (documented through drf-spectacular)
- Payment history

Related files:
    - models/: Payment, PayeeAccount
    - views.py: Payment API views

Usage:
    serializer = CreateEscrowSessionSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    amount = serializer.validated_data["amount"]
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import Payment


class CreateEscrowSessionSerializer(serializers.Serializer):
    """
    Request body for POST /payments/create-escrow-session.

    Fields:
        amount: Gross amount in minor units (cents), positive
        promotionId: PromotionRequest the escrow is for
        creatorId: Creator who will receive the release
    """

    amount = serializers.IntegerField(min_value=1)
    promotionId = serializers.UUIDField(source="promotion_id")
    creatorId = serializers.IntegerField(source="creator_id", min_value=1)


class OnboardingLinkSerializer(serializers.Serializer):
    onboardingUrl = serializers.URLField()
    accountId = serializers.CharField()


class EscrowSessionSerializer(serializers.Serializer):
    sessionId = serializers.CharField()
    url = serializers.URLField(allow_null=True)
    paymentId = serializers.UUIDField()


class SessionStatusSerializer(serializers.Serializer):
    """
    Response for GET /payments/verify-session/<sessionId>.

    status is the stored payment state, which only webhooks change.
    checkoutStatus and paymentStatus are Stripe's current view of the
    session and may be null if Stripe could not be reached.
    """

    status = serializers.CharField()
    paymentId = serializers.UUIDField()
    checkoutStatus = serializers.CharField(allow_null=True)
    paymentStatus = serializers.CharField(allow_null=True)


class ReleaseSerializer(serializers.Serializer):
    transferId = serializers.CharField()
    transferAmount = serializers.IntegerField()
    platformFee = serializers.IntegerField()
    alreadyReleased = serializers.BooleanField()


class PaymentSerializer(serializers.ModelSerializer):
    """
    Payment serializer for payment history.

    Usage:
        payments = Payment.objects.filter(payer=user)[:50]
        serializer = PaymentSerializer(payments, many=True)
    """

    amount = serializers.IntegerField(source="amount_cents", read_only=True)
    sessionId = serializers.CharField(source="stripe_session_id", read_only=True)
    transferId = serializers.CharField(
        source="stripe_transfer_id", read_only=True, allow_null=True
    )
    promotionId = serializers.CharField(source="promotion_id", read_only=True)
    creatorId = serializers.CharField(source="creator_id", read_only=True)
    platformFee = serializers.IntegerField(
        source="platform_fee_cents", read_only=True, allow_null=True
    )
    transferAmount = serializers.IntegerField(
        source="transfer_amount_cents", read_only=True, allow_null=True
    )
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    completedAt = serializers.DateTimeField(
        source="completed_at", read_only=True, allow_null=True
    )
    releasedAt = serializers.DateTimeField(
        source="released_at", read_only=True, allow_null=True
    )

    class Meta:
        model = Payment
        fields = [
            "id",
            "amount",
            "currency",
            "status",
            "sessionId",
            "transferId",
            "promotionId",
            "creatorId",
            "platformFee",
            "transferAmount",
            "createdAt",
            "completedAt",
            "releasedAt",
        ]
        read_only_fields = fields


class ErrorSerializer(serializers.Serializer):
    error = serializers.CharField()
    error_code = serializers.CharField()
