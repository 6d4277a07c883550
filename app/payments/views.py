"""
DRF views for payments app.

This module provides API views for:
- Creator payee onboarding
- Escrow checkout session creation and status polling
- Escrow release
- Payment history

Related files:
    - services/: AccountLinkingService, EscrowSessionService, EscrowReleaseService
    - serializers.py: Request/response serializers
    - webhooks/views.py: Stripe webhook endpoint
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/onboard - Create payee account and onboarding link
    POST /api/v1/payments/create-escrow-session - Open checkout session
    GET /api/v1/payments/verify-session/<sessionId> - Poll session status
    POST /api/v1/payments/release-escrow/<paymentId> - Release funds to creator
    GET /api/v1/payments/history - Payer's payments, newest first
    POST /api/v1/payments/webhook - Stripe webhook endpoint

Security:
    - All endpoints require authentication except webhook
    - Webhook verifies Stripe signature
"""

from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from campaigns.models import PromotionRequest
from core.services import ServiceResult

from payments.models import PayeeAccount, Payment
from payments.permissions import IsCreator, IsSeller
from payments.serializers import (
    CreateEscrowSessionSerializer,
    ErrorSerializer,
    EscrowSessionSerializer,
    OnboardingLinkSerializer,
    PaymentSerializer,
    ReleaseSerializer,
    SessionStatusSerializer,
)
from payments.services import (
    AccountLinkingService,
    EscrowReleaseService,
    EscrowSessionService,
)

logger = logging.getLogger(__name__)

PAYMENT_HISTORY_LIMIT = 50

# Seconds a caller that lost a concurrent release should wait before retrying
RELEASE_RETRY_AFTER_SECONDS = 5

# Error codes returned by services, mapped to HTTP status.
# Codes not listed here come from Stripe and map to 502.
ERROR_STATUS_CODES = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "PAYMENT_VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "PAYEE_NOT_ONBOARDED": status.HTTP_400_BAD_REQUEST,
    "AMOUNT_OUT_OF_RANGE": status.HTTP_400_BAD_REQUEST,
    "PROMOTION_CLOSED": status.HTTP_400_BAD_REQUEST,
    "INVALID_STATE_TRANSITION": status.HTTP_400_BAD_REQUEST,
    "INVALID_SIGNATURE": status.HTTP_400_BAD_REQUEST,
    "PERMISSION_DENIED": status.HTTP_403_FORBIDDEN,
    "PAYMENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PROMOTION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CREATOR_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "RELEASE_IN_PROGRESS": status.HTTP_409_CONFLICT,
    "PERSISTENCE_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for_error(error_code: str | None) -> int:
    """HTTP status for a service error code."""
    return ERROR_STATUS_CODES.get(error_code, status.HTTP_502_BAD_GATEWAY)


def error_response(result: ServiceResult) -> Response:
    """Render a failed ServiceResult as an API error response."""
    return Response(result.to_response(), status=status_for_error(result.error_code))


ERROR_RESPONSES = {
    400: OpenApiResponse(response=ErrorSerializer, description="Validation or state error"),
    401: OpenApiResponse(description="Authentication required"),
    403: OpenApiResponse(response=ErrorSerializer, description="Not allowed"),
    502: OpenApiResponse(response=ErrorSerializer, description="Stripe error"),
}


class OnboardView(APIView):
    """
    Start or resume payee onboarding for a creator.

    POST /api/v1/payments/onboard

    Creates the creator's Stripe Connect account on first call and
    returns a fresh single-use onboarding link every time.

    Returns:
        {"onboardingUrl": "https://connect.stripe.com/...", "accountId": "acct_..."}
    """

    permission_classes = [IsAuthenticated, IsCreator]

    @extend_schema(
        operation_id="payments_onboard",
        summary="Start payee onboarding",
        request=None,
        responses={200: OnboardingLinkSerializer, **ERROR_RESPONSES},
        tags=["Payments"],
    )
    def post(self, request):
        account_result = AccountLinkingService.create_or_get_payee_account(request.user)
        if not account_result.success:
            return error_response(account_result)

        payee_account = account_result.data
        link_result = AccountLinkingService.create_onboarding_link(
            payee_account.stripe_account_id
        )
        if not link_result.success:
            return error_response(link_result)

        return Response(
            {
                "onboardingUrl": link_result.data.url,
                "accountId": payee_account.stripe_account_id,
            }
        )


class CreateEscrowSessionView(APIView):
    """
    Open an escrow checkout session for a promotion request.

    POST /api/v1/payments/create-escrow-session

    Request body:
        {"amount": 2000, "promotionId": "<uuid>", "creatorId": 42}

    The seller must own the promotion request, the amount must fall in
    its budget range, and the creator must have finished onboarding.

    Returns:
        {"sessionId": "cs_...", "url": "https://checkout.stripe.com/...", "paymentId": "<uuid>"}
    """

    permission_classes = [IsAuthenticated, IsSeller]

    @extend_schema(
        operation_id="payments_create_escrow_session",
        summary="Create escrow checkout session",
        request=CreateEscrowSessionSerializer,
        responses={
            201: EscrowSessionSerializer,
            404: OpenApiResponse(
                response=ErrorSerializer, description="Promotion or creator not found"
            ),
            **ERROR_RESPONSES,
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = CreateEscrowSessionSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {
                    "error": "Invalid request",
                    "error_code": "VALIDATION_ERROR",
                    "errors": serializer.errors,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        data = serializer.validated_data
        target = self._resolve_target(
            request.user, data["promotion_id"], data["creator_id"], data["amount"]
        )
        if not target.success:
            return error_response(target)
        promotion, payee_account = target.data

        result = EscrowSessionService.create_escrow_session(
            amount_cents=data["amount"],
            payer=request.user,
            payee_account_id=payee_account.stripe_account_id,
            metadata={
                "promotion_id": str(promotion.id),
                "creator_id": str(payee_account.user_id),
            },
            product_name=promotion.title,
        )
        if not result.success:
            return error_response(result)

        return Response(
            {
                "sessionId": result.data.session_id,
                "url": result.data.url,
                "paymentId": str(result.data.payment.id),
            },
            status=status.HTTP_201_CREATED,
        )

    @staticmethod
    def _resolve_target(seller, promotion_id, creator_id, amount_cents) -> ServiceResult:
        """
        Check the promotion and creator a session is opened for.

        Returns:
            ServiceResult containing (PromotionRequest, PayeeAccount)
        """
        promotion = PromotionRequest.objects.filter(id=promotion_id).first()
        if promotion is None:
            return ServiceResult.failure(
                "Promotion request not found", error_code="PROMOTION_NOT_FOUND"
            )
        if promotion.seller_id != seller.pk:
            return ServiceResult.failure(
                "You do not own this promotion request", error_code="PERMISSION_DENIED"
            )
        if promotion.is_closed:
            return ServiceResult.failure(
                f"Promotion request is {promotion.status}", error_code="PROMOTION_CLOSED"
            )
        if not promotion.accepts_amount(amount_cents):
            return ServiceResult.failure(
                "Amount is outside the promotion budget",
                error_code="AMOUNT_OUT_OF_RANGE",
                errors={
                    "amount": [
                        f"Must be between {promotion.budget_min_cents} "
                        f"and {promotion.budget_max_cents}."
                    ]
                },
            )

        User = get_user_model()
        creator = User.objects.filter(pk=creator_id, role=User.Role.CREATOR).first()
        if creator is None:
            return ServiceResult.failure(
                "Creator not found", error_code="CREATOR_NOT_FOUND"
            )
        if promotion.accepted_creator_id and promotion.accepted_creator_id != creator.pk:
            return ServiceResult.failure(
                "Another creator was accepted for this promotion request",
                error_code="VALIDATION_ERROR",
            )

        payee_account = PayeeAccount.objects.filter(user=creator).first()
        if payee_account is None or not payee_account.onboarding_complete:
            return ServiceResult.failure(
                "Creator has not completed payee onboarding",
                error_code="PAYEE_NOT_ONBOARDED",
            )

        return ServiceResult.success((promotion, payee_account))


class VerifySessionView(APIView):
    """
    Poll the state of an escrow checkout session.

    GET /api/v1/payments/verify-session/<sessionId>

    For UI polling after the checkout redirect. The stored status is
    moved only by webhooks; this endpoint never changes it.

    Returns:
        {"status": "completed", "paymentId": "<uuid>",
         "checkoutStatus": "complete", "paymentStatus": "paid"}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="payments_verify_session",
        summary="Get checkout session status",
        responses={
            200: SessionStatusSerializer,
            404: OpenApiResponse(response=ErrorSerializer, description="Unknown session"),
            **ERROR_RESPONSES,
        },
        tags=["Payments"],
    )
    def get(self, request, session_id):
        result = EscrowSessionService.verify_session(session_id, request.user)
        if not result.success:
            return error_response(result)

        return Response(
            {
                "status": result.data.payment.status,
                "paymentId": str(result.data.payment.id),
                "checkoutStatus": result.data.checkout_status,
                "paymentStatus": result.data.checkout_payment_status,
            }
        )


class ReleaseEscrowView(APIView):
    """
    Release a completed escrow payment to the creator.

    POST /api/v1/payments/release-escrow/<paymentId>

    Only the payer or a platform admin may release. Releasing an already
    released payment succeeds without a second transfer.

    Concurrent releases:
        Exactly one caller creates the transfer. Another caller gets 200
        with alreadyReleased true once the release is recorded. While the
        first caller is still talking to Stripe it gets 409
        RELEASE_IN_PROGRESS with "retryable": true and a Retry-After
        header; retrying then returns the recorded release.

    Returns:
        {"transferId": "tr_...", "transferAmount": 1800,
         "platformFee": 200, "alreadyReleased": false}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="payments_release_escrow",
        summary="Release escrow",
        request=None,
        responses={
            200: ReleaseSerializer,
            404: OpenApiResponse(response=ErrorSerializer, description="Unknown payment"),
            409: OpenApiResponse(
                response=ErrorSerializer,
                description="Another release of this payment is in progress; retry",
            ),
            500: OpenApiResponse(
                response=ErrorSerializer,
                description="Transfer made but not recorded; retry to finalize",
            ),
            **ERROR_RESPONSES,
        },
        tags=["Payments"],
    )
    def post(self, request, payment_id):
        result = EscrowReleaseService.release_escrow(payment_id, request.user)
        if not result.success:
            response = error_response(result)
            if result.error_code == "RELEASE_IN_PROGRESS":
                response["Retry-After"] = str(RELEASE_RETRY_AFTER_SECONDS)
            return response

        return Response(
            {
                "transferId": result.data.transfer_id,
                "transferAmount": result.data.transfer_amount_cents,
                "platformFee": result.data.platform_fee_cents,
                "alreadyReleased": result.data.already_released,
            }
        )


class PaymentHistoryView(APIView):
    """
    List the requesting user's payments.

    GET /api/v1/payments/history

    Returns:
        {"payments": [...]} newest first, at most 50
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="payments_history",
        summary="List payment history",
        responses={200: PaymentSerializer(many=True)},
        tags=["Payments"],
    )
    def get(self, request):
        payments = Payment.objects.filter(payer=request.user).order_by("-created_at")[
            :PAYMENT_HISTORY_LIMIT
        ]
        return Response({"payments": PaymentSerializer(payments, many=True).data})
