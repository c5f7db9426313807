"""
API views for escrow payments.

URL Structure (prefixed with /api/v1/payments/):
    /                                   GET, POST
    /{id}/                              GET
    /{id}/confirm/                      POST
    /{id}/release/                      POST
    /{id}/refund/                       POST
    /{id}/events/                       GET
    /stats/                             GET
    /sweeps/auto-release/               POST (staff)
    /sweeps/stuck-payments/             POST (staff)
    /sweeps/reconcile/                  POST (staff)
    /payout-account/                    GET, POST
    /payout-account/onboarding-link/    POST
    /payout-account/refresh/            POST
    /webhooks/stripe/                   POST (see escrow.webhooks.views)

Design Decisions:
    - Views only parse input and render output; every state change goes
      through EscrowLedger
    - Ledger errors are rendered by core.exception_handler
    - Payments are party-scoped: anyone else gets 404
"""

from __future__ import annotations

from datetime import timedelta

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from escrow.models import Payment, PayoutAccount
from escrow.serializers import (
    OnboardingLinkSerializer,
    PaymentConfirmSerializer,
    PaymentCreateResponseSerializer,
    PaymentCreateSerializer,
    PaymentEventSerializer,
    PaymentListFilterSerializer,
    PaymentRefundSerializer,
    PaymentSerializer,
    PaymentStatsSerializer,
    PayoutAccountSerializer,
    SweepResultSerializer,
)
from escrow.services import PaymentStatsService, get_ledger, get_payout_account_service
from escrow.workers import run_auto_release_sweep, run_reconciliation, run_stuck_payment_sweep

UUID_REGEX = "[0-9a-fA-F-]{36}"


@extend_schema_view(
    list=extend_schema(
        operation_id="list_payments",
        summary="List payments",
        parameters=[
            OpenApiParameter("status", OpenApiTypes.STR, description="Filter by payment status"),
            OpenApiParameter("escrow_status", OpenApiTypes.STR, description="Filter by escrow status"),
            OpenApiParameter("role", OpenApiTypes.STR, description="payer or payee"),
        ],
        tags=["Payments"],
    ),
    retrieve=extend_schema(
        operation_id="get_payment",
        summary="Get payment",
        tags=["Payments"],
    ),
)
class PaymentViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Escrow payments of the current user.

    list:
        Payments where the user is payer or payee, newest first.

    create:
        Create a payment with the user as payer. Returns the payment and
        the client secret the payer's browser needs to confirm the intent.

    confirm:
        Payer reports the intent as confirmed (pending → processing).

    release:
        Payer approves the work; funds are captured and released.

    refund:
        Payer cancels the work while funds are still held.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = PaymentSerializer
    lookup_value_regex = UUID_REGEX

    def get_queryset(self):
        if not self.request.user.is_authenticated:
            return Payment.objects.none()

        queryset = Payment.objects.for_party(self.request.user.pk).order_by("-created_at")
        if self.action != "list":
            return queryset

        filters = PaymentListFilterSerializer(data=self.request.query_params)
        filters.is_valid(raise_exception=True)
        params = filters.validated_data
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("escrow_status"):
            queryset = queryset.filter(escrow_status=params["escrow_status"])
        if params.get("role") == "payer":
            queryset = queryset.filter(payer_id=self.request.user.pk)
        elif params.get("role") == "payee":
            queryset = queryset.filter(payee_id=self.request.user.pk)
        return queryset

    def get_ledger(self):
        return get_ledger()

    @extend_schema(
        operation_id="create_payment",
        summary="Create payment",
        request=PaymentCreateSerializer,
        responses={
            201: PaymentCreateResponseSerializer,
            400: OpenApiResponse(description="Validation error or payee not payout eligible"),
            502: OpenApiResponse(description="Payment processor error"),
        },
        tags=["Payments"],
    )
    def create(self, request):
        serializer = PaymentCreateSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        auto_release_days = data.get("auto_release_days")
        result = self.get_ledger().create_payment(
            payer_id=request.user.pk,
            payee_id=data["payee_id"].pk,
            contract_id=data["contract_id"],
            milestone_id=data.get("milestone_id") or None,
            amount=data["amount"],
            currency=data.get("currency"),
            payment_type=data["payment_type"],
            description=data["description"],
            auto_release=data["auto_release"],
            auto_release_after=timedelta(days=auto_release_days) if auto_release_days else None,
        )

        output = PaymentCreateResponseSerializer(
            {"payment": result.payment, "client_secret": result.client_secret}
        )
        return Response(output.data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="confirm_payment",
        summary="Confirm payment",
        request=PaymentConfirmSerializer,
        responses={200: PaymentSerializer, 409: OpenApiResponse(description="State conflict")},
        tags=["Payments"],
    )
    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):
        payment = self.get_object()
        serializer = PaymentConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payment = self.get_ledger().confirm_payment(
            payment.id,
            serializer.validated_data["external_intent_id"],
            caller_id=request.user.pk,
        )
        return Response(PaymentSerializer(payment).data)

    @extend_schema(
        operation_id="release_payment",
        summary="Release payment",
        request=None,
        responses={
            200: PaymentSerializer,
            409: OpenApiResponse(description="State conflict"),
            502: OpenApiResponse(description="Capture failed"),
            503: OpenApiResponse(description="Processor unavailable, retry later"),
        },
        tags=["Payments"],
    )
    @action(detail=True, methods=["post"])
    def release(self, request, pk=None):
        payment = self.get_object()
        payment = self.get_ledger().release(payment.id, caller_id=request.user.pk)
        return Response(PaymentSerializer(payment).data)

    @extend_schema(
        operation_id="refund_payment",
        summary="Request refund",
        request=PaymentRefundSerializer,
        responses={200: PaymentSerializer, 409: OpenApiResponse(description="State conflict")},
        tags=["Payments"],
    )
    @action(detail=True, methods=["post"])
    def refund(self, request, pk=None):
        payment = self.get_object()
        serializer = PaymentRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payment = self.get_ledger().refund(
            payment.id,
            caller_id=request.user.pk,
            reason=serializer.validated_data["reason"],
        )
        return Response(PaymentSerializer(payment).data)

    @extend_schema(
        operation_id="list_payment_events",
        summary="Payment audit log",
        responses={200: PaymentEventSerializer(many=True)},
        tags=["Payments"],
    )
    @action(detail=True, methods=["get"])
    def events(self, request, pk=None):
        payment = self.get_object()
        return Response(PaymentEventSerializer(payment.events.all(), many=True).data)

    @extend_schema(
        operation_id="get_payment_stats",
        summary="Payment statistics",
        responses={200: PaymentStatsSerializer},
        tags=["Payments"],
    )
    @action(detail=False, methods=["get"])
    def stats(self, request):
        stats = PaymentStatsService.get_stats(request.user.pk)
        return Response(PaymentStatsSerializer(stats).data)

    # =========================================================================
    # Manual sweep triggers (staff only)
    # =========================================================================

    @extend_schema(
        operation_id="run_auto_release_sweep",
        summary="Run auto-release sweep",
        request=None,
        responses={200: SweepResultSerializer},
        tags=["Payments - Operations"],
    )
    @action(
        detail=False,
        methods=["post"],
        url_path="sweeps/auto-release",
        permission_classes=[IsAdminUser],
    )
    def sweep_auto_release(self, request):
        return Response(run_auto_release_sweep(self.get_ledger()))

    @extend_schema(
        operation_id="run_stuck_payment_sweep",
        summary="Run stuck-payment sweep",
        request=None,
        responses={200: SweepResultSerializer},
        tags=["Payments - Operations"],
    )
    @action(
        detail=False,
        methods=["post"],
        url_path="sweeps/stuck-payments",
        permission_classes=[IsAdminUser],
    )
    def sweep_stuck_payments(self, request):
        return Response(run_stuck_payment_sweep(self.get_ledger()))

    @extend_schema(
        operation_id="run_pending_reconciliation",
        summary="Reconcile pending payments",
        request=None,
        responses={200: SweepResultSerializer},
        tags=["Payments - Operations"],
    )
    @action(
        detail=False,
        methods=["post"],
        url_path="sweeps/reconcile",
        permission_classes=[IsAdminUser],
    )
    def sweep_reconcile(self, request):
        return Response(run_reconciliation(self.get_ledger()))


# =============================================================================
# Payout Account
# =============================================================================


class PayoutAccountView(APIView):
    """
    Current user's payout account.

    GET /api/v1/payments/payout-account/
    POST /api/v1/payments/payout-account/ - create (idempotent)
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payout_account",
        summary="Get payout account",
        responses={200: PayoutAccountSerializer, 404: OpenApiResponse(description="No payout account")},
        tags=["Payments - Payout Account"],
    )
    def get(self, request):
        account = get_payout_account_service().get_account(request.user)
        return Response(PayoutAccountSerializer(account).data)

    @extend_schema(
        operation_id="create_payout_account",
        summary="Create payout account",
        request=None,
        responses={201: PayoutAccountSerializer, 200: PayoutAccountSerializer},
        tags=["Payments - Payout Account"],
    )
    def post(self, request):
        existed = PayoutAccount.objects.filter(user=request.user).exists()
        account = get_payout_account_service().create_account(request.user)
        return Response(
            PayoutAccountSerializer(account).data,
            status=status.HTTP_200_OK if existed else status.HTTP_201_CREATED,
        )


class PayoutOnboardingLinkView(APIView):
    """POST /api/v1/payments/payout-account/onboarding-link/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payout_onboarding_link",
        summary="Create onboarding link",
        request=None,
        responses={200: OnboardingLinkSerializer},
        tags=["Payments - Payout Account"],
    )
    def post(self, request):
        link = get_payout_account_service().create_onboarding_link(request.user)
        return Response(OnboardingLinkSerializer({"url": link.url, "expires_at": link.expires_at}).data)


class PayoutAccountRefreshView(APIView):
    """POST /api/v1/payments/payout-account/refresh/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="refresh_payout_account",
        summary="Refresh payout account from Stripe",
        request=None,
        responses={200: PayoutAccountSerializer},
        tags=["Payments - Payout Account"],
    )
    def post(self, request):
        account = get_payout_account_service().refresh_status(request.user)
        return Response(PayoutAccountSerializer(account).data)
