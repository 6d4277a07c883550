"""
Tests for Payment state machine transitions.

Tests cover:
- Valid transitions: pending -> completed -> released, pending -> failed
- Invalid transitions raise TransitionNotAllowed
- Conditional saves: a stale instance cannot overwrite a newer state
"""

import pytest
from django_fsm import ConcurrentTransition, TransitionNotAllowed

from payments.models import Payment
from payments.state_machines import PaymentStatus
from payments.tests.factories import PaymentFactory


@pytest.mark.django_db
class TestValidTransitions:
    def test_complete(self, pending_payment):
        payment = Payment.objects.get(id=pending_payment.id)

        payment.complete(charge_id="pi_123")
        payment.save()

        stored = Payment.objects.get(id=payment.id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.stripe_charge_id == "pi_123"
        assert stored.completed_at is not None

    def test_fail(self, pending_payment):
        payment = Payment.objects.get(id=pending_payment.id)

        payment.fail(reason="Card declined")
        payment.save()

        stored = Payment.objects.get(id=payment.id)
        assert stored.status == PaymentStatus.FAILED
        assert stored.failure_reason == "Card declined"
        assert stored.failed_at is not None

    def test_fail_default_reason(self, pending_payment):
        payment = Payment.objects.get(id=pending_payment.id)

        payment.fail()

        assert payment.failure_reason == "Payment failed"

    def test_release(self, completed_payment):
        payment = Payment.objects.get(id=completed_payment.id)

        payment.release(
            transfer_id="tr_123", platform_fee_cents=200, transfer_amount_cents=1800
        )
        payment.save()

        stored = Payment.objects.get(id=payment.id)
        assert stored.status == PaymentStatus.RELEASED
        assert stored.stripe_transfer_id == "tr_123"
        assert stored.platform_fee_cents == 200
        assert stored.transfer_amount_cents == 1800
        assert stored.released_at is not None


@pytest.mark.django_db
class TestInvalidTransitions:
    @pytest.mark.parametrize(
        "traits,transition,kwargs",
        [
            ({"completed": True}, "complete", {}),
            ({"completed": True}, "fail", {}),
            ({"failed": True}, "complete", {}),
            ({"released": True}, "fail", {}),
            ({"released": True}, "complete", {}),
            (
                {},
                "release",
                {"transfer_id": "tr_1", "platform_fee_cents": 200, "transfer_amount_cents": 1800},
            ),
            (
                {"failed": True},
                "release",
                {"transfer_id": "tr_1", "platform_fee_cents": 200, "transfer_amount_cents": 1800},
            ),
        ],
    )
    def test_transition_not_allowed(self, seller, traits, transition, kwargs):
        payment = Payment.objects.get(id=PaymentFactory(payer=seller, **traits).id)
        status_before = payment.status

        with pytest.raises(TransitionNotAllowed):
            getattr(payment, transition)(**kwargs)

        assert payment.status == status_before


@pytest.mark.django_db
class TestConcurrentTransitions:
    def test_stale_instance_cannot_overwrite(self, pending_payment):
        first = Payment.objects.get(id=pending_payment.id)
        second = Payment.objects.get(id=pending_payment.id)

        first.complete(charge_id="pi_winner")
        first.save()

        second.fail(reason="Checkout session expired")
        with pytest.raises(ConcurrentTransition):
            second.save()

        stored = Payment.objects.get(id=pending_payment.id)
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.stripe_charge_id == "pi_winner"

    def test_duplicate_completion_loses(self, pending_payment):
        first = Payment.objects.get(id=pending_payment.id)
        second = Payment.objects.get(id=pending_payment.id)

        first.complete(charge_id="pi_1")
        first.save()
        second.complete(charge_id="pi_2")

        with pytest.raises(ConcurrentTransition):
            second.save()

        assert Payment.objects.get(id=pending_payment.id).stripe_charge_id == "pi_1"
