"""Tests for Stripe webhook verification, deduplication and routing."""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from linguamarket.app.marketplace.crud.crud_admin import webhook_event_dao
from linguamarket.core.conf import settings
from linguamarket.src.billing.external.stripe.handlers.payment_intent import PaymentIntentHandler
from linguamarket.src.billing.external.stripe.webhooks import webhook_service
from linguamarket.src.billing.payments.reconciler import payment_reconciler
from linguamarket.src.billing.subscriptions.post_trial import PostTrialPaymentService


def _event(event_id, event_type, obj):
    return SimpleNamespace(id=event_id, type=event_type, data=SimpleNamespace(object=obj))


def _request(body: bytes, headers: dict):
    return SimpleNamespace(body=AsyncMock(return_value=body), headers=headers)


def _signature(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f'{timestamp}.{payload.decode()}'.encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


class TestDispatch:
    """Tests for event deduplication and routing."""

    @pytest.mark.asyncio
    async def test_succeeded_intent_settles_enrollment_once(self, db, make_course, make_enrollment):
        course = await make_course(base_price=Decimal('80.00'))
        enrollment = await make_enrollment(4, course.id)
        intent = {'id': 'pi_w1', 'amount_received': 8000, 'metadata': {'enrollmentId': str(enrollment.id)}}
        event = _event('evt_1', 'payment_intent.succeeded', intent)

        first = await webhook_service.dispatch(db, event)
        second = await webhook_service.dispatch(db, event)

        assert first == {'status': 'success', 'event_id': 'evt_1'}
        assert second['message'] == 'Event already processed or in progress: Event already processed'
        assert enrollment.payment_status == 'PAID'
        stored = await webhook_event_dao.get(db, 'evt_1')
        assert stored.status == 'completed'
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_handler_error_is_acknowledged_and_recorded(self, db, monkeypatch):
        monkeypatch.setattr(PaymentIntentHandler, 'handle_succeeded', AsyncMock(side_effect=RuntimeError('boom')))

        result = await webhook_service.dispatch(db, _event('evt_2', 'payment_intent.succeeded', {'id': 'pi_x'}))

        assert result['status'] == 'success'
        assert result['error'] == 'processed_with_errors'
        stored = await webhook_event_dao.get(db, 'evt_2')
        assert stored.status == 'failed'
        assert stored.error_message == 'RuntimeError: boom'

    @pytest.mark.asyncio
    async def test_failed_event_is_retried(self, db, monkeypatch):
        failing = AsyncMock(side_effect=[RuntimeError('boom'), None])
        monkeypatch.setattr(PaymentIntentHandler, 'handle_succeeded', failing)
        event = _event('evt_3', 'payment_intent.succeeded', {'id': 'pi_y'})

        await webhook_service.dispatch(db, event)
        result = await webhook_service.dispatch(db, event)

        assert result == {'status': 'success', 'event_id': 'evt_3'}
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_post_trial_intents_go_to_subscription_flow(self, db, monkeypatch):
        post_trial = AsyncMock()
        course_payment = AsyncMock()
        monkeypatch.setattr(PostTrialPaymentService, 'handle_failure', post_trial)
        monkeypatch.setattr(payment_reconciler, 'handle_payment_failed', course_payment)
        intent = {'id': 'pi_pt', 'metadata': {'type': 'post_trial_payment', 'subscriptionId': '7'}}

        await webhook_service.dispatch(db, _event('evt_4', 'payment_intent.payment_failed', intent))

        post_trial.assert_awaited_once_with(db, intent)
        course_payment.assert_not_called()

    @pytest.mark.asyncio
    async def test_refunds_go_to_reconciler(self, db, monkeypatch):
        refund = AsyncMock()
        monkeypatch.setattr(payment_reconciler, 'handle_refund', refund)
        charge = {'id': 'ch_1', 'payment_intent': 'pi_1', 'amount_refunded': 500}

        await webhook_service.dispatch(db, _event('evt_5', 'charge.refunded', charge))

        refund.assert_awaited_once_with(db, charge)

    @pytest.mark.asyncio
    async def test_unhandled_event_type_is_completed(self, db):
        result = await webhook_service.dispatch(db, _event('evt_6', 'invoice.created', {'id': 'in_1'}))

        assert result['event_id'] == 'evt_6'


class TestSignatureVerification:
    """Tests for process_stripe_webhook."""

    @pytest.mark.asyncio
    async def test_missing_signature_header(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await webhook_service.process_stripe_webhook(_request(b'{}', {}), db)

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_secret_not_configured(self, db, monkeypatch):
        monkeypatch.setattr(settings, 'STRIPE_WEBHOOK_SECRET', '')

        with pytest.raises(HTTPException) as exc_info:
            await webhook_service.process_stripe_webhook(_request(b'{}', {'stripe-signature': 't=1,v1=x'}), db)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_invalid_signature(self, db, monkeypatch):
        monkeypatch.setattr(settings, 'STRIPE_WEBHOOK_SECRET', 'whsec_test')

        with pytest.raises(HTTPException) as exc_info:
            await webhook_service.process_stripe_webhook(
                _request(b'{"id": "evt_7"}', {'stripe-signature': 't=1,v1=deadbeef'}), db
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == 'Invalid webhook signature'

    @pytest.mark.asyncio
    async def test_valid_signature_is_dispatched(self, db, monkeypatch):
        monkeypatch.setattr(settings, 'STRIPE_WEBHOOK_SECRET', 'whsec_test')
        payload = json.dumps({
            'id': 'evt_8',
            'object': 'event',
            'type': 'customer.created',
            'data': {'object': {'id': 'cus_1', 'object': 'customer'}},
        }).encode()

        result = await webhook_service.process_stripe_webhook(
            _request(payload, {'stripe-signature': _signature(payload, 'whsec_test')}), db
        )

        assert result == {'status': 'success', 'event_id': 'evt_8'}
