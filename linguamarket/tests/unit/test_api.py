"""Tests for the billing HTTP surface."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import jwt
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from linguamarket.core.conf import settings
from linguamarket.core.registrar import register_exception, register_router
from linguamarket.database.db import get_db
from linguamarket.src.billing.external.stripe.client import StripeAPIWrapper
from linguamarket.src.billing.shared.settings_cache import AdminSettingsCache, get_admin_settings_cache

PREFIX = f'{settings.FASTAPI_API_V1_PATH}/billing'


def _auth(user_id: int, role: str = 'STUDENT') -> dict:
    token = jwt.encode({'sub': str(user_id), 'role': role}, settings.TOKEN_SECRET_KEY, algorithm=settings.TOKEN_ALGORITHM)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def app(db):
    app = FastAPI()
    register_exception(app)
    register_router(app)

    async def override_get_db():
        yield db

    cache = AdminSettingsCache(ttl_seconds=0, redis=None)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_admin_settings_cache] = lambda: cache
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as client:
        yield client


class TestAuthentication:
    """Tests for caller authentication."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get(f'{PREFIX}/usage')

        assert response.status_code == 401
        assert response.json()['error'] == 'UNAUTHORIZED'

    @pytest.mark.asyncio
    async def test_token_signed_with_another_key(self, client):
        token = jwt.encode({'sub': '1', 'role': 'STUDENT'}, 'not-the-key', algorithm=settings.TOKEN_ALGORITHM)

        response = await client.get(f'{PREFIX}/usage', headers={'Authorization': f'Bearer {token}'})

        assert response.status_code == 401
        assert response.json()['error'] == 'INVALID_TOKEN'

    @pytest.mark.asyncio
    async def test_billing_switched_off(self, client, monkeypatch):
        monkeypatch.setattr(settings, 'BILLING_ENABLED', False)

        response = await client.get(f'{PREFIX}/usage', headers=_auth(1))

        assert response.status_code == 403
        assert response.json()['error'] == 'BILLING_DISABLED'


class TestEnrollmentEndpoints:
    """Tests for eligibility, enrollment and manual settlement."""

    @pytest.mark.asyncio
    async def test_eligibility_of_open_course(self, client, make_course):
        course = await make_course()

        response = await client.get(f'{PREFIX}/courses/{course.id}/eligibility', headers=_auth(3))

        assert response.status_code == 200
        body = response.json()
        assert body['eligible'] is True
        assert body['course']['id'] == course.id

    @pytest.mark.asyncio
    async def test_enroll_in_paid_course(self, client, make_course):
        course = await make_course(base_price=Decimal('60.00'))

        response = await client.post(f'{PREFIX}/courses/{course.id}/enroll', headers=_auth(3))

        assert response.status_code == 200
        enrollment = response.json()['enrollment']
        assert enrollment['status'] == 'PENDING_PAYMENT'
        assert enrollment['paymentStatus'] == 'PENDING'
        assert enrollment['studentId'] == 3

    @pytest.mark.asyncio
    async def test_live_online_course_needs_subscription(self, client, make_course):
        course = await make_course(marketing_type='LIVE_ONLINE')

        response = await client.post(f'{PREFIX}/courses/{course.id}/enroll', headers=_auth(3))

        assert response.status_code == 402
        body = response.json()
        assert body['error'] == 'SUBSCRIPTION_REQUIRED'

    @pytest.mark.asyncio
    async def test_admin_marks_enrollment_paid(self, client, make_course, make_enrollment):
        course = await make_course()
        enrollment = await make_enrollment(3, course.id)
        enrollment_id = enrollment.id

        response = await client.post(
            f'{PREFIX}/enrollments/{enrollment_id}/mark-paid',
            json={'payment_method': 'cash', 'notes': 'Paid at the front desk'},
            headers=_auth(1, 'ADMIN'),
        )

        assert response.status_code == 200
        payment = response.json()['payment']
        assert payment['enrollmentId'] == enrollment_id
        assert payment['reference'].startswith('MANUAL_')

    @pytest.mark.asyncio
    async def test_student_cannot_mark_paid(self, client, make_course, make_enrollment):
        course = await make_course()
        enrollment = await make_enrollment(3, course.id)
        enrollment_id = enrollment.id

        response = await client.post(
            f'{PREFIX}/enrollments/{enrollment_id}/mark-paid',
            json={'payment_method': 'CASH'},
            headers=_auth(3),
        )

        assert response.status_code == 403
        assert response.json()['error'] == 'ROLE_NOT_ALLOWED'

    @pytest.mark.asyncio
    async def test_payment_intent_for_someone_elses_enrollment(self, client, make_course, make_enrollment):
        course = await make_course()
        enrollment = await make_enrollment(3, course.id)

        response = await client.post(
            f'{PREFIX}/enrollments/{enrollment.id}/payment-intent', json={}, headers=_auth(4)
        )

        assert response.status_code == 403
        assert response.json()['error'] == 'NOT_ENROLLMENT_OWNER'

    @pytest.mark.asyncio
    async def test_payment_intent_amount_is_not_client_controlled(
        self, client, make_course, make_enrollment, monkeypatch
    ):
        course = await make_course(base_price=Decimal('60.00'))
        enrollment = await make_enrollment(3, course.id)
        create = AsyncMock(return_value=SimpleNamespace(id='pi_api', client_secret='pi_api_secret'))
        monkeypatch.setattr(StripeAPIWrapper, 'create_payment_intent', create)

        response = await client.post(
            f'{PREFIX}/enrollments/{enrollment.id}/payment-intent',
            json={'amount': '0.50', 'currency': 'jpy'},
            headers=_auth(3),
        )

        assert response.status_code == 200
        assert response.json()['amount'] == '60.00'
        assert response.json()['currency'] == 'usd'
        assert create.call_args.kwargs['amount'] == 6000
        assert create.call_args.kwargs['currency'] == 'usd'


class TestUsageEndpoints:
    """Tests for usage reporting."""

    @pytest.mark.asyncio
    async def test_current_usage(self, client, make_student_subscription):
        await make_student_subscription(20, tier='BASIC')

        response = await client.get(f'{PREFIX}/usage', headers=_auth(20))

        assert response.status_code == 200
        body = response.json()
        assert body['tier'] == 'BASIC'
        assert body['group'] == 0
        assert body['entitlement']['groupCap'] == 4
        assert body['isApproachingLimit'] is False

    @pytest.mark.asyncio
    async def test_history_range_is_validated(self, client):
        response = await client.get(f'{PREFIX}/usage/history', params={'months': 30}, headers=_auth(20))

        assert response.status_code == 422
        assert response.json()['error'] == 'INVALID_HISTORY_RANGE'


class TestSessionEndpoints:
    """Tests for session scheduling permissions."""

    @pytest.mark.asyncio
    async def test_student_cannot_schedule_video_session(self, client):
        response = await client.post(
            f'{PREFIX}/sessions/video',
            json={
                'title': 'Pronunciation clinic',
                'start_time': '2099-01-01T10:00:00Z',
                'end_time': '2099-01-01T11:00:00Z',
                'price': '15.00',
            },
            headers=_auth(3),
        )

        assert response.status_code == 403
        assert response.json()['error'] == 'ROLE_NOT_ALLOWED'


class TestAdminEndpoints:
    """Tests for the approval settings and cron jobs."""

    @pytest.mark.asyncio
    async def test_update_then_read_settings(self, client):
        update = await client.put(
            f'{PREFIX}/admin/settings/payment-approval',
            json={'allow_institution_payment_approval': True, 'institution_approvable_methods': ['cash']},
            headers=_auth(1, 'ADMIN'),
        )
        read = await client.get(f'{PREFIX}/admin/settings/payment-approval', headers=_auth(1, 'ADMIN'))

        assert update.status_code == 200
        assert read.status_code == 200
        assert read.json()['allow_institution_payment_approval'] is True
        assert read.json()['institution_approvable_methods'] == ['CASH']

    @pytest.mark.asyncio
    async def test_settings_are_admin_only(self, client):
        response = await client.get(f'{PREFIX}/admin/settings/payment-approval', headers=_auth(500, 'INSTITUTION'))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cron_rejects_wrong_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, 'CRON_SECRET', 'tick-tock')

        response = await client.post(f'{PREFIX}/cron/trial-expiration', headers={'Authorization': 'Bearer nope'})

        assert response.status_code == 401
        assert response.json()['error'] == 'INVALID_CRON_SECRET'

    @pytest.mark.asyncio
    async def test_cron_with_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, 'CRON_SECRET', 'tick-tock')

        response = await client.post(
            f'{PREFIX}/cron/release-abandoned-enrollments', headers={'Authorization': 'Bearer tick-tock'}
        )

        assert response.status_code == 200
        assert response.json()['status'] == 'success'


class TestWebhookEndpoint:
    """Tests for the Stripe webhook route."""

    @pytest.mark.asyncio
    async def test_unsigned_request(self, client):
        response = await client.post(f'{PREFIX}/webhooks/stripe', content=b'{}')

        assert response.status_code == 400
