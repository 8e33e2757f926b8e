"""
Tests for role resolution and the rate limiting decorator.
"""
from unittest.mock import MagicMock, patch

import redis
from django.contrib.auth.models import AnonymousUser, Group, User
from django.test import RequestFactory, TestCase, override_settings
from rest_framework.response import Response

from core.rate_limiting import rate_limit
from core.roles import AccessDenied, Role, ORDER_OPERATORS, require_role, role_for_user


class RoleTestCase(TestCase):

    def test_anonymous_has_no_role(self):
        self.assertIsNone(role_for_user(AnonymousUser()))
        self.assertIsNone(role_for_user(None))

    def test_superuser_is_superadmin(self):
        user = User.objects.create_superuser('root', 'root@example.com', 'pass')
        self.assertEqual(role_for_user(user), Role.SUPERADMIN)

    def test_group_membership(self):
        user = User.objects.create_user('ram', 'ram@example.com', 'pass')
        self.assertEqual(role_for_user(user), Role.CUSTOMER)

        user.groups.add(Group.objects.create(name='ACCOUNTS_ADMIN'))
        self.assertEqual(role_for_user(user), Role.ACCOUNTS_ADMIN)

    def test_require_role(self):
        require_role(Role.SALES_ADMIN, ORDER_OPERATORS)

        with self.assertRaises(AccessDenied) as context:
            require_role(None, ORDER_OPERATORS)
        self.assertIn('anonymous', str(context.exception))


class DummyView:

    @rate_limit(max_requests=2, window_seconds=60, scope='test')
    def get(self, request):
        return Response({'ok': True})


@override_settings(RATE_LIMIT_ENABLED=True)
class RateLimitTestCase(TestCase):

    def setUp(self):
        self.request = RequestFactory().get('/', REMOTE_ADDR='10.0.0.7')
        self.client_mock = MagicMock()
        self.client_mock.ttl.return_value = 42

    def test_within_limit_sets_headers(self):
        self.client_mock.incr.return_value = 1

        with patch('core.rate_limiting.get_redis_client', return_value=self.client_mock):
            response = DummyView().get(self.request)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['X-RateLimit-Remaining'], '1')
        self.client_mock.incr.assert_called_once_with('rate_limit:test:10.0.0.7')
        self.client_mock.expire.assert_called_once_with('rate_limit:test:10.0.0.7', 60)

    def test_over_limit_is_rejected(self):
        self.client_mock.incr.return_value = 3

        with patch('core.rate_limiting.get_redis_client', return_value=self.client_mock):
            response = DummyView().get(self.request)

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response['Retry-After'], '42')

    def test_redis_errors_fail_open(self):
        self.client_mock.incr.side_effect = redis.ConnectionError('down')

        with patch('core.rate_limiting.get_redis_client', return_value=self.client_mock):
            response = DummyView().get(self.request)

        self.assertEqual(response.status_code, 200)

    def test_no_redis_fails_open(self):
        with patch('core.rate_limiting.get_redis_client', return_value=None):
            response = DummyView().get(self.request)

        self.assertEqual(response.status_code, 200)


class HealthCheckTestCase(TestCase):

    def test_health(self):
        response = self.client.get('/health/')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'healthy')
