from unittest.mock import patch

from django.test import TestCase
from rest_framework.test import APIRequestFactory

from rides.engine import reset_engine
from services.matching import ManualClock

from .views import health_check


class HealthCheckTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		reset_engine(clock=ManualClock())

	@patch('dispatch_backend.views.redis.Redis.from_url')
	def test_all_services_healthy(self, mock_redis):
		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['status'], 'healthy')
		self.assertEqual(response.data['matching']['active_sessions'], 0)
		mock_redis.return_value.ping.assert_called_once()

	@patch('dispatch_backend.views.redis.Redis.from_url')
	def test_redis_down_reports_unhealthy(self, mock_redis):
		mock_redis.return_value.ping.side_effect = ConnectionError('refused')

		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 503)
		self.assertTrue(response.data['services']['redis'].startswith('unhealthy'))
