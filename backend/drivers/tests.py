from datetime import timedelta

from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch

from accounts.models import User
from rides.engine import reset_engine
from rides.models import RideRequest
from services.matching import DriverStatus, ManualClock, VerificationStatus
from services.ride_management import create_ride_request

from .models import DriverProfile
from .services import hydrate_registry, ingest_location
from .views import DriverLocationUpdateView, DriverPendingRequestsView, DriverStatusView


class DriverTestCase(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.clock = ManualClock()
		self.engine = reset_engine(clock=self.clock)
		self.registry = self.engine.registry

		self.driver = User.objects.create_user(
			username='driver',
			password='driver1234',
			role='driver',
			phone_number='9000000001'
		)
		self.profile = DriverProfile.objects.create(
			user=self.driver,
			vehicle_number='WB-2001',
			status='online',
			verification_status='approved',
			is_location_active=True,
		)
		self.passenger = User.objects.create_user(
			username='passenger',
			password='pass1234',
			role='user',
			phone_number='9000000000'
		)

	def call(self, view, method, user, data=None):
		request = getattr(self.factory, method)('/api/driver/', data or {}, format='json')
		force_authenticate(request, user=user)
		return view.as_view()(request)


class DriverRegistrySyncTests(DriverTestCase):

	def test_new_profile_is_registered(self):
		driver = self.registry.get(self.driver.id)

		self.assertEqual(driver.status, DriverStatus.ONLINE)
		self.assertEqual(driver.verification_status, VerificationStatus.APPROVED)

	def test_profile_edit_only_syncs_admin_fields(self):
		ingest_location(self.driver.id, 28.6139, 77.2090)
		self.profile.refresh_from_db()
		self.profile.status = 'offline'
		self.profile.verification_status = 'under_review'
		self.profile.vehicle_capabilities = ['xl']
		self.profile.save()

		driver = self.registry.get(self.driver.id)
		self.assertEqual(driver.status, DriverStatus.ONLINE)
		self.assertEqual(driver.verification_status, VerificationStatus.UNDER_REVIEW)
		self.assertEqual(driver.vehicle_capabilities, frozenset({'xl'}))
		self.assertIsNotNone(driver.location)

	def test_deleted_profile_leaves_registry(self):
		self.profile.delete()

		self.assertNotIn(self.driver.id, self.registry)

	def test_hydration_brings_busy_driver_back_offline(self):
		DriverProfile.objects.filter(pk=self.profile.pk).update(status='busy')
		engine = reset_engine(clock=self.clock)

		self.assertEqual(engine.registry.get(self.driver.id).status, DriverStatus.OFFLINE)
		self.assertEqual(hydrate_registry(engine.registry), 1)

	def test_changes_after_restart_are_stamped_past_the_row(self):
		stamp = self.clock.now() + timedelta(hours=1)
		DriverProfile.objects.filter(pk=self.profile.pk).update(state_changed_at=stamp)
		engine = reset_engine(clock=self.clock)

		driver = engine.registry.set_status(self.driver.id, 'offline')

		self.assertGreater(driver.state_changed_at, stamp)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.status, 'offline')


class DriverStatusViewTests(DriverTestCase):

	def test_get_returns_live_state(self):
		response = self.call(DriverStatusView, 'get', self.driver)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['status'], 'online')
		self.assertEqual(response.data['verification_status'], 'approved')

	def test_go_offline_is_persisted(self):
		response = self.call(DriverStatusView, 'put', self.driver, {'status': 'offline'})

		self.assertEqual(response.status_code, 200)
		self.assertEqual(self.registry.get(self.driver.id).status, DriverStatus.OFFLINE)
		self.profile.refresh_from_db()
		self.assertEqual(self.profile.status, 'offline')

	def test_busy_cannot_be_set_by_driver(self):
		response = self.call(DriverStatusView, 'put', self.driver, {'status': 'busy'})

		self.assertEqual(response.status_code, 400)

	def test_busy_driver_cannot_go_offline(self):
		ingest_location(self.driver.id, 28.6139, 77.2090)
		create_ride_request(self.passenger, 28.6139, 77.2090)

		response = self.call(DriverStatusView, 'put', self.driver, {'status': 'offline'})

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'invalid_status_transition')

	def test_passengers_are_rejected(self):
		response = self.call(DriverStatusView, 'get', self.passenger)

		self.assertEqual(response.status_code, 403)


class DriverLocationViewTests(DriverTestCase):

	def test_location_update_reaches_registry_and_profile(self):
		response = self.call(DriverLocationUpdateView, 'post', self.driver, {
			'latitude': 28.6139,
			'longitude': 77.2090,
		})

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['applied'])
		driver = self.registry.get(self.driver.id)
		self.assertAlmostEqual(driver.location.latitude, 28.6139)
		self.profile.refresh_from_db()
		self.assertAlmostEqual(float(self.profile.current_latitude), 28.6139)
		self.assertEqual(self.profile.last_location_update, self.clock.now())

	def test_older_report_is_not_applied(self):
		ingest_location(self.driver.id, 28.6139, 77.2090)
		older = self.clock.now() - timedelta(minutes=1)

		response = self.call(DriverLocationUpdateView, 'post', self.driver, {
			'latitude': 10.0,
			'longitude': 10.0,
			'timestamp': older.isoformat(),
		})

		self.assertEqual(response.status_code, 200)
		self.assertFalse(response.data['applied'])
		self.assertAlmostEqual(self.registry.get(self.driver.id).location.latitude, 28.6139)

	def test_discarded_report_keeps_sharing_flag(self):
		ingest_location(self.driver.id, 28.6139, 77.2090)
		older = self.clock.now() - timedelta(minutes=1)

		applied = ingest_location(self.driver.id, 10.0, 10.0, timestamp=older, is_location_active=False)

		self.assertFalse(applied)
		self.assertTrue(self.registry.get(self.driver.id).is_location_active)
		self.profile.refresh_from_db()
		self.assertTrue(self.profile.is_location_active)
		self.assertAlmostEqual(float(self.profile.current_latitude), 28.6139)

	def test_pausing_location_sharing(self):
		response = self.call(DriverLocationUpdateView, 'post', self.driver, {
			'latitude': 28.6139,
			'longitude': 77.2090,
			'is_location_active': False,
		})

		self.assertEqual(response.status_code, 200)
		self.assertFalse(self.registry.get(self.driver.id).is_location_active)
		self.profile.refresh_from_db()
		self.assertFalse(self.profile.is_location_active)

	def test_out_of_range_coordinates(self):
		response = self.call(DriverLocationUpdateView, 'post', self.driver, {
			'latitude': 95,
			'longitude': 77.2090,
		})

		self.assertEqual(response.status_code, 400)
		self.assertIsNone(self.registry.get(self.driver.id).location)

	@patch('drivers.views.services.ingest_location', return_value=True)
	def test_view_delegates_to_ingest(self, mock_ingest):
		self.call(DriverLocationUpdateView, 'post', self.driver, {'latitude': 1.5, 'longitude': 2.5})

		mock_ingest.assert_called_once_with(self.driver.id, 1.5, 2.5, timestamp=None, is_location_active=None)


class DriverPendingRequestsTests(DriverTestCase):

	def test_lists_offer_held_by_driver(self):
		ingest_location(self.driver.id, 28.6139, 77.2090)
		result = create_ride_request(self.passenger, 28.6140, 77.2091, pickup_address='Janpath')

		response = self.call(DriverPendingRequestsView, 'get', self.driver)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 1)
		ride = response.data['rides'][0]
		self.assertEqual(ride['id'], result.ride.id)
		self.assertEqual(ride['pickup_address'], 'Janpath')
		self.assertIn('expires_at', ride)

	def test_nothing_pending(self):
		response = self.call(DriverPendingRequestsView, 'get', self.driver)

		self.assertEqual(response.data, {'count': 0, 'rides': []})
		self.assertFalse(RideRequest.objects.exists())
