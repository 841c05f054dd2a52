from datetime import timedelta

from django.test import TestCase, override_settings
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch

from accounts.models import User
from drivers.models import DriverProfile
from drivers.services import ingest_location, update_driver_status
from services.matching import DriverStatus, ManualClock, RideStatus

from .engine import reset_engine
from .models import RideOffer, RideRequest
from .offer_timeout_monitor import OfferTimeoutMonitor
from .store import CeleryDispatchStore
from .tasks import persist_driver_state, persist_offer, persist_ride_outcome
from .views import (
	accept_ride,
	cancel_ride,
	complete_ride,
	get_current_ride,
	match_best_driver,
	reject_ride_offer,
)

PICKUP = {'pickup_latitude': 28.6139, 'pickup_longitude': 77.2090, 'pickup_address': 'Connaught Place'}


class RideFlowTestCase(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.clock = ManualClock()
		self.engine = reset_engine(clock=self.clock)

		self.passenger = User.objects.create_user(
			username='passenger',
			password='pass1234',
			role='user',
			phone_number='9000000000'
		)
		self.driver_one = self.make_driver('driver_one', 'WB-1001', 28.6140, 77.2091)
		self.driver_two = self.make_driver('driver_two', 'WB-1002', 28.6160, 77.2100)

	def make_driver(self, username, vehicle_number, lat, lon):
		user = User.objects.create_user(
			username=username,
			password='driver1234',
			role='driver',
			phone_number='9000000001'
		)
		DriverProfile.objects.create(
			user=user,
			vehicle_number=vehicle_number,
			status='online',
			verification_status='approved',
			is_location_active=True,
		)
		ingest_location(user.id, lat, lon)
		return user

	def post(self, view, user, path, data=None, **kwargs):
		request = self.factory.post(path, data or {}, format='json')
		force_authenticate(request, user=user)
		return view(request, **kwargs)

	def request_ride(self, passenger=None, **extra):
		return self.post(match_best_driver, passenger or self.passenger, '/match-best-driver/', {**PICKUP, **extra})


class MatchBestDriverTests(RideFlowTestCase):

	def test_offer_goes_to_nearest_driver(self):
		response = self.request_ride()

		self.assertEqual(response.status_code, 201)
		self.assertTrue(response.data['success'])
		self.assertEqual(response.data['ride']['status'], 'offering')
		self.assertEqual(response.data['matching']['current_offer']['driver_id'], self.driver_one.id)

		ride = RideRequest.objects.get()
		offer = RideOffer.objects.get(ride=ride)
		self.assertEqual(offer.driver, self.driver_one)
		self.assertEqual(offer.status, 'pending')
		self.assertEqual(offer.order, 0)
		self.assertIsNotNone(offer.expires_at)
		self.assertEqual(self.engine.registry.get(self.driver_one.id).status, DriverStatus.BUSY)

	def test_no_online_drivers_fails_ride(self):
		update_driver_status(self.driver_one.id, 'offline')
		update_driver_status(self.driver_two.id, 'offline')

		response = self.request_ride()

		self.assertEqual(response.status_code, 201)
		ride = RideRequest.objects.get()
		self.assertEqual(ride.status, 'failed')
		self.assertEqual(ride.failure_reason, 'no_driver_available')
		self.assertEqual(response.data['message'], 'No available drivers found nearby.')

	def test_required_capability_skips_plain_vehicles(self):
		profile = self.driver_two.driver_profile
		profile.vehicle_capabilities = ['wheelchair']
		profile.save()

		self.request_ride(required_capabilities=['wheelchair'])

		offer = RideOffer.objects.get()
		self.assertEqual(offer.driver, self.driver_two)

	def test_only_one_active_ride_per_passenger(self):
		self.request_ride()
		response = self.request_ride()

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'active_ride_exists')

	def test_drivers_cannot_request_rides(self):
		response = self.request_ride(passenger=self.driver_one)

		self.assertEqual(response.status_code, 403)

	def test_invalid_pickup(self):
		response = self.request_ride(pickup_latitude=123.0)

		self.assertEqual(response.status_code, 400)
		self.assertFalse(RideRequest.objects.exists())

	def test_capacity_limit_marks_ride_failed(self):
		with override_settings(MATCHING_MAX_ACTIVE_SESSIONS=1):
			self.engine = reset_engine(clock=self.clock)
		other = User.objects.create_user(username='other', password='pass1234', role='user', phone_number='1')
		self.request_ride()

		response = self.request_ride(passenger=other)

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['error'], 'matching_capacity_exceeded')
		ride = RideRequest.objects.get(passenger=other)
		self.assertEqual(ride.status, 'failed')

	def test_current_ride_reports_live_session(self):
		self.request_ride()
		request = self.factory.get('/passenger/current/')
		force_authenticate(request, user=self.passenger)

		response = get_current_ride(request)

		self.assertTrue(response.data['has_active_ride'])
		self.assertEqual(response.data['status'], 'offering')
		self.assertFalse(response.data['driver_assigned'])
		self.assertEqual(response.data['matching']['status'], 'offering')
		self.assertEqual(len(response.data['offers']), 1)
		self.assertEqual(response.data['offers'][0]['status'], 'pending')


class DriverResponseTests(RideFlowTestCase):
	def setUp(self):
		super().setUp()
		self.request_ride()
		self.ride = RideRequest.objects.get()

	def test_accept_then_complete_round_trip(self):
		response = self.post(accept_ride, self.driver_one, '/accept/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'matched')
		self.assertEqual(self.ride.driver, self.driver_one)
		self.assertIsNotNone(self.ride.matched_at)
		self.assertEqual(RideOffer.objects.get(driver=self.driver_one).status, 'accepted')
		self.driver_one.driver_profile.refresh_from_db()
		self.assertEqual(self.driver_one.driver_profile.status, 'busy')

		with patch('realtime.notifications.notify_passenger_event') as mock_notify:
			response = self.post(complete_ride, self.driver_one, '/complete/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		mock_notify.assert_called_once()
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'completed')
		self.assertIsNotNone(self.ride.completed_at)
		self.driver_one.refresh_from_db()
		self.passenger.refresh_from_db()
		self.assertEqual(self.driver_one.completed_rides, 1)
		self.assertEqual(self.passenger.completed_rides, 1)
		self.assertEqual(self.engine.registry.get(self.driver_one.id).status, DriverStatus.ONLINE)
		self.driver_one.driver_profile.refresh_from_db()
		self.assertEqual(self.driver_one.driver_profile.status, 'online')

	def test_reject_offers_next_driver(self):
		response = self.post(reject_ride_offer, self.driver_one, '/reject/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['queued_next_driver'])
		self.assertEqual(RideOffer.objects.get(driver=self.driver_one).status, 'rejected')
		second = RideOffer.objects.get(driver=self.driver_two)
		self.assertEqual(second.status, 'pending')
		self.assertEqual(second.order, 1)
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'offering')

	def test_last_rejection_fails_ride(self):
		self.post(reject_ride_offer, self.driver_one, '/reject/', ride_id=self.ride.id)
		response = self.post(reject_ride_offer, self.driver_two, '/reject/', ride_id=self.ride.id)

		self.assertFalse(response.data['queued_next_driver'])
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'failed')
		self.assertEqual(self.ride.failure_reason, 'no_driver_available')

	def test_driver_without_offer_gets_gone(self):
		response = self.post(accept_ride, self.driver_two, '/accept/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 410)
		self.assertEqual(response.data['error'], 'stale_offer')
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'offering')

	def test_timeout_sweep_moves_offer_on(self):
		self.clock.advance(20)

		self.engine.service.sweep_expired()

		self.assertEqual(RideOffer.objects.get(driver=self.driver_one).status, 'expired')
		self.assertEqual(RideOffer.objects.get(driver=self.driver_two).status, 'pending')

	def test_accept_after_timeout_is_gone(self):
		self.clock.advance(25)

		response = self.post(accept_ride, self.driver_one, '/accept/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 410)
		self.assertEqual(RideOffer.objects.get(driver=self.driver_one).status, 'expired')

	def test_unknown_ride(self):
		response = self.post(accept_ride, self.driver_one, '/accept/', ride_id=9999)

		self.assertEqual(response.status_code, 404)
		self.assertEqual(response.data['error'], 'ride_not_found')

	def test_complete_requires_matched_driver(self):
		response = self.post(complete_ride, self.driver_two, '/complete/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 404)


class CancelRideTests(RideFlowTestCase):
	def setUp(self):
		super().setUp()
		self.request_ride()
		self.ride = RideRequest.objects.get()

	def test_cancel_while_offering_releases_driver(self):
		response = self.post(cancel_ride, self.passenger, '/cancel/', {'reason': 'Plans changed'}, ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertFalse(response.data['was_assigned'])
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'cancelled')
		self.assertEqual(self.ride.cancellation_reason, 'Plans changed')
		self.assertEqual(RideOffer.objects.get().status, 'expired')
		self.assertEqual(self.engine.registry.get(self.driver_one.id).status, DriverStatus.ONLINE)
		self.assertEqual(self.engine.service.get_session(self.ride.id).status, RideStatus.CANCELLED)

	@patch('realtime.notifications.notify_driver_event')
	def test_cancel_after_match_frees_driver(self, mock_notify):
		self.post(accept_ride, self.driver_one, '/accept/', ride_id=self.ride.id)

		response = self.post(cancel_ride, self.passenger, '/cancel/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['was_assigned'])
		mock_notify.assert_called_once()
		self.assertEqual(mock_notify.call_args[0][2], self.driver_one.id)
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, 'cancelled')
		self.assertEqual(self.engine.registry.get(self.driver_one.id).status, DriverStatus.ONLINE)

	def test_cancel_twice(self):
		self.post(cancel_ride, self.passenger, '/cancel/', ride_id=self.ride.id)
		response = self.post(cancel_ride, self.passenger, '/cancel/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'ride_not_available')

	def test_other_passenger_cannot_cancel(self):
		other = User.objects.create_user(username='other', password='pass1234', role='user', phone_number='1')

		response = self.post(cancel_ride, other, '/cancel/', ride_id=self.ride.id)

		self.assertEqual(response.status_code, 404)


class WriteThroughTaskTests(RideFlowTestCase):

	def test_late_outcome_does_not_reopen_finished_ride(self):
		ride = RideRequest.objects.create(passenger=self.passenger, status='completed', **PICKUP)

		self.assertFalse(persist_ride_outcome(ride.id, 'offering'))

		ride.refresh_from_db()
		self.assertEqual(ride.status, 'completed')

	def test_stale_pending_offer_write_is_ignored(self):
		ride = RideRequest.objects.create(passenger=self.passenger, status='offering', **PICKUP)
		persist_offer(ride.id, self.driver_one.id, 0, 'expired')

		self.assertFalse(persist_offer(ride.id, self.driver_one.id, 0, 'pending'))
		self.assertEqual(RideOffer.objects.get(ride=ride).status, 'expired')

	def test_driver_state_tasks_run_in_reverse_order(self):
		newer = self.clock.now() + timedelta(seconds=5)
		older = self.clock.now() + timedelta(seconds=1)

		persist_driver_state(self.driver_one.id, 'online', 'approved', True, state_changed_at=newer.isoformat())
		persist_driver_state(self.driver_one.id, 'busy', 'under_review', False, state_changed_at=older.isoformat())

		profile = DriverProfile.objects.get(user=self.driver_one)
		self.assertEqual(profile.status, 'online')
		self.assertEqual(profile.verification_status, 'approved')
		self.assertTrue(profile.is_location_active)
		self.assertEqual(profile.state_changed_at, newer)

	def test_late_busy_snapshot_does_not_undo_release(self):
		registry = self.engine.registry
		busy = registry.reserve(self.driver_one.id, 'ride-1')
		self.clock.advance(1)
		registry.release(self.driver_one.id, 'ride-1')

		# The reserve write arrives after the release write
		CeleryDispatchStore().save_driver(busy)

		profile = DriverProfile.objects.get(user=self.driver_one)
		self.assertEqual(profile.status, 'online')
		self.assertEqual(profile.state_changed_at, registry.get(self.driver_one.id).state_changed_at)
		self.assertGreater(profile.state_changed_at, busy.state_changed_at)

	def test_location_writes_are_throttled(self):
		store = CeleryDispatchStore(location_interval_seconds=60)
		driver = self.engine.registry.get(self.driver_one.id)

		with patch('rides.store.persist_driver_state') as mock_task:
			store.save_driver(driver, location_only=True)
			store.save_driver(driver, location_only=True)
			store.save_driver(driver)

		self.assertEqual(mock_task.delay.call_count, 2)


class OfferTimeoutMonitorTests(RideFlowTestCase):

	def test_tick_sweeps_engine(self):
		self.request_ride()
		monitor = OfferTimeoutMonitor(lambda: self.engine, interval_seconds=1)
		self.clock.advance(20)

		self.assertEqual(monitor.tick(), 1)
		self.assertEqual(RideOffer.objects.filter(status='pending').get().driver, self.driver_two)
