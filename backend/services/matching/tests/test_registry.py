from datetime import timedelta

from django.test import SimpleTestCase

from services.matching import (
    DriverLocationRegistry,
    DriverStatus,
    DriverUnavailableError,
    InvalidLocationError,
    InvalidStatusTransitionError,
    Location,
    ManualClock,
    UnknownDriverError,
)
from services.matching.hooks import DispatchStore

from .support import PICKUP, RecordingStore, add_driver, make_engine


class FailingStore(DispatchStore):

    def save_driver(self, driver, location_only=False):
        raise RuntimeError("database unavailable")


class RegistryMembershipTests(SimpleTestCase):
    def setUp(self):
        self.engine = make_engine()
        self.registry = self.engine.registry

    def test_register_returns_snapshot(self):
        driver = add_driver(self.engine, 1, vehicle_capabilities=["xl"])

        self.assertEqual(driver.status, DriverStatus.ONLINE)
        self.assertEqual(driver.vehicle_capabilities, frozenset({"xl"}))
        self.assertIn(1, self.registry)
        self.assertEqual(len(self.registry), 1)

    def test_busy_without_reservation_comes_back_offline(self):
        driver = add_driver(self.engine, 1, status="busy")

        self.assertEqual(driver.status, DriverStatus.OFFLINE)

    def test_unknown_driver_raises(self):
        with self.assertRaises(UnknownDriverError):
            self.registry.get(42)
        with self.assertRaises(UnknownDriverError):
            self.registry.update_location(42, *PICKUP)

    def test_reserved_driver_cannot_be_removed(self):
        add_driver(self.engine, 1)
        self.registry.reserve(1, holder="session-a")

        with self.assertRaises(DriverUnavailableError):
            self.registry.remove(1)

        self.registry.release(1)
        self.registry.remove(1)
        self.assertNotIn(1, self.registry)


class RegistryLocationTests(SimpleTestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.store = RecordingStore()
        self.engine = make_engine(clock=self.clock, store=self.store)
        self.registry = self.engine.registry
        add_driver(self.engine, 1)

    def test_newer_report_wins(self):
        later = self.clock.advance(5)

        applied = self.registry.update_location(1, 28.62, 77.21, later)

        self.assertTrue(applied)
        driver = self.registry.get(1)
        self.assertEqual(driver.location, Location(28.62, 77.21))
        self.assertEqual(driver.last_location_update, later)
        self.assertEqual(self.store.drivers[-1][1], True)

    def test_out_of_order_report_is_ignored(self):
        self.registry.update_location(1, 28.62, 77.21, self.clock.advance(10))

        applied = self.registry.update_location(1, 10.0, 10.0, self.clock.now() - timedelta(seconds=30))

        self.assertFalse(applied)
        self.assertEqual(self.registry.get(1).location, Location(28.62, 77.21))

    def test_sharing_flag_travels_with_the_report(self):
        self.registry.set_active(1, False)

        self.assertTrue(self.registry.update_location(1, 28.62, 77.21, self.clock.advance(5), is_location_active=True))

        self.assertTrue(self.registry.get(1).is_location_active)
        self.assertEqual(self.store.drivers[-1][1], False)

    def test_out_of_order_report_keeps_sharing_flag(self):
        self.registry.update_location(1, 28.62, 77.21, self.clock.advance(10))
        saved = len(self.store.drivers)

        applied = self.registry.update_location(
            1, 10.0, 10.0, self.clock.now() - timedelta(seconds=30), is_location_active=False
        )

        self.assertFalse(applied)
        self.assertTrue(self.registry.get(1).is_location_active)
        self.assertEqual(len(self.store.drivers), saved)

    def test_invalid_coordinates_change_nothing(self):
        before = self.registry.get(1)

        with self.assertRaises(InvalidLocationError):
            self.registry.update_location(1, 91.0, 77.2)
        with self.assertRaises(InvalidLocationError):
            self.registry.update_location(1, 28.6, float("nan"))

        self.assertEqual(self.registry.get(1), before)

    def test_naive_timestamp_is_treated_as_utc(self):
        naive = (self.clock.now() + timedelta(seconds=1)).replace(tzinfo=None)

        self.assertTrue(self.registry.update_location(1, 28.62, 77.21, naive))
        self.assertIsNotNone(self.registry.get(1).last_location_update.tzinfo)

    def test_store_failure_does_not_block_update(self):
        registry = DriverLocationRegistry(clock=self.clock, store=FailingStore())
        registry.register(7, status="online")

        with self.assertLogs("services.matching.registry", level="ERROR"):
            self.assertTrue(registry.update_location(7, 28.62, 77.21))
        self.assertEqual(registry.get(7).location, Location(28.62, 77.21))


class RegistryStatusTests(SimpleTestCase):
    def setUp(self):
        self.engine = make_engine()
        self.registry = self.engine.registry
        add_driver(self.engine, 1)

    def test_online_offline_toggle(self):
        self.assertEqual(self.registry.set_status(1, "offline").status, DriverStatus.OFFLINE)
        self.assertEqual(self.registry.set_status(1, "online").status, DriverStatus.ONLINE)

    def test_busy_is_not_a_caller_status(self):
        with self.assertRaises(InvalidStatusTransitionError):
            self.registry.set_status(1, "busy")

    def test_reserved_driver_cannot_go_offline(self):
        self.registry.reserve(1, holder="session-a")

        with self.assertRaises(InvalidStatusTransitionError):
            self.registry.set_status(1, "offline")

    def test_unchanged_verification_is_not_persisted_again(self):
        store = RecordingStore()
        engine = make_engine(store=store)
        add_driver(engine, 2)
        store.drivers.clear()

        engine.registry.set_verification(2, "approved")
        engine.registry.set_capabilities(2, [])
        self.assertEqual(store.drivers, [])

        engine.registry.set_verification(2, "under_review")
        self.assertEqual(len(store.drivers), 1)


class RegistryReservationTests(SimpleTestCase):
    def setUp(self):
        self.engine = make_engine()
        self.registry = self.engine.registry
        add_driver(self.engine, 1)

    def test_reserve_marks_busy_and_blocks_second_holder(self):
        driver = self.registry.reserve(1, holder="session-a")

        self.assertEqual(driver.status, DriverStatus.BUSY)
        self.assertEqual(driver.reserved_by, "session-a")
        with self.assertRaises(DriverUnavailableError):
            self.registry.reserve(1, holder="session-b")

    def test_release_returns_to_online_once(self):
        self.registry.reserve(1, holder="session-a")

        self.assertFalse(self.registry.release(1, holder="session-b"))
        self.assertTrue(self.registry.release(1, holder="session-a"))
        self.assertFalse(self.registry.release(1, holder="session-a"))
        self.assertEqual(self.registry.get(1).status, DriverStatus.ONLINE)

    def test_state_changes_get_increasing_stamps(self):
        # The clock does not move between these calls
        busy = self.registry.reserve(1, holder="session-a")
        self.registry.release(1, holder="session-a")
        online = self.registry.get(1)
        offline = self.registry.set_status(1, "offline")

        self.assertLess(busy.state_changed_at, online.state_changed_at)
        self.assertLess(online.state_changed_at, offline.state_changed_at)

    def test_location_report_keeps_stamp(self):
        before = self.registry.reserve(1, holder="session-a").state_changed_at

        self.registry.update_location(1, 28.62, 77.21)

        self.assertEqual(self.registry.get(1).state_changed_at, before)

    def test_release_unknown_driver_is_noop(self):
        self.assertFalse(self.registry.release(99))

    def test_non_dispatchable_driver_cannot_be_reserved(self):
        add_driver(self.engine, 2, verification_status="pending")

        with self.assertRaises(DriverUnavailableError):
            self.registry.reserve(2, holder="session-a")

    def test_release_all(self):
        add_driver(self.engine, 2)
        self.registry.reserve(1, holder="session-a")
        self.registry.reserve(2, holder="session-a")

        with self.assertLogs("services.matching.registry", level="WARNING"):
            released = self.registry.release_all("session-a")

        self.assertEqual(sorted(released), [1, 2])
        self.assertEqual(self.registry.reservations(), {})


class EligibilityQueryTests(SimpleTestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.engine = make_engine(clock=self.clock)
        self.registry = self.engine.registry
        self.center = Location.of(*PICKUP)

    def query(self, radius=5000, capabilities=()):
        return self.registry.query_eligible(self.center, radius, capabilities).driver_ids()

    def test_nearest_first_within_radius(self):
        add_driver(self.engine, "far", north_meters=3000)
        add_driver(self.engine, "near", north_meters=200)
        add_driver(self.engine, "mid", east_meters=1000)
        add_driver(self.engine, "outside", north_meters=6000)

        self.assertEqual(self.query(), ["near", "mid", "far"])

    def test_ineligible_drivers_are_filtered(self):
        add_driver(self.engine, "ok", north_meters=100)
        add_driver(self.engine, "offline", north_meters=100, status="offline")
        add_driver(self.engine, "unverified", north_meters=100, verification_status="under_review")
        add_driver(self.engine, "hidden", north_meters=100, is_location_active=False)
        add_driver(self.engine, "no_location", location=None, last_location_update=None)
        add_driver(self.engine, "reserved", north_meters=100)
        self.registry.reserve("reserved", holder="session-a")

        self.assertEqual(self.query(), ["ok"])

    def test_stale_location_is_not_dispatchable(self):
        add_driver(self.engine, 1, north_meters=100)

        self.clock.advance(120)
        self.assertEqual(self.query(), [1])

        self.clock.advance(1)
        self.assertEqual(self.query(), [])

    def test_required_capabilities(self):
        add_driver(self.engine, "plain", north_meters=100)
        add_driver(self.engine, "accessible", north_meters=500, vehicle_capabilities=["wheelchair", "xl"])

        self.assertEqual(self.query(capabilities=["wheelchair"]), ["accessible"])
        self.assertEqual(self.query(capabilities=["wheelchair", "pet"]), [])

    def test_tie_goes_to_longest_idle_then_id(self):
        add_driver(self.engine, "b", north_meters=300)
        self.clock.advance(10)
        add_driver(self.engine, "a", north_meters=300, last_location_update=self.clock.now())
        add_driver(self.engine, "c", north_meters=300, last_location_update=self.clock.now())

        self.assertEqual(self.query(), ["b", "a", "c"])

    def test_result_restarts_from_nearest(self):
        add_driver(self.engine, 1, north_meters=100)
        add_driver(self.engine, 2, north_meters=200)
        eligible = self.registry.query_eligible(self.center, 5000)

        first = [item.driver.id for item in eligible]
        second = [item.driver.id for item in eligible]

        self.assertEqual(first, [1, 2])
        self.assertEqual(first, second)
        self.assertAlmostEqual(eligible[0].distance_meters, 100, delta=2)

    def test_high_latitude_radius_is_not_underestimated(self):
        engine = make_engine(clock=self.clock)
        arctic = Location.of(69.6492, 18.9553)
        # ~4.5 km due east
        engine.registry.register(
            1, status="online", verification_status="approved", is_location_active=True,
            location=Location.of(69.6492, 19.0720), last_location_update=self.clock.now(),
        )

        self.assertEqual(engine.registry.query_eligible(arctic, 5000).driver_ids(), [1])
