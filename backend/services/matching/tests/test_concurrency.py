"""
Races between ride requests, driver answers, cancels and the timeout sweep,
run on real threads.
"""

import threading
from datetime import timedelta

from django.test import SimpleTestCase

from services.matching import (
    DriverStatus,
    ManualClock,
    RideStatus,
    StaleOfferError,
)

from .support import add_driver, assert_reservations_consistent, make_engine, make_ride


def run_together(*targets):
    """Start every target at the same instant and wait for all of them."""
    barrier = threading.Barrier(len(targets))
    errors = []

    def wrap(target):
        def runner():
            barrier.wait()
            try:
                target()
            except Exception as exc:
                errors.append(exc)
        return runner

    threads = [threading.Thread(target=wrap(target)) for target in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return errors


class ConcurrentMatchingTests(SimpleTestCase):

    def test_one_driver_is_never_offered_two_rides(self):
        engine = make_engine(max_active_sessions=100)
        add_driver(engine, "only")
        rides = [make_ride(engine, ride_id) for ride_id in range(16)]

        errors = run_together(*[
            (lambda ride=ride: engine.service.request_match(ride)) for ride in rides
        ])

        self.assertEqual(errors, [])
        sessions = [engine.service.get_session(ride.id) for ride in rides]
        offering = [s for s in sessions if s.status == RideStatus.OFFERING]
        self.assertEqual(len(offering), 1)
        self.assertTrue(all(s.status == RideStatus.FAILED for s in sessions if s not in offering))
        self.assertEqual(engine.registry.reservations(), {"only": offering[0].id})
        assert_reservations_consistent(self, engine)

    def test_many_drivers_each_reserved_at_most_once(self):
        engine = make_engine(max_active_sessions=100)
        for index in range(8):
            add_driver(engine, index, north_meters=50 * index)
        rides = [make_ride(engine, ride_id) for ride_id in range(12)]

        run_together(*[
            (lambda ride=ride: engine.service.request_match(ride)) for ride in rides
        ])

        offered = [
            engine.service.get_session(ride.id).pending_offer.driver_id
            for ride in rides
            if engine.service.get_session(ride.id).pending_offer is not None
        ]
        self.assertEqual(len(offered), 8)
        self.assertEqual(len(set(offered)), 8)
        self.assertEqual(len(engine.registry.reservations()), 8)
        assert_reservations_consistent(self, engine)


class ConcurrentResolutionTests(SimpleTestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.engine = make_engine(clock=self.clock)
        add_driver(self.engine, "d1", north_meters=100)
        self.session = self.engine.service.request_match(make_ride(self.engine, 1))

    def tearDown(self):
        assert_reservations_consistent(self, self.engine)

    def test_accept_racing_cancel_has_one_outcome(self):
        results = {}

        def accept():
            try:
                self.engine.service.respond(1, "d1", accept=True)
                results["accepted"] = True
            except StaleOfferError:
                results["accepted"] = False

        def cancel():
            results["cancelled"] = self.engine.service.cancel(1, "race")

        errors = run_together(accept, cancel)

        self.assertEqual(errors, [])
        self.assertNotEqual(results["accepted"], results["cancelled"])
        driver = self.engine.registry.get("d1")
        if results["accepted"]:
            self.assertEqual(self.session.status, RideStatus.MATCHED)
            self.assertEqual(driver.status, DriverStatus.BUSY)
        else:
            self.assertEqual(self.session.status, RideStatus.CANCELLED)
            self.assertEqual(driver.status, DriverStatus.ONLINE)

    def test_accept_racing_timeout_sweep(self):
        self.clock.advance(20)
        outcome = {}

        def accept():
            try:
                self.engine.service.respond(1, "d1", accept=True)
                outcome["accepted"] = True
            except StaleOfferError:
                outcome["accepted"] = False

        errors = run_together(accept, self.engine.service.sweep_expired)

        self.assertEqual(errors, [])
        # The offer was already due, so whichever thread wins it expires
        self.assertFalse(outcome["accepted"])
        self.assertEqual(self.session.status, RideStatus.FAILED)
        self.assertEqual(self.engine.registry.reservations(), {})

    def test_concurrent_answers_from_same_driver(self):
        outcomes = []

        def answer(accept):
            def run():
                try:
                    self.engine.service.respond(1, "d1", accept=accept)
                    outcomes.append(accept)
                except StaleOfferError:
                    outcomes.append(None)
            return run

        run_together(answer(True), answer(False), answer(True))

        applied = [value for value in outcomes if value is not None]
        self.assertEqual(len(applied), 1)
        self.assertIn(self.session.status, (RideStatus.MATCHED, RideStatus.FAILED))

    def test_location_updates_keep_newest(self):
        registry = self.engine.registry
        base = self.clock.now()

        reports = [(base + timedelta(seconds=index), 28.6 + index / 10000.0) for index in range(20)]

        run_together(*[
            (lambda when=when, lat=lat: registry.update_location("d1", lat, 77.2, when))
            for when, lat in reversed(reports)
        ])

        driver = registry.get("d1")
        self.assertEqual(driver.last_location_update, reports[-1][0])
        self.assertAlmostEqual(driver.location.latitude, reports[-1][1])
