import threading
from unittest.mock import patch

from django.test import SimpleTestCase

from services.matching import (
    DeclineReason,
    DispatchConfig,
    DriverStatus,
    InvalidStatusTransitionError,
    Location,
    ManualClock,
    MatchingCapacityExceededError,
    NoDriverAvailableError,
    OfferState,
    RegistryConsistencyError,
    RequestNotPendingError,
    RideRequest,
    RideStatus,
    SearchConstraints,
    SessionNotFoundError,
    StaleOfferError,
)

from .support import (
    ExplodingNotifier,
    RecordingNotifier,
    RecordingStore,
    add_driver,
    assert_reservations_consistent,
    make_engine,
    make_ride,
)


class DispatchTestCase(SimpleTestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.notifier = RecordingNotifier()
        self.store = RecordingStore()
        self.engine = make_engine(clock=self.clock, notifier=self.notifier, store=self.store)
        self.service = self.engine.service
        self.registry = self.engine.registry

    def tearDown(self):
        assert_reservations_consistent(self, self.engine)

    def status_of(self, driver_id):
        return self.registry.get(driver_id).status


class RequestMatchTests(DispatchTestCase):

    def test_first_offer_goes_to_nearest_driver(self):
        add_driver(self.engine, "far", north_meters=900)
        add_driver(self.engine, "near", north_meters=100)

        session = self.service.request_match(make_ride(self.engine, 1))

        self.assertEqual(session.status, RideStatus.OFFERING)
        self.assertEqual(session.pending_offer.driver_id, "near")
        self.assertEqual(self.status_of("near"), DriverStatus.BUSY)
        self.assertEqual(self.status_of("far"), DriverStatus.ONLINE)
        self.assertEqual([r.id for r in self.service.list_pending("near")], [1])
        self.assertEqual(self.service.list_pending("far"), [])
        self.assertEqual(self.notifier.events, [("offer_sent", "near", RideStatus.OFFERING)])

    def test_no_candidates_fails_immediately(self):
        session = self.service.request_match(make_ride(self.engine, 1))

        self.assertEqual(session.status, RideStatus.FAILED)
        self.assertIsInstance(session.failure, NoDriverAvailableError)
        self.assertEqual(self.notifier.names(), ["session_finished"])
        self.assertEqual(self.store.rides, [RideStatus.FAILED])
        # Finished sessions stay queryable
        self.assertIs(self.service.get_session(1), session)

    def test_ride_must_be_pending(self):
        ride = make_ride(self.engine, 1)
        ride.transition(RideStatus.CANCELLED)

        with self.assertRaises(RequestNotPendingError):
            self.service.request_match(ride)

    def test_second_live_session_for_same_ride_is_refused(self):
        add_driver(self.engine, 1)
        self.service.request_match(make_ride(self.engine, 1))

        with self.assertRaises(RequestNotPendingError):
            self.service.request_match(make_ride(self.engine, 1))

    def test_failed_ride_can_be_retried(self):
        self.service.request_match(make_ride(self.engine, 1))
        add_driver(self.engine, "d1")

        session = self.service.request_match(make_ride(self.engine, 1))

        self.assertEqual(session.status, RideStatus.OFFERING)
        self.assertIs(self.service.get_session(1), session)

    def test_capacity_limit(self):
        engine = make_engine(clock=self.clock, max_active_sessions=1)
        add_driver(engine, "d1")
        add_driver(engine, "d2", north_meters=100)
        engine.service.request_match(make_ride(engine, 1))

        with self.assertRaises(MatchingCapacityExceededError):
            engine.service.request_match(make_ride(engine, 2))
        self.assertEqual(engine.registry.get("d2").status, DriverStatus.ONLINE)

    def test_unknown_session(self):
        with self.assertRaises(SessionNotFoundError):
            self.service.get_session(404)
        with self.assertRaises(SessionNotFoundError):
            self.service.respond(404, "d1", True)

    def test_max_candidates_limits_each_round(self):
        for index in range(3):
            add_driver(self.engine, index, north_meters=100 * (index + 1))
        ride = make_ride(self.engine, 1, max_candidates=1)

        session = self.service.request_match(ride)
        self.service.respond(1, 0, accept=False)

        self.assertEqual(session.pending_offer.driver_id, 1)


    def test_sole_driver_in_caracas_is_offered_first(self):
        self.registry.register(
            "D1",
            status="online",
            verification_status="approved",
            is_location_active=True,
            location=Location(10.5000, -66.9000),
            last_location_update=self.clock.now(),
        )
        ride = RideRequest(
            id=84,
            pickup=Location(10.5030, -66.9010),
            requested_at=self.clock.now(),
            constraints=SearchConstraints.build(radius_meters=5000),
        )

        session = self.service.request_match(ride)

        self.assertEqual(session.status, RideStatus.OFFERING)
        self.assertEqual(session.attempted, ["D1"])
        self.assertEqual(session.pending_offer.driver_id, "D1")
        self.assertEqual(self.registry.busy_driver_ids(), {"D1"})


class RespondTests(DispatchTestCase):
    def setUp(self):
        super().setUp()
        add_driver(self.engine, "d1", north_meters=100)
        add_driver(self.engine, "d2", north_meters=400)
        self.session = self.service.request_match(make_ride(self.engine, 1, rider_id=77))

    def test_accept_matches_and_keeps_driver_busy(self):
        session = self.service.respond(1, "d1", accept=True)

        self.assertEqual(session.status, RideStatus.MATCHED)
        self.assertEqual(session.matched_driver_id, "d1")
        self.assertEqual(session.offers[0].state, OfferState.ACCEPTED)
        self.assertEqual(self.status_of("d1"), DriverStatus.BUSY)
        self.assertEqual(self.service.list_pending("d1"), [])
        self.assertEqual(self.notifier.events[-1], ("session_finished", "d1", RideStatus.MATCHED))
        self.assertEqual(self.engine.metrics.get("matches"), 1)

    def test_complete_releases_driver_exactly_once(self):
        self.service.respond(1, "d1", accept=True)

        self.assertTrue(self.service.complete(1))
        self.assertFalse(self.service.complete(1))
        self.assertEqual(self.status_of("d1"), DriverStatus.ONLINE)
        self.assertEqual(self.service.stats()["assigned_sessions"], 0)

    def test_reject_moves_to_next_candidate(self):
        session = self.service.respond(1, "d1", accept=False)

        self.assertEqual(session.status, RideStatus.OFFERING)
        self.assertEqual(session.pending_offer.driver_id, "d2")
        self.assertEqual(session.declined, {"d1": DeclineReason.REJECTED})
        self.assertEqual(self.status_of("d1"), DriverStatus.ONLINE)
        self.assertEqual(self.status_of("d2"), DriverStatus.BUSY)

    def test_rejecting_driver_is_not_offered_again(self):
        self.service.respond(1, "d1", accept=False)
        session = self.service.respond(1, "d2", accept=False)

        self.assertEqual(session.status, RideStatus.FAILED)
        self.assertEqual(session.attempted, ["d1", "d2"])
        self.assertEqual(self.registry.reservations(), {})

    def test_wrong_driver_is_stale_and_changes_nothing(self):
        with self.assertRaises(StaleOfferError):
            self.service.respond(1, "d2", accept=True)

        self.assertEqual(self.session.pending_offer.driver_id, "d1")
        self.assertEqual(self.status_of("d2"), DriverStatus.ONLINE)

    def test_second_answer_is_stale(self):
        self.service.respond(1, "d1", accept=True)

        with self.assertRaises(StaleOfferError):
            self.service.respond(1, "d1", accept=False)
        self.assertEqual(self.session.status, RideStatus.MATCHED)

    def test_late_answer_expires_offer_and_moves_on(self):
        self.clock.advance(21)

        with self.assertRaises(StaleOfferError):
            self.service.respond(1, "d1", accept=True)

        self.assertEqual(self.session.offers[0].state, OfferState.EXPIRED)
        self.assertEqual(self.session.pending_offer.driver_id, "d2")
        self.assertEqual(self.status_of("d1"), DriverStatus.ONLINE)

    def test_hook_failures_do_not_change_outcome(self):
        engine = make_engine(clock=self.clock, notifier=ExplodingNotifier())
        add_driver(engine, "d1")
        with self.assertLogs("services.matching.coordinator", level="ERROR"):
            engine.service.request_match(make_ride(engine, 1))
            session = engine.service.respond(1, "d1", accept=True)

        self.assertEqual(session.status, RideStatus.MATCHED)


class TimeoutTests(DispatchTestCase):
    def setUp(self):
        super().setUp()
        add_driver(self.engine, "d1", north_meters=100)
        add_driver(self.engine, "d2", north_meters=400)
        self.session = self.service.request_match(make_ride(self.engine, 1))

    def test_sweep_before_deadline_does_nothing(self):
        self.clock.advance(19)

        self.assertEqual(self.service.sweep_expired(), 0)
        self.assertEqual(self.session.pending_offer.driver_id, "d1")

    def test_sweep_expires_offer_and_offers_next(self):
        self.clock.advance(20)

        self.assertEqual(self.service.sweep_expired(), 1)

        self.assertEqual(self.session.declined, {"d1": DeclineReason.EXPIRED})
        self.assertEqual(self.session.pending_offer.driver_id, "d2")
        self.assertEqual(self.status_of("d1"), DriverStatus.ONLINE)
        self.assertIn(("offer_closed", "d1", RideStatus.OFFERING), self.notifier.events)

    def test_all_offers_time_out(self):
        self.clock.advance(20)
        self.service.sweep_expired()
        self.clock.advance(20)
        self.service.sweep_expired()

        self.assertEqual(self.session.status, RideStatus.FAILED)
        self.assertEqual(self.registry.reservations(), {})
        self.assertEqual(self.engine.metrics.get("offers_expired"), 2)
        self.assertEqual(self.service.stats()["active_sessions"], 0)

    def test_matching_window_expires_session(self):
        engine = make_engine(
            clock=self.clock, notifier=self.notifier,
            offer_timeout_seconds=20, max_session_seconds=30,
        )
        for index in range(5):
            add_driver(engine, index, north_meters=100 * (index + 1))
        session = engine.service.request_match(make_ride(engine, 9))

        self.clock.advance(20)
        engine.service.sweep_expired()
        self.clock.advance(10)
        engine.service.sweep_expired()

        self.assertEqual(session.status, RideStatus.EXPIRED)
        self.assertEqual(session.offers[-1].state, OfferState.EXPIRED)
        self.assertEqual(engine.registry.reservations(), {})
        self.assertEqual(self.notifier.events[-1], ("offer_closed", 1, RideStatus.EXPIRED))


class CancelTests(DispatchTestCase):
    def setUp(self):
        super().setUp()
        add_driver(self.engine, "d1", north_meters=100)
        self.session = self.service.request_match(make_ride(self.engine, 1))

    def test_cancel_revokes_offer_and_releases_driver(self):
        self.assertTrue(self.service.cancel(1, "changed my mind"))

        self.assertEqual(self.session.status, RideStatus.CANCELLED)
        self.assertEqual(self.session.cancel_reason, "changed my mind")
        self.assertEqual(self.session.offers[0].state, OfferState.EXPIRED)
        # Revocation is not a decline by the driver
        self.assertEqual(self.session.declined, {})
        self.assertEqual(self.status_of("d1"), DriverStatus.ONLINE)
        self.assertEqual(
            self.notifier.events[-2:],
            [
                ("session_finished", None, RideStatus.CANCELLED),
                ("offer_closed", "d1", RideStatus.CANCELLED),
            ],
        )

    def test_cancel_is_idempotent(self):
        self.service.cancel(1)

        self.assertFalse(self.service.cancel(1))
        self.assertEqual(self.engine.metrics.get("cancellations"), 1)

    def test_matched_ride_is_not_cancelled(self):
        self.service.respond(1, "d1", accept=True)

        self.assertFalse(self.service.cancel(1))
        self.assertEqual(self.session.status, RideStatus.MATCHED)
        self.assertEqual(self.status_of("d1"), DriverStatus.BUSY)

    def test_answer_after_cancel_is_stale(self):
        self.service.cancel(1)

        with self.assertRaises(StaleOfferError):
            self.service.respond(1, "d1", accept=True)

    def test_shutdown_cancels_active_sessions(self):
        self.assertEqual(self.engine.service.shutdown(), 1)
        self.assertEqual(self.session.cancel_reason, "shutdown")
        self.assertEqual(self.registry.reservations(), {})


class SkippedCandidateTests(DispatchTestCase):

    def test_driver_taken_between_query_and_reserve_is_skipped(self):
        add_driver(self.engine, "d1", north_meters=100)
        add_driver(self.engine, "d2", north_meters=400)
        ride = make_ride(self.engine, 1)
        original = self.engine.selector.select

        def select_then_lose_d1(*args, **kwargs):
            candidates = original(*args, **kwargs)
            if "d1" in candidates:
                self.registry.reserve("d1", holder="someone-else")
            return candidates

        with patch.object(self.engine.selector, "select", side_effect=select_then_lose_d1):
            session = self.service.request_match(ride)

        self.assertEqual(session.declined, {"d1": DeclineReason.UNAVAILABLE})
        self.assertEqual(session.pending_offer.driver_id, "d2")
        self.assertEqual(self.engine.metrics.get("drivers_unavailable"), 1)
        self.registry.release("d1", holder="someone-else")

    def test_registry_inconsistency_fails_session_safely(self):
        add_driver(self.engine, "d1")

        with patch.object(self.registry, "reserve", side_effect=RegistryConsistencyError("busy, no holder")):
            with self.assertLogs("services.matching.coordinator", level="ERROR"):
                session = self.service.request_match(make_ride(self.engine, 1))

        self.assertEqual(session.status, RideStatus.FAILED)
        self.assertEqual(session.failure.code, "registry_inconsistent")
        self.assertEqual(self.registry.reservations(), {})


class HookLockingTests(SimpleTestCase):
    """Store and notifier calls may block on the network, so none runs under a session lock."""

    def test_hooks_run_after_session_lock_is_released(self):
        clock = ManualClock()
        lock_states = []
        engine_box = []

        def session_lock_free(ride_id):
            lock = engine_box[0].service.get_session(ride_id).lock
            result = []

            def try_lock():
                acquired = lock.acquire(timeout=1)
                if acquired:
                    lock.release()
                result.append(acquired)

            thread = threading.Thread(target=try_lock)
            thread.start()
            thread.join()
            return result[0]

        class LockCheckingNotifier(RecordingNotifier):
            def offer_sent(self, session, offer):
                lock_states.append(("offer_sent", session_lock_free(session.ride.id)))

            def offer_closed(self, session, offer):
                lock_states.append(("offer_closed", session_lock_free(session.ride.id)))

            def session_finished(self, session):
                lock_states.append(("session_finished", session_lock_free(session.ride.id)))

        class LockCheckingStore(RecordingStore):
            def save_driver(self, driver, location_only=False):
                if driver.reserved_by is not None:
                    lock_states.append(("save_driver", session_lock_free(1)))

        engine = make_engine(clock=clock, notifier=LockCheckingNotifier(), store=LockCheckingStore())
        engine_box.append(engine)
        add_driver(engine, "d1", north_meters=100)
        add_driver(engine, "d2", north_meters=300)

        engine.service.request_match(make_ride(engine, 1))
        clock.advance(20)
        engine.service.sweep_expired()
        engine.service.respond(1, "d2", accept=True)

        self.assertEqual(
            [name for name, _ in lock_states],
            ["save_driver", "offer_sent", "offer_closed", "save_driver", "offer_sent", "session_finished"],
        )
        self.assertTrue(all(free for _, free in lock_states))
        assert_reservations_consistent(self, engine)

    def test_hook_order_is_kept_when_deferred(self):
        engine = make_engine(store=RecordingStore(), notifier=RecordingNotifier())
        add_driver(engine, "d1")

        engine.service.request_match(make_ride(engine, 1))
        engine.service.cancel(1, "rider left")

        self.assertEqual(
            engine.coordinator.notifier.names(),
            ["offer_sent", "session_finished", "offer_closed"],
        )
        self.assertEqual(
            engine.coordinator.store.rides,
            [RideStatus.OFFERING, RideStatus.CANCELLED],
        )


class SessionHistoryTests(SimpleTestCase):

    def test_history_is_bounded(self):
        engine = make_engine(session_history_size=2)
        for ride_id in range(3):
            engine.service.request_match(make_ride(engine, ride_id))

        with self.assertRaises(SessionNotFoundError):
            engine.service.get_session(0)
        self.assertEqual(engine.service.stats()["archived_sessions"], 2)

    def test_stats_include_metrics(self):
        engine = make_engine()
        add_driver(engine, "d1")
        engine.service.request_match(make_ride(engine, 1))

        stats = engine.stats()

        self.assertEqual(stats["active_sessions"], 1)
        self.assertEqual(stats["busy_drivers"], 1)
        self.assertEqual(stats["metrics"]["offers_sent"], 1)
        self.assertFalse(stats["running"])


class ModelRuleTests(SimpleTestCase):

    def test_terminal_ride_cannot_move(self):
        ride = make_ride(make_engine(), 1)
        ride.transition(RideStatus.FAILED)

        with self.assertRaises(InvalidStatusTransitionError):
            ride.transition(RideStatus.OFFERING)

    def test_pending_cannot_jump_to_matched(self):
        ride = make_ride(make_engine(), 1)

        with self.assertRaises(InvalidStatusTransitionError):
            ride.transition(RideStatus.MATCHED)

    def test_sweep_interval_must_be_shorter_than_timeout(self):
        with self.assertRaises(ValueError):
            DispatchConfig(offer_timeout_seconds=5, sweep_interval_seconds=5).validate()
        with self.assertRaises(ValueError):
            make_engine(offer_timeout_seconds=5, sweep_interval_seconds=10)
