"""Shared builders for engine tests."""

from services.matching import (
    DispatchConfig,
    DispatchEngine,
    DispatchNotifier,
    DispatchStore,
    Location,
    ManualClock,
    RideRequest,
    SearchConstraints,
)

# Connaught Place, New Delhi; 0.001 degrees of latitude is about 111 m
PICKUP = (28.6139, 77.2090)


class RecordingNotifier(DispatchNotifier):
    """Keeps every notification together with the ride status at that moment."""

    def __init__(self):
        self.events = []

    def offer_sent(self, session, offer):
        self.events.append(("offer_sent", offer.driver_id, session.status))

    def offer_closed(self, session, offer):
        self.events.append(("offer_closed", offer.driver_id, session.status))

    def session_finished(self, session):
        self.events.append(("session_finished", session.matched_driver_id, session.status))

    def names(self):
        return [event[0] for event in self.events]


class RecordingStore(DispatchStore):

    def __init__(self):
        self.drivers = []
        self.offers = []
        self.rides = []

    def save_driver(self, driver, location_only=False):
        self.drivers.append((driver, location_only))

    def save_offer(self, offer):
        self.offers.append((offer.driver_id, offer.state))

    def save_ride(self, session):
        self.rides.append(session.status)


class ExplodingNotifier(DispatchNotifier):

    def offer_sent(self, session, offer):
        raise RuntimeError("channel layer down")

    def offer_closed(self, session, offer):
        raise RuntimeError("channel layer down")

    def session_finished(self, session):
        raise RuntimeError("channel layer down")


def make_engine(clock=None, notifier=None, store=None, **config):
    options = {
        "offer_timeout_seconds": 20.0,
        "sweep_interval_seconds": 5.0,
        "staleness_seconds": 120.0,
        "max_session_seconds": 300.0,
    }
    options.update(config)
    return DispatchEngine(
        config=DispatchConfig(**options),
        clock=clock or ManualClock(),
        notifier=notifier,
        store=store,
    )


def add_driver(engine, driver_id, north_meters=0.0, east_meters=0.0, **fields):
    """Register a dispatchable driver at an offset from PICKUP."""
    lat = PICKUP[0] + north_meters / 111_320.0
    lon = PICKUP[1] + east_meters / 97_700.0
    values = {
        "status": "online",
        "verification_status": "approved",
        "is_location_active": True,
        "location": Location.of(lat, lon),
        "last_location_update": engine.clock.now(),
    }
    values.update(fields)
    return engine.registry.register(driver_id, **values)


def make_ride(engine, ride_id, radius_meters=5000, capabilities=(), max_candidates=None, rider_id=None):
    return RideRequest(
        id=ride_id,
        rider_id=rider_id,
        pickup=Location.of(*PICKUP),
        requested_at=engine.clock.now(),
        constraints=SearchConstraints.build(
            radius_meters=radius_meters,
            required_capabilities=capabilities,
            max_candidates=max_candidates,
        ),
    )


def assert_reservations_consistent(test, engine):
    """Busy drivers are exactly the reserved ones, and every holder is a live session."""
    reservations = engine.registry.reservations()
    test.assertEqual(engine.registry.busy_driver_ids(), set(reservations))
    test.assertLessEqual(set(reservations.values()), engine.service.live_session_ids())
