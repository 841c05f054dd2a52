"""
Live driver state: position, availability and verification.

The registry is the single authority on whether a driver can take a ride.
Every driver record carries its own lock; `reserve` / `release` run inside
that per-driver critical section, which is what prevents two ride requests
from ever committing the same driver.

Lock order used across the engine is session -> driver. The registry never
calls back into sessions or the coordinator.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

from common.utils.geo import bounding_box, calculate_distance
from .clock import SystemClock
from .exceptions import (
    DriverUnavailableError,
    InvalidStatusTransitionError,
    RegistryConsistencyError,
    UnknownDriverError,
)
from .hooks import DispatchStore, emit
from .models import (
    DRIVER_STATUS_TRANSITIONS,
    Driver,
    DriverId,
    DriverStatus,
    Location,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


def _aware(when: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when


@dataclass
class _DriverRecord:
    id: DriverId
    status: DriverStatus = DriverStatus.OFFLINE
    verification_status: VerificationStatus = VerificationStatus.PENDING
    is_location_active: bool = False
    location: Optional[Location] = None
    last_location_update: Optional[datetime] = None
    vehicle_capabilities: FrozenSet[str] = frozenset()
    reserved_by: Optional[str] = None
    state_changed_at: Optional[datetime] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def snapshot(self) -> Driver:
        return Driver(
            id=self.id,
            status=self.status,
            verification_status=self.verification_status,
            is_location_active=self.is_location_active,
            location=self.location,
            last_location_update=self.last_location_update,
            vehicle_capabilities=self.vehicle_capabilities,
            reserved_by=self.reserved_by,
            state_changed_at=self.state_changed_at,
        )

    def touch(self, now: datetime) -> None:
        """Stamp a state change; the stamp never repeats or goes backwards."""
        if self.state_changed_at is not None and now <= self.state_changed_at:
            now = self.state_changed_at + timedelta(microseconds=1)
        self.state_changed_at = now


@dataclass(frozen=True)
class EligibleDriver:
    driver: Driver
    distance_meters: float


class EligibleDrivers:
    """
    Result of `DriverLocationRegistry.query_eligible`.

    Nothing is computed until first use; after that the ordered snapshot is
    cached, so iterating again restarts from the nearest driver and yields
    the same sequence.
    """

    def __init__(self, registry: "DriverLocationRegistry", center: Location,
                 radius_meters: float, required_capabilities: FrozenSet[str], now: datetime):
        self._registry = registry
        self.center = center
        self.radius_meters = float(radius_meters)
        self.required_capabilities = required_capabilities
        self.now = now
        self._results: Optional[Tuple[EligibleDriver, ...]] = None

    def _materialize(self) -> Tuple[EligibleDriver, ...]:
        if self._results is None:
            self._results = self._registry._collect_eligible(
                self.center, self.radius_meters, self.required_capabilities, self.now
            )
        return self._results

    def __iter__(self) -> Iterator[EligibleDriver]:
        return iter(self._materialize())

    def __len__(self) -> int:
        return len(self._materialize())

    def __bool__(self) -> bool:
        return len(self) > 0

    def __getitem__(self, index):
        return self._materialize()[index]

    def driver_ids(self) -> List[DriverId]:
        return [item.driver.id for item in self._materialize()]


class DriverLocationRegistry:
    """
    Authoritative in-memory view of every driver's live state.

    Created when the dispatch engine starts and discarded when it stops;
    mutations are written through to the DispatchStore after the driver lock
    has been released.
    """

    def __init__(self, clock=None, staleness_seconds: float = 120.0, store: Optional[DispatchStore] = None):
        self._clock = clock or SystemClock()
        self.staleness_seconds = float(staleness_seconds)
        self._store = store or DispatchStore()
        self._records: Dict[DriverId, _DriverRecord] = {}
        # Guards membership of _records only; never held while waiting on a driver lock
        self._table_lock = threading.RLock()

    # ---------------------- Membership ----------------------

    def register(
        self,
        driver_id: DriverId,
        status=DriverStatus.OFFLINE,
        verification_status=VerificationStatus.PENDING,
        is_location_active: bool = False,
        location: Optional[Location] = None,
        last_location_update: Optional[datetime] = None,
        vehicle_capabilities: Iterable[str] = (),
        state_changed_at: Optional[datetime] = None,
    ) -> Driver:
        """
        Add a driver, or refresh the record of one already known.

        Used for start-up hydration from persistence. A driver recorded as busy
        without a live reservation cannot be trusted, so it comes back offline.
        A reserved driver keeps its reservation and busy status.
        `state_changed_at` carries over the stamp of the persisted row so later
        changes are stamped after it.
        """
        status = DriverStatus(status)
        verification_status = VerificationStatus(verification_status)

        with self._table_lock:
            record = self._records.get(driver_id)
            if record is None:
                record = _DriverRecord(id=driver_id)
                self._records[driver_id] = record

        with record.lock:
            if record.reserved_by is None:
                if status == DriverStatus.BUSY:
                    logger.warning("Driver %s registered as busy with no reservation; marking offline", driver_id)
                    status = DriverStatus.OFFLINE
                record.status = status
            record.verification_status = verification_status
            record.is_location_active = bool(is_location_active)
            record.location = location
            record.last_location_update = _aware(last_location_update) if last_location_update else None
            record.vehicle_capabilities = frozenset(vehicle_capabilities or ())
            if state_changed_at is not None:
                stamp = _aware(state_changed_at)
                if record.state_changed_at is None or stamp > record.state_changed_at:
                    record.state_changed_at = stamp
            return record.snapshot()

    def remove(self, driver_id: DriverId) -> None:
        record = self._record(driver_id)
        with record.lock:
            if record.reserved_by is not None:
                raise DriverUnavailableError(f"Driver {driver_id} is reserved and cannot be removed")
            with self._table_lock:
                self._records.pop(driver_id, None)

    def get(self, driver_id: DriverId) -> Driver:
        record = self._record(driver_id)
        with record.lock:
            return record.snapshot()

    def drivers(self) -> List[Driver]:
        with self._table_lock:
            records = list(self._records.values())
        snapshots = []
        for record in records:
            with record.lock:
                snapshots.append(record.snapshot())
        return snapshots

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._records)

    def __contains__(self, driver_id) -> bool:
        with self._table_lock:
            return driver_id in self._records

    # ---------------------- Location & status updates ----------------------

    def update_location(self, driver_id: DriverId, lat, lon, timestamp: Optional[datetime] = None,
                        is_location_active: Optional[bool] = None) -> bool:
        """
        Apply a position report with last-write-wins semantics.

        Returns False (and changes nothing, `is_location_active` included)
        when `timestamp` is older than the stored last_location_update.

        Raises:
            InvalidLocationError: coordinates out of range
            UnknownDriverError: driver not registered
        """
        location = Location.of(lat, lon)
        timestamp = _aware(timestamp) if timestamp else self._clock.now()
        record = self._record(driver_id)

        with record.lock:
            if record.last_location_update is not None and timestamp < record.last_location_update:
                logger.debug(
                    "Discarding out-of-order location for driver %s (%s < %s)",
                    driver_id, timestamp, record.last_location_update,
                )
                return False
            sharing_changed = (
                is_location_active is not None
                and record.is_location_active != bool(is_location_active)
            )
            if sharing_changed:
                record.is_location_active = bool(is_location_active)
                record.touch(self._clock.now())
            record.location = location
            record.last_location_update = timestamp
            snapshot = record.snapshot()

        self._persist(snapshot, location_only=not sharing_changed)
        return True

    def set_active(self, driver_id: DriverId, active: bool) -> Driver:
        record = self._record(driver_id)
        with record.lock:
            changed = record.is_location_active != bool(active)
            record.is_location_active = bool(active)
            if changed:
                record.touch(self._clock.now())
            snapshot = record.snapshot()
        if changed:
            self._persist(snapshot)
        return snapshot

    def set_verification(self, driver_id: DriverId, status) -> Driver:
        status = VerificationStatus(status)
        record = self._record(driver_id)
        with record.lock:
            changed = record.verification_status != status
            record.verification_status = status
            if changed:
                record.touch(self._clock.now())
            snapshot = record.snapshot()
        if changed:
            self._persist(snapshot)
        return snapshot

    def set_capabilities(self, driver_id: DriverId, capabilities: Iterable[str]) -> Driver:
        capabilities = frozenset(capabilities or ())
        record = self._record(driver_id)
        with record.lock:
            changed = record.vehicle_capabilities != capabilities
            record.vehicle_capabilities = capabilities
            if changed:
                record.touch(self._clock.now())
            snapshot = record.snapshot()
        if changed:
            self._persist(snapshot)
        return snapshot

    def set_status(self, driver_id: DriverId, status) -> Driver:
        """
        Move a driver between offline and online.

        Busy is entered and left only through reserve/release; any other route
        into or out of it raises InvalidStatusTransitionError.
        """
        status = DriverStatus(status)
        record = self._record(driver_id)
        with record.lock:
            if record.status == status:
                return record.snapshot()
            if status not in DRIVER_STATUS_TRANSITIONS[record.status]:
                raise InvalidStatusTransitionError(
                    f"Driver {driver_id}: cannot move from {record.status.value} to {status.value}"
                )
            record.status = status
            record.touch(self._clock.now())
            snapshot = record.snapshot()
        self._persist(snapshot)
        return snapshot

    # ---------------------- Queries ----------------------

    def query_eligible(self, center: Location, radius_meters: float,
                       required_capabilities: Iterable[str] = ()) -> EligibleDrivers:
        """
        Dispatchable drivers within `radius_meters` of `center` that have every
        required capability, nearest first. Equal distances go to the driver
        whose location was updated earliest (longest idle).
        """
        return EligibleDrivers(
            self,
            center,
            radius_meters,
            frozenset(required_capabilities or ()),
            self._clock.now(),
        )

    def _collect_eligible(self, center: Location, radius_meters: float,
                          required: FrozenSet[str], now: datetime) -> Tuple[EligibleDriver, ...]:
        with self._table_lock:
            records = list(self._records.values())

        min_lat, max_lat, min_lon, max_lon = bounding_box(center.latitude, center.longitude, radius_meters)
        results: List[EligibleDriver] = []

        for record in records:
            with record.lock:
                driver = record.snapshot()

            if driver.reserved_by is not None:
                continue
            if not driver.is_dispatchable(now, self.staleness_seconds):
                continue
            if not required <= driver.vehicle_capabilities:
                continue

            lat, lon = driver.location.latitude, driver.location.longitude
            if not (min_lat <= lat <= max_lat and min_lon <= lon <= max_lon):
                continue

            distance = calculate_distance(center.latitude, center.longitude, lat, lon)
            if distance <= radius_meters:
                results.append(EligibleDriver(driver, distance))

        results.sort(key=lambda item: (
            item.distance_meters,
            item.driver.last_location_update,
            str(item.driver.id),
        ))
        return tuple(results)

    # ---------------------- Reservations ----------------------

    def reserve(self, driver_id: DriverId, holder: str) -> Driver:
        """
        Atomically claim a dispatchable driver for `holder` and mark it busy.

        Raises:
            DriverUnavailableError: not dispatchable, or already reserved
            UnknownDriverError: driver not registered
            RegistryConsistencyError: driver is busy with no reservation holder
        """
        record = self._record(driver_id)
        now = self._clock.now()

        with record.lock:
            if record.reserved_by is not None:
                raise DriverUnavailableError(f"Driver {driver_id} is already reserved")
            if record.status == DriverStatus.BUSY:
                raise RegistryConsistencyError(f"Driver {driver_id} is busy without a reservation")
            if not record.snapshot().is_dispatchable(now, self.staleness_seconds):
                raise DriverUnavailableError(f"Driver {driver_id} is not dispatchable")
            record.status = DriverStatus.BUSY
            record.reserved_by = holder
            record.touch(now)
            snapshot = record.snapshot()

        logger.debug("Reserved driver %s for %s", driver_id, holder)
        self._persist(snapshot)
        return snapshot

    def release(self, driver_id: DriverId, holder: Optional[str] = None) -> bool:
        """
        Return a reserved driver to online.

        A no-op returning False when the driver holds no reservation, or when
        `holder` is given and the reservation belongs to someone else, so
        releasing twice is harmless.
        """
        with self._table_lock:
            record = self._records.get(driver_id)
        if record is None:
            return False

        with record.lock:
            if record.reserved_by is None:
                return False
            if holder is not None and record.reserved_by != holder:
                return False
            record.reserved_by = None
            record.status = DriverStatus.ONLINE
            record.touch(self._clock.now())
            snapshot = record.snapshot()

        logger.debug("Released driver %s (holder=%s)", driver_id, holder)
        self._persist(snapshot)
        return True

    def release_all(self, holder: str) -> List[DriverId]:
        """Release every reservation owned by `holder`."""
        released = [
            driver_id for driver_id, owner in self.reservations().items()
            if owner == holder and self.release(driver_id, holder)
        ]
        if released:
            logger.warning("Released %d reservation(s) held by %s", len(released), holder)
        return released

    def reservations(self) -> Dict[DriverId, str]:
        return {
            driver.id: driver.reserved_by
            for driver in self.drivers()
            if driver.reserved_by is not None
        }

    def busy_driver_ids(self) -> Set[DriverId]:
        return {driver.id for driver in self.drivers() if driver.status == DriverStatus.BUSY}

    # ---------------------- Helpers ----------------------

    def _record(self, driver_id: DriverId) -> _DriverRecord:
        with self._table_lock:
            record = self._records.get(driver_id)
        if record is None:
            raise UnknownDriverError(f"Driver {driver_id} is not registered")
        return record

    def _persist(self, driver: Driver, location_only: bool = False) -> None:
        # Deferred while a caller holds a session lock; see hooks.deferred_hooks
        emit(logger, self._store.save_driver, driver, location_only=location_only)
