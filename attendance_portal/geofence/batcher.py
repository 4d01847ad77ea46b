"""GPS sample batching: turn a noisy per-user stream into stable location events.

Each user gets their own ``LocationUpdateBatcher``; the registry owns them.
A batch is handed to the consumer when it reaches ``batch_size`` samples or
``interval`` seconds after its first sample, whichever comes first.
Samples that moved less than ``min_movement_m`` from the last accepted
sample are dropped while that sample is still fresh.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from attendance_portal.common.clock import as_utc
from attendance_portal.common.constants import DeviceClass, Direction, LocationKind
from attendance_portal.config import settings
from attendance_portal.core_hr.models import StaffProfile
from attendance_portal.geofence.geomath import Coordinate, distance_meters
from attendance_portal.geofence.proximity import DeviceRadiusService
from attendance_portal.geofence.resolver import LocationResolver

logger = logging.getLogger(__name__)

BatchConsumer = Callable[[list["LocationSample"]], Awaitable[None]]


@dataclass(frozen=True)
class LocationSample:
    """One raw GPS fix as reported by the client. Never persisted."""

    latitude: float
    longitude: float
    accuracy: Optional[float]
    timestamp: datetime
    device_class: DeviceClass = DeviceClass.mobile

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


# ═════════════════════════════════════════════════════════════════════
# LocationUpdateBatcher
# ═════════════════════════════════════════════════════════════════════


class LocationUpdateBatcher:

    def __init__(
        self,
        consumer: BatchConsumer,
        *,
        batch_size: int = settings.GPS_BATCH_SIZE,
        interval: float = settings.GPS_BATCH_INTERVAL_SECONDS,
        min_movement_m: float = settings.GPS_MIN_MOVEMENT_METERS,
        freshness: float = settings.GPS_FRESHNESS_SECONDS,
    ) -> None:
        self._consumer = consumer
        self.batch_size = batch_size
        self.interval = interval
        self.min_movement_m = min_movement_m
        self.freshness = freshness

        self._batch: list[LocationSample] = []
        self._last_accepted: Optional[LocationSample] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending_flushes: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._batch)

    @property
    def last_accepted(self) -> Optional[LocationSample]:
        return self._last_accepted

    def _is_jitter(self, sample: LocationSample) -> bool:
        last = self._last_accepted
        if last is None:
            return False
        age = (as_utc(sample.timestamp) - as_utc(last.timestamp)).total_seconds()
        moved = distance_meters(last.coordinate, sample.coordinate)
        return moved < self.min_movement_m and age < self.freshness

    async def observe(self, sample: LocationSample) -> bool:
        """Add *sample* to the current batch. Returns False if it was dropped as jitter."""
        if self._is_jitter(sample):
            logger.debug(
                "GPS sample within %.0f m of last fix, skipping", self.min_movement_m,
            )
            return False

        self._last_accepted = sample
        self._batch.append(sample)

        if len(self._batch) >= self.batch_size:
            await self.flush()
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.interval, self._flush_from_timer)
        return True

    def _flush_from_timer(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self.flush())
        self._pending_flushes.add(task)
        task.add_done_callback(self._pending_flushes.discard)

    async def flush(self) -> None:
        """Hand the current batch to the consumer. Empty batch → no-op."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if not self._batch:
            return

        batch, self._batch = self._batch, []
        logger.debug("Flushing GPS batch with %d locations", len(batch))
        try:
            await self._consumer(batch)
        except Exception:
            logger.exception("Error processing GPS batch")

    async def close(self) -> None:
        """Flush what is buffered and wait for timer-driven flushes to finish."""
        await self.flush()
        if self._pending_flushes:
            await asyncio.gather(*self._pending_flushes, return_exceptions=True)


# ═════════════════════════════════════════════════════════════════════
# LocationBatcherRegistry: one batcher per user
# ═════════════════════════════════════════════════════════════════════


class LocationBatcherRegistry:
    """One batcher per user. Streams idle for ``idle_timeout`` seconds are closed.

    ``on_evict`` runs after a user's batcher has been flushed and dropped.
    """

    def __init__(
        self,
        consumer_for: Callable[[uuid.UUID], BatchConsumer],
        *,
        idle_timeout: float = settings.GPS_BATCHER_IDLE_SECONDS,
        on_evict: Optional[Callable[[uuid.UUID], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        **batcher_options,
    ) -> None:
        self._consumer_for = consumer_for
        self._options = batcher_options
        self.idle_timeout = idle_timeout
        self._on_evict = on_evict
        self._clock = clock
        self._batchers: dict[uuid.UUID, LocationUpdateBatcher] = {}
        self._last_seen: dict[uuid.UUID, float] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._batchers)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._batchers

    def get(self, user_id: uuid.UUID) -> LocationUpdateBatcher:
        batcher = self._batchers.get(user_id)
        if batcher is None:
            batcher = LocationUpdateBatcher(self._consumer_for(user_id), **self._options)
            self._batchers[user_id] = batcher
        return batcher

    async def observe(self, user_id: uuid.UUID, sample: LocationSample) -> bool:
        now = self._clock()
        if now - self._last_sweep >= self.idle_timeout:
            await self.evict_idle(now)
        self._last_seen[user_id] = now
        return await self.get(user_id).observe(sample)

    async def evict_idle(self, now: Optional[float] = None) -> int:
        """Close every batcher that has not seen a sample for ``idle_timeout`` seconds."""
        now = self._clock() if now is None else now
        self._last_sweep = now
        idle = [
            user_id
            for user_id, seen in self._last_seen.items()
            if now - seen >= self.idle_timeout
        ]
        for user_id in idle:
            await self.discard(user_id)
        if idle:
            logger.debug("Evicted %d idle GPS batchers", len(idle))
        return len(idle)

    async def discard(self, user_id: uuid.UUID) -> None:
        self._last_seen.pop(user_id, None)
        batcher = self._batchers.pop(user_id, None)
        if batcher is not None:
            await batcher.close()
        if self._on_evict is not None:
            self._on_evict(user_id)

    async def close(self) -> None:
        batchers, self._batchers = list(self._batchers.values()), {}
        self._last_seen.clear()
        for batcher in batchers:
            await batcher.close()
        logger.info("Closed %d GPS batchers", len(batchers))


# ═════════════════════════════════════════════════════════════════════
# LocationStatusTracker: batch consumer
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class LocationStatus:
    kind: LocationKind
    distance_m: Optional[float]
    radius_m: float
    latitude: float
    longitude: float
    device_class: DeviceClass
    observed_at: datetime
    samples_in_batch: int


class LocationStatusTracker:
    """Classify the newest sample of every batch and remember the latest result per user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._latest: dict[uuid.UUID, LocationStatus] = {}

    def latest(self, user_id: uuid.UUID) -> Optional[LocationStatus]:
        return self._latest.get(user_id)

    def forget(self, user_id: uuid.UUID) -> None:
        self._latest.pop(user_id, None)

    def consumer_for(self, user_id: uuid.UUID) -> BatchConsumer:
        async def _consume(batch: list[LocationSample]) -> None:
            await self.consume(user_id, batch)

        return _consume

    async def consume(self, user_id: uuid.UUID, batch: list[LocationSample]) -> Optional[LocationStatus]:
        if not batch:
            return None
        newest = max(batch, key=lambda s: as_utc(s.timestamp))

        async with self._session_factory() as db:
            profile = await db.get(
                StaffProfile,
                user_id,
                options=[selectinload(StaffProfile.assigned_location)],
            )
            if profile is None:
                logger.warning("GPS batch for unknown user %s dropped", user_id)
                return None
            policy = await DeviceRadiusService.get_policy(db)

        assigned = profile.assigned_location.coordinate if profile.assigned_location else None
        classification = LocationResolver.classify(
            assigned,
            newest.coordinate,
            newest.device_class,
            Direction.check_in,
            policy,
        )
        status = LocationStatus(
            kind=classification.kind,
            distance_m=classification.distance_m,
            radius_m=classification.radius_m,
            latitude=newest.latitude,
            longitude=newest.longitude,
            device_class=newest.device_class,
            observed_at=as_utc(newest.timestamp),
            samples_in_batch=len(batch),
        )

        previous = self._latest.get(user_id)
        self._latest[user_id] = status
        if previous is None or previous.kind != status.kind:
            logger.info(
                "User %s is now %s (distance=%s m, radius=%.0f m)",
                user_id,
                status.kind.value,
                "n/a" if status.distance_m is None else f"{status.distance_m:.0f}",
                status.radius_m,
            )
        return status
