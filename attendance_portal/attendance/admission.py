"""Check-in admission: serialise concurrent check-ins for the same user.

Duplicate taps, client retries and a second device can all race to create
the day's record. Each user has a slot (an ``asyncio.Lock``); callers queue
on it first-come-first-served, and whoever holds it re-reads committed
state before inserting. Different users never share a slot.

The slot holder must commit before leaving the ``admit`` block so that the
next waiter's re-check sees the new record.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

from attendance_portal.common.exceptions import AdmissionTimeoutError, DuplicateSessionError
from attendance_portal.config import settings

logger = logging.getLogger(__name__)


class ExistingSession(Protocol):
    check_in_time: object
    check_out_time: object


ExistingLookup = Callable[[], Awaitable[Optional[ExistingSession]]]


@dataclass(frozen=True)
class AdmissionTicket:
    user_id: uuid.UUID
    waited_seconds: float


class _Slot:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.refs = 0


class CheckInDeduplicator:
    """Keyed registry of per-user admission slots."""

    def __init__(
        self,
        timeout: float = settings.CHECKIN_ADMISSION_TIMEOUT_SECONDS,
    ) -> None:
        self.timeout = timeout
        self._slots: dict[uuid.UUID, _Slot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def is_busy(self, user_id: uuid.UUID) -> bool:
        slot = self._slots.get(user_id)
        return slot is not None and slot.lock.locked()

    @staticmethod
    async def _reject_if_exists(lookup: ExistingLookup) -> None:
        existing = await lookup()
        if existing is not None:
            raise DuplicateSessionError(
                existing.check_in_time,  # type: ignore[arg-type]
                check_out_time=existing.check_out_time,  # type: ignore[arg-type]
            )

    def _checkout_slot(self, user_id: uuid.UUID) -> _Slot:
        slot = self._slots.get(user_id)
        if slot is None:
            slot = self._slots[user_id] = _Slot()
        slot.refs += 1
        return slot

    def _return_slot(self, user_id: uuid.UUID, slot: _Slot) -> None:
        slot.refs -= 1
        if slot.refs == 0 and self._slots.get(user_id) is slot:
            del self._slots[user_id]

    @asynccontextmanager
    async def admit(
        self,
        user_id: uuid.UUID,
        existing_check_in: ExistingLookup,
    ) -> AsyncIterator[AdmissionTicket]:
        """
        Admit one check-in for *user_id* or raise.

        Args:
            user_id: Staff profile id; the slot key.
            existing_check_in: Returns the user's committed record for the
                day, or None. Called once before queueing and again once
                the slot is held.

        Raises:
            DuplicateSessionError: a record for the day already exists.
            AdmissionTimeoutError: the slot was not acquired within ``timeout``.
        """
        # Fast path: no need to queue behind anyone if the day is already taken
        await self._reject_if_exists(existing_check_in)

        slot = self._checkout_slot(user_id)
        started = time.monotonic()
        try:
            try:
                await asyncio.wait_for(slot.lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Check-in admission for %s timed out after %.1fs", user_id, self.timeout,
                )
                raise AdmissionTimeoutError(self.timeout)

            try:
                waited = time.monotonic() - started
                await self._reject_if_exists(existing_check_in)
                yield AdmissionTicket(user_id=user_id, waited_seconds=waited)
            finally:
                slot.lock.release()
        finally:
            self._return_slot(user_id, slot)


# Process-wide instance; one event loop per worker
check_in_deduplicator = CheckInDeduplicator()
