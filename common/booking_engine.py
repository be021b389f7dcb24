"""Booking conflict engine.

Stays are half-open intervals ``[check_in, check_out)``: two stays on the
same room overlap when each starts before the other ends, so a checkout and
a check-in on the same day never collide. Only ``pending`` and ``confirmed``
bookings take part in conflict detection.

Every mutation that depends on the set of active bookings for a room
(admission, approval, cancellation, completion) runs inside ``room_locks.hold(room_id)``
and commits before the lock is released, with the room row additionally
selected ``FOR UPDATE`` so that separate processes sharing a database
serialize on it as well.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import (
    BookingConflict,
    BookingNotFound,
    InvalidGuestCount,
    InvalidInterval,
    InvalidTransition,
    RoomNotFound,
)
from .locks import RoomLockRegistry
from .models import ACTIVE_STATUSES, Booking, BookingStatus, Room

logger = logging.getLogger(__name__)
settings = get_settings()

SECONDS_PER_DAY = 24 * 60 * 60

room_locks = RoomLockRegistry(timeout=settings.room_lock_timeout_seconds)

APPROVAL_BLOCKING_STATUSES = (BookingStatus.CONFIRMED,)


@dataclass
class Availability:
    room_id: int
    check_in: datetime
    check_out: datetime
    blockers: List[Booking] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return not self.blockers


def normalize_timestamp(value: datetime) -> datetime:
    """Return ``value`` as naive UTC, the form stored in the database."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_interval(check_in: datetime, check_out: datetime) -> tuple[datetime, datetime]:
    check_in = normalize_timestamp(check_in)
    check_out = normalize_timestamp(check_out)
    if check_in >= check_out:
        raise InvalidInterval(check_in, check_out)
    return check_in, check_out


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def compute_total_price(
    nightly_rate: float,
    check_in: datetime,
    check_out: datetime,
    override: Optional[float] = None,
) -> float:
    """Price a stay as whole nights times the rate, partial nights rounded up.

    A positive ``override`` wins over the computed amount.
    """
    if override is not None and override > 0:
        return float(override)
    nights = math.ceil((check_out - check_in).total_seconds() / SECONDS_PER_DAY)
    return float(nights * nightly_rate)


def find_blocking_bookings(
    db: Session,
    room_id: int,
    check_in: datetime,
    check_out: datetime,
    exclude_booking_id: Optional[int] = None,
    statuses: Sequence[BookingStatus] = ACTIVE_STATUSES,
) -> List[Booking]:
    query = db.query(Booking).filter(
        Booking.room_id == room_id,
        Booking.status.in_(statuses),
        Booking.check_in < check_out,
        Booking.check_out > check_in,
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query.order_by(Booking.check_in).populate_existing().all()


def check_availability(db: Session, room_id: int, check_in: datetime, check_out: datetime) -> Availability:
    """Advisory read: the answer may be stale as soon as it is returned."""
    check_in, check_out = validate_interval(check_in, check_out)
    blockers = find_blocking_bookings(db, room_id, check_in, check_out)
    return Availability(room_id=room_id, check_in=check_in, check_out=check_out, blockers=blockers)


def _raise_conflict(room_id: int, check_in: datetime, check_out: datetime, blockers: List[Booking]) -> None:
    logger.warning(
        "Booking conflict on room %s for %s -> %s, blocked by %s",
        room_id,
        check_in.isoformat(),
        check_out.isoformat(),
        [booking.id for booking in blockers],
    )
    raise BookingConflict(room_id, blockers)


def _commit_or_conflict(
    db: Session,
    room_id: int,
    check_in: datetime,
    check_out: datetime,
    exclude_booking_id: Optional[int] = None,
    statuses: Sequence[BookingStatus] = ACTIVE_STATUSES,
) -> None:
    """Commit, turning a storage-level race loss into a booking conflict."""
    try:
        db.commit()
    except (IntegrityError, OperationalError):
        db.rollback()
        blockers = find_blocking_bookings(db, room_id, check_in, check_out, exclude_booking_id, statuses)
        if not blockers:
            raise
        _raise_conflict(room_id, check_in, check_out, blockers)


def _lock_room(db: Session, room_id: int, bookable_only: bool = True) -> Room:
    """Select the room row ``FOR UPDATE``; every writer takes it before the booking row."""
    query = db.query(Room).filter(Room.id == room_id)
    if bookable_only:
        query = query.filter(Room.is_available.is_(True))
    room = query.with_for_update().first()
    if room is None:
        raise RoomNotFound(room_id)
    return room


def _load_booking(db: Session, booking_id: int, for_update: bool = False) -> Booking:
    query = db.query(Booking).filter(Booking.id == booking_id).populate_existing()
    if for_update:
        query = query.with_for_update()
    booking = query.first()
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


def get_booking(db: Session, booking_id: int) -> Booking:
    return _load_booking(db, booking_id)


def create_booking(
    db: Session,
    *,
    room_id: int,
    user_id: int,
    check_in: datetime,
    check_out: datetime,
    guest_count: int,
    price_override: Optional[float] = None,
    notes: str = "",
    locks: Optional[RoomLockRegistry] = None,
) -> Booking:
    """Admit a new ``pending`` booking if the room is free for the stay.

    Raises ``InvalidInterval``, ``InvalidGuestCount``, ``RoomNotFound`` or
    ``BookingConflict``. The overlap check and the insert happen under the
    room's lock, so of several concurrent overlapping requests exactly one
    is admitted.
    """
    check_in, check_out = validate_interval(check_in, check_out)
    if guest_count < 1:
        raise InvalidGuestCount(guest_count)

    with (locks or room_locks).hold(room_id):
        try:
            room = _lock_room(db, room_id)
            if guest_count > room.max_guests:
                raise InvalidGuestCount(guest_count, room.max_guests)

            blockers = find_blocking_bookings(db, room_id, check_in, check_out)
            if blockers:
                _raise_conflict(room_id, check_in, check_out, blockers)

            booking = Booking(
                user_id=user_id,
                room_id=room_id,
                check_in=check_in,
                check_out=check_out,
                guest_count=guest_count,
                notes=notes or "",
                status=BookingStatus.PENDING,
                total_price=compute_total_price(room.nightly_rate, check_in, check_out, price_override),
            )
            db.add(booking)
            _commit_or_conflict(db, room_id, check_in, check_out)
        except Exception:
            db.rollback()
            raise

    db.refresh(booking)
    logger.info(
        "Booking %s created for room %s (%s -> %s), total %.2f",
        booking.id,
        room_id,
        check_in.isoformat(),
        check_out.isoformat(),
        booking.total_price,
    )
    return booking


def approve_booking(db: Session, booking_id: int, locks: Optional[RoomLockRegistry] = None) -> Booking:
    """Move a pending booking to confirmed after re-checking for overlaps.

    The re-check runs against confirmed bookings: of two overlapping pending
    stays left behind by a race, the first one approved wins. On conflict the
    booking stays ``pending``; it is never cancelled here.
    """
    room_id = _load_booking(db, booking_id).room_id

    with (locks or room_locks).hold(room_id):
        try:
            _lock_room(db, room_id, bookable_only=False)
            booking = _load_booking(db, booking_id, for_update=True)
            if booking.status != BookingStatus.PENDING:
                raise InvalidTransition(booking.status.value, BookingStatus.CONFIRMED.value)

            blockers = find_blocking_bookings(
                db,
                room_id,
                booking.check_in,
                booking.check_out,
                exclude_booking_id=booking.id,
                statuses=APPROVAL_BLOCKING_STATUSES,
            )
            if blockers:
                _raise_conflict(room_id, booking.check_in, booking.check_out, blockers)

            booking.status = BookingStatus.CONFIRMED
            _commit_or_conflict(
                db,
                room_id,
                booking.check_in,
                booking.check_out,
                exclude_booking_id=booking.id,
                statuses=APPROVAL_BLOCKING_STATUSES,
            )
        except Exception:
            db.rollback()
            raise

    db.refresh(booking)
    logger.info("Booking %s confirmed", booking.id)
    return booking


def cancel_booking(db: Session, booking_id: int, locks: Optional[RoomLockRegistry] = None) -> Booking:
    """Cancel a pending or confirmed booking; cancelling twice is a no-op."""
    room_id = _load_booking(db, booking_id).room_id

    with (locks or room_locks).hold(room_id):
        try:
            _lock_room(db, room_id, bookable_only=False)
            booking = _load_booking(db, booking_id, for_update=True)
            if booking.status == BookingStatus.CANCELLED:
                db.rollback()
                return booking
            if booking.status == BookingStatus.COMPLETED:
                raise InvalidTransition(booking.status.value, BookingStatus.CANCELLED.value)

            booking.status = BookingStatus.CANCELLED
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(booking)
    logger.info("Booking %s cancelled", booking.id)
    return booking


def complete_booking(
    db: Session,
    booking_id: int,
    now: Optional[datetime] = None,
    locks: Optional[RoomLockRegistry] = None,
) -> Booking:
    """Mark a confirmed stay as completed once its checkout has passed."""
    now = normalize_timestamp(now or datetime.now(timezone.utc))
    room_id = _load_booking(db, booking_id).room_id

    with (locks or room_locks).hold(room_id):
        try:
            _lock_room(db, room_id, bookable_only=False)
            booking = _load_booking(db, booking_id, for_update=True)
            if booking.status != BookingStatus.CONFIRMED:
                raise InvalidTransition(booking.status.value, BookingStatus.COMPLETED.value)
            if booking.check_out > now:
                raise InvalidTransition(
                    booking.status.value,
                    BookingStatus.COMPLETED.value,
                    reason="Booking cannot be completed before its checkout date",
                )
            booking.status = BookingStatus.COMPLETED
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(booking)
    logger.info("Booking %s completed", booking.id)
    return booking


def list_bookings(
    db: Session,
    status: Optional[BookingStatus] = None,
    user_id: Optional[int] = None,
    room_id: Optional[int] = None,
) -> List[Booking]:
    query = db.query(Booking)
    if status is not None:
        query = query.filter(Booking.status == status)
    if user_id is not None:
        query = query.filter(Booking.user_id == user_id)
    if room_id is not None:
        query = query.filter(Booking.room_id == room_id)
    return query.order_by(Booking.check_in.desc()).all()


def count_pending(db: Session) -> int:
    return db.query(func.count(Booking.id)).filter(Booking.status == BookingStatus.PENDING).scalar() or 0
