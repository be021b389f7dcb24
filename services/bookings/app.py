from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from common import booking_engine
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import get_current_user, require_admin
from common.errors import register_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingStatus, RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import AvailabilityRead, BlockingBooking, BookingCreate, BookingRead, CountRead

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    register_error_handlers(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.get("/bookings/rooms/{room_id}/availability", response_model=AvailabilityRead)
@limiter.limit("40/minute")
def check_availability(
    request: Request,
    room_id: int,
    check_in: datetime = Query(...),
    check_out: datetime = Query(...),
    db: Session = Depends(get_db),
) -> AvailabilityRead:
    result = booking_engine.check_availability(db, room_id, check_in, check_out)
    return AvailabilityRead(
        room_id=room_id,
        available=result.available,
        overlapping_count=len(result.blockers),
        overlapping_bookings=[BlockingBooking.model_validate(booking) for booking in result.blockers],
        message=(
            "Room is available for the selected dates"
            if result.available
            else "Room is already booked during this period"
        ),
    )


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    return booking_engine.create_booking(
        db,
        room_id=booking_in.room_id,
        user_id=current_user.id,
        check_in=booking_in.check_in,
        check_out=booking_in.check_out,
        guest_count=booking_in.guest_count,
        price_override=booking_in.total_price,
        notes=booking_in.notes,
    )


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    room_id: Optional[int] = None,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> List[Booking]:
    return booking_engine.list_bookings(db, status=status_filter, room_id=room_id)


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_my_bookings(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Booking]:
    return booking_engine.list_bookings(db, user_id=current_user.id)


@app.get("/bookings/pending/count", response_model=CountRead)
@limiter.limit("30/minute")
def pending_count(
    request: Request,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> CountRead:
    return CountRead(count=booking_engine.count_pending(db))


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    booking = booking_engine.get_booking(db, booking_id)
    if current_user.role != RoleEnum.ADMIN and booking.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return booking


@app.post("/bookings/{booking_id}/approve", response_model=BookingRead)
@limiter.limit("20/minute")
def approve_booking(
    request: Request,
    booking_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Booking:
    return booking_engine.approve_booking(db, booking_id)


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    booking = booking_engine.get_booking(db, booking_id)
    if current_user.role != RoleEnum.ADMIN and booking.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return booking_engine.cancel_booking(db, booking_id)


@app.post("/bookings/{booking_id}/complete", response_model=BookingRead)
@limiter.limit("20/minute")
def complete_booking(
    request: Request,
    booking_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Booking:
    return booking_engine.complete_booking(db, booking_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.bookings_service_port)
