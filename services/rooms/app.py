from contextlib import asynccontextmanager
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from common.cache import SimpleTTLCache
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import require_admin
from common.logging_middleware import add_audit_middleware
from common.models import Room, RoomType, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import RoomCreate, RoomRead, RoomUpdate

settings = get_settings()
room_catalog_cache: SimpleTTLCache[list[RoomRead]] = SimpleTTLCache(ttl=settings.room_cache_ttl)


def _catalog_key(room_type: Optional[RoomType], guests: Optional[int]) -> str:
    return f"room-list:{room_type.value if room_type else ''}:{guests or ''}"


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Rooms Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "rooms")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "rooms"}


@circuit(failure_threshold=5, recovery_timeout=60)
def _load_catalog(db: Session, room_type: Optional[RoomType], guests: Optional[int]) -> list[RoomRead]:
    query = db.query(Room)
    if room_type:
        query = query.filter(Room.room_type == room_type)
    if guests:
        query = query.filter(Room.max_guests >= guests)
    rooms = query.order_by(Room.room_type, Room.name).all()
    return [RoomRead.model_validate(room) for room in rooms]


@app.get("/rooms", response_model=List[RoomRead])
@limiter.limit("60/minute")
def list_rooms(
    request: Request,
    room_type: Optional[RoomType] = None,
    guests: Optional[int] = None,
    db: Session = Depends(get_db),
) -> list[RoomRead]:
    return room_catalog_cache.get_or_set(
        _catalog_key(room_type, guests),
        lambda: _load_catalog(db, room_type, guests),
    )


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(request: Request, room_id: int, db: Session = Depends(get_db)) -> Room:
    room = db.query(Room).filter(Room.id == room_id).first()
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Room:
    if db.query(Room).filter(Room.name == room_in.name).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room name already exists")
    room = Room(**room_in.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    room_catalog_cache.clear()
    return room


@app.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("15/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Room:
    room = db.query(Room).filter(Room.id == room_id).first()
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    # Existing bookings keep the price they were created with.
    for key, value in room_update.model_dump(exclude_unset=True).items():
        setattr(room, key, value)
    db.commit()
    db.refresh(room)
    room_catalog_cache.clear()
    return room


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.rooms_service_port)
