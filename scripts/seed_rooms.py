#!/usr/bin/env python3
"""Seed the guest house room catalog (replaces any existing rooms)."""
from common.database import Base, SessionLocal, engine
from common.models import Booking, Room, RoomType

STANDARD_AMENITIES = ["WiFi", "Breakfast", "Parking", "Fan"]
DELUXE_AMENITIES = ["WiFi", "Breakfast", "AC", "Hot Water", "TV"]
FAMILY_AMENITIES = ["WiFi", "Breakfast", "AC", "Hot Water", "Extra Bed"]


def build_rooms() -> list[Room]:
    rooms = [
        Room(
            name=f"Standard Room {101 + i}",
            room_type=RoomType.STANDARD,
            nightly_rate=1500,
            max_guests=2,
            description="Comfortable room with twin beds, WiFi, and private bathroom.",
            amenities=STANDARD_AMENITIES,
            room_number=str(101 + i),
        )
        for i in range(12)
    ]
    rooms += [
        Room(
            name=f"Deluxe Room {201 + i}",
            room_type=RoomType.DELUXE,
            nightly_rate=2500,
            max_guests=2,
            description="Spacious deluxe with king bed, AC, lake-area view, hot shower.",
            amenities=DELUXE_AMENITIES,
            room_number=str(201 + i),
        )
        for i in range(8)
    ]
    rooms += [
        Room(
            name=f"Family Suite {301 + i}",
            room_type=RoomType.FAMILY,
            nightly_rate=3500,
            max_guests=4,
            description="Large suite for families, 2 bedrooms, extra beds available.",
            amenities=FAMILY_AMENITIES,
            room_number=str(301 + i),
        )
        for i in range(2)
    ]
    return rooms


def seed_rooms() -> int:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        # Bookings reference rooms, so they go first.
        db.query(Booking).delete()
        db.query(Room).delete()
        rooms = build_rooms()
        db.add_all(rooms)
        db.commit()
        return len(rooms)
    finally:
        db.close()


if __name__ == "__main__":
    print(f"Seeded {seed_rooms()} rooms successfully.")
