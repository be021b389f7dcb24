"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import BookingStatus, RoleEnum, RoomType


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field("", max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=30)


class UserCreate(UserBase):
    password: str = Field(..., min_length=6)


class UserRead(UserBase):
    id: int
    role: RoleEnum
    created_at: datetime

    model_config = {"from_attributes": True}


class RoomBase(BaseModel):
    name: str = Field(..., max_length=100)
    room_type: RoomType
    nightly_rate: float = Field(..., gt=0)
    max_guests: int = Field(2, ge=1)
    description: str = ""
    amenities: List[str] = Field(default_factory=list)
    room_number: Optional[str] = None
    is_available: bool = True


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    nightly_rate: Optional[float] = Field(None, gt=0)
    max_guests: Optional[int] = Field(None, ge=1)
    description: Optional[str] = None
    amenities: Optional[List[str]] = None
    is_available: Optional[bool] = None


class RoomRead(RoomBase):
    id: int

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    room_id: int
    check_in: datetime
    check_out: datetime
    guest_count: int = 1
    notes: str = Field("", max_length=1000)
    total_price: Optional[float] = Field(None, description="Positive override for the computed price")


class BookingRead(BaseModel):
    id: int
    room_id: int
    user_id: int
    check_in: datetime
    check_out: datetime
    guest_count: int
    notes: str
    status: BookingStatus
    total_price: float
    created_at: datetime

    model_config = {"from_attributes": True}


class BlockingBooking(BaseModel):
    id: int
    check_in: datetime
    check_out: datetime
    status: BookingStatus

    model_config = {"from_attributes": True}


class AvailabilityRead(BaseModel):
    room_id: int
    available: bool
    overlapping_count: int
    overlapping_bookings: List[BlockingBooking]
    message: str


class CountRead(BaseModel):
    count: int
