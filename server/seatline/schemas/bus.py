"""Bus-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class CreateBusRequest(BaseModel):
    """Request schema for registering a bus and its seat map."""

    plate: str = Field(..., min_length=1, max_length=32, description="License plate")
    seat_numbers: list[str] = Field(..., min_length=1, max_length=100, description="Seat labels")

    @field_validator("seat_numbers")
    @classmethod
    def validate_seat_numbers(cls, v: list[str]) -> list[str]:
        """Seat labels must be non-empty and unique."""
        cleaned = [number.strip() for number in v]
        if any(not number or len(number) > 10 for number in cleaned):
            raise ValueError("Seat numbers must be 1-10 characters")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("Seat numbers must be unique")
        return cleaned


class GetBusRequest(BaseModel):
    """Request schema for reading a bus."""

    bus_id: UUID = Field(..., description="Bus to retrieve")


class Bus(BaseModel):
    """Bus response schema."""

    id: UUID = Field(..., description="Unique bus ID")
    plate: str = Field(..., description="License plate")
    capacity: int = Field(..., ge=1, description="Number of seats")
    seat_numbers: list[str] = Field(..., description="Installed seat labels")
