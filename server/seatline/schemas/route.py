"""Route-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class StopInput(BaseModel):
    """Stop definition inside a route creation request."""

    name: str = Field(..., min_length=1, max_length=255, description="Stop name")
    ordinal: int = Field(..., ge=0, description="Position along the route")


class CreateRouteRequest(BaseModel):
    """Request schema for creating a route with its stops."""

    name: str = Field(..., min_length=1, max_length=255, description="Route name")
    stops: list[StopInput] = Field(..., min_length=2, description="Stops in travel order")

    @field_validator("stops")
    @classmethod
    def validate_ordinals(cls, v: list[StopInput]) -> list[StopInput]:
        """Ordinals must strictly increase in travel order."""
        for previous, current in zip(v, v[1:]):
            if current.ordinal <= previous.ordinal:
                raise ValueError("Stop ordinals must be strictly increasing")
        return v


class GetRouteRequest(BaseModel):
    """Request schema for reading a route."""

    route_id: UUID = Field(..., description="Route to retrieve")


class OrdinalOfRequest(BaseModel):
    """Request schema for resolving a stop to its ordinal."""

    route_id: UUID = Field(..., description="Route the stop should belong to")
    stop_id: UUID = Field(..., description="Stop to resolve")


class Stop(BaseModel):
    """Stop response schema."""

    id: UUID = Field(..., description="Unique stop ID")
    name: str = Field(..., description="Stop name")
    ordinal: int = Field(..., description="Position along the route")

    model_config = {"from_attributes": True}


class Route(BaseModel):
    """Route response schema."""

    id: UUID = Field(..., description="Unique route ID")
    name: str = Field(..., description="Route name")
    origin: str = Field(..., description="First stop name")
    destination: str = Field(..., description="Last stop name")
    stops: list[Stop] = Field(..., description="Stops ordered by ordinal")

    model_config = {"from_attributes": True}


class OrdinalOfResponse(BaseModel):
    """Ordinal lookup response."""

    route_id: UUID
    stop_id: UUID
    ordinal: int
