from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RequestStatusEnum(str, Enum):
    available = "available"
    accepted = "accepted"
    in_progress = "in_progress"
    completed = "completed"
    delivered = "delivered"
    cancelled = "cancelled"
    expired = "expired"


class PresenterStateEnum(str, Enum):
    idle = "idle"
    presenting = "presenting"


class DeclineReason(str, Enum):
    manual = "manual"
    timeout = "timeout"


class EventType(str, Enum):
    went_online = "went_online"
    went_offline = "went_offline"
    presentation_started = "presentation_started"
    presentation_ended = "presentation_ended"
    request_accepted = "request_accepted"
    accept_failed = "accept_failed"
    navigate_to_pickup = "navigate_to_pickup"
    job_cancelled = "job_cancelled"
    job_finished = "job_finished"
    toast = "toast"


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None

    def coords(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


# ---------------------------------------------------------------------------
# Pickup requests
# ---------------------------------------------------------------------------

class Stop(BaseModel):
    address: str
    coordinates: Location
    time: Optional[str] = None
    distance: Optional[str] = None


class Item(BaseModel):
    model_config = {"populate_by_name": True}

    description: str = ""
    type: str = ""
    needs_help: bool = Field(default=False, alias="needsHelp")


class Customer(BaseModel):
    name: str
    rating: Optional[float] = None
    photo: Optional[str] = None


class PickupRequest(BaseModel):
    model_config = {"populate_by_name": True}

    id: str
    pickup: Stop
    dropoff: Stop
    price: str
    item: Item = Field(default_factory=Item)
    customer: Optional[Customer] = None
    status: RequestStatusEnum = RequestStatusEnum.available
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")


# ---------------------------------------------------------------------------
# Driver session
# ---------------------------------------------------------------------------

class DriverSession(BaseModel):
    driver_id: str
    # Set iff is_online
    session_id: Optional[str] = None
    is_online: bool = False
    last_location: Optional[Location] = None
    last_heartbeat_at: Optional[float] = None  # clock ms


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class DriverEvent(BaseModel):
    type: EventType
    driver_id: str
    request_id: Optional[str] = None
    message: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Driver console schemas
# ---------------------------------------------------------------------------

class PresentationView(BaseModel):
    state: PresenterStateEnum
    request: Optional[PickupRequest] = None
    time_remaining: Optional[int] = None
    accepting: bool = False


class DriverStateResponse(BaseModel):
    driver_id: str
    is_online: bool
    session_id: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None
    refresh_error: Optional[str] = None
    last_refresh_at: Optional[datetime] = None
    candidate_count: int = 0
    presentation: PresentationView
    active_job_id: Optional[str] = None


class GoOnlineRequest(BaseModel):
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    permission_granted: bool = True


class GoOnlineResponse(BaseModel):
    session_id: str
    is_online: bool


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None


class AcceptRideRequest(BaseModel):
    request_id: Optional[str] = None


class AcceptRideResponse(BaseModel):
    job_id: str
    request: PickupRequest
    navigate_to: str = "pickup"
