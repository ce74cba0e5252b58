from dispatch_client.services.exceptions import (
    AlreadyTaken,
    DispatchError,
    LocationUnavailable,
    NetworkError,
    NoActivePresentation,
    NotOnline,
    PermissionDenied,
    RequestNotFound,
)
from dispatch_client.services.registry import DriverRegistry
from dispatch_client.services.session import SessionController

__all__ = [
    "AlreadyTaken",
    "DispatchError",
    "DriverRegistry",
    "LocationUnavailable",
    "NetworkError",
    "NoActivePresentation",
    "NotOnline",
    "PermissionDenied",
    "RequestNotFound",
    "SessionController",
]
