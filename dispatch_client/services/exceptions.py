class DispatchError(Exception):
    """Base class for driver dispatch failures."""


class PermissionDenied(DispatchError):
    """Location access refused; fatal to the go-online attempt."""


class NetworkError(DispatchError):
    """Transient backend or transport failure."""


class AlreadyTaken(DispatchError):
    """The request was accepted by someone else first."""


class RequestNotFound(DispatchError):
    pass


class NotOnline(DispatchError):
    pass


class NoActivePresentation(DispatchError):
    pass


class LocationUnavailable(DispatchError):
    """No position fix is available yet."""
