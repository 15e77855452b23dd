"""Exceptions raised by the introspection layer."""


class InspectionError(Exception):
    """Base class for every failure reported by portsleuth."""

    def __init__(self, message: str, pid: int | None = None) -> None:
        super().__init__(message)
        self.pid = pid


class NotFound(InspectionError):
    """The process vanished or never existed."""


class PermissionDenied(InspectionError):
    """The kernel refused access to the requested data."""


class Unavailable(InspectionError):
    """A required kernel data source or external tool could not be used at all."""


class MalformedData(InspectionError):
    """A line or record did not match its expected fixed format."""
