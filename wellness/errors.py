class SchedulingError(Exception):
    """Base exception for availability and booking operations."""


class InvalidTime(SchedulingError, ValueError):
    """Raised when a time-of-day string cannot be parsed."""


class MalformedWindow(SchedulingError):
    """Raised when a working window has unparseable or inverted bounds."""

    def __init__(self, window_id, message: str):
        super().__init__(f"Horario {window_id}: {message}")
        self.window_id = window_id


class DataUnavailable(SchedulingError):
    """Raised when windows or bookings cannot be read from the store."""


class SlotUnavailable(SchedulingError):
    """Raised when the requested time is not bookable for the specialist/date."""


class AppointmentNotFound(SchedulingError):
    """Raised when an appointment cannot be located."""
