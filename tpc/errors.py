# tpc/errors.py

"""
Error kinds raised by the engine, its builders and the host services.
"""


class TpcError(Exception):
    """Base class for all engine errors."""


class MalformedEntry(TpcError):
    """A policy entry violates a field constraint or cannot be decoded."""


class HostUnavailable(TpcError):
    """A host service call failed."""


class StaleDevice(TpcError):
    """A device left the inventory before a submission reached it."""

    def __init__(self, device_id: str, msg: str = ""):
        super().__init__(msg or f"device {device_id} is not available")
        self.device_id = device_id


class ShutdownDuringCleanup(TpcError):
    """Startup cleanup ran out of retries with flow entries still present."""
