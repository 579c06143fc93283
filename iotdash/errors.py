"""Exception types raised by iotdash."""


class IotDashError(Exception):
    """Base class for iotdash errors."""


class StorageError(IotDashError):
    """A durable blob could not be written."""
