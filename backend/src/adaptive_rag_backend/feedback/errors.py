"""Errors raised by the reward bus."""


class BusClosedError(RuntimeError):
    """Raised when publishing or subscribing after the bus was closed."""
