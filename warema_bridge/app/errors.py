"""Errors raised inside the Warema bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base error for the bridge."""


class PayloadError(BridgeError):
    """Raised when a control-plane payload cannot be parsed."""


class UnknownDeviceKindError(BridgeError):
    """Raised when a hardware type code has no known device kind."""


class StickCommandError(BridgeError):
    """Raised when a command could not be delivered to the stick."""


class DriverLoadError(BridgeError):
    """Raised when the configured stick driver cannot be imported."""
