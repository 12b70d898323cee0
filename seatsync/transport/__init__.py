"""
Backend transports: primary HTTP RPC, legacy callback service, connectivity probe.
"""

from seatsync.transport.base import Transport
from seatsync.transport.primary import HttpPrimaryTransport
from seatsync.transport.probe import Probe, http_probe
from seatsync.transport.secondary import (
    CallbackRegistry,
    CallbackTransport,
    UrlRotator,
    parse_padded,
)

__all__ = [
    "Transport",
    "HttpPrimaryTransport",
    "CallbackTransport",
    "CallbackRegistry",
    "UrlRotator",
    "parse_padded",
    "Probe",
    "http_probe",
]
