from .base import Transport
from .http import HttpDeviceTransport, generate_sas_token
from .memory import InMemoryTransport

__all__ = [
    "Transport",
    "HttpDeviceTransport",
    "InMemoryTransport",
    "generate_sas_token",
]
