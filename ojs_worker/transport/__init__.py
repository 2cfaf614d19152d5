"""
Transport module.
Contains the transport interface and its HTTP implementation.
"""

from ojs_worker.transport.base import Transport
from ojs_worker.transport.http import HttpTransport

__all__ = [
    "Transport",
    "HttpTransport",
]
