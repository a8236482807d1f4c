"""
Network transport to the storage service.
"""

from .http import HttpTransport

__all__ = [
    "HttpTransport",
]
