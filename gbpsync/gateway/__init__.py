"""
Google Business Profile API gateway.
"""

from .client import GoogleBusinessGateway, ApiSurface, LOCATION_READ_MASK

__all__ = [
    "GoogleBusinessGateway",
    "ApiSurface",
    "LOCATION_READ_MASK",
]
