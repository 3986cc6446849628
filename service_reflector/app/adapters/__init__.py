"""
Adapters package for the Reflector Service.

Contains the HTTP client wrapper for the origin API. The adapter
encapsulates URL building, a single bounded attempt per call and the
classification of origin outcomes into results.
"""

from .origin_client import OriginClient, check_body_shape

__all__ = [
    "OriginClient",
    "check_body_shape",
]
