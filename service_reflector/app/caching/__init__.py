"""
Reflector caching package.

Provides the bounded response cache and the single-flight coalescer that
together keep repeated browser requests off the origin API.
"""

from .cache_store import CacheEntry, CacheStore
from .coalescer import Acquisition, Coalescer, InFlightTicket, Role

__all__ = [
    "Acquisition",
    "CacheEntry",
    "CacheStore",
    "Coalescer",
    "InFlightTicket",
    "Role",
]
