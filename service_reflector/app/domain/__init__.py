"""
Domain helpers for the Reflector Service.
"""

from .cors import CorsPolicy
from .endpoints import EndpointCatalogue, EndpointDescriptor, ParamSpec, ParameterError, build_grepolis_catalogue
from .results import Failure, FailureKind, Success, UpstreamResult

__all__ = [
    "CorsPolicy",
    "EndpointCatalogue",
    "EndpointDescriptor",
    "Failure",
    "FailureKind",
    "ParamSpec",
    "ParameterError",
    "Success",
    "UpstreamResult",
    "build_grepolis_catalogue",
]
