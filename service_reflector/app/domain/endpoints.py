"""
Endpoint catalogue for the reflector.

An :class:`EndpointDescriptor` describes one supported origin operation: the
path it maps to, the parameters a caller may pass, how long successful
responses stay fresh and what a well-formed body looks like. The catalogue
is built once at startup and never changes afterwards.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Pattern, Sequence, Tuple, Union
from urllib.parse import urlencode


_WORLD_PATTERN = re.compile(r"^[a-zA-Z]{2}\d{1,3}$")

ParamValue = Union[str, int]


class ParameterError(ValueError):
    """Raised when caller parameters fail validation."""


@dataclass(frozen=True)
class ParamSpec:
    """Declaration of a single caller-supplied parameter."""

    name: str
    kind: str = "str"
    required: bool = False
    pattern: Optional[Pattern[str]] = None
    min_value: Optional[int] = None
    max_value: Optional[int] = None
    lowercase: bool = False
    location: str = "query"

    def normalize(self, raw: str) -> ParamValue:
        """Validate ``raw`` and return its canonical value."""
        value = raw.strip()
        if not value:
            raise ParameterError(f"Parameter '{self.name}' must not be empty")

        if self.kind == "int":
            try:
                number = int(value, 10)
            except ValueError as exc:
                raise ParameterError(f"Parameter '{self.name}' must be an integer") from exc
            if self.min_value is not None and number < self.min_value:
                raise ParameterError(f"Parameter '{self.name}' must be >= {self.min_value}")
            if self.max_value is not None and number > self.max_value:
                raise ParameterError(f"Parameter '{self.name}' must be <= {self.max_value}")
            return number

        if self.pattern is not None and not self.pattern.match(value):
            raise ParameterError(f"Parameter '{self.name}' has an invalid format")
        return value.lower() if self.lowercase else value


@dataclass(frozen=True)
class EndpointDescriptor:
    """One supported upstream operation."""

    name: str
    path_template: str
    params: Tuple[ParamSpec, ...] = ()
    ttl_seconds: float = 900.0
    body_format: str = "raw"
    csv_fields: Optional[int] = None
    json_fields: Optional[Tuple[str, ...]] = None
    content_type: str = "text/plain; charset=utf-8"
    aliases: Tuple[str, ...] = ()
    _by_name: Mapping[str, ParamSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "_by_name",
            MappingProxyType({spec.name.lower(): spec for spec in self.params}),
        )

    def param(self, name: str) -> Optional[ParamSpec]:
        return self._by_name.get(name.lower())

    def path_params(self, params: Mapping[str, ParamValue]) -> Dict[str, ParamValue]:
        return {spec.name: params[spec.name] for spec in self.params if spec.location == "path" and spec.name in params}

    def query_params(self, params: Mapping[str, ParamValue]) -> Dict[str, ParamValue]:
        return {spec.name: params[spec.name] for spec in self.params if spec.location == "query" and spec.name in params}

    def normalize_params(self, raw: Iterable[Tuple[str, str]]) -> Dict[str, ParamValue]:
        """Validate caller parameters against this descriptor.

        Parameter names are matched case-insensitively. Repeating a parameter
        is accepted only when every occurrence normalizes to the same value.

        Raises:
            ParameterError: unknown, missing, conflicting or malformed parameters.
        """
        normalized: Dict[str, ParamValue] = {}
        for raw_name, raw_value in raw:
            spec = self.param(raw_name)
            if spec is None:
                raise ParameterError(f"Unknown parameter '{raw_name}' for endpoint '{self.name}'")
            value = spec.normalize(raw_value)
            if spec.name in normalized and normalized[spec.name] != value:
                raise ParameterError(f"Conflicting values for parameter '{spec.name}'")
            normalized[spec.name] = value

        missing = [spec.name for spec in self.params if spec.required and spec.name not in normalized]
        if missing:
            raise ParameterError(f"Missing required parameter(s): {', '.join(missing)}")
        return normalized

    def cache_key(self, params: Mapping[str, ParamValue]) -> str:
        """Derive the cache key from already normalized parameters."""
        ordered = sorted((name, str(value)) for name, value in params.items())
        if not ordered:
            return self.name
        return f"{self.name}?{urlencode(ordered)}"


class EndpointCatalogue:
    """Immutable lookup of endpoint descriptors by name or alias."""

    def __init__(self, descriptors: Sequence[EndpointDescriptor]):
        index: Dict[str, EndpointDescriptor] = {}
        for descriptor in descriptors:
            for name in (descriptor.name, *descriptor.aliases):
                key = name.lower()
                if key in index:
                    raise ValueError(f"Duplicate endpoint name '{name}'")
                index[key] = descriptor
        self._descriptors: Tuple[EndpointDescriptor, ...] = tuple(descriptors)
        self._index: Mapping[str, EndpointDescriptor] = MappingProxyType(index)

    def resolve(self, name: str) -> Optional[EndpointDescriptor]:
        return self._index.get(name.lower())

    def names(self) -> List[str]:
        return [descriptor.name for descriptor in self._descriptors]

    def __iter__(self) -> Iterator[EndpointDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)


def _world_param() -> ParamSpec:
    return ParamSpec(
        name="world",
        required=True,
        pattern=_WORLD_PATTERN,
        lowercase=True,
        location="path",
    )


# file name -> columns per row
_DATAFILES: Dict[str, int] = {
    "players": 6,
    "alliances": 6,
    "towns": 7,
    "islands": 7,
}


def build_grepolis_catalogue(ttls: Optional[Mapping[str, float]] = None, default_ttl: float = 900.0) -> EndpointCatalogue:
    """Build the catalogue of Grepolis world data files.

    Each file is a CSV export of one game world, addressed by the world id
    (``de123``) and reachable under both ``players`` and ``players.txt``.
    """
    ttls = ttls or {}
    unknown = sorted(set(ttls) - set(_DATAFILES))
    if unknown:
        raise ValueError(f"TTLs configured for unknown endpoint(s): {', '.join(unknown)}")
    descriptors = []
    for name, columns in _DATAFILES.items():
        descriptors.append(
            EndpointDescriptor(
                name=name,
                path_template=f"/data/{name}.txt",
                params=(_world_param(),),
                ttl_seconds=float(ttls.get(name, default_ttl)),
                body_format="csv",
                csv_fields=columns,
                aliases=(f"{name}.txt",),
            )
        )
    return EndpointCatalogue(descriptors)
