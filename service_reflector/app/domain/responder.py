"""
Request routing and response shaping for the reflector.

:class:`Reflector` is the core ``handle(request) -> response`` contract. It
knows nothing about ASGI: the FastAPI layer turns Starlette requests into
:class:`ProxyRequest` values and :class:`ProxyResponse` values back into
Starlette responses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from shared.errors import ReflectorException
from shared.logging import get_logger

from service_reflector.app.adapters.origin_client import OriginClient
from service_reflector.app.caching.cache_store import CacheEntry, CacheStore
from service_reflector.app.caching.coalescer import Coalescer, Role
from service_reflector.app.domain.cors import CorsPolicy
from service_reflector.app.domain.endpoints import EndpointCatalogue, EndpointDescriptor, ParameterError, ParamValue
from service_reflector.app.domain.results import Failure, FailureKind, Success, UpstreamResult

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


JSON_MEDIA_TYPE = "application/json"


@dataclass(frozen=True)
class ProxyRequest:
    """Transport-neutral view of an inbound request."""

    method: str
    endpoint: str
    params: Tuple[Tuple[str, str], ...] = ()
    origin: Optional[str] = None


@dataclass
class ProxyResponse:
    """Transport-neutral response produced by :class:`Reflector`."""

    status: int
    body: bytes = b""
    media_type: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


class Reflector:
    """Serves endpoint requests from the cache or a coalesced origin fetch."""

    def __init__(
        self,
        catalogue: EndpointCatalogue,
        store: CacheStore,
        coalescer: Coalescer,
        client: OriginClient,
        cors: Optional[CorsPolicy] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.catalogue = catalogue
        self.store = store
        self.coalescer = coalescer
        self.client = client
        self.cors = cors or CorsPolicy()
        self.metrics = metrics
        self.logger = get_logger("reflector.responder")

    async def handle(self, request: ProxyRequest) -> ProxyResponse:
        """Answer ``request``; never raises for expected failures."""
        try:
            return await self._dispatch(request)
        except Exception as exc:
            self.logger.error(
                "Unhandled reflector error",
                endpoint=request.endpoint,
                method=request.method,
                error=str(exc),
                exc_info=True,
            )
            if self.metrics:
                self.metrics.record_error("internal")
            return self.failure_response(Failure(FailureKind.INTERNAL, str(exc)), request.origin)

    async def _dispatch(self, request: ProxyRequest) -> ProxyResponse:
        method = request.method.upper()
        descriptor = self.catalogue.resolve(request.endpoint)
        if descriptor is None:
            self.logger.info("Reflector request", result="fail", reason="unknown endpoint", endpoint=request.endpoint)
            return self.failure_response(
                Failure(FailureKind.NOT_FOUND, f"Unknown endpoint '{request.endpoint}'"),
                request.origin,
            )

        if method == "OPTIONS":
            return self.preflight_response(request.origin)

        if method not in ("GET", "HEAD"):
            exc = ReflectorException("METHOD_NOT_ALLOWED", f"Method {method} is not allowed")
            response = self._error_response(405, exc, request.origin)
            response.headers["Allow"] = "GET, HEAD, OPTIONS"
            return response

        try:
            params = descriptor.normalize_params(request.params)
        except ParameterError as exc:
            self.logger.info("Reflector request", result="fail", reason="bad request", endpoint=descriptor.name, error=str(exc))
            return self.failure_response(Failure(FailureKind.BAD_REQUEST, str(exc)), request.origin)

        key = descriptor.cache_key(params)
        entry = self.store.get(key)
        if entry is not None:
            self._count("reflector_cache_hits_total", descriptor)
            self.logger.info("Reflector request", result="success", reason="cache", endpoint=descriptor.name, key=key)
            return self._entry_response(entry, "HIT", request.origin)

        self._count("reflector_cache_misses_total", descriptor)

        async def fetch() -> UpstreamResult:
            return await self._fetch_and_store(descriptor, params, key)

        result, role = await self.coalescer.run(key, fetch)
        reason = "upstream" if role is Role.LEADER else "coalesced"

        if isinstance(result, Success):
            self.logger.info("Reflector request", result="success", reason=reason, endpoint=descriptor.name, key=key)
            return self._success_response(result, descriptor, "MISS" if role is Role.LEADER else "COALESCED", request.origin)

        self.logger.info(
            "Reflector request",
            result="fail",
            reason=reason,
            endpoint=descriptor.name,
            key=key,
            failure=result.kind.value,
            detail=result.detail,
        )
        return self.failure_response(result, request.origin)

    async def _fetch_and_store(
        self,
        descriptor: EndpointDescriptor,
        params: Dict[str, ParamValue],
        key: str,
    ) -> UpstreamResult:
        # Runs on the leader path only; storing before publication lets
        # callers arriving after the fetch hit the cache.
        result = await self.client.fetch(descriptor, params)
        if isinstance(result, Success):
            self.store.store(key, result, descriptor.ttl_seconds)
        return result

    def preflight_response(self, origin: Optional[str]) -> ProxyResponse:
        return ProxyResponse(status=204, headers=self.cors.headers_for(origin, preflight=True))

    def failure_response(self, failure: Failure, origin: Optional[str]) -> ProxyResponse:
        exc = failure.to_exception()
        return self._error_response(exc.status_code, exc, origin)

    def _error_response(self, status: int, exc: ReflectorException, origin: Optional[str]) -> ProxyResponse:
        headers = self.cors.headers_for(origin)
        headers["Cache-Control"] = "no-store"
        body = json.dumps(exc.to_response().model_dump()).encode("utf-8")
        return ProxyResponse(status=status, body=body, media_type=JSON_MEDIA_TYPE, headers=headers)

    def _entry_response(self, entry: CacheEntry, cache_state: str, origin: Optional[str]) -> ProxyResponse:
        now = self.store.now()
        headers = self.cors.headers_for(origin)
        headers["Cache-Control"] = f"public, max-age={int(entry.remaining(now))}"
        headers["Age"] = str(int(entry.age(now)))
        headers["X-Cache"] = cache_state
        return ProxyResponse(status=entry.status, body=entry.body, media_type=entry.content_type, headers=headers)

    def _success_response(
        self,
        result: Success,
        descriptor: EndpointDescriptor,
        cache_state: str,
        origin: Optional[str],
    ) -> ProxyResponse:
        headers = self.cors.headers_for(origin)
        headers["Cache-Control"] = f"public, max-age={int(descriptor.ttl_seconds)}"
        headers["Age"] = "0"
        headers["X-Cache"] = cache_state
        return ProxyResponse(status=result.status, body=result.body, media_type=result.content_type, headers=headers)

    def _count(self, metric_name: str, descriptor: EndpointDescriptor) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, endpoint=descriptor.name)

    async def close(self) -> None:
        await self.coalescer.close()
        await self.client.close()
