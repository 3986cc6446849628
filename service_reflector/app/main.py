"""
Grepolis API Reflector service.
"""

import time
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
from fastapi import Request, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from service_reflector.app.adapters.origin_client import OriginClient
from service_reflector.app.caching.cache_store import CacheStore
from service_reflector.app.caching.coalescer import Coalescer
from service_reflector.app.domain.cors import CorsPolicy
from service_reflector.app.domain.endpoints import EndpointCatalogue, build_grepolis_catalogue
from service_reflector.app.domain.responder import ProxyRequest, ProxyResponse, Reflector


REFLECT_METHODS = ["GET", "HEAD", "OPTIONS"]


class ReflectorService(BaseService):
    """Caching CORS reflector in front of the Grepolis world data API."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        catalogue: Optional[EndpointCatalogue] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = config or get_config("reflector")
        # Middleware registered by the base class needs the policy up front.
        self.cors = CorsPolicy.from_settings(
            config.allowed_origins,
            config.allowed_headers,
            config.cors_max_age,
        )
        super().__init__("reflector", config)

        self.catalogue = catalogue or build_grepolis_catalogue(
            self.config.endpoint_ttls,
            self.config.default_ttl_seconds,
        )
        self.cache_store = CacheStore(
            self.config.cache_max_entries,
            clock=clock,
            metrics=self.metrics,
        )
        self.coalescer = Coalescer(
            self.config.coalesce_wait_timeout,
            clock=clock,
            metrics=self.metrics,
        )
        self.origin_client = OriginClient(
            self.config.origin_base_url,
            timeout=self.config.upstream_timeout,
            user_agent=self.config.user_agent,
            transport=transport,
            metrics=self.metrics,
        )
        self.reflector = Reflector(
            self.catalogue,
            self.cache_store,
            self.coalescer,
            self.origin_client,
            self.cors,
            metrics=self.metrics,
        )

        @self.app.on_event("startup")
        async def _startup():
            self.logger.info(
                "Reflector listening",
                host=self.config.host,
                port=self.config.port,
                origin=self.config.origin_base_url,
                endpoints=self.catalogue.names(),
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.reflector.close()

        self._setup_reflector_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.reflector_service = self

    def _setup_middleware(self):
        """Set up middleware, adding CORS headers to every response."""
        super()._setup_middleware()

        # Headers go on every response, with or without an Origin header.
        # Pre-flights pass through to the routes, so unknown endpoints still 404.
        @self.app.middleware("http")
        async def attach_cors_headers(request: Request, call_next):
            response = await call_next(request)
            for name, value in self.cors.headers_for(request.headers.get("origin")).items():
                response.headers.setdefault(name, value)
            return response

    def _error_headers(self, request: Request) -> Dict[str, str]:
        # Unhandled errors are rendered outside the CORS middleware.
        return self.cors.headers_for(request.headers.get("origin"))

    def _setup_reflector_routes(self):
        """Set up the reflected endpoint routes."""

        @self.app.api_route("/{endpoint}", methods=REFLECT_METHODS)
        async def reflect(endpoint: str, request: Request):
            """Reflect ``/players?world=de123`` style requests."""
            return await self._reflect(request, endpoint)

        @self.app.api_route("/{world}/{endpoint}", methods=REFLECT_METHODS)
        async def reflect_world(world: str, endpoint: str, request: Request):
            """Reflect ``/de123/players.txt`` style requests."""
            return await self._reflect(request, endpoint, (("world", world),))

    async def _reflect(
        self,
        request: Request,
        endpoint: str,
        path_params: Tuple[Tuple[str, str], ...] = (),
    ) -> Response:
        proxy_request = ProxyRequest(
            method=request.method,
            endpoint=endpoint,
            params=path_params + tuple(request.query_params.multi_items()),
            origin=request.headers.get("origin"),
        )
        proxy_response = await self.reflector.handle(proxy_request)
        return self._to_response(proxy_response)

    @staticmethod
    def _to_response(proxy_response: ProxyResponse) -> Response:
        return Response(
            content=proxy_response.body,
            status_code=proxy_response.status,
            headers=proxy_response.headers,
            media_type=proxy_response.media_type,
        )

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report cache and coalescer state."""
        coalescer_stats = self.coalescer.stats()
        coalescer_stats.pop("keys", None)
        return {
            "cache": self.cache_store.stats(),
            "coalescer": coalescer_stats,
        }


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = ReflectorService(config, **kwargs)
    return service.app


def main():
    """Console entry point."""
    ReflectorService().run()


if __name__ == "__main__":
    main()
