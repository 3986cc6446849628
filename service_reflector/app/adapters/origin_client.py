"""
Origin API client for the reflector.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Mapping, Optional
from urllib.parse import quote

import httpx

from shared.logging import get_logger

from service_reflector.app.domain.endpoints import EndpointDescriptor, ParamValue
from service_reflector.app.domain.results import Failure, FailureKind, Success, UpstreamResult

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


def check_body_shape(endpoint: EndpointDescriptor, body: bytes) -> Optional[str]:
    """Return why ``body`` does not match the endpoint's declared shape, or ``None``.

    Shapes are checked strictly: rows or objects with extra or missing
    fields are rejected rather than passed on half-understood.
    """
    if endpoint.body_format == "csv":
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return "body is not valid UTF-8"
        for line_no, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            fields = line.split(",")
            if endpoint.csv_fields is not None and len(fields) != endpoint.csv_fields:
                return f"line {line_no} has {len(fields)} fields, expected {endpoint.csv_fields}"
            if not fields[0].strip().isdigit():
                return f"line {line_no} does not start with a numeric id"
        return None

    if endpoint.body_format == "json":
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            return f"body is not valid JSON: {exc}"
        if endpoint.json_fields is None:
            return None
        expected = set(endpoint.json_fields)
        items = payload if isinstance(payload, list) else [payload]
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                return f"item {index} is not an object"
            keys = set(item)
            if keys != expected:
                missing = sorted(expected - keys)
                extra = sorted(keys - expected)
                return f"item {index} fields differ (missing={missing}, extra={extra})"
        return None

    return None


class OriginClient:
    """Performs single, bounded GET requests against the origin API.

    The client never retries and never follows redirects: a redirect is an
    origin error like any other non-2xx answer.
    """

    def __init__(
        self,
        base_url_template: str,
        *,
        timeout: float = 10.0,
        user_agent: str = "grepolis-api-reflector/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.base_url_template = base_url_template.rstrip("/")
        self.timeout = timeout
        self.logger = get_logger("reflector.origin_client")
        self.metrics = metrics
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            headers={
                "User-Agent": user_agent,
                "Accept-Encoding": "gzip, deflate",
            },
            transport=transport or httpx.AsyncHTTPTransport(retries=0),
        )

    def build_url(self, endpoint: EndpointDescriptor, params: Mapping[str, ParamValue]) -> str:
        """Build the origin URL (without query string) for a request."""
        path_params = {name: quote(str(value), safe="") for name, value in endpoint.path_params(params).items()}
        base = self.base_url_template.format(**path_params)
        return f"{base}{endpoint.path_template.format(**path_params)}"

    async def fetch(self, endpoint: EndpointDescriptor, params: Mapping[str, ParamValue]) -> UpstreamResult:
        """Fetch ``endpoint`` from the origin and classify the outcome."""
        try:
            url = self.build_url(endpoint, params)
        except (KeyError, IndexError, ValueError) as exc:
            self.logger.error("Cannot build origin URL", endpoint=endpoint.name, error=str(exc))
            return self._record(endpoint, Failure(FailureKind.INTERNAL, f"cannot build origin URL: {exc}"))

        query = {name: str(value) for name, value in endpoint.query_params(params).items()}

        try:
            if self.metrics:
                with self.metrics.time_operation("reflector_upstream_duration_seconds", endpoint=endpoint.name):
                    response = await self._get(url, query)
            else:
                response = await self._get(url, query)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            self.logger.warning("Origin request timed out", url=url, timeout=self.timeout, error=str(exc))
            return self._record(endpoint, Failure(FailureKind.UPSTREAM_TIMEOUT, f"origin did not answer within {self.timeout:g}s"))
        except httpx.DecodingError as exc:
            self.logger.warning("Origin body could not be decoded", url=url, error=str(exc))
            return self._record(endpoint, Failure(FailureKind.BAD_RESPONSE, "origin body could not be decoded"))
        except httpx.HTTPError as exc:
            self.logger.warning("Origin unreachable", url=url, error=str(exc))
            return self._record(endpoint, Failure(FailureKind.UNREACHABLE, "origin unreachable"))

        if not response.is_success:
            self.logger.warning(
                "Origin request failed",
                url=url,
                params=query,
                status_code=response.status_code,
            )
            return self._record(
                endpoint,
                Failure(
                    FailureKind.UPSTREAM_ERROR,
                    f"origin returned status {response.status_code}",
                    status=response.status_code,
                ),
            )

        body = response.content
        problem = check_body_shape(endpoint, body)
        if problem is not None:
            self.logger.warning("Origin body rejected", url=url, reason=problem)
            return self._record(endpoint, Failure(FailureKind.BAD_RESPONSE, f"unexpected origin body: {problem}"))

        content_type = response.headers.get("content-type") or endpoint.content_type
        self.logger.debug("Origin response retrieved", url=url, params=query, size=len(body))
        return self._record(endpoint, Success(status=response.status_code, body=body, content_type=content_type))

    async def _get(self, url: str, query: Mapping[str, str]) -> httpx.Response:
        # httpx timeouts apply per phase; this bounds the whole exchange.
        return await asyncio.wait_for(self._client.get(url, params=query or None), self.timeout)

    def _record(self, endpoint: EndpointDescriptor, result: UpstreamResult) -> UpstreamResult:
        if self.metrics:
            outcome = "success" if isinstance(result, Success) else result.kind.value
            self.metrics.increment_counter("reflector_upstream_requests_total", endpoint=endpoint.name, outcome=outcome)
        return result

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()
