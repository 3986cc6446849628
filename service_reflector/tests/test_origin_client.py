"""
Tests for the origin API client.
"""

import asyncio
import time

import httpx
import pytest

from service_reflector.app.adapters.origin_client import OriginClient, check_body_shape
from service_reflector.app.domain.endpoints import EndpointDescriptor, ParamSpec, build_grepolis_catalogue
from service_reflector.app.domain.results import Failure, FailureKind, Success
from shared.metrics import MetricsCollector


PLAYERS_CSV = b"1,Leonidas,10,12500,1,4\n2,Xerxes%20I,,300,2,1\n"


@pytest.fixture
def players():
    return build_grepolis_catalogue().resolve("players")


@pytest.fixture
def stats_endpoint():
    return EndpointDescriptor(
        name="stats",
        path_template="/stats",
        params=(ParamSpec("town", kind="int", required=True),),
        body_format="json",
        json_fields=("id", "points"),
        content_type="application/json",
    )


def _client(handler, **kwargs) -> OriginClient:
    return OriginClient(
        kwargs.pop("base_url", "https://{world}.grepolis.com"),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestOriginClient:
    """Test cases for OriginClient."""

    @pytest.mark.asyncio
    async def test_fetch_success_builds_world_url(self, players):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=PLAYERS_CSV, headers={"content-type": "text/plain"})

        client = _client(handler, user_agent="reflector-test")
        try:
            result = await client.fetch(players, {"world": "de123"})
        finally:
            await client.close()

        assert isinstance(result, Success)
        assert result.status == 200
        assert result.body == PLAYERS_CSV
        assert result.content_type == "text/plain"
        assert len(seen) == 1
        assert str(seen[0].url) == "https://de123.grepolis.com/data/players.txt"
        assert seen[0].headers["user-agent"] == "reflector-test"

    @pytest.mark.asyncio
    async def test_query_params_are_forwarded(self, stats_endpoint):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": 123, "points": 5})

        client = _client(handler, base_url="https://origin.test")
        try:
            result = await client.fetch(stats_endpoint, {"town": 123})
        finally:
            await client.close()

        assert isinstance(result, Success)
        assert seen[0].url.path == "/stats"
        assert seen[0].url.params["town"] == "123"

    @pytest.mark.asyncio
    async def test_default_content_type_when_origin_omits_it(self, players):
        client = _client(lambda request: httpx.Response(200, content=b""))
        try:
            result = await client.fetch(players, {"world": "de1"})
        finally:
            await client.close()

        assert isinstance(result, Success)
        assert result.content_type == players.content_type

    @pytest.mark.asyncio
    async def test_error_status_classified(self, players):
        client = _client(lambda request: httpx.Response(503, text="maintenance"))
        try:
            result = await client.fetch(players, {"world": "de1"})
        finally:
            await client.close()

        assert isinstance(result, Failure)
        assert result.kind is FailureKind.UPSTREAM_ERROR
        assert result.status == 503

    @pytest.mark.asyncio
    async def test_redirects_are_not_followed(self, players):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(302, headers={"location": "https://grepolis.com/"})

        client = _client(handler)
        try:
            result = await client.fetch(players, {"world": "de1"})
        finally:
            await client.close()

        assert len(calls) == 1
        assert result.kind is FailureKind.UPSTREAM_ERROR
        assert result.status == 302

    @pytest.mark.asyncio
    async def test_connection_error_is_unreachable_and_not_retried(self, players):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        try:
            result = await client.fetch(players, {"world": "de1"})
        finally:
            await client.close()

        assert result.kind is FailureKind.UNREACHABLE
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_classified(self, players):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        client = _client(handler, timeout=0.5)
        try:
            result = await client.fetch(players, {"world": "de1"})
        finally:
            await client.close()

        assert result.kind is FailureKind.UPSTREAM_TIMEOUT

    @pytest.mark.asyncio
    async def test_slow_body_bounded_by_total_deadline(self, monkeypatch):
        for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
            monkeypatch.delenv(name, raising=False)
        stop = asyncio.Event()

        async def trickle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
            try:
                await reader.readuntil(b"\r\n\r\n")
                writer.write(b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nContent-Length: 100\r\n\r\n")
                await writer.drain()
                # One byte at a time keeps every read inside the per-phase timeout.
                for _ in range(100):
                    if stop.is_set():
                        break
                    writer.write(b"x")
                    await writer.drain()
                    await asyncio.sleep(0.2)
            except (ConnectionError, asyncio.IncompleteReadError):
                pass
            finally:
                writer.close()

        server = await asyncio.start_server(trickle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        endpoint = EndpointDescriptor(name="raw", path_template="/raw")
        client = OriginClient(f"http://127.0.0.1:{port}", timeout=1.0)
        try:
            started = time.perf_counter()
            result = await client.fetch(endpoint, {})
            elapsed = time.perf_counter() - started
        finally:
            stop.set()
            await client.close()
            server.close()
            await server.wait_closed()

        assert isinstance(result, Failure)
        assert result.kind is FailureKind.UPSTREAM_TIMEOUT
        assert elapsed < 1.5

    @pytest.mark.asyncio
    async def test_malformed_csv_is_bad_response(self, players):
        client = _client(lambda request: httpx.Response(200, content=b"1,Leonidas,10,12500\n"))
        try:
            result = await client.fetch(players, {"world": "de1"})
        finally:
            await client.close()

        assert result.kind is FailureKind.BAD_RESPONSE

    @pytest.mark.asyncio
    async def test_json_with_extra_fields_is_bad_response(self, stats_endpoint):
        client = _client(
            lambda request: httpx.Response(200, json={"id": 1, "points": 2, "rank": 3}),
            base_url="https://origin.test",
        )
        try:
            result = await client.fetch(stats_endpoint, {"town": 1})
        finally:
            await client.close()

        assert result.kind is FailureKind.BAD_RESPONSE
        assert "rank" in result.detail

    @pytest.mark.asyncio
    async def test_missing_path_parameter_is_internal(self):
        endpoint = EndpointDescriptor(name="broken", path_template="/data/{world}.txt")
        client = _client(lambda request: httpx.Response(200))
        try:
            result = await client.fetch(endpoint, {})
        finally:
            await client.close()

        assert result.kind is FailureKind.INTERNAL

    @pytest.mark.asyncio
    async def test_records_upstream_metrics(self, players):
        metrics = MetricsCollector("reflector")
        client = _client(lambda request: httpx.Response(200, content=PLAYERS_CSV), metrics=metrics)
        try:
            await client.fetch(players, {"world": "de1"})
        finally:
            await client.close()

        value = metrics.registry.get_sample_value(
            "reflector_upstream_requests_total",
            {"endpoint": "players", "outcome": "success"},
        )
        assert value == 1.0


class TestCheckBodyShape:
    """Test cases for body shape validation."""

    def test_csv_accepts_blank_lines_and_empty_body(self, players):
        assert check_body_shape(players, b"") is None
        assert check_body_shape(players, PLAYERS_CSV + b"\n") is None

    def test_csv_rejects_extra_columns(self, players):
        assert "expected 6" in check_body_shape(players, b"1,a,2,3,4,5,6\n")

    def test_csv_rejects_non_numeric_id(self, players):
        assert check_body_shape(players, b"x,a,2,3,4,5\n") is not None

    def test_csv_rejects_html_error_pages(self, players):
        assert check_body_shape(players, b"<html><body>Not here</body></html>") is not None

    def test_csv_rejects_invalid_utf8(self, players):
        assert check_body_shape(players, b"\xff\xfe1,a,2,3,4,5") is not None

    def test_json_checks(self, stats_endpoint):
        assert check_body_shape(stats_endpoint, b'{"id": 1, "points": 2}') is None
        assert check_body_shape(stats_endpoint, b'[{"id": 1, "points": 2}]') is None
        assert check_body_shape(stats_endpoint, b'{"id": 1}') is not None
        assert check_body_shape(stats_endpoint, b"[1, 2]") is not None
        assert check_body_shape(stats_endpoint, b"not json") is not None

    def test_raw_bodies_pass(self):
        endpoint = EndpointDescriptor(name="raw", path_template="/raw")
        assert check_body_shape(endpoint, b"\x00anything") is None
