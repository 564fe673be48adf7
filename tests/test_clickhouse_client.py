"""
Tests for the ClickHouse HTTP transport.

These tests verify the ClickHouseHTTPTransport correctly:
- Sends the query as the POST body with param_<name> URL parameters
- Passes credentials in X-ClickHouse-User/X-ClickHouse-Key headers
- Parses FORMAT JSON bodies into rows
- Maps timeouts, connection errors and server errors to TransportErrors
"""

from datetime import datetime, timezone

import httpx
import pytest
from httpx import Request, Response

from chtop.clickhouse.client import ClickHouseHTTPTransport, format_param
from chtop.errors import HostTimeoutError, HostUnreachableError, QueryError
from chtop.protocols import QueryTransportProtocol
from chtop.topology import host_from_url

HOST = host_from_url("http://ch-1:8123")


class MockTransport(httpx.AsyncBaseTransport):
    """Mock transport returning one canned response and recording requests."""

    def __init__(self, status_code: int = 200, json=None, text: str | None = None, error=None):
        self.status_code = status_code
        self.json = json
        self.text = text
        self.error = error
        self.requests: list[Request] = []

    async def handle_async_request(self, request: Request) -> Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.json is not None:
            return Response(status_code=self.status_code, json=self.json, request=request)
        return Response(status_code=self.status_code, text=self.text or "", request=request)


@pytest.fixture
def query_response():
    """Sample FORMAT JSON body."""
    return {
        "meta": [
            {"name": "query_id", "type": "String"},
            {"name": "memory", "type": "Int64"},
        ],
        "data": [
            {"query_id": "q1", "memory": "1048576"},
            {"query_id": "q2", "memory": "2048"},
        ],
        "rows": 2,
        "statistics": {"elapsed": 0.0012, "rows_read": 2, "bytes_read": 64},
    }


class TestExecute:
    @pytest.mark.asyncio
    async def test_returns_rows(self, query_response):
        mock = MockTransport(json=query_response)
        async with httpx.AsyncClient(transport=mock) as http:
            client = ClickHouseHTTPTransport(http=http)
            rows = await client.execute(HOST, "SELECT 1", {}, 5.0)

        assert rows == query_response["data"]

    @pytest.mark.asyncio
    async def test_request_shape(self, query_response):
        mock = MockTransport(json=query_response)
        async with httpx.AsyncClient(transport=mock) as http:
            client = ClickHouseHTTPTransport(
                http=http, user="monitor", password="secret", settings={"max_threads": 2}
            )
            await client.execute(
                HOST,
                "SELECT * FROM system.processes WHERE user = {user:String}",
                {"user": "alice", "ids": ["a", "b"]},
                5.0,
            )

        request = mock.requests[0]
        assert request.method == "POST"
        assert str(request.url).startswith("http://ch-1:8123/?")
        assert request.content == b"SELECT * FROM system.processes WHERE user = {user:String}"
        assert request.url.params["default_format"] == "JSON"
        assert request.url.params["param_user"] == "alice"
        assert request.url.params["param_ids"] == "['a','b']"
        assert request.url.params["max_threads"] == "2"
        assert request.headers["X-ClickHouse-User"] == "monitor"
        assert request.headers["X-ClickHouse-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_no_key_header_without_password(self, query_response):
        mock = MockTransport(json=query_response)
        async with httpx.AsyncClient(transport=mock) as http:
            await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 5.0)

        assert "X-ClickHouse-Key" not in mock.requests[0].headers

    @pytest.mark.asyncio
    async def test_empty_body_returns_no_rows(self):
        mock = MockTransport(text="")
        async with httpx.AsyncClient(transport=mock) as http:
            rows = await ClickHouseHTTPTransport(http=http).execute(HOST, "KILL QUERY ...", {}, 5.0)

        assert rows == []

    def test_satisfies_protocol(self):
        client = ClickHouseHTTPTransport(http=httpx.AsyncClient())
        assert isinstance(client, QueryTransportProtocol)


class TestErrors:
    @pytest.mark.asyncio
    async def test_server_error_raises_query_error(self):
        message = "Code: 60. DB::Exception: Table system.foo does not exist. (UNKNOWN_TABLE)\n"
        mock = MockTransport(status_code=404, text=message)
        async with httpx.AsyncClient(transport=mock) as http:
            with pytest.raises(QueryError) as exc_info:
                await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 5.0)

        assert str(exc_info.value) == message.strip()
        assert exc_info.value.host_id == "ch-1:8123"

    @pytest.mark.asyncio
    async def test_malformed_body_raises_query_error(self):
        mock = MockTransport(text="not json at all")
        async with httpx.AsyncClient(transport=mock) as http:
            with pytest.raises(QueryError, match="Malformed"):
                await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 5.0)

    @pytest.mark.asyncio
    async def test_body_without_data_raises_query_error(self):
        mock = MockTransport(json={"meta": []})
        async with httpx.AsyncClient(transport=mock) as http:
            with pytest.raises(QueryError):
                await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 5.0)

    @pytest.mark.asyncio
    async def test_timeout_raises_host_timeout(self):
        mock = MockTransport(error=httpx.ReadTimeout("timed out"))
        async with httpx.AsyncClient(transport=mock) as http:
            with pytest.raises(HostTimeoutError) as exc_info:
                await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 2.5)

        assert exc_info.value.timeout == 2.5

    @pytest.mark.asyncio
    async def test_connect_error_raises_unreachable(self):
        mock = MockTransport(error=httpx.ConnectError("Connection refused"))
        async with httpx.AsyncClient(transport=mock) as http:
            with pytest.raises(HostUnreachableError, match="Connection refused"):
                await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 5.0)

    @pytest.mark.asyncio
    async def test_undecodable_body_raises_query_error(self):
        mock = httpx.MockTransport(
            lambda request: Response(200, headers={"content-encoding": "gzip"}, content=b"garbage")
        )
        async with httpx.AsyncClient(transport=mock) as http:
            with pytest.raises(QueryError, match="DecodingError"):
                await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 5.0)

    @pytest.mark.asyncio
    async def test_other_http_errors_raise_query_error(self):
        mock = MockTransport(error=httpx.TooManyRedirects("Exceeded maximum allowed redirects."))
        async with httpx.AsyncClient(transport=mock) as http:
            with pytest.raises(QueryError, match="TooManyRedirects"):
                await ClickHouseHTTPTransport(http=http).execute(HOST, "SELECT 1", {}, 5.0)


class TestFormatParam:
    def test_scalars(self):
        assert format_param(42) == "42"
        assert format_param(1.5) == "1.5"
        assert format_param(True) == "1"
        assert format_param(None) == "\\N"

    def test_string_escaping(self):
        assert format_param("a\tb\nc\\d") == "a\\tb\\nc\\\\d"

    def test_arrays(self):
        assert format_param([1, 2, 3]) == "[1,2,3]"
        assert format_param(["it's"]) == "['it\\'s']"
        assert format_param([]) == "[]"

    def test_datetime_in_utc(self):
        value = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        assert format_param(value) == "2024-05-01 12:30:00"
