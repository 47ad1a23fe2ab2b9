"""Tests for the SpiceDB HTTP client (spicedb_mcp/client.py)."""

import httpx
import pytest

from spicedb_mcp.client import (
    SpiceDBClient,
    full_consistency,
    minimize_latency,
    normalize_endpoint,
)
from spicedb_mcp.config import Settings
from spicedb_mcp.errors import ApiError, BackendConnectionError, ParseError
from tests.conftest import ndjson


class TestEndpoint:
    def test_plain_endpoint_gets_http(self):
        assert normalize_endpoint("localhost:8443", use_tls=False) == "http://localhost:8443"

    def test_plain_endpoint_gets_https_with_tls(self):
        assert normalize_endpoint("spicedb.example.com", use_tls=True) == "https://spicedb.example.com"

    def test_explicit_scheme_is_kept(self):
        assert normalize_endpoint("https://spicedb:8443/", use_tls=False) == "https://spicedb:8443"

    def test_host_starting_with_http_gets_scheme(self):
        assert normalize_endpoint("httpbin:8080", use_tls=False) == "http://httpbin:8080"

    def test_from_settings(self):
        config = Settings(_env_file=None, endpoint="grpc.authzed.com:443", api_key="k", use_tls=True)

        client = SpiceDBClient.from_settings(config)

        assert client.endpoint == "https://grpc.authzed.com:443"
        assert client.api_key == "k"


class TestRequest:
    async def test_single_object_is_returned_unwrapped(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond_json("/v1/schema/read", {"schemaText": "definition user {}"})

        result = await spicedb_client.request("/v1/schema/read", "POST", {})

        assert result == {"schemaText": "definition user {}"}

    async def test_ndjson_body_returns_list_in_order(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond("/v1/relationships/read", ndjson({"n": 1}, {"n": 2}, {"n": 3}))

        result = await spicedb_client.request("/v1/relationships/read", "POST", {})

        assert result == [{"n": 1}, {"n": 2}, {"n": 3}]

    async def test_blank_lines_are_ignored(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond("/v1/x", httpx.Response(200, text='\n{"a": 1}\n\n  \n'))

        assert await spicedb_client.request("/v1/x") == {"a": 1}

    async def test_no_content_returns_none(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond("/v1/x", httpx.Response(204))

        assert await spicedb_client.request("/v1/x") is None

    async def test_empty_body_returns_none(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond("/v1/x", httpx.Response(200, text="   \n"))

        assert await spicedb_client.request("/v1/x") is None

    async def test_error_status_raises_api_error(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond(
            "/v1/permissions/check",
            httpx.Response(400, text='{"code":3,"message":"object definition `doc` not found"}'),
        )

        with pytest.raises(ApiError) as exc_info:
            await spicedb_client.request("/v1/permissions/check", "POST", {})

        assert exc_info.value.status == 400
        assert "object definition `doc` not found" in exc_info.value.body
        assert "(400)" in str(exc_info.value)

    async def test_invalid_line_fails_whole_call(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond("/v1/x", httpx.Response(200, text='{"ok": true}\nnot json\n'))

        with pytest.raises(ParseError) as exc_info:
            await spicedb_client.request("/v1/x")

        assert exc_info.value.line == "not json"

    async def test_connection_failure_raises_backend_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = SpiceDBClient("localhost:1", transport=httpx.MockTransport(refuse))

        with pytest.raises(BackendConnectionError, match="localhost:1"):
            await client.request("/v1/schema/read")


class TestHeaders:
    async def test_bearer_token_sent_when_key_configured(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond_json("/v1/schema/read", {})

        await spicedb_client.read_schema()

        request = fake_spicedb.requests[0]
        assert request.headers["authorization"] == "Bearer test-key"
        assert request.headers["accept"] == "application/json, application/x-ndjson"
        assert request.headers["content-type"] == "application/json"
        assert request.method == "POST"

    async def test_no_authorization_header_without_key(self, fake_spicedb):
        fake_spicedb.respond_json("/v1/schema/read", {})
        client = SpiceDBClient("localhost:8443", transport=httpx.MockTransport(fake_spicedb.handler))

        await client.read_schema()

        assert "authorization" not in fake_spicedb.requests[0].headers


class TestEndpoints:
    def test_consistency_constructors(self):
        assert full_consistency() == {"fullyConsistent": True}
        assert minimize_latency() == {"minimizeLatency": True}

    async def test_check_permission_requests_tracing_by_default(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond_json("/v1/permissions/check", {"permissionship": "PERMISSIONSHIP_NO_PERMISSION"})

        await spicedb_client.check_permission({"permission": "view"})

        assert fake_spicedb.bodies("/v1/permissions/check") == [
            {"permission": "view", "withTracing": True}
        ]

    async def test_check_permission_keeps_explicit_tracing_flag(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond_json("/v1/permissions/check", {})

        await spicedb_client.check_permission({"permission": "view", "withTracing": False})

        assert fake_spicedb.bodies()[0]["withTracing"] is False

    async def test_read_schema_sends_consistency(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond_json("/v1/schema/read", {"schemaText": ""})

        await spicedb_client.read_schema(full_consistency())

        assert fake_spicedb.bodies() == [{"consistency": {"fullyConsistent": True}}]

    async def test_write_schema_posts_schema(self, spicedb_client, fake_spicedb):
        fake_spicedb.respond_json("/v1/schema/write", {"writtenAt": {"token": "t"}})

        result = await spicedb_client.write_schema("definition user {}")

        assert fake_spicedb.bodies() == [{"schema": "definition user {}"}]
        assert result == {"writtenAt": {"token": "t"}}

    @pytest.mark.parametrize(
        "method, path",
        [
            ("write_relationships", "/v1/relationships/write"),
            ("delete_relationships", "/v1/relationships/delete"),
            ("expand_permission_tree", "/v1/permissions/expand"),
        ],
    )
    async def test_unary_endpoints_post_params(self, spicedb_client, fake_spicedb, method, path):
        fake_spicedb.respond_json(path, {"ok": True})

        result = await getattr(spicedb_client, method)({"some": "params"})

        assert result == {"ok": True}
        assert fake_spicedb.requests[0].url.path == path
        assert fake_spicedb.bodies() == [{"some": "params"}]
