"""Tests for the MISP plugin and its tool table."""

import asyncio
import json

import httpx
import pytest
from conftest import call_request, initialize_request

from misp_mcp.config import ServerConfig
from misp_mcp.plugins.misp import MISP_TOOLS, MispClient, MispPlugin
from misp_mcp.plugins.registry import ToolRegistry
from misp_mcp.protocol.errors import INVALID_PARAMS, SERIALIZATION_ERROR, McpError
from misp_mcp.protocol.transport import MemoryTransport
from misp_mcp.server import MCPServer

TOOLS = {tool.name: tool for tool in MISP_TOOLS}


class FakeMisp:
    """Records requests and replies with canned responses."""

    def __init__(self, responses: dict | None = None, status: int = 200) -> None:
        self.responses = responses or {}
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.responses.get(request.url.path, {})
        return httpx.Response(self.status, json=body)

    @property
    def last_body(self):
        return json.loads(self.requests[-1].content)


def make_plugin(fake: FakeMisp) -> MispPlugin:
    client = MispClient(
        base_url="https://misp.local",
        api_key="test-key",
        transport=httpx.MockTransport(fake),
    )
    return MispPlugin(client)


async def call(plugin: MispPlugin, name: str, arguments: dict):
    return await plugin.call(TOOLS[name], arguments)


def result_json(result) -> object:
    return json.loads(result.content[0]["text"])


class TestToolTable:
    """Tests for the declared MISP tools."""

    def test_tool_count(self):
        """Should expose every MISP operation once."""
        assert len(MISP_TOOLS) == 39
        assert len(TOOLS) == 39

    def test_schemas_register(self):
        """Should register every tool with a valid input schema."""
        registry = ToolRegistry()
        registry.register_plugin(make_plugin(FakeMisp()))
        assert len(registry) == 39

    def test_required_arguments_are_declared(self):
        """Should declare a property for every required argument."""
        for tool in MISP_TOOLS:
            for key in tool.required:
                assert key in tool.properties, f"{tool.name}: {key}"

    def test_path_placeholders_are_required(self):
        """Should only fill endpoint placeholders from required arguments."""
        for tool in MISP_TOOLS:
            arguments = {key: "x" for key in tool.required}
            tool.build_path(arguments)

    def test_build_path_quotes_arguments(self):
        """Should URL-quote values placed in the path."""
        assert TOOLS["search_tags"].build_path({"search_term": "tlp:amber/x"}) == (
            "/tags/search/tlp%3Aamber%2Fx"
        )

    def test_failure_message(self):
        """Should name the action and identifying arguments."""
        message = TOOLS["get_event_by_id"].failure_message({"event_id": "42"}, Exception("boom"))
        assert message == "Failed to get event (event_id='42'): boom"


class TestMispPlugin:
    """Tests for MispPlugin execution."""

    def test_from_config(self):
        """Should build a client from the server configuration."""
        config = ServerConfig(
            misp_url="https://misp.local/", api_key="k", verify_tls=False, timeout=5
        )
        plugin = MispPlugin.from_config(config)

        assert plugin.name == "misp"
        assert plugin.client.base_url == "https://misp.local"
        assert plugin.client.verify_tls is False
        assert plugin.client.timeout == 5

    async def test_get_tool(self):
        """Should GET the endpoint and return pretty-printed JSON."""
        fake = FakeMisp({"/events/view/42": {"Event": {"id": "42"}}})
        plugin = make_plugin(fake)

        result = await call(plugin, "get_event_by_id", {"event_id": "42"})

        assert not result.is_error
        assert result_json(result) == {"Event": {"id": "42"}}
        assert "\n" in result.content[0]["text"]
        assert fake.requests[0].method == "GET"
        await plugin.cleanup()

    async def test_unwraps_payload(self):
        """Should strip the wrapper key of single-object endpoints."""
        fake = FakeMisp({"/attributes/view/7": {"Attribute": {"id": "7", "value": "x"}}})
        plugin = make_plugin(fake)

        result = await call(plugin, "get_attribute_by_id", {"attribute_id": "7"})

        assert result_json(result) == {"id": "7", "value": "x"}
        await plugin.cleanup()

    async def test_get_tags_unwraps_tag_list(self):
        """Should return the Tag list of the tags index."""
        fake = FakeMisp({"/tags.json": {"Tag": [{"id": "1", "name": "tlp:white"}]}})
        plugin = make_plugin(fake)

        result = await call(plugin, "get_tags", {})

        assert result_json(result) == [{"id": "1", "name": "tlp:white"}]
        await plugin.cleanup()

    async def test_post_body_from_arguments(self):
        """Should POST only the filters that were given."""
        fake = FakeMisp()
        plugin = make_plugin(fake)

        await call(plugin, "events_rest_search", {"value": "1.2.3.4", "limit": 10})

        assert fake.requests[0].method == "POST"
        assert fake.requests[0].url.path == "/events/restSearch"
        assert fake.last_body == {"value": "1.2.3.4", "limit": 10}
        await plugin.cleanup()

    async def test_routes_through_client_verbs(self, monkeypatch):
        """Should send GET tools through get() and POST tools through post()."""
        plugin = make_plugin(FakeMisp())
        calls = []

        async def fake_get(path):
            calls.append(("GET", path, None))
            return {}

        async def fake_post(path, body):
            calls.append(("POST", path, body))
            return {}

        monkeypatch.setattr(plugin.client, "get", fake_get)
        monkeypatch.setattr(plugin.client, "post", fake_post)

        await call(plugin, "get_users", {})
        await call(plugin, "events_rest_search", {"value": "1.2.3.4"})

        assert calls == [
            ("GET", TOOLS["get_users"].build_path({}), None),
            ("POST", "/events/restSearch", {"value": "1.2.3.4"}),
        ]
        await plugin.cleanup()

    async def test_search_collections_renames_filters(self):
        """Should send collection filters under their model field names."""
        fake = FakeMisp()
        plugin = make_plugin(fake)

        await call(plugin, "search_collections", {"filter": "org_only", "name": "apt"})

        assert fake.requests[0].url.path == "/collections/index/org_only"
        assert fake.last_body == {"Collection.name": "apt"}
        await plugin.cleanup()

    async def test_json_string_argument(self):
        """Should decode a JSON filter string into the request body."""
        fake = FakeMisp()
        plugin = make_plugin(fake)

        await call(plugin, "attributes_rest_search", {"filter_json": '{"type": "ip-dst"}'})

        assert fake.last_body == {"type": "ip-dst"}
        await plugin.cleanup()

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2]"])
    async def test_invalid_json_string_argument(self, payload):
        """Should refuse filter strings that are not JSON objects."""
        fake = FakeMisp()
        plugin = make_plugin(fake)

        with pytest.raises(McpError) as exc_info:
            await call(plugin, "search_events", {"request_json": payload})

        assert exc_info.value.code == SERIALIZATION_ERROR
        assert fake.requests == []
        await plugin.cleanup()

    async def test_objects_rest_search_flattens(self):
        """Should return the bare objects of a restsearch response."""
        fake = FakeMisp(
            {
                "/objects/restsearch": {
                    "response": [{"Object": {"id": "1"}}, {"Object": {"id": "2"}}]
                }
            }
        )
        plugin = make_plugin(fake)

        result = await call(plugin, "objects_rest_search", {"object_name": "file"})

        assert result_json(result) == [{"id": "1"}, {"id": "2"}]
        await plugin.cleanup()

    async def test_objects_rest_search_missing_response(self):
        """Should report a malformed restsearch response as a tool error."""
        plugin = make_plugin(FakeMisp({"/objects/restsearch": {"unexpected": True}}))

        result = await call(plugin, "objects_rest_search", {})

        assert result.is_error
        assert "response" in result.content[0]["text"]
        await plugin.cleanup()

    async def test_misp_error_becomes_error_result(self):
        """Should report MISP failures as isError results."""
        plugin = make_plugin(FakeMisp(status=404))

        result = await call(plugin, "get_event_by_id", {"event_id": "999"})

        assert result.is_error
        assert result.content[0]["text"].startswith("Failed to get event (event_id='999')")
        await plugin.cleanup()

    async def test_authentication_error_result(self):
        """Should surface rejected API keys to the caller."""
        plugin = make_plugin(FakeMisp(status=403))

        result = await call(plugin, "get_users", {})

        assert result.is_error
        assert "Authentication failed" in result.content[0]["text"]
        await plugin.cleanup()

    async def test_cleanup_closes_client(self):
        """Should close the HTTP client on cleanup."""
        plugin = make_plugin(FakeMisp())
        await call(plugin, "get_users", {})
        await plugin.cleanup()

        assert plugin.client._client is None


class TestMispThroughServer:
    """End-to-end tool calls through the server."""

    async def test_tools_call(self):
        """Should serve MISP tools over JSON-RPC."""
        fake = FakeMisp({"/sightings/index/5": [{"Sighting": {"id": "1"}}]})
        server = MCPServer()
        server.register_plugin(make_plugin(fake))
        transport = MemoryTransport()

        for message in (
            initialize_request(1),
            call_request(2, "get_sightings_by_event_id", {"event_id": "5"}),
            call_request(3, "get_sightings_by_event_id", {}),
            call_request(4, "get_attribute_statistics", {"context": "type", "percentage": 1}),
        ):
            transport.feed(message)
        transport.close_input()
        assert await asyncio.wait_for(server.serve(transport), timeout=5) == 0

        responses = {r["id"]: r for r in transport.responses()}
        result = responses[2]["result"]
        assert result["isError"] is False
        assert json.loads(result["content"][0]["text"]) == [{"Sighting": {"id": "1"}}]
        assert responses[3]["error"]["code"] == INVALID_PARAMS
        assert "result" in responses[4]
        paths = [r.url.path for r in fake.requests]
        assert "/attributes/attributeStatistics/type/1" in paths
