"""The MISP tool table.

Each MispTool maps one MCP tool onto one MISP REST call: the HTTP method,
an endpoint template filled from the tool arguments, an optional request
body builder, and an optional post-processing step for endpoints that wrap
their payload.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from misp_mcp.plugins.misp.exceptions import MispAPIError
from misp_mcp.protocol.errors import ErrorCategory, McpError


@dataclass(frozen=True)
class MispTool:
    """One MISP REST operation exposed as a tool."""

    name: str
    description: str
    method: str
    path: str
    action: str
    properties: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    body: Callable[[dict[str, Any]], Any] | None = None
    unwrap: str | None = None
    extract: Callable[[Any], Any] | None = None

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema for the tool arguments."""
        schema: dict[str, Any] = {"type": "object", "properties": self.properties}
        if self.required:
            schema["required"] = list(self.required)
        return schema

    def build_path(self, arguments: dict[str, Any]) -> str:
        """Fill the endpoint template, URL-quoting each argument."""
        values = {key: quote(str(value), safe="") for key, value in arguments.items()}
        return self.path.format(**values)

    def build_body(self, arguments: dict[str, Any]) -> Any:
        """Build the POST body, or None for GET requests."""
        if self.body is None:
            return None
        return self.body(arguments)

    def process(self, response: Any) -> Any:
        """Reduce the raw response to what the tool returns."""
        if self.unwrap is not None and isinstance(response, dict) and self.unwrap in response:
            response = response[self.unwrap]
        if self.extract is not None:
            response = self.extract(response)
        return response

    def failure_message(self, arguments: dict[str, Any], error: Exception) -> str:
        """Message for the error result returned when the MISP call fails."""
        detail = ", ".join(f"{key}={arguments[key]!r}" for key in self.required if key in arguments)
        if detail:
            return f"Failed to {self.action} ({detail}): {error}"
        return f"Failed to {self.action}: {error}"


def _string(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


def _integer(description: str) -> dict[str, Any]:
    return {"type": "integer", "minimum": 0, "description": description}


def _boolean(description: str) -> dict[str, Any]:
    return {"type": "boolean", "description": description}


def _strings(description: str) -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


def _pick(*keys: str, rename: dict[str, str] | None = None) -> Callable[[dict[str, Any]], Any]:
    """Body builder copying the given arguments that are present."""
    rename = rename or {}

    def build(arguments: dict[str, Any]) -> dict[str, Any]:
        return {rename.get(key, key): arguments[key] for key in keys if key in arguments}

    return build


def _json_argument(key: str) -> Callable[[dict[str, Any]], Any]:
    """Body builder decoding a JSON object passed as a string argument."""

    def build(arguments: dict[str, Any]) -> dict[str, Any]:
        try:
            value = json.loads(arguments[key])
        except json.JSONDecodeError as e:
            raise McpError(
                f"{key} is not valid JSON: {e}", category=ErrorCategory.SERIALIZATION_ERROR
            ) from e
        if not isinstance(value, dict):
            raise McpError(
                f"{key} must encode a JSON object", category=ErrorCategory.SERIALIZATION_ERROR
            )
        return value

    return build


def _objects_from_response(response: Any) -> list[Any]:
    """Flatten ``{"response": [{"Object": {...}}, ...]}`` into a list of objects."""
    if not isinstance(response, dict) or not isinstance(response.get("response"), list):
        raise MispAPIError("Missing 'response' array in /objects/restsearch response")
    return [
        entry["Object"]
        for entry in response["response"]
        if isinstance(entry, dict) and "Object" in entry
    ]


PAGING = {
    "page": _integer("Page number (1-based)"),
    "limit": _integer("Maximum number of results per page"),
}

ATTRIBUTE_SEARCH_FIELDS = (
    "page limit value value1 value2 type category org tags from to last eventid "
    "withAttachments uuid publish_timestamp published timestamp attribute_timestamp"
).split()

EVENT_INDEX_FIELDS = (
    "page limit sort direction minimal attribute eventid datefrom dateuntil org eventinfo "
    "tag tags distribution sharinggroup analysis threatlevel"
).split()

EVENTS_REST_SEARCH_PROPERTIES = {
    **PAGING,
    "value": _string("Attribute value to match"),
    "type": _string("Attribute type filter"),
    "category": _string("Attribute category filter"),
    "org": _string("Organisation name or ID"),
    "tags": _strings("Attribute tags to match"),
    "event_tags": _strings("Event tags to match"),
    "searchall": _string("Free-text search across event fields"),
    "from": _string("Start date (YYYY-MM-DD)"),
    "to": _string("End date (YYYY-MM-DD)"),
    "last": {"type": ["string", "integer"], "description": "Relative window, e.g. 7d"},
    "eventid": _string("Event ID"),
    "withAttachments": _boolean("Include attachment payloads"),
    "sharinggroup": _strings("Sharing group IDs"),
    "metadata": _boolean("Return event metadata only"),
    "uuid": _string("Event UUID"),
}

OBJECTS_REST_SEARCH_PROPERTIES = {
    **PAGING,
    "quickFilter": _string("Quick filter across object fields"),
    "searchall": _string("Free-text search"),
    "timestamp": _string("Object timestamp filter"),
    "object_name": _string("Object name, e.g. file or domain-ip"),
    "object_template_uuid": _string("Object template UUID"),
    "object_template_version": _string("Object template version"),
    "eventid": _string("Event ID"),
    "eventinfo": _string("Event info filter"),
}


MISP_TOOLS: tuple[MispTool, ...] = (
    MispTool(
        name="get_users",
        description="Retrieve all users from MISP",
        method="GET",
        path="/admin/users",
        action="get users",
    ),
    MispTool(
        name="get_user",
        description="Retrieve a specific user by ID from MISP",
        method="GET",
        path="/admin/users/view/{user_id}",
        action="get user",
        properties={"user_id": _string("User ID")},
        required=("user_id",),
    ),
    MispTool(
        name="get_galaxies",
        description="Retrieve all galaxies from MISP",
        method="GET",
        path="/galaxies",
        action="get galaxies",
    ),
    MispTool(
        name="get_galaxy",
        description="Retrieve a specific galaxy by ID from MISP",
        method="GET",
        path="/galaxies/view/{galaxy_id}.json",
        action="get galaxy",
        properties={"galaxy_id": _string("Galaxy ID or UUID")},
        required=("galaxy_id",),
    ),
    MispTool(
        name="search_galaxies",
        description="Search MISP galaxies by value filter",
        method="POST",
        path="/galaxies",
        action="search galaxies",
        properties={"value": _string("Search term, e.g. botnet or apt")},
        required=("value",),
        body=_pick("value"),
    ),
    MispTool(
        name="get_galaxy_clusters",
        description="Get galaxy clusters for a specific galaxy by ID",
        method="GET",
        path="/galaxy_clusters/index/{galaxy_id}.json",
        action="get galaxy clusters",
        properties={"galaxy_id": _string("Galaxy ID or UUID")},
        required=("galaxy_id",),
    ),
    MispTool(
        name="get_galaxy_cluster_by_id",
        description="Get detailed information about a specific galaxy cluster by ID",
        method="GET",
        path="/galaxy_clusters/view/{galaxy_cluster_id}.json",
        action="get galaxy cluster",
        properties={"galaxy_cluster_id": _string("Galaxy cluster ID or UUID")},
        required=("galaxy_cluster_id",),
    ),
    MispTool(
        name="search_galaxy_clusters",
        description="Search galaxy clusters within a specific galaxy using search criteria",
        method="POST",
        path="/galaxy_clusters/index/{galaxy_id}",
        action="search galaxy clusters",
        properties={
            "galaxy_id": _string("Galaxy ID to search within"),
            "context": {
                "type": "string",
                "enum": ["all", "default", "org", "deleted"],
                "description": "Search context",
            },
            "searchall": _string("Search term to filter clusters"),
        },
        required=("galaxy_id", "context", "searchall"),
        body=_pick("context", "searchall"),
    ),
    MispTool(
        name="get_organisations",
        description="Get all organisations from the MISP instance",
        method="GET",
        path="/organisations.json",
        action="get organisations",
    ),
    MispTool(
        name="get_organisation_by_id",
        description="Get a specific organisation by its ID from the MISP instance",
        method="GET",
        path="/organisations/view/{organisation_id}",
        action="get organisation",
        properties={"organisation_id": _string("Organisation ID or UUID")},
        required=("organisation_id",),
    ),
    MispTool(
        name="get_tags",
        description="Get all tags from the MISP instance",
        method="GET",
        path="/tags.json",
        action="get tags",
        unwrap="Tag",
    ),
    MispTool(
        name="get_tag_by_id",
        description="Get a specific tag by ID from the MISP instance",
        method="GET",
        path="/tags/view/{tag_id}",
        action="get tag by ID",
        properties={"tag_id": _string("Tag ID")},
        required=("tag_id",),
    ),
    MispTool(
        name="search_tags",
        description="Search for tags by search term in the MISP instance",
        method="GET",
        path="/tags/search/{search_term}",
        action="search tags",
        properties={"search_term": _string("Tag name or fragment to search for")},
        required=("search_term",),
    ),
    MispTool(
        name="get_taxonomies",
        description="Get all taxonomies from the MISP instance",
        method="GET",
        path="/taxonomies",
        action="get taxonomies",
    ),
    MispTool(
        name="get_taxonomy_by_id",
        description="Get a specific taxonomy by its ID from the MISP instance",
        method="GET",
        path="/taxonomies/view/{taxonomy_id}",
        action="get taxonomy by ID",
        properties={"taxonomy_id": _string("Taxonomy ID")},
        required=("taxonomy_id",),
    ),
    MispTool(
        name="get_taxonomy_extended_with_tags",
        description="Get a taxonomy with its extended tags from the MISP instance",
        method="GET",
        path="/taxonomies/taxonomy_tags/{taxonomy_id}",
        action="get taxonomy extended with tags",
        properties={"taxonomy_id": _string("Taxonomy ID")},
        required=("taxonomy_id",),
    ),
    MispTool(
        name="get_sightings_by_event_id",
        description="Retrieve sightings for a specific event by ID or UUID from MISP",
        method="GET",
        path="/sightings/index/{event_id}",
        action="get sightings",
        properties={"event_id": _string("Event ID or UUID")},
        required=("event_id",),
    ),
    MispTool(
        name="get_warninglists",
        description="Retrieve all warninglists from MISP",
        method="GET",
        path="/warninglists",
        action="get warninglists",
    ),
    MispTool(
        name="get_warninglist_by_id",
        description="Retrieve a specific warninglist by its ID from MISP",
        method="GET",
        path="/warninglists/view/{warninglist_id}",
        action="get warninglist",
        properties={"warninglist_id": _string("Warninglist ID")},
        required=("warninglist_id",),
        unwrap="Warninglist",
    ),
    MispTool(
        name="search_warninglists",
        description="Search warninglists by value in MISP",
        method="POST",
        path="/warninglists",
        action="search warninglists",
        properties={"value": _string("Value to search for")},
        required=("value",),
        body=_pick("value"),
    ),
    MispTool(
        name="get_noticelists",
        description="Retrieve all noticelists from MISP",
        method="GET",
        path="/noticelists",
        action="get noticelists",
    ),
    MispTool(
        name="get_noticelist_by_id",
        description="Retrieve a specific noticelist by its ID from MISP",
        method="GET",
        path="/noticelists/view/{noticelist_id}",
        action="get noticelist",
        properties={"noticelist_id": _string("Noticelist ID")},
        required=("noticelist_id",),
        unwrap="Noticelist",
    ),
    MispTool(
        name="get_eventreports",
        description="Retrieve all event reports from MISP",
        method="GET",
        path="/eventReports/index",
        action="get event reports",
    ),
    MispTool(
        name="get_event_report_by_id",
        description="Retrieve a single event report by its ID from MISP",
        method="GET",
        path="/eventReports/view/{event_report_id}",
        action="get event report",
        properties={"event_report_id": _string("Event report ID")},
        required=("event_report_id",),
        unwrap="EventReport",
    ),
    MispTool(
        name="get_collection_by_id",
        description="Retrieve a single collection by its ID from MISP",
        method="GET",
        path="/collections/view/{collection_id}",
        action="get collection",
        properties={"collection_id": _string("Collection ID or UUID")},
        required=("collection_id",),
        unwrap="Collection",
    ),
    MispTool(
        name="search_collections",
        description="Search for collections with filtering from MISP",
        method="POST",
        path="/collections/index/{filter}",
        action="search collections",
        properties={
            "filter": {
                "type": "string",
                "enum": ["all", "org_only", "orgc_only"],
                "description": "Which collections to search",
            },
            "uuid": _string("Collection UUID"),
            "type": _string("Collection type"),
            "name": _string("Collection name"),
        },
        required=("filter",),
        body=_pick(
            "uuid",
            "type",
            "name",
            rename={"uuid": "Collection.uuid", "type": "Collection.type", "name": "Collection.name"},
        ),
    ),
    MispTool(
        name="list_analyst_data",
        description="List analyst data of a given type (Note, Opinion, Relationship) from MISP",
        method="GET",
        path="/analystData/index/{analyst_type}",
        action="list analyst data",
        properties={
            "analyst_type": {"type": "string", "enum": ["Note", "Opinion", "Relationship"]},
        },
        required=("analyst_type",),
    ),
    MispTool(
        name="get_analyst_data_by_id",
        description="Get a single analyst data object by type and ID from MISP",
        method="GET",
        path="/analystData/view/{analyst_type}/{analyst_data_id}",
        action="get analyst data",
        properties={
            "analyst_type": {"type": "string", "enum": ["Note", "Opinion", "Relationship"]},
            "analyst_data_id": _string("Analyst data ID or UUID"),
        },
        required=("analyst_type", "analyst_data_id"),
    ),
    MispTool(
        name="list_attributes",
        description="List all attributes in the MISP instance.",
        method="GET",
        path="/attributes",
        action="list attributes",
    ),
    MispTool(
        name="get_attribute_by_id",
        description="Get a single attribute by its ID or UUID.",
        method="GET",
        path="/attributes/view/{attribute_id}",
        action="get attribute",
        properties={"attribute_id": _string("Attribute ID or UUID")},
        required=("attribute_id",),
        unwrap="Attribute",
    ),
    MispTool(
        name="get_attribute_statistics",
        description="Get attribute statistics by context (type/category) and count/percentage.",
        method="GET",
        path="/attributes/attributeStatistics/{context}/{percentage}",
        action="get attribute statistics",
        properties={
            "context": {"type": "string", "enum": ["type", "category"]},
            "percentage": {
                "enum": [0, 1, "0", "1"],
                "description": "0 for counts, 1 for percentages",
            },
        },
        required=("context", "percentage"),
    ),
    MispTool(
        name="describe_attribute_types",
        description="Get list of available attribute types, categories, and sane defaults.",
        method="GET",
        path="/attributes/describeTypes",
        action="describe attribute types",
        unwrap="result",
    ),
    MispTool(
        name="attributes_rest_search",
        description="Search attributes using the /attributes/restSearch endpoint",
        method="POST",
        path="/attributes/restSearch",
        action="search attributes",
        properties={
            "filter_json": _string(
                "JSON object of restSearch filters: " + ", ".join(ATTRIBUTE_SEARCH_FIELDS)
            ),
        },
        required=("filter_json",),
        body=_json_argument("filter_json"),
    ),
    MispTool(
        name="get_events",
        description="Retrieve all events from MISP",
        method="GET",
        path="/events",
        action="get events",
    ),
    MispTool(
        name="get_event_by_id",
        description="Retrieve a single event by its ID from MISP",
        method="GET",
        path="/events/view/{event_id}",
        action="get event",
        properties={"event_id": _string("Event ID or UUID")},
        required=("event_id",),
    ),
    MispTool(
        name="search_events",
        description="Search for events using POST /events/index with flexible filters",
        method="POST",
        path="/events/index",
        action="search events",
        properties={
            "request_json": _string(
                "JSON object of index filters: " + ", ".join(EVENT_INDEX_FIELDS)
            ),
        },
        required=("request_json",),
        body=_json_argument("request_json"),
    ),
    MispTool(
        name="events_rest_search",
        description="Search events using the /events/restSearch endpoint",
        method="POST",
        path="/events/restSearch",
        action="search events",
        properties=EVENTS_REST_SEARCH_PROPERTIES,
        body=_pick(*EVENTS_REST_SEARCH_PROPERTIES),
    ),
    MispTool(
        name="get_object",
        description="Retrieve a specific object by ID or UUID from MISP",
        method="GET",
        path="/objects/view/{object_id}",
        action="get object",
        properties={"object_id": _string("Object ID or UUID")},
        required=("object_id",),
        unwrap="Object",
    ),
    MispTool(
        name="objects_rest_search",
        description="Get a filtered and paginated list of objects from MISP",
        method="POST",
        path="/objects/restsearch",
        action="search objects",
        properties=OBJECTS_REST_SEARCH_PROPERTIES,
        body=_pick(*OBJECTS_REST_SEARCH_PROPERTIES),
        extract=_objects_from_response,
    ),
)
