"""Canvas LMS tool plugins.

Each plugin groups the tools for one kind of Canvas resource. Tool names
map to handler coroutines through a fixed table built at construction.
"""

from __future__ import annotations

import hashlib
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

from canvas_mcp.client import CanvasClient
from canvas_mcp.plugins.base import PluginBase, ToolDefinition
from canvas_mcp.protocol.identifier import Identifier
from canvas_mcp.protocol.validation import identifier_property

PLUGIN_VERSION = "0.1.0"

COURSE_ID = identifier_property(
    "Canvas course id, either numeric (108367) or a SIS reference (sis_course_id:ABC)"
)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class UnknownToolError(Exception):
    """Raised when a plugin is asked to run a tool it does not provide."""

    pass


def _segment(value: Identifier | str | int) -> str:
    """Render an identifier as a single escaped URL path segment.

    Only ":" is left unescaped so SIS references (sis_course_id:ABC) keep
    working. Dot segments are escaped so they cannot climb the path.
    """
    text = value.canonical if isinstance(value, Identifier) else str(value)
    segment = quote(text, safe=":")
    if segment in (".", ".."):
        segment = segment.replace(".", "%2E")
    return segment


def _list_schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def pseudonym(value: Any) -> str:
    """Stable anonymous label for a person."""
    digest = hashlib.sha256(str(value).encode("utf-8")).hexdigest()[:8]
    return f"Student {digest}"


def anonymize_user(user: dict[str, Any]) -> dict[str, Any]:
    """Replace personally identifying fields of a Canvas user record."""
    label = pseudonym(user.get("id", user.get("name", "")))
    masked = dict(user)
    for key in ("name", "sortable_name", "short_name"):
        if key in masked:
            masked[key] = label
    for key in ("email", "login_id", "sis_user_id", "avatar_url"):
        if key in masked:
            masked[key] = None
    return masked


class CanvasPlugin(PluginBase):
    """Shared plumbing for Canvas plugins."""

    def __init__(self, client: CanvasClient) -> None:
        """Initialize the plugin.

        Args:
            client: Canvas API client shared by all plugins.
        """
        self._client = client
        self._handlers: dict[str, Handler] = self._build_handlers()

    def _build_handlers(self) -> dict[str, Handler]:
        raise NotImplementedError

    @property
    def version(self) -> str:
        """Return plugin version."""
        return PLUGIN_VERSION

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Execute a tool.

        Args:
            tool_name: Name of the tool to execute.
            arguments: Validated tool arguments.

        Returns:
            Decoded Canvas API data.

        Raises:
            UnknownToolError: If this plugin does not provide the tool.
        """
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise UnknownToolError(f"Unknown tool: {tool_name}")
        return await handler(arguments)


class CoursesPlugin(CanvasPlugin):
    """Course lookup tools."""

    @property
    def name(self) -> str:
        """Return plugin identifier."""
        return "courses"

    def _build_handlers(self) -> dict[str, Handler]:
        return {
            "list_courses": self._list_courses,
            "get_course": self._get_course,
        }

    def get_tools(self) -> list[ToolDefinition]:
        """Return available tools."""
        return [
            ToolDefinition(
                name="list_courses",
                description="List courses visible to the current user.",
                input_schema=_list_schema(
                    {
                        "enrollment_state": {
                            "type": "string",
                            "enum": ["active", "invited_or_pending", "completed"],
                            "description": "Only courses with this enrollment state",
                        },
                        "include_concluded": {
                            "type": "boolean",
                            "default": False,
                            "description": "Include concluded courses",
                        },
                        "max_pages": {
                            "type": "integer",
                            "minimum": 1,
                            "maximum": 50,
                            "default": 10,
                        },
                    },
                    [],
                ),
                cacheable=True,
                ttl=300,
            ),
            ToolDefinition(
                name="get_course",
                description="Get details of a single course.",
                input_schema=_list_schema(
                    {
                        "course_identifier": COURSE_ID,
                        "include_syllabus": {"type": "boolean", "default": False},
                    },
                    ["course_identifier"],
                ),
                cacheable=True,
                ttl=600,
            ),
        ]

    async def _list_courses(self, arguments: dict[str, Any]) -> Any:
        params: dict[str, Any] = {}
        if arguments.get("enrollment_state"):
            params["enrollment_state"] = arguments["enrollment_state"]
        if not arguments.get("include_concluded", False):
            params["state[]"] = ["available"]
        return await self._client.get_paginated(
            "/courses", params=params, max_pages=arguments.get("max_pages", 10)
        )

    async def _get_course(self, arguments: dict[str, Any]) -> Any:
        params = {"include[]": ["syllabus_body"]} if arguments.get("include_syllabus") else None
        return await self._client.get(
            f"/courses/{_segment(arguments['course_identifier'])}", params=params
        )


class AssignmentsPlugin(CanvasPlugin):
    """Assignment lookup tools."""

    @property
    def name(self) -> str:
        """Return plugin identifier."""
        return "assignments"

    def _build_handlers(self) -> dict[str, Handler]:
        return {
            "list_assignments": self._list_assignments,
            "get_assignment": self._get_assignment,
        }

    def get_tools(self) -> list[ToolDefinition]:
        """Return available tools."""
        return [
            ToolDefinition(
                name="list_assignments",
                description="List assignments in a course.",
                input_schema=_list_schema(
                    {
                        "course_identifier": COURSE_ID,
                        "bucket": {
                            "type": "string",
                            "enum": ["past", "overdue", "undated", "ungraded", "upcoming", "future"],
                        },
                        "search_term": {"type": "string", "maxLength": 200},
                    },
                    ["course_identifier"],
                ),
                cacheable=True,
            ),
            ToolDefinition(
                name="get_assignment",
                description="Get details of a single assignment.",
                input_schema=_list_schema(
                    {
                        "course_identifier": COURSE_ID,
                        "assignment_id": identifier_property("Canvas assignment id"),
                    },
                    ["course_identifier", "assignment_id"],
                ),
                cacheable=True,
            ),
        ]

    async def _list_assignments(self, arguments: dict[str, Any]) -> Any:
        params = {
            key: arguments[key] for key in ("bucket", "search_term") if arguments.get(key)
        }
        return await self._client.get_paginated(
            f"/courses/{_segment(arguments['course_identifier'])}/assignments", params=params
        )

    async def _get_assignment(self, arguments: dict[str, Any]) -> Any:
        return await self._client.get(
            f"/courses/{_segment(arguments['course_identifier'])}"
            f"/assignments/{_segment(arguments['assignment_id'])}"
        )


class DiscussionsPlugin(CanvasPlugin):
    """Discussion topic tools."""

    @property
    def name(self) -> str:
        """Return plugin identifier."""
        return "discussions"

    def _build_handlers(self) -> dict[str, Handler]:
        return {
            "list_discussion_topics": self._list_topics,
            "get_discussion_topic": self._get_topic,
            "post_discussion_entry": self._post_entry,
        }

    def get_tools(self) -> list[ToolDefinition]:
        """Return available tools."""
        topic_args = {
            "course_identifier": COURSE_ID,
            "topic_id": identifier_property("Canvas discussion topic id"),
        }
        return [
            ToolDefinition(
                name="list_discussion_topics",
                description="List discussion topics in a course.",
                input_schema=_list_schema(
                    {
                        "course_identifier": COURSE_ID,
                        "only_announcements": {"type": "boolean", "default": False},
                    },
                    ["course_identifier"],
                ),
                cacheable=True,
                ttl=120,
            ),
            ToolDefinition(
                name="get_discussion_topic",
                description="Get a discussion topic.",
                input_schema=_list_schema(topic_args, ["course_identifier", "topic_id"]),
                cacheable=True,
                ttl=120,
            ),
            ToolDefinition(
                name="post_discussion_entry",
                description="Post a reply to a discussion topic.",
                input_schema=_list_schema(
                    {**topic_args, "message": {"type": "string", "minLength": 1}},
                    ["course_identifier", "topic_id", "message"],
                ),
                cacheable=False,
            ),
        ]

    async def _list_topics(self, arguments: dict[str, Any]) -> Any:
        params = {"only_announcements": True} if arguments.get("only_announcements") else None
        return await self._client.get_paginated(
            f"/courses/{_segment(arguments['course_identifier'])}/discussion_topics",
            params=params,
        )

    def _topic_path(self, arguments: dict[str, Any]) -> str:
        return (
            f"/courses/{_segment(arguments['course_identifier'])}"
            f"/discussion_topics/{_segment(arguments['topic_id'])}"
        )

    async def _get_topic(self, arguments: dict[str, Any]) -> Any:
        return await self._client.get(self._topic_path(arguments))

    async def _post_entry(self, arguments: dict[str, Any]) -> Any:
        return await self._client.post(
            self._topic_path(arguments) + "/entries", {"message": arguments["message"]}
        )


class UsersPlugin(CanvasPlugin):
    """User tools. Names and contact details are masked when anonymization is on."""

    def __init__(self, client: CanvasClient, anonymize: bool = False) -> None:
        """Initialize the plugin.

        Args:
            client: Canvas API client.
            anonymize: Replace student identities with pseudonyms.
        """
        self._anonymize = anonymize
        super().__init__(client)

    @property
    def name(self) -> str:
        """Return plugin identifier."""
        return "users"

    def _build_handlers(self) -> dict[str, Handler]:
        return {
            "get_current_user": self._get_current_user,
            "list_course_users": self._list_course_users,
        }

    def get_tools(self) -> list[ToolDefinition]:
        """Return available tools."""
        return [
            ToolDefinition(
                name="get_current_user",
                description="Get the profile of the user the API token belongs to.",
                input_schema={"type": "object", "properties": {}},
                cacheable=True,
                ttl=900,
            ),
            ToolDefinition(
                name="list_course_users",
                description="List users enrolled in a course.",
                input_schema=_list_schema(
                    {
                        "course_identifier": COURSE_ID,
                        "enrollment_type": {
                            "type": "string",
                            "enum": ["student", "teacher", "ta", "observer", "designer"],
                        },
                    },
                    ["course_identifier"],
                ),
                cacheable=True,
            ),
        ]

    async def _get_current_user(self, arguments: dict[str, Any]) -> Any:
        return await self._client.get_current_user()

    async def _list_course_users(self, arguments: dict[str, Any]) -> Any:
        params: dict[str, Any] = {}
        if arguments.get("enrollment_type"):
            params["enrollment_type[]"] = [arguments["enrollment_type"]]
        users = await self._client.get_paginated(
            f"/courses/{_segment(arguments['course_identifier'])}/users", params=params
        )
        if self._anonymize:
            return [anonymize_user(user) if isinstance(user, dict) else user for user in users]
        return users


def canvas_plugins(client: CanvasClient, anonymize: bool = False) -> list[PluginBase]:
    """All Canvas plugins, in catalog order."""
    return [
        UsersPlugin(client, anonymize=anonymize),
        CoursesPlugin(client),
        AssignmentsPlugin(client),
        DiscussionsPlugin(client),
    ]
