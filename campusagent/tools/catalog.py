from __future__ import annotations

import logging
from typing import Iterable, Protocol

from campusagent.services.connection_registry import SERVICES, ConnectionSnapshot

from .base import ToolDescriptor

logger = logging.getLogger(__name__)

SERVICE_TOOL_BUNDLES: dict[str, tuple[str, ...]] = {
    "gmail": (
        "GMAIL_FETCH_EMAILS",
        "GMAIL_SEND_EMAIL",
        "GMAIL_GET_PROFILE",
    ),
    "googlecalendar": (
        "GOOGLECALENDAR_LIST_EVENTS",
        "GOOGLECALENDAR_FIND_EVENT",
    ),
    "canvas": (
        "CANVAS_LIST_COURSES",
        "CANVAS_GET_ALL_ASSIGNMENTS",
        "CANVAS_GET_ASSIGNMENT",
    ),
    "zoom": (
        "ZOOM_LIST_MEETINGS",
        "ZOOM_GET_A_MEETING",
    ),
    "googlemeetings": (
        "GOOGLEMEET_GET_CONFERENCE_RECORD_BY_MEET_CODE",
        "GOOGLEMEET_CREATE_MEET",
    ),
}

CANVAS_DISCUSSION_TOOLS = (
    "CANVAS_LIST_DISCUSSION_TOPICS",
)

SERVICE_TOOLKITS = {
    "gmail": "gmail",
    "googlecalendar": "googlecalendar",
    "canvas": "canvas",
    "zoom": "zoom",
    "googlemeetings": "googlemeet",
}


class ToolProvider(Protocol):
    def get_tools(
        self,
        user_id: str,
        *,
        tools: list[str] | None = None,
        toolkits: list[str] | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[ToolDescriptor]: ...


class ToolCatalog:
    def __init__(self, provider: ToolProvider, default_user_id: str) -> None:
        self.provider = provider
        self.default_user_id = default_user_id

    def load_tools(
        self,
        user_id: str,
        services: Iterable[str],
        *,
        include_discussions: bool = False,
    ) -> list[ToolDescriptor]:
        requested = set(services)
        tools: list[ToolDescriptor] = []
        seen: set[str] = set()
        for service in SERVICES:
            if service not in requested:
                continue
            names = list(SERVICE_TOOL_BUNDLES[service])
            if service == "canvas" and include_discussions:
                names.extend(CANVAS_DISCUSSION_TOOLS)
            for tool in self._load_service(user_id=user_id, service=service, names=names):
                if tool.name in seen:
                    continue
                seen.add(tool.name)
                tools.append(tool)
        logger.info("Loaded %d tool(s): %s", len(tools), [tool.name for tool in tools])
        return tools

    def load_for_snapshot(
        self, snapshot: ConnectionSnapshot, *, include_discussions: bool = False
    ) -> list[ToolDescriptor]:
        return self.load_tools(
            snapshot.user_id, snapshot.services, include_discussions=include_discussions
        )

    def load_for_intent(
        self,
        snapshot: ConnectionSnapshot,
        services: Iterable[str],
        *,
        include_discussions: bool = False,
    ) -> list[ToolDescriptor]:
        connected = [service for service in services if snapshot.is_connected(service)]
        skipped = [service for service in services if service not in connected]
        if skipped:
            logger.info("Routed services not connected, skipping: %s", skipped)
        return self.load_tools(
            snapshot.user_id,
            connected,
            include_discussions=include_discussions,
        )

    def count_tools(self, user_id: str) -> dict[str, object]:
        gmail_tools = self.provider.get_tools(user_id, toolkits=["gmail"])
        canvas_tools = self.provider.get_tools(user_id, toolkits=["canvas"])
        all_tools = self.provider.get_tools(user_id, toolkits=["gmail", "canvas"])
        return {
            "toolCounts": {
                "gmail": len(gmail_tools),
                "canvas": len(canvas_tools),
                "total": len(all_tools),
                "combined": len(gmail_tools) + len(canvas_tools),
            },
            "tools": {
                "gmail": [tool.name for tool in gmail_tools],
                "canvas": [tool.name for tool in canvas_tools],
            },
        }

    def search_tools(
        self,
        user_id: str,
        *,
        toolkit: str,
        query: str,
        limit: int = 10,
    ) -> list[ToolDescriptor]:
        query = (query or "").strip()
        if not query:
            raise ValueError("Query parameter is required")
        slug = SERVICE_TOOLKITS.get(toolkit.strip().lower(), toolkit.strip().lower())
        return self.provider.get_tools(
            user_id,
            toolkits=[slug],
            search=query,
            limit=max(1, min(100, int(limit))),
        )

    def _load_service(
        self,
        *,
        user_id: str,
        service: str,
        names: list[str],
    ) -> list[ToolDescriptor]:
        try:
            tools = self.provider.get_tools(user_id, tools=names)
        except Exception as exc:
            if service != "canvas" or user_id == self.default_user_id:
                logger.warning("Failed to load %s tools: %s", service, exc)
                return []
            logger.warning(
                "Canvas tools failed for %s, retrying with default user: %s", user_id, exc
            )
            try:
                tools = self.provider.get_tools(
                    self.default_user_id,
                    tools=names,
                    toolkits=[SERVICE_TOOLKITS[service]],
                )
            except Exception as retry_exc:
                logger.warning("Canvas tools failed with default user: %s", retry_exc)
                return []
        logger.debug("%s tools loaded: %d", service, len(tools))
        return tools
