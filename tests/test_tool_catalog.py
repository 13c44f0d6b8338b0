import unittest

from campusagent.services.connection_registry import ConnectionSnapshot
from campusagent.tools.base import ToolDescriptor
from campusagent.tools.catalog import CANVAS_DISCUSSION_TOOLS, ToolCatalog

DEFAULT_USER = "default-user"


class _FakeProvider:
    def __init__(self, failing_users=(), failing_prefixes=()):
        self.failing_users = set(failing_users)
        self.failing_prefixes = tuple(failing_prefixes)
        self.calls = []

    def get_tools(self, user_id, *, tools=None, toolkits=None, search=None, limit=None):
        self.calls.append({"user_id": user_id, "tools": tools, "toolkits": toolkits, "search": search, "limit": limit})
        if user_id in self.failing_users or any(
            name.startswith(self.failing_prefixes) for name in tools or ()
        ):
            raise RuntimeError(f"tools unavailable for {user_id}")
        if tools:
            return [ToolDescriptor(name=name, description=name, service="x") for name in tools]
        return [
            ToolDescriptor(name=f"{slug.upper()}_TOOL_{index}", description="", service=slug)
            for slug in toolkits or []
            for index in range(2)
        ]


def _snapshot(services, user_id="u1"):
    return ConnectionSnapshot(
        user_id=user_id,
        all_connections=[],
        connections=[],
        matched_exactly=True,
        services=frozenset(services),
    )


class LoadToolsTests(unittest.TestCase):
    def test_bundles_follow_service_order(self):
        catalog = ToolCatalog(_FakeProvider(), default_user_id=DEFAULT_USER)
        tools = catalog.load_for_snapshot(_snapshot({"canvas", "gmail"}))
        self.assertEqual(
            [tool.name for tool in tools],
            [
                "GMAIL_FETCH_EMAILS",
                "GMAIL_SEND_EMAIL",
                "GMAIL_GET_PROFILE",
                "CANVAS_LIST_COURSES",
                "CANVAS_GET_ALL_ASSIGNMENTS",
                "CANVAS_GET_ASSIGNMENT",
            ],
        )

    def test_no_services_means_no_calls(self):
        provider = _FakeProvider()
        self.assertEqual(ToolCatalog(provider, DEFAULT_USER).load_for_snapshot(_snapshot(set())), [])
        self.assertEqual(provider.calls, [])

    def test_failed_service_does_not_block_others(self):
        provider = _FakeProvider(failing_prefixes=("GMAIL_",))
        tools = ToolCatalog(provider, DEFAULT_USER).load_for_snapshot(_snapshot({"gmail", "zoom"}))
        self.assertEqual([tool.name for tool in tools], ["ZOOM_LIST_MEETINGS", "ZOOM_GET_A_MEETING"])

    def test_canvas_retries_under_default_user(self):
        provider = _FakeProvider(failing_users={"u1"})
        tools = ToolCatalog(provider, DEFAULT_USER).load_for_snapshot(_snapshot({"canvas"}))
        self.assertEqual(len(tools), 3)
        self.assertEqual(provider.calls[-1]["user_id"], DEFAULT_USER)
        self.assertEqual(provider.calls[-1]["toolkits"], ["canvas"])

    def test_canvas_default_user_failure_yields_empty_set(self):
        provider = _FakeProvider(failing_users={DEFAULT_USER})
        tools = ToolCatalog(provider, DEFAULT_USER).load_for_snapshot(_snapshot({"canvas"}, DEFAULT_USER))
        self.assertEqual(tools, [])
        self.assertEqual(len(provider.calls), 1)

    def test_snapshot_load_can_include_discussions(self):
        catalog = ToolCatalog(_FakeProvider(), DEFAULT_USER)
        plain = catalog.load_for_snapshot(_snapshot({"canvas"}))
        expanded = catalog.load_for_snapshot(_snapshot({"canvas"}), include_discussions=True)
        self.assertNotIn(CANVAS_DISCUSSION_TOOLS[0], [tool.name for tool in plain])
        self.assertEqual([tool.name for tool in expanded][-1], CANVAS_DISCUSSION_TOOLS[0])

    def test_intent_load_intersects_with_connected_services(self):
        catalog = ToolCatalog(_FakeProvider(), DEFAULT_USER)
        tools = catalog.load_for_intent(
            _snapshot({"canvas"}), ("gmail", "canvas"), include_discussions=True
        )
        names = [tool.name for tool in tools]
        self.assertNotIn("GMAIL_FETCH_EMAILS", names)
        self.assertEqual(names[-1], CANVAS_DISCUSSION_TOOLS[0])


class CountAndSearchTests(unittest.TestCase):
    def test_count_tools(self):
        counts = ToolCatalog(_FakeProvider(), DEFAULT_USER).count_tools("u1")
        self.assertEqual(counts["toolCounts"], {"gmail": 2, "canvas": 2, "total": 4, "combined": 4})
        self.assertEqual(counts["tools"]["gmail"], ["GMAIL_TOOL_0", "GMAIL_TOOL_1"])

    def test_search_maps_toolkit_and_clamps_limit(self):
        provider = _FakeProvider()
        ToolCatalog(provider, DEFAULT_USER).search_tools("u1", toolkit="GOOGLEMEETINGS", query=" create ", limit=500)
        call = provider.calls[-1]
        self.assertEqual(call["toolkits"], ["googlemeet"])
        self.assertEqual(call["search"], "create")
        self.assertEqual(call["limit"], 100)

    def test_search_requires_query(self):
        with self.assertRaises(ValueError):
            ToolCatalog(_FakeProvider(), DEFAULT_USER).search_tools("u1", toolkit="GMAIL", query="  ")


if __name__ == "__main__":
    unittest.main()
