import dataclasses
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

import campusagent.main as main
from campusagent.services.composio_client import AccountNotFoundError
from campusagent.services.connection_registry import ServiceConnection
from campusagent.services.llm_client import PromptTooLongError
from campusagent.services.orchestrator import TurnOutcome, TurnState

STATUS = {"gmail": True, "googlecalendar": False, "canvas": False, "zoom": False, "googlemeetings": False}


def _outcome(text="Hi there."):
    return TurnOutcome(
        response={"role": "assistant", "content": [{"type": "text", "text": text}]},
        tool_results=[],
        connection_status=dict(STATUS),
        matched_exactly=True,
        no_data=False,
        transitions=[TurnState.BUILD_CONTEXT, TurnState.RESPOND],
        model_calls=1,
    )


class _FakeOrchestrator:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def run_turn(self, user_id, user_message, history=None, *, restrict_tools=None):
        self.calls.append((user_id, user_message, history))
        if self.error is not None:
            raise self.error
        return _outcome()

    def run_course_assignments(self, user_id, course_id):
        self.calls.append((user_id, course_id))
        if self.error is not None:
            raise self.error
        return _outcome("Lab 4 is due Tuesday.")

    def run_discussions(self, user_id, course_ids=None):
        self.calls.append(("discussions", user_id, course_ids))
        if self.error is not None:
            raise self.error
        return _outcome("Reply to the week 6 forum by Friday.")


class _FakeComposio:
    def __init__(self):
        self.deleted = []
        self.linked = []

    def is_configured(self):
        return True

    def link_account(self, user_id, auth_config_id, callback_url=None):
        self.linked.append((user_id, auth_config_id, callback_url))
        return {"redirect_url": "https://connect.test/link/abc"}

    def delete_connection(self, connection_id):
        self.deleted.append(connection_id)


class _FakeRegistry:
    def __init__(self, owned=None, error=None):
        self.owned = owned or []
        self.error = error

    def owned_connections(self, user_id, service):
        _ = (user_id, service)
        if self.error is not None:
            raise self.error
        return list(self.owned)

    def status_report(self):
        return {"gmail": True, "gmailConnections": [], "totalConnections": 1}


class _FakeSpeech:
    def text_to_speech(self, text):
        _ = text
        return b"ID3fake"


class ChatRouteTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)
        self.orchestrator = _FakeOrchestrator()
        self._patches = [
            patch.object(main, "orchestrator", self.orchestrator),
            patch.object(main, "_missing_chat_config", return_value=None),
        ]
        for item in self._patches:
            item.start()

    def tearDown(self):
        for item in reversed(self._patches):
            item.stop()

    def test_success_envelope(self):
        response = self.client.post(
            "/api/chat",
            json={
                "userId": "u1",
                "userMessage": "check my inbox",
                "conversationHistory": [{"role": "assistant", "content": "Hi!"}],
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["result"]["content"][0]["text"], "Hi there.")
        self.assertEqual(body["connectionStatus"], STATUS)
        self.assertNotIn("noData", body)
        self.assertEqual(
            self.orchestrator.calls,
            [("u1", "check my inbox", [{"role": "assistant", "content": "Hi!"}])],
        )

    def test_missing_or_non_string_message_is_400(self):
        for payload in ({"userId": "u1"}, {"userMessage": 42}, {"userMessage": "   "}):
            with self.subTest(payload=payload):
                response = self.client.post("/api/chat", json=payload)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(), {"ok": False, "error": "Invalid user message"})
        self.assertEqual(self.orchestrator.calls, [])

    def test_malformed_history_is_400(self):
        response = self.client.post(
            "/api/chat",
            json={"userMessage": "hi", "conversationHistory": [{"role": "system", "content": "x"}]},
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["ok"])

    def test_missing_configuration_is_500(self):
        with patch.object(
            main,
            "_missing_chat_config",
            return_value="Composio API key not configured. Please set COMPOSIO_API_KEY in your .env file.",
        ):
            response = self.client.post("/api/chat", json={"userMessage": "hi"})
        self.assertEqual(response.status_code, 500)
        self.assertIn("COMPOSIO_API_KEY", response.json()["error"])

    def test_prompt_too_long_is_400(self):
        self.orchestrator.error = PromptTooLongError("prompt is too long")
        response = self.client.post("/api/chat", json={"userMessage": "summarize everything"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], main.PROMPT_TOO_LONG_MESSAGE)

    def test_other_failures_are_500(self):
        self.orchestrator.error = RuntimeError("boom")
        response = self.client.post("/api/chat", json={"userMessage": "hi"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "Chat function failed: boom")

    def test_course_assignments_route(self):
        response = self.client.post("/api/canvas/courses/65759/assignments", json={"userId": "u1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.orchestrator.calls, [("u1", 65759)])
        self.assertEqual(response.json()["result"]["content"][0]["text"], "Lab 4 is due Tuesday.")

    def test_course_id_must_be_numeric(self):
        response = self.client.post("/api/canvas/courses/data-structures/assignments", json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.orchestrator.calls, [])

    def test_course_assignments_prompt_too_long_is_400(self):
        self.orchestrator.error = PromptTooLongError("prompt is too long")
        response = self.client.post("/api/canvas/courses/65759/assignments", json={"userId": "u1"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"ok": False, "error": main.PROMPT_TOO_LONG_MESSAGE})

    def test_course_assignments_other_failures_are_500(self):
        self.orchestrator.error = RuntimeError("boom")
        response = self.client.post("/api/canvas/courses/65759/assignments", json={})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"ok": False, "error": "boom"})

    def test_discussions_route_uses_default_courses(self):
        response = self.client.post("/api/canvas/discussions", json={"userId": "u1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.orchestrator.calls, [("discussions", "u1", None)])
        self.assertEqual(
            response.json()["result"]["content"][0]["text"], "Reply to the week 6 forum by Friday."
        )

    def test_discussions_route_passes_course_ids(self):
        response = self.client.post(
            "/api/canvas/discussions", json={"userId": "u1", "courseIds": [61734]}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.orchestrator.calls, [("discussions", "u1", [61734])])

    def test_discussions_course_ids_must_be_numeric(self):
        response = self.client.post("/api/canvas/discussions", json={"courseIds": ["arch"]})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.orchestrator.calls, [])

    def test_discussions_prompt_too_long_is_400(self):
        self.orchestrator.error = PromptTooLongError("prompt is too long")
        response = self.client.post("/api/canvas/discussions", json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], main.PROMPT_TOO_LONG_MESSAGE)


class AuthRouteTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)

    def test_status(self):
        with patch.object(main, "connection_registry", _FakeRegistry()):
            response = self.client.get("/api/auth/status")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["connectedAccounts"]["totalConnections"], 1)

    def test_link_unknown_service(self):
        response = self.client.post("/api/auth/slack/link", json={"userId": "u1"})
        self.assertEqual(response.status_code, 400)

    def test_link_returns_redirect_url(self):
        composio = _FakeComposio()
        configured = dataclasses.replace(main.settings, auth_config_ids={"googlecalendar": "ac_cal"})
        with patch.object(main, "composio", composio), patch.object(main, "settings", configured):
            response = self.client.post("/api/auth/gcal/link", json={"userId": "u1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "url": "https://connect.test/link/abc"})
        self.assertEqual(composio.linked[0][:2], ("u1", "ac_cal"))

    def test_link_without_auth_config_is_500(self):
        configured = dataclasses.replace(main.settings, auth_config_ids={})
        with patch.object(main, "settings", configured):
            response = self.client.post("/api/auth/zoom/link", json={"userId": "u1"})
        self.assertEqual(response.status_code, 500)

    def test_unlink_removes_owned_connections(self):
        composio = _FakeComposio()
        owned = [ServiceConnection(id="ca_1", slug="gmail", status="ACTIVE", user_id="u1", service="gmail")]
        with patch.object(main, "composio", composio), patch.object(
            main, "connection_registry", _FakeRegistry(owned=owned)
        ):
            response = self.client.post("/api/auth/gmail/unlink", json={"userId": "u1"})
        self.assertEqual(response.json(), {"ok": True, "removed": 1})
        self.assertEqual(composio.deleted, ["ca_1"])

    def test_unlink_without_accounts(self):
        registry = _FakeRegistry(error=AccountNotFoundError("No connected accounts found"))
        with patch.object(main, "connection_registry", registry):
            response = self.client.post("/api/auth/gmail/unlink", json={"userId": "u1"})
        self.assertEqual(response.json(), {"ok": True, "removed": 0})


class UtilityRouteTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_tool_search_requires_query(self):
        response = self.client.get("/api/tools/search")
        self.assertEqual(response.status_code, 400)
        self.assertIn("example", response.json())

    def test_tts_validation(self):
        missing = self.client.post("/api/tts", json={})
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json()["error"], "Text is required")
        blank = self.client.post("/api/tts", json={"text": "   "})
        self.assertEqual(blank.json()["error"], "Text cannot be empty")

    def test_tts_returns_audio(self):
        with patch.object(main, "speech", _FakeSpeech()):
            response = self.client.post("/api/tts", json={"text": "Lab 4 is due Tuesday."})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "audio/mpeg")
        self.assertEqual(response.content, b"ID3fake")

    def test_asr_requires_audio(self):
        response = self.client.post("/api/asr", data={"language": "en"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Audio file is required")


if __name__ == "__main__":
    unittest.main()
