import unittest
from unittest.mock import patch

import requests

from campusagent.services.llm_client import (
    AnthropicConfig,
    AnthropicMessagesClient,
    LLMRequestError,
    PromptTooLongError,
    first_text,
    has_tool_use,
    text_envelope,
    tool_use_blocks,
)


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        return self._payload


def _client():
    return AnthropicMessagesClient(
        AnthropicConfig(
            model="claude-3-5-sonnet-20241022",
            api_key="sk-ant-test",
            timeout_seconds=5,
            api_base_url="https://llm.test/v1/",
        )
    )


class AnthropicMessagesClientTests(unittest.TestCase):
    def test_requires_key_and_model(self):
        with self.assertRaises(RuntimeError):
            AnthropicMessagesClient(AnthropicConfig(model="m", api_key=" ", timeout_seconds=5))
        with self.assertRaises(RuntimeError):
            AnthropicMessagesClient(AnthropicConfig(model="", api_key="k", timeout_seconds=5))

    def test_omits_tools_when_none_offered(self):
        body = {"role": "assistant", "content": [{"type": "text", "text": "hi"}]}
        with patch(
            "campusagent.services.llm_client.requests.post",
            return_value=_FakeResponse(payload=body),
        ) as mocked:
            result = _client().create_message(
                messages=[{"role": "user", "content": "hi"}],
                max_tokens=2000,
                system="be brief",
                tools=None,
            )

        self.assertEqual(result, body)
        args, kwargs = mocked.call_args
        self.assertEqual(args[0], "https://llm.test/v1/messages")
        self.assertEqual(kwargs["headers"]["x-api-key"], "sk-ant-test")
        self.assertEqual(kwargs["headers"]["anthropic-version"], "2023-06-01")
        self.assertNotIn("tools", kwargs["json"])
        self.assertEqual(kwargs["json"]["system"], "be brief")
        self.assertEqual(kwargs["json"]["max_tokens"], 2000)

    def test_passes_tools_through(self):
        tools = [{"name": "GMAIL_FETCH_EMAILS", "description": "d", "input_schema": {"type": "object"}}]
        body = {"content": []}
        with patch(
            "campusagent.services.llm_client.requests.post",
            return_value=_FakeResponse(payload=body),
        ) as mocked:
            _client().create_message(messages=[], max_tokens=10, tools=tools)
        self.assertEqual(mocked.call_args[1]["json"]["tools"], tools)

    def test_prompt_too_long_is_distinguished(self):
        response = _FakeResponse(
            status_code=400,
            text='{"type":"error","error":{"message":"prompt is too long: 215000 tokens > 200000 maximum"}}',
        )
        with patch("campusagent.services.llm_client.requests.post", return_value=response):
            with self.assertRaises(PromptTooLongError):
                _client().create_message(messages=[], max_tokens=10)

    def test_other_failures_are_request_errors(self):
        response = _FakeResponse(status_code=529, text="overloaded")
        with patch("campusagent.services.llm_client.requests.post", return_value=response):
            with self.assertRaises(LLMRequestError) as caught:
                _client().create_message(messages=[], max_tokens=10)
        self.assertNotIsInstance(caught.exception, PromptTooLongError)
        self.assertIn("529", str(caught.exception))

    def test_transport_errors_are_wrapped(self):
        with patch(
            "campusagent.services.llm_client.requests.post",
            side_effect=requests.Timeout("timed out"),
        ):
            with self.assertRaises(LLMRequestError):
                _client().create_message(messages=[], max_tokens=10)

    def test_missing_content_is_rejected(self):
        with patch(
            "campusagent.services.llm_client.requests.post",
            return_value=_FakeResponse(payload={"id": "msg_1"}),
        ):
            with self.assertRaises(LLMRequestError):
                _client().create_message(messages=[], max_tokens=10)


class ContentBlockHelperTests(unittest.TestCase):
    def test_block_helpers(self):
        blocks = [
            {"type": "text", "text": "Checking your inbox."},
            {"type": "tool_use", "id": "toolu_1", "name": "GMAIL_FETCH_EMAILS", "input": {}},
        ]
        self.assertTrue(has_tool_use(blocks))
        self.assertEqual([block["id"] for block in tool_use_blocks(blocks)], ["toolu_1"])
        self.assertEqual(first_text(blocks), "Checking your inbox.")
        self.assertFalse(has_tool_use("not a list"))
        self.assertEqual(first_text(None), "")
        self.assertEqual(text_envelope("hi"), {"content": [{"type": "text", "text": "hi"}]})


if __name__ == "__main__":
    unittest.main()
