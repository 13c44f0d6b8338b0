from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

from .redaction import redact_sensitive_text

ANTHROPIC_VERSION = "2023-06-01"


class LLMRequestError(RuntimeError):
    pass


class PromptTooLongError(LLMRequestError):
    pass


@dataclass(frozen=True)
class AnthropicConfig:
    model: str
    api_key: str
    timeout_seconds: int
    api_base_url: str | None = None


class AnthropicMessagesClient:
    """Thin client for the Anthropic Messages API.

    Responses are returned as the raw decoded envelope so tool_use blocks can be
    echoed back verbatim in follow-up turns.
    """

    def __init__(self, cfg: AnthropicConfig) -> None:
        api_key = (cfg.api_key or "").strip()
        if not api_key:
            raise RuntimeError("LLM API key is required.")

        self._model = (cfg.model or "").strip()
        if not self._model:
            raise RuntimeError("LLM model is required.")

        self._api_key = api_key
        self._timeout_seconds = max(1, int(cfg.timeout_seconds))
        base = (cfg.api_base_url or "").strip() or "https://api.anthropic.com/v1"
        self._base_url = base.rstrip("/")

    @property
    def model(self) -> str:
        return self._model

    def create_message(
        self,
        *,
        messages: list[dict[str, Any]],
        max_tokens: int,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = tools
        try:
            response = requests.post(
                f"{self._base_url}/messages",
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            raise LLMRequestError(f"LLM request failed: {exc}") from exc
        if not response.ok:
            detail = redact_sensitive_text(response.text.strip())
            if "prompt is too long" in detail.lower():
                raise PromptTooLongError(f"prompt is too long: {detail[:400]}")
            raise LLMRequestError(
                f"LLM completion failed ({response.status_code}): {detail[:400] or 'request failed'}"
            )
        body = response.json()
        if not isinstance(body, dict):
            raise LLMRequestError("LLM completion returned unexpected payload.")
        content = body.get("content")
        if not isinstance(content, list):
            raise LLMRequestError("LLM completion missing content blocks.")
        return body


def has_tool_use(content_blocks: Any) -> bool:
    if not isinstance(content_blocks, list):
        return False
    return any(
        isinstance(block, dict) and block.get("type") == "tool_use"
        for block in content_blocks
    )


def tool_use_blocks(content_blocks: Any) -> list[dict[str, Any]]:
    if not isinstance(content_blocks, list):
        return []
    return [
        block
        for block in content_blocks
        if isinstance(block, dict) and block.get("type") == "tool_use"
    ]


def first_text(content_blocks: Any) -> str:
    if not isinstance(content_blocks, list):
        return ""
    for block in content_blocks:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str):
                return text
    return ""


def text_envelope(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}
