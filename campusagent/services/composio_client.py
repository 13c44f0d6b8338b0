from __future__ import annotations

import json
import logging
from typing import Any

import requests

from campusagent.tools.base import ToolCallResult, ToolDescriptor

from .llm_client import tool_use_blocks
from .redaction import redact_sensitive_text

logger = logging.getLogger(__name__)

_ACCOUNT_NOT_FOUND_MARKERS = (
    "connected account not found",
    "no connected account found",
    "no connected accounts found",
)


class CapabilityProviderError(RuntimeError):
    pass


class AccountNotFoundError(CapabilityProviderError):
    pass


def is_account_not_found_message(text: str | None) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _ACCOUNT_NOT_FOUND_MARKERS)


class ComposioClient:
    """Capability provider: connected accounts, tool descriptors and tool execution."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://backend.composio.dev/api/v3",
        timeout_seconds: int = 30,
        page_limit: int = 100,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_seconds = max(1, int(timeout_seconds))
        self.page_limit = max(1, int(page_limit))

    def is_configured(self) -> bool:
        return bool(self.api_key and self.base_url)

    def list_connections(self, user_ids: list[str] | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: dict[str, str] = {"limit": str(self.page_limit)}
            if user_ids:
                params["user_ids"] = ",".join(user_ids)
            if cursor:
                params["cursor"] = cursor
            payload = self._request("GET", "/connected_accounts", params=params)
            rows = payload.get("items") if isinstance(payload, dict) else None
            if not isinstance(rows, list):
                raise CapabilityProviderError("Unexpected connected accounts payload.")
            items.extend(row for row in rows if isinstance(row, dict))
            next_cursor = payload.get("next_cursor")
            if not isinstance(next_cursor, str) or not next_cursor or next_cursor == cursor:
                break
            cursor = next_cursor
        return items

    def get_tools(
        self,
        user_id: str,
        *,
        tools: list[str] | None = None,
        toolkits: list[str] | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[ToolDescriptor]:
        if not tools and not toolkits:
            raise ValueError("Either tools or toolkits must be provided.")
        params: dict[str, str] = {"user_id": user_id}
        if tools:
            params["tool_slugs"] = ",".join(name.strip().upper() for name in tools)
        if toolkits:
            params["toolkit_slug"] = ",".join(slug.strip().lower() for slug in toolkits)
        if search:
            params["search"] = search
        if isinstance(limit, int) and limit > 0:
            params["limit"] = str(limit)
        payload = self._request("GET", "/tools", params=params)
        rows = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            raise CapabilityProviderError("Unexpected tools payload.")
        return [_to_tool_descriptor(row) for row in rows if isinstance(row, dict) and row.get("slug")]

    def execute_tool(
        self,
        user_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"/tools/execute/{tool_name}",
            json_body={"user_id": user_id, "arguments": arguments},
        )
        if not isinstance(payload, dict):
            raise CapabilityProviderError(f"Unexpected execution payload for {tool_name}.")
        error = payload.get("error")
        if isinstance(error, str) and is_account_not_found_message(error):
            raise AccountNotFoundError(redact_sensitive_text(error))
        return payload

    def execute_tool_calls(
        self,
        user_id: str,
        model_response: dict[str, Any],
        fallback_user_id: str | None = None,
    ) -> list[ToolCallResult]:
        """Execute every tool_use block once, returning one result per block.

        A block that fails with "account not found" is retried under
        ``fallback_user_id`` (when it differs from ``user_id``); blocks that
        already ran are never repeated. Provider failures become ``is_error``
        results instead of aborting the round.
        """
        results: list[ToolCallResult] = []
        for block in tool_use_blocks(model_response.get("content")):
            tool_use_id = str(block.get("id") or "")
            tool_name = str(block.get("name") or "")
            arguments = block.get("input") if isinstance(block.get("input"), dict) else {}
            results.append(
                self._execute_block(
                    user_id,
                    fallback_user_id,
                    tool_use_id=tool_use_id,
                    tool_name=tool_name,
                    arguments=arguments,
                )
            )
        return results

    def _execute_block(
        self,
        user_id: str,
        fallback_user_id: str | None,
        *,
        tool_use_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> ToolCallResult:
        owner = user_id
        try:
            payload = self.execute_tool(user_id=user_id, tool_name=tool_name, arguments=arguments)
        except AccountNotFoundError as exc:
            if not fallback_user_id or fallback_user_id == user_id:
                logger.warning("%s failed for %s: %s", tool_name, user_id, exc)
                return _error_result(tool_use_id, tool_name, user_id, str(exc))
            logger.warning(
                "No connected account for %s on %s; retrying with default user", user_id, tool_name
            )
            owner = fallback_user_id
            try:
                payload = self.execute_tool(user_id=owner, tool_name=tool_name, arguments=arguments)
            except CapabilityProviderError as retry_exc:
                logger.warning("%s failed with default user: %s", tool_name, retry_exc)
                return _error_result(tool_use_id, tool_name, owner, str(retry_exc))
        except CapabilityProviderError as exc:
            logger.warning("%s failed for %s: %s", tool_name, user_id, exc)
            return _error_result(tool_use_id, tool_name, user_id, str(exc))

        successful = payload.get("successful", True) is not False
        body = payload.get("data") if successful else {"error": payload.get("error")}
        return ToolCallResult(
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            content=json.dumps(body, default=str),
            user_id=owner,
            is_error=not successful,
        )

    def link_account(
        self,
        user_id: str,
        auth_config_id: str,
        callback_url: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"auth_config_id": auth_config_id, "user_id": user_id}
        if callback_url:
            body["callback_url"] = callback_url
        payload = self._request("POST", "/connected_accounts/link", json_body=body)
        if not isinstance(payload, dict):
            raise CapabilityProviderError("Unexpected link payload.")
        return payload

    def initiate_api_key_connection(
        self,
        user_id: str,
        auth_config_id: str,
        credentials: dict[str, str],
    ) -> dict[str, Any]:
        payload = self._request(
            "POST",
            "/connected_accounts",
            json_body={
                "auth_config": {"id": auth_config_id},
                "connection": {
                    "user_id": user_id,
                    "state": {"authScheme": "API_KEY", "val": credentials},
                },
            },
        )
        if not isinstance(payload, dict):
            raise CapabilityProviderError("Unexpected connection payload.")
        return payload

    def delete_connection(self, connection_id: str) -> None:
        self._request("DELETE", f"/connected_accounts/{connection_id}")

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        self._ensure_configured()
        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                params=params,
                json=json_body,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise CapabilityProviderError(f"Capability provider request failed: {exc}") from exc
        self._raise_for_error(response, f"{method} {path}")
        if not response.content:
            return {}
        return response.json()

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _ensure_configured(self) -> None:
        if self.is_configured():
            return
        raise CapabilityProviderError(
            "Composio API key not configured. Please set COMPOSIO_API_KEY in your .env file."
        )

    @staticmethod
    def _raise_for_error(response: requests.Response, action: str) -> None:
        if response.ok:
            return
        detail = redact_sensitive_text(response.text.strip())
        message = f"Failed to {action}: HTTP {response.status_code} {detail or 'request failed'}"
        if is_account_not_found_message(detail):
            raise AccountNotFoundError(message)
        raise CapabilityProviderError(message)


def _error_result(tool_use_id: str, tool_name: str, user_id: str, message: str) -> ToolCallResult:
    return ToolCallResult(
        tool_use_id=tool_use_id,
        tool_name=tool_name,
        content=json.dumps({"error": message}),
        user_id=user_id,
        is_error=True,
    )


def _to_tool_descriptor(row: dict[str, Any]) -> ToolDescriptor:
    toolkit = row.get("toolkit")
    service = ""
    if isinstance(toolkit, dict):
        service = str(toolkit.get("slug") or "")
    elif isinstance(toolkit, str):
        service = toolkit
    schema = row.get("input_parameters")
    return ToolDescriptor(
        name=str(row.get("slug")),
        description=str(row.get("description") or row.get("name") or ""),
        service=service.strip().lower(),
        input_schema=schema if isinstance(schema, dict) else {},
    )
