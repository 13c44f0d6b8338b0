from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from campusagent.config import settings
from campusagent.models import (
    CanvasConnectRequest,
    ChatRequest,
    DiscussionsRequest,
    ErrorResponse,
    TTSRequest,
    UserScopedRequest,
)
from campusagent.router.course_directory import CourseDirectory
from campusagent.router.intent_router import IntentRouter
from campusagent.services.composio_client import AccountNotFoundError, ComposioClient
from campusagent.services.connection_registry import ConnectionRegistry, canonical_service
from campusagent.services.llm_client import (
    AnthropicConfig,
    AnthropicMessagesClient,
    PromptTooLongError,
)
from campusagent.services.orchestrator import ConversationOrchestrator
from campusagent.services.speech import SpeechClient
from campusagent.tools.catalog import ToolCatalog

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="CampusAgent API", version="0.1.0")

PROMPT_TOO_LONG_MESSAGE = (
    "The request contains too much data. Please try asking for more specific "
    "information or fewer assignments at once."
)


def _build_orchestrator() -> ConversationOrchestrator | None:
    key = (settings.anthropic_api_key or "").strip()
    if not key or not composio.is_configured():
        return None
    llm = AnthropicMessagesClient(
        AnthropicConfig(
            model=settings.anthropic_model,
            api_key=key,
            api_base_url=settings.anthropic_api_base_url,
            timeout_seconds=settings.anthropic_timeout_seconds,
        )
    )
    return ConversationOrchestrator(
        llm=llm,
        executor=composio,
        registry=connection_registry,
        catalog=tool_catalog,
        router=intent_router,
        default_user_id=settings.default_external_user_id,
        mode=settings.orchestrator_mode,
        timezone=settings.assistant_timezone,
        chat_max_tokens=settings.chat_max_tokens,
        followup_max_tokens=settings.followup_max_tokens,
    )


composio = ComposioClient(
    api_key=settings.composio_api_key,
    base_url=settings.composio_api_base_url,
    timeout_seconds=settings.composio_timeout_seconds,
)
connection_registry = ConnectionRegistry(composio, strict_tenancy=settings.strict_tenancy)
tool_catalog = ToolCatalog(composio, default_user_id=settings.default_external_user_id)
course_directory = CourseDirectory()
intent_router = IntentRouter(course_directory)
speech = SpeechClient(
    api_key=settings.fish_api_key,
    voice_model_id=settings.fish_voice_model_id,
    base_url=settings.fish_api_base_url,
    timeout_seconds=settings.speech_timeout_seconds,
)
orchestrator = _build_orchestrator()


@app.exception_handler(RequestValidationError)
def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected malformed request: %s", exc.errors())
    return _error_response(400, "Invalid request body")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/chat")
def chat_route(payload: ChatRequest) -> Any:
    config_error = _missing_chat_config()
    if config_error:
        logger.error(config_error)
        return _error_response(500, config_error)
    message = payload.user_message
    if not isinstance(message, str) or not message.strip():
        return _error_response(400, "Invalid user message")
    if orchestrator is None:
        return _error_response(500, "Chat orchestrator is not configured.")

    history = [entry.model_dump() for entry in payload.conversation_history]
    try:
        outcome = orchestrator.run_turn(payload.user_id, message, history)
    except PromptTooLongError:
        return _error_response(400, PROMPT_TOO_LONG_MESSAGE)
    except Exception as exc:
        logger.exception("Chat turn failed")
        return _error_response(500, f"Chat function failed: {exc}")
    return outcome.to_payload()


@app.get("/api/auth/status")
def auth_status() -> Any:
    try:
        report = connection_registry.status_report()
    except Exception as exc:
        logger.exception("Failed to read connection status")
        return _error_response(500, str(exc))
    return {"ok": True, "connectedAccounts": report}


@app.post("/api/auth/canvas/connect")
def canvas_connect(payload: CanvasConnectRequest | None = None) -> Any:
    payload = payload or CanvasConnectRequest()
    auth_config_id = settings.auth_config_ids.get("canvas")
    if not auth_config_id:
        return _error_response(
            500, "Canvas auth config missing. Set COMPOSIO_CANVAS_AUTH_CONFIG_ID."
        )
    api_key = (payload.api_key or settings.canvas_api_key or "").strip()
    base_url = (payload.base_url or settings.canvas_base_url or "").strip()
    if not api_key or not base_url:
        return _error_response(400, "Canvas API key and base URL are required.")
    try:
        data = composio.initiate_api_key_connection(
            user_id=_user_id(payload.user_id),
            auth_config_id=auth_config_id,
            credentials={
                "api_key": api_key,
                "generic_api_key": api_key,
                "full": base_url,
                "base_url": base_url,
            },
        )
    except Exception as exc:
        logger.exception("Canvas connection failed")
        return _error_response(500, str(exc))
    return {"ok": True, "data": data}


@app.post("/api/auth/{service}/link")
def start_link(service: str, payload: UserScopedRequest | None = None) -> Any:
    canonical = canonical_service(service)
    if canonical is None:
        return _error_response(400, f"Unknown service '{service}'.")
    auth_config_id = settings.auth_config_ids.get(canonical)
    if not auth_config_id:
        return _error_response(
            500, f"Auth config for {canonical} is not configured. Set its COMPOSIO_*_AUTH_CONFIG_ID."
        )
    try:
        link = composio.link_account(
            user_id=_user_id(payload.user_id if payload else None),
            auth_config_id=auth_config_id,
            callback_url=settings.link_callback_url,
        )
    except Exception as exc:
        logger.exception("Failed to start %s link flow", canonical)
        return _error_response(500, str(exc))
    url = link.get("redirect_url") or link.get("link_url") or link.get("redirectUrl")
    if not url:
        return _error_response(500, "Missing linkUrl")
    return {"ok": True, "url": url}


@app.post("/api/auth/{service}/unlink")
def unlink(service: str, payload: UserScopedRequest | None = None) -> Any:
    if canonical_service(service) is None:
        return _error_response(400, f"Unknown service '{service}'.")
    user_id = _user_id(payload.user_id if payload else None)
    try:
        connections = connection_registry.owned_connections(user_id, service)
        for conn in connections:
            composio.delete_connection(conn.id)
    except AccountNotFoundError:
        return {"ok": True, "removed": 0}
    except Exception as exc:
        logger.exception("Failed to unlink %s", service)
        return _error_response(500, str(exc))
    return {"ok": True, "removed": len(connections)}


@app.get("/api/tools/count")
def tools_count(userId: str | None = None) -> Any:
    try:
        counts = tool_catalog.count_tools(_user_id(userId))
    except Exception as exc:
        return _error_response(500, str(exc))
    return {"ok": True, **counts}


@app.get("/api/tools/search")
def tools_search(
    query: str | None = None,
    toolkit: str = "GMAIL",
    limit: int = 10,
    userId: str | None = None,
) -> Any:
    if not query or not query.strip():
        return JSONResponse(
            status_code=400,
            content={
                "ok": False,
                "error": "Query parameter is required",
                "example": "/api/tools/search?query=send%20email&toolkit=GMAIL&limit=5",
            },
        )
    try:
        tools = tool_catalog.search_tools(
            _user_id(userId), toolkit=toolkit, query=query, limit=limit
        )
    except Exception as exc:
        return _error_response(500, str(exc))
    return {
        "ok": True,
        "query": query,
        "toolkit": toolkit,
        "toolCount": len(tools),
        "tools": [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
            }
            for tool in tools
        ],
    }


@app.post("/api/canvas/courses/{course_id}/assignments")
def course_assignments(course_id: int, payload: UserScopedRequest | None = None) -> Any:
    if orchestrator is None:
        return _error_response(500, _missing_chat_config() or "Chat orchestrator is not configured.")
    try:
        outcome = orchestrator.run_course_assignments(
            payload.user_id if payload else None, course_id
        )
    except PromptTooLongError:
        return _error_response(400, PROMPT_TOO_LONG_MESSAGE)
    except Exception as exc:
        logger.exception("Course assignment query failed")
        return _error_response(500, str(exc))
    return outcome.to_payload()


@app.post("/api/canvas/discussions")
def canvas_discussions(payload: DiscussionsRequest | None = None) -> Any:
    if orchestrator is None:
        return _error_response(500, _missing_chat_config() or "Chat orchestrator is not configured.")
    user_id = payload.user_id if payload else None
    course_ids = payload.course_ids if payload else None
    try:
        if course_ids:
            outcome = orchestrator.run_discussions(user_id, course_ids)
        else:
            outcome = orchestrator.run_discussions(user_id)
    except PromptTooLongError:
        return _error_response(400, PROMPT_TOO_LONG_MESSAGE)
    except Exception as exc:
        logger.exception("Discussion query failed")
        return _error_response(500, str(exc))
    return outcome.to_payload()


@app.post("/api/tts")
def generate_tts(payload: TTSRequest) -> Any:
    text = payload.text
    if not isinstance(text, str) or not text:
        return _error_response(400, "Text is required")
    if not text.strip():
        return _error_response(400, "Text cannot be empty")
    try:
        audio = speech.text_to_speech(text)
    except Exception as exc:
        logger.exception("Speech generation failed")
        return _error_response(500, f"Failed to generate speech: {exc}")
    return Response(
        content=audio,
        media_type="audio/mpeg",
        headers={"Cache-Control": "no-cache"},
    )


@app.post("/api/asr")
def transcribe(
    audio: UploadFile | None = File(default=None),
    language: str | None = Form(default=None),
) -> Any:
    if audio is None:
        return _error_response(400, "Audio file is required")
    try:
        text = speech.speech_to_text(
            audio.file.read(),
            language=language or None,
            filename=audio.filename or "recording.webm",
            content_type=audio.content_type or "audio/webm",
        )
    except Exception as exc:
        logger.exception("Transcription failed")
        return _error_response(500, f"Failed to transcribe audio: {exc}")
    return {"ok": True, "text": text}


@app.post("/api/asr/detailed")
def transcribe_detailed(
    audio: UploadFile | None = File(default=None),
    language: str | None = Form(default=None),
) -> Any:
    if audio is None:
        return _error_response(400, "Audio file is required")
    try:
        result = speech.speech_to_text_with_details(
            audio.file.read(),
            language=language or None,
            filename=audio.filename or "recording.webm",
            content_type=audio.content_type or "audio/webm",
        )
    except Exception as exc:
        logger.exception("Transcription failed")
        return _error_response(500, f"Failed to transcribe audio: {exc}")
    return {
        "ok": True,
        "text": result.text,
        "duration": result.duration,
        "segments": result.segments,
    }


def _missing_chat_config() -> str | None:
    if not composio.is_configured():
        return "Composio API key not configured. Please set COMPOSIO_API_KEY in your .env file."
    if not (settings.anthropic_api_key or "").strip():
        return "Anthropic API key not configured. Please set ANTHROPIC_API_KEY in your .env file."
    return None


def _user_id(raw: str | None) -> str:
    return (raw or "").strip() or settings.default_external_user_id


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )
