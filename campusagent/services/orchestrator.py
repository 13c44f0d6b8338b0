from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
from typing import Any, Callable, Collection, Protocol
from zoneinfo import ZoneInfo

from campusagent.router.course_directory import DEFAULT_DISCUSSION_COURSE_IDS
from campusagent.router.intent_router import IntentClassification, IntentRouter
from campusagent.tools.base import ToolCallResult, ToolDescriptor, tool_results_message
from campusagent.tools.catalog import CANVAS_DISCUSSION_TOOLS, ToolCatalog

from .connection_registry import ConnectionRegistry, ConnectionSnapshot
from .llm_client import first_text, has_tool_use, text_envelope
from .response_policy import (
    ASSIGNMENT_LIST_TOOL,
    FINAL_FORMAT_INSTRUCTION,
    GENERIC_RETRY_FALLBACK,
    NO_DATA_INSTRUCTION,
    RETRY_NUDGE,
    build_forced_fetch_instruction,
    build_no_tools_fallback,
    build_system_prompt,
    check_trivial_response,
    format_current_date,
    is_fabrication_risk,
)

logger = logging.getLogger(__name__)

MAX_TRANSITIONS = 16


class TurnState(str, Enum):
    BUILD_CONTEXT = "build_context"
    FIRST_CALL = "first_call"
    RETRY_CALL = "retry_call"
    EXECUTE_TOOLS = "execute_tools"
    REPAIR_FETCH = "repair_fetch"
    FOLLOWUP_CALL = "followup_call"
    NO_DATA_CALL = "no_data_call"
    RESPOND = "respond"
    DONE = "done"


class MessageModel(Protocol):
    def create_message(
        self,
        *,
        messages: list[dict[str, Any]],
        max_tokens: int,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]: ...


class ToolExecutor(Protocol):
    def execute_tool_calls(
        self,
        user_id: str,
        model_response: dict[str, Any],
        fallback_user_id: str | None = None,
    ) -> list[ToolCallResult]: ...


@dataclass
class TurnContext:
    user_id: str
    user_message: str
    history: list[dict[str, Any]]
    restrict_tools: frozenset[str] | None = None
    snapshot: ConnectionSnapshot | None = None
    classification: IntentClassification | None = None
    tools: list[ToolDescriptor] = field(default_factory=list)
    system_prompt: str = ""
    messages: list[dict[str, Any]] = field(default_factory=list)
    response: dict[str, Any] | None = None
    final_response: dict[str, Any] | None = None
    rounds: list[tuple[dict[str, Any], list[ToolCallResult]]] = field(default_factory=list)
    tool_results: list[ToolCallResult] = field(default_factory=list)
    retry_used: bool = False
    repair_used: bool = False
    no_data: bool = False
    model_calls: int = 0
    transitions: list[TurnState] = field(default_factory=list)

    @property
    def tool_names(self) -> set[str]:
        return {tool.name for tool in self.tools}

    @property
    def usable_results(self) -> list[ToolCallResult]:
        return [result for result in self.tool_results if not result.is_error]


@dataclass(frozen=True)
class TurnOutcome:
    response: dict[str, Any]
    tool_results: list[ToolCallResult]
    connection_status: dict[str, bool]
    matched_exactly: bool
    no_data: bool
    transitions: list[TurnState]
    model_calls: int

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": True,
            "result": self.response,
            "connectionStatus": self.connection_status,
        }
        if self.tool_results:
            payload["toolResults"] = [
                {**result.to_content_block(), "tool_name": result.tool_name}
                for result in self.tool_results
            ]
        if self.no_data:
            payload["noData"] = True
        return payload


class ConversationOrchestrator:
    """Runs one chat turn through the model/tool protocol.

    Each state has one transition method returning the next state. The retry
    and repair flags on the context are set before the corresponding call, so
    each of those rounds can happen at most once per turn.
    """

    def __init__(
        self,
        llm: MessageModel,
        executor: ToolExecutor,
        registry: ConnectionRegistry,
        catalog: ToolCatalog,
        router: IntentRouter,
        *,
        default_user_id: str,
        mode: str = "capability",
        timezone: str = "America/Los_Angeles",
        chat_max_tokens: int = 2000,
        followup_max_tokens: int = 3000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if mode not in {"capability", "intent"}:
            raise ValueError("mode must be one of: capability, intent")
        self.llm = llm
        self.executor = executor
        self.registry = registry
        self.catalog = catalog
        self.router = router
        self.default_user_id = default_user_id
        self.mode = mode
        self.timezone = timezone
        self.chat_max_tokens = chat_max_tokens
        self.followup_max_tokens = followup_max_tokens
        self._clock = clock or (lambda: datetime.now(ZoneInfo(timezone)))
        self._handlers: dict[TurnState, Callable[[TurnContext], TurnState]] = {
            TurnState.BUILD_CONTEXT: self._on_build_context,
            TurnState.FIRST_CALL: self._on_first_call,
            TurnState.RETRY_CALL: self._on_retry_call,
            TurnState.EXECUTE_TOOLS: self._on_execute_tools,
            TurnState.REPAIR_FETCH: self._on_repair_fetch,
            TurnState.FOLLOWUP_CALL: self._on_followup_call,
            TurnState.NO_DATA_CALL: self._on_no_data_call,
            TurnState.RESPOND: self._on_respond,
        }

    def run_turn(
        self,
        user_id: str | None,
        user_message: str,
        history: list[dict[str, Any]] | None = None,
        *,
        restrict_tools: Collection[str] | None = None,
    ) -> TurnOutcome:
        ctx = TurnContext(
            user_id=(user_id or "").strip() or self.default_user_id,
            user_message=user_message,
            history=_normalize_history(history),
            restrict_tools=frozenset(restrict_tools) if restrict_tools else None,
        )
        state = TurnState.BUILD_CONTEXT
        while state is not TurnState.DONE:
            if len(ctx.transitions) >= MAX_TRANSITIONS:
                raise RuntimeError(f"Turn exceeded {MAX_TRANSITIONS} transitions.")
            ctx.transitions.append(state)
            logger.debug("turn state -> %s", state.value)
            state = self._handlers[state](ctx)

        if ctx.snapshot is None or ctx.final_response is None:
            raise RuntimeError("Turn ended without a response.")
        return TurnOutcome(
            response=ctx.final_response,
            tool_results=list(ctx.tool_results),
            connection_status=ctx.snapshot.connection_status(),
            matched_exactly=ctx.snapshot.matched_exactly,
            no_data=ctx.no_data,
            transitions=list(ctx.transitions),
            model_calls=ctx.model_calls,
        )

    def run_course_assignments(self, user_id: str | None, course_id: int) -> TurnOutcome:
        return self.run_turn(
            user_id,
            f"Get all assignments for course ID {course_id} and tell me when the next assignment is due.",
            [],
            restrict_tools={ASSIGNMENT_LIST_TOOL},
        )

    def run_discussions(
        self, user_id: str | None, course_ids: Collection[int] = DEFAULT_DISCUSSION_COURSE_IDS
    ) -> TurnOutcome:
        ids = [str(course_id) for course_id in course_ids]
        courses = ids[0] if len(ids) == 1 else ", ".join(ids[:-1]) + " and " + ids[-1]
        return self.run_turn(
            user_id,
            f"Check discussion topics for courses {courses}. Provide a complete summary of any "
            "discussions that require participation, including due dates, point values, and "
            "reply requirements.",
            [],
            restrict_tools=set(CANVAS_DISCUSSION_TOOLS),
        )

    def _on_build_context(self, ctx: TurnContext) -> TurnState:
        ctx.snapshot = self.registry.snapshot(ctx.user_id)
        ctx.classification = self.router.classify(ctx.user_message)

        if self.mode == "intent":
            tools = self.catalog.load_for_intent(
                ctx.snapshot,
                ctx.classification.services,
                include_discussions=ctx.classification.mentions_discussion,
            )
            content = self.router.annotate(ctx.user_message, ctx.classification, ctx.history)
        else:
            # Turns pinned to discussion tools load them even without intent routing.
            wants_discussions = bool(
                ctx.restrict_tools and ctx.restrict_tools.intersection(CANVAS_DISCUSSION_TOOLS)
            )
            tools = self.catalog.load_for_snapshot(
                ctx.snapshot, include_discussions=wants_discussions
            )
            content = ctx.user_message
        if ctx.restrict_tools is not None:
            tools = [tool for tool in tools if tool.name in ctx.restrict_tools]
        ctx.tools = tools

        ctx.system_prompt = build_system_prompt(
            current_date=format_current_date(self._clock(), self.timezone),
            timezone=self.timezone,
            available_services=sorted(ctx.snapshot.services),
        )
        ctx.messages = [*ctx.history, {"role": "user", "content": content}]
        logger.info(
            "Turn for %s: mode=%s route=%s assignment=%s tools=%d history=%d",
            ctx.user_id,
            self.mode,
            ctx.classification.service_hint,
            ctx.classification.is_assignment_question,
            len(ctx.tools),
            len(ctx.history),
        )
        return TurnState.FIRST_CALL

    def _on_first_call(self, ctx: TurnContext) -> TurnState:
        ctx.response = self._call_model(ctx, ctx.messages, with_tools=True)
        if not ctx.tools:
            return TurnState.RESPOND
        content = ctx.response.get("content")
        if not has_tool_use(content) or check_trivial_response(first_text(content)).is_trivial:
            logger.info(
                "First response %s; forcing retry",
                "missing tool_use" if not has_tool_use(content) else "trivial",
            )
            return TurnState.RETRY_CALL
        return TurnState.EXECUTE_TOOLS

    def _on_retry_call(self, ctx: TurnContext) -> TurnState:
        ctx.retry_used = True
        messages = [*ctx.messages, {"role": "user", "content": RETRY_NUDGE}]
        ctx.response = self._call_model(ctx, messages, with_tools=True)
        if has_tool_use(ctx.response.get("content")):
            return TurnState.EXECUTE_TOOLS
        logger.info("Model declined tools after retry; continuing without tool results")
        return TurnState.RESPOND

    def _on_execute_tools(self, ctx: TurnContext) -> TurnState:
        results = self._execute_tool_calls(ctx.user_id, ctx.response or {})
        if results:
            assistant_turn = {"role": "assistant", "content": (ctx.response or {}).get("content")}
            ctx.rounds.append((assistant_turn, results))
            ctx.tool_results.extend(results)
        logger.info(
            "Tool execution produced %d result(s), %d failed",
            len(results),
            sum(1 for result in results if result.is_error),
        )

        classification = ctx.classification
        assignment_question = bool(classification and classification.is_assignment_question)
        if not ctx.usable_results:
            if assignment_question and not ctx.no_data:
                return TurnState.NO_DATA_CALL
            return TurnState.RESPOND
        if (
            assignment_question
            and not ctx.repair_used
            and ASSIGNMENT_LIST_TOOL in ctx.tool_names
            and is_fabrication_risk(ctx.tool_results)
        ):
            return TurnState.REPAIR_FETCH
        return TurnState.FOLLOWUP_CALL

    def _on_repair_fetch(self, ctx: TurnContext) -> TurnState:
        ctx.repair_used = True
        hint = ctx.classification.course_hint if ctx.classification else None
        instruction = build_forced_fetch_instruction(hint.course_id if hint else None)
        logger.info("Tool data has no assignment fields; forcing assignment fetch")
        messages = self._messages_with_rounds(ctx, trailing_text=instruction)
        response = self._call_model(ctx, messages, with_tools=True)
        if has_tool_use(response.get("content")):
            ctx.response = response
            return TurnState.EXECUTE_TOOLS
        return TurnState.FOLLOWUP_CALL

    def _on_followup_call(self, ctx: TurnContext) -> TurnState:
        messages = self._messages_with_rounds(ctx, trailing_text=FINAL_FORMAT_INSTRUCTION)
        ctx.final_response = self._call_model(
            ctx, messages, with_tools=False, max_tokens=self.followup_max_tokens
        )
        return TurnState.RESPOND

    def _on_no_data_call(self, ctx: TurnContext) -> TurnState:
        ctx.no_data = True
        logger.info("No tool data for assignment question; issuing no-data round")
        messages = [*ctx.messages, {"role": "user", "content": NO_DATA_INSTRUCTION}]
        ctx.final_response = self._call_model(ctx, messages, with_tools=False)
        return TurnState.RESPOND

    def _on_respond(self, ctx: TurnContext) -> TurnState:
        if ctx.final_response is not None:
            return TurnState.DONE
        if not ctx.tools:
            logger.info("No tools available, returning fallback message")
            disconnected = ctx.snapshot.disconnected_services() if ctx.snapshot else []
            ctx.final_response = text_envelope(build_no_tools_fallback(disconnected))
        else:
            logger.info("Tools existed but nothing was executed, returning fallback")
            ctx.final_response = text_envelope(GENERIC_RETRY_FALLBACK)
        return TurnState.DONE

    def _call_model(
        self,
        ctx: TurnContext,
        messages: list[dict[str, Any]],
        *,
        with_tools: bool,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        ctx.model_calls += 1
        tools = [tool.to_model_tool() for tool in ctx.tools] if with_tools and ctx.tools else None
        return self.llm.create_message(
            system=ctx.system_prompt,
            messages=messages,
            tools=tools,
            max_tokens=max_tokens or self.chat_max_tokens,
        )

    def _execute_tool_calls(
        self, user_id: str, response: dict[str, Any]
    ) -> list[ToolCallResult]:
        fallback = self.default_user_id if user_id != self.default_user_id else None
        try:
            return self.executor.execute_tool_calls(user_id, response, fallback_user_id=fallback)
        except Exception as exc:
            logger.warning("Tool execution failed for %s: %s", user_id, exc)
            return []

    @staticmethod
    def _messages_with_rounds(
        ctx: TurnContext, trailing_text: str | None = None
    ) -> list[dict[str, Any]]:
        messages = list(ctx.messages)
        for assistant_turn, results in ctx.rounds:
            messages.append(assistant_turn)
            messages.append(tool_results_message(results))
        if trailing_text and ctx.rounds:
            last = messages[-1]
            messages[-1] = {
                **last,
                "content": [*last["content"], {"type": "text", "text": trailing_text}],
            }
        return messages


def _normalize_history(history: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for entry in history or []:
        if not isinstance(entry, dict):
            continue
        role = entry.get("role")
        content = entry.get("content")
        if role not in {"user", "assistant"}:
            continue
        if isinstance(content, str):
            if not content.strip():
                continue
        elif not isinstance(content, list):
            continue
        out.append({"role": role, "content": content})
    return out
