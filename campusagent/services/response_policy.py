from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import re
from typing import Iterable
from zoneinfo import ZoneInfo

from campusagent.tools.base import ToolCallResult

from .connection_registry import SERVICE_LABELS

TRIVIAL_MAX_CHARS = 12
_TRIVIAL_PATTERN = re.compile(r"^(ok(ay)?|sure|got it|alright|k|yes|yep)[.!]*$", re.IGNORECASE)

ASSIGNMENT_MARKERS = (
    '"due_at"',
    '"assignment_id"',
    '"assignment_group_id"',
    '"points_possible"',
    '"submission_types"',
    '"assignments"',
    '"has_submitted_submissions"',
)

COURSE_LIST_MARKERS = (
    '"course_code"',
    '"enrollment_term_id"',
    '"courses"',
)

ASSIGNMENT_LIST_TOOL = "CANVAS_GET_ALL_ASSIGNMENTS"

RETRY_NUDGE = (
    "Call the appropriate tool now. Return the actual answer in short paragraphs with no acknowledgments."
)

NO_TOOLS_FALLBACK_HEADER = "Looks like I need access first:"
NO_TOOLS_FALLBACK_FOOTER = "Tap the matching Connect button above, then ask me again."
NO_TOOLS_LOAD_FAILED = (
    "I could not load your data right now. Try reconnecting your account and ask me again."
)
GENERIC_RETRY_FALLBACK = (
    "Hmm, I could not load that right now. Try reconnecting your account, then ask me again."
)


@dataclass(frozen=True)
class TrivialCheck:
    is_trivial: bool
    normalized: str


@dataclass(frozen=True)
class ToolDataAssessment:
    has_results: bool
    has_assignment_data: bool
    has_course_list: bool


def check_trivial_response(text: str | None) -> TrivialCheck:
    normalized = (text or "").strip()
    if not normalized or len(normalized) > TRIVIAL_MAX_CHARS:
        return TrivialCheck(is_trivial=False, normalized=normalized)
    return TrivialCheck(
        is_trivial=bool(_TRIVIAL_PATTERN.match(normalized)),
        normalized=normalized,
    )


def assess_tool_data(results: list[ToolCallResult]) -> ToolDataAssessment:
    payload = "\n".join(result.content.lower() for result in results if not result.is_error)
    return ToolDataAssessment(
        has_results=bool(results),
        has_assignment_data=any(marker in payload for marker in ASSIGNMENT_MARKERS),
        has_course_list=any(marker in payload for marker in COURSE_LIST_MARKERS),
    )


def is_fabrication_risk(results: list[ToolCallResult], assignment_question: bool = True) -> bool:
    """True when an assignment question only got a course list back, with no assignment data."""
    if not assignment_question or not results:
        return False
    assessment = assess_tool_data(results)
    return assessment.has_course_list and not assessment.has_assignment_data


def format_current_date(now: datetime | None = None, timezone: str = "America/Los_Angeles") -> str:
    zone = ZoneInfo(timezone)
    local = (now or datetime.now(zone)).astimezone(zone)
    return f"{local.strftime('%B')} {local.day}, {local.year}"


def build_system_prompt(
    current_date: str,
    timezone: str,
    available_services: Iterable[str],
) -> str:
    services = [SERVICE_LABELS.get(service, service) for service in available_services]
    capability_line = ", ".join(services) if services else "none right now"
    return f"""
You are a warm, intelligent personal assistant who speaks like a real human.
You help students manage time, tasks, and communication using real data from Gmail, Google Calendar, Canvas, Zoom, and Google Meetings via tools.

VOICE & STYLE (strict)
- Answer in short, natural paragraphs with complete sentences.
- Do not use bullets, numbered lists, tables, code blocks, markdown, or label-style formatting.
- Do not use symbols like "•", "|" or colons-as-labels. Do not use em dashes.
- Do not mention tools, services, connections, accounts, or permissions.
- Begin with the answer itself. Never reply with only "OK" (VERY IMPORTANT), "Sure", "Got it", or similar acknowledgments.

TOOL USAGE CONTRACT (strict)
- If the user asks about any date, day, time, schedule, meetings, or events, you MUST call the calendar or meetings tool first and then answer with the results in natural sentences.
  - Interpret dates in the {timezone} time zone.
  - If a specific calendar date is given (e.g., "October 29"), check that 24-hour local window (00:00 to 24:00).
  - If the date is ambiguous (e.g., "next Friday"), use the nearest future date in {timezone}.
- If the user asks to read, email, draft, or send, you MUST call the Gmail tool first and then present the email in natural sentences (subject and a concise body summary in prose).
- If the user asks about assignments, courses, or discussions, you MUST call the Canvas tool first and only include assignments due today or later.
- Do not guess. Only describe information returned by the tools.

OUTPUT SHAPE (strict)
- One or two compact paragraphs maximum.
- Integrate details naturally in sentences (title, date, time range, location woven into prose).
- If nothing relevant is found, say so plainly in one sentence (e.g., "I didn't find anything scheduled for that day.").
- Do not suggest connecting accounts, pressing buttons, or changing settings.
- Do not show raw data, JSON, IDs, URLs, email headers, or technical descriptions. No meta-process narration.

ANTI-FABRICATION (strict)
- Dates, due dates, assignment names, and event times must come only from tool results.
- Never invent, estimate, or compute date ranges yourself.
- If the data you would need was not returned, say plainly that you did not find it.
- Do not speculate about why something is missing.

COMPLETENESS & TONE
- Always produce a complete, helpful answer in your first message after a user request.
- Keep answers concise, friendly, and confident.
- Avoid filler like "fetching" or "retrieving".

ENVIRONMENT HINTS
- TODAY: {current_date}
- TIME ZONE: {timezone}
- AVAILABLE DATA SOURCES: {capability_line}
""".strip()


def build_forced_fetch_instruction(course_id: int | None) -> str:
    target = f"course id {course_id}" if course_id is not None else "the course the user asked about"
    return (
        "The data returned so far does not include any assignments or due dates. "
        f"Call {ASSIGNMENT_LIST_TOOL} now for {target} before answering. "
        "Do not answer from the course list alone."
    )


FINAL_FORMAT_INSTRUCTION = (
    "Now answer the original question using only the tool results above, "
    "in one or two short conversational paragraphs."
)

NO_DATA_INSTRUCTION = (
    "No assignment data was retrieved for this question. Tell the user plainly that you could not "
    "find it. Do not invent, estimate, or compute any dates or assignment names."
)


def build_no_tools_fallback(disconnected_services: list[str]) -> str:
    if not disconnected_services:
        return NO_TOOLS_LOAD_FAILED
    lines = [f"• {SERVICE_LABELS.get(service, service)} not connected" for service in disconnected_services]
    return NO_TOOLS_FALLBACK_HEADER + "\n" + "\n".join(lines) + "\n\n" + NO_TOOLS_FALLBACK_FOOTER
