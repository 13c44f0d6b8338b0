from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any

from .course_directory import CourseDirectory, CourseHint

MAIL_TERMS = (
    "gmail",
    "email",
)

COURSEWORK_TERMS = (
    "canvas",
    "course",
    "assignment",
    "discussion",
)

ASSIGNMENT_TERMS = (
    "assignment",
    "homework",
    "due",
    "deadline",
)

DISCUSSION_TERMS = (
    "discussion",
)

FOLLOWUP_PHRASES = (
    "yes",
    "yeah",
    "yep",
    "sure",
    "ok",
    "okay",
    "which one",
    "which",
    "first",
    "the first",
    "second",
    "last",
    "that one",
    "this one",
    "when",
    "what about",
    "and that",
    "the next",
    "next one",
)

FOLLOWUP_MAX_CHARS = 48

SERVICE_MAIL = "gmail"
SERVICE_COURSEWORK = "canvas"
SERVICE_DEFAULT = "default"

DEFAULT_BUNDLE_SERVICES = (SERVICE_MAIL, SERVICE_COURSEWORK)


@dataclass(frozen=True)
class IntentClassification:
    service_hint: str
    reason: str
    is_assignment_question: bool
    mentions_discussion: bool = False
    course_hint: CourseHint | None = None

    @property
    def services(self) -> tuple[str, ...]:
        if self.service_hint == SERVICE_DEFAULT:
            return DEFAULT_BUNDLE_SERVICES
        return (self.service_hint,)


def is_assignment_question(message: str) -> bool:
    text = (message or "").lower()
    return any(term in text for term in ASSIGNMENT_TERMS)


def looks_like_followup(message: str, history: list[dict[str, Any]] | None) -> bool:
    text = re.sub(r"\s+", " ", (message or "").strip().lower())
    if not text or len(text) > FOLLOWUP_MAX_CHARS:
        return False
    previous = _last_assistant_text(history or [])
    if "assignment" not in previous.lower():
        return False
    bare = text.rstrip("?.!")
    return any(
        bare == phrase or text.startswith((f"{phrase} ", f"{phrase},"))
        for phrase in FOLLOWUP_PHRASES
    )


class IntentRouter:
    def __init__(self, course_directory: CourseDirectory) -> None:
        self.course_directory = course_directory

    def classify(self, message: str) -> IntentClassification:
        text = (message or "").strip().lower()
        course_hint = self.course_directory.resolve(text)
        assignment = is_assignment_question(text)
        discussion = any(term in text for term in DISCUSSION_TERMS)
        wants_mail = any(term in text for term in MAIL_TERMS)
        wants_coursework = course_hint is not None or any(
            term in text for term in COURSEWORK_TERMS
        )

        if wants_mail and wants_coursework:
            service_hint, reason = SERVICE_DEFAULT, "matched_mail_and_coursework"
        elif wants_mail:
            service_hint, reason = SERVICE_MAIL, "matched_mail_term"
        elif wants_coursework:
            service_hint = SERVICE_COURSEWORK
            reason = "matched_course_keyword" if course_hint else "matched_coursework_term"
        else:
            service_hint, reason = SERVICE_DEFAULT, "no_service_hint"

        return IntentClassification(
            service_hint=service_hint,
            reason=reason,
            is_assignment_question=assignment,
            mentions_discussion=discussion,
            course_hint=course_hint,
        )

    def annotate(
        self,
        message: str,
        classification: IntentClassification,
        history: list[dict[str, Any]] | None = None,
    ) -> str:
        notes: list[str] = []
        hint = classification.course_hint
        if hint is not None:
            notes.append(
                f"The user is asking about the course matching '{hint.keyword}', "
                f"Canvas course id {hint.course_id}. Use this course id when calling course tools."
            )
        if classification.is_assignment_question:
            notes.append(
                "Call the assignment listing tool before answering and use only the due dates it returns."
            )
        if looks_like_followup(message, history):
            notes.append(
                "This is a follow-up to your previous answer about assignments. Reason over the "
                "assignments and due dates already mentioned in this conversation instead of starting over."
            )
        if not notes:
            return message
        return message + "\n\n[Context: " + " ".join(notes) + "]"


def _last_assistant_text(history: list[dict[str, Any]]) -> str:
    for entry in reversed(history):
        if not isinstance(entry, dict) or entry.get("role") != "assistant":
            continue
        content = entry.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return " ".join(
                str(block.get("text") or "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            )
        return ""
    return ""
