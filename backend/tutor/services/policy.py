"""Pedagogical mode and answer-policy resolution.

Mode precedence: request ``mode`` -> ``contextType`` -> URL path -> lesson
``defaultMode`` -> course ``defaultMode`` -> quiz lessons -> course-level chat
-> ``lesson``. Each policy field is taken from the lesson override, then the
course override, then the mode default.
"""

from dataclasses import dataclass, asdict
from typing import Optional

MODES = ("lesson", "course", "quiz", "assignment")
RESTRICTED_MODES = ("quiz", "assignment")


@dataclass(frozen=True)
class Policy:
    allow_direct_answers: bool
    allow_full_solutions: bool
    style: str  # explain | socratic
    citation_required: bool = True
    max_answer_length: int = 0  # 0 = unlimited

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "allowDirectAnswers": data["allow_direct_answers"],
            "allowFullSolutions": data["allow_full_solutions"],
            "style": data["style"],
            "citationRequired": data["citation_required"],
            "maxAnswerLength": data["max_answer_length"],
        }


DEFAULT_POLICIES = {
    "lesson": Policy(allow_direct_answers=True, allow_full_solutions=True, style="explain"),
    "course": Policy(allow_direct_answers=True, allow_full_solutions=True, style="explain"),
    "quiz": Policy(allow_direct_answers=False, allow_full_solutions=False, style="socratic"),
    "assignment": Policy(allow_direct_answers=False, allow_full_solutions=False, style="socratic"),
}


def mode_from_path(path: str) -> str:
    if "/assignment/" in (path or ""):
        return "assignment"
    if "/quiz/" in (path or ""):
        return "quiz"
    return ""


def _valid_mode(value) -> str:
    return value if isinstance(value, str) and value in MODES else ""


def resolve_mode(
    body_mode=None,
    context_type=None,
    path: str = "",
    lesson_policy: Optional[dict] = None,
    course_policy: Optional[dict] = None,
    lesson_type: str = "",
    course_id: str = "",
    lesson_id: str = "",
) -> tuple[str, str]:
    """Return (mode, source) where source is body|context|path|policy|inferred."""
    lesson_policy = lesson_policy or {}
    course_policy = course_policy or {}

    if _valid_mode(body_mode):
        return body_mode, "body"
    if _valid_mode(context_type):
        return context_type, "context"
    from_path = mode_from_path(path)
    if from_path:
        return from_path, "path"

    configured = lesson_policy.get("defaultMode") or course_policy.get("defaultMode")
    if configured:
        # An unknown configured mode still counts as configured; it falls back to lesson.
        return (_valid_mode(configured) or "lesson"), "policy"

    if lesson_type == "quiz":
        return "quiz", "inferred"
    if course_id and not lesson_id:
        return "course", "inferred"
    return "lesson", "inferred"


def _field(name: str, kind: type, lesson_policy: dict, course_policy: dict, default):
    for source in (lesson_policy, course_policy):
        value = source.get(name)
        # bool is an int subclass; keep it out of numeric fields
        if isinstance(value, kind) and not (kind is int and isinstance(value, bool)):
            return value
    return default


def resolve_policy(mode: str, lesson_policy: Optional[dict] = None, course_policy: Optional[dict] = None) -> Policy:
    lesson_policy = lesson_policy or {}
    course_policy = course_policy or {}
    default = DEFAULT_POLICIES.get(mode, DEFAULT_POLICIES["lesson"])

    style = lesson_policy.get("style") or course_policy.get("style") or default.style
    return Policy(
        allow_direct_answers=_field("allowDirectAnswers", bool, lesson_policy, course_policy, default.allow_direct_answers),
        allow_full_solutions=_field("allowFullSolutions", bool, lesson_policy, course_policy, default.allow_full_solutions),
        style=str(style),
        citation_required=_field("citationRequired", bool, lesson_policy, course_policy, True),
        max_answer_length=max(_field("maxAnswerLength", int, lesson_policy, course_policy, 0), 0),
    )


def is_restricted(mode: str, policy: Policy) -> bool:
    return mode in RESTRICTED_MODES and not policy.allow_direct_answers
