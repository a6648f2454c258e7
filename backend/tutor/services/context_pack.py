"""Course / lesson metadata portion of the context pack."""

import json
from dataclasses import dataclass, field
from typing import Optional

from tutor.models.course import Course
from tutor.models.lesson import Lesson


@dataclass
class ContextPack:
    text: str = ""
    labels: list[str] = field(default_factory=list)
    has_lesson_context: bool = False
    course_context_used: bool = False


def _pick(*values) -> str:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def load_json_field(raw: Optional[str]) -> dict:
    """Parse a JSON text column holding an object. Anything else reads as {}."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


def build_context_pack(course: Optional[Course], lesson: Optional[Lesson], lang: str) -> ContextPack:
    pack = ContextPack()
    parts: list[str] = []

    if course is not None:
        title = _pick(course.title_en, course.title_kz)
        details = _pick(
            course.description_en, course.description_kz,
            course.objectives_en, course.objectives_kz,
            course.syllabus_en, course.syllabus_kz,
        )
        if title or details:
            pack.course_context_used = True
            parts.append(f"Course: {title}\nDetails: {details}".strip())
            pack.labels.append("Course metadata")

    if lesson is not None:
        lesson_title = _pick(lesson.title_en, lesson.title_kz)
        if lesson_title:
            parts.append(f"Lesson: {lesson_title}")

        ai_context = load_json_field(lesson.ai_context)
        context_kz = _pick(ai_context.get("kz"))
        context_en = _pick(ai_context.get("en"))
        order = [("kz", context_kz), ("en", context_en)]
        if lang != "kz":
            order.reverse()
        for context_lang, body in order:
            if body:
                parts.append(f"Lesson context:\n{body}")
                pack.labels.append(f"Lesson aiContext ({context_lang})")
                pack.has_lesson_context = True
                break

    pack.text = "\n\n".join(parts).strip()
    return pack


def structured_sources(pack: ContextPack, citation_meta: list) -> list[dict]:
    """Sources list for the response: course metadata, then one entry per cited PDF."""
    sources: list[dict] = []
    if pack.course_context_used:
        sources.append({"type": "course", "title": "Course metadata"})
    for meta in citation_meta:
        entry = {
            "type": "pdf",
            "title": meta.name,
            "docId": meta.resource_id,
            "excerptIds": list(meta.excerpts),
        }
        pages = meta.page_range()
        if pages:
            entry["pages"] = pages
        sources.append(entry)
    return sources
