"""Model-output parsing and the grounding checks applied to every answer.

The model is asked for JSON, but its output is never trusted beyond
:class:`ParsedModelOutput`. After parsing, three overrides may replace the
answer with a localized template:

1. the question names a source (or a sensitive topic) the excerpts do not cover
2. restricted mode and the student is fishing for the answer
3. invalid/missing citations, a self-reported lack of context, or the wrong script
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Optional

from tutor.services.detectors import (
    SENSITIVE_TERMS,
    SOURCE_WORDS,
    contains_any_term,
    is_explicit_source_query,
    is_mostly_cyrillic,
    is_mostly_latin,
    related_keywords,
)
from tutor.services.policy import Policy
from tutor.services.scoring import extract_keywords, tokenize_query

CONFIDENCE_LEVELS = ("low", "medium", "high")

_META_LINE = re.compile(r"^\s*(Sources?|Citations?)\s*:.*$", re.IGNORECASE | re.MULTILINE)
_QUESTION_PREFIX = re.compile(
    r"^(Clarifying question|Нақтылау сұрағы|Уточняющий вопрос)\s*:\s*", re.IGNORECASE
)


# ── Localized responses ──────────────────────────────────────────────────────

NO_CONTEXT_FALLBACK = {
    "en": "The teacher has not added lesson context yet. Please ask a more specific question or contact your teacher.",
    "kz": "Мұғалім бұл сабаққа әлі контекст қоспаған. Нақтырақ сұрақ қойыңыз немесе мұғаліміңізге хабарласыңыз.",
    "ru": "Преподаватель ещё не добавил контекст к этому уроку. Задайте более конкретный вопрос или свяжитесь с преподавателем.",
}

PDF_UNREADABLE_FALLBACK = {
    "en": "Lesson PDFs are attached but their text could not be read yet. Please try again later or ask a more specific question.",
    "kz": "Сабаққа PDF файлдары тіркелген, бірақ олардың мәтінін әлі оқу мүмкін болмады. Кейінірек қайталап көріңіз немесе нақтырақ сұрақ қойыңыз.",
    "ru": "К уроку прикреплены PDF-файлы, но их текст пока не удалось прочитать. Попробуйте позже или задайте более конкретный вопрос.",
}

_UNSUPPORTED = {
    "en": (
        "I can’t find direct support for that in the provided excerpts.",
        "Related context (from excerpts): {related}",
        "Clarifying question: Which specific section or concept should I focus on?",
    ),
    "kz": (
        "Берілген үзінділерде бұл сұраққа тікелей дәлел табылмады.",
        "Үзінділердегі байланысты мазмұн: {related}",
        "Нақтылау сұрағы: Қай бөлімге немесе қандай ұғымға назар аударғаным дұрыс?",
    ),
    "ru": (
        "В предоставленных отрывках нет прямого подтверждения этому.",
        "Связанная информация из выдержек: {related}",
        "Уточняющий вопрос: на какой раздел или термин стоит ориентироваться?",
    ),
}

_NOT_MENTIONED = {
    "en": "Not mentioned in the provided excerpts.",
    "kz": "Берілген үзінділерде бұл туралы нақты айтылмайды.",
    "ru": "В предоставленных выдержках это не упоминается.",
}

_HINT = {
    "en": (
        "I can help with hints, but I cannot provide a full direct answer here.",
        "Here are the closest related points from the materials: {related}",
        "Clarifying question: Which part are you stuck on?",
    ),
    "kz": (
        "Мен тек бағыт-бағдар мен кеңес бере аламын, толық жауап бере алмаймын.",
        "Материалдан жақын тақырыптар: {related}",
        "Нақтылау сұрағы: Қай қадамда тоқтап қалдыңыз?",
    ),
    "ru": (
        "Я могу помочь подсказками, но не могу дать полный прямой ответ.",
        "Ближайшие связанные темы из материалов: {related}",
        "Уточняющий вопрос: На каком шаге вы застряли?",
    ),
}


def no_context_reply(lang: str, pdf_unreadable: bool) -> str:
    table = PDF_UNREADABLE_FALLBACK if pdf_unreadable else NO_CONTEXT_FALLBACK
    return table.get(lang, table["en"])


def summarize_related(lang: str, keywords: list[str]) -> str:
    words = ", ".join(keywords[:5])
    if lang == "kz":
        if words:
            return f"Берілген үзінділердегі байланысты тақырыптар: {words}."
        return "Берілген үзінділерде байланысты тақырыптар бар, нақтырақ сұрақ қойыңыз."
    if lang == "ru":
        if words:
            return f"Связанные темы в выдержках: {words}."
        return "В выдержках есть связанные темы; уточните, что именно нужно."
    if words:
        return f"Related topics from the excerpts: {words}."
    return "Related topics appear in the excerpts; please clarify your question."


def strip_question_prefix(question: str) -> str:
    return _QUESTION_PREFIX.sub("", question).strip()


@dataclass(frozen=True)
class Template:
    answer: str
    clarifying_question: str


def unsupported_template(lang: str, related: str) -> Template:
    head, related_line, question = _UNSUPPORTED.get(lang, _UNSUPPORTED["en"])
    answer = "\n".join([head, related_line.format(related=related), question])
    return Template(answer, strip_question_prefix(question))


def not_mentioned_template(lang: str, related: str) -> Template:
    _, related_line, question = _UNSUPPORTED.get(lang, _UNSUPPORTED["en"])
    statement = _NOT_MENTIONED.get(lang, _NOT_MENTIONED["en"])
    answer = "\n".join([statement, related_line.format(related=related), question])
    return Template(answer, strip_question_prefix(question))


def hint_template(lang: str, related: str) -> Template:
    head, related_line, question = _HINT.get(lang, _HINT["en"])
    answer = "\n".join([head, related_line.format(related=related), question])
    return Template(answer, strip_question_prefix(question))


# ── Parsing ──────────────────────────────────────────────────────────────────

@dataclass
class ParsedModelOutput:
    answer: str
    citations: list[str] = field(default_factory=list)
    confidence: Optional[str] = None
    needs_more_context: Optional[bool] = None
    clarifying_question: Optional[str] = None


def _strip_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return text


def strip_meta_lines(text: str) -> str:
    """Drop "Sources: ..." / "Citations: ..." lines the model sometimes adds."""
    return _META_LINE.sub("", text).strip()


def parse_model_output(raw: str) -> ParsedModelOutput:
    """Parse the model's JSON reply. Anything unparseable becomes a bare answer."""
    raw = raw or ""
    parsed = ParsedModelOutput(answer=raw or "Sorry, I could not generate a reply.")
    if not raw:
        return parsed
    try:
        data = json.loads(_strip_fence(raw))
    except ValueError:
        return parsed
    if not isinstance(data, dict):
        return parsed

    if isinstance(data.get("answer"), str):
        parsed.answer = data["answer"]
    if isinstance(data.get("citations"), list):
        parsed.citations = [c for c in data["citations"] if isinstance(c, str)]
    if data.get("confidence") in CONFIDENCE_LEVELS:
        parsed.confidence = data["confidence"]
    if isinstance(data.get("needsMoreContext"), bool):
        parsed.needs_more_context = data["needsMoreContext"]
    if isinstance(data.get("clarifyingQuestion"), str):
        parsed.clarifying_question = data["clarifyingQuestion"]
    return parsed


# ── Grounding checks ─────────────────────────────────────────────────────────

def source_keywords(message: str) -> list[str]:
    """Topic words of a question, minus words that only name the source."""
    words = list(dict.fromkeys(
        extract_keywords(message) + [t for t in tokenize_query(message) if len(t) >= 4]
    ))
    return [w for w in words if w not in SOURCE_WORDS]


def should_force_not_mentioned(message: str, excerpt_texts: list[str]) -> bool:
    """True when the excerpts cannot answer a source-bound or sensitive question.

    The explicit-source and sensitive-topic triggers are independent; either
    one is enough. Nothing fires when no excerpt was selected.
    """
    if not excerpt_texts:
        return False
    excerpts = " ".join(excerpt_texts).lower()

    keywords = source_keywords(message)
    mentioned = contains_any_term(excerpts, keywords) if keywords else True
    if is_explicit_source_query(message) and not mentioned:
        return True

    sensitive_asked = contains_any_term(message.lower(), SENSITIVE_TERMS)
    return sensitive_asked and not contains_any_term(excerpts, SENSITIVE_TERMS)


def language_mismatch(answer: str, lang: str) -> bool:
    if lang == "en":
        return is_mostly_cyrillic(answer)
    if lang in ("kz", "ru"):
        return is_mostly_latin(answer)
    return False


@dataclass
class ValidatedAnswer:
    answer: str
    citations: list[str]
    confidence: Optional[str]
    needs_more_context: Optional[bool]
    clarifying_question: Optional[str]
    outcome: str  # ok | unsupported | error_recovered | policy_refusal
    invalid_citations: bool = False


def validate(
    parsed: ParsedModelOutput,
    *,
    message: str,
    lang: str,
    policy: Policy,
    chunk_ids: list[str],
    excerpt_texts: list[str],
    force_hint: bool = False,
) -> ValidatedAnswer:
    """Apply the override rules to a parsed reply and classify the outcome."""
    related = summarize_related(lang, related_keywords(excerpt_texts))
    selected = set(chunk_ids)

    answer = strip_meta_lines(parsed.answer)
    citations = list(parsed.citations)
    confidence = parsed.confidence
    needs_more_context = parsed.needs_more_context
    clarifying_question = parsed.clarifying_question

    had_invalid = any(c not in selected for c in citations)
    if had_invalid:
        citations = [c for c in citations if c in selected]
    citation_required = policy.citation_required and bool(selected)
    citation_issue = citation_required and not citations and not had_invalid
    mismatch = language_mismatch(answer, lang)

    force_not_mentioned = should_force_not_mentioned(message, excerpt_texts)
    overridden = False

    if force_not_mentioned:
        template = not_mentioned_template(lang, related)
        answer, clarifying_question = template.answer, template.clarifying_question
        citations = chunk_ids[:2]
        confidence, needs_more_context = "low", True
        overridden = True

    if force_hint:
        template = hint_template(lang, related) if chunk_ids else unsupported_template(lang, related)
        answer, clarifying_question = template.answer, template.clarifying_question
        citations = chunk_ids[:2]
        confidence, needs_more_context = "low", True
        overridden = True

    if not overridden and (citation_issue or needs_more_context or mismatch):
        template = unsupported_template(lang, related)
        answer, clarifying_question = template.answer, template.clarifying_question
        citations = []
        confidence, needs_more_context = "low", True
        overridden = True

    if not overridden and policy.max_answer_length > 0:
        answer = answer[: policy.max_answer_length]

    if force_hint:
        outcome = "policy_refusal"
    elif citation_issue or mismatch or had_invalid:
        outcome = "error_recovered"
    elif needs_more_context:
        outcome = "unsupported"
    else:
        outcome = "ok"

    return ValidatedAnswer(
        answer=answer,
        citations=citations,
        confidence=confidence,
        needs_more_context=needs_more_context,
        clarifying_question=clarifying_question,
        outcome=outcome,
        invalid_citations=had_invalid,
    )
