"""The chat turn, end to end.

resolve language -> read quota -> load course/lesson -> resolve mode/policy
-> resolve thread (replay if retried) -> enforce quota -> select PDF chunks
-> call the model (or a canned reply) -> validate -> commit turn -> analytics
"""

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tutor.config import settings
from tutor.errors import DependencyError
from tutor.models.course import Course
from tutor.models.lesson import Lesson
from tutor.models.thread import Message
from tutor.schemas.chat import ChatRequest, ChatResponse, Remaining, Usage
from tutor.services import ai_client
from tutor.services.analytics import record_turn
from tutor.services.context_pack import build_context_pack, load_json_field, structured_sources
from tutor.services.detectors import detect_cheating_intent, resolve_lang
from tutor.services.ledger import (
    AssistantTurn,
    ConcurrentDuplicate,
    QuotaSnapshot,
    ResolvedThread,
    commit_turn,
    enforce_quota,
    find_replay,
    load_history,
    read_quota,
    resolve_thread,
)
from tutor.services.pdf_cache import lesson_pdf_documents, load_document_text
from tutor.services.policy import Policy, is_restricted, resolve_mode, resolve_policy
from tutor.services.selection import MAX_DOCUMENTS, ChunkSelector, QueryProfile
from tutor.services.trace import RequestTrace
from tutor.services.validator import (
    ParsedModelOutput,
    no_context_reply,
    parse_model_output,
    validate,
)

LANGUAGE_NAMES = {"en": "English", "kz": "Kazakh", "ru": "Russian"}


# ── Prompt ───────────────────────────────────────────────────────────────────

def build_system_prompt(lang: str, mode: str, policy: Policy) -> str:
    language = LANGUAGE_NAMES.get(lang, "English")
    restricted_mode = mode in ("quiz", "assignment")
    style = (
        "Use a Socratic style with guiding questions and hints."
        if policy.style == "socratic"
        else "Use a clear explanatory style with concise steps."
    )
    direct = (
        "Do not provide final answers or full solutions. Offer hints, conceptual guidance, and questions only."
        if restricted_mode and not policy.allow_direct_answers
        else "Direct answers are allowed when supported by citations."
    )
    solutions = (
        "Do not provide full worked solutions. Provide partial steps only."
        if restricted_mode and not policy.allow_full_solutions
        else "Full solutions are allowed when supported by citations."
    )
    lines = [
        "You are a helpful tutor for this platform. Use ONLY the provided context pack. "
        "If the context is insufficient, ask a clarifying question. Do not fabricate references or facts.",
        'If the user asks "according to the PDF/lesson/chapter" and the information is not present in the '
        'provided excerpts, respond exactly: "Not mentioned in the provided excerpts." Then provide only '
        "related context labeled as related, and ask one clarifying question.",
        "Do not include sources or citations text inside the answer string.",
        f"Output must be ONLY in {language}. Do not mix languages. Translate any excerpt content into {language}.",
        f"{style} {direct} {solutions}",
    ]
    if policy.max_answer_length > 0:
        lines.append(f"Keep the answer under {policy.max_answer_length} characters.")
    lines += [
        'Return a JSON object with keys: answer (string), citations (array of chunk ids), '
        'confidence ("low"|"medium"|"high"), needsMoreContext (boolean), clarifyingQuestion (string or null).',
        "Every substantive claim must include at least one citation id from the provided chunks.",
        "If you cannot support the answer, set needsMoreContext=true, state that the excerpts do not support it, "
        "provide a brief related summary using citations, and ask one clarifying question.",
    ]
    return "\n".join(lines)


def context_block(context_text: str) -> str:
    return f"Context pack:\n{context_text}" if context_text else "Context pack: (empty)"


# ── Responses ────────────────────────────────────────────────────────────────

def _response(thread_id: str, turn: AssistantTurn, quota: QuotaSnapshot) -> ChatResponse:
    return ChatResponse(
        answer=turn.content,
        thread_id=thread_id,
        usage=Usage(input_tokens=turn.input_tokens, output_tokens=turn.output_tokens),
        sources=turn.sources,
        citations=turn.citations,
        citation_meta=turn.citation_meta,
        pdf_unreadable=turn.pdf_unreadable,
        confidence=turn.confidence,
        needs_more_context=turn.needs_more_context,
        clarifying_question=turn.clarifying_question,
        mode=turn.mode,
        policy_applied=turn.policy_applied,
        remaining=Remaining(**quota.remaining()),
    )


def replay_response(stored: Message, quota: QuotaSnapshot) -> ChatResponse:
    """Rebuild the response of an already-committed turn from its stored message."""
    turn = AssistantTurn(
        content=stored.content or "",
        model=stored.model or "",
        input_tokens=stored.input_tokens or 0,
        output_tokens=stored.output_tokens or 0,
        sources=json.loads(stored.sources or "[]"),
        citations=json.loads(stored.citations or "[]"),
        citation_meta=json.loads(stored.citation_meta or "[]"),
        mode=stored.mode or "lesson",
        policy_applied=json.loads(stored.policy_applied or "{}"),
        confidence=stored.confidence,
        needs_more_context=stored.needs_more_context,
        clarifying_question=stored.clarifying_question,
        pdf_unreadable=bool(stored.pdf_unreadable),
    )
    return _response(stored.thread_id, turn, quota)


# ── Pipeline ─────────────────────────────────────────────────────────────────

def _load_scope(db: Session, request: ChatRequest, trace: RequestTrace) -> tuple[Optional[Course], Optional[Lesson]]:
    trace = trace.at("context:load").info()
    try:
        course = db.get(Course, request.course_id) if request.course_id else None
        lesson = db.get(Lesson, request.lesson_id) if request.lesson_id else None
    except SQLAlchemyError as e:
        raise trace.fail(DependencyError, "context_read_failed", "Failed to load context.", str(e)) from e
    return course, lesson


def _select_pdf_context(db: Session, lesson: Optional[Lesson], message: str, trace: RequestTrace) -> tuple[ChunkSelector, int]:
    selector = ChunkSelector(
        QueryProfile.from_message(message),
        chunk_size=settings.RAG_CHUNK_SIZE,
        overlap=settings.RAG_CHUNK_OVERLAP,
    )
    if selector.query.keywords:
        trace.at("pdf:lexical:extractKeywords").info(count=len(selector.query.keywords))

    documents = lesson_pdf_documents(lesson)
    trace.at("pdf:list").info(found=len(documents), lessonId=lesson.id if lesson else "")
    for document in documents[:MAX_DOCUMENTS]:
        if selector.exhausted:
            break
        trace.at("pdf:resolve").info(
            resourceId=document.id, name=document.name, resolved=bool(document.storage_path)
        )
        text = load_document_text(db, document, trace)
        selector.add_document(document.id, document.name, text, trace)

    trace.at("pdf:attach").info(
        attachedCharsTotal=selector.chars_used, attachedPdfsCount=selector.attached_documents
    )
    return selector, len(documents)


async def run_chat(
    db: Session,
    user_id: str,
    request: ChatRequest,
    trace: RequestTrace,
    cookie_lang: str = "",
    accept_language: str = "",
) -> ChatResponse:
    message = request.message
    lang, lang_source = resolve_lang(request.lang, message, cookie_lang, accept_language)
    trace.at("context:lang").info(lang=lang, source=lang_source)

    now = datetime.now(timezone.utc)
    quota = read_quota(db, user_id, now, trace)

    course, lesson = _load_scope(db, request, trace)
    pack = build_context_pack(course, lesson, lang)
    trace.at("context:pack").info(hasLessonContext=pack.has_lesson_context, labels=pack.labels)

    lesson_policy = load_json_field(lesson.ai_policy) if lesson else {}
    course_policy = load_json_field(course.ai_policy) if course else {}
    mode, mode_source = resolve_mode(
        request.mode,
        request.context_type,
        request.path,
        lesson_policy,
        course_policy,
        lesson_type=lesson.type if lesson else "",
        course_id=request.course_id,
        lesson_id=request.lesson_id,
    )
    trace.at("context:mode").info(mode=mode, source=mode_source)
    policy = resolve_policy(mode, lesson_policy, course_policy)
    force_hint = is_restricted(mode, policy) and detect_cheating_intent(message)
    if force_hint:
        trace.at("policy:intercept").warn(mode=mode, reason="cheating_intent")

    thread = resolve_thread(
        db, user_id, request.course_id, request.lesson_id, request.thread_id, request.new_thread, trace
    )
    stored = find_replay(db, thread, request.client_request_id, trace)
    if stored is not None:
        return replay_response(stored, quota)
    enforce_quota(quota, trace)

    selector, pdf_found = _select_pdf_context(db, lesson, message, trace)
    pdf_unreadable = pdf_found > 0 and not selector.context_parts
    sources = structured_sources(pack, selector.citation_meta)
    citation_meta = [meta.to_dict() for meta in selector.citation_meta]
    history = load_history(db, thread, trace)

    if not pack.has_lesson_context and not selector.context_parts:
        trace.at("context:missing").info(pdfFoundCount=pdf_found, pdfUnreadable=pdf_unreadable)
        turn = AssistantTurn(
            content=no_context_reply(lang, pdf_unreadable),
            model="",
            input_tokens=0,
            output_tokens=0,
            sources=sources,
            mode=mode,
            policy_applied=policy.to_dict(),
            pdf_unreadable=pdf_unreadable,
        )
        return _finish(db, user_id, request, thread, turn, "unsupported", mode, now, trace)

    if force_hint:
        parsed, reply = ParsedModelOutput(answer=""), ai_client.ModelReply(text="")
    else:
        context_text = "\n\n".join([pack.text, *selector.context_parts]).strip()
        reply = await ai_client.chat(
            system=f"{build_system_prompt(lang, mode, policy)}\n\n{context_block(context_text)}",
            messages=[*history, {"role": "user", "content": message}],
            trace=trace,
        )
        trace.at("model:parse").info()
        parsed = parse_model_output(reply.text)

    trace.at("model:validate").info()
    checked = validate(
        parsed,
        message=message,
        lang=lang,
        policy=policy,
        chunk_ids=selector.chunk_ids,
        excerpt_texts=selector.excerpt_texts,
        force_hint=force_hint,
    )
    if checked.outcome == "error_recovered":
        trace.at("model:validate").warn(code="model_output_recovered", invalidCitations=checked.invalid_citations)

    turn = AssistantTurn(
        content=checked.answer,
        model=reply.model,
        input_tokens=reply.input_tokens,
        output_tokens=reply.output_tokens,
        sources=sources,
        citations=checked.citations,
        citation_meta=citation_meta,
        mode=mode,
        policy_applied=policy.to_dict(),
        confidence=checked.confidence,
        needs_more_context=checked.needs_more_context,
        clarifying_question=checked.clarifying_question,
        pdf_unreadable=pdf_unreadable,
    )
    return _finish(db, user_id, request, thread, turn, checked.outcome, mode, now, trace)


def _finish(
    db: Session,
    user_id: str,
    request: ChatRequest,
    thread: ResolvedThread,
    turn: AssistantTurn,
    outcome: str,
    mode: str,
    now: datetime,
    trace: RequestTrace,
) -> ChatResponse:
    try:
        after = commit_turn(
            db,
            user_id=user_id,
            course_id=request.course_id,
            lesson_id=request.lesson_id,
            thread=thread,
            client_request_id=request.client_request_id,
            user_message=request.message,
            reply=turn,
            now=now,
            trace=trace,
        )
    except ConcurrentDuplicate as dup:
        return replay_response(dup.stored, read_quota(db, user_id, now, trace))

    record_turn(
        db,
        course_id=request.course_id,
        lesson_id=request.lesson_id or None,
        mode=mode,
        outcome=outcome,
        message=request.message,
        now=now,
        trace=trace,
    )
    return _response(thread.id, turn, after)
