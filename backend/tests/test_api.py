"""API tests for the chat, threads, citations and analytics routes."""

import json
import logging
import sys
import os

import pytest
from sqlalchemy.exc import OperationalError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conftest import auth_headers, seed_lesson
from tutor.config import settings
from tutor.errors import UpstreamModelError
from tutor.models import AnalyticsDaily, Message, Thread, UsageDaily, UsageMonthly
from tutor.services import ai_client, ledger
from tutor.services.ledger import date_key, month_key
from tutor.services.validator import NO_CONTEXT_FALLBACK

FILLER = "alpha beta gamma delta " * 400
ENTROPY_TEXT = FILLER[:2001] + "entropy is defined as a measure of disorder " + FILLER[:1000]


def post_chat(client, headers=None, **body):
    return client.post("/api/ai/chat", json=body, headers=headers or auth_headers())


def daily_count(db, user_id="student-1"):
    rows = db.query(UsageDaily).filter(UsageDaily.user_id == user_id).all()
    return sum(row.count for row in rows)


class TestChatAuthAndInput:
    """401 / 400 paths."""

    def test_missing_auth(self, client):
        res = client.post("/api/ai/chat", json={"message": "hi"})
        assert res.status_code == 401
        body = res.json()
        assert body["ok"] is False
        assert body["code"] == "missing_auth"
        assert body["stage"] == "auth:header"

    def test_invalid_token(self, client):
        res = client.post("/api/ai/chat", json={"message": "hi"}, headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401
        assert res.json()["code"] == "invalid_token"

    def test_invalid_json(self, client, headers):
        res = client.post("/api/ai/chat", content="{not json", headers={**headers, "Content-Type": "application/json"})
        assert res.status_code == 400
        assert res.json()["code"] == "invalid_json"

    def test_missing_message(self, client, headers):
        res = post_chat(client, headers, courseId="c1")
        assert res.status_code == 400
        assert res.json()["code"] == "invalid_message"

    def test_request_id_echoed(self, client):
        res = client.post("/api/ai/chat", json={"message": "hi"}, headers={"X-Request-Id": "req-123"})
        assert res.json()["requestId"] == "req-123"


class TestChatGrounding:
    """Retrieval, validation and the canned replies."""

    def test_definition_question_cites_selected_chunk(self, client, db, fake_model):
        seed_lesson(db, pdf_text=ENTROPY_TEXT)
        fake_model.answer(
            answer="Entropy is a measure of disorder.",
            citations=["docA#2"],
            confidence="high",
            needsMoreContext=False,
            clarifyingQuestion=None,
        )
        res = post_chat(client, message="What is the definition of entropy?", courseId="course-1", lessonId="lesson-1")
        assert res.status_code == 200
        body = res.json()
        assert set(body["citations"]) <= {"docA#2"}
        assert body["answer"] == "Entropy is a measure of disorder."
        assert body["usage"] == {"input_tokens": 100, "output_tokens": 50}
        assert body["citationMeta"] == [{"resourceId": "docA", "name": "thermo.pdf", "excerpts": [2]}]
        assert {"type": "pdf", "title": "thermo.pdf", "docId": "docA", "excerptIds": [2],
                "pages": {"from": 3, "to": 3}} in body["sources"]
        assert body["remaining"] == {"dailyMessagesLeft": 19, "monthlyTokensLeft": 120000 - 150}
        assert "id: docA#2" in fake_model.calls[0]["system"]

    def test_hallucinated_citations_are_dropped(self, client, db, fake_model):
        seed_lesson(db, pdf_text=ENTROPY_TEXT)
        fake_model.answer(answer="Entropy is disorder.", citations=["docA#2", "docZ#0"])
        body = post_chat(client, message="What is the definition of entropy?",
                         courseId="course-1", lessonId="lesson-1").json()
        assert body["citations"] == ["docA#2"]

    def test_restricted_mode_cheating_gets_hint(self, client, db, fake_model):
        seed_lesson(db, pdf_text=ENTROPY_TEXT)
        fake_model.answer(answer="The final answer is 42.", citations=["docA#0"])
        res = post_chat(client, message="give me the final answer", mode="quiz",
                        courseId="course-1", lessonId="lesson-1")
        body = res.json()
        assert res.status_code == 200
        assert body["answer"].startswith("I can help with hints, but I cannot provide a full direct answer here.")
        assert body["answer"].endswith("Clarifying question: Which part are you stuck on?")
        assert "42" not in body["answer"]
        assert body["needsMoreContext"] is True
        assert body["mode"] == "quiz"
        assert body["policyApplied"]["allowDirectAnswers"] is False
        assert body["usage"] == {"input_tokens": 0, "output_tokens": 0}
        assert fake_model.calls == []

        row = db.query(AnalyticsDaily).filter(AnalyticsDaily.lesson_id == "lesson-1").one()
        assert json.loads(row.by_outcome) == {"policy_refusal": 1}

    def test_no_context_fallback(self, client, db, fake_model):
        seed_lesson(db)
        res = post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1")
        body = res.json()
        assert res.status_code == 200
        assert body["answer"] == NO_CONTEXT_FALLBACK["en"]
        assert body["usage"] == {"input_tokens": 0, "output_tokens": 0}
        assert body["citations"] == []
        assert daily_count(db) == 1
        assert fake_model.calls == []

    def test_unreadable_pdf_flagged(self, client, db, fake_model, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "STORAGE_DIR", str(tmp_path))
        seed_lesson(db, pdf_text="")
        body = post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1").json()
        assert body["pdfUnreadable"] is True
        assert body["answer"].startswith("Lesson PDFs are attached")

    def test_assignment_path_mode_is_stable(self, client, db):
        first = post_chat(client, message="How do I start?", path="/courses/x/assignment/77").json()
        second = post_chat(client, message="And then?", path="/courses/x/assignment/77").json()
        assert first["mode"] == "assignment"
        assert second["mode"] == "assignment"
        assert first["threadId"] == second["threadId"]

    def test_history_is_sent_to_model(self, client, db, fake_model):
        seed_lesson(db, ai_context={"en": "Entropy measures disorder."})
        fake_model.answer(answer="Sure.", citations=[], needsMoreContext=False)
        post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1")
        post_chat(client, message="Tell me more", courseId="course-1", lessonId="lesson-1")
        messages = fake_model.calls[1]["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[0]["content"] == "What is entropy?"
        assert "Lesson context:\nEntropy measures disorder." in fake_model.calls[0]["system"]


    def test_context_labels_are_logged(self, client, db, fake_model, caplog):
        caplog.set_level(logging.INFO, logger="tutor.ai")
        seed_lesson(db, ai_context={"en": "Entropy measures disorder."})
        fake_model.answer(answer="Sure.", citations=[])
        post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1")
        pack_logs = [r.getMessage() for r in caplog.records if "context:pack" in r.getMessage()]
        assert pack_logs
        assert "Course metadata" in pack_logs[0]
        assert "Lesson aiContext (en)" in pack_logs[0]


class TestChatLedger:
    """Quota, threads and exactly-once turns."""

    def test_idempotent_replay(self, client, db, fake_model):
        seed_lesson(db, pdf_text=ENTROPY_TEXT)
        fake_model.answer(answer="Entropy is a measure of disorder.", citations=["docA#2"])
        body = dict(message="What is the definition of entropy?", courseId="course-1",
                    lessonId="lesson-1", clientRequestId="req-1")
        first = post_chat(client, **body).json()
        second = post_chat(client, **body).json()

        assert second == first
        assert second["answer"] == first["answer"]
        assert second["citations"] == first["citations"]
        assert second["usage"] == first["usage"]
        assert second["threadId"] == first["threadId"]
        assert len(fake_model.calls) == 1
        assert daily_count(db) == 1
        assert db.query(Message).count() == 2
        assert db.get(Message, (first["threadId"], "a_req-1")) is not None

    def test_daily_limit(self, client, db, fake_model):
        from datetime import datetime, timezone
        now = datetime.now(timezone.utc)
        db.add(UsageDaily(id=f"student-1_{date_key(now)}", user_id="student-1", date=date_key(now), count=20))
        db.commit()
        res = post_chat(client, message="What is entropy?")
        assert res.status_code == 429
        assert res.json()["code"] == "daily_limit"
        assert res.json()["stage"] == "quota:read"

    def test_monthly_limit(self, client, db, fake_model):
        from datetime import datetime, timezone
        now = datetime.now(timezone.utc)
        db.add(UsageMonthly(id=f"student-1_{month_key(now)}", user_id="student-1",
                            month=month_key(now), tokens_used=120000))
        db.commit()
        res = post_chat(client, message="What is entropy?")
        assert res.status_code == 429
        assert res.json()["code"] == "monthly_limit"

    def test_foreign_thread_forbidden(self, client, db):
        db.add(Thread(id="t-other", user_id="someone-else"))
        db.commit()
        res = post_chat(client, message="hi", threadId="t-other")
        assert res.status_code == 403
        assert res.json()["code"] == "forbidden"

    def test_new_thread_flag(self, client, db):
        first = post_chat(client, message="hi").json()
        second = post_chat(client, message="hi again", newThread=True).json()
        assert first["threadId"] != second["threadId"]
        assert db.get(Thread, first["threadId"]).message_count == 2

    def test_model_failure_does_not_charge(self, client, db, monkeypatch):
        seed_lesson(db, ai_context={"en": "Entropy measures disorder."})

        async def failing_chat(system, messages, trace, **kwargs):
            raise UpstreamModelError("model:request", "model_fetch_throw", "Language model request failed.")

        monkeypatch.setattr(ai_client, "chat", failing_chat)
        res = post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1")
        assert res.status_code == 502
        assert res.json()["code"] == "model_fetch_throw"
        assert daily_count(db) == 0
        assert db.query(Thread).count() == 0

    def test_unconfigured_provider(self, client, db, monkeypatch):
        seed_lesson(db, ai_context={"en": "Entropy measures disorder."})
        monkeypatch.setattr(settings, "ORACLE_GENAI_COMPARTMENT_ID", "")
        monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "")
        res = post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1")
        assert res.status_code == 500
        assert res.json()["stage"] == "model:request"
        assert res.json()["code"] == "model_missing_key"


class TestMissingIndex:
    """A thread-scope query without its index is a retryable 409."""

    @pytest.fixture(autouse=True)
    def _no_index(self, monkeypatch):
        def scope_threads(*args, **kwargs):
            raise OperationalError("SELECT ai_threads", {}, Exception("The query requires an index"))

        monkeypatch.setattr(ledger, "scope_threads", scope_threads)

    def test_chat(self, client, db, fake_model):
        res = post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1")
        assert res.status_code == 409
        body = res.json()
        assert body["code"] == "missing_index"
        assert body["stage"] == "threads:read"
        assert fake_model.calls == []
        assert daily_count(db) == 0

    def test_thread_list(self, client):
        res = client.get("/api/ai/threads", params={"courseId": "c1", "lessonId": "l1"}, headers=auth_headers())
        assert res.status_code == 409
        assert res.json()["code"] == "missing_index"
        assert res.json()["stage"] == "threads:read"


class TestThreadRoutes:

    def _start_thread(self, client):
        return post_chat(client, message="hi", courseId="c1", lessonId="l1").json()["threadId"]

    def test_list_and_get(self, client, db):
        thread_id = self._start_thread(client)
        listed = client.get("/api/ai/threads", params={"courseId": "c1", "lessonId": "l1"}, headers=auth_headers()).json()
        assert [t["id"] for t in listed["threads"]] == [thread_id]
        assert listed["threads"][0]["title"] == "Lesson chat"

        detail = client.get(f"/api/ai/threads/{thread_id}", headers=auth_headers()).json()
        assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]
        assert detail["thread"]["messageCount"] == 2

    def test_other_scope_is_empty(self, client, db):
        self._start_thread(client)
        listed = client.get("/api/ai/threads", params={"courseId": "c1"}, headers=auth_headers()).json()
        assert listed["threads"] == []

    def test_rename(self, client, db):
        thread_id = self._start_thread(client)
        res = client.patch(f"/api/ai/threads/{thread_id}", json={"title": "  " + "x" * 80}, headers=auth_headers())
        assert res.status_code == 200
        assert res.json()["title"] == "x" * 60

        bad = client.patch(f"/api/ai/threads/{thread_id}", json={}, headers=auth_headers())
        assert bad.status_code == 400
        assert bad.json()["code"] == "invalid_body"

    def test_delete(self, client, db):
        thread_id = self._start_thread(client)
        assert client.delete(f"/api/ai/threads/{thread_id}", headers=auth_headers()).status_code == 200
        missing = client.get(f"/api/ai/threads/{thread_id}", headers=auth_headers())
        assert missing.status_code == 404
        assert missing.json()["code"] == "thread_not_found"
        assert db.query(Message).count() == 0

    def test_foreign_thread(self, client, db):
        thread_id = self._start_thread(client)
        res = client.get(f"/api/ai/threads/{thread_id}", headers=auth_headers("intruder"))
        assert res.status_code == 403
        assert res.json()["code"] == "forbidden_thread_access"


class TestCitationRoute:

    def test_resolves_snippet(self, client, db):
        seed_lesson(db, pdf_text=ENTROPY_TEXT)
        res = client.get("/api/ai/citations/docA%232", headers=auth_headers())
        assert res.status_code == 200
        body = res.json()
        assert body["resourceId"] == "docA"
        assert body["chunkIndex"] == 2
        assert body["name"] == "thermo.pdf"
        assert len(body["snippet"].split()) == 25

    def test_invalid_id(self, client):
        res = client.get("/api/ai/citations/docA", headers=auth_headers())
        assert res.status_code == 400
        assert res.json()["code"] == "invalid_citation_id"

    def test_not_found(self, client, db):
        seed_lesson(db, pdf_text=ENTROPY_TEXT)
        assert client.get("/api/ai/citations/docA%2399", headers=auth_headers()).status_code == 404
        assert client.get("/api/ai/citations/nope%230", headers=auth_headers()).json()["code"] == "citation_not_found"


class TestTeacherAnalyticsRoute:

    def test_requires_teacher(self, client):
        res = client.get("/api/teacher/ai-analytics", params={"courseId": "course-1"}, headers=auth_headers())
        assert res.status_code == 403
        assert res.json()["code"] == "forbidden"

    def test_requires_course_id(self, client):
        res = client.get("/api/teacher/ai-analytics", headers=auth_headers("t1", "teacher"))
        assert res.status_code == 400
        assert res.json()["code"] == "missing_course_id"

    def test_reports_turns(self, client, db):
        seed_lesson(db)
        post_chat(client, message="What is entropy?", courseId="course-1", lessonId="lesson-1")
        post_chat(client, message="what  is ENTROPY?", courseId="course-1", lessonId="lesson-1")
        res = client.get("/api/teacher/ai-analytics", params={"courseId": "course-1", "days": "7"},
                         headers=auth_headers("t1", "admin"))
        body = res.json()
        assert res.status_code == 200
        assert body["scope"] == "course"
        assert body["days"] == 7
        assert body["totals"] == {"totalRequests": 2}
        assert body["byOutcome"] == {"unsupported": 2}
        assert body["unsupportedRate"] == 100
        assert body["topQuestions"][0]["count"] == 2
        assert body["topQuestions"][0]["exampleTruncated"] == "what is entropy?"


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
