"""Shared fixtures: in-memory database, API client, tokens and a fake model."""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tutor.config import settings
from tutor.database import create_tables, get_db, make_engine, session_factory
from tutor.main import app
from tutor.models import Course, Lesson, LessonResource, PdfTextCache
from tutor.services import ai_client


@pytest.fixture
def db():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    create_tables(engine)
    session = session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def file_sessions(tmp_path):
    """Opens independent sessions on one file-backed SQLite database."""
    engine = make_engine(f"sqlite:///{tmp_path / 'tutor.db'}")
    create_tables(engine)
    factory = session_factory(engine)
    opened = []

    def open_session():
        session = factory()
        opened.append(session)
        return session

    yield open_session
    for session in opened:
        session.close()
    engine.dispose()


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def create_access_token(user_id, role="student", expires_minutes=60):
    """Tokens are minted by the identity provider in production; tests sign their own."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": user_id, "role": role, "exp": expire}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(user_id="student-1", role="student"):
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def headers():
    return auth_headers()


class FakeModel:
    """Stands in for ai_client.chat and records every call."""

    def __init__(self):
        self.calls = []
        self.reply = ai_client.ModelReply(text="", input_tokens=0, output_tokens=0, model="fake-model")

    def answer(self, input_tokens=100, output_tokens=50, **payload):
        self.reply = ai_client.ModelReply(
            text=json.dumps(payload),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model="fake-model",
        )

    async def __call__(self, system, messages, trace, max_tokens=None, temperature=None):
        self.calls.append({"system": system, "messages": messages})
        return self.reply


@pytest.fixture
def fake_model(monkeypatch):
    model = FakeModel()
    monkeypatch.setattr(ai_client, "chat", model)
    return model


def seed_lesson(db, *, lesson_id="lesson-1", course_id="course-1", ai_context=None,
                ai_policy=None, pdf_text=None, doc_id="docA", lesson_type="text"):
    """A course + lesson, optionally with one PDF whose text is already cached."""
    db.add(Course(id=course_id, title_en="Physics 101", description_en="Intro physics"))
    lesson = Lesson(
        id=lesson_id,
        course_id=course_id,
        type=lesson_type,
        title_en="Thermodynamics",
        ai_context=json.dumps(ai_context) if ai_context is not None else None,
        ai_policy=json.dumps(ai_policy) if ai_policy is not None else None,
    )
    db.add(lesson)
    if pdf_text is not None:
        db.add(LessonResource(
            id=doc_id,
            lesson_id=lesson_id,
            name="thermo.pdf",
            storage_path=f"lessons/{lesson_id}/thermo.pdf",
            content_type="application/pdf",
        ))
        db.add(PdfTextCache(id=doc_id, text=pdf_text, name="thermo.pdf"))
    db.commit()
    return lesson
