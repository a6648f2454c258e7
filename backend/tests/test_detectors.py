"""Tests for language, intent and source-query detectors."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tutor.services.detectors import (
    detect_cheating_intent,
    detect_message_lang,
    is_explicit_source_query,
    is_mostly_cyrillic,
    is_mostly_latin,
    lang_from_accept_language,
    normalize_question,
    question_hash,
    related_keywords,
    resolve_lang,
)


class TestScript:

    def test_mostly_cyrillic(self):
        assert is_mostly_cyrillic("Энтропия это мера беспорядка")
        assert not is_mostly_cyrillic("Entropy is a measure of disorder")

    def test_mostly_latin(self):
        assert is_mostly_latin("Entropy is a measure")
        assert not is_mostly_latin("Энтропия")

    def test_no_letters_is_neither(self):
        assert not is_mostly_cyrillic("12345")
        assert not is_mostly_latin("12345")


class TestLanguageResolution:
    """Body lang, then message script, then cookie, then Accept-Language."""

    def test_kazakh_letters(self):
        assert detect_message_lang("Энтропия дегеніміз не?") == "kz"

    def test_russian(self):
        assert detect_message_lang("Что такое энтропия?") == "ru"

    def test_english(self):
        assert detect_message_lang("What is entropy?") == "en"

    def test_unclear(self):
        assert detect_message_lang("42?") == ""

    def test_body_wins(self):
        assert resolve_lang("ru", "What is entropy?") == ("ru", "body")

    def test_invalid_body_lang_ignored(self):
        assert resolve_lang("de", "What is entropy?") == ("en", "message")

    def test_cookie_then_header(self):
        assert resolve_lang(None, "42", cookie_lang="kz") == ("kz", "cookie")
        assert resolve_lang(None, "42", accept_language="ru-RU,ru;q=0.9") == ("ru", "header")
        assert resolve_lang(None, "42") == ("en", "default")

    def test_accept_language(self):
        assert lang_from_accept_language("kk-KZ,kk;q=0.9") == "kz"
        assert lang_from_accept_language("en-US, ru;q=0.5") == "ru"
        assert lang_from_accept_language("de-DE") == "en"


class TestIntent:

    def test_cheating_intent(self):
        assert detect_cheating_intent("Please give me the FULL SOLUTION")
        assert detect_cheating_intent("give me the final answer")
        assert detect_cheating_intent("дай ответ пожалуйста")
        assert not detect_cheating_intent("Can you explain step two?")

    def test_explicit_source_query(self):
        assert is_explicit_source_query("According to the PDF, who won?")
        assert is_explicit_source_query("Согласно уроку, что это?")
        assert not is_explicit_source_query("Who won?")


class TestQuestionHelpers:

    def test_normalize_question(self):
        assert normalize_question("  What   IS\nEntropy? ") == "what is entropy?"

    def test_question_hash_is_short_and_stable(self):
        h = question_hash("what is entropy?")
        assert len(h) == 12
        assert h == question_hash("what is entropy?")
        assert h != question_hash("what is enthalpy?")

    def test_related_keywords_by_frequency(self):
        texts = ["energy energy heat", "energy heat with those"]
        assert related_keywords(texts) == ["energy", "heat"]
