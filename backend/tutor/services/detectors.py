"""Pure text detectors: language/script, cheating intent, source-bound questions."""

import hashlib
import re
from collections import Counter

LANGUAGES = ("kz", "en", "ru")

_CYRILLIC = re.compile(r"[\u0400-\u04FF]")
_LATIN = re.compile(r"[A-Za-z]")
_KAZAKH_LETTERS = re.compile(r"[әғқңөұүһі]", re.IGNORECASE)
_NON_WORD = re.compile(r"[\W_]+")

CHEATING_PATTERNS = [
    "give me the answer",
    "final answer",
    "just the answer",
    "full solution",
    "solve it",
    "complete solution",
    "answer only",
    "решение полностью",
    "дай ответ",
    "просто ответ",
    "толық шешім",
    "тек жауабы",
    "дай решение",
]

EXPLICIT_SOURCE_PATTERNS = [
    "according to",
    "in this pdf",
    "in this lesson",
    "in this chapter",
    "according to the pdf",
    "according to chapter",
    "as per",
    "согласно",
    "в этом pdf",
    "в этом файле",
    "в этом уроке",
    "в этой главе",
    "осы pdf",
    "осы файл",
    "осы сабақ",
    "осы бөлім",
    "бойынша",
]

# Word stems; matched as substrings.
SENSITIVE_TERMS = [
    "cry", "crying", "drink", "drinking", "alcohol", "alcoholic", "tears",
    "плак", "слез", "алког", "пить",
    "ішу", "ішім", "ішеді", "жылай", "көзжас",
]

# Words that name the source itself rather than the topic of the question.
SOURCE_WORDS = {
    "according", "chapter", "lesson", "pdf", "excerpts",
    "согласно", "глава", "урок", "файл", "сабақ", "бөлім",
}

RELATED_STOPWORDS = {
    "that", "this", "with", "from", "into", "over", "they", "their", "your",
    "been", "were", "will", "also", "have", "has", "which", "what", "when",
    "where", "such", "these", "those",
    "от", "что", "это", "как", "для", "при", "или", "они", "их", "вам",
    "және", "осы", "бұл", "сабақ",
}


def _script_counts(text: str) -> tuple[int, int]:
    return len(_CYRILLIC.findall(text or "")), len(_LATIN.findall(text or ""))


def is_mostly_cyrillic(text: str) -> bool:
    cyr, lat = _script_counts(text)
    return cyr > 0 and cyr >= lat * 0.6


def is_mostly_latin(text: str) -> bool:
    cyr, lat = _script_counts(text)
    return lat > 0 and lat >= cyr * 1.5


def detect_message_lang(message: str) -> str:
    """Guess kz / ru / en from the script of the message, "" when unclear."""
    if _KAZAKH_LETTERS.search((message or "").lower()):
        return "kz"
    cyr, lat = _script_counts(message)
    if cyr > 0 and cyr >= lat * 1.2:
        return "ru"
    if lat > 0 and lat >= cyr * 1.5:
        return "en"
    return ""


def lang_from_accept_language(header: str) -> str:
    if re.search(r"(^|,)\s*(kk|kz)\b", header or "", re.IGNORECASE):
        return "kz"
    if re.search(r"(^|,)\s*ru\b", header or "", re.IGNORECASE):
        return "ru"
    return "en"


def resolve_lang(body_lang, message: str, cookie_lang: str = "", accept_language: str = "") -> tuple[str, str]:
    """Return (lang, source): body, then message script, then cookie, then header."""
    if body_lang in LANGUAGES:
        return body_lang, "body"
    detected = detect_message_lang(message)
    if detected:
        return detected, "message"
    if cookie_lang in LANGUAGES:
        return cookie_lang, "cookie"
    if accept_language:
        return lang_from_accept_language(accept_language), "header"
    return "en", "default"


def detect_cheating_intent(message: str) -> bool:
    text = (message or "").lower()
    return any(pattern in text for pattern in CHEATING_PATTERNS)


def is_explicit_source_query(message: str) -> bool:
    text = (message or "").lower()
    return any(pattern in text for pattern in EXPLICIT_SOURCE_PATTERNS)


def contains_any_term(text: str, terms: list[str]) -> bool:
    if not text or not terms:
        return False
    lower = text.lower()
    return any(term and term.lower() in lower for term in terms)


def related_keywords(texts: list[str], limit: int = 5) -> list[str]:
    """Most frequent words (4+ chars) across the excerpts, for canned summaries."""
    combined = " ".join(texts).lower()
    tokens = [t for t in _NON_WORD.sub(" ", combined).split() if len(t) >= 4]
    counts = Counter(t for t in tokens if t not in RELATED_STOPWORDS)
    return [token for token, _ in counts.most_common(limit)]


def normalize_question(message: str) -> str:
    return re.sub(r"\s+", " ", (message or "").lower()).strip()


def question_hash(normalized: str) -> str:
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:12]
