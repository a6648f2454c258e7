"""Lexical relevance scoring of lesson chunks against a student question.

No embeddings: token hits, a verbatim-phrase bonus, a definition-sentence
bonus and a keyword pass that can force-include chunks on its own.
"""

import re
from dataclasses import dataclass

_NON_WORD = re.compile(r"[\W_]+")

DEFINITION_BONUS = 50
PHRASE_BONUS = 10

_DEFINITION_PATTERNS = [
    re.compile(r"definition of\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"define\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"what is\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"what does\s+(.+?)\s+mean(?:\?|$)", re.IGNORECASE),
    re.compile(r"meaning of\s+(.+?)(?:\?|$)", re.IGNORECASE),
    re.compile(r"according to\s+(.+?)(?:\?|$)", re.IGNORECASE),
]
_DEFINITION_WORDS = re.compile(r"definition|define|what is|means|refers to", re.IGNORECASE)

KEYWORD_STOPWORDS = {
    "the", "and", "with", "from", "that", "this", "what", "who", "why", "how",
    "does", "is", "are", "was", "were", "for", "you", "your",
}


@dataclass(frozen=True)
class DefinitionQuery:
    is_definition: bool
    term: str = ""


def _clean(text: str) -> str:
    return _NON_WORD.sub(" ", text or "")


def tokenize_query(query: str) -> list[str]:
    """Lowercase word tokens longer than two characters."""
    return [t for t in _clean(query.lower()).split() if len(t) > 2]


def extract_keywords(message: str) -> list[str]:
    """Distinctive words of the raw message, lowercased and deduplicated.

    A word qualifies when it has at least 4 letters, is not a stopword, and is
    either Capitalized (but not ALL CAPS) or at least 5 characters long.
    """
    keywords: list[str] = []
    for word in _clean(message).split():
        lower = word.lower()
        if len(lower) < 4 or lower in KEYWORD_STOPWORDS:
            continue
        capitalized = word[0] == word[0].upper() and word[1:] != word[1:].upper()
        if (capitalized or len(lower) >= 5) and lower not in keywords:
            keywords.append(lower)
    return keywords


def count_occurrences(haystack: str, needle: str) -> int:
    if not needle:
        return 0
    return haystack.count(needle)


def score_chunk(chunk: str, query_tokens: list[str], query_lower: str) -> int:
    haystack = chunk.lower()
    score = 0
    for token in query_tokens:
        hits = count_occurrences(haystack, token)
        if hits:
            score += hits * (2 if len(token) > 6 else 1)
    if len(query_lower) > 8 and query_lower in haystack:
        score += PHRASE_BONUS
    return score


def detect_definition_query(message: str) -> DefinitionQuery:
    lower = (message or "").lower()
    for pattern in _DEFINITION_PATTERNS:
        match = pattern.search(lower)
        if match and match.group(1):
            return DefinitionQuery(is_definition=True, term=match.group(1).strip())
    return DefinitionQuery(is_definition=bool(_DEFINITION_WORDS.search(lower)))


def score_definition_hit(chunk: str, term: str) -> int:
    """Bonus when the chunk reads like a definition of ``term`` ("<term> is ...")."""
    if not term:
        return 0
    pattern = re.compile(
        rf"\b{re.escape(term)}\b\s+(is|means|refers to|defined as)", re.IGNORECASE
    )
    return DEFINITION_BONUS if pattern.search(chunk) else 0


def keyword_hits(chunk: str, keywords: list[str]) -> int:
    haystack = chunk.lower()
    return sum(count_occurrences(haystack, keyword) for keyword in keywords)
