"""Tests for the lexical scorer and query analysis."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tutor.services.scoring import (
    DEFINITION_BONUS,
    detect_definition_query,
    extract_keywords,
    keyword_hits,
    score_chunk,
    score_definition_hit,
    tokenize_query,
)


class TestTokenize:

    def test_drops_short_tokens_and_punctuation(self):
        assert tokenize_query("What is an ion?") == ["what", "ion"]

    def test_keeps_cyrillic(self):
        assert tokenize_query("Что такое энтропия?") == ["что", "такое", "энтропия"]


class TestScoreChunk:
    """Token hits, long-token weighting and the phrase bonus."""

    def test_counts_occurrences(self):
        tokens = tokenize_query("heat flow")
        assert score_chunk("Heat moves. Flow of heat.", tokens, "heat flow") == 3

    def test_long_tokens_weigh_double(self):
        tokens = tokenize_query("thermodynamics")
        assert score_chunk("thermodynamics and thermodynamics", tokens, "thermodynamics") == 4 + 10

    def test_phrase_bonus_needs_query_longer_than_eight(self):
        query = "heat engine cycle"
        tokens = tokenize_query(query)
        with_phrase = score_chunk("a heat engine cycle runs", tokens, query)
        without_phrase = score_chunk("a cycle heat engine runs", tokens, query)
        assert with_phrase - without_phrase == 10

    def test_no_match_scores_zero(self):
        assert score_chunk("nothing relevant", tokenize_query("entropy"), "entropy") == 0


class TestDefinitionQuery:
    """Definition-query detection and the definition-hit bonus."""

    def test_definition_of(self):
        query = detect_definition_query("What is the definition of entropy?")
        assert query.is_definition
        assert query.term == "entropy"

    def test_what_does_mean(self):
        assert detect_definition_query("what does enthalpy mean?").term == "enthalpy"

    def test_generic_definitional_words_without_term(self):
        query = detect_definition_query("this term refers to something")
        assert query.is_definition
        assert query.term == ""

    def test_not_a_definition(self):
        assert not detect_definition_query("How hot is the sun").is_definition

    def test_definition_hit(self):
        chunk = "In physics, entropy is defined as a measure of disorder."
        assert score_definition_hit(chunk, "entropy") == DEFINITION_BONUS

    def test_definition_hit_requires_word_boundary(self):
        assert score_definition_hit("negentropy is odd", "entropy") == 0

    def test_definition_hit_escapes_term(self):
        assert score_definition_hit("c++ means trouble", "c++") == 0
        assert score_definition_hit("anything", "") == 0


class TestKeywords:

    def test_capitalized_or_long_words(self):
        assert extract_keywords("Tell me about Abai and the steppe climate") == ["tell", "about", "abai", "steppe", "climate"]

    def test_all_caps_short_word_excluded(self):
        assert "nasa" not in extract_keywords("NASA rocket")

    def test_dedupes_case_insensitively(self):
        assert extract_keywords("Energy energy ENERGY") == ["energy"]

    def test_keyword_hits(self):
        assert keyword_hits("Energy is conserved; energy flows", ["energy", "flows"]) == 3
