import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from indexer.terms import STOP_WORDS, TermExtractor, extract_terms


class TestTermExtractor:
    """Test query normalization into search terms."""

    @pytest.fixture
    def extractor(self):
        return TermExtractor()

    def test_lowercases_and_drops_stop_words(self, extractor):
        assert extractor.extract("How do I create a URLSession request") == ("urlsession", "request")

    def test_compound_identifiers_stay_whole(self, extractor):
        assert extractor.extract("URLSession.shared dataTask") == ("urlsession.shared", "datatask")
        assert extractor.extract("snake_case kebab-case") == ("snake_case", "kebab-case")

    def test_separator_characters_stripped_from_edges(self, extractor):
        assert extractor.extract("...hello-world_ -dash- .dot.") == ("hello-world", "dash", "dot")

    def test_other_punctuation_splits(self, extractor):
        assert extractor.extract("auth,login;token/(refresh)") == ("auth", "login", "token", "refresh")

    def test_short_tokens_dropped(self, extractor):
        assert extractor.extract("x y ui") == ("ui",)

    def test_duplicates_removed_in_first_seen_order(self, extractor):
        assert extractor.extract("Swift swift SWIFT ui Swift") == ("swift", "ui")

    @pytest.mark.parametrize("query", ["", "   ", "\n\t", "?!,;"])
    def test_blank_queries_yield_no_terms(self, extractor, query):
        assert extractor.extract(query) == ()

    def test_only_stop_words_yield_no_terms(self, extractor):
        assert extractor.extract("how do I create the") == ()

    def test_none_is_a_contract_violation(self, extractor):
        with pytest.raises(TypeError):
            extractor.extract(None)

    def test_unicode_words_survive(self, extractor):
        assert extractor.extract("café Überblick") == ("café", "überblick")

    def test_custom_stop_words(self):
        extractor = TermExtractor(stop_words=["Widget"])
        assert extractor.extract("the widget center") == ("the", "center")

    def test_normalize_query_is_stable(self, extractor):
        assert extractor.normalize_query("Widget   Missing") == extractor.normalize_query("widget missing")
        assert extractor.normalize_query("the a") == "the a"

    def test_imperatives_are_stop_words(self):
        for verb in ("create", "add", "implement"):
            assert verb in STOP_WORDS

    def test_module_helper_uses_defaults(self):
        assert extract_terms("implement the Keychain wrapper") == ("keychain", "wrapper")
