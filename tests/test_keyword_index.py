"""
Tests for the literal term-frequency keyword index.
"""

import pytest
import numpy as np
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import InvalidQuery
from search.documents import Chunk, Document, Provenance
from search.keyword_index import KeywordIndex, highlight, tokenize_query
from tests.fixtures.sample_data import TOPIC_DOCS, PROPER_NOUN_QUERY


@pytest.fixture
def index():
    idx = KeywordIndex()
    idx.add_documents(TOPIC_DOCS)
    return idx


class TestTokenize:
    """Tests for query tokenization."""

    def test_lowercases_and_splits(self):
        """Queries are lowercased and split on whitespace."""
        assert tokenize_query("  Vector\tDB\nsearch ") == ["vector", "db", "search"]

    def test_keeps_repeated_terms(self):
        """Repeated terms are kept."""
        assert tokenize_query("go go") == ["go", "go"]

    def test_blank_query(self):
        """A blank query has no terms."""
        assert tokenize_query("   ") == []


class TestKeywordSearch:
    """Tests for KeywordIndex.search."""

    def test_proper_nouns_single_hit(self, index):
        """Two proper nouns present in one document give exactly one result."""
        results = index.search(PROPER_NOUN_QUERY, k=4)

        assert [r.document_id for r in results] == ["vectordb"]
        assert results[0].raw_score == 2.0
        assert results[0].score == 1.0
        assert results[0].provenance == Provenance.KEYWORD

    def test_counts_occurrences(self):
        """Scores count occurrences, relative to the best hit."""
        idx = KeywordIndex()
        idx.add_documents([
            Chunk.create("a", "cache the cache, then cache again"),
            Chunk.create("b", "cache once"),
        ])

        results = idx.search("cache", k=5)

        assert [(r.document_id, r.raw_score) for r in results] == [("a", 3.0), ("b", 1.0)]
        assert results[1].score == pytest.approx(1 / 3)
        assert results[1].keyword_score == 1.0

    def test_case_insensitive(self):
        """Matching ignores case."""
        idx = KeywordIndex()
        idx.add_documents([Chunk.create("a", "Python and PYTHON")])
        assert idx.search("python")[0].raw_score == 2.0

    def test_substring_matching(self):
        """Terms match inside longer words."""
        idx = KeywordIndex()
        idx.add_documents([Chunk.create("a", "embeddings embedded")])
        assert idx.search("embed")[0].raw_score == 2.0

    def test_non_overlapping(self):
        """Occurrences are counted without overlap."""
        idx = KeywordIndex()
        idx.add_documents([Chunk.create("a", "aaaa")])
        assert idx.search("aa")[0].raw_score == 2.0

    def test_repeated_query_terms_count_again(self):
        """A repeated query term adds its count again."""
        idx = KeywordIndex()
        idx.add_documents([Chunk.create("a", "redis cluster")])
        assert idx.search("redis redis")[0].raw_score == 2.0

    def test_zero_scores_dropped(self, index):
        """Documents without a match are left out."""
        assert index.search("kubernetes", k=4) == []

    def test_ties_keep_insertion_order(self):
        """Equal counts keep insertion order."""
        idx = KeywordIndex()
        idx.add_documents([
            Chunk.create("first", "shared term"),
            Chunk.create("second", "shared term"),
            Chunk.create("third", "shared term shared"),
        ])

        results = idx.search("shared", k=3)
        assert [r.document_id for r in results] == ["third", "first", "second"]

    def test_truncates_to_k(self, index):
        """At most k results are returned."""
        results = index.search("a", k=2)
        assert len(results) == 2

    def test_k_zero(self, index):
        """k of zero returns nothing."""
        assert index.search(PROPER_NOUN_QUERY, k=0) == []

    def test_negative_k(self, index):
        """A negative k raises InvalidQuery."""
        with pytest.raises(InvalidQuery):
            index.search(PROPER_NOUN_QUERY, k=-3)

    def test_empty_query(self, index):
        """Empty and blank queries return nothing."""
        assert index.search("", k=4) == []
        assert index.search("   ", k=4) == []

    @pytest.mark.parametrize("query", ["c++", "(unclosed", "a.b", "[x", "*", "\\d+", "?"])
    def test_regex_metacharacters_are_literal(self, query):
        """Regex metacharacters match literally."""
        idx = KeywordIndex()
        idx.add_documents([
            Chunk.create("literal", f"text containing {query} once"),
            Chunk.create("other", "plain words only 12345"),
        ])

        results = idx.search(query, k=5)

        assert [r.document_id for r in results] == ["literal"]
        assert results[0].raw_score >= 1.0

    def test_appends_across_batches(self):
        """Later batches add to the index."""
        idx = KeywordIndex()
        idx.add_documents([Chunk.create("a", "alpha")])
        idx.add_documents([Chunk.create("b", "alpha beta")])

        assert len(idx) == 2
        assert {r.document_id for r in idx.search("alpha")} == {"a", "b"}

    def test_accepts_documents(self):
        """Embedded documents can be indexed directly."""
        idx = KeywordIndex()
        idx.add_documents([Document(id="d", text="vector search", vector=np.ones(3))])
        assert idx.search("vector")[0].document_id == "d"

    def test_clear(self, index):
        """clear() empties the index."""
        index.clear()
        assert len(index) == 0
        assert index.search(PROPER_NOUN_QUERY) == []


class TestHighlight:
    """Tests for hit highlighting."""

    def test_wraps_terms(self):
        """Matches are wrapped in the default markers."""
        assert highlight("Use Redis for caching", "redis") == "Use 【Redis】 for caching"

    def test_custom_markers(self):
        """Custom markers can be given."""
        assert highlight("vector db", "vector", "<em>", "</em>") == "<em>vector</em> db"

    def test_every_occurrence(self):
        """Every occurrence is wrapped, whatever its case."""
        assert highlight("go Go GO", "go") == "【go】 【Go】 【GO】"

    def test_overlapping_terms_wrapped_once(self):
        """The longest term wins where terms overlap."""
        assert highlight("embeddings", "embed embeddings") == "【embeddings】"

    def test_metacharacters(self):
        """Regex metacharacters in terms are escaped."""
        assert highlight("learn c++ today", "c++") == "learn 【c++】 today"

    def test_no_terms(self):
        """Text is unchanged when the query has no terms."""
        assert highlight("unchanged", "   ") == "unchanged"
