"""Query normalization into significant search terms."""

import re
from typing import FrozenSet, Iterable, Optional, Tuple

# Articles, conjunctions, prepositions, pronouns, auxiliaries, question words
# and the imperative verbs agents tend to prefix their queries with.
STOP_WORDS: FrozenSet[str] = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'nor', 'so', 'yet',
    'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by', 'from', 'into', 'about', 'as',
    'i', 'me', 'my', 'we', 'our', 'you', 'your', 'it', 'its', 'they', 'them', 'their',
    'is', 'are', 'was', 'were', 'be', 'been', 'being', 'have', 'has', 'had',
    'do', 'does', 'did', 'will', 'would', 'could', 'should', 'may', 'might', 'can', 'must', 'shall',
    'this', 'that', 'these', 'those',
    'how', 'what', 'where', 'when', 'why', 'which', 'who',
    'create', 'add', 'implement', 'make', 'build', 'write', 'show', 'find', 'get', 'need', 'want',
    'please', 'help', 'explain',
})

MIN_TERM_LENGTH = 2

# Everything except word characters and the three in-token separators splits.
_SPLIT_RE = re.compile(r"[^\w.\-]+", re.UNICODE)
_EDGE_CHARS = ".-_"


class TermExtractor:
    """Normalizes raw queries into an ordered, duplicate-free term tuple.

    Compound identifiers are kept whole: ``URLSession.shared`` becomes the
    single term ``urlsession.shared``, so docset names keep matching on
    their full dotted form.
    """

    def __init__(self, stop_words: Optional[Iterable[str]] = None, min_length: int = MIN_TERM_LENGTH):
        self.stop_words = frozenset(w.lower() for w in stop_words) if stop_words is not None else STOP_WORDS
        self.min_length = min_length

    def tokenize(self, query: str) -> Tuple[str, ...]:
        if query is None:
            raise TypeError("query must be a string, not None")
        tokens = []
        for raw in _SPLIT_RE.split(query.lower()):
            token = raw.strip(_EDGE_CHARS)
            if token:
                tokens.append(token)
        return tuple(tokens)

    def extract(self, query: str) -> Tuple[str, ...]:
        """Return the significant terms of ``query`` in first-seen order."""
        seen = set()
        terms = []
        for token in self.tokenize(query):
            if len(token) < self.min_length or token in self.stop_words or token in seen:
                continue
            seen.add(token)
            terms.append(token)
        return tuple(terms)

    def normalize_query(self, query: str) -> str:
        """Stable key for a query, used for empty-search tracking."""
        terms = self.extract(query)
        if terms:
            return " ".join(terms)
        return " ".join(self.tokenize(query))


_default_extractor = TermExtractor()


def extract_terms(query: str) -> Tuple[str, ...]:
    """Extract search terms with the default stop-word list."""
    return _default_extractor.extract(query)
