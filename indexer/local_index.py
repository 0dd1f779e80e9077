"""In-memory index over the local, author-maintained document corpus.

Documents are held in an immutable snapshot. ``reload`` builds a complete new
mapping and swaps a single reference, so a search running concurrently with a
reload sees either the old or the new corpus and never a partial one.
"""

import logging
import re
import threading
from datetime import datetime
from fnmatch import fnmatchcase
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from config.search import LocalScoringWeights
from indexer.models import Document, LocalResult

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[\w.\-]+")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_MAX_WINDOW_CANDIDATES = 256


def matches_pattern(file_path: str, pattern: str) -> bool:
    """Case-insensitive glob match of ``file_path`` against a rule pattern.

    ``**`` behaves like ``*`` and a relative pattern may match any trailing
    part of the path, so ``src/*.ts`` applies to ``/repo/src/app.ts``.
    """
    path = file_path.replace("\\", "/").lower()
    pattern = pattern.strip().replace("**/", "*").replace("**", "*").lower()
    if not pattern:
        return False
    candidates = [pattern]
    if not pattern.startswith(("*", "/")):
        candidates.append(f"*/{pattern}")
    return any(fnmatchcase(path, candidate) for candidate in candidates)


def within_one_edit(a: str, b: str) -> bool:
    """True when ``a`` and ``b`` differ by at most one insert, delete or substitution."""
    if a == b:
        return True
    la, lb = len(a), len(b)
    if abs(la - lb) > 1:
        return False
    if la > lb:
        a, b, la, lb = b, a, lb, la
    i = j = 0
    edited = False
    while i < la and j < lb:
        if a[i] == b[j]:
            i += 1
            j += 1
            continue
        if edited:
            return False
        edited = True
        if la == lb:
            i += 1
        j += 1
    return True


def clean_snippet(snippet: str, cut_start: bool, cut_end: bool) -> str:
    """Collapse whitespace, drop inline markdown emphasis and mark truncation."""
    cleaned = re.sub(r"\s+", " ", snippet).strip()
    cleaned = cleaned.replace("**", "").replace("`", "")
    if cut_start:
        cleaned = "..." + cleaned
    if cut_end:
        cleaned = cleaned + "..."
    return cleaned


class LocalCorpusIndex:
    """Scores local documents against a term set.

    Args:
        loader: Object with a ``load()`` method returning Documents. Optional;
            documents can also be supplied through ``replace_documents``.
        weights: Relevance weights (defaults to ``LocalScoringWeights()``).
    """

    def __init__(self, loader=None, weights: Optional[LocalScoringWeights] = None):
        self.loader = loader
        self.weights = weights or LocalScoringWeights()
        self._documents: Mapping[str, Document] = MappingProxyType({})
        self._swap_lock = threading.Lock()
        self.last_loaded: Optional[datetime] = None

    @property
    def document_count(self) -> int:
        return len(self._documents)

    def __len__(self) -> int:
        return self.document_count

    def documents(self) -> List[Document]:
        return list(self._documents.values())

    def get_document(self, doc_id: str) -> Optional[Document]:
        return self._documents.get(doc_id)

    # Rule lookups

    def global_rules(self) -> List[Document]:
        """Documents marked ``alwaysApply: true``; they apply to every task."""
        return [doc for doc in self._documents.values() if doc.metadata.get('alwaysApply') is True]

    def contextual_docs(self, file_path: str) -> List[Document]:
        """Non-global documents whose ``filePatterns`` (or ``applies``) match ``file_path``."""
        if file_path is None:
            raise TypeError("file_path must be a string, not None")

        matching = []
        for doc in self._documents.values():
            if doc.metadata.get('alwaysApply') is True:
                continue
            patterns = doc.metadata.get('filePatterns') or doc.metadata.get('applies') or []
            if isinstance(patterns, str):
                patterns = [patterns]
            if any(isinstance(p, str) and matches_pattern(file_path, p) for p in patterns):
                matching.append(doc)
        return matching

    def documents_by_category(self, category: str) -> List[Document]:
        return [doc for doc in self._documents.values() if doc.metadata.get('category') == category]

    def initialize(self) -> int:
        return self.reload()

    def reload(self) -> int:
        """Reload the corpus from the loader and swap it in atomically."""
        if self.loader is None:
            logger.debug("No document loader configured; keeping current corpus")
            return self.document_count

        try:
            documents = list(self.loader.load())
        except Exception as e:
            logger.error(f"Failed to load documents, keeping previous corpus: {e}", exc_info=True)
            return self.document_count

        return self.replace_documents(documents)

    def replace_documents(self, documents: Iterable[Document]) -> int:
        """Install a new document set. Readers never observe a partial set."""
        snapshot = {}
        for doc in documents:
            if not doc.id or not doc.title:
                logger.warning(f"Skipping document without id or title: {doc.id!r}")
                continue
            if doc.id in snapshot:
                logger.warning(f"Duplicate document id {doc.id!r}; keeping the first occurrence")
                continue
            snapshot[doc.id] = doc

        with self._swap_lock:
            self._documents = MappingProxyType(snapshot)
            self.last_loaded = datetime.now()

        logger.info(f"Local corpus loaded: {len(snapshot)} documents")
        return len(snapshot)

    def search(self, terms: Sequence[str], query: Optional[str] = None) -> List[LocalResult]:
        """Score every document against ``terms`` and return those above threshold.

        ``query`` is the raw query text, used for the exact phrase bonus.
        """
        snapshot = self._documents
        if not terms or not snapshot:
            return []

        phrases = self._phrases(terms, query)
        min_relevance = self.weights.min_relevance
        results = []

        for doc in snapshot.values():
            score = self.score_document(doc, terms, phrases)
            if score <= 0 or score < min_relevance:
                continue
            results.append(LocalResult(
                document=doc,
                score=round(score, 4),
                snippet=self.extract_snippet(doc, terms),
                matched_terms=self.matched_terms(doc, terms),
            ))

        results.sort(key=lambda r: (-r.score, r.document.title.lower(), r.document.id))
        return results

    @staticmethod
    def _phrases(terms: Sequence[str], query: Optional[str]) -> Tuple[str, ...]:
        phrases = []
        if query and len(query.strip()) >= 2:
            phrases.append(" ".join(query.lower().split()))
        joined = " ".join(terms)
        if joined not in phrases:
            phrases.append(joined)
        return tuple(phrases)

    def score_document(self, doc: Document, terms: Sequence[str], phrases: Sequence[str] = ()) -> float:
        """Normalized (0-100) relevance of ``doc`` for ``terms``."""
        w = self.weights
        title = doc.title.lower()
        description = doc.description.lower()
        content = doc.content.lower()

        total = 0.0
        if any(p in title or p in description or p in content for p in phrases if p):
            total += w.phrase_match

        title_words: Optional[Set[str]] = None
        matched = 0

        for term in terms:
            term_score = 0.0

            if term in title:
                term_score += w.title_match

            if term in description:
                term_score += w.description_match

            # One keyword bonus per term, exact beats any number of partials
            if term in doc.keywords:
                term_score += w.keyword_exact
            elif any(keyword in term or term in keyword for keyword in doc.keywords):
                term_score += w.keyword_partial

            hits = content.count(term)
            if hits:
                term_score += min(hits * w.content_per_hit, w.content_cap)

            # Typos only count when nothing else matched this term
            if term_score == 0 and len(term) >= w.fuzzy_min_length:
                if title_words is None:
                    title_words = set(_WORD_RE.findall(title))
                if self._fuzzy_match(term, doc.keywords | title_words):
                    term_score += w.fuzzy_match

            if term_score > 0:
                matched += 1
            total += term_score

        if total == 0:
            return 0.0

        total *= 0.5 + matched / len(terms)
        if len(content) < w.short_document_chars:
            total *= w.short_document_factor

        return min(total / w.normalizer, 100.0)

    def _fuzzy_match(self, term: str, words: Iterable[str]) -> bool:
        min_len = self.weights.fuzzy_min_length
        for word in words:
            if len(word) >= min_len and within_one_edit(term, word):
                return True
        return False

    def matched_terms(self, doc: Document, terms: Sequence[str]) -> frozenset:
        title = doc.title.lower()
        description = doc.description.lower()
        content = doc.content.lower()
        found = set()
        for term in terms:
            if term in title or term in description or term in content:
                found.add(term)
            elif any(term in keyword for keyword in doc.keywords):
                found.add(term)
        return frozenset(found)

    def extract_snippet(self, doc: Document, terms: Sequence[str]) -> str:
        """Densest content window, else the description, else leading content."""
        if doc.content:
            window = self._densest_window(doc.content, terms)
            if window:
                return window
        if doc.description:
            return clean_snippet(doc.description, False, False)
        return self._leading_text(doc.content)

    def _densest_window(self, content: str, terms: Sequence[str]) -> str:
        lower = content.lower()
        length = self.weights.snippet_length
        lead = self.weights.snippet_lead

        positions = set()
        for term in terms:
            start = lower.find(term)
            while start != -1 and len(positions) < _MAX_WINDOW_CANDIDATES:
                positions.add(start)
                start = lower.find(term, start + 1)
        if not positions:
            return ""

        best = None
        for pos in sorted(positions):
            start = max(0, pos - lead)
            end = min(len(content), start + length)
            window = lower[start:end]
            distinct = sum(1 for t in terms if t in window)
            hits = sum(window.count(t) for t in terms)
            if best is None or (distinct, hits) > best[0]:
                best = ((distinct, hits), pos, start, end)

        _, pos, start, end = best

        # Snap to word boundaries without cutting the anchoring match
        if start > 0:
            space = content.find(" ", start, pos)
            if space != -1:
                start = space + 1
        if end < len(content):
            space = content.rfind(" ", pos, end)
            if space > pos:
                end = space

        return clean_snippet(content[start:end], start > 0, end < len(content))

    def _leading_text(self, content: str) -> str:
        length = self.weights.snippet_length
        for paragraph in _PARAGRAPH_RE.split(content):
            text = paragraph.strip()
            if text and not text.startswith("#") and len(text) > 30:
                return clean_snippet(text[:length], False, len(text) > length)
        text = content.strip()
        return clean_snippet(text[:length], False, len(text) > length)
