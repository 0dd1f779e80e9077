"""SQLite adapter for read-only docset indexes.

A docset ships a ``searchIndex(name, type, path)`` table. Each adapter owns
exactly one read-only connection to that table and turns term queries into
scored ``ExternalResult`` entries. A missing or corrupt index never raises to
the caller: the adapter marks itself unavailable and answers with empty
results.
"""

import logging
import re
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from config.search import DocsetScoringWeights
from indexer.models import ExternalResult, SearchOptions, dedupe_entries

logger = logging.getLogger(__name__)

INDEX_RELATIVE_PATH = Path("Contents") / "Resources" / "docSet.dsidx"

DEFAULT_EXPLORE_TYPES: Tuple[str, ...] = (
    'Framework', 'Class', 'Struct', 'Protocol', 'Method', 'Property',
    'Function', 'Enum', 'Constant', 'Sample', 'Guide',
)

_NAME_TOKEN_RE = re.compile(r"[\s:/()\[\],<>]+")


class AdapterUnavailableError(Exception):
    """Raised when a docset index cannot be opened or queried."""
    pass


class QueryInterruptedError(AdapterUnavailableError):
    """A running statement was aborted through ``interrupt()``.

    The adapter stays available; only the interrupted call lost its rows.
    """
    pass


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user text only ever matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class ExternalSource:
    """An installed docset, as declared by the registry."""
    id: str
    name: str
    path: str
    platform: Optional[str] = None
    canonical_markers: Tuple[str, ...] = field(default=())

    @property
    def index_path(self) -> Path:
        path = Path(self.path)
        if path.suffix == ".docset" or path.is_dir():
            return path / INDEX_RELATIVE_PATH
        return path


@dataclass
class EntityMatches:
    """Raw exploration rows from one docset."""
    entries: List[ExternalResult] = field(default_factory=list)
    framework: Optional[ExternalResult] = None
    type_totals: Dict[str, int] = field(default_factory=dict)
    truncated: bool = False


class DocsetAdapter:
    """Read-only, scored access to one docset index."""

    def __init__(self, source: ExternalSource, weights: Optional[DocsetScoringWeights] = None):
        self.source = source
        self.weights = weights or DocsetScoringWeights()
        self.canonical_markers = source.canonical_markers or self.weights.canonical_markers
        self.conn: Optional[sqlite3.Connection] = None
        self.available = True
        self._failure_logged = False
        self._lock = threading.Lock()

    @property
    def source_id(self) -> str:
        return self.source.id

    @property
    def name(self) -> str:
        return self.source.name

    def __repr__(self) -> str:
        return f"DocsetAdapter(id={self.source.id!r}, name={self.source.name!r})"

    # Connection handling

    def _connect(self) -> sqlite3.Connection:
        index_path = self.source.index_path
        if not index_path.is_file():
            raise AdapterUnavailableError(f"Docset index not found: {index_path}")

        uri = f"{index_path.resolve().as_uri()}?mode=ro"
        conn = None
        try:
            conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='searchIndex'"
            ).fetchone()
        except sqlite3.Error as e:
            if conn is not None:
                conn.close()
            raise AdapterUnavailableError(f"Cannot open docset index {index_path}: {e}") from e

        if row is None:
            conn.close()
            raise AdapterUnavailableError(f"Docset index {index_path} has no searchIndex table")

        logger.info(f"Docset adapter opened: {self.source.name} ({index_path})")
        return conn

    def _mark_unavailable(self, error: Exception) -> None:
        self.available = False
        if not self._failure_logged:
            self._failure_logged = True
            logger.warning(f"Docset {self.source.name!r} unavailable: {error}")
        else:
            logger.debug(f"Docset {self.source.name!r} still unavailable: {error}")

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        """Run one parameterized statement; raises AdapterUnavailableError."""
        if not self.available:
            raise AdapterUnavailableError(f"Docset {self.source.name!r} is unavailable")
        with self._lock:
            try:
                if self.conn is None:
                    self.conn = self._connect()
                return self.conn.execute(sql, tuple(params)).fetchall()
            except AdapterUnavailableError as e:
                self._mark_unavailable(e)
                raise
            except sqlite3.OperationalError as e:
                if "interrupted" in str(e):
                    raise QueryInterruptedError(f"Query on {self.source.name!r} interrupted") from e
                self._mark_unavailable(e)
                raise AdapterUnavailableError(str(e)) from e
            except sqlite3.DatabaseError as e:
                self._mark_unavailable(e)
                raise AdapterUnavailableError(str(e)) from e

    def interrupt(self) -> None:
        """Abort the statement currently running on this adapter's connection."""
        conn = self.conn
        if conn is not None:
            try:
                conn.interrupt()
            except sqlite3.ProgrammingError:
                pass

    def close(self) -> None:
        """Close the connection. Only the registry that opened the adapter calls this."""
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
                logger.info(f"Docset adapter closed: {self.source.name}")

    # Entry construction and scoring

    def _is_canonical(self, path: str) -> bool:
        return any(marker in (path or "") for marker in self.canonical_markers)

    def _entry(self, row: sqlite3.Row, score: float = 0.0, matched=frozenset()) -> ExternalResult:
        return ExternalResult(
            source_id=self.source.id,
            source_name=self.source.name,
            name=row['name'],
            entry_type=row['type'],
            path=row['path'] or "",
            score=score,
            matched_terms=frozenset(matched),
            canonical=self._is_canonical(row['path']),
        )

    def score_name(self, name: str, terms: Sequence[str]) -> Tuple[float, frozenset]:
        """Score a docset entry name against a term set."""
        w = self.weights
        name_lower = name.lower()
        phrase = " ".join(terms)

        if name_lower == phrase:
            return w.exact_name, frozenset(terms)

        tokens = {t for t in _NAME_TOKEN_RE.split(name_lower) if t}
        tokens.update(t for t in re.split(r"[.\-_]", name_lower) if t)

        matched = [t for t in terms if t in name_lower]
        if not matched:
            return 0.0, frozenset()

        score = 0.0
        if len(matched) == len(terms):
            score += w.all_terms
        for term in matched:
            if term in tokens or name_lower == term:
                score += w.token_match
            elif name_lower.startswith(term):
                score += w.prefix_match
            else:
                score += w.substring_match
        score += len(matched) * w.per_matched_term
        score -= len(name) * w.length_penalty
        return round(score, 4), frozenset(matched)

    @staticmethod
    def _type_clause(entry_type: Optional[str]) -> Tuple[str, List[str]]:
        if entry_type:
            return " AND type = ?", [entry_type]
        return "", []

    # Public operations

    def search_with_terms(self, terms: Sequence[str], options: Optional[SearchOptions] = None) -> List[ExternalResult]:
        """Top-``limit`` entries by score whose names match any of ``terms``.

        Names containing every term are fetched first, so a long all-terms
        match always reaches the scorer ahead of single-term matches.
        """
        options = options or SearchOptions()
        if not terms:
            return []

        limit = options.limit
        cap = self.weights.candidate_row_cap
        type_sql, type_params = self._type_clause(options.type_filter)
        phrase = " ".join(terms)
        like_clauses = ["name LIKE ? ESCAPE '\\'" for _ in terms]
        like_params = [f"%{escape_like(t)}%" for t in terms]

        try:
            rows = list(self._query(
                f"SELECT name, type, path FROM searchIndex WHERE lower(name) = ?{type_sql} LIMIT ?",
                [phrase] + type_params + [limit],
            ))
            rows += self._query(
                f"SELECT name, type, path FROM searchIndex WHERE ({' AND '.join(like_clauses)}){type_sql} "
                f"ORDER BY LENGTH(name), name, type, path LIMIT ?",
                like_params + type_params + [cap],
            )
            if len(terms) > 1:
                rows += self._query(
                    f"SELECT name, type, path FROM searchIndex WHERE ({' OR '.join(like_clauses)}){type_sql} "
                    f"ORDER BY LENGTH(name), name, type, path LIMIT ?",
                    like_params + type_params + [cap],
                )
        except QueryInterruptedError:
            raise
        except AdapterUnavailableError:
            return []

        scored = []
        for row in rows:
            score, matched = self.score_name(row['name'], terms)
            if matched:
                scored.append(self._entry(row, score, matched))

        unique = dedupe_entries(scored).values()
        ranked = sorted(unique, key=lambda e: (-e.score, len(e.name), e.name, e.entry_type, e.path))
        return ranked[:limit]

    def search_exact(self, name: str, entry_type: Optional[str] = None) -> Optional[ExternalResult]:
        """Entry whose name equals ``name`` exactly, canonical variant first."""
        type_sql, type_params = self._type_clause(entry_type)
        try:
            rows = self._query(
                f"SELECT name, type, path FROM searchIndex WHERE name = ?{type_sql} ORDER BY type, path LIMIT 50",
                [name] + type_params,
            )
        except AdapterUnavailableError:
            return None
        if not rows:
            return None
        entries = [self._entry(row, self.weights.exact_name, {name.lower()}) for row in rows]
        entries.sort(key=lambda e: (not e.canonical, e.entry_type, e.path))
        return entries[0]

    def explore_entity(self, name: str, include_types: Sequence[str] = DEFAULT_EXPLORE_TYPES,
                       row_cap: int = 500) -> EntityMatches:
        """Entries belonging to ``name`` (its members and same-prefix types)."""
        matches = EntityMatches()
        if not name:
            return matches

        exact = self.search_exact(name, 'Framework')
        if exact is not None:
            matches.framework = exact

        # Frameworks like "AlarmKit" own prefixed entries, others own "Name." members
        member_prefix = name if name.endswith(('Kit', 'Core')) else f"{name}."
        type_marks = ",".join("?" for _ in include_types)
        where = (
            f"(name LIKE ? ESCAPE '\\' OR name LIKE ? ESCAPE '\\') "
            f"AND type IN ({type_marks})"
        )
        params = [f"{escape_like(member_prefix)}%", f"{escape_like(name)}%"] + list(include_types)

        try:
            rows = self._query(
                f"SELECT name, type, path FROM searchIndex WHERE {where} "
                "ORDER BY CASE WHEN name = ? THEN 0 WHEN name LIKE ? ESCAPE '\\' THEN 1 ELSE 2 END, "
                "LENGTH(name), name, type, path LIMIT ?",
                params + [name, f"{escape_like(name)}.%", row_cap],
            )
            total_rows = self._query(
                f"SELECT type, COUNT(DISTINCT name) AS total FROM searchIndex WHERE {where} GROUP BY type",
                params,
            )
        except QueryInterruptedError:
            raise
        except AdapterUnavailableError:
            return matches

        matches.entries = [self._entry(row) for row in rows]
        matches.type_totals = {row['type']: row['total'] for row in total_rows}
        matches.truncated = len(rows) >= row_cap
        return matches

    def entry_count(self) -> int:
        try:
            rows = self._query("SELECT COUNT(*) AS count FROM searchIndex")
        except AdapterUnavailableError:
            return 0
        return rows[0]['count'] if rows else 0

    def available_types(self) -> List[str]:
        try:
            rows = self._query("SELECT DISTINCT type FROM searchIndex ORDER BY type")
        except AdapterUnavailableError:
            return []
        return [row['type'] for row in rows]

    def type_counts(self) -> Dict[str, int]:
        try:
            rows = self._query("SELECT type, COUNT(*) AS count FROM searchIndex GROUP BY type ORDER BY type")
        except AdapterUnavailableError:
            return {}
        return {row['type']: row['count'] for row in rows}
