import json
import os
import sqlite3
import sys
import threading
from pathlib import Path

import pytest

# Add the project root to the path so the top-level packages import
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from indexer.docset_adapter import ExternalSource
from indexer.models import Document, ExternalResult


def build_docset(root: Path, bundle_name: str, rows) -> Path:
    """Write a ``<bundle>.docset`` with a populated searchIndex table."""
    bundle = root / f"{bundle_name}.docset"
    resources = bundle / "Contents" / "Resources"
    resources.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(resources / "docSet.dsidx")
    try:
        conn.execute(
            "CREATE TABLE searchIndex(id INTEGER PRIMARY KEY, name TEXT, type TEXT, path TEXT)"
        )
        conn.executemany("INSERT INTO searchIndex(name, type, path) VALUES (?, ?, ?)", rows)
        conn.commit()
    finally:
        conn.close()
    return bundle


@pytest.fixture
def make_docset(tmp_path):
    """Factory: ``make_docset(source_id, rows, name=None) -> ExternalSource``."""
    def factory(source_id, rows, name=None, platform=None):
        bundle = build_docset(tmp_path / source_id, name or source_id, rows)
        return ExternalSource(id=source_id, name=name or source_id, path=str(bundle), platform=platform)
    return factory


@pytest.fixture
def write_registry(tmp_path):
    """Factory writing an installer-style docsets.json next to real bundles."""
    def factory(docsets):
        storage = tmp_path / "docsets"
        storage.mkdir(exist_ok=True)
        records = []
        for source_id, name, rows in docsets:
            bundle = build_docset(storage / source_id, name, rows)
            records.append({
                "id": source_id,
                "name": name,
                "path": str(bundle),
                "platform": "ios",
                "downloadedAt": "2025-01-01T00:00:00Z",
            })
        (storage / "docsets.json").write_text(json.dumps(records, indent=2))
        return storage
    return factory


SWIFT_ROWS = [
    ("URLSession", "Class", "documentation/foundation/urlsession?language=swift"),
    ("URLSession", "Class", "documentation/foundation/urlsession?language=objc"),
    ("URLSession.shared", "Property", "documentation/foundation/urlsession/shared?language=swift"),
    ("URLSessionTask", "Class", "documentation/foundation/urlsessiontask?language=swift"),
    ("Widget", "Struct", "documentation/swiftui/widget?language=swift"),
    ("WidgetKit", "Framework", "documentation/widgetkit?language=swift"),
    ("WidgetCenter", "Class", "documentation/widgetkit/widgetcenter?language=swift"),
    ("Keychain Services", "Guide", "documentation/security/keychain_services"),
]


@pytest.fixture
def swift_rows():
    return list(SWIFT_ROWS)


@pytest.fixture
def sample_documents():
    return [
        Document(
            id="guides/authentication.md",
            title="Authentication Service",
            description="How users sign in to the app",
            keywords=["auth", "login"],
            content="The authentication service issues tokens. Call login() with credentials.\n\n"
                    "Tokens expire after one hour.",
            metadata={"category": "guide"},
        ),
        Document(
            id="guides/networking.md",
            title="Networking Conventions",
            description="Rules for HTTP clients",
            keywords=["network", "urlsession"],
            content="Always use the shared URLSession wrapper. Never create sessions ad hoc.",
        ),
        Document(
            id="rules/style.md",
            title="Code Style",
            description="Formatting rules",
            keywords=["style"],
            content="Indent with four spaces. Mention authentication only here.",
        ),
    ]


def external(source_id, name, entry_type="Class", score=10.0, path="doc/path", canonical=False):
    return ExternalResult(
        source_id=source_id,
        source_name=source_id.title(),
        name=name,
        entry_type=entry_type,
        path=path,
        score=score,
        matched_terms=frozenset({name.lower()}),
        canonical=canonical,
    )


class FakeAdapter:
    """Stand-in docset adapter with controllable latency and failures."""

    def __init__(self, source_id, entries=(), delay=0.0, error=None, matches=None):
        self.source_id = source_id
        self.name = source_id.title()
        self.entries = list(entries)
        self.delay = delay
        self.error = error
        self.matches = matches
        self.calls = 0
        self.available = True
        self.interrupted = threading.Event()

    def _maybe_wait_or_fail(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.delay:
            self.interrupted.wait(self.delay)

    def search_with_terms(self, terms, options=None):
        self._maybe_wait_or_fail()
        return list(self.entries)

    def explore_entity(self, name, include_types=(), row_cap=500):
        self._maybe_wait_or_fail()
        return self.matches

    def entry_count(self):
        return len(self.entries)

    def interrupt(self):
        self.interrupted.set()
