"""Source loading for DocBridge.

Reads the local markdown corpus and the metadata of installed docsets. Both
loaders are read-only: nothing here downloads, installs or deletes sources.
"""

import json
import re
import yaml
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from config.search import DocsetScoringWeights
from indexer.docset_adapter import DocsetAdapter, ExternalSource
from indexer.models import Document

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = ('.md', '.mdx', '.mdc')
METADATA_FILE = 'docsets.json'

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n?(.*)$", re.DOTALL)
_HEADING_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)


def parse_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split YAML frontmatter from a markdown body.

    Invalid or non-mapping frontmatter is ignored and the whole text is
    returned as content.
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text

    try:
        metadata = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.debug(f"Ignoring invalid frontmatter: {e}")
        return {}, text

    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        return {}, text
    return metadata, match.group(2)


class MarkdownDocumentLoader:
    """Loads ``.md``, ``.mdx`` and ``.mdc`` files below a docs directory.

    Document ids are paths relative to the docs directory. Title and
    description come from the frontmatter; without a title the first level-1
    heading is used, then the file name.
    """

    def __init__(self, docs_path):
        self.docs_path = Path(docs_path)

    def _files(self) -> List[Path]:
        return sorted(
            p for p in self.docs_path.rglob("*")
            if p.is_file() and p.suffix.lower() in DOCUMENT_EXTENSIONS
        )

    def load_document(self, path: Path) -> Optional[Document]:
        try:
            text = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable document {path}: {e}")
            return None

        metadata, content = parse_frontmatter(text)
        title = metadata.get('title')
        if not title:
            heading = _HEADING_RE.search(content)
            title = heading.group(1) if heading else path.stem.replace('-', ' ').replace('_', ' ')

        description = metadata.pop('description', None) or ""
        keywords = metadata.pop('keywords', None)
        metadata.pop('title', None)
        metadata['file_path'] = str(path)

        return Document(
            id=path.relative_to(self.docs_path).as_posix(),
            title=str(title),
            description=str(description),
            keywords=keywords,
            content=content,
            metadata=metadata,
        )

    def load(self) -> Iterable[Document]:
        if not self.docs_path.is_dir():
            logger.info(f"Docs directory not found, local corpus is empty: {self.docs_path}")
            return []

        documents = []
        for path in self._files():
            document = self.load_document(path)
            if document is not None:
                documents.append(document)

        logger.info(f"Loaded {len(documents)} documents from {self.docs_path}")
        return documents


class DocsetRegistry:
    """Installed docsets, as recorded in the installer's ``docsets.json``.

    The registry is the only owner of adapter connections: it opens one
    adapter per source and closes them all in ``close_all()``.
    """

    def __init__(self, storage_path, weights: Optional[DocsetScoringWeights] = None):
        self.storage_path = Path(storage_path)
        self.metadata_path = self.storage_path / METADATA_FILE
        self.weights = weights or DocsetScoringWeights()
        self._adapters: Dict[str, DocsetAdapter] = {}

    def load_sources(self) -> List[ExternalSource]:
        """Parse the metadata file; a missing or corrupt file means no sources."""
        if not self.metadata_path.is_file():
            logger.info(f"No docset metadata at {self.metadata_path}")
            return []

        try:
            with open(self.metadata_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read docset metadata {self.metadata_path}: {e}")
            return []

        if not isinstance(data, list):
            logger.error(f"Docset metadata {self.metadata_path} is not a list")
            return []

        sources = []
        for item in data:
            if not isinstance(item, dict) or not item.get('id'):
                logger.warning(f"Skipping malformed docset record: {item!r}")
                continue
            path = Path(item.get('path') or self.storage_path / item['id'])
            if not path.is_absolute():
                path = self.storage_path / path
            if not path.exists():
                logger.warning(f"Docset {item['id']!r} is recorded but missing at {path}")
                continue
            sources.append(ExternalSource(
                id=str(item['id']),
                name=str(item.get('name') or item['id']),
                path=str(self._resolve_docset(path)),
                platform=item.get('platform'),
            ))
        return sources

    @staticmethod
    def _resolve_docset(path: Path) -> Path:
        """A storage directory may hold the ``.docset`` bundle one level down."""
        if path.is_dir() and path.suffix != '.docset':
            bundles = sorted(path.glob('*.docset'))
            if bundles:
                return bundles[0]
        return path

    def open_all(self) -> List[DocsetAdapter]:
        for source in self.load_sources():
            if source.id not in self._adapters:
                self._adapters[source.id] = DocsetAdapter(source, self.weights)
        logger.info(f"Docset registry opened {len(self._adapters)} source(s)")
        return list(self._adapters.values())

    def get(self, source_id: str) -> Optional[DocsetAdapter]:
        return self._adapters.get(source_id)

    @property
    def adapters(self) -> List[DocsetAdapter]:
        return list(self._adapters.values())

    def close_all(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()
        self._adapters.clear()
