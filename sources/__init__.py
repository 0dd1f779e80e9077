"""Sources package for DocBridge.

Provides the local markdown loader and the installed-docset registry.
"""

from .loader import (
    MarkdownDocumentLoader,
    DocsetRegistry,
    parse_frontmatter,
    DOCUMENT_EXTENSIONS
)

__all__ = [
    'MarkdownDocumentLoader',
    'DocsetRegistry',
    'parse_frontmatter',
    'DOCUMENT_EXTENSIONS'
]
