"""
Document loaders.

Turn files or in-memory strings into RawDocument records for chunking.
Loaders never raise on I/O problems: failures are logged and yield an
empty list (directories) or None (single files).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .documents import DocumentMetadata, MetadataLike, as_metadata

logger = logging.getLogger(__name__)


@dataclass
class RawDocument:
    """A whole, unchunked document."""
    id: str
    text: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    @classmethod
    def create(cls, id: str, text: str, metadata: MetadataLike = None) -> 'RawDocument':
        return cls(id=id, text=text, metadata=as_metadata(metadata))


def load_markdown_dir(directory: Union[str, Path]) -> List[RawDocument]:
    """
    Load every *.md file in a directory (not recursive), sorted by name.

    Args:
        directory: Directory to scan

    Returns:
        One RawDocument per file, id = file name; [] if the directory
        cannot be read
    """
    directory = Path(directory)
    docs = []

    try:
        paths = sorted(p for p in directory.iterdir() if p.is_file() and p.suffix == '.md')
        for path in paths:
            docs.append(RawDocument(
                id=path.name,
                text=path.read_text(encoding='utf-8'),
                metadata=DocumentMetadata(
                    source=str(path),
                    doc_type='markdown',
                    title=path.name,
                ),
            ))
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Failed to load markdown from {directory}: {e}")
        return []

    logger.info(f"Loaded {len(docs)} markdown documents from {directory}")
    return docs


def load_text_file(file_path: Union[str, Path]) -> Optional[RawDocument]:
    """Load one UTF-8 text file, or return None if it cannot be read."""
    path = Path(file_path)
    try:
        text = path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Failed to load {path}: {e}")
        return None

    return RawDocument(
        id=path.name,
        text=text,
        metadata=DocumentMetadata(source=str(path), doc_type='text', title=path.name),
    )


def create_docs_from_texts(texts: Iterable[str], prefix: str = 'doc') -> List[RawDocument]:
    """Wrap in-memory strings as documents with ids "{prefix}-{index}"."""
    return [
        RawDocument(
            id=f"{prefix}-{idx}",
            text=text,
            metadata=DocumentMetadata(source='memory', doc_type='text', extra={'index': idx}),
        )
        for idx, text in enumerate(texts)
    ]
