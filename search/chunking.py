"""
Text chunking for ingestion.

Splits cleaned document text into overlapping fixed-size windows (or
sentence-packed chunks) and emits Chunk records whose ids and metadata
point back to the source document.

Usage:
    from search.chunking import make_chunks
    from search.loaders import load_markdown_dir
    from core.config import load_config

    config = load_config()
    chunks = make_chunks(
        load_markdown_dir("docs/"),
        chunk_size=config.chunking.chunk_size,
        overlap=config.chunking.overlap
    )
"""

import logging
import re
from typing import Iterable, List

from .documents import Chunk
from .loaders import RawDocument

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARY = re.compile(r'([。！？.!?]\s*)')


def clean(text: str) -> str:
    """Normalize line endings and collapse runs of blank lines, tabs and NBSPs."""
    text = text.replace('\r', '\n')
    text = re.sub(r'\n{3,}', '\n\n', text)
    text = re.sub(r'[\t\u00a0]+', ' ', text)
    return text.strip()


def split_into_chunks(text: str, chunk_size: int = 800, overlap: int = 100) -> List[str]:
    """
    Split text into fixed-size character windows.

    Each window starts `chunk_size - overlap` characters after the previous
    one. Text no longer than `chunk_size` comes back as a single chunk.

    Args:
        text: Text to split
        chunk_size: Window length in characters
        overlap: Characters shared by consecutive windows

    Returns:
        List of chunk strings

    Raises:
        ValueError: chunk_size < 1, or overlap outside [0, chunk_size)
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError(f"overlap must be within [0, {chunk_size}), got {overlap}")

    if len(text) <= chunk_size:
        return [text]

    step = chunk_size - overlap
    return [text[i:i + chunk_size] for i in range(0, len(text), step)]


def split_by_sentence(text: str, max_chunk_size: int = 800) -> List[str]:
    """
    Greedily pack whole sentences into chunks of at most max_chunk_size.

    A single sentence longer than the limit becomes its own chunk.
    Blank chunks are dropped.
    """
    parts = SENTENCE_BOUNDARY.split(text)
    chunks = []
    current = ''

    for i in range(0, len(parts), 2):
        sentence = parts[i] + (parts[i + 1] if i + 1 < len(parts) else '')
        if len(current) + len(sentence) <= max_chunk_size:
            current += sentence
        else:
            if current:
                chunks.append(current)
            current = sentence

    if current:
        chunks.append(current)

    return [c for c in chunks if c.strip()]


def make_chunks(
    docs: Iterable[RawDocument],
    chunk_size: int = 800,
    overlap: int = 100
) -> List[Chunk]:
    """
    Clean and split documents into Chunk records.

    Chunk ids are "{doc_id}#{index}". Metadata is the document's own plus
    parent_id, chunk_index and total_chunks. Documents that are empty
    after cleaning produce no chunks.
    """
    chunks = []
    doc_count = 0

    for doc in docs:
        doc_count += 1
        text = clean(doc.text)
        if not text:
            logger.debug(f"Skipping empty document {doc.id}")
            continue

        parts = split_into_chunks(text, chunk_size, overlap)
        for idx, part in enumerate(parts):
            chunks.append(Chunk(
                id=f"{doc.id}#{idx}",
                text=part,
                metadata=doc.metadata.with_updates(
                    parent_id=doc.id,
                    chunk_index=idx,
                    total_chunks=len(parts),
                ),
            ))

    logger.info(f"Split {doc_count} documents into {len(chunks)} chunks")
    return chunks
