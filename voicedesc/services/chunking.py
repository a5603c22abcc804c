"""
Split narration text into chunks a speech provider accepts.
"""
import re
from typing import List

# Whitespace following a sentence terminator ('.', '!', '?', '...')
_SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])(\s+)')


def _sentences(text: str) -> List[str]:
    """Split text into sentences, each keeping its trailing whitespace."""
    parts = _SENTENCE_BOUNDARY.split(text)
    sentences = []
    for i in range(0, len(parts), 2):
        sentence = parts[i]
        if i + 1 < len(parts):
            sentence += parts[i + 1]
        if sentence:
            sentences.append(sentence)
    return sentences


def chunk_text(text: str, max_length: int) -> List[str]:
    """
    Split text into ordered chunks of at most ``max_length`` characters.

    Sentences are packed greedily; a chunk is closed when the next sentence
    would push it over the limit. A single sentence longer than the limit is
    cut hard at the limit. Whitespace at chunk boundaries is dropped, so
    joining the chunks reproduces the text up to that whitespace.

    Args:
        text: Text to split
        max_length: Maximum characters per chunk (> 0)

    Returns:
        List of non-empty chunks; empty for blank text
    """
    if max_length <= 0:
        raise ValueError(f'max_length must be positive, got {max_length}')

    text = text.strip()
    if not text:
        return []
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    current = ''

    for sentence in _sentences(text):
        candidate = current + sentence
        if len(candidate.strip()) <= max_length:
            current = candidate
            continue

        if current.strip():
            chunks.append(current.strip())
        current = sentence.lstrip()

        while len(current.strip()) > max_length:
            chunks.append(current[:max_length].rstrip())
            current = current[max_length:].lstrip()

    if current.strip():
        chunks.append(current.strip())

    return chunks
